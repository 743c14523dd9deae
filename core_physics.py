"""
DoseFlow: Decay Clock
=====================
Exponential decay of a calibrated source, decay-corrected subtraction of
prior withdrawals and the Mo-99/Tc-99m generator build-up.

Every function takes the query instant explicitly. Nothing here reads the
wall clock.
"""

import logging
import math
from datetime import datetime
from typing import Optional

from models import (
    Activity,
    Isotope,
    RadioactiveSource,
    ConfigurationError,
    DepletedSource,
    InsufficientActivity,
    InvalidInput,
)
from constants import DECAY_CONSTANTS

logger = logging.getLogger("doseflow-decay")

class DecayClock:
    """
    The Mathematical Core.
    A(t) = A0 * 2^(-dt / T_half), with dt allowed to be negative.
    """

    @staticmethod
    def _checked_half_life(half_life_seconds: float) -> float:
        if isinstance(half_life_seconds, bool) or not isinstance(half_life_seconds, (int, float)):
            raise ConfigurationError(f"Half-life must be numeric, got {type(half_life_seconds)}")
        if not math.isfinite(half_life_seconds) or half_life_seconds <= 0:
            raise ConfigurationError(f"Half-life must be positive, got {half_life_seconds}")
        return float(half_life_seconds)

    @staticmethod
    def _elapsed_seconds(start: datetime, end: datetime) -> float:
        return (end - start).total_seconds()

    @staticmethod
    def decay_factor(half_life_seconds: float, elapsed_seconds: float) -> float:
        """Fraction left after `elapsed_seconds`. Greater than 1 for negative time."""
        half_life = DecayClock._checked_half_life(half_life_seconds)
        return 2.0 ** (-elapsed_seconds / half_life)

    @staticmethod
    def decay(activity: Activity, half_life_seconds: float,
              from_time: datetime, to_time: datetime) -> Activity:
        elapsed = DecayClock._elapsed_seconds(from_time, to_time)
        return activity * DecayClock.decay_factor(half_life_seconds, elapsed)

    @staticmethod
    def _check_pairing(source: RadioactiveSource, isotope: Isotope) -> None:
        if source.isotope_id != isotope.id:
            raise ConfigurationError(
                f"Source '{source.id}' holds '{source.isotope_id}', not '{isotope.id}'"
            )

    @staticmethod
    def remaining_activity(source: RadioactiveSource, isotope: Isotope, at: datetime) -> Activity:
        """
        Decay the calibrated activity to `at`, then subtract every earlier
        withdrawal decayed from its own draw instant to `at`.
        Withdrawals stamped after `at` are not yet part of the history.
        """
        DecayClock._check_pairing(source, isotope)
        half_life = isotope.half_life_seconds
        unit = source.calibrated_activity.unit

        decayed = source.calibrated_activity.amount * DecayClock.decay_factor(
            half_life, DecayClock._elapsed_seconds(source.calibration_time, at)
        )

        withdrawn_now = 0.0
        for record in source.history:
            if record.timestamp > at:
                continue
            withdrawn_now += record.drawn_activity.in_units(unit) * DecayClock.decay_factor(
                half_life, DecayClock._elapsed_seconds(record.timestamp, at)
            )

        remaining = decayed - withdrawn_now
        if abs(remaining) <= DECAY_CONSTANTS.ZERO_TOLERANCE * decayed:
            remaining = 0.0
        elif remaining < 0:
            # The ledger refuses over-draws, so this means corrupted history
            raise InsufficientActivity(
                f"Source '{source.id}': withdrawals exceed available activity "
                f"({withdrawn_now:.6f} > {decayed:.6f} {unit.value})"
            )

        logger.debug(f"Source {source.id} at {at.isoformat()}: {remaining:.4f} {unit.value}")
        return Activity(remaining, unit)

    @staticmethod
    def withdrawn_activity(source: RadioactiveSource, isotope: Isotope) -> Activity:
        """
        Running total of withdrawals, each decay-corrected back to the
        calibration instant. Directly comparable with `calibrated_activity`,
        and non-decreasing as records are appended.
        """
        DecayClock._check_pairing(source, isotope)
        unit = source.calibrated_activity.unit
        total = 0.0
        for record in source.history:
            total += record.drawn_activity.in_units(unit) * DecayClock.decay_factor(
                isotope.half_life_seconds,
                DecayClock._elapsed_seconds(record.timestamp, source.calibration_time),
            )
        return Activity(total, unit)

    @staticmethod
    def concentration(source: RadioactiveSource, isotope: Isotope, at: datetime) -> Activity:
        """
        Remaining activity spread over the vial's nominal volume. Earlier draws
        lower it through `remaining_activity`, never through the divisor.
        """
        remaining = DecayClock.remaining_activity(source, isotope, at)
        if remaining.is_zero:
            raise DepletedSource(f"Source '{source.id}' is depleted at {at.isoformat()}")
        return remaining / source.volume_ml

    @staticmethod
    def generator_yield(parent_activity: Activity,
                        parent_half_life_seconds: float,
                        daughter_half_life_seconds: float,
                        received_at: datetime,
                        at: datetime,
                        last_elution_at: Optional[datetime] = None,
                        efficiency_pct: float = 100.0) -> Activity:
        """
        Elutable daughter activity of a parent/daughter generator (Mo-99 -> Tc-99m).

        Bateman build-up since the last elution (or receipt, for a fresh column):
            A_d = A_p(t_e) * l_d / (l_d - l_p) * (e^(-l_p*dt) - e^(-l_d*dt))
        scaled by the elution efficiency.
        """
        lambda_p = math.log(2) / DecayClock._checked_half_life(parent_half_life_seconds)
        lambda_d = math.log(2) / DecayClock._checked_half_life(daughter_half_life_seconds)
        if lambda_p >= lambda_d:
            raise ConfigurationError("Generator parent must be longer-lived than its daughter")
        if not (0.0 < efficiency_pct <= 100.0):
            raise InvalidInput(f"Invalid elution efficiency: {efficiency_pct}%")

        growth_start = last_elution_at or received_at
        if growth_start < received_at or at < growth_start:
            raise InvalidInput("Elution times must satisfy received_at <= last_elution_at <= at")

        parent_at_start = DecayClock.decay(parent_activity, parent_half_life_seconds,
                                           received_at, growth_start)
        dt = DecayClock._elapsed_seconds(growth_start, at)
        buildup = (lambda_d / (lambda_d - lambda_p)) * (math.exp(-lambda_p * dt) - math.exp(-lambda_d * dt))

        return parent_at_start * (buildup * efficiency_pct / 100.0)
