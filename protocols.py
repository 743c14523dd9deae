# protocols.py
import math
from datetime import datetime

from models import Activity, Isotope, RadioactiveSource, DepletedSource, InsufficientActivity, InvalidInput
from constants import DoseUnit, DECAY_CONSTANTS
from core_physics import DecayClock

class DoseCalculator:
    """
    Weight-based dosing and activity -> volume conversion.
    Pure functions. Refuses rather than clamps.
    """

    @staticmethod
    def _require_positive(name: str, value) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidInput(f"{name} must be numeric, got {type(value)}")
        if not math.isfinite(value) or value <= 0:
            raise InvalidInput(f"{name} must be positive and finite, got {value}")
        return float(value)

    @staticmethod
    def recommended_dose(weight_kg: float, dose_ratio_per_kg: float,
                         unit: DoseUnit = DoseUnit.MBQ) -> Activity:
        """weight x ratio, in the unit the ratio is expressed in."""
        weight = DoseCalculator._require_positive("weight_kg", weight_kg)
        ratio = DoseCalculator._require_positive("dose_ratio_per_kg", dose_ratio_per_kg)
        return Activity(weight * ratio, unit)

    @staticmethod
    def required_volume(target_activity: Activity, source: RadioactiveSource,
                        isotope: Isotope, at: datetime) -> float:
        """
        mL to draw so the syringe holds `target_activity` at `at`.
        Raises DepletedSource when nothing is left and InsufficientActivity
        when the target exceeds the remaining activity.
        """
        if not isinstance(target_activity, Activity):
            raise InvalidInput("target_activity must be an Activity")
        if target_activity.is_zero:
            raise InvalidInput("Target activity must be positive")

        remaining = DecayClock.remaining_activity(source, isotope, at)
        if remaining.is_zero:
            raise DepletedSource(f"Source '{source.id}' has no activity left")
        if target_activity > remaining:
            raise InsufficientActivity(
                f"Requested {target_activity} but source '{source.id}' holds {remaining}"
            )

        concentration = DecayClock.concentration(source, isotope, at)
        return target_activity.in_units(concentration.unit) / concentration.amount

    @staticmethod
    def activity_for_volume(volume_ml: float, source: RadioactiveSource,
                            isotope: Isotope, at: datetime) -> Activity:
        """Inverse of required_volume: what `volume_ml` of this source holds at `at`."""
        volume = DoseCalculator._require_positive("volume_ml", volume_ml)
        if volume > source.volume_ml * (1 + DECAY_CONSTANTS.ZERO_TOLERANCE):
            raise InsufficientActivity(
                f"Requested {volume:.3f} mL but source '{source.id}' is a {source.volume_ml:.3f} mL vial"
            )
        return DecayClock.concentration(source, isotope, at) * volume
