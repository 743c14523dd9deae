"""
DoseFlow: Withdrawal Ledger
===========================
The append-only audit trail and the only writer of a source's withdrawal
history. Read-check-append runs under a per-source lock, so two
withdrawals from the same vial can never both see the same remaining
activity. Different vials do not block each other.
"""

import logging
import math
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

from models import (
    Activity,
    Isotope,
    RadioactiveSource,
    WithdrawalRecord,
    DepletedSource,
    InsufficientActivity,
    InvalidInput,
    SourceBusy,
)
from constants import DoseUnit, DECAY_CONSTANTS, LOW_STOCK_THRESHOLD_MCI
from core_physics import DecayClock

logger = logging.getLogger("doseflow-ledger")

class WithdrawalLedger:

    def __init__(self):
        self._records: List[WithdrawalRecord] = []
        self._source_locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    # --- 1. PER-SOURCE CRITICAL SECTION ---

    def _lock_for(self, source_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._source_locks.get(source_id)
            if lock is None:
                lock = threading.RLock()
                self._source_locks[source_id] = lock
            return lock

    @contextmanager
    def source_guard(self, source_id: str) -> Iterator[None]:
        """
        Hold the commit lock for one source. Never waits: a second caller gets
        SourceBusy immediately. Re-entrant for the thread that already holds it.
        """
        lock = self._lock_for(source_id)
        if not lock.acquire(blocking=False):
            logger.warning(f"Withdrawal refused: source {source_id} busy")
            raise SourceBusy(f"Another withdrawal is in progress on source '{source_id}'")
        try:
            yield
        finally:
            lock.release()

    # --- 2. THE SINGLE WRITER PATH ---

    def record(self, source: RadioactiveSource, isotope: Isotope, drawn_volume_ml: float,
               at: datetime, patient_id: Optional[str] = None,
               procedure: Optional[str] = None, allow_zero: bool = False) -> WithdrawalRecord:
        """
        Append one withdrawal. `allow_zero` admits a 0 mL closure entry for an
        imaging-only pass; every other draw must be a positive volume.
        """
        if isinstance(drawn_volume_ml, bool) or not isinstance(drawn_volume_ml, (int, float)):
            raise InvalidInput(f"drawn_volume_ml must be numeric, got {type(drawn_volume_ml)}")
        if not math.isfinite(drawn_volume_ml) or drawn_volume_ml < 0:
            raise InvalidInput(f"Invalid draw volume: {drawn_volume_ml} mL")
        if drawn_volume_ml == 0 and not allow_zero:
            raise InvalidInput("Draw volume must be positive")

        with self.source_guard(source.id):
            last = source.last_withdrawal_at
            if last is not None and at < last:
                raise InvalidInput(
                    f"Withdrawal at {at.isoformat()} predates the last entry "
                    f"for source '{source.id}' ({last.isoformat()})"
                )

            if drawn_volume_ml == 0:
                record = self._closure_record(source, isotope, at, patient_id, procedure)
            else:
                record = self._draw_record(source, isotope, float(drawn_volume_ml), at,
                                           patient_id, procedure)

            source._history.append(record)
            self._records.append(record)

        logger.info(
            f"Recorded withdrawal {record.record_id}: {record.drawn_activity} / "
            f"{record.drawn_volume_ml:.3f} mL from {source.id} for {patient_id or 'walk-in'}"
        )
        return record

    def _draw_record(self, source, isotope, volume_ml, at, patient_id, procedure) -> WithdrawalRecord:
        remaining = DecayClock.remaining_activity(source, isotope, at)
        try:
            concentration = DecayClock.concentration(source, isotope, at)
        except DepletedSource:
            logger.warning(f"Withdrawal refused: source {source.id} depleted")
            raise

        tolerance = 1 + DECAY_CONSTANTS.ZERO_TOLERANCE
        if volume_ml > source.volume_ml * tolerance:
            logger.warning(f"Withdrawal refused: {volume_ml:.3f} mL exceeds vial volume")
            raise InsufficientActivity(
                f"Requested {volume_ml:.3f} mL but source '{source.id}' is a {source.volume_ml:.3f} mL vial"
            )

        drawn = concentration * volume_ml
        if drawn.amount > remaining.amount * tolerance:
            logger.warning(f"Withdrawal refused: {drawn} exceeds remaining {remaining}")
            raise InsufficientActivity(f"Requested {drawn} but source '{source.id}' holds {remaining}")

        return WithdrawalRecord(
            source_id=source.id,
            drawn_activity=drawn,
            drawn_volume_ml=volume_ml,
            timestamp=at,
            concentration_at_draw=concentration,
            patient_id=patient_id,
            procedure=procedure,
        )

    def _closure_record(self, source, isotope, at, patient_id, procedure) -> WithdrawalRecord:
        unit = source.calibrated_activity.unit
        try:
            concentration = DecayClock.concentration(source, isotope, at)
        except DepletedSource:
            # Nothing is drawn, so an empty vial does not block closure
            concentration = Activity.zero(unit)
        return WithdrawalRecord(
            source_id=source.id,
            drawn_activity=Activity.zero(unit),
            drawn_volume_ml=0.0,
            timestamp=at,
            concentration_at_draw=concentration,
            patient_id=patient_id,
            procedure=procedure,
        )

    # --- 3. READ-ONLY VIEWS ---

    def records(self) -> Tuple[WithdrawalRecord, ...]:
        """All entries, oldest first."""
        return tuple(self._records)

    def records_for_source(self, source_id: str) -> Tuple[WithdrawalRecord, ...]:
        return tuple(r for r in self._records if r.source_id == source_id)

    def records_for_patient(self, patient_id: str) -> Tuple[WithdrawalRecord, ...]:
        return tuple(r for r in self._records if r.patient_id == patient_id)

    def __len__(self) -> int:
        return len(self._records)

    def withdrawn_activity(self, source: RadioactiveSource, isotope: Isotope) -> Activity:
        return DecayClock.withdrawn_activity(source, isotope)

    def is_low_stock(self, source: RadioactiveSource, isotope: Isotope, at: datetime,
                     threshold: Activity = Activity(LOW_STOCK_THRESHOLD_MCI, DoseUnit.MCI)) -> bool:
        """Positive but at or below `threshold`. An empty vial is depleted, not low."""
        remaining = DecayClock.remaining_activity(source, isotope, at)
        return not remaining.is_zero and remaining <= threshold
