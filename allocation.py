"""
DoseFlow: Allocation Queue
==========================
Patients waiting for dose preparation, in arrival order.

States:  PENDING -> SELECTED -> WITHDRAWN
         PENDING_SCHEDULED -> ELIGIBLE -> SELECTED -> WITHDRAWN

Eligibility and countdowns are recomputed from the caller's `now` on every
query; the queue owns no timers or threads.
"""

import logging
import math
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

from models import (
    Activity,
    Countdown,
    Isotope,
    PatientDoseRequest,
    PendingEntry,
    RadioactiveSource,
    RequestState,
    WithdrawalRecord,
    InvalidInput,
    DepletedSource,
    InsufficientActivity,
    NotEligible,
    SourceBusy,
)
from constants import QUEUE_CONSTANTS
from protocols import DoseCalculator
from ledger import WithdrawalLedger

logger = logging.getLogger("doseflow-queue")

# update_request: leave the field as it is
_UNCHANGED = object()

class AllocationQueue:

    def __init__(self, ledger: WithdrawalLedger,
                 on_removed: Optional[Callable[[str], None]] = None):
        """
        Args:
            ledger: where confirmed withdrawals are written
            on_removed: notified with the patient id once a request leaves the
                pending set (the patient queue store's "remove from pending")
        """
        self._ledger = ledger
        self._on_removed = on_removed
        self._pending: Dict[str, PatientDoseRequest] = {}
        self._withdrawn: Dict[str, WithdrawalRecord] = {}
        self._in_flight: Set[str] = set()
        self._selected_id: Optional[str] = None
        self._lock = threading.Lock()

    # --- 1. TIME-DERIVED STATE ---

    @staticmethod
    def eligible_at(request: PatientDoseRequest) -> Optional[datetime]:
        if not request.is_scheduled:
            return None
        info = request.additional_info
        minutes = info.scheduled_minutes
        if minutes is None:
            minutes = QUEUE_CONSTANTS.DEFAULT_SCHEDULED_MINUTES
        return info.requested_at + timedelta(minutes=minutes)

    @staticmethod
    def is_eligible(request: PatientDoseRequest, now: datetime) -> bool:
        eligible_at = AllocationQueue.eligible_at(request)
        return eligible_at is None or now >= eligible_at

    @staticmethod
    def countdown_for(request: PatientDoseRequest, now: datetime) -> Optional[Countdown]:
        """Derived countdown for a scheduled re-draw. None for ordinary requests."""
        eligible_at = AllocationQueue.eligible_at(request)
        if eligible_at is None:
            return None
        remaining_ms = int(round((eligible_at - now).total_seconds() * 1000))
        if remaining_ms <= 0:
            return Countdown(0, QUEUE_CONSTANTS.ELIGIBLE_LABEL)
        minutes = math.floor(remaining_ms / QUEUE_CONSTANTS.MS_PER_MINUTE)
        return Countdown(remaining_ms, f"{minutes} min")

    def state_of(self, patient_id: str, now: datetime) -> RequestState:
        with self._lock:
            if patient_id in self._withdrawn:
                return RequestState.WITHDRAWN
            request = self._require(patient_id)
            return self._state(request, now)

    def _state(self, request: PatientDoseRequest, now: datetime) -> RequestState:
        if request.patient_id == self._selected_id:
            return RequestState.SELECTED
        if request.is_scheduled:
            if self.is_eligible(request, now):
                return RequestState.ELIGIBLE
            return RequestState.PENDING_SCHEDULED
        return RequestState.PENDING

    def _require(self, patient_id: str) -> PatientDoseRequest:
        request = self._pending.get(patient_id)
        if request is None:
            raise InvalidInput(f"No pending request for patient '{patient_id}'")
        return request

    # --- 2. QUEUE MAINTENANCE ---

    def add(self, request: PatientDoseRequest) -> None:
        with self._lock:
            if request.patient_id in self._pending:
                raise InvalidInput(f"Patient '{request.patient_id}' is already queued")
            # A later re-draw for the same patient starts a fresh request
            self._withdrawn.pop(request.patient_id, None)
            self._pending[request.patient_id] = request
        logger.info(f"Queued {request.patient_id} ({'re-draw' if request.is_scheduled else 'new'})")

    def get(self, patient_id: str) -> PatientDoseRequest:
        with self._lock:
            return self._require(patient_id)

    def update_request(self, patient_id: str, weight_kg=_UNCHANGED,
                       blood_glucose_mg_dl=_UNCHANGED) -> PatientDoseRequest:
        """
        Weight and glucose are the only fields editable before withdrawal.
        Pass blood_glucose_mg_dl=None to clear a reading. A request whose
        withdrawal is being committed cannot be edited.
        """
        with self._lock:
            request = self._require(patient_id)
            if patient_id in self._in_flight:
                raise SourceBusy(f"Withdrawal for patient '{patient_id}' is being committed")
            changes = {}
            if weight_kg is not _UNCHANGED:
                changes["weight_kg"] = weight_kg
            if blood_glucose_mg_dl is not _UNCHANGED:
                changes["blood_glucose_mg_dl"] = blood_glucose_mg_dl
            updated = replace(request, **changes)
            self._pending[patient_id] = updated
            return updated

    def pending(self, now: datetime) -> List[PendingEntry]:
        """The pending set in insertion order, with derived state and countdown."""
        with self._lock:
            return [
                PendingEntry(request=r, state=self._state(r, now), countdown=self.countdown_for(r, now))
                for r in self._pending.values()
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, patient_id: str) -> bool:
        with self._lock:
            return patient_id in self._pending

    # --- 3. SELECTION (advisory UI state) ---

    @property
    def selected_id(self) -> Optional[str]:
        with self._lock:
            return self._selected_id

    def select(self, patient_id: str, now: datetime) -> PatientDoseRequest:
        with self._lock:
            request = self._require(patient_id)
            if patient_id == self._selected_id:
                return request
            if not self.is_eligible(request, now):
                raise NotEligible(
                    f"Patient '{patient_id}' is not eligible until "
                    f"{self.eligible_at(request).isoformat()}"
                )
            self._selected_id = patient_id
            return request

    def deselect(self) -> None:
        with self._lock:
            self._selected_id = None

    # --- 4. CONFIRMATION ---

    def confirm_withdrawal(self, patient_id: str, source: RadioactiveSource, isotope: Isotope,
                           now: datetime, draw_activity: Optional[Activity] = None) -> WithdrawalRecord:
        """
        Selected -> Withdrawn. Confirming an eligible request that is not the
        current selection selects it implicitly. Volume is computed and recorded
        inside the source's critical section, so it always reflects earlier draws.

        An imaging-only request (dose_needed False) closes with a 0 mL record.
        """
        # Snapshot and in-flight mark are taken together; update_request refuses in-flight ids
        with self._lock:
            request = self._require(patient_id)
            if not self.is_eligible(request, now):
                raise NotEligible(f"Patient '{patient_id}' is not yet eligible for re-draw")
            if patient_id in self._in_flight:
                raise SourceBusy(f"A withdrawal for patient '{patient_id}' is already in progress")
            self._in_flight.add(patient_id)

        try:
            with self._ledger.source_guard(source.id):
                if not request.dose_needed:
                    record = self._ledger.record(source, isotope, 0.0, now, patient_id=patient_id,
                                                 procedure=request.procedure, allow_zero=True)
                else:
                    target = draw_activity
                    if target is None:
                        target = DoseCalculator.recommended_dose(
                            request.weight_kg, request.dose_ratio_per_kg, source.calibrated_activity.unit
                        )
                    volume = DoseCalculator.required_volume(target, source, isotope, now)
                    record = self._ledger.record(source, isotope, volume, now, patient_id=patient_id,
                                                 procedure=request.procedure)
        except Exception as e:
            if isinstance(e, (DepletedSource, InsufficientActivity)):
                logger.warning(f"Withdrawal for {patient_id} refused: {e}")
            with self._lock:
                self._in_flight.discard(patient_id)
            raise

        # Leaves pending in the same step that clears the in-flight mark
        with self._lock:
            self._pending.pop(patient_id, None)
            self._withdrawn[patient_id] = record
            if self._selected_id == patient_id:
                self._selected_id = None
            self._in_flight.discard(patient_id)

        logger.info(f"Removed {patient_id} from pending after withdrawal {record.record_id}")
        if self._on_removed is not None:
            self._on_removed(patient_id)
        return record

    def withdrawal_for(self, patient_id: str) -> Optional[WithdrawalRecord]:
        with self._lock:
            return self._withdrawn.get(patient_id)

    def release(self, patient_id: str) -> Optional[WithdrawalRecord]:
        """Forget a finished patient. The ledger keeps the record."""
        with self._lock:
            record = self._withdrawn.pop(patient_id, None)
        if record is not None:
            logger.info(f"Released {patient_id} from the queue")
        return record
