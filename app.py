"""
DoseFlow: Dispensing Session
============================
The entry point for the UI. One session = one isotope, one active vial,
its ledger and the queue of patients waiting for it.

    Decay Clock -> Dose Calculator + Safety Gate -> proposal
    Allocation Queue -> confirm -> Withdrawal Ledger -> remove from pending

WARNING: Decision support only. Safety verdicts are advisory.
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Tuple, Union

from models import (
    Activity,
    DoseProposal,
    Isotope,
    PatientDoseRequest,
    PendingEntry,
    RadioactiveSource,
    SafetyVerdict,
    WithdrawalRecord,
    ConfigurationError,
    DoseEngineError,
)
from constants import DoseUnit, VERSION
from core_physics import DecayClock
from protocols import DoseCalculator
from safety import SafetyGate
from ledger import WithdrawalLedger
from allocation import AllocationQueue
from schemas import PendingPatientRecord

logger = logging.getLogger("doseflow-session")

def configure_logging(level: int = logging.INFO) -> None:
    """For embedding applications and scripts. The library itself never configures logging."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

class DispensingSession:

    def __init__(self, isotope: Isotope, source: RadioactiveSource,
                 ledger: Optional[WithdrawalLedger] = None,
                 on_removed: Optional[Callable[[str], None]] = None):
        if source.isotope_id != isotope.id:
            raise ConfigurationError(
                f"Source '{source.id}' holds '{source.isotope_id}', session isotope is '{isotope.id}'"
            )
        self.isotope = isotope
        self.source = source
        self.ledger = ledger if ledger is not None else WithdrawalLedger()
        self.queue = AllocationQueue(self.ledger, on_removed=on_removed)

    @classmethod
    def open(cls, isotope_id: str, source_id: str, calibrated_activity: Activity,
             calibration_time: datetime, volume_ml: float, label: str = "",
             on_removed: Optional[Callable[[str], None]] = None) -> "DispensingSession":
        """Start a session on a fresh vial of a catalog isotope."""
        isotope = Isotope.from_library(isotope_id)
        source = RadioactiveSource(
            id=source_id,
            isotope_id=isotope_id,
            calibrated_activity=calibrated_activity,
            calibration_time=calibration_time,
            volume_ml=volume_ml,
            label=label,
        )
        logger.info(f"Session v{VERSION} opened on {source_id} ({isotope.name}, {calibrated_activity})")
        return cls(isotope, source, on_removed=on_removed)

    @property
    def unit(self) -> DoseUnit:
        return self.source.calibrated_activity.unit

    # --- 1. QUEUE INTAKE ---

    def enqueue(self, patient: Union[PatientDoseRequest, PendingPatientRecord],
                dose_ratio_per_kg: Optional[float] = None) -> PatientDoseRequest:
        if isinstance(patient, PendingPatientRecord):
            if dose_ratio_per_kg is None:
                raise ConfigurationError("A dose ratio is required to queue a store record")
            default_procedure = self.isotope.common_procedures[0] if self.isotope.common_procedures else ""
            patient = patient.to_request(dose_ratio_per_kg, default_procedure)
        self.queue.add(patient)
        return patient

    def pending(self, now: datetime) -> Tuple[PendingEntry, ...]:
        return tuple(self.queue.pending(now))

    # --- 2. LIVE VALUES ---

    def remaining_activity(self, at: datetime) -> Activity:
        return DecayClock.remaining_activity(self.source, self.isotope, at)

    def concentration(self, at: datetime) -> Activity:
        return DecayClock.concentration(self.source, self.isotope, at)

    def is_low_stock(self, at: datetime) -> bool:
        return self.ledger.is_low_stock(self.source, self.isotope, at)

    # --- 3. PROPOSE / CONFIRM ---

    def propose(self, patient_id: str, at: datetime,
                draw_activity: Optional[Activity] = None) -> DoseProposal:
        """
        SAFE FACTORY: everything the technician needs before confirming.
        Engine errors are reported in `errors` instead of raised, so the UI can
        keep the confirm action disabled until they clear.
        """
        request = self.queue.get(patient_id)
        verdict = SafetyGate.evaluate_for(self.isotope, request.blood_glucose_mg_dl)
        proposal = DoseProposal(
            patient_id=patient_id,
            dose_needed=request.dose_needed,
            verdict=verdict,
            protocol_note=self.isotope.protocol_note(request.procedure),
        )

        if not self.queue.is_eligible(request, at):
            countdown = self.queue.countdown_for(request, at)
            proposal.errors.append(f"Re-draw not eligible yet ({countdown.label})")
            return proposal

        if not request.dose_needed:
            proposal.draw_activity = Activity.zero(self.unit)
            proposal.required_volume_ml = 0.0
            return proposal

        try:
            proposal.recommended_dose = DoseCalculator.recommended_dose(
                request.weight_kg, request.dose_ratio_per_kg, self.unit
            )
            proposal.draw_activity = draw_activity if draw_activity is not None else proposal.recommended_dose
            proposal.concentration = DecayClock.concentration(self.source, self.isotope, at)
            proposal.required_volume_ml = DoseCalculator.required_volume(
                proposal.draw_activity, self.source, self.isotope, at
            )
        except DoseEngineError as e:
            proposal.errors.append(str(e))
        return proposal

    def confirm(self, patient_id: str, at: datetime,
                draw_activity: Optional[Activity] = None) -> WithdrawalRecord:
        return self.queue.confirm_withdrawal(patient_id, self.source, self.isotope, at,
                                             draw_activity=draw_activity)

    def screen(self, patient_id: str) -> SafetyVerdict:
        request = self.queue.get(patient_id)
        return SafetyGate.evaluate_for(self.isotope, request.blood_glucose_mg_dl)

    def history(self) -> Tuple[WithdrawalRecord, ...]:
        return self.ledger.records_for_source(self.source.id)
