# safety.py
import logging
from typing import Optional

from models import Isotope, SafetyVerdict, InvalidInput
from constants import GLUCOSE_THRESHOLDS

logger = logging.getLogger("doseflow-safety")

class SafetyGate:
    """
    Pre-injection metabolic screening.

    ADVISORY ONLY. The verdict annotates the withdrawal decision for the
    surrounding workflow; it is not an interlock. A Critical verdict does not
    stop the calculator or the ledger from completing a withdrawal.
    """

    @staticmethod
    def requires_glucose_check(isotope: Isotope) -> bool:
        return isotope.requires_glucose_check

    @staticmethod
    def evaluate(procedure_requires_glucose_check: bool,
                 blood_glucose_mg_dl: Optional[int]) -> SafetyVerdict:
        if not procedure_requires_glucose_check:
            return SafetyVerdict.clear()

        if blood_glucose_mg_dl is None:
            verdict = SafetyVerdict.caution("missing reading")
        elif isinstance(blood_glucose_mg_dl, bool) or not isinstance(blood_glucose_mg_dl, int):
            raise InvalidInput(f"Blood glucose must be an integer, got {type(blood_glucose_mg_dl)}")
        elif blood_glucose_mg_dl < 0:
            raise InvalidInput(f"Invalid blood glucose: {blood_glucose_mg_dl}")
        elif blood_glucose_mg_dl > GLUCOSE_THRESHOLDS.CRITICAL_ABOVE:
            # Hyperglycemia competes with FDG uptake
            verdict = SafetyVerdict.critical(
                f"blood glucose {blood_glucose_mg_dl} mg/dL > {GLUCOSE_THRESHOLDS.CRITICAL_ABOVE}"
            )
        elif blood_glucose_mg_dl >= GLUCOSE_THRESHOLDS.CAUTION_FROM:
            verdict = SafetyVerdict.caution(
                f"blood glucose {blood_glucose_mg_dl} mg/dL in "
                f"{GLUCOSE_THRESHOLDS.CAUTION_FROM}-{GLUCOSE_THRESHOLDS.CRITICAL_ABOVE}"
            )
        else:
            return SafetyVerdict.clear()

        logger.warning(f"Glucose screen {verdict.level.value}: {verdict.reason}")
        return verdict

    @staticmethod
    def evaluate_for(isotope: Isotope, blood_glucose_mg_dl: Optional[int]) -> SafetyVerdict:
        return SafetyGate.evaluate(SafetyGate.requires_glucose_check(isotope), blood_glucose_mg_dl)
