"""
DoseFlow: Data Dictionary
=========================
Every value the dose engine reads or produces: units, reference data,
the vial being dispensed, queued patient requests and the audit records
written for each withdrawal.

NO DECAY MATH is implemented here. Validation only.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

from constants import VERSION, MBQ_PER_MCI, DoseUnit, ISOTOPE_LIBRARY

# --- 1. ERRORS ---

class DoseEngineError(Exception):
    """Base class for every failure the engine reports to its caller."""
    pass

class InvalidInput(DoseEngineError, ValueError):
    """Non-positive or non-finite weight, ratio, volume or activity."""
    pass

class NotEligible(InvalidInput):
    """A scheduled re-draw request was used before its countdown elapsed."""
    pass

class DepletedSource(DoseEngineError):
    """Remaining activity (or volume) is zero, so concentration is undefined."""
    pass

class InsufficientActivity(DoseEngineError):
    """The requested activity or volume exceeds what the source still holds."""
    pass

class SourceBusy(DoseEngineError):
    """Another withdrawal is being committed against the same source. Retry shortly."""
    pass

class ConfigurationError(DoseEngineError, ValueError):
    """Malformed isotope reference data, e.g. a non-positive half-life."""
    pass

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)

# --- 2. UNITS ---

@dataclass(frozen=True, eq=False)
class Activity:
    """
    A quantity of radioactivity with its unit attached.
    Arithmetic across units converts the right operand into the left one's unit.
    """
    amount: float
    unit: DoseUnit = DoseUnit.MBQ

    def __post_init__(self):
        if not _is_number(self.amount):
            raise InvalidInput(f"Activity amount must be numeric, got {type(self.amount)}")
        if not isinstance(self.unit, DoseUnit):
            raise InvalidInput(f"Unknown dose unit: {self.unit!r}")
        if not math.isfinite(self.amount):
            raise InvalidInput(f"Activity must be finite, got {self.amount}")
        if self.amount < 0:
            raise InvalidInput(f"Activity cannot be negative: {self.amount} {self.unit.value}")
        object.__setattr__(self, "amount", float(self.amount))

    @classmethod
    def zero(cls, unit: DoseUnit = DoseUnit.MBQ) -> "Activity":
        return cls(0.0, unit)

    @property
    def mbq(self) -> float:
        return self.amount * MBQ_PER_MCI if self.unit == DoseUnit.MCI else self.amount

    @property
    def is_zero(self) -> bool:
        return self.amount == 0.0

    def in_units(self, unit: DoseUnit) -> float:
        if unit == self.unit:
            return self.amount
        if unit == DoseUnit.MBQ:
            return self.amount * MBQ_PER_MCI
        return self.amount / MBQ_PER_MCI

    def to(self, unit: DoseUnit) -> "Activity":
        return Activity(self.in_units(unit), unit)

    def __add__(self, other: "Activity") -> "Activity":
        if not isinstance(other, Activity):
            return NotImplemented
        return Activity(self.amount + other.in_units(self.unit), self.unit)

    def __sub__(self, other: "Activity") -> "Activity":
        if not isinstance(other, Activity):
            return NotImplemented
        return Activity(self.amount - other.in_units(self.unit), self.unit)

    def __mul__(self, factor: float) -> "Activity":
        if not _is_number(factor):
            return NotImplemented
        return Activity(self.amount * factor, self.unit)

    __rmul__ = __mul__

    def __truediv__(self, divisor: float) -> "Activity":
        if not _is_number(divisor):
            return NotImplemented
        if divisor <= 0:
            raise InvalidInput(f"Cannot divide activity by {divisor}")
        return Activity(self.amount / divisor, self.unit)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Activity):
            return NotImplemented
        return self.mbq == other.mbq

    def __hash__(self) -> int:
        return hash(self.mbq)

    def __lt__(self, other: "Activity") -> bool:
        return self.mbq < other.mbq

    def __le__(self, other: "Activity") -> bool:
        return self.mbq <= other.mbq

    def __gt__(self, other: "Activity") -> bool:
        return self.mbq > other.mbq

    def __ge__(self, other: "Activity") -> bool:
        return self.mbq >= other.mbq

    def __str__(self) -> str:
        return f"{self.amount:.3f} {self.unit.value}"

# --- 3. REFERENCE DATA (read-only to the engine) ---

@dataclass(frozen=True)
class Isotope:
    id: str
    half_life_seconds: float
    dose_unit: DoseUnit = DoseUnit.MBQ
    common_procedures: Tuple[str, ...] = ()
    imaging_protocols: Mapping[str, str] = field(default_factory=dict)
    name: str = ""
    requires_glucose_check: bool = False
    parent_half_life_seconds: Optional[float] = None

    def __post_init__(self):
        if not _is_number(self.half_life_seconds):
            raise ConfigurationError(f"Isotope '{self.id}': half-life must be numeric")
        if not math.isfinite(self.half_life_seconds) or self.half_life_seconds <= 0:
            raise ConfigurationError(
                f"Isotope '{self.id}': half-life must be positive, got {self.half_life_seconds}"
            )
        if self.parent_half_life_seconds is not None:
            if not _is_number(self.parent_half_life_seconds) or self.parent_half_life_seconds <= 0:
                raise ConfigurationError(f"Isotope '{self.id}': parent half-life must be positive")

        # Ordered set: keep first occurrence
        procedures = tuple(dict.fromkeys(self.common_procedures))
        unknown = [p for p in self.imaging_protocols if p not in procedures]
        if unknown:
            raise ConfigurationError(
                f"Isotope '{self.id}': protocol notes for unlisted procedures {unknown}"
            )
        object.__setattr__(self, "common_procedures", procedures)
        object.__setattr__(self, "imaging_protocols", MappingProxyType(dict(self.imaging_protocols)))

    def protocol_note(self, procedure: str) -> Optional[str]:
        return self.imaging_protocols.get(procedure)

    @classmethod
    def from_library(cls, isotope_id: str) -> "Isotope":
        props = ISOTOPE_LIBRARY.SPECS.get(isotope_id)
        if props is None:
            raise ConfigurationError(f"Unknown isotope '{isotope_id}'")
        return cls(
            id=isotope_id,
            half_life_seconds=props.half_life_seconds,
            dose_unit=props.dose_unit,
            common_procedures=props.common_procedures,
            imaging_protocols=props.imaging_protocols,
            name=props.name,
            requires_glucose_check=props.requires_glucose_check,
            parent_half_life_seconds=props.parent_half_life_seconds,
        )

# --- 4. THE SOURCE (owned by the dispensing session) ---

@dataclass(frozen=True)
class WithdrawalRecord:
    """
    One line of the audit trail. Never mutated after creation.
    `concentration_at_draw` is the activity contained in one mL at the draw instant.
    """
    source_id: str
    drawn_activity: Activity
    drawn_volume_ml: float
    timestamp: datetime
    concentration_at_draw: Activity
    patient_id: Optional[str] = None
    procedure: Optional[str] = None
    record_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    model_version: str = VERSION

    @property
    def is_closure(self) -> bool:
        """True for 'scan completed' entries that removed no radiotracer."""
        return self.drawn_volume_ml == 0.0

@dataclass(frozen=True, eq=False)
class RadioactiveSource:
    """
    A calibrated vial. The (calibrated_activity, calibration_time) pair never
    changes; decay is recomputed on every query. Depletion lives in `history`,
    a read-only view of entries that only the WithdrawalLedger appends.
    """
    id: str
    isotope_id: str
    calibrated_activity: Activity
    calibration_time: datetime
    volume_ml: float
    label: str = ""
    _history: List[WithdrawalRecord] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self):
        if not isinstance(self.calibrated_activity, Activity):
            raise InvalidInput("calibrated_activity must be an Activity")
        if not isinstance(self.calibration_time, datetime):
            raise InvalidInput(f"calibration_time must be a datetime, got {type(self.calibration_time)}")
        if not _is_number(self.volume_ml):
            raise InvalidInput(f"volume_ml must be numeric, got {type(self.volume_ml)}")
        if not math.isfinite(self.volume_ml) or self.volume_ml <= 0:
            raise InvalidInput(f"Invalid source volume: {self.volume_ml} mL")

    @property
    def history(self) -> Tuple[WithdrawalRecord, ...]:
        return tuple(self._history)

    @property
    def last_withdrawal_at(self) -> Optional[datetime]:
        return self._history[-1].timestamp if self._history else None

# --- 5. QUEUE INPUTS ---

@dataclass
class AdditionalImaging:
    """Extra imaging pass requested after the first scan (a re-draw)."""
    region: str
    requested_at: Optional[datetime] = None
    scheduled_minutes: Optional[int] = None # None -> QUEUE_CONSTANTS.DEFAULT_SCHEDULED_MINUTES
    dose_needed: bool = True # False = imaging only, no new radiotracer

    def __post_init__(self):
        if self.requested_at is not None and not isinstance(self.requested_at, datetime):
            raise InvalidInput(f"requested_at must be a datetime, got {type(self.requested_at)}")
        if self.scheduled_minutes is not None:
            if not isinstance(self.scheduled_minutes, int) or isinstance(self.scheduled_minutes, bool):
                raise InvalidInput("scheduled_minutes must be a whole number of minutes")
            if self.scheduled_minutes < 0:
                raise InvalidInput(f"Invalid scheduled_minutes: {self.scheduled_minutes}")

@dataclass
class PatientDoseRequest:
    """
    A patient waiting for dose preparation.
    Only weight and glucose may change before the withdrawal is finalized.
    """
    patient_id: str
    patient_name: str
    weight_kg: float
    dose_ratio_per_kg: float # activity units per kg, in the source's unit
    procedure: str
    blood_glucose_mg_dl: Optional[int] = None
    additional_info: Optional[AdditionalImaging] = None

    def __post_init__(self):
        # 1. Type safety
        for name in ("weight_kg", "dose_ratio_per_kg"):
            val = getattr(self, name)
            if not _is_number(val):
                raise InvalidInput(f"Field '{name}' must be numeric, got {type(val)}")
        if self.blood_glucose_mg_dl is not None:
            if not isinstance(self.blood_glucose_mg_dl, int) or isinstance(self.blood_glucose_mg_dl, bool):
                raise InvalidInput("blood_glucose_mg_dl must be an integer reading")

        # 2. Range checks
        if not math.isfinite(self.weight_kg) or self.weight_kg <= 0:
            raise InvalidInput(f"Invalid weight: {self.weight_kg}")
        if not math.isfinite(self.dose_ratio_per_kg) or self.dose_ratio_per_kg <= 0:
            raise InvalidInput(f"Invalid dose ratio: {self.dose_ratio_per_kg}")
        if self.blood_glucose_mg_dl is not None and self.blood_glucose_mg_dl < 0:
            raise InvalidInput(f"Invalid blood glucose: {self.blood_glucose_mg_dl}")

    @property
    def is_scheduled(self) -> bool:
        return self.additional_info is not None and self.additional_info.requested_at is not None

    @property
    def dose_needed(self) -> bool:
        return self.additional_info is None or self.additional_info.dose_needed

# --- 6. OUTPUT LAYER ---

class VerdictLevel(Enum):
    CLEAR = "clear"
    CAUTION = "caution"
    CRITICAL = "critical"

@dataclass(frozen=True)
class SafetyVerdict:
    """Advisory annotation. Never an authorization."""
    level: VerdictLevel
    reason: Optional[str] = None

    @classmethod
    def clear(cls) -> "SafetyVerdict":
        return cls(VerdictLevel.CLEAR)

    @classmethod
    def caution(cls, reason: str) -> "SafetyVerdict":
        return cls(VerdictLevel.CAUTION, reason)

    @classmethod
    def critical(cls, reason: str) -> "SafetyVerdict":
        return cls(VerdictLevel.CRITICAL, reason)

    @property
    def is_clear(self) -> bool:
        return self.level == VerdictLevel.CLEAR

class RequestState(Enum):
    PENDING = "pending"
    PENDING_SCHEDULED = "pending_scheduled"
    ELIGIBLE = "eligible"
    SELECTED = "selected"
    WITHDRAWN = "withdrawn"

@dataclass(frozen=True)
class Countdown:
    remaining_ms: int
    label: str

    @property
    def is_eligible(self) -> bool:
        return self.remaining_ms == 0

@dataclass(frozen=True)
class PendingEntry:
    """One row of the pending list, as shown to the dispensing technician."""
    request: PatientDoseRequest
    state: RequestState
    countdown: Optional[Countdown] = None

@dataclass
class DoseProposal:
    """Standardized response format for the UI: everything needed before confirming."""
    patient_id: str
    dose_needed: bool
    verdict: SafetyVerdict
    recommended_dose: Optional[Activity] = None
    draw_activity: Optional[Activity] = None
    required_volume_ml: Optional[float] = None
    concentration: Optional[Activity] = None # per mL
    protocol_note: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def can_confirm(self) -> bool:
        return not self.errors
