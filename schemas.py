# schemas.py
"""
Boundary contracts for the external collaborators: the patient queue store
and the isotope/stock catalog. Both hand us camelCase JSON-ish records; these
schemas validate them and convert them into engine dataclasses.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from models import (
    AdditionalImaging,
    Isotope,
    PatientDoseRequest,
    ConfigurationError,
    InvalidInput,
)
from constants import DoseUnit, DECAY_CONSTANTS

logger = logging.getLogger("doseflow-schemas")

# --- 1. PATIENT QUEUE STORE ---

class AdditionalImagingSchema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    region: str = Field(..., min_length=1, description="Body region for the extra pass")
    requested_at: Optional[datetime] = None
    scheduled_minutes: Optional[int] = Field(None, ge=0, le=24 * 60)
    dose_needed: bool = True

class PendingPatientRecord(BaseModel):
    """A pending patient as supplied by the queue store."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "example": {
                "id": "p-104", "name": "Jane Doe", "protocolNo": "2024-1187",
                "procedure": "PET/CT Whole Body (Oncology)", "weight": 72.5,
                "appointmentTime": "09:30", "bloodGlucose": 104,
            }
        },
    )

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    protocol_no: Optional[str] = None
    procedure: Optional[str] = None
    weight_kg: Optional[float] = Field(None, gt=0, le=400, alias="weight")
    blood_glucose_mg_dl: Optional[int] = Field(None, ge=0, le=1500, alias="bloodGlucose")
    appointment_time: Optional[str] = None
    appointment_date: Optional[str] = None
    additional_info: Optional[AdditionalImagingSchema] = None

    def to_request(self, dose_ratio_per_kg: float, default_procedure: str,
                   weight_kg: Optional[float] = None) -> PatientDoseRequest:
        weight = weight_kg if weight_kg is not None else self.weight_kg
        if weight is None:
            raise InvalidInput(f"Patient '{self.id}' has no weight on record")

        additional = None
        if self.additional_info is not None:
            info = self.additional_info
            additional = AdditionalImaging(
                region=info.region,
                requested_at=info.requested_at,
                scheduled_minutes=info.scheduled_minutes,
                dose_needed=info.dose_needed,
            )

        return PatientDoseRequest(
            patient_id=self.id,
            patient_name=self.name,
            weight_kg=weight,
            dose_ratio_per_kg=dose_ratio_per_kg,
            procedure=self.procedure or default_procedure,
            blood_glucose_mg_dl=self.blood_glucose_mg_dl,
            additional_info=additional,
        )

def load_pending_patient(data: dict) -> PendingPatientRecord:
    try:
        return PendingPatientRecord.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Rejected pending patient record: {e.error_count()} error(s)")
        raise InvalidInput(f"Malformed pending patient record: {e}") from e

# --- 2. ISOTOPE / STOCK CATALOG ---

class IsotopeDefinition(BaseModel):
    """Catalog rows keep half-lives in hours; the engine wants seconds."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    name: str = ""
    half_life_hours: float
    dose_unit: DoseUnit = DoseUnit.MCI
    common_procedures: List[str] = Field(default_factory=list)
    imaging_protocols: Dict[str, str] = Field(default_factory=dict)
    requires_glucose_check: bool = False
    parent_half_life_hours: Optional[float] = None

    def to_isotope(self) -> Isotope:
        parent = None
        if self.parent_half_life_hours is not None:
            parent = self.parent_half_life_hours * DECAY_CONSTANTS.SECONDS_PER_HOUR
        return Isotope(
            id=self.id,
            name=self.name,
            half_life_seconds=self.half_life_hours * DECAY_CONSTANTS.SECONDS_PER_HOUR,
            dose_unit=self.dose_unit,
            common_procedures=tuple(self.common_procedures),
            imaging_protocols=self.imaging_protocols,
            requires_glucose_check=self.requires_glucose_check,
            parent_half_life_seconds=parent,
        )

def load_isotope(data: dict) -> Isotope:
    """Validate a catalog row. Any defect is a ConfigurationError."""
    try:
        definition = IsotopeDefinition.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Malformed isotope definition: {e}") from e
    return definition.to_isotope()
