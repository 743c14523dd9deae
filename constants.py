from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

VERSION = "1.0.0"

class DoseUnit(Enum):
    MBQ = "MBq"
    MCI = "mCi"

# 1 mCi = 37 MBq
MBQ_PER_MCI = 37.0

# Alert when remaining stock drops to this many mCi
LOW_STOCK_THRESHOLD_MCI = 5.0

class DECAY_CONSTANTS:
    SECONDS_PER_MINUTE = 60.0
    SECONDS_PER_HOUR = 3600.0
    # Remaining activity within ZERO_TOLERANCE * A(t) of zero is float noise
    ZERO_TOLERANCE = 1e-9

class GLUCOSE_THRESHOLDS:
    """Blood glucose limits (mg/dL) for metabolic PET tracers."""
    CAUTION_FROM = 150   # 150..200 inclusive -> Caution
    CRITICAL_ABOVE = 200 # >200 -> Critical

class QUEUE_CONSTANTS:
    DEFAULT_SCHEDULED_MINUTES = 60
    MS_PER_MINUTE = 60000
    ELIGIBLE_LABEL = "eligible now"

@dataclass(frozen=True)
class IsotopeProperties:
    name: str
    symbol: str
    half_life_seconds: float
    dose_unit: DoseUnit = DoseUnit.MCI
    common_procedures: Tuple[str, ...] = ()
    imaging_protocols: Dict[str, str] = field(default_factory=dict)

    # FDG-style tracers compete with blood glucose for uptake
    requires_glucose_check: bool = False

    # Generator-produced isotopes (Tc-99m from Mo-99)
    parent_symbol: Optional[str] = None
    parent_half_life_seconds: Optional[float] = None

def _hours(h: float) -> float:
    return h * DECAY_CONSTANTS.SECONDS_PER_HOUR

class ISOTOPE_LIBRARY:
    """
    The isotope reference catalog.
    Half-lives are kept in seconds so the decay clock never mixes units.
    """
    SPECS = {
        "f18": IsotopeProperties(
            name="Fluorine-18 (FDG)", symbol="18F",
            half_life_seconds=_hours(1.8295), # 109.77 min
            common_procedures=(
                "PET/CT Whole Body (Oncology)",
                "PET/CT Brain (Metabolic)",
                "PET/CT Myocardial Viability",
                "F-18 NaF PET/CT (Bone)",
                "F-18 PSMA PET/CT (Prostate)",
            ),
            imaging_protocols={
                "PET/CT Whole Body (Oncology)": "Fast at least 6 h. Blood glucose must be <200 mg/dL. Rest 60 min in a quiet, dim room after injection.",
                "PET/CT Brain (Metabolic)": "Fast 4-6 h, no caffeine. Rest 30-45 min before a 10-15 min static acquisition.",
                "PET/CT Myocardial Viability": "Glucose loading with insulin clamp, keep glucose 100-140 mg/dL. Wait 60-90 min.",
            },
            requires_glucose_check=True,
        ),
        "tc99m": IsotopeProperties(
            name="Technetium-99m", symbol="99mTc",
            half_life_seconds=_hours(6.0067),
            common_procedures=(
                "Bone Scan (Whole Body)",
                "Bone Scan (3-Phase)",
                "Myocardial Perfusion (Sestamibi-Stress)",
                "Myocardial Perfusion (Sestamibi-Rest)",
                "Thyroid Scan",
                "Renal Scan (MAG3)",
                "Lung Perfusion Scan",
                "Sentinel Lymph Node Localization",
            ),
            imaging_protocols={
                "Bone Scan (Whole Body)": "Hydrate well. Image 2-4 h after injection with an empty bladder.",
                "Bone Scan (3-Phase)": "Dynamic flow at injection, blood pool at 5-10 min, delayed images at 2-4 h.",
            },
            parent_symbol="99Mo",
            parent_half_life_seconds=_hours(66.02),
        ),
        "ga68": IsotopeProperties(
            name="Gallium-68", symbol="68Ga",
            half_life_seconds=_hours(1.1285), # 67.7 min
            common_procedures=(
                "Ga-68 PSMA PET/CT (Prostate)",
                "Ga-68 DOTATATE PET/CT (Neuroendocrine)",
                "Ga-68 FAPI PET/CT",
            ),
            imaging_protocols={
                "Ga-68 PSMA PET/CT (Prostate)": "No fasting required. Hydrate. Image 60 min after injection.",
                "Ga-68 DOTATATE PET/CT (Neuroendocrine)": "Stop somatostatin analogues beforehand. Image at 45-60 min.",
            },
            requires_glucose_check=True,
        ),
        "i131": IsotopeProperties(
            name="Iodine-131", symbol="131I",
            half_life_seconds=_hours(192.48), # ~8.02 days
            common_procedures=(
                "Thyroid Uptake Test",
                "Whole Body Scan (Diagnostic)",
                "Hyperthyroidism Therapy",
                "Thyroid Cancer Ablation",
            ),
            imaging_protocols={
                "Thyroid Uptake Test": "Measure at 45 min-1 h and 24 h. Iodine restriction required.",
            },
        ),
        "lu177": IsotopeProperties(
            name="Lutetium-177", symbol="177Lu",
            half_life_seconds=_hours(159.528), # ~6.647 days
            common_procedures=(
                "Lu-177 PSMA Therapy",
                "Lu-177 DOTATATE Therapy",
            ),
            imaging_protocols={
                "Lu-177 DOTATATE Therapy": "Co-infuse amino acids for renal protection. Post-therapy scan at 24-48 h.",
            },
        ),
    }

    @staticmethod
    def ids() -> Tuple[str, ...]:
        return tuple(ISOTOPE_LIBRARY.SPECS.keys())
