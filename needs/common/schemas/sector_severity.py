"""
Sector Severity Schemas v1

Per-need inputs to the sector aggregator and the composite result.
"""

from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from .need_records import NeedStatus


class CriticalityLevel(str, Enum):
    """How bad an unmet need is, highest first"""
    LIFE_THREATENING = "life_threatening"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def is_high_or_above(self) -> bool:
        return self in (CriticalityLevel.LIFE_THREATENING, CriticalityLevel.HIGH)


class SectorNeedInput(BaseModel):
    need_id: str
    need_status: NeedStatus
    criticality_level: CriticalityLevel
    population_weight: float = Field(default=1.0, ge=0.0)
    fragility_alert: bool = False


class SectorNeedContribution(BaseModel):
    need_id: str
    need_status: NeedStatus
    criticality_level: CriticalityLevel
    population_weight: float
    effective_severity: float
    contribution: float
    fragility_alert: bool


class SectorSeverityResult(BaseModel):
    """Composite severity for one sector"""
    schema_version: str = Field(default="1.0")
    status: NeedStatus
    score: float
    score_base: float
    uncertainty_share: float
    fragility_share: float
    high_uncertainty: bool
    override_reasons: List[str] = Field(default_factory=list)
    top_contributors: List[SectorNeedContribution] = Field(default_factory=list)
