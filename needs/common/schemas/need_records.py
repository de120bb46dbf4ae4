"""
Need Record Schemas v1

Records that flow through the per-report pipeline: raw inputs, structured
signals, the current state of a need, evaluator proposals and audit entries.

Core principle: the audit trail must be able to reconstruct every status
change, so every record that reaches storage is plain data.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# Enums
# ============================================================================

class NeedStatus(str, Enum):
    """Governed severity status of a need"""
    WHITE = "WHITE"    # monitoring, weak evidence
    RED = "RED"        # critical, no coverage
    ORANGE = "ORANGE"  # coverage present but insufficient
    YELLOW = "YELLOW"  # coverage active, unvalidated
    GREEN = "GREEN"    # stabilized over multiple windows

    @property
    def severity(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    NeedStatus.WHITE: 0,
    NeedStatus.GREEN: 1,
    NeedStatus.YELLOW: 2,
    NeedStatus.ORANGE: 3,
    NeedStatus.RED: 4,
}


class ClassificationType(str, Enum):
    """Closed vocabulary of evidence classifications"""
    DEMAND_INCREASE = "SIGNAL_DEMAND_INCREASE"
    INSUFFICIENCY = "SIGNAL_INSUFFICIENCY"
    STABILIZATION = "SIGNAL_STABILIZATION"
    FRAGILITY_ALERT = "SIGNAL_FRAGILITY_ALERT"
    COVERAGE_ACTIVITY = "SIGNAL_COVERAGE_ACTIVITY"
    BOTTLENECK = "SIGNAL_BOTTLENECK"

    @property
    def label(self) -> str:
        """'SIGNAL_DEMAND_INCREASE' -> 'Demand increase'"""
        return self.value.replace("SIGNAL_", "").replace("_", " ").capitalize()


class CoverageKind(str, Enum):
    """Baseline = existing resources confirmed; augmentation = new resources committed"""
    BASELINE = "baseline"
    AUGMENTATION = "augmentation"


class SourceType(str, Enum):
    """Where a raw report came from"""
    TWITTER = "twitter"
    INSTITUTIONAL = "institutional"
    NGO = "ngo"
    FIELD_REPORT = "field_report"
    ORIGINAL_CONTEXT = "original_context"


class SourceReliability(str, Enum):
    """Reliability tier used to weight evidence"""
    INSTITUTIONAL = "institutional"
    NGO = "ngo"
    SOCIAL_NEWS = "social_news"
    ORIGINAL_CONTEXT = "original_context"


SOURCE_TYPE_RELIABILITY = {
    SourceType.TWITTER: SourceReliability.SOCIAL_NEWS,
    SourceType.INSTITUTIONAL: SourceReliability.INSTITUTIONAL,
    SourceType.NGO: SourceReliability.NGO,
    SourceType.FIELD_REPORT: SourceReliability.NGO,
    SourceType.ORIGINAL_CONTEXT: SourceReliability.ORIGINAL_CONTEXT,
}


# ============================================================================
# Ingestion
# ============================================================================

class RawReport(BaseModel):
    """An inbound report before deduplication"""
    source_type: SourceType
    source_name: str
    timestamp: datetime
    text: str
    geo_hint: Optional[str] = None


class RawInput(BaseModel):
    """Immutable record of one ingested report"""
    model_config = ConfigDict(frozen=True)

    id: str
    source_type: SourceType
    source_name: str
    timestamp: datetime
    text: str
    dedupe_hash: str
    geo_hint: Optional[str] = None


class SectorRef(BaseModel):
    sector_id: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0, default=0.0)


class CapabilityRef(BaseModel):
    capability_id: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0, default=0.0)


class SignalSource(BaseModel):
    reliability: SourceReliability


class SignalClassification(BaseModel):
    """One classified piece of evidence inside a signal"""
    type: ClassificationType
    confidence: float = Field(ge=0.0, le=1.0)
    short_quote: str = ""
    note: Optional[str] = None
    coverage_kind: Optional[CoverageKind] = None


class ExtractedSignal(BaseModel):
    """Extractor output, not yet bound to a raw input"""
    sector_ref: SectorRef = Field(default_factory=SectorRef)
    capability_ref: CapabilityRef = Field(default_factory=CapabilityRef)
    source: SignalSource
    classifications: List[SignalClassification] = Field(default_factory=list)
    timestamp: Optional[datetime] = None


class StructuredSignal(BaseModel):
    """Extraction output bound to the raw input it came from"""
    id: str
    raw_input_id: str
    sector_ref: SectorRef
    capability_ref: CapabilityRef
    source: SignalSource
    classifications: List[SignalClassification] = Field(min_length=1)
    timestamp: datetime
    unresolved: bool = False

    @property
    def need_key(self) -> Optional[tuple]:
        if self.unresolved:
            return None
        return (self.sector_ref.sector_id, self.capability_ref.capability_id)


# ============================================================================
# Scores and state
# ============================================================================

class PressureScores(BaseModel):
    """Five pressure dimensions, each in [0, 1]"""
    demand: float = Field(ge=0.0, le=1.0, default=0.0)
    insufficiency: float = Field(ge=0.0, le=1.0, default=0.0)
    stabilization: float = Field(ge=0.0, le=1.0, default=0.0)
    fragility: float = Field(ge=0.0, le=1.0, default=0.0)
    coverage: float = Field(ge=0.0, le=1.0, default=0.0)


class SignalFlags(BaseModel):
    """Boolean predicates derived by thresholding pressure scores"""
    demand_strong: bool = False
    insufficiency_strong: bool = False
    stabilization_strong: bool = False
    fragility_alert: bool = False
    coverage_active: bool = False


class NeedState(BaseModel):
    """Current status of one (sector, capability) need"""
    schema_version: str = Field(default="1.0")
    sector_id: str
    capability_id: str
    current_status: NeedStatus = NeedStatus.WHITE
    scores: PressureScores = Field(default_factory=PressureScores)
    stabilization_consecutive_windows: int = 0
    last_window_id: Optional[str] = None
    operational_requirements: List[str] = Field(default_factory=list)
    fragility_notes: List[str] = Field(default_factory=list)
    last_updated_at: datetime = Field(default_factory=utcnow)
    last_status_change_at: Optional[datetime] = None


class EvidenceItem(BaseModel):
    """One weighted classification shown to the evaluator"""
    raw_input_id: str
    type: ClassificationType
    delta: float
    timestamp: datetime
    reliability: SourceReliability
    short_quote: str = ""
    note: Optional[str] = None
    coverage_kind: Optional[CoverageKind] = None


class NeedHistory(BaseModel):
    """What the evaluator may know about a need besides its scores"""
    sector_id: str
    capability_id: str
    previous_status: NeedStatus
    has_prior_state: bool
    stabilization_consecutive_windows: int = 0
    window_id: str
    last_status_change_at: Optional[datetime] = None
    allowed_transitions: List[NeedStatus] = Field(default_factory=list)
    top_evidence: List[EvidenceItem] = Field(default_factory=list)


class EvaluatorOutput(BaseModel):
    """A status proposal from an evaluator"""
    proposed_status: NeedStatus
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning_summary: str = ""
    contradiction_detected: bool = False
    key_evidence: List[str] = Field(default_factory=list)
    augmentation_commitment_detected: Optional[bool] = None


# ============================================================================
# Audit
# ============================================================================

class AuditEntry(BaseModel):
    """Append-only record of one evaluation attempt"""
    model_config = ConfigDict(frozen=True)

    schema_version: str = Field(default="1.0")
    id: str
    sector_id: str
    capability_id: str
    timestamp: datetime
    previous_status: NeedStatus
    proposed_status: NeedStatus
    final_status: NeedStatus
    evaluator_confidence: float
    legal_transition: bool
    illegal_transition_reason: Optional[str] = None
    guardrails_applied: List[str] = Field(default_factory=list)
    reasoning_summary: str = ""
    contradiction_detected: bool = False
    key_evidence: List[str] = Field(default_factory=list)
    evidence_refs: List[str] = Field(default_factory=list, description="Raw input ids in the window")
    scores_snapshot: PressureScores
    flags_snapshot: SignalFlags
    stabilization_consecutive_windows: int = 0
    evaluator_model: str = ""


def generate_id(prefix: str) -> str:
    """Generate a unique record ID such as raw_3f9c0a1b2d4e"""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"
