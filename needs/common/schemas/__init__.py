"""
Need Engine Schemas

Versioned records for the per-report pipeline, the tweet aggregator and the
sector aggregator.
"""

from .need_records import (
    NeedStatus,
    ClassificationType,
    CoverageKind,
    SourceType,
    SourceReliability,
    SOURCE_TYPE_RELIABILITY,
    RawReport,
    RawInput,
    SectorRef,
    CapabilityRef,
    SignalSource,
    SignalClassification,
    ExtractedSignal,
    StructuredSignal,
    PressureScores,
    SignalFlags,
    NeedState,
    EvidenceItem,
    NeedHistory,
    EvaluatorOutput,
    AuditEntry,
    as_utc,
    utcnow,
    generate_id,
)
from .tweet_signals import (
    Tweet,
    UpstreamClassification,
    SupportingQuote,
    AggregatedClassification,
    KeyEvidence,
    AggregatedTweetSignal,
)
from .sector_severity import (
    CriticalityLevel,
    SectorNeedInput,
    SectorNeedContribution,
    SectorSeverityResult,
)

__all__ = [
    "NeedStatus",
    "ClassificationType",
    "CoverageKind",
    "SourceType",
    "SourceReliability",
    "SOURCE_TYPE_RELIABILITY",
    "RawReport",
    "RawInput",
    "SectorRef",
    "CapabilityRef",
    "SignalSource",
    "SignalClassification",
    "ExtractedSignal",
    "StructuredSignal",
    "PressureScores",
    "SignalFlags",
    "NeedState",
    "EvidenceItem",
    "NeedHistory",
    "EvaluatorOutput",
    "AuditEntry",
    "as_utc",
    "utcnow",
    "generate_id",
    "Tweet",
    "UpstreamClassification",
    "SupportingQuote",
    "AggregatedClassification",
    "KeyEvidence",
    "AggregatedTweetSignal",
    "CriticalityLevel",
    "SectorNeedInput",
    "SectorNeedContribution",
    "SectorSeverityResult",
]
