"""
Need Status Engine - per-report decision pipeline

Key Components:
- RawInputStore: deduplicating ingestion
- NeedExtractor: pluggable text -> classifications (rule-based, LLM)
- ScoreAggregator: classifications -> pressure scores and strong flags
- NeedEvaluator: pluggable status proposal (rule-based, LLM)
- Transition validator and guardrail pipeline
- NeedsRepository: storage contract (in-memory, JSON file)

Rules for the engine:
1. A duplicate report is a no-op
2. Nothing is written before every validation step succeeds
3. Status only moves along the legal transition graph
4. Every evaluation leaves exactly one audit entry
5. A slow extractor or evaluator is a failure, not a fallback
"""

from .audit import build_reasoning_summary, format_audit_entry
from .evaluator import LLMEvaluator, NeedEvaluator, RuleBasedEvaluator
from .extractor import LLMExtractor, NeedExtractor, RuleBasedExtractor
from .guardrails import GUARDRAIL_PIPELINE, GuardrailContext, run_guardrails
from .ingest import IngestResult, RawInputStore, compute_dedupe_hash, compute_window_id
from .locks import KeyedLocks
from .repository import InMemoryNeedsRepository, JsonFileNeedsRepository, NeedsRepository
from .scoring import ScoreAggregation, ScoreAggregator
from .state_engine import NeedStatusEngine, ProcessResult
from .transitions import LEGAL_TRANSITIONS, allowed_targets, is_legal

__all__ = [
    "build_reasoning_summary",
    "format_audit_entry",
    "LLMEvaluator",
    "NeedEvaluator",
    "RuleBasedEvaluator",
    "LLMExtractor",
    "NeedExtractor",
    "RuleBasedExtractor",
    "GUARDRAIL_PIPELINE",
    "GuardrailContext",
    "run_guardrails",
    "IngestResult",
    "RawInputStore",
    "compute_dedupe_hash",
    "compute_window_id",
    "KeyedLocks",
    "InMemoryNeedsRepository",
    "JsonFileNeedsRepository",
    "NeedsRepository",
    "ScoreAggregation",
    "ScoreAggregator",
    "NeedStatusEngine",
    "ProcessResult",
    "LEGAL_TRANSITIONS",
    "allowed_targets",
    "is_legal",
]
