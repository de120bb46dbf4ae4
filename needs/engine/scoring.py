"""
Score Aggregator

Reduces the structured signals of one need inside the trailing evaluation
window into five pressure scores and the boolean predicates guardrails use.

Each classification contributes delta = confidence x source weight. Deltas of
one dimension combine as a noisy-OR, 1 - prod(1 - delta), so independent
corroborating reports push a score towards 1 without ever exceeding it.
Bottleneck classifications carry no score; their notes become operational
requirements.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List

from ..common.config import EngineConfig
from ..common.llm_utils import clamp01
from ..common.schemas.need_records import (
    ClassificationType,
    CoverageKind,
    EvidenceItem,
    PressureScores,
    SignalFlags,
    SourceReliability,
    StructuredSignal,
    as_utc,
)
from .ingest import compute_window_id, window_index

TOP_EVIDENCE_LIMIT = 10

_DIMENSIONS = {
    ClassificationType.DEMAND_INCREASE: "demand",
    ClassificationType.INSUFFICIENCY: "insufficiency",
    ClassificationType.STABILIZATION: "stabilization",
    ClassificationType.FRAGILITY_ALERT: "fragility",
    ClassificationType.COVERAGE_ACTIVITY: "coverage",
}


def noisy_or(deltas: Iterable[float]) -> float:
    remaining = 1.0
    for delta in deltas:
        remaining *= 1.0 - clamp01(delta)
    return clamp01(1.0 - remaining)


@dataclass
class ScoreAggregation:
    """Everything the evaluator and guardrails learn from one window"""
    scores: PressureScores
    flags: SignalFlags
    window_id: str
    stabilization_consecutive_windows: int = 0
    fresh_fragility: bool = False
    fresh_augmentation: bool = False
    fragility_notes: List[str] = field(default_factory=list)
    bottleneck_notes: List[str] = field(default_factory=list)
    top_evidence: List[EvidenceItem] = field(default_factory=list)
    evidence_refs: List[str] = field(default_factory=list)


class ScoreAggregator:
    """Turns a window of signals into pressure scores and strong flags"""

    def __init__(self, config: EngineConfig):
        self.config = config

    def window_bounds(self, now: datetime):
        now = as_utc(now)
        return now - timedelta(hours=self.config.rolling_window_hours), now

    def source_weight(self, reliability: SourceReliability) -> float:
        return float(self.config.source_weights.get(SourceReliability(reliability).value, 0.0))

    def flags_for(self, scores: PressureScores) -> SignalFlags:
        cfg = self.config
        return SignalFlags(
            demand_strong=scores.demand >= cfg.demand_strong_threshold,
            insufficiency_strong=scores.insufficiency >= cfg.insufficiency_strong_threshold,
            stabilization_strong=scores.stabilization >= cfg.stabilization_strong_threshold,
            fragility_alert=scores.fragility >= cfg.fragility_alert_threshold,
            coverage_active=scores.coverage >= cfg.coverage_active_threshold,
        )

    def aggregate(self, signals: List[StructuredSignal], now: datetime) -> ScoreAggregation:
        cfg = self.config
        start, now = self.window_bounds(now)
        current_window = window_index(now, cfg.window_minutes)

        deltas: Dict[str, List[float]] = {name: [] for name in _DIMENSIONS.values()}
        stabilization_by_window: Dict[int, List[float]] = {}
        disqualified_windows = set()
        evidence: List[EvidenceItem] = []
        evidence_refs: List[str] = []
        fragility_notes: List[str] = []
        bottleneck_notes: List[str] = []
        fresh_fragility = False
        fresh_augmentation = False

        for signal in signals:
            ts = as_utc(signal.timestamp)
            if ts < start or ts > now:
                continue

            weight = self.source_weight(signal.source.reliability)
            signal_window = window_index(ts, cfg.window_minutes)
            is_fresh = signal_window == current_window
            if signal.raw_input_id not in evidence_refs:
                evidence_refs.append(signal.raw_input_id)

            for c in signal.classifications:
                delta = clamp01(c.confidence) * weight
                evidence.append(
                    EvidenceItem(
                        raw_input_id=signal.raw_input_id,
                        type=c.type,
                        delta=round(delta, 4),
                        timestamp=ts,
                        reliability=signal.source.reliability,
                        short_quote=c.short_quote,
                        note=c.note,
                        coverage_kind=c.coverage_kind,
                    )
                )

                dimension = _DIMENSIONS.get(c.type)
                if dimension:
                    deltas[dimension].append(delta)

                if c.type == ClassificationType.STABILIZATION:
                    stabilization_by_window.setdefault(signal_window, []).append(delta)
                else:
                    disqualified_windows.add(signal_window)

                if c.type == ClassificationType.FRAGILITY_ALERT:
                    fresh_fragility = fresh_fragility or (is_fresh and delta > 0)
                    if c.note:
                        fragility_notes.append(c.note)
                elif c.type == ClassificationType.COVERAGE_ACTIVITY:
                    if c.coverage_kind == CoverageKind.AUGMENTATION and is_fresh and delta > 0:
                        fresh_augmentation = True
                elif c.type == ClassificationType.BOTTLENECK and c.note:
                    bottleneck_notes.append(c.note)

        scores = PressureScores(**{name: round(noisy_or(values), 4) for name, values in deltas.items()})

        consecutive = 0
        cursor = current_window
        while (
            cursor in stabilization_by_window
            and cursor not in disqualified_windows
            and noisy_or(stabilization_by_window.get(cursor, [])) >= cfg.stabilization_window_threshold
        ):
            consecutive += 1
            cursor -= 1

        evidence.sort(key=lambda e: e.delta, reverse=True)

        return ScoreAggregation(
            scores=scores,
            flags=self.flags_for(scores),
            window_id=compute_window_id(now, cfg.window_minutes),
            stabilization_consecutive_windows=consecutive,
            fresh_fragility=fresh_fragility,
            fresh_augmentation=fresh_augmentation,
            fragility_notes=fragility_notes,
            bottleneck_notes=bottleneck_notes,
            top_evidence=evidence[:TOP_EVIDENCE_LIMIT],
            evidence_refs=evidence_refs,
        )
