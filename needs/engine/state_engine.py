"""
Need Status Engine

Per-report pipeline:

    raw report -> dedup -> extraction -> structured signal
               -> score aggregation -> evaluator proposal
               -> legality check -> guardrails -> legality re-check
               -> NeedState + AuditEntry (one atomic commit)

Evaluations of the same (sector, capability) are serialized from the read
of the current state to the commit. Extractor and evaluator calls are
bounded by a timeout; a timeout is a failure, never a silent fallback.
A timed-out call cannot be interrupted: it keeps its worker thread until it
returns, so max_workers hung calls leave every later call queued until it
times out too. stalled_calls reports how many workers are held that way.
Nothing is written to NeedState until every step has succeeded.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from ..common.config import EngineConfig
from ..common.errors import (
    EvaluationError,
    ExtractionError,
    IllegalTransitionError,
    NeedEngineError,
    RepositoryError,
)
from ..common.schemas.need_records import (
    AuditEntry,
    EvaluatorOutput,
    ExtractedSignal,
    NeedHistory,
    NeedState,
    NeedStatus,
    RawInput,
    RawReport,
    StructuredSignal,
    as_utc,
    generate_id,
    utcnow,
)
from .audit import build_reasoning_summary
from .evaluator import NeedEvaluator
from .extractor import NeedExtractor
from .guardrails import (
    TRANSITION_CLAMPED,
    TRANSITION_LEGALITY_BLOCK,
    GuardrailContext,
    run_guardrails,
)
from .ingest import RawInputStore
from .locks import KeyedLocks
from .repository import NeedsRepository
from .scoring import ScoreAggregation, ScoreAggregator
from .transitions import allowed_targets, is_legal, require_legal

logger = logging.getLogger("needs.engine.state_engine")


@dataclass
class ProcessResult:
    """Outcome of process_raw_input"""
    deduped: bool
    raw_input: RawInput
    signal: Optional[StructuredSignal] = None
    need_state: Optional[NeedState] = None
    audit_entry: Optional[AuditEntry] = None
    skipped_reason: Optional[str] = None  # "no_classifications" | "unresolved"


@dataclass
class Decision:
    """Final status and how it was reached"""
    final_status: NeedStatus
    guardrails_applied: List[str]
    legal_transition: bool
    illegal_transition_reason: Optional[str] = None


def _merge_notes(existing: List[str], new: List[str], limit: int) -> List[str]:
    merged: List[str] = []
    for note in [*existing, *new]:
        note = note.strip()
        if note and note not in merged:
            merged.append(note)
    return merged[-limit:] if limit > 0 else []


class NeedStatusEngine:
    """
    Turns raw reports into governed need statuses.

    The extractor and evaluator are pluggable; the transition graph and the
    guardrail pipeline are not.
    """

    def __init__(
        self,
        repository: NeedsRepository,
        extractor: NeedExtractor,
        evaluator: NeedEvaluator,
        config: Optional[EngineConfig] = None,
        locks: Optional[KeyedLocks] = None,
        max_workers: int = 8,
    ):
        self.repository = repository
        self.extractor = extractor
        self.evaluator = evaluator
        self.config = config or EngineConfig()
        self.locks = locks or KeyedLocks()
        self.store = RawInputStore(repository)
        self.aggregator = ScoreAggregator(self.config)
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="needs-call")
        self._stalled = set()
        self._stalled_lock = threading.Lock()

    @property
    def stalled_calls(self) -> int:
        """Timed-out calls still occupying a worker thread"""
        with self._stalled_lock:
            return len(self._stalled)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def process_raw_input(self, report: RawReport, now: Optional[datetime] = None) -> ProcessResult:
        """
        Ingest one report and, if it resolves to a need, re-evaluate that need.

        Args:
            report: Inbound report
            now: Evaluation time (default: the report timestamp)

        Returns:
            ProcessResult; deduped submissions return the original raw input
            and do nothing else.

        Raises:
            ExtractionError, EvaluationError, RepositoryError
        """
        ingest = self._guard_repository(lambda: self.store.ingest(report))
        raw = ingest.raw_input
        if ingest.deduped:
            return ProcessResult(deduped=True, raw_input=raw)

        extracted = self._call_bounded(
            self.extractor.extract,
            (raw.source_type, raw.source_name, raw.timestamp, raw.text),
            ExtractionError,
            "Extractor",
            raw_input_id=raw.id,
        )
        if not isinstance(extracted, ExtractedSignal):
            raise ExtractionError(
                f"Extractor returned {type(extracted).__name__}, expected ExtractedSignal",
                raw_input_id=raw.id,
            )

        if not extracted.classifications:
            logger.info("No classifications in %s, nothing to evaluate", raw.id)
            return ProcessResult(deduped=False, raw_input=raw, skipped_reason="no_classifications")

        signal = self._bind_signal(extracted, raw)
        self._guard_repository(lambda: self.repository.insert_structured_signal(signal), raw_input_id=raw.id)

        if signal.unresolved:
            logger.info(
                "Signal %s unresolved (sector=%s, capability=%s)",
                signal.id,
                signal.sector_ref.sector_id,
                signal.capability_ref.capability_id,
            )
            return ProcessResult(deduped=False, raw_input=raw, signal=signal, skipped_reason="unresolved")

        state, entry = self.process_structured_signal(signal, now=now or raw.timestamp)
        return ProcessResult(
            deduped=False,
            raw_input=raw,
            signal=signal,
            need_state=state,
            audit_entry=entry,
        )

    def process_structured_signal(
        self,
        signal: StructuredSignal,
        now: Optional[datetime] = None,
    ) -> Tuple[NeedState, AuditEntry]:
        """Re-evaluate the need a stored signal belongs to."""
        if signal.unresolved:
            raise ValueError(f"Signal {signal.id} is not bound to a need")
        sector_id, capability_id = signal.need_key
        return self.evaluate_need(
            sector_id,
            capability_id,
            now=now or signal.timestamp,
            raw_input_id=signal.raw_input_id,
        )

    def evaluate_need(
        self,
        sector_id: str,
        capability_id: str,
        now: Optional[datetime] = None,
        raw_input_id: Optional[str] = None,
    ) -> Tuple[NeedState, AuditEntry]:
        """Read, evaluate, guard and commit one need under its lock."""
        now = as_utc(now or utcnow())
        context = dict(sector_id=sector_id, capability_id=capability_id, raw_input_id=raw_input_id)

        with self.locks.hold(sector_id, capability_id):
            start, end = self.aggregator.window_bounds(now)
            signals = self._guard_repository(
                lambda: self.repository.list_signals_for_need(sector_id, capability_id, start, end),
                **context,
            )
            prior = self._guard_repository(
                lambda: self.repository.get_need_state(sector_id, capability_id),
                **context,
            )
            has_prior = prior is not None
            previous_status = prior.current_status if has_prior else NeedStatus.WHITE

            agg = self.aggregator.aggregate(signals, now)
            history = NeedHistory(
                sector_id=sector_id,
                capability_id=capability_id,
                previous_status=previous_status,
                has_prior_state=has_prior,
                stabilization_consecutive_windows=agg.stabilization_consecutive_windows,
                window_id=agg.window_id,
                last_status_change_at=prior.last_status_change_at if has_prior else None,
                allowed_transitions=allowed_targets(previous_status),
                top_evidence=agg.top_evidence,
            )

            output = self._call_bounded(
                self.evaluator.evaluate,
                (agg.scores, agg.flags, history),
                EvaluationError,
                "Evaluator",
                **context,
            )
            if not isinstance(output, EvaluatorOutput):
                raise EvaluationError(
                    f"Evaluator returned {type(output).__name__}, expected EvaluatorOutput",
                    **context,
                )

            decision = self.decide(previous_status, has_prior, output, agg, **context)
            state, entry = self._build_commit(
                prior, sector_id, capability_id, previous_status, output, agg, decision, now
            )
            self._guard_repository(lambda: self.repository.commit_evaluation(state, entry), **context)

        if decision.final_status != previous_status:
            logger.info(
                "%s/%s: %s -> %s (proposed %s, guardrails=%s)",
                sector_id,
                capability_id,
                previous_status.value,
                decision.final_status.value,
                output.proposed_status.value,
                decision.guardrails_applied,
            )
        return state, entry

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def decide(
        self,
        previous_status: NeedStatus,
        has_prior_state: bool,
        output: EvaluatorOutput,
        agg: ScoreAggregation,
        **context,
    ) -> Decision:
        """Legality check, guardrails, then a legality re-check of the result."""
        applied: List[str] = []
        legal = True
        reason = None
        proposal = output.proposed_status

        try:
            require_legal(previous_status, proposal, **context)
        except IllegalTransitionError as e:
            legal = False
            reason = e.message
            proposal = previous_status
            applied.append(TRANSITION_LEGALITY_BLOCK)
            logger.info("%s, keeping %s", e.message, previous_status.value)

        guard_ctx = GuardrailContext(
            previous_status=previous_status,
            has_prior_state=has_prior_state,
            evaluator_confidence=output.confidence,
            flags=agg.flags,
            stabilization_consecutive_windows=agg.stabilization_consecutive_windows,
            fresh_fragility=agg.fresh_fragility,
            fresh_augmentation=agg.fresh_augmentation,
            augmentation_commitment_detected=bool(output.augmentation_commitment_detected),
            min_evaluator_confidence=self.config.min_evaluator_confidence,
            stabilization_min_consecutive_windows=self.config.stabilization_min_consecutive_windows,
        )
        final_status, guard_applied = run_guardrails(guard_ctx, proposal)
        applied.extend(guard_applied)

        if not is_legal(previous_status, final_status):
            reason = reason or f"Illegal transition {previous_status.value} -> {final_status.value}"
            logger.warning("Guardrails produced %s; clamped to %s", reason, previous_status.value)
            final_status = previous_status
            legal = False
            applied.append(TRANSITION_CLAMPED)

        return Decision(
            final_status=final_status,
            guardrails_applied=applied,
            legal_transition=legal,
            illegal_transition_reason=reason,
        )

    def _build_commit(
        self,
        prior: Optional[NeedState],
        sector_id: str,
        capability_id: str,
        previous_status: NeedStatus,
        output: EvaluatorOutput,
        agg: ScoreAggregation,
        decision: Decision,
        now,
    ) -> Tuple[NeedState, AuditEntry]:
        max_notes = self.config.max_notes
        changed = decision.final_status != previous_status
        state = NeedState(
            sector_id=sector_id,
            capability_id=capability_id,
            current_status=decision.final_status,
            scores=agg.scores,
            stabilization_consecutive_windows=agg.stabilization_consecutive_windows,
            last_window_id=agg.window_id,
            operational_requirements=_merge_notes(
                prior.operational_requirements if prior else [], agg.bottleneck_notes, max_notes
            ),
            fragility_notes=_merge_notes(prior.fragility_notes if prior else [], agg.fragility_notes, max_notes),
            last_updated_at=now,
            last_status_change_at=now if changed else (prior.last_status_change_at if prior else None),
        )
        entry = AuditEntry(
            id=generate_id("aud"),
            sector_id=sector_id,
            capability_id=capability_id,
            timestamp=now,
            previous_status=previous_status,
            proposed_status=output.proposed_status,
            final_status=decision.final_status,
            evaluator_confidence=output.confidence,
            legal_transition=decision.legal_transition,
            illegal_transition_reason=decision.illegal_transition_reason,
            guardrails_applied=decision.guardrails_applied,
            reasoning_summary=build_reasoning_summary(
                output.reasoning_summary,
                previous_status,
                output.proposed_status,
                decision.final_status,
                decision.guardrails_applied,
            ),
            contradiction_detected=output.contradiction_detected,
            key_evidence=output.key_evidence,
            evidence_refs=agg.evidence_refs,
            scores_snapshot=agg.scores,
            flags_snapshot=agg.flags,
            stabilization_consecutive_windows=agg.stabilization_consecutive_windows,
            evaluator_model=self.evaluator.model,
        )
        return state, entry

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _bind_signal(self, extracted: ExtractedSignal, raw: RawInput) -> StructuredSignal:
        unresolved = not extracted.sector_ref.sector_id or not extracted.capability_ref.capability_id
        return StructuredSignal(
            id=generate_id("sig"),
            raw_input_id=raw.id,
            sector_ref=extracted.sector_ref,
            capability_ref=extracted.capability_ref,
            source=extracted.source,
            classifications=extracted.classifications,
            timestamp=as_utc(extracted.timestamp or raw.timestamp),
            unresolved=unresolved,
        )

    def _call_bounded(self, fn, args, error_cls, label: str, **context):
        """Run a pluggable call with the configured timeout.

        Domain errors raised by the collaborator pass through; anything else,
        including a timeout, becomes error_cls.
        """
        timeout = self.config.call_timeout_seconds
        if self.stalled_calls >= self.max_workers:
            logger.warning(
                "All %d call workers held by timed-out calls; %s will wait for one to return",
                self.max_workers,
                label,
            )
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as e:
            if not future.cancel():
                self._track_stalled(future)
            logger.warning("%s timed out after %.1fs", label, timeout)
            raise error_cls(f"{label} timed out after {timeout:.1f}s", **context) from e
        except error_cls as e:
            logger.warning("%s failed: %s", label, e.message)
            for key, value in context.items():
                if getattr(e, key, None) is None:
                    setattr(e, key, value)
            raise
        except Exception as e:
            logger.warning("%s failed: %s", label, e)
            raise error_cls(f"{label} failed: {e}", **context) from e

    def _track_stalled(self, future) -> None:
        with self._stalled_lock:
            self._stalled.add(future)
        future.add_done_callback(self._release_stalled)

    def _release_stalled(self, future) -> None:
        with self._stalled_lock:
            self._stalled.discard(future)

    @staticmethod
    def _guard_repository(fn, **context):
        try:
            return fn()
        except NeedEngineError as e:
            for key, value in context.items():
                if getattr(e, key, None) is None:
                    setattr(e, key, value)
            raise
        except Exception as e:
            logger.warning("Repository failure: %s", e)
            raise RepositoryError(f"Repository failure: {e}", **context) from e
