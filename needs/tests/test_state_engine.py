"""
Need Status Engine Scenario Tests

Drives the full evaluation sequence (window read, scoring, evaluator
proposal, legality check, guardrails, atomic commit) against an in-memory
repository. Evidence is seeded as structured signals so that every score is
known; the evaluator is a stub returning a fixed proposal.
"""

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from needs.common.config import EngineConfig
from needs.common.errors import EvaluationError, ExtractionError, RepositoryError
from needs.common.schemas import (
    CapabilityRef,
    ClassificationType,
    CoverageKind,
    EvaluatorOutput,
    NeedHistory,
    NeedState,
    NeedStatus,
    RawReport,
    SectorRef,
    SignalClassification,
    SignalSource,
    SourceReliability,
    SourceType,
    StructuredSignal,
    generate_id,
)
from needs.engine.evaluator import NeedEvaluator, RuleBasedEvaluator
from needs.engine.extractor import RuleBasedExtractor
from needs.engine.repository import InMemoryNeedsRepository
from needs.engine.state_engine import NeedStatusEngine

NOW = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)
SECTOR = "sector-norte"
CAPABILITY = "water"


# ============================================================================
# Fixtures
# ============================================================================

class StubEvaluator(NeedEvaluator):
    """Returns a fixed proposal and records what it was shown"""

    name = "stub-evaluator"

    def __init__(
        self,
        status: NeedStatus,
        confidence: float = 0.9,
        augmentation: Optional[bool] = None,
        delay: float = 0.0,
    ):
        self.status = status
        self.confidence = confidence
        self.augmentation = augmentation
        self.delay = delay
        self.histories: List[NeedHistory] = []

    def evaluate(self, scores, flags, history):
        self.histories.append(history)
        if self.delay:
            time.sleep(self.delay)
        return EvaluatorOutput(
            proposed_status=self.status,
            confidence=self.confidence,
            reasoning_summary=f"Proposing {self.status.value}",
            augmentation_commitment_detected=self.augmentation,
        )


class FailingExtractor(RuleBasedExtractor):
    def extract(self, source_type, source_name, timestamp, text):
        raise ValueError("model returned garbage")


class FailingCommitRepository(InMemoryNeedsRepository):
    """Fails only the state + audit commit, after the in-memory change"""

    def _persist(self, rollback, **context):
        if "sector_id" in context:
            rollback()
            raise RepositoryError("disk full", **context)


def cls(ctype, confidence=0.9, **kwargs):
    return SignalClassification(type=ctype, confidence=confidence, **kwargs)


def seed_signal(repo, ts, *classifications, reliability=SourceReliability.INSTITUTIONAL):
    signal = StructuredSignal(
        id=generate_id("sig"),
        raw_input_id=generate_id("raw"),
        sector_ref=SectorRef(sector_id=SECTOR, confidence=0.9),
        capability_ref=CapabilityRef(capability_id=CAPABILITY, confidence=0.9),
        source=SignalSource(reliability=reliability),
        classifications=list(classifications),
        timestamp=ts,
    )
    repo.insert_structured_signal(signal)
    return signal


def seed_state(repo, status):
    repo.upsert_need_state(
        NeedState(
            sector_id=SECTOR,
            capability_id=CAPABILITY,
            current_status=status,
            last_updated_at=NOW - timedelta(hours=3),
            last_status_change_at=NOW - timedelta(hours=3),
        )
    )


def make_engine(repo, evaluator, **config):
    return NeedStatusEngine(repo, RuleBasedExtractor(), evaluator, config=EngineConfig(**config))


# ============================================================================
# Guardrail properties
# ============================================================================

class TestRedFloor:
    def test_strong_demand_without_coverage_commits_red(self):
        """Evaluator proposes YELLOW but demand is strong and nothing covers it"""
        repo = InMemoryNeedsRepository()
        seed_signal(repo, NOW, cls(ClassificationType.DEMAND_INCREASE, 0.9))

        with make_engine(repo, StubEvaluator(NeedStatus.YELLOW)) as engine:
            state, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.current_status == NeedStatus.RED
        assert entry.proposed_status == NeedStatus.YELLOW
        assert entry.final_status == NeedStatus.RED
        assert entry.guardrails_applied == ["red_floor"]
        assert entry.flags_snapshot.demand_strong
        assert repo.get_need_state(SECTOR, CAPABILITY).current_status == NeedStatus.RED


class TestInsufficiencyFloor:
    def test_strong_insufficiency_without_coverage_commits_red(self):
        repo = InMemoryNeedsRepository()
        seed_state(repo, NeedStatus.YELLOW)
        seed_signal(repo, NOW, cls(ClassificationType.INSUFFICIENCY, 0.95))

        with make_engine(repo, StubEvaluator(NeedStatus.YELLOW)) as engine:
            state, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.current_status == NeedStatus.RED
        assert entry.guardrails_applied == ["insufficiency_floor"]
        assert entry.flags_snapshot.insufficiency_strong
        assert not entry.flags_snapshot.coverage_active

    def test_strong_insufficiency_with_coverage_blocks_green(self):
        """Sustained stabilization does not outweigh insufficiency that is still strong"""
        repo = InMemoryNeedsRepository()
        seed_state(repo, NeedStatus.ORANGE)
        seed_signal(
            repo,
            NOW - timedelta(hours=5),
            cls(ClassificationType.INSUFFICIENCY, 0.9),
            cls(ClassificationType.COVERAGE_ACTIVITY, 0.9, coverage_kind=CoverageKind.BASELINE),
        )
        seed_signal(repo, NOW - timedelta(hours=1), cls(ClassificationType.STABILIZATION, 0.9))
        seed_signal(repo, NOW, cls(ClassificationType.STABILIZATION, 0.9))

        with make_engine(repo, StubEvaluator(NeedStatus.GREEN)) as engine:
            state, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert entry.stabilization_consecutive_windows == 2
        assert state.current_status == NeedStatus.ORANGE
        assert entry.guardrails_applied == ["insufficiency_floor"]


class TestStabilizationGate:
    def test_strong_demand_blocks_green_entry(self):
        repo = InMemoryNeedsRepository()
        seed_state(repo, NeedStatus.YELLOW)
        seed_signal(
            repo,
            NOW - timedelta(hours=3),
            cls(ClassificationType.DEMAND_INCREASE, 0.8),
            cls(ClassificationType.COVERAGE_ACTIVITY, 0.9, coverage_kind=CoverageKind.BASELINE),
        )
        seed_signal(repo, NOW - timedelta(hours=1), cls(ClassificationType.STABILIZATION, 0.9))
        seed_signal(repo, NOW, cls(ClassificationType.STABILIZATION, 0.9))

        with make_engine(repo, StubEvaluator(NeedStatus.GREEN)) as engine:
            state, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert entry.stabilization_consecutive_windows == 2
        assert state.current_status == NeedStatus.ORANGE
        assert entry.guardrails_applied == ["stabilization_gate", "demand_escalation"]

    def test_single_window_does_not_commit_green(self):
        repo = InMemoryNeedsRepository()
        seed_state(repo, NeedStatus.YELLOW)
        seed_signal(repo, NOW, cls(ClassificationType.STABILIZATION, 0.9))

        with make_engine(repo, StubEvaluator(NeedStatus.GREEN)) as engine:
            state, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.current_status == NeedStatus.YELLOW
        assert entry.guardrails_applied == ["stabilization_gate"]
        assert entry.stabilization_consecutive_windows == 1
        assert "Status remains Validating" in entry.reasoning_summary

    def test_consecutive_windows_commit_green(self):
        repo = InMemoryNeedsRepository()
        seed_state(repo, NeedStatus.YELLOW)
        seed_signal(repo, NOW - timedelta(hours=1), cls(ClassificationType.STABILIZATION, 0.9))
        seed_signal(repo, NOW, cls(ClassificationType.STABILIZATION, 0.9))

        with make_engine(repo, StubEvaluator(NeedStatus.GREEN)) as engine:
            state, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.current_status == NeedStatus.GREEN
        assert entry.guardrails_applied == []
        assert state.stabilization_consecutive_windows == 2
        assert state.last_status_change_at == NOW


class TestFragilityOverride:
    def test_fresh_fragility_demotes_green_to_yellow(self):
        repo = InMemoryNeedsRepository()
        seed_state(repo, NeedStatus.GREEN)
        seed_signal(repo, NOW, cls(ClassificationType.FRAGILITY_ALERT, 0.4, note="Levee seepage reported"))

        with make_engine(repo, StubEvaluator(NeedStatus.GREEN)) as engine:
            state, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.current_status == NeedStatus.YELLOW
        assert entry.guardrails_applied == ["fragility_override"]
        assert state.fragility_notes == ["Levee seepage reported"]


class TestAugmentationGate:
    def test_baseline_coverage_keeps_orange(self):
        repo = InMemoryNeedsRepository()
        seed_state(repo, NeedStatus.ORANGE)
        seed_signal(
            repo, NOW, cls(ClassificationType.COVERAGE_ACTIVITY, 0.9, coverage_kind=CoverageKind.BASELINE)
        )

        with make_engine(repo, StubEvaluator(NeedStatus.YELLOW)) as engine:
            state, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.current_status == NeedStatus.ORANGE
        assert entry.guardrails_applied == ["augmentation_gate"]

    def test_fresh_augmentation_allows_yellow(self):
        repo = InMemoryNeedsRepository()
        seed_state(repo, NeedStatus.ORANGE)
        seed_signal(
            repo, NOW, cls(ClassificationType.COVERAGE_ACTIVITY, 0.9, coverage_kind=CoverageKind.AUGMENTATION)
        )

        with make_engine(repo, StubEvaluator(NeedStatus.YELLOW)) as engine:
            state, _ = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.current_status == NeedStatus.YELLOW

    def test_evaluator_commitment_allows_yellow(self):
        repo = InMemoryNeedsRepository()
        seed_state(repo, NeedStatus.ORANGE)

        with make_engine(repo, StubEvaluator(NeedStatus.YELLOW, augmentation=True)) as engine:
            state, _ = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.current_status == NeedStatus.YELLOW


class TestConfidenceGate:
    def test_low_confidence_without_prior_state_commits_white(self):
        repo = InMemoryNeedsRepository()
        seed_signal(repo, NOW, cls(ClassificationType.DEMAND_INCREASE, 0.3))

        with make_engine(repo, StubEvaluator(NeedStatus.RED, confidence=0.4)) as engine:
            state, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.current_status == NeedStatus.WHITE
        assert entry.guardrails_applied == ["confidence_gate"]
        assert entry.evaluator_confidence == 0.4


class TestDemandEscalation:
    @pytest.mark.parametrize("previous", [None, NeedStatus.YELLOW])
    def test_strong_demand_with_coverage_commits_orange(self, previous):
        repo = InMemoryNeedsRepository()
        if previous is not None:
            seed_state(repo, previous)
        seed_signal(
            repo,
            NOW,
            cls(ClassificationType.DEMAND_INCREASE, 0.9),
            cls(ClassificationType.COVERAGE_ACTIVITY, 0.9, coverage_kind=CoverageKind.BASELINE),
        )
        proposal = previous or NeedStatus.WHITE

        with make_engine(repo, StubEvaluator(proposal)) as engine:
            state, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.current_status == NeedStatus.ORANGE
        assert entry.guardrails_applied == ["demand_escalation"]


class TestTransitionLegality:
    def test_red_to_green_is_rejected(self):
        repo = InMemoryNeedsRepository()
        seed_state(repo, NeedStatus.RED)
        seed_signal(repo, NOW - timedelta(hours=1), cls(ClassificationType.STABILIZATION, 0.9))
        seed_signal(repo, NOW, cls(ClassificationType.STABILIZATION, 0.9))

        with make_engine(repo, StubEvaluator(NeedStatus.GREEN)) as engine:
            state, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.current_status == NeedStatus.RED
        assert entry.legal_transition is False
        assert entry.proposed_status == NeedStatus.GREEN
        assert entry.illegal_transition_reason == "Illegal transition RED -> GREEN"
        assert entry.guardrails_applied == ["transition_legality_block"]

    def test_illegal_guardrail_result_is_clamped(self, monkeypatch):
        monkeypatch.setattr(
            "needs.engine.state_engine.run_guardrails",
            lambda ctx, proposal: (NeedStatus.GREEN, ["forced_green"]),
        )
        repo = InMemoryNeedsRepository()

        with make_engine(repo, StubEvaluator(NeedStatus.YELLOW)) as engine:
            state, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.current_status == NeedStatus.WHITE
        assert entry.legal_transition is False
        assert entry.guardrails_applied == ["forced_green", "transition_clamped"]


# ============================================================================
# State, history and audit
# ============================================================================

class TestStateAndAudit:
    def test_every_evaluation_appends_one_audit_entry(self):
        repo = InMemoryNeedsRepository()
        seed_signal(repo, NOW, cls(ClassificationType.DEMAND_INCREASE, 0.9))

        with make_engine(repo, StubEvaluator(NeedStatus.RED)) as engine:
            engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)
            engine.evaluate_need(SECTOR, CAPABILITY, now=NOW + timedelta(minutes=5))

        entries = repo.list_audit(SECTOR, CAPABILITY)
        assert [e.previous_status for e in entries] == [NeedStatus.WHITE, NeedStatus.RED]
        assert [e.final_status for e in entries] == [NeedStatus.RED, NeedStatus.RED]
        assert entries[0].evaluator_model == "stub-evaluator"

    def test_status_change_time_only_moves_on_change(self):
        repo = InMemoryNeedsRepository()
        seed_signal(repo, NOW, cls(ClassificationType.DEMAND_INCREASE, 0.9))

        with make_engine(repo, StubEvaluator(NeedStatus.RED)) as engine:
            engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)
            state, _ = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW + timedelta(minutes=5))

        assert state.last_status_change_at == NOW
        assert state.last_updated_at == NOW + timedelta(minutes=5)

    def test_evaluator_sees_history(self):
        repo = InMemoryNeedsRepository()
        seed_state(repo, NeedStatus.RED)
        signal = seed_signal(repo, NOW, cls(ClassificationType.DEMAND_INCREASE, 0.9, short_quote="sin agua"))
        evaluator = StubEvaluator(NeedStatus.RED)

        with make_engine(repo, evaluator) as engine:
            _, entry = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        [history] = evaluator.histories
        assert history.previous_status == NeedStatus.RED
        assert history.has_prior_state
        assert history.allowed_transitions == [NeedStatus.RED, NeedStatus.ORANGE, NeedStatus.YELLOW]
        assert history.top_evidence[0].short_quote == "sin agua"
        assert entry.evidence_refs == [signal.raw_input_id]

    def test_bottleneck_notes_become_operational_requirements(self):
        repo = InMemoryNeedsRepository()
        seed_signal(repo, NOW, cls(ClassificationType.BOTTLENECK, 0.9, note="Route 5 bridge closed"))

        with make_engine(repo, StubEvaluator(NeedStatus.WHITE)) as engine:
            state, _ = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state.operational_requirements == ["Route 5 bridge closed"]


# ============================================================================
# Failures
# ============================================================================

class TestFailures:
    def test_evaluator_timeout_aborts_without_mutation(self):
        repo = InMemoryNeedsRepository()
        seed_signal(repo, NOW, cls(ClassificationType.DEMAND_INCREASE, 0.9))

        with make_engine(repo, StubEvaluator(NeedStatus.RED, delay=0.5), call_timeout_seconds=0.05) as engine:
            with pytest.raises(EvaluationError, match="timed out") as exc_info:
                engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert exc_info.value.sector_id == SECTOR
        assert exc_info.value.capability_id == CAPABILITY
        assert repo.get_need_state(SECTOR, CAPABILITY) is None
        assert repo.list_audit(SECTOR, CAPABILITY) == []

    def test_wrong_evaluator_output_type(self):
        class BrokenEvaluator(StubEvaluator):
            def evaluate(self, scores, flags, history):
                return {"proposed_status": "RED"}

        repo = InMemoryNeedsRepository()
        with make_engine(repo, BrokenEvaluator(NeedStatus.RED)) as engine:
            with pytest.raises(EvaluationError):
                engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)
        assert repo.get_need_state(SECTOR, CAPABILITY) is None

    def test_commit_failure_leaves_no_partial_write(self):
        repo = FailingCommitRepository()
        seed_state(repo, NeedStatus.YELLOW)
        seed_signal(repo, NOW, cls(ClassificationType.DEMAND_INCREASE, 0.9))

        with make_engine(repo, StubEvaluator(NeedStatus.RED)) as engine:
            with pytest.raises(RepositoryError) as exc_info:
                engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert exc_info.value.capability_id == CAPABILITY
        assert repo.get_need_state(SECTOR, CAPABILITY).current_status == NeedStatus.YELLOW
        assert repo.list_audit(SECTOR, CAPABILITY) == []

    def test_unexpected_repository_error_is_wrapped(self):
        class ExplodingRepository(InMemoryNeedsRepository):
            def get_need_state(self, sector_id, capability_id):
                raise RuntimeError("connection reset")

        with make_engine(ExplodingRepository(), StubEvaluator(NeedStatus.RED)) as engine:
            with pytest.raises(RepositoryError, match="connection reset"):
                engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

    def test_lock_released_after_failure(self):
        repo = InMemoryNeedsRepository()
        evaluator = StubEvaluator(NeedStatus.RED, delay=0.5)

        with make_engine(repo, evaluator, call_timeout_seconds=0.05) as engine:
            with pytest.raises(EvaluationError):
                engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)
            evaluator.delay = 0.0
            state, _ = engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)

        assert state is not None

    def test_timed_out_call_is_counted_until_it_returns(self, caplog):
        repo = InMemoryNeedsRepository()
        evaluator = StubEvaluator(NeedStatus.RED, delay=0.3)
        engine = NeedStatusEngine(
            repo,
            RuleBasedExtractor(),
            evaluator,
            config=EngineConfig(call_timeout_seconds=0.05),
            max_workers=1,
        )
        try:
            with pytest.raises(EvaluationError):
                engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)
            assert engine.stalled_calls == 1

            with caplog.at_level("WARNING", logger="needs.engine.state_engine"):
                with pytest.raises(EvaluationError, match="timed out"):
                    engine.evaluate_need(SECTOR, CAPABILITY, now=NOW)
            assert "held by timed-out calls" in caplog.text

            deadline = time.monotonic() + 2.0
            while engine.stalled_calls and time.monotonic() < deadline:
                time.sleep(0.02)
            assert engine.stalled_calls == 0
        finally:
            engine.close()


# ============================================================================
# Per-report pipeline
# ============================================================================

class TestProcessRawInput:
    def _engine(self, repo, extractor=None, evaluator=None):
        extractor = extractor or RuleBasedExtractor(sector_aliases={SECTOR: ["barrio norte"]})
        return NeedStatusEngine(repo, extractor, evaluator or RuleBasedEvaluator())

    def _report(self, text, **overrides):
        values = dict(source_type=SourceType.INSTITUTIONAL, source_name="Gobernación", timestamp=NOW, text=text)
        values.update(overrides)
        return RawReport(**values)

    def test_duplicate_report_is_a_no_op(self):
        repo = InMemoryNeedsRepository()
        evaluator = StubEvaluator(NeedStatus.RED)
        report = self._report("Barrio norte: necesitamos agua urgente")

        with self._engine(repo, evaluator=evaluator) as engine:
            first = engine.process_raw_input(report)
            second = engine.process_raw_input(report)

        assert first.deduped is False
        assert second.deduped is True
        assert second.raw_input.id == first.raw_input.id
        assert len(repo._raw_inputs) == 1
        assert len(evaluator.histories) == 1
        assert len(repo.list_audit(SECTOR, CAPABILITY)) == 1

    def test_report_drives_status(self):
        repo = InMemoryNeedsRepository()
        with self._engine(repo) as engine:
            result = engine.process_raw_input(self._report("Barrio norte: necesitamos agua urgente"))

        assert result.signal.need_key == (SECTOR, CAPABILITY)
        assert result.need_state.current_status == NeedStatus.RED
        assert result.audit_entry.evaluator_model == "rule-based-evaluator"
        assert result.audit_entry.evidence_refs == [result.raw_input.id]

    def test_report_without_evidence_is_skipped(self):
        repo = InMemoryNeedsRepository()
        with self._engine(repo) as engine:
            result = engine.process_raw_input(self._report("Barrio norte: reunión de coordinación a las 10"))

        assert result.skipped_reason == "no_classifications"
        assert repo.get_need_state(SECTOR, CAPABILITY) is None

    def test_unresolved_sector_is_stored_not_evaluated(self):
        repo = InMemoryNeedsRepository()
        with self._engine(repo) as engine:
            result = engine.process_raw_input(self._report("necesitamos agua urgente"))

        assert result.skipped_reason == "unresolved"
        assert result.signal.unresolved
        assert repo.list_need_states() == []

    def test_extractor_failure_keeps_raw_input(self):
        repo = InMemoryNeedsRepository()
        report = self._report("Barrio norte: necesitamos agua urgente")

        with self._engine(repo, extractor=FailingExtractor()) as engine:
            with pytest.raises(ExtractionError, match="garbage") as exc_info:
                engine.process_raw_input(report)

        raw_id = exc_info.value.raw_input_id
        assert repo.get_raw_input(raw_id) is not None
        assert repo.list_need_states() == []


# ============================================================================
# Concurrency
# ============================================================================

class TestConcurrency:
    def test_same_need_evaluations_are_serialized(self):
        """Each audit entry must start from the status the previous one committed"""

        class CyclingEvaluator(NeedEvaluator):
            name = "cycling-evaluator"
            NEXT = {
                NeedStatus.WHITE: NeedStatus.YELLOW,
                NeedStatus.YELLOW: NeedStatus.ORANGE,
                NeedStatus.ORANGE: NeedStatus.YELLOW,
            }

            def evaluate(self, scores, flags, history):
                time.sleep(0.01)
                return EvaluatorOutput(
                    proposed_status=self.NEXT[history.previous_status],
                    confidence=0.9,
                    augmentation_commitment_detected=True,
                )

        repo = InMemoryNeedsRepository()
        with make_engine(repo, CyclingEvaluator()) as engine:
            threads = [
                threading.Thread(target=engine.evaluate_need, args=(SECTOR, CAPABILITY), kwargs={"now": NOW})
                for _ in range(8)
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        entries = repo.list_audit(SECTOR, CAPABILITY)
        assert len(entries) == 8
        assert entries[0].previous_status == NeedStatus.WHITE
        for before, after in zip(entries, entries[1:]):
            assert after.previous_status == before.final_status
        assert repo.get_need_state(SECTOR, CAPABILITY).current_status == entries[-1].final_status

    def test_different_needs_do_not_share_a_lock(self):
        repo = InMemoryNeedsRepository()
        with make_engine(repo, StubEvaluator(NeedStatus.WHITE)) as engine:
            engine.evaluate_need(SECTOR, "water", now=NOW)
            engine.evaluate_need(SECTOR, "food", now=NOW)
            assert len(engine.locks) == 2
