"""
Status Evaluators

Propose a new status for one need from its pressure scores, strong flags and
history. A proposal is only advice: the transition validator and the
guardrails decide what is committed.

- RuleBasedEvaluator: deterministic base rules
- LLMEvaluator: LLM-backed, validated against the status domain
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import List

from ..common.errors import EvaluationError
from ..common.llm_client import LLMClient
from ..common.llm_utils import clamp01, coerce_str_list
from ..common.schemas.need_records import (
    EvaluatorOutput,
    NeedHistory,
    NeedStatus,
    PressureScores,
    SignalFlags,
)

logger = logging.getLogger("needs.engine.evaluator")

STATUS_DEFINITIONS = "\n".join([
    "WHITE: monitoring/weak evidence, no strong situation identified.",
    "RED: demand increase strong and no active credible coverage.",
    "YELLOW: coverage active but outcomes not validated; uncertainty state.",
    "ORANGE: coverage active and insufficiency validated.",
    "GREEN: stabilization validated strongly and consistently, not blocked by fragility, "
    "and no dominant demand/insufficiency.",
    "Ordering of severity: RED > ORANGE > YELLOW > GREEN > WHITE.",
])

ORANGE_TO_YELLOW_RULE = (
    "ORANGE -> YELLOW only when there is credible new augmentation commitment addressing "
    "insufficiency and outcomes are not yet validated."
)


class NeedEvaluator(ABC):
    """Pluggable status proposal capability"""

    name: str = "evaluator"

    @property
    def model(self) -> str:
        """Tag recorded in audit entries"""
        return self.name

    @abstractmethod
    def evaluate(
        self,
        scores: PressureScores,
        flags: SignalFlags,
        history: NeedHistory,
    ) -> EvaluatorOutput:
        ...


class RuleBasedEvaluator(NeedEvaluator):
    """
    Deterministic base rules, most severe first:

    1. strong demand, no active coverage         -> RED
    2. strong demand or insufficiency, coverage  -> ORANGE
    3. strong stabilization, nothing against it  -> GREEN
    4. active coverage                           -> YELLOW
    5. otherwise keep the current status
    """

    name = "rule-based-evaluator"

    def __init__(self, decisive_confidence: float = 0.85, weak_confidence: float = 0.5):
        self.decisive_confidence = decisive_confidence
        self.weak_confidence = weak_confidence

    def evaluate(
        self,
        scores: PressureScores,
        flags: SignalFlags,
        history: NeedHistory,
    ) -> EvaluatorOutput:
        confidence = self.decisive_confidence
        if flags.demand_strong and not flags.coverage_active:
            proposed = NeedStatus.RED
            reason = "High demand detected with no active coverage"
        elif (flags.insufficiency_strong or flags.demand_strong) and flags.coverage_active:
            proposed = NeedStatus.ORANGE
            reason = "Demand or insufficiency signals present but coverage is active"
        elif (
            flags.stabilization_strong
            and not flags.fragility_alert
            and not flags.demand_strong
            and not flags.insufficiency_strong
        ):
            proposed = NeedStatus.GREEN
            reason = "Stabilization signals strong with no alerts"
        elif flags.coverage_active:
            proposed = NeedStatus.YELLOW
            reason = "Coverage activity detected, pending validation"
        else:
            proposed = history.previous_status
            confidence = self.weak_confidence
            reason = "No significant signals detected"

        contradiction = flags.stabilization_strong and (flags.demand_strong or flags.insufficiency_strong)
        key_evidence = [e.short_quote for e in history.top_evidence if e.short_quote][:3]

        return EvaluatorOutput(
            proposed_status=proposed,
            confidence=confidence,
            reasoning_summary=reason,
            contradiction_detected=contradiction,
            key_evidence=key_evidence,
        )


EVALUATION_PROMPT = """You are the status evaluator of an emergency coordination system.
Propose the status of one need (a sector and a relief capability) from the
evidence below.

Status definitions:
{definitions}

Special rule: {orange_rule}

Need: sector={sector_id} capability={capability_id}
Current status: {previous_status}
Allowed next statuses: {allowed}
Consecutive stabilization windows: {stabilization_windows}

Pressure scores (0-1):
{scores}

Strong flags:
{flags}

Top evidence (highest weight first):
{evidence}

Respond with a valid JSON object with these keys:
- "proposed_status": one of "WHITE", "RED", "ORANGE", "YELLOW", "GREEN"
- "confidence": 0.0-1.0
- "reasoning_summary": one-sentence explanation
- "contradiction_detected": true if the evidence asserts incompatible facts
- "key_evidence": up to 3 short quotes you relied on
- "augmentation_commitment_detected": true if new resources were committed

JSON:"""


class LLMEvaluator(NeedEvaluator):
    """Proposes a status using the shared LLM client"""

    name = "llm-evaluator"

    def __init__(self, llm_client: LLMClient, timeout: float = 30.0):
        self._llm = llm_client
        self.timeout = timeout

    @property
    def model(self) -> str:
        return f"{self._llm.provider}:{self._llm.model}"

    @property
    def is_available(self) -> bool:
        return self._llm is not None and self._llm.is_available

    def evaluate(
        self,
        scores: PressureScores,
        flags: SignalFlags,
        history: NeedHistory,
    ) -> EvaluatorOutput:
        context = dict(sector_id=history.sector_id, capability_id=history.capability_id)
        if not self.is_available:
            raise EvaluationError("LLM evaluator is not available", **context)

        prompt = self._build_prompt(scores, flags, history)
        try:
            data = self._llm.generate_json(prompt, max_tokens=512, timeout=self.timeout)
        except Exception as e:
            raise EvaluationError(f"LLM evaluation failed: {e}", **context) from e

        if not data:
            raise EvaluationError("LLM evaluation returned no parseable JSON object", **context)

        raw_status = str(data.get("proposed_status", "")).strip().upper()
        try:
            proposed = NeedStatus(raw_status)
        except ValueError as e:
            raise EvaluationError(f"Out-of-domain status proposed: {raw_status!r}", **context) from e

        augmentation = data.get("augmentation_commitment_detected")
        return EvaluatorOutput(
            proposed_status=proposed,
            confidence=clamp01(data.get("confidence")),
            reasoning_summary=str(data.get("reasoning_summary") or "").strip(),
            contradiction_detected=bool(data.get("contradiction_detected", False)),
            key_evidence=coerce_str_list(data.get("key_evidence"), limit=3),
            augmentation_commitment_detected=augmentation if isinstance(augmentation, bool) else None,
        )

    def _build_prompt(self, scores: PressureScores, flags: SignalFlags, history: NeedHistory) -> str:
        evidence_lines: List[str] = []
        for item in history.top_evidence:
            line = f"- [{item.type.value}] delta={item.delta:.2f} ({item.reliability.value})"
            if item.coverage_kind:
                line += f" coverage={item.coverage_kind.value}"
            if item.short_quote:
                line += f' "{item.short_quote}"'
            evidence_lines.append(line)

        return EVALUATION_PROMPT.format(
            definitions=STATUS_DEFINITIONS,
            orange_rule=ORANGE_TO_YELLOW_RULE,
            sector_id=history.sector_id,
            capability_id=history.capability_id,
            previous_status=history.previous_status.value,
            allowed=", ".join(s.value for s in history.allowed_transitions),
            stabilization_windows=history.stabilization_consecutive_windows,
            scores=json.dumps(scores.model_dump(), indent=2),
            flags=json.dumps(flags.model_dump(), indent=2),
            evidence="\n".join(evidence_lines) or "(none)",
        )
