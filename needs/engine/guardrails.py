"""
Guardrail Engine

Hand-written safety rules applied, in order, on top of the evaluator's
proposal. Each rule is a pure function of the context and the status so far;
it returns None when it does not apply. A rule may halt the pipeline, in
which case later rules are skipped.

Rule ids are what the audit trail records, so they never change.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..common.schemas.need_records import NeedStatus, SignalFlags
from .transitions import severity_rank

logger = logging.getLogger("needs.engine.guardrails")

CONFIDENCE_GATE = "confidence_gate"
RED_FLOOR = "red_floor"
INSUFFICIENCY_FLOOR = "insufficiency_floor"
STABILIZATION_GATE = "stabilization_gate"
FRAGILITY_OVERRIDE = "fragility_override"
AUGMENTATION_GATE = "augmentation_gate"
DEMAND_ESCALATION = "demand_escalation"
TRANSITION_LEGALITY_BLOCK = "transition_legality_block"
TRANSITION_CLAMPED = "transition_clamped"

GUARDRAIL_EXPLANATIONS = {
    CONFIDENCE_GATE: "evaluator confidence too low, status kept unchanged",
    RED_FLOOR: "demand is strong with no coverage, floor set to Critical",
    INSUFFICIENCY_FLOOR: "supply is strongly insufficient, Critical without coverage and never Stabilized",
    STABILIZATION_GATE: "stabilization evidence not sustained or other pressure still strong, Stabilized not allowed",
    FRAGILITY_OVERRIDE: "fragility alert detected, Stabilized demoted to Validating",
    AUGMENTATION_GATE: "ORANGE to YELLOW requires new augmentation coverage, kept at Insufficient coverage",
    DEMAND_ESCALATION: "demand signals require at least Insufficient coverage status",
    TRANSITION_LEGALITY_BLOCK: "transition not allowed by state machine rules",
    TRANSITION_CLAMPED: "transition not allowed by state machine rules",
}


@dataclass(frozen=True)
class GuardrailContext:
    """What a rule may look at besides the status so far"""
    previous_status: NeedStatus
    has_prior_state: bool
    evaluator_confidence: float
    flags: SignalFlags
    stabilization_consecutive_windows: int
    fresh_fragility: bool
    fresh_augmentation: bool
    augmentation_commitment_detected: bool
    min_evaluator_confidence: float
    stabilization_min_consecutive_windows: int


@dataclass(frozen=True)
class GuardrailOutcome:
    rule_id: str
    status: NeedStatus
    halt: bool = False


Guardrail = Callable[[GuardrailContext, NeedStatus], Optional[GuardrailOutcome]]


def confidence_gate(ctx: GuardrailContext, status: NeedStatus) -> Optional[GuardrailOutcome]:
    """Discard a low-confidence proposal; WHITE when the need is new."""
    if ctx.evaluator_confidence >= ctx.min_evaluator_confidence:
        return None
    fallback = ctx.previous_status if ctx.has_prior_state else NeedStatus.WHITE
    return GuardrailOutcome(CONFIDENCE_GATE, fallback)


def red_floor(ctx: GuardrailContext, status: NeedStatus) -> Optional[GuardrailOutcome]:
    """Strong demand without active coverage is RED, whatever was proposed."""
    if ctx.flags.demand_strong and not ctx.flags.coverage_active:
        return GuardrailOutcome(RED_FLOOR, NeedStatus.RED, halt=True)
    return None


def insufficiency_floor(ctx: GuardrailContext, status: NeedStatus) -> Optional[GuardrailOutcome]:
    """Strong insufficiency is RED without coverage; with coverage it is never GREEN."""
    if not ctx.flags.insufficiency_strong:
        return None
    if not ctx.flags.coverage_active:
        return GuardrailOutcome(INSUFFICIENCY_FLOOR, NeedStatus.RED, halt=True)
    if status == NeedStatus.GREEN:
        return GuardrailOutcome(INSUFFICIENCY_FLOOR, NeedStatus.ORANGE)
    return None


def green_eligible(flags: SignalFlags) -> bool:
    return (
        flags.stabilization_strong
        and not flags.demand_strong
        and not flags.insufficiency_strong
        and not flags.fragility_alert
    )


def stabilization_gate(ctx: GuardrailContext, status: NeedStatus) -> Optional[GuardrailOutcome]:
    """
    Entry into GREEN needs sustained stabilization and no other strong pressure.

    Too few consecutive stabilization windows keeps the prior status; an
    ineligible score picture falls back to YELLOW.
    """
    if status != NeedStatus.GREEN or ctx.previous_status == NeedStatus.GREEN:
        return None
    if ctx.stabilization_consecutive_windows < ctx.stabilization_min_consecutive_windows:
        return GuardrailOutcome(STABILIZATION_GATE, ctx.previous_status)
    if not green_eligible(ctx.flags):
        return GuardrailOutcome(STABILIZATION_GATE, NeedStatus.YELLOW)
    return None


def fragility_override(ctx: GuardrailContext, status: NeedStatus) -> Optional[GuardrailOutcome]:
    if status != NeedStatus.GREEN:
        return None
    if ctx.fresh_fragility or ctx.flags.fragility_alert:
        return GuardrailOutcome(FRAGILITY_OVERRIDE, NeedStatus.YELLOW)
    return None


def augmentation_gate(ctx: GuardrailContext, status: NeedStatus) -> Optional[GuardrailOutcome]:
    """Baseline coverage reconfirmation is not enough to leave ORANGE for YELLOW."""
    if ctx.previous_status != NeedStatus.ORANGE or status != NeedStatus.YELLOW:
        return None
    if ctx.fresh_augmentation or ctx.augmentation_commitment_detected:
        return None
    return GuardrailOutcome(AUGMENTATION_GATE, NeedStatus.ORANGE)


def demand_escalation(ctx: GuardrailContext, status: NeedStatus) -> Optional[GuardrailOutcome]:
    if not (ctx.flags.demand_strong and ctx.flags.coverage_active):
        return None
    if severity_rank(status) >= severity_rank(NeedStatus.ORANGE):
        return None
    return GuardrailOutcome(DEMAND_ESCALATION, NeedStatus.ORANGE)


GUARDRAIL_PIPELINE: Tuple[Guardrail, ...] = (
    confidence_gate,
    red_floor,
    insufficiency_floor,
    stabilization_gate,
    fragility_override,
    augmentation_gate,
    demand_escalation,
)


def run_guardrails(
    ctx: GuardrailContext,
    proposal: NeedStatus,
    pipeline: Tuple[Guardrail, ...] = GUARDRAIL_PIPELINE,
) -> Tuple[NeedStatus, List[str]]:
    """Apply rules in order; returns the final status and applied rule ids."""
    status = proposal
    applied: List[str] = []
    for rule in pipeline:
        outcome = rule(ctx, status)
        if outcome is None:
            continue
        logger.info("Guardrail %s: %s -> %s", outcome.rule_id, status.value, outcome.status.value)
        applied.append(outcome.rule_id)
        status = outcome.status
        if outcome.halt:
            break
    return status, applied


def explain(rule_ids: List[str]) -> str:
    return "; ".join(GUARDRAIL_EXPLANATIONS.get(r, r) for r in rule_ids)
