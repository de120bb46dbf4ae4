"""
Audit helpers

Reasoning text for audit entries and a readable rendering for operators.
"""

from typing import List

from ..common.schemas.need_records import AuditEntry, NeedStatus
from .guardrails import explain

STATUS_LABELS = {
    NeedStatus.RED: "Critical",
    NeedStatus.ORANGE: "Insufficient coverage",
    NeedStatus.YELLOW: "Validating",
    NeedStatus.GREEN: "Stabilized",
    NeedStatus.WHITE: "Monitoring",
}


def build_reasoning_summary(
    evaluator_summary: str,
    previous_status: NeedStatus,
    proposed_status: NeedStatus,
    final_status: NeedStatus,
    guardrails_applied: List[str],
) -> str:
    """Evaluator summary plus an explanation of any guardrail that fired."""
    summary = (evaluator_summary or "").strip().rstrip(".")
    if not guardrails_applied:
        return f"{summary}." if summary else f"Status set to {STATUS_LABELS[final_status]}."

    explanations = explain(guardrails_applied)
    label = STATUS_LABELS[final_status]
    prefix = f"{summary}. " if summary else ""
    if final_status == previous_status and proposed_status != final_status:
        return f"{prefix}However, safety rules prevented this change ({explanations}). Status remains {label}."
    return f"{prefix}Safety rules applied: {explanations}. Status set to {label}."


def format_audit_entry(entry: AuditEntry) -> str:
    """Render an audit entry as a text block"""
    lines = [
        f"[{entry.timestamp.isoformat()}] {entry.sector_id}/{entry.capability_id} ({entry.id})",
        f"  {entry.previous_status.value} -> {entry.final_status.value}"
        f" (proposed {entry.proposed_status.value}, confidence {entry.evaluator_confidence:.2f})",
    ]
    if not entry.legal_transition:
        lines.append(f"  Illegal transition: {entry.illegal_transition_reason or 'rejected'}")
    if entry.guardrails_applied:
        lines.append(f"  Guardrails: {', '.join(entry.guardrails_applied)}")
    scores = entry.scores_snapshot
    lines.append(
        f"  Scores: demand={scores.demand:.2f} insufficiency={scores.insufficiency:.2f}"
        f" stabilization={scores.stabilization:.2f} fragility={scores.fragility:.2f}"
        f" coverage={scores.coverage:.2f}"
    )
    if entry.contradiction_detected:
        lines.append("  Contradiction detected")
    if entry.reasoning_summary:
        lines.append(f"  Reasoning: {entry.reasoning_summary}")
    for quote in entry.key_evidence:
        lines.append(f'  > "{quote}"')
    if entry.evidence_refs:
        lines.append(f"  Evidence: {', '.join(entry.evidence_refs)}")
    return "\n".join(lines)
