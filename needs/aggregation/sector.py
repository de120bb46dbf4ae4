"""
Sector Severity Aggregator

Combines the committed statuses of every need in a sector into one
composite severity. Pure function of its inputs.

Each need is weighted by criticality x population. The weighted mean of
status severities, plus a penalty for the share of fragile needs, maps to a
status through descending thresholds. Two overrides then apply:

- a life-threatening need at RED floors the sector at ORANGE
- two or more high-or-above needs at RED make the sector RED
"""

import logging
from typing import List, Optional

from ..common.config import SectorSeverityConfig
from ..common.schemas.need_records import NeedStatus
from ..common.schemas.sector_severity import (
    CriticalityLevel,
    SectorNeedContribution,
    SectorNeedInput,
    SectorSeverityResult,
)

logger = logging.getLogger("needs.aggregation.sector")

OVERRIDE_LIFE_THREATENING_RED_FLOOR = "override_life_threatening_red_floor"
OVERRIDE_MULTIPLE_HIGH_RED = "override_multiple_high_red_to_red"


def status_from_score(score: float, config: SectorSeverityConfig) -> NeedStatus:
    for name, threshold in config.status_thresholds:
        if score >= threshold:
            return NeedStatus(name)
    return NeedStatus.WHITE


def compute_sector_severity(
    needs: List[SectorNeedInput],
    config: Optional[SectorSeverityConfig] = None,
) -> SectorSeverityResult:
    """
    Compute the composite severity of one sector.

    Args:
        needs: One entry per need in the sector
        config: Weights, thresholds and override settings

    Returns:
        SectorSeverityResult; WHITE with score 0 when there are no needs
    """
    cfg = config or SectorSeverityConfig()
    if not needs:
        return SectorSeverityResult(
            status=NeedStatus.WHITE,
            score=0.0,
            score_base=0.0,
            uncertainty_share=0.0,
            fragility_share=0.0,
            high_uncertainty=False,
        )

    numerator = 0.0
    denominator = 0.0
    yellow_weight = 0.0
    fragility_weight = 0.0
    high_or_above_red = 0
    life_threatening_red = False
    contributions: List[SectorNeedContribution] = []

    for need in needs:
        weight = cfg.criticality_weights[need.criticality_level.value] * need.population_weight

        severity = cfg.severity_by_status[need.need_status.value]
        if need.fragility_alert and need.need_status == NeedStatus.GREEN:
            severity = max(severity, cfg.fragile_green_min_severity)

        contribution = severity * weight
        numerator += contribution
        denominator += weight

        if need.need_status == NeedStatus.YELLOW:
            yellow_weight += weight
        if need.fragility_alert:
            fragility_weight += weight
        if need.need_status == NeedStatus.RED:
            if need.criticality_level.is_high_or_above:
                high_or_above_red += 1
            if need.criticality_level == CriticalityLevel.LIFE_THREATENING:
                life_threatening_red = True

        contributions.append(
            SectorNeedContribution(
                need_id=need.need_id,
                need_status=need.need_status,
                criticality_level=need.criticality_level,
                population_weight=need.population_weight,
                effective_severity=severity,
                contribution=contribution,
                fragility_alert=need.fragility_alert,
            )
        )

    base_score = numerator / denominator if denominator else 0.0
    fragility_share = fragility_weight / denominator if denominator else 0.0
    uncertainty_share = yellow_weight / denominator if denominator else 0.0
    score = min(1.0, base_score + cfg.fragility_penalty_alpha * fragility_share)

    status = status_from_score(score, cfg)
    overrides: List[str] = []

    floor = NeedStatus(cfg.life_threatening_red_floor)
    if life_threatening_red and status.severity < floor.severity:
        status = floor
        overrides.append(OVERRIDE_LIFE_THREATENING_RED_FLOOR)

    if high_or_above_red >= cfg.high_red_count_for_sector_red:
        status = NeedStatus.RED
        overrides.append(OVERRIDE_MULTIPLE_HIGH_RED)

    if overrides:
        logger.info("Sector overrides applied: %s", overrides)

    contributions.sort(key=lambda c: c.contribution, reverse=True)
    return SectorSeverityResult(
        status=status,
        score=score,
        score_base=base_score,
        uncertainty_share=uncertainty_share,
        fragility_share=fragility_share,
        high_uncertainty=uncertainty_share >= cfg.uncertainty_threshold,
        override_reasons=overrides,
        top_contributors=contributions[: cfg.top_contributors],
    )


def sector_inputs_from_states(
    states,
    criticality_by_capability,
    population_by_capability=None,
    fragility_threshold: float = 0.5,
) -> List[SectorNeedInput]:
    """Build sector inputs from committed need states.

    Capabilities missing from criticality_by_capability default to medium.
    """
    population_by_capability = population_by_capability or {}
    inputs = []
    for state in states:
        inputs.append(
            SectorNeedInput(
                need_id=f"{state.sector_id}:{state.capability_id}",
                need_status=state.current_status,
                criticality_level=CriticalityLevel(
                    criticality_by_capability.get(state.capability_id, CriticalityLevel.MEDIUM)
                ),
                population_weight=population_by_capability.get(state.capability_id, 1.0),
                fragility_alert=state.scores.fragility >= fragility_threshold,
            )
        )
    return inputs
