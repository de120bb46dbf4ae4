"""
Closed classification pattern set.

Bilingual (Spanish / English) phrase patterns for each classification type,
shared by the rule-based extractor and the tweet aggregator so that both
speak the same vocabulary. Matching is case-insensitive.
"""

import re
from dataclasses import dataclass
from typing import List, Pattern, Tuple

from .schemas.need_records import ClassificationType

# confidence = min(1, matches * PER_MATCH + BASE)
PATTERN_CONFIDENCE_BASE = 0.15
PATTERN_CONFIDENCE_PER_MATCH = 0.35


def _compile(*patterns: str) -> List[Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


CLASSIFICATION_PATTERNS = {
    ClassificationType.DEMAND_INCREASE: _compile(
        r"\b(necesit\w*|urgente?\w*|emergencia\w*|auxilio|ayuda|socorro|demand\w*|necesidad\w*|faltan?\w*|piden?)\b",
        r"\b(need\w*|urgent\w*|help|emergency|demand\w*|require\w*|shortage)\b",
        r"\bmás (agua|comida|medicinas|médicos|refugio)\b",
    ),
    ClassificationType.INSUFFICIENCY: _compile(
        r"\bno alcanza|insuficient\w*|saturad\w*|\bsin (agua|comida|luz|médicos)|colapso|desbordad\w*",
        r"\b(insufficient|overwhelmed|saturated|not enough|capacity exceeded|collapsed)\b",
        r"\bno hay\b|agotad\w*|escas[oe]z",
    ),
    ClassificationType.STABILIZATION: _compile(
        r"\b(operando|estable\w*|normaliz\w*|restablec\w*|mejoran\w*|controlad\w*|funcionando)\b",
        r"\b(stable|stabiliz\w*|normalized|restored|improving|controlled|operating|functional)\b",
        r"situaci[óo]n controlada|vuelta a la normalidad",
    ),
    ClassificationType.FRAGILITY_ALERT: _compile(
        r"\b(fragil\w*|riesgo|colapso|inestable|peligro|amenaza|advertencia)\b",
        r"\b(fragile|risk|collapse|unstable|danger|threat|warning)\b",
        r"puede empeorar|riesgo de colapso",
    ),
    ClassificationType.COVERAGE_ACTIVITY: _compile(
        r"\b(lleg\w*|despacho|en camino|despleg\w*|enviando|movilizand\w*|refuerz\w*)\b",
        r"\b(arrived|dispatched|en route|deployed|sending|mobilizing|reinforcement\w*|on.?site)\b",
        r"equipo (en|de) (camino|ruta|despliegue)",
    ),
    ClassificationType.BOTTLENECK: _compile(
        r"\b(bloquead\w*|obstruid\w*|cuello de botella|atascad\w*|impedid\w*)\b",
        r"\b(blocked|obstruct\w*|bottleneck|stuck|impeded|gridlock)\b",
        r"ruta cortada|acceso bloqueado|sin acceso",
    ),
}

# Explicit reinforcement / dispatch phrasing. Generic "arrived" or
# "deployed" is baseline coverage and must not match.
AUGMENTATION_PATTERNS = _compile(
    r"sending reinforcements|dispatching (a |another )?team|deploy(ing)? additional|additional (teams?|units?|resources)",
    r"enviando refuerzos|enviar refuerz\w*|desplegando equipo|refuerzos adicionales|equipos? adicional\w*",
)


@dataclass(frozen=True)
class ContradictionRule:
    """Two opposing claims; both sides need support before it counts"""
    name: str
    side_a: Pattern
    side_b: Pattern


CONTRADICTION_RULES: Tuple[ContradictionRule, ...] = (
    ContradictionRule(
        name="presence",
        side_a=re.compile(
            r"on.?site|arrived|deployed|teams?\s+(are|is)\s+here|lleg[óo]|en el lugar", re.IGNORECASE
        ),
        side_b=re.compile(
            r"no\s+team|nobody\s+(arrived|came|here)|no\s+response|nadie\s+(lleg[óo]|vino)|no\s+hay\s+equipo",
            re.IGNORECASE,
        ),
    ),
    ContradictionRule(
        name="trend",
        side_a=re.compile(r"stabiliz|under control|improving|estabiliz|mejorando", re.IGNORECASE),
        side_b=re.compile(r"worsen|deteriorat|out of control|collaps|empeor|descontrol", re.IGNORECASE),
    ),
    ContradictionRule(
        name="sufficiency",
        side_a=re.compile(r"\b(sufficient|enough|adequate|suficiente)\b", re.IGNORECASE),
        side_b=re.compile(r"insufficient|not enough|shortage|running out|insuficiente|no alcanza", re.IGNORECASE),
    ),
)


def match_classifications(text: str) -> List[Tuple[ClassificationType, float]]:
    """Classify text against the closed pattern set.

    Returns (type, confidence) per matching type, in pattern-table order.
    More matching patterns for one type means higher confidence.
    """
    if not text:
        return []
    results = []
    for ctype, patterns in CLASSIFICATION_PATTERNS.items():
        matches = sum(1 for p in patterns if p.search(text))
        if matches:
            confidence = min(1.0, matches * PATTERN_CONFIDENCE_PER_MATCH + PATTERN_CONFIDENCE_BASE)
            results.append((ctype, round(confidence, 4)))
    return results


def has_augmentation(text: str) -> bool:
    return any(p.search(text or "") for p in AUGMENTATION_PATTERNS)
