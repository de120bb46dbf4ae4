"""
Signal Extractors

Turn the free text of a raw input into classifications bound to a
(sector, capability) pair. The engine only sees the NeedExtractor contract:

- RuleBasedExtractor: alias matching plus the closed bilingual pattern set;
  also reads the JSON payloads produced by the tweet bridge
- LLMExtractor: asks an LLM for the same structure and validates it against
  the classification vocabulary

Both raise ExtractionError on unusable input. An empty classification list
is a valid answer: the report simply carries no evidence.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..common.errors import ExtractionError
from ..common.llm_client import LLMClient
from ..common.llm_utils import clamp01, parse_llm_json
from ..common.patterns import has_augmentation, match_classifications
from ..common.schemas.need_records import (
    SOURCE_TYPE_RELIABILITY,
    CapabilityRef,
    ClassificationType,
    CoverageKind,
    ExtractedSignal,
    SectorRef,
    SignalClassification,
    SignalSource,
    SourceReliability,
    SourceType,
)

logger = logging.getLogger("needs.engine.extractor")

QUOTE_MAX_CHARS = 160
ALIAS_MATCH_CONFIDENCE = 0.9
TWEET_BRIDGE_KIND = "tweet_aggregate"

DEFAULT_CAPABILITY_ALIASES: Dict[str, List[str]] = {
    "water": ["agua", "water", "potable", "hidrataci"],
    "medical": ["médic", "medic", "hospital", "salud", "health", "ambulanc"],
    "food": ["comida", "alimento", "food", "víveres", "raciones"],
    "shelter": ["refugio", "albergue", "shelter", "carpa", "tent"],
    "rescue": ["rescate", "rescue", "búsqueda", "search and rescue", "atrapad"],
    "power": ["electricidad", "energía", "luz", "power", "generador", "generator"],
}


def _short_quote(text: str, max_chars: int = QUOTE_MAX_CHARS) -> str:
    text = " ".join((text or "").split())
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 1] + "…"


def _first_sentence(text: str) -> str:
    sentence = re.split(r"(?<=[.!?])\s+", (text or "").strip(), maxsplit=1)[0]
    return _short_quote(sentence)


class NeedExtractor(ABC):
    """Pluggable text -> classification capability"""

    name: str = "extractor"

    @abstractmethod
    def extract(
        self,
        source_type: SourceType,
        source_name: str,
        timestamp: datetime,
        text: str,
    ) -> ExtractedSignal:
        ...


class RuleBasedExtractor(NeedExtractor):
    """Deterministic extractor over the shared pattern set"""

    name = "rule-based-extractor"

    def __init__(
        self,
        sector_aliases: Optional[Dict[str, List[str]]] = None,
        capability_aliases: Optional[Dict[str, List[str]]] = None,
        default_sector_id: Optional[str] = None,
        default_capability_id: Optional[str] = None,
    ):
        self.sector_aliases = sector_aliases or {}
        self.capability_aliases = (
            capability_aliases if capability_aliases is not None else DEFAULT_CAPABILITY_ALIASES
        )
        self.default_sector_id = default_sector_id
        self.default_capability_id = default_capability_id

    def extract(
        self,
        source_type: SourceType,
        source_name: str,
        timestamp: datetime,
        text: str,
    ) -> ExtractedSignal:
        if not text or not text.strip():
            raise ExtractionError(f"Empty report text from {source_name}")

        reliability = SOURCE_TYPE_RELIABILITY[SourceType(source_type)]
        payload = self._bridge_payload(text)
        if payload is not None:
            return self._from_bridge_payload(payload, reliability, timestamp)

        sector_id, sector_conf = self._resolve(text, self.sector_aliases, self.default_sector_id)
        capability_id, capability_conf = self._resolve(
            text, self.capability_aliases, self.default_capability_id
        )

        classifications = []
        for ctype, confidence in match_classifications(text):
            classification = SignalClassification(
                type=ctype,
                confidence=confidence,
                short_quote=_short_quote(text),
            )
            if ctype == ClassificationType.COVERAGE_ACTIVITY:
                classification.coverage_kind = (
                    CoverageKind.AUGMENTATION if has_augmentation(text) else CoverageKind.BASELINE
                )
            elif ctype in (ClassificationType.FRAGILITY_ALERT, ClassificationType.BOTTLENECK):
                classification.note = _first_sentence(text)
            classifications.append(classification)

        logger.debug(
            "Extracted %d classifications for %s/%s",
            len(classifications),
            sector_id,
            capability_id,
        )
        return ExtractedSignal(
            sector_ref=SectorRef(sector_id=sector_id, confidence=sector_conf),
            capability_ref=CapabilityRef(capability_id=capability_id, confidence=capability_conf),
            source=SignalSource(reliability=reliability),
            classifications=classifications,
            timestamp=timestamp,
        )

    @staticmethod
    def _resolve(
        text: str,
        aliases: Dict[str, List[str]],
        default: Optional[str],
    ) -> Tuple[Optional[str], float]:
        lowered = text.lower()
        for target_id, names in aliases.items():
            for alias in [target_id, *names]:
                if re.search(r"\b" + re.escape(alias.lower()), lowered):
                    return target_id, ALIAS_MATCH_CONFIDENCE
        if default:
            return default, 0.5
        return None, 0.0

    @staticmethod
    def _bridge_payload(text: str) -> Optional[dict]:
        stripped = text.strip()
        if not stripped.startswith("{"):
            return None
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict) or data.get("kind") != TWEET_BRIDGE_KIND:
            return None
        return data

    def _from_bridge_payload(
        self,
        payload: dict,
        reliability: SourceReliability,
        timestamp: datetime,
    ) -> ExtractedSignal:
        try:
            ctype = ClassificationType(payload["classification_type"])
        except (KeyError, ValueError) as e:
            raise ExtractionError(f"Malformed tweet aggregate payload: {e}") from e

        classification = SignalClassification(
            type=ctype,
            confidence=clamp01(payload.get("confidence", 0.0)),
            short_quote=_short_quote(payload.get("top_quote", "")),
            note=payload.get("summary") or None,
        )
        if ctype == ClassificationType.COVERAGE_ACTIVITY:
            classification.coverage_kind = (
                CoverageKind.AUGMENTATION if payload.get("augmentation_flag") else CoverageKind.BASELINE
            )

        sector_id = payload.get("sector_id") or self.default_sector_id
        capability_id = payload.get("capability_id") or self.default_capability_id
        return ExtractedSignal(
            sector_ref=SectorRef(sector_id=sector_id, confidence=1.0 if sector_id else 0.0),
            capability_ref=CapabilityRef(capability_id=capability_id, confidence=1.0 if capability_id else 0.0),
            source=SignalSource(reliability=reliability),
            classifications=[classification],
            timestamp=timestamp,
        )


EXTRACTION_PROMPT = """You are a signal extractor for an emergency coordination system.

Given a situation report (which may be in Spanish or English), identify which
sector and which relief capability it is about, and classify the evidence it
contains.

Known sectors: {sectors}
Known capabilities: {capabilities}

Respond with a valid JSON object with these keys:
- "sector_id": one of the known sectors, or null if unclear
- "sector_confidence": 0.0-1.0
- "capability_id": one of the known capabilities, or null if unclear
- "capability_confidence": 0.0-1.0
- "classifications": list of objects with
    - "type": one of {types}
    - "confidence": 0.0-1.0
    - "short_quote": the shortest verbatim span supporting it
    - "note": optional operational note (for fragility alerts and bottlenecks)
    - "coverage_kind": "baseline" or "augmentation" (SIGNAL_COVERAGE_ACTIVITY only)

Rules:
- "augmentation" means additional resources newly committed or dispatched;
  confirming resources already present is "baseline"
- Return an empty classifications list if the report carries no evidence

Source: {source_type} / {source_name}
Report:
{text}

JSON:"""


class LLMExtractor(NeedExtractor):
    """Extracts classifications using the shared LLM client"""

    name = "llm-extractor"

    def __init__(
        self,
        llm_client: LLMClient,
        sector_ids: Optional[List[str]] = None,
        capability_ids: Optional[List[str]] = None,
        timeout: float = 30.0,
    ):
        self._llm = llm_client
        self.sector_ids = sector_ids or []
        self.capability_ids = capability_ids or list(DEFAULT_CAPABILITY_ALIASES)
        self.timeout = timeout

    @property
    def is_available(self) -> bool:
        return self._llm is not None and self._llm.is_available

    def extract(
        self,
        source_type: SourceType,
        source_name: str,
        timestamp: datetime,
        text: str,
    ) -> ExtractedSignal:
        if not text or not text.strip():
            raise ExtractionError(f"Empty report text from {source_name}")
        if not self.is_available:
            raise ExtractionError("LLM extractor is not available")

        prompt = EXTRACTION_PROMPT.format(
            sectors=", ".join(self.sector_ids) or "(any)",
            capabilities=", ".join(self.capability_ids) or "(any)",
            types=", ".join(t.value for t in ClassificationType),
            source_type=SourceType(source_type).value,
            source_name=source_name,
            text=text[:4000],
        )
        try:
            data = self._llm.generate_json(prompt, max_tokens=1024, timeout=self.timeout)
        except Exception as e:
            raise ExtractionError(f"LLM extraction failed: {e}") from e

        if not data or not isinstance(data.get("classifications", []), list):
            raise ExtractionError("LLM extraction returned no parseable JSON object")

        classifications = []
        for item in data.get("classifications", []):
            if not isinstance(item, dict):
                continue
            try:
                ctype = ClassificationType(item.get("type"))
            except ValueError:
                logger.warning("Dropping unknown classification type from LLM: %r", item.get("type"))
                continue
            coverage_kind = None
            if ctype == ClassificationType.COVERAGE_ACTIVITY:
                kind = str(item.get("coverage_kind") or "baseline").lower()
                coverage_kind = CoverageKind.AUGMENTATION if kind == "augmentation" else CoverageKind.BASELINE
            classifications.append(
                SignalClassification(
                    type=ctype,
                    confidence=clamp01(item.get("confidence")),
                    short_quote=_short_quote(str(item.get("short_quote") or "")),
                    note=(str(item["note"]) if item.get("note") else None),
                    coverage_kind=coverage_kind,
                )
            )

        return ExtractedSignal(
            sector_ref=SectorRef(
                sector_id=self._known(data.get("sector_id"), self.sector_ids),
                confidence=clamp01(data.get("sector_confidence")),
            ),
            capability_ref=CapabilityRef(
                capability_id=self._known(data.get("capability_id"), self.capability_ids),
                confidence=clamp01(data.get("capability_confidence")),
            ),
            source=SignalSource(reliability=SOURCE_TYPE_RELIABILITY[SourceType(source_type)]),
            classifications=classifications,
            timestamp=timestamp,
        )

    @staticmethod
    def _known(value, known: List[str]) -> Optional[str]:
        if not value:
            return None
        value = str(value)
        if known and value not in known:
            logger.warning("LLM returned unknown id %r", value)
            return None
        return value
