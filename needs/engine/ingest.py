"""
Raw Input Store

Stage 1 of the pipeline: every inbound report is hashed and recorded once.
Re-submitting the same (source, timestamp, text) is a no-op that returns the
original raw input id.
"""

import hashlib
import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime

from ..common.schemas.need_records import (
    RawInput,
    RawReport,
    SourceType,
    as_utc,
    generate_id,
)
from .repository import NeedsRepository

logger = logging.getLogger("needs.engine.ingest")


def compute_dedupe_hash(
    source_type: SourceType,
    source_name: str,
    timestamp: datetime,
    text: str,
) -> str:
    """SHA-256 over source identity, normalized UTC timestamp and text."""
    parts = [
        SourceType(source_type).value,
        (source_name or "").strip().lower(),
        as_utc(timestamp).isoformat(),
        (text or "").strip(),
    ]
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


def window_index(timestamp: datetime, window_minutes: int) -> int:
    """Index of the fixed-size evaluation window containing timestamp"""
    seconds = max(1, int(window_minutes)) * 60
    return math.floor(as_utc(timestamp).timestamp() / seconds)


def compute_window_id(timestamp: datetime, window_minutes: int) -> str:
    return f"{int(window_minutes)}m-{window_index(timestamp, window_minutes)}"


@dataclass
class IngestResult:
    """Outcome of one ingest call"""
    deduped: bool
    raw_id: str
    raw_input: RawInput


class RawInputStore:
    """Deduplicating front door to the repository"""

    def __init__(self, repository: NeedsRepository):
        self.repository = repository
        self._lock = threading.Lock()

    def ingest(self, report: RawReport) -> IngestResult:
        dedupe_hash = compute_dedupe_hash(
            report.source_type,
            report.source_name,
            report.timestamp,
            report.text,
        )

        with self._lock:
            existing = self.repository.find_raw_input_by_hash(dedupe_hash)
            if existing is not None:
                logger.debug("Duplicate report from %s, returning %s", report.source_name, existing.id)
                return IngestResult(deduped=True, raw_id=existing.id, raw_input=existing)

            raw_input = RawInput(
                id=generate_id("raw"),
                source_type=report.source_type,
                source_name=report.source_name,
                timestamp=as_utc(report.timestamp),
                text=report.text,
                dedupe_hash=dedupe_hash,
                geo_hint=report.geo_hint,
            )
            self.repository.insert_raw_input(raw_input)

        logger.info("Ingested %s from %s/%s", raw_input.id, raw_input.source_type.value, raw_input.source_name)
        return IngestResult(deduped=False, raw_id=raw_input.id, raw_input=raw_input)
