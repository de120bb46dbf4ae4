"""
Tweet Signal Aggregator

Batch stage that classifies a window of social posts into the engine's
classification vocabulary and aggregates them per classification type.
Pure function of its inputs; safe to run in parallel.

Per-post classification: an upstream classification is used verbatim;
otherwise the closed pattern set is applied.

Per bucket two confidences are reported:
- deterministic: mean upstream confidence, 0 when no post in the bucket
  carries an upstream classification
- heuristic: mean confidence scaled by support, saturating at 5 posts

TweetConfig.confidence_mode selects which one ranks buckets and feeds
aggregated_confidence. One deployment uses one convention.
"""

import json
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..common.config import TweetConfig
from ..common.llm_utils import clamp01
from ..common.patterns import CONTRADICTION_RULES, has_augmentation, match_classifications
from ..common.schemas.need_records import (
    ClassificationType,
    RawReport,
    SourceType,
    as_utc,
    utcnow,
)
from ..common.schemas.tweet_signals import (
    AggregatedClassification,
    AggregatedTweetSignal,
    KeyEvidence,
    SupportingQuote,
    Tweet,
)

logger = logging.getLogger("needs.aggregation.tweets")

EMPTY_SUMMARY = "no relevant tweets in window"
CONTRADICTION_NOTE = "Contradictions detected among sources."
SUPPORT_SATURATION = 5
SUMMARY_BUCKETS = 3

CONFIDENCE_MODES = ("heuristic", "deterministic")


def round4(value: float) -> float:
    return round(value, 4)


def extract_quote(text: str, max_chars: int = 120) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 1] + "…"


def classify_tweet(tweet: Tweet) -> List[Tuple[ClassificationType, float]]:
    """Upstream label if present, else pattern classification"""
    if tweet.classification is not None:
        return [(tweet.classification.type, tweet.classification.confidence)]
    return match_classifications(tweet.text)


def detect_contradictions(tweets: List[Tweet], min_support: int = 2, max_chars: int = 120):
    """Flag opposing claims only when both sides have min_support posts.

    A post matching both sides ("no team arrived", "not enough") counts for
    side B only.
    """
    evidence: List[KeyEvidence] = []
    rules_hit: List[str] = []
    for rule in CONTRADICTION_RULES:
        side_b = [t for t in tweets if rule.side_b.search(t.text)]
        side_a = [t for t in tweets if rule.side_a.search(t.text) and not rule.side_b.search(t.text)]
        if len(side_a) < min_support or len(side_b) < min_support:
            continue
        rules_hit.append(rule.name)
        for t in side_a[:2]:
            evidence.append(KeyEvidence(tweet_id=t.tweet_id, role="supporting", quote=extract_quote(t.text, max_chars)))
        for t in side_b[:2]:
            evidence.append(
                KeyEvidence(tweet_id=t.tweet_id, role="contradicting", quote=extract_quote(t.text, max_chars))
            )
    return bool(rules_hit), evidence, rules_hit


def format_classification_type(ctype: ClassificationType) -> str:
    return ctype.label


def _in_window(tweet: Tweet, start: Optional[datetime], end: Optional[datetime]) -> bool:
    ts = as_utc(tweet.created_at)
    if start is not None and ts < as_utc(start):
        return False
    if end is not None and ts > as_utc(end):
        return False
    return True


def aggregate_tweets(
    event_id: str,
    tweets: List[Tweet],
    window_start: Optional[datetime] = None,
    window_end: Optional[datetime] = None,
    now: Optional[datetime] = None,
    config: Optional[TweetConfig] = None,
) -> AggregatedTweetSignal:
    """
    Aggregate a batch of posts for one event.

    Args:
        event_id: Event the posts belong to
        tweets: Posts, in any order
        window_start / window_end: Optional inclusive bounds; posts outside
            are ignored
        now: Output timestamp (default: current UTC time)
        config: Tweet aggregation settings

    Returns:
        AggregatedTweetSignal with a fixed field set
    """
    cfg = config or TweetConfig()
    if cfg.confidence_mode not in CONFIDENCE_MODES:
        raise ValueError(f"Unknown confidence_mode: {cfg.confidence_mode!r}")
    timestamp = as_utc(now or utcnow())

    selected = [t for t in tweets if _in_window(t, window_start, window_end)]

    if not selected:
        return AggregatedTweetSignal(
            event_id=event_id,
            window_start=as_utc(window_start) if window_start else timestamp,
            window_end=as_utc(window_end) if window_end else timestamp,
            raw_tweet_ids=[],
            aggregated_confidence=0.0,
            classifications=[],
            summary=EMPTY_SUMMARY,
            contradiction_detected=False,
            key_evidence=[],
            method_version=cfg.method_version,
            timestamp=timestamp,
        )

    created = sorted(as_utc(t.created_at) for t in selected)
    start = as_utc(window_start) if window_start else created[0]
    end = as_utc(window_end) if window_end else created[-1]

    buckets: Dict[ClassificationType, List[Tuple[Tweet, float]]] = OrderedDict()
    for tweet in selected:
        for ctype, confidence in classify_tweet(tweet):
            buckets.setdefault(ctype, []).append((tweet, confidence))

    classifications: List[AggregatedClassification] = []
    for ctype, entries in buckets.items():
        support = len(entries)
        avg = sum(c for _, c in entries) / support
        has_upstream = any(t.classification is not None for t, _ in entries)
        deterministic = avg if has_upstream else 0.0
        count_factor = min(support / SUPPORT_SATURATION, 1.0)
        heuristic = clamp01(avg * (0.5 + 0.5 * count_factor))

        quotes = [
            SupportingQuote(
                tweet_id=t.tweet_id,
                author_handle=t.author_handle,
                created_at=t.created_at,
                quote_text=extract_quote(t.text, cfg.quote_max_chars),
                tweet_confidence=round4(clamp01(c)),
            )
            for t, c in entries[: cfg.max_quotes]
        ]

        bucket = AggregatedClassification(
            type=ctype,
            heuristic_agg_confidence=round4(heuristic),
            deterministic_agg_confidence=round4(deterministic),
            support_count=support,
            supporting_quotes=quotes,
        )
        if ctype == ClassificationType.COVERAGE_ACTIVITY:
            bucket.augmentation_flag = any(has_augmentation(t.text) for t, _ in entries)
        classifications.append(bucket)

    classifications.sort(key=lambda c: bucket_confidence(c, cfg), reverse=True)
    aggregated_confidence = max(bucket_confidence(c, cfg) for c in classifications) if classifications else 0.0

    contradiction, contradiction_evidence, rules_hit = detect_contradictions(
        selected, cfg.contradiction_min_support, cfg.quote_max_chars
    )
    if rules_hit:
        logger.info("Event %s: contradictions on %s", event_id, ", ".join(rules_hit))

    key_evidence: List[KeyEvidence] = []
    for c in classifications[:SUMMARY_BUCKETS]:
        if c.supporting_quotes:
            q = c.supporting_quotes[0]
            key_evidence.append(KeyEvidence(tweet_id=q.tweet_id, role="supporting", quote=q.quote_text))
    seen = {k.tweet_id for k in key_evidence}
    for item in contradiction_evidence:
        if item.tweet_id not in seen:
            key_evidence.append(item)
            seen.add(item.tweet_id)

    parts = [
        f"{format_classification_type(c.type)} ({c.support_count} tweets, conf {bucket_confidence(c, cfg):.2f})"
        for c in classifications[:SUMMARY_BUCKETS]
    ]
    if contradiction:
        parts.append(CONTRADICTION_NOTE)
    summary = "; ".join(parts)[: cfg.summary_max_chars] or EMPTY_SUMMARY

    return AggregatedTweetSignal(
        event_id=event_id,
        window_start=start,
        window_end=end,
        raw_tweet_ids=[t.tweet_id for t in selected],
        aggregated_confidence=round4(aggregated_confidence),
        classifications=classifications,
        summary=summary,
        contradiction_detected=contradiction,
        key_evidence=key_evidence,
        method_version=cfg.method_version,
        timestamp=timestamp,
    )


def bucket_confidence(bucket: AggregatedClassification, config: TweetConfig) -> float:
    if config.confidence_mode == "deterministic":
        return bucket.deterministic_agg_confidence
    return bucket.heuristic_agg_confidence


# ============================================================================
# Bridge into the per-report pipeline
# ============================================================================

def to_need_engine_inputs(
    aggregated: AggregatedTweetSignal,
    sector_id: Optional[str] = None,
    capability_id: Optional[str] = None,
    config: Optional[TweetConfig] = None,
) -> List[RawReport]:
    """
    One RawReport per bucket, carrying a JSON payload the rule-based
    extractor reads verbatim. Buckets with zero confidence are dropped.
    """
    cfg = config or TweetConfig()
    reports: List[RawReport] = []
    for bucket in aggregated.classifications:
        confidence = bucket_confidence(bucket, cfg)
        if confidence <= 0:
            continue
        payload = {
            "kind": "tweet_aggregate",
            "event_id": aggregated.event_id,
            "classification_type": bucket.type.value,
            "confidence": confidence,
            "support_count": bucket.support_count,
            "augmentation_flag": bool(bucket.augmentation_flag),
            "top_quote": bucket.supporting_quotes[0].quote_text if bucket.supporting_quotes else "",
            "summary": aggregated.summary,
            "sector_id": sector_id,
            "capability_id": capability_id,
        }
        reports.append(
            RawReport(
                source_type=SourceType.TWITTER,
                source_name=f"tweet-aggregator:{aggregated.event_id}",
                timestamp=aggregated.window_end,
                text=json.dumps(payload, ensure_ascii=False, sort_keys=True),
            )
        )
    return reports
