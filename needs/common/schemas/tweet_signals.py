"""
Tweet Signal Schemas v1

Input posts and the windowed aggregate produced from them. The aggregate has
a fixed top-level field set; unknown fields are rejected.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .need_records import ClassificationType, SourceReliability


class UpstreamClassification(BaseModel):
    """Per-post label supplied by an upstream classifier"""
    type: ClassificationType
    confidence: float = Field(ge=0.0, le=1.0)


class Tweet(BaseModel):
    tweet_id: str
    author_handle: str
    author_type_estimate: SourceReliability = SourceReliability.SOCIAL_NEWS
    created_at: datetime
    text: str
    retweet_count: int = 0
    reply_count: int = 0
    classification: Optional[UpstreamClassification] = None


class SupportingQuote(BaseModel):
    tweet_id: str
    author_handle: str
    created_at: datetime
    quote_text: str
    tweet_confidence: float


class AggregatedClassification(BaseModel):
    """One classification bucket"""
    type: ClassificationType
    heuristic_agg_confidence: float
    deterministic_agg_confidence: float
    support_count: int
    supporting_quotes: List[SupportingQuote] = Field(default_factory=list)
    augmentation_flag: Optional[bool] = None  # coverage buckets only
    notes: Optional[str] = None


class KeyEvidence(BaseModel):
    tweet_id: str
    role: str  # "supporting" | "contradicting"
    quote: str


class AggregatedTweetSignal(BaseModel):
    """Windowed aggregate of a batch of posts for one event"""
    model_config = ConfigDict(extra="forbid")

    event_id: str
    window_start: datetime
    window_end: datetime
    raw_tweet_ids: List[str]
    source_reliability_tag: SourceReliability = SourceReliability.SOCIAL_NEWS
    aggregated_confidence: float
    classifications: List[AggregatedClassification]
    summary: str
    contradiction_detected: bool
    key_evidence: List[KeyEvidence]
    method_version: str
    timestamp: datetime
