"""
Need Aggregators

Pure batch stages that run beside the per-report pipeline:
- aggregate_tweets: social posts -> classification buckets
- compute_sector_severity: need statuses -> one sector status
"""

from .tweets import aggregate_tweets, classify_tweet, detect_contradictions, to_need_engine_inputs
from .sector import compute_sector_severity, sector_inputs_from_states, status_from_score

__all__ = [
    "aggregate_tweets",
    "classify_tweet",
    "detect_contradictions",
    "to_need_engine_inputs",
    "compute_sector_severity",
    "sector_inputs_from_states",
    "status_from_score",
]
