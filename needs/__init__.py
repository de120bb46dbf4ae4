"""
Need-Status Decision Engine

Turns untrusted situation reports about a (sector, capability) pair into a
governed severity status, and aggregates statuses into sector severity.

Philosophy:
- Every evaluation leaves an audit entry, including the ones guardrails override
- Extraction and evaluation are pluggable; guardrails are not
- Status only changes along the legal transition graph
- Aggregators are pure functions of their inputs

Usage:
    from needs.common import load_config
    from needs.common.schemas import NeedStatus, RawReport
    from needs.engine import NeedStatusEngine, InMemoryNeedsRepository
    from needs.aggregation import aggregate_tweets, compute_sector_severity
"""

__version__ = "0.1.0"
