"""
Need Engine Common Module

Shared infrastructure for the engine and the aggregators.
"""

from .config import NeedsConfig, load_config
from .errors import (
    NeedEngineError,
    ExtractionError,
    EvaluationError,
    RepositoryError,
    IllegalTransitionError,
)
from .llm_client import LLMClient

__all__ = [
    "NeedsConfig",
    "load_config",
    "NeedEngineError",
    "ExtractionError",
    "EvaluationError",
    "RepositoryError",
    "IllegalTransitionError",
    "LLMClient",
]
