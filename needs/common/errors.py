"""
Engine error taxonomy.

Every error carries the (sector, capability, raw input) context a caller
needs to retry. None of them is raised after state has been mutated.
"""

from typing import Optional


class NeedEngineError(Exception):
    """Base class for all engine failures"""

    def __init__(
        self,
        message: str,
        *,
        sector_id: Optional[str] = None,
        capability_id: Optional[str] = None,
        raw_input_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.sector_id = sector_id
        self.capability_id = capability_id
        self.raw_input_id = raw_input_id

    def context(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "sector_id": self.sector_id,
            "capability_id": self.capability_id,
            "raw_input_id": self.raw_input_id,
        }


class ExtractionError(NeedEngineError):
    """Extractor failed, timed out, or produced unusable output"""


class EvaluationError(NeedEngineError):
    """Evaluator failed, timed out, or proposed an out-of-domain status"""


class RepositoryError(NeedEngineError):
    """Persistence failure; the evaluation is aborted as a whole"""


class IllegalTransitionError(NeedEngineError):
    """A status change outside the transition graph.

    Raised by the transition validator and recorded by the engine as a
    guardrail outcome. Callers of the engine never see it.
    """

    def __init__(self, from_status, to_status, **context):
        super().__init__(
            f"Illegal transition {from_status.value} -> {to_status.value}",
            **context,
        )
        self.from_status = from_status
        self.to_status = to_status
