"""
Need Engine Server

FastAPI server exposing the per-report pipeline and the aggregators.

Endpoints:
- GET /health: Health check
- POST /inputs: Ingest one report and re-evaluate its need
- GET /needs/{sector_id}/{capability_id}: Current need state
- GET /needs/{sector_id}/{capability_id}/audit: Audit trail (JSON or text)
- GET /sectors/{sector_id}/needs: Committed states of a sector
- GET /sectors/{sector_id}/severity: Sector severity from committed states
- POST /sectors/severity: Sector severity from explicit inputs
- POST /tweets/aggregate: Aggregate posts, optionally feeding the engine

Engine errors carry their retry context in the response body:
ExtractionError -> 422, EvaluationError -> 502, RepositoryError -> 503.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from ..aggregation import (
    aggregate_tweets,
    compute_sector_severity,
    sector_inputs_from_states,
    to_need_engine_inputs,
)
from ..common.config import NeedsConfig, ensure_directories, load_config
from ..common.errors import EvaluationError, ExtractionError, NeedEngineError, RepositoryError
from ..common.llm_client import LLMClient
from ..common.logging_config import configure_logging
from ..common.schemas import RawReport, SectorNeedInput, Tweet
from .audit import format_audit_entry
from .evaluator import LLMEvaluator, NeedEvaluator, RuleBasedEvaluator
from .extractor import LLMExtractor, NeedExtractor, RuleBasedExtractor
from .repository import InMemoryNeedsRepository, JsonFileNeedsRepository, NeedsRepository
from .state_engine import NeedStatusEngine, ProcessResult

logger = logging.getLogger("needs.engine.server")

# Global state
config: Optional[NeedsConfig] = None
engine: Optional[NeedStatusEngine] = None

ERROR_STATUS = {
    ExtractionError: 422,
    EvaluationError: 502,
    RepositoryError: 503,
}


def build_repository(cfg: NeedsConfig) -> NeedsRepository:
    if cfg.storage.backend == "memory":
        return InMemoryNeedsRepository()
    return JsonFileNeedsRepository(Path(cfg.storage.path).expanduser())


def build_engine(cfg: NeedsConfig) -> NeedStatusEngine:
    """Wire repository, extractor and evaluator from configuration.

    The LLM-backed stages are used when enabled and an API key is present;
    otherwise the rule-based ones are.
    """
    llm = LLMClient.from_config(cfg.llm)
    timeout = cfg.engine.call_timeout_seconds

    extractor: NeedExtractor
    if cfg.llm.extractor_enabled and llm.is_available:
        extractor = LLMExtractor(
            llm,
            sector_ids=list(cfg.engine.sector_aliases),
            capability_ids=list(cfg.sector.capability_criticality),
            timeout=timeout,
        )
    else:
        extractor = RuleBasedExtractor(
            sector_aliases=cfg.engine.sector_aliases,
            default_sector_id=cfg.engine.default_sector_id,
        )

    evaluator: NeedEvaluator
    if cfg.llm.evaluator_enabled and llm.is_available:
        evaluator = LLMEvaluator(llm, timeout=timeout)
    else:
        evaluator = RuleBasedEvaluator()

    logger.info("Engine ready (extractor=%s, evaluator=%s)", extractor.name, evaluator.model)
    return NeedStatusEngine(build_repository(cfg), extractor, evaluator, config=cfg.engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize components on startup"""
    global config, engine

    ensure_directories()
    config = load_config()
    engine = build_engine(config)
    logger.info("Ready to receive reports (storage: %s)", config.storage.backend)

    yield

    logger.info("Shutting down")
    engine.close()


app = FastAPI(
    title="Need Status Engine",
    description="Governed severity status for (sector, capability) needs",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(NeedEngineError)
async def engine_error_handler(request: Request, exc: NeedEngineError):
    status_code = 500
    for error_cls, code in ERROR_STATUS.items():
        if isinstance(exc, error_cls):
            status_code = code
            break
    return JSONResponse(status_code=status_code, content=exc.context())


# =============================================================================
# Request/Response Models
# =============================================================================

class InputSubmission(RawReport):
    """Report plus an optional evaluation time"""
    now: Optional[datetime] = None


class TweetBatch(BaseModel):
    event_id: str
    tweets: List[Tweet] = Field(default_factory=list)
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    sector_id: Optional[str] = None
    capability_id: Optional[str] = None
    ingest: bool = False


class SectorSeverityRequest(BaseModel):
    needs: List[SectorNeedInput] = Field(default_factory=list)


def _require_engine() -> NeedStatusEngine:
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def _result_payload(result: ProcessResult) -> dict:
    return {
        "deduped": result.deduped,
        "raw_input_id": result.raw_input.id,
        "signal_id": result.signal.id if result.signal else None,
        "skipped_reason": result.skipped_reason,
        "need_state": result.need_state.model_dump(mode="json") if result.need_state else None,
        "audit_entry": result.audit_entry.model_dump(mode="json") if result.audit_entry else None,
    }


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "needs",
        "initialized": engine is not None,
        "extractor": engine.extractor.name if engine else None,
        "evaluator": engine.evaluator.model if engine else None,
        "stalled_calls": engine.stalled_calls if engine else 0,
    }


@app.post("/inputs")
def submit_input(submission: InputSubmission):
    """Ingest one report; duplicates are acknowledged without re-processing."""
    eng = _require_engine()
    report = RawReport(**submission.model_dump(exclude={"now"}))
    result = eng.process_raw_input(report, now=submission.now)
    return _result_payload(result)


@app.get("/needs/{sector_id}/{capability_id}")
def get_need(sector_id: str, capability_id: str):
    eng = _require_engine()
    state = eng.repository.get_need_state(sector_id, capability_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Need not found")
    return state.model_dump(mode="json")


@app.get("/needs/{sector_id}/{capability_id}/audit")
def get_need_audit(sector_id: str, capability_id: str, limit: int = 50, format: str = "json"):
    eng = _require_engine()
    entries = eng.repository.list_audit(sector_id, capability_id, limit=limit)
    if format == "text":
        return PlainTextResponse("\n\n".join(format_audit_entry(e) for e in entries))
    return {
        "sector_id": sector_id,
        "capability_id": capability_id,
        "count": len(entries),
        "entries": [e.model_dump(mode="json") for e in entries],
    }


@app.get("/sectors/{sector_id}/needs")
def get_sector_needs(sector_id: str):
    eng = _require_engine()
    states = eng.repository.list_need_states(sector_id)
    return {"sector_id": sector_id, "needs": [s.model_dump(mode="json") for s in states]}


@app.get("/sectors/{sector_id}/severity")
def get_sector_severity(sector_id: str):
    """Sector severity over the committed states of every need in the sector"""
    eng = _require_engine()
    cfg = config or NeedsConfig()
    inputs = sector_inputs_from_states(
        eng.repository.list_need_states(sector_id),
        cfg.sector.capability_criticality,
        fragility_threshold=cfg.engine.fragility_alert_threshold,
    )
    result = compute_sector_severity(inputs, cfg.sector)
    return {"sector_id": sector_id, **result.model_dump(mode="json")}


@app.post("/sectors/severity")
async def post_sector_severity(request: SectorSeverityRequest):
    cfg = config or NeedsConfig()
    return compute_sector_severity(request.needs, cfg.sector).model_dump(mode="json")


@app.post("/tweets/aggregate")
def post_tweet_aggregate(batch: TweetBatch):
    """
    Aggregate a batch of posts.

    With ingest=true and both sector_id and capability_id set, every bucket is
    also fed to the engine as a report.
    """
    cfg = config or NeedsConfig()
    aggregated = aggregate_tweets(
        batch.event_id,
        batch.tweets,
        window_start=batch.window_start,
        window_end=batch.window_end,
        config=cfg.tweets,
    )
    response = {"aggregated": aggregated.model_dump(mode="json"), "results": []}

    if batch.ingest:
        if not (batch.sector_id and batch.capability_id):
            raise HTTPException(status_code=400, detail="ingest requires sector_id and capability_id")
        eng = _require_engine()
        reports = to_need_engine_inputs(aggregated, batch.sector_id, batch.capability_id, config=cfg.tweets)
        response["results"] = [_result_payload(eng.process_raw_input(r)) for r in reports]

    return response


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the need engine server"""
    import uvicorn

    configure_logging()
    cfg = load_config()

    logger.info("Starting server on %s:%d", cfg.server.host, cfg.server.port)
    uvicorn.run(
        "needs.engine.server:app",
        host=cfg.server.host,
        port=cfg.server.port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
