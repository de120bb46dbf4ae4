"""
Configuration Management for the Need-Status Engine

Loads configuration from ~/.needs/config.json and environment variables.
Every calibration constant (score thresholds, guardrail minimums, sector
weights) lives here rather than in the modules that consume it.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger("needs.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".needs"
CONFIG_PATH = CONFIG_DIR / "config.json"
LOGS_DIR = CONFIG_DIR / "logs"
STORE_PATH = CONFIG_DIR / "needs_store.json"


def _default_source_weights() -> Dict[str, float]:
    return {
        "institutional": 1.0,
        "ngo": 1.0,
        "social_news": 0.4,
        "original_context": 1.0,
    }


@dataclass
class EngineConfig:
    """Score aggregation and guardrail calibration"""
    source_weights: Dict[str, float] = field(default_factory=_default_source_weights)
    demand_strong_threshold: float = 0.7
    insufficiency_strong_threshold: float = 0.6
    stabilization_strong_threshold: float = 0.6
    fragility_alert_threshold: float = 0.5
    coverage_active_threshold: float = 0.6
    stabilization_window_threshold: float = 0.5  # per-window evidence needed to count a window
    stabilization_min_consecutive_windows: int = 2
    min_evaluator_confidence: float = 0.65
    rolling_window_hours: float = 24.0
    window_minutes: int = 60
    call_timeout_seconds: float = 30.0
    max_notes: int = 20
    # sector id -> place names that resolve free text to it
    sector_aliases: Dict[str, List[str]] = field(default_factory=dict)
    default_sector_id: Optional[str] = None


@dataclass
class TweetConfig:
    """Tweet aggregation settings"""
    # "heuristic" ranks buckets by support-weighted pattern confidence,
    # "deterministic" by upstream-classifier confidence only.
    confidence_mode: str = "heuristic"
    max_quotes: int = 5
    quote_max_chars: int = 120
    summary_max_chars: int = 500
    contradiction_min_support: int = 2
    method_version: str = "tweet-agg-v1"


def _default_severity_by_status() -> Dict[str, float]:
    return {"RED": 1.0, "ORANGE": 0.7, "YELLOW": 0.4, "GREEN": 0.1, "WHITE": 0.0}


def _default_criticality_weights() -> Dict[str, float]:
    return {"life_threatening": 3.0, "high": 2.0, "medium": 1.0, "low": 0.5}


def _default_capability_criticality() -> Dict[str, str]:
    return {
        "medical": "life_threatening",
        "water": "life_threatening",
        "rescue": "life_threatening",
        "food": "high",
        "shelter": "high",
        "power": "medium",
    }


def _default_status_thresholds() -> Tuple[Tuple[str, float], ...]:
    return (("RED", 0.75), ("ORANGE", 0.55), ("YELLOW", 0.30), ("GREEN", 0.05))


@dataclass
class SectorSeverityConfig:
    """Sector-wide severity aggregation settings"""
    severity_by_status: Dict[str, float] = field(default_factory=_default_severity_by_status)
    criticality_weights: Dict[str, float] = field(default_factory=_default_criticality_weights)
    capability_criticality: Dict[str, str] = field(default_factory=_default_capability_criticality)
    status_thresholds: Tuple[Tuple[str, float], ...] = field(default_factory=_default_status_thresholds)
    fragile_green_min_severity: float = 0.3
    fragility_penalty_alpha: float = 0.15
    uncertainty_threshold: float = 0.4
    life_threatening_red_floor: str = "ORANGE"
    high_red_count_for_sector_red: int = 2
    top_contributors: int = 5


@dataclass
class LLMConfig:
    """LLM provider configuration shared by extractor and evaluator"""
    provider: str = "anthropic"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash-exp"
    extractor_enabled: bool = True
    evaluator_enabled: bool = True

    def api_key_for(self, provider: str) -> str:
        return getattr(self, f"{provider}_api_key", "")

    def model_for(self, provider: str) -> str:
        return getattr(self, f"{provider}_model", "")


@dataclass
class StorageConfig:
    """Needs repository backend"""
    backend: str = "json"  # "json" or "memory"
    path: str = str(STORE_PATH)


@dataclass
class ServerConfig:
    """HTTP server configuration"""
    host: str = "0.0.0.0"
    port: int = 8090


@dataclass
class NeedsConfig:
    """Main configuration"""
    engine: EngineConfig = field(default_factory=EngineConfig)
    tweets: TweetConfig = field(default_factory=TweetConfig)
    sector: SectorSeverityConfig = field(default_factory=SectorSeverityConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_engine_config(data: dict) -> EngineConfig:
    """Parse engine section from config dict"""
    engine_data = data.get("engine", {})
    defaults = EngineConfig()
    weights = _default_source_weights()
    weights.update(engine_data.get("source_weights", {}))
    return EngineConfig(
        source_weights=weights,
        demand_strong_threshold=engine_data.get("demand_strong_threshold", defaults.demand_strong_threshold),
        insufficiency_strong_threshold=engine_data.get(
            "insufficiency_strong_threshold", defaults.insufficiency_strong_threshold
        ),
        stabilization_strong_threshold=engine_data.get(
            "stabilization_strong_threshold", defaults.stabilization_strong_threshold
        ),
        fragility_alert_threshold=engine_data.get("fragility_alert_threshold", defaults.fragility_alert_threshold),
        coverage_active_threshold=engine_data.get("coverage_active_threshold", defaults.coverage_active_threshold),
        stabilization_window_threshold=engine_data.get(
            "stabilization_window_threshold", defaults.stabilization_window_threshold
        ),
        stabilization_min_consecutive_windows=engine_data.get(
            "stabilization_min_consecutive_windows", defaults.stabilization_min_consecutive_windows
        ),
        min_evaluator_confidence=engine_data.get("min_evaluator_confidence", defaults.min_evaluator_confidence),
        rolling_window_hours=engine_data.get("rolling_window_hours", defaults.rolling_window_hours),
        window_minutes=engine_data.get("window_minutes", defaults.window_minutes),
        call_timeout_seconds=engine_data.get("call_timeout_seconds", defaults.call_timeout_seconds),
        max_notes=engine_data.get("max_notes", defaults.max_notes),
        sector_aliases=engine_data.get("sector_aliases", {}),
        default_sector_id=engine_data.get("default_sector_id"),
    )


def _parse_tweet_config(data: dict) -> TweetConfig:
    """Parse tweets section from config dict"""
    tweet_data = data.get("tweets", {})
    defaults = TweetConfig()
    return TweetConfig(
        confidence_mode=tweet_data.get("confidence_mode", defaults.confidence_mode),
        max_quotes=tweet_data.get("max_quotes", defaults.max_quotes),
        quote_max_chars=tweet_data.get("quote_max_chars", defaults.quote_max_chars),
        summary_max_chars=tweet_data.get("summary_max_chars", defaults.summary_max_chars),
        contradiction_min_support=tweet_data.get("contradiction_min_support", defaults.contradiction_min_support),
        method_version=tweet_data.get("method_version", defaults.method_version),
    )


def _parse_sector_config(data: dict) -> SectorSeverityConfig:
    """Parse sector section from config dict"""
    sector_data = data.get("sector", {})
    defaults = SectorSeverityConfig()
    severity = _default_severity_by_status()
    severity.update(sector_data.get("severity_by_status", {}))
    criticality = _default_criticality_weights()
    criticality.update(sector_data.get("criticality_weights", {}))
    capability_criticality = _default_capability_criticality()
    capability_criticality.update(sector_data.get("capability_criticality", {}))
    thresholds = defaults.status_thresholds
    if "status_thresholds" in sector_data:
        # {"RED": 0.8, ...} -> descending tuple pairs
        pairs = [(str(k).upper(), float(v)) for k, v in sector_data["status_thresholds"].items()]
        thresholds = tuple(sorted(pairs, key=lambda p: p[1], reverse=True))
    return SectorSeverityConfig(
        severity_by_status=severity,
        criticality_weights=criticality,
        capability_criticality=capability_criticality,
        status_thresholds=thresholds,
        fragile_green_min_severity=sector_data.get(
            "fragile_green_min_severity", defaults.fragile_green_min_severity
        ),
        fragility_penalty_alpha=sector_data.get("fragility_penalty_alpha", defaults.fragility_penalty_alpha),
        uncertainty_threshold=sector_data.get("uncertainty_threshold", defaults.uncertainty_threshold),
        life_threatening_red_floor=sector_data.get(
            "life_threatening_red_floor", defaults.life_threatening_red_floor
        ),
        high_red_count_for_sector_red=sector_data.get(
            "high_red_count_for_sector_red", defaults.high_red_count_for_sector_red
        ),
        top_contributors=sector_data.get("top_contributors", defaults.top_contributors),
    )


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    defaults = LLMConfig()
    return LLMConfig(
        provider=llm_data.get("provider", defaults.provider),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", defaults.anthropic_model),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", defaults.openai_model),
        google_api_key=llm_data.get("google_api_key", ""),
        google_model=llm_data.get("google_model", defaults.google_model),
        extractor_enabled=llm_data.get("extractor_enabled", True),
        evaluator_enabled=llm_data.get("evaluator_enabled", True),
    )


def _parse_storage_config(data: dict) -> StorageConfig:
    """Parse storage section from config dict"""
    storage_data = data.get("storage", {})
    return StorageConfig(
        backend=storage_data.get("backend", "json"),
        path=storage_data.get("path", str(STORE_PATH)),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server section from config dict"""
    server_data = data.get("server", {})
    return ServerConfig(
        host=server_data.get("host", "0.0.0.0"),
        port=server_data.get("port", 8090),
    )


def load_config() -> NeedsConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.needs/config.json)
    3. Default values
    """
    config = NeedsConfig()

    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.engine = _parse_engine_config(data)
            config.tweets = _parse_tweet_config(data)
            config.sector = _parse_sector_config(data)
            config.llm = _parse_llm_config(data)
            config.storage = _parse_storage_config(data)
            config.server = _parse_server_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file: %s", e)

    if os.getenv("NEEDS_MIN_EVALUATOR_CONFIDENCE"):
        config.engine.min_evaluator_confidence = float(os.getenv("NEEDS_MIN_EVALUATOR_CONFIDENCE"))
    if os.getenv("NEEDS_ROLLING_WINDOW_HOURS"):
        config.engine.rolling_window_hours = float(os.getenv("NEEDS_ROLLING_WINDOW_HOURS"))
    if os.getenv("NEEDS_CALL_TIMEOUT"):
        config.engine.call_timeout_seconds = float(os.getenv("NEEDS_CALL_TIMEOUT"))
    if os.getenv("NEEDS_TWEET_CONFIDENCE_MODE"):
        config.tweets.confidence_mode = os.getenv("NEEDS_TWEET_CONFIDENCE_MODE")

    if os.getenv("NEEDS_STORAGE_BACKEND"):
        config.storage.backend = os.getenv("NEEDS_STORAGE_BACKEND")
    if os.getenv("NEEDS_STORE_PATH"):
        config.storage.path = os.getenv("NEEDS_STORE_PATH")
    if os.getenv("NEEDS_PORT"):
        config.server.port = int(os.getenv("NEEDS_PORT"))

    # LLM env var overrides (track env-sourced keys so they are never saved)
    _env_llm_map = {
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "GOOGLE_API_KEY": "google_api_key",
        "GEMINI_API_KEY": "google_api_key",
        "GOOGLE_MODEL": "google_model",
        "NEEDS_LLM_PROVIDER": "provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    return config


def save_config(config: NeedsConfig) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    llm_section = {
        "provider": config.llm.provider,
        "anthropic_api_key": config.llm.anthropic_api_key,
        "anthropic_model": config.llm.anthropic_model,
        "openai_api_key": config.llm.openai_api_key,
        "openai_model": config.llm.openai_model,
        "google_api_key": config.llm.google_api_key,
        "google_model": config.llm.google_model,
        "extractor_enabled": config.llm.extractor_enabled,
        "evaluator_enabled": config.llm.evaluator_enabled,
    }
    for key in ("anthropic_api_key", "openai_api_key", "google_api_key"):
        if key in env_sourced:
            llm_section[key] = ""

    engine = config.engine
    sector = config.sector
    data = {
        "engine": {
            "source_weights": dict(engine.source_weights),
            "demand_strong_threshold": engine.demand_strong_threshold,
            "insufficiency_strong_threshold": engine.insufficiency_strong_threshold,
            "stabilization_strong_threshold": engine.stabilization_strong_threshold,
            "fragility_alert_threshold": engine.fragility_alert_threshold,
            "coverage_active_threshold": engine.coverage_active_threshold,
            "stabilization_window_threshold": engine.stabilization_window_threshold,
            "stabilization_min_consecutive_windows": engine.stabilization_min_consecutive_windows,
            "min_evaluator_confidence": engine.min_evaluator_confidence,
            "rolling_window_hours": engine.rolling_window_hours,
            "window_minutes": engine.window_minutes,
            "call_timeout_seconds": engine.call_timeout_seconds,
            "max_notes": engine.max_notes,
            "sector_aliases": dict(engine.sector_aliases),
            "default_sector_id": engine.default_sector_id,
        },
        "tweets": {
            "confidence_mode": config.tweets.confidence_mode,
            "max_quotes": config.tweets.max_quotes,
            "quote_max_chars": config.tweets.quote_max_chars,
            "summary_max_chars": config.tweets.summary_max_chars,
            "contradiction_min_support": config.tweets.contradiction_min_support,
            "method_version": config.tweets.method_version,
        },
        "sector": {
            "severity_by_status": dict(sector.severity_by_status),
            "criticality_weights": dict(sector.criticality_weights),
            "capability_criticality": dict(sector.capability_criticality),
            "status_thresholds": {name: value for name, value in sector.status_thresholds},
            "fragile_green_min_severity": sector.fragile_green_min_severity,
            "fragility_penalty_alpha": sector.fragility_penalty_alpha,
            "uncertainty_threshold": sector.uncertainty_threshold,
            "life_threatening_red_floor": sector.life_threatening_red_floor,
            "high_red_count_for_sector_red": sector.high_red_count_for_sector_red,
            "top_contributors": sector.top_contributors,
        },
        "llm": llm_section,
        "storage": {
            "backend": config.storage.backend,
            "path": config.storage.path,
        },
        "server": {
            "host": config.server.host,
            "port": config.server.port,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)


def ensure_directories() -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
