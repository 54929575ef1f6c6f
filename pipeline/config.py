"""
Pipeline Configuration

Loads config/pipeline_config.json and merges it over built-in defaults.
Every component takes a PipelineConfig; `get_config()` returns the shared
instance used by the API and CLI.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

project_root = Path(__file__).parent.parent


DEFAULTS: Dict[str, Any] = {
    "database_url": "sqlite:///" + str(project_root / "data" / "catalysts.db"),
    "scorer": {
        "impact_base": {
            "rate-decision": 0.95,
            "regulatory": 0.7,
            "macro": 0.6,
            "earnings": 0.5,
            "filing": 0.4,
        },
        "confidence_base": {
            "rate-decision": 0.7,
            "regulatory": 0.6,
            "macro": 0.5,
            "earnings": 0.7,
            "filing": 0.9,
        },
        "filing_form_impact": {
            "8-K": 0.6,
            "10-K": 0.8,
            "10-Q": 0.7,
            "S-1": 0.95,
            "DEF 14A": 0.5,
        },
        "filing_item_bump": 0.2,
        "filing_item_cap": 0.8,
        "default_impact": 0.5,
        "default_confidence": 0.5,
        "history_lookback": 20,
        "outcome_lookback": 10,
    },
    "market_cap": {
        "mega_cap_threshold": 500_000_000_000,
        "mega_cap_multiplier": 1.2,
        "small_cap_threshold": 10_000_000_000,
        "small_cap_multiplier": 0.8,
        "small_cap_confidence_penalty": 0.1,
    },
    "normalizer": {
        "related_weight": 0.6,
        "max_related": 2,
        "related_min_impact": 0.5,
    },
    "predictor": {
        "type_weights": {
            "rate-decision": 0.95,
            "earnings": 0.8,
            "regulatory": 0.75,
            "filing": 0.4,
        },
        "default_weight": 0.5,
        "base_confidence": 0.7,
        "min_confidence": 0.3,
        "max_confidence": 0.95,
        "default_volatility": 0.2,
        "cache_ttl_seconds": 3600,
        "similar_events_k": 3,
        "vector_candidate_limit": 500,
    },
    "embeddings": {
        "dimension": 384,
        "batch_size": 100,
        "provider_batch_size": 50,
        "provider_model": "text-embedding-3-small",
        "local_model": None,
    },
    "ingestion": {
        "max_attempts": 4,
        "base_delay_seconds": 1.0,
        "backoff_factor": 2.0,
        "max_delay_seconds": 30.0,
        "rate_limit_sleep_seconds": 60.0,
        "timeout_seconds": 30,
        "regulatory": {
            "record_cap": 100,
            "window_days": 30,
            "fallback_window_days": 90,
            "call_delay_seconds": 0.25,
        },
        "filings": {
            "record_cap": 50,
            "window_days": 1,
            "fallback_window_days": 7,
            "call_delay_seconds": 0.1,
            "form_types": ["8-K", "10-K", "10-Q", "S-1", "S-3", "S-8", "DEF 14A"],
        },
        "earnings": {
            "record_cap": 20,
            "window_days": 30,
            "fallback_window_days": 90,
            "call_delay_seconds": 2.5,
        },
    },
    "freshness": {
        "credential_expiry_days": 30,
        "sources": {
            "regulatory": {"label": "FDA", "catalyst_type": "regulatory",
                           "measure": "event_date", "max_age_hours": 2880},
            "filings": {"label": "SEC", "catalyst_type": "filing",
                        "measure": "event_date", "max_age_hours": 24},
            "earnings": {"label": "Earnings", "catalyst_type": "earnings",
                         "measure": "created_at", "max_age_hours": 24},
        },
    },
    "channel": {
        "backend": "memory",
        "queue_size": 1000,
        "redis_channel": "catalyst-updates",
    },
}


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class PipelineConfig:
    """
    Pipeline configuration with defaults.

    Sections are plain dicts; `section()` returns one, `get()` walks a
    dotted path.
    """

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to pipeline_config.json
            overrides: Values merged over the file (used by tests)
        """
        if config_path is None:
            config_path = os.environ.get(
                "CATALYST_CONFIG_PATH",
                project_root / "config" / "pipeline_config.json"
            )

        self.config_path = Path(config_path)
        self.data = _deep_merge(DEFAULTS, self._load_file())
        if overrides:
            self.data = _deep_merge(self.data, overrides)

        env_db = os.environ.get("CATALYST_DB_URL")
        if env_db:
            self.data["database_url"] = env_db

    def _load_file(self) -> Dict:
        """Load configuration file if present."""
        if self.config_path.exists():
            with open(self.config_path, 'r', encoding='utf-8') as f:
                logger.debug(f"Loading pipeline config from {self.config_path}")
                return json.load(f)
        logger.info(f"No config at {self.config_path}, using defaults")
        return {}

    def section(self, name: str) -> Dict[str, Any]:
        return self.data.get(name, {})

    def get(self, path: str, default: Any = None) -> Any:
        """Look up a dotted path such as 'predictor.cache_ttl_seconds'."""
        node: Any = self.data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    @property
    def database_url(self) -> str:
        return self.data["database_url"]


# Module-level singleton
_config: Optional[PipelineConfig] = None


def get_config(config_path: Optional[str] = None, force_reload: bool = False) -> PipelineConfig:
    """Get the pipeline configuration singleton."""
    global _config
    if _config is None or force_reload:
        _config = PipelineConfig(config_path)
    return _config
