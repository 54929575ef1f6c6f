"""
Model Manager

Handles downloading, caching, and loading of the local sentence-embedding
model used when no hosted embedding provider is configured.
Models come from Hugging Face and are loaded lazily on first use.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ModelManager:
    """
    Manages sentence-transformer loading and caching.

    Default model: sentence-transformers/all-MiniLM-L6-v2 (384 dimensions,
    matching the catalyst embedding size).
    """

    DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

    def __init__(self, cache_dir: Optional[str] = None):
        """
        Initialize model manager.

        Args:
            cache_dir: Model cache directory (default: models/cache)
        """
        if cache_dir is None:
            cache_dir = os.environ.get("CATALYST_MODEL_CACHE", Path(__file__).parent / "cache")
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        os.environ.setdefault("HF_HOME", str(self.cache_dir))

        self._models: Dict[str, Any] = {}

    def get_sentence_transformer(self, model_name: Optional[str] = None):
        """
        Get a sentence transformer, loading it on first use.

        Args:
            model_name: Hugging Face model id

        Returns:
            SentenceTransformer model, or None if it could not be loaded
        """
        model_name = model_name or self.DEFAULT_MODEL
        if model_name in self._models:
            return self._models[model_name]

        from sentence_transformers import SentenceTransformer

        try:
            logger.info(f"Loading sentence transformer: {model_name}")
            model = SentenceTransformer(model_name, cache_folder=str(self.cache_dir))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load sentence transformer {model_name}: {e}")
            return None

        self._models[model_name] = model
        logger.info("Sentence transformer loaded successfully")
        return model

    def is_loaded(self, model_name: Optional[str] = None) -> bool:
        return (model_name or self.DEFAULT_MODEL) in self._models


# Module-level singleton
_manager: Optional[ModelManager] = None


def get_model_manager(cache_dir: Optional[str] = None) -> ModelManager:
    """Get the model manager singleton."""
    global _manager
    if _manager is None:
        _manager = ModelManager(cache_dir)
    return _manager
