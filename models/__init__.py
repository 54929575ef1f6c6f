"""
Models Module

Local embedding model loading (sentence-transformers).
"""

from .model_manager import ModelManager, get_model_manager

__all__ = [
    "ModelManager",
    "get_model_manager"
]
