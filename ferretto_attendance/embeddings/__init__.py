"""Face embedding providers.

Embedding providers turn a camera frame into the numerical signature
(embedding) of the best face it contains.
"""

from typing import Optional

from ..constants import ModelSettings, get_model_settings
from .base import BaseEmbeddingProvider
from .dlib import DlibEmbeddingProvider

EMBEDDING_BACKENDS = {
    "dlib": DlibEmbeddingProvider,
}


def create_embedding_provider(
    name: Optional[str] = None,
    settings: Optional[ModelSettings] = None,
) -> BaseEmbeddingProvider:
    """Create an embedding provider by backend name.

    Args:
        name: Backend name (uses settings.backend if None)
        settings: Model settings (uses global config if None)

    Raises:
        ValueError: If the backend is unknown
    """
    settings = settings or get_model_settings()
    name = (name or settings.backend).lower()
    if name not in EMBEDDING_BACKENDS:
        raise ValueError(
            f"Unknown embedding backend: {name}. Available: {list(EMBEDDING_BACKENDS.keys())}"
        )
    return EMBEDDING_BACKENDS[name](settings)


__all__ = [
    "BaseEmbeddingProvider",
    "DlibEmbeddingProvider",
    "EMBEDDING_BACKENDS",
    "create_embedding_provider",
]
