"""Base class for face embedding providers."""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from ..errors import ModelsUnavailable


class BaseEmbeddingProvider(ABC):
    """Abstract base class for frame-to-embedding extraction."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the name of the embedding backend."""
        pass

    @property
    @abstractmethod
    def embedding_dim(self) -> int:
        """Return the dimensionality of the embedding vector."""
        pass

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """Check whether models are loaded."""
        pass

    @abstractmethod
    def ensure_ready(self) -> None:
        """Load models once; later calls return immediately.

        Raises:
            ModelLoadError: If model assets cannot be fetched or initialized
        """
        pass

    @abstractmethod
    def detect_embedding(self, frame: np.ndarray) -> Optional[np.ndarray]:
        """Embed the single best face in a frame.

        Args:
            frame: BGR frame as numpy array

        Returns:
            Embedding of the highest-confidence face, or None if no face
            was found

        Raises:
            ModelsUnavailable: If called before ensure_ready()
        """
        pass

    def _require_ready(self) -> None:
        if not self.is_ready:
            raise ModelsUnavailable(f"{self.name} models are not loaded; call ensure_ready() first")

    def _finalize(self, descriptor) -> np.ndarray:
        """Convert a raw descriptor into an immutable float32 embedding."""
        embedding = np.array(descriptor, dtype=np.float32).ravel()
        if embedding.size != self.embedding_dim:
            raise ValueError(
                f"{self.name} produced {embedding.size}D embedding, expected {self.embedding_dim}D"
            )
        embedding.flags.writeable = False
        return embedding
