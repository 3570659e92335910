"""Similarity engine for face embeddings.

Pure numeric helpers with no I/O and no state.

Note:
    ``cosine_similarity`` returns ``NOT_COMPARABLE`` (-1.0) for inputs that
    cannot be compared. That value is indistinguishable from a genuinely
    opposite pair of vectors, so callers must keep ``match_threshold``
    above -1 for the sentinel to read as "no match".
"""

from typing import Optional, Sequence

import numpy as np

NOT_COMPARABLE = -1.0


def _as_vector(value) -> Optional[np.ndarray]:
    if value is None:
        return None
    vector = np.asarray(value, dtype=np.float64).ravel()
    return vector if vector.size else None


def cosine_similarity(a, b) -> float:
    """Calculate cosine similarity between two embeddings.

    Args:
        a: First embedding (array-like)
        b: Second embedding (array-like)

    Returns:
        Similarity in [-1, 1], or NOT_COMPARABLE if either input is
        missing, empty, zero-length in norm, or the lengths differ
    """
    a = _as_vector(a)
    b = _as_vector(b)
    if a is None or b is None or a.size != b.size:
        return NOT_COMPARABLE

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return NOT_COMPARABLE

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    # Rounding can push identical vectors just past 1.0
    return max(-1.0, min(1.0, similarity))


def mean_embedding(embeddings: Sequence) -> Optional[np.ndarray]:
    """Element-wise arithmetic mean of a list of embeddings.

    Args:
        embeddings: Embeddings that all share one dimensionality

    Returns:
        Mean embedding as float32 array, or None for an empty list

    Raises:
        ValueError: If the embeddings have different dimensionality
    """
    if len(embeddings) == 0:
        return None

    vectors = [np.asarray(e, dtype=np.float64).ravel() for e in embeddings]
    dims = {v.size for v in vectors}
    if len(dims) != 1:
        raise ValueError(f"Embeddings have mismatched dimensions: {sorted(dims)}")

    return np.mean(np.stack(vectors), axis=0).astype(np.float32)
