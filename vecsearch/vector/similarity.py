"""
Vector validation and cosine similarity helpers.
"""

from typing import Sequence, Union

import numpy as np

from ..core.errors import DimensionMismatch, InvalidVector

VectorLike = Union[Sequence[float], np.ndarray]


def as_vector(vector: VectorLike, dimension: int, context: str = "vector") -> np.ndarray:
    """Convert to a 1-D float64 array, rejecting wrong length and non-finite values."""
    if vector is None:
        raise InvalidVector(f"{context} is missing")
    arr = np.asarray(vector, dtype=np.float64)
    if arr.ndim != 1:
        raise InvalidVector(f"{context} must be one-dimensional, got shape {arr.shape}")
    if arr.shape[0] != dimension:
        raise DimensionMismatch(dimension, arr.shape[0], context)
    if not np.all(np.isfinite(arr)):
        raise InvalidVector(f"{context} contains NaN or infinite components")
    return arr


def check_nonzero(vector: np.ndarray, context: str = "vector") -> float:
    """Return the norm; zero-norm vectors have no direction and are rejected."""
    norm = float(np.linalg.norm(vector))
    if norm == 0:
        raise InvalidVector(f"{context} has zero norm; cosine similarity is undefined")
    return norm


def normalize(vector: np.ndarray, context: str = "vector") -> np.ndarray:
    """Return the unit vector."""
    return vector / check_nonzero(vector, context)


def prepare(vector: VectorLike, dimension: int, context: str = "vector") -> np.ndarray:
    """Validate and normalise in one step."""
    return normalize(as_vector(vector, dimension, context), context)


def clip_score(score: float) -> float:
    # Rounding can push unit dot products slightly outside [-1, 1]
    return max(-1.0, min(1.0, score))


def rank_key(hit_id: str, score: float):
    """Sort key: descending score, ascending id."""
    return (-score, hit_id)
