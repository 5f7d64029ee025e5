"""Cosine similarity over numpy arrays.

Zero-norm vectors score 0 against everything.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    """Return *values* as a 1-D float64 array."""
    return np.asarray(values, dtype=np.float64).reshape(-1)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """``dot(a, b) / (|a| * |b|)``, or 0.0 when either norm is zero."""
    va = as_vector(a)
    vb = as_vector(b)
    if va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0 or not np.isfinite(denom):
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


def cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Score every row of *matrix* against *query* in one pass."""
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    mask = norms > 0.0
    if mask.any():
        scores[mask] = (matrix[mask] @ query) / norms[mask]
    return np.clip(scores, -1.0, 1.0)
