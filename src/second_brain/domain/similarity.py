"""Cosine similarity over a bounded candidate set."""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import numpy as np

from second_brain.domain.models import CanonicalChunk


@dataclass(frozen=True)
class SimilarityMatch:
    canonical: CanonicalChunk
    score: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; zero when either has no magnitude."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Embedding dimensions differ: {va.shape[0]} != {vb.shape[0]}")
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return _clamp(float(np.dot(va, vb) / norm))


def cosine_scores(query: Sequence[float], candidates: Sequence[Sequence[float]]) -> np.ndarray:
    """Similarity of ``query`` against each row of ``candidates``."""
    if not candidates:
        return np.zeros(0, dtype=np.float64)

    q = np.asarray(query, dtype=np.float64)
    matrix = np.asarray(candidates, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[1] != q.shape[0]:
        raise ValueError(f"Embedding dimensions differ: query has {q.shape[0]}, candidates {matrix.shape}")

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
    return np.clip(scores, -1.0, 1.0)


def best_match(
    embedding: Sequence[float],
    candidates: Sequence[CanonicalChunk],
    epsilon: float = 1e-9,
) -> SimilarityMatch | None:
    """Most similar canonical chunk, or None when there are no candidates.

    Scores within ``epsilon`` of the maximum are ties, won by the oldest
    canonical chunk and then by the smallest id so concurrent workers pick
    the same cluster.
    """
    if not candidates:
        return None

    scores = cosine_scores(embedding, [c.representative_embedding for c in candidates])
    top = float(scores.max())

    tied = [(candidate, float(score)) for candidate, score in zip(candidates, scores, strict=True) if top - score <= epsilon]
    winner, score = min(tied, key=lambda pair: _age_key(pair[0].created_at, pair[0].id))
    return SimilarityMatch(canonical=winner, score=score)


def _age_key(created_at: datetime, canonical_id: UUID) -> tuple[datetime, str]:
    return created_at, str(canonical_id)


def _clamp(score: float) -> float:
    return max(-1.0, min(1.0, score))
