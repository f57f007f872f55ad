"""
Vector index collaborator - nearest-neighbour lookup by feature vector.

The pipeline only needs two calls: fetch a track's vector and query by vector.
InMemoryVectorIndex covers both with a dense numpy matrix; any object with the
same two methods can stand in for it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class VectorIndex:
    """Interface consumed by the scorer and candidate generator."""

    def get_vector(self, track_id: str) -> Optional[np.ndarray]:
        raise NotImplementedError

    def query(self, vector: np.ndarray, top_k: int = 20) -> List[VectorMatch]:
        raise NotImplementedError


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors (0.0 when either is all zeros)."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    return float(np.dot(a, b) / denom)


def cosine_sim_matrix_to_vector(X: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Return cosine similarity of each row in X to v. Shape (N,)."""
    v_norm = np.linalg.norm(v) + 1e-12
    row_norms = np.linalg.norm(X, axis=1) + 1e-12
    return (X @ v) / (row_norms * v_norm)


class InMemoryVectorIndex(VectorIndex):
    """Dense matrix of track vectors keyed by track id."""

    def __init__(self, track_ids: Sequence[str], vectors: np.ndarray,
                 metadata: Optional[Sequence[Dict[str, Any]]] = None):
        vectors = np.asarray(vectors, dtype=float)
        if vectors.ndim != 2 or vectors.shape[0] != len(track_ids):
            raise ValueError(
                f"vectors shape {vectors.shape} does not match {len(track_ids)} track ids"
            )
        if metadata is not None and len(metadata) != len(track_ids):
            raise ValueError("metadata length does not match track ids")

        self.track_ids = [str(t) for t in track_ids]
        self.vectors = vectors
        self.metadata = [dict(m) for m in metadata] if metadata is not None else [{} for _ in track_ids]

        # Duplicate track ids are not allowed
        self._index: Dict[str, int] = {}
        for idx, tid in enumerate(self.track_ids):
            if tid in self._index:
                raise ValueError(f"Duplicate track_id detected: {tid}")
            self._index[tid] = idx

    def __len__(self) -> int:
        return len(self.track_ids)

    def get_vector(self, track_id: str) -> Optional[np.ndarray]:
        idx = self._index.get(track_id)
        return None if idx is None else self.vectors[idx]

    def query(self, vector: np.ndarray, top_k: int = 20) -> List[VectorMatch]:
        """Top-k rows by cosine similarity, best first (stable on ties)."""
        if not self.track_ids or top_k <= 0:
            return []
        sims = cosine_sim_matrix_to_vector(self.vectors, np.asarray(vector, dtype=float))
        order = np.argsort(-sims, kind="stable")[:top_k]
        return [
            VectorMatch(id=self.track_ids[i], score=float(sims[i]), metadata=self.metadata[i])
            for i in order
        ]

    @classmethod
    def load(cls, path: str | Path) -> "InMemoryVectorIndex":
        """
        Load from an .npz with keys ``track_ids`` and ``vectors``; optional
        ``titles`` and ``artists`` arrays become match metadata.
        """
        npz_path = Path(path)
        data = np.load(npz_path, allow_pickle=False)
        missing = [k for k in ("track_ids", "vectors") if k not in data]
        if missing:
            raise ValueError(f"Vector index missing required keys: {missing}")

        track_ids = [str(t) for t in data["track_ids"]]
        titles = data["titles"] if "titles" in data else None
        artists = data["artists"] if "artists" in data else None
        metadata = [
            {
                "title": str(titles[i]) if titles is not None else "",
                "artist": str(artists[i]) if artists is not None else "",
            }
            for i in range(len(track_ids))
        ]
        index = cls(track_ids, data["vectors"], metadata)
        logger.info("Loaded vector index %s | tracks=%d | dim=%d", npz_path, len(index), index.vectors.shape[1])
        return index
