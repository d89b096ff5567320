"""K-means++ over unit vectors with cosine distance.

For unit-norm vectors cosine distance reduces to ``1 - a·b``; centroids are
re-normalised after every averaging step so that reduction stays valid.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass
class KMeansResult:
    """Final centroids (k × D, unit norm) and one cluster index per point."""

    centroids: np.ndarray
    assignments: list[int] = field(default_factory=list)

    @property
    def k(self) -> int:
        return len(self.centroids)

    def members(self, cluster: int) -> list[int]:
        return [i for i, a in enumerate(self.assignments) if a == cluster]


def cosine_distance(a: np.ndarray, b: np.ndarray) -> float:
    """``1 - a·b`` for unit vectors, clamped to [0, 2] against float drift."""
    return float(np.clip(1.0 - np.dot(a, b), 0.0, 2.0))


def kmeans_pp(
    points: np.ndarray | list[list[float]],
    k: int,
    max_iter: int = 50,
    epsilon: float = 1e-4,
    rng: np.random.Generator | None = None,
) -> KMeansResult:
    """Cluster unit vectors into *k* groups.

    Args:
        points: N × D array of unit-norm vectors.
        k: Requested cluster count; clamped to N.
        max_iter: Hard iteration cap.
        epsilon: Stop once summed squared centroid displacement < epsilon * k.
        rng: Random generator (seed it for reproducible runs).

    Returns:
        KMeansResult. Zero points (or k < 1) yield an empty result.
    """
    data = np.asarray(points, dtype=np.float64)
    n = len(data)
    k = min(k, n)
    if n == 0 or k < 1:
        return KMeansResult(centroids=np.empty((0, data.shape[1] if data.ndim == 2 else 0)))
    rng = rng or np.random.default_rng()

    centroids = _seed(data, k, rng)
    assignments = np.zeros(n, dtype=int)
    for _ in range(max_iter):
        distances = _distances(data, centroids)
        assignments = distances.argmin(axis=1)
        _reseed_empty(data, centroids, assignments, distances)

        updated = centroids.copy()
        for c in range(k):
            members = data[assignments == c]
            if len(members):
                updated[c] = _unit(members.mean(axis=0))

        displacement = float(((updated - centroids) ** 2).sum())
        centroids = updated
        if displacement < epsilon * k:
            break

    # Final assignment against the converged centroids, never leaving a cluster empty.
    distances = _distances(data, centroids)
    assignments = distances.argmin(axis=1)
    _reseed_empty(data, centroids, assignments, distances)
    return KMeansResult(centroids=centroids, assignments=assignments.tolist())


# ------------------------------------------------------------------
# Internals
# ------------------------------------------------------------------


def _distances(data: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    return np.clip(1.0 - data @ centroids.T, 0.0, 2.0)


def _seed(data: np.ndarray, k: int, rng: np.random.Generator) -> np.ndarray:
    """K-means++: uniform first pick, then D²-weighted picks."""
    chosen = [int(rng.integers(len(data)))]
    nearest = _distances(data, data[chosen]).min(axis=1)
    while len(chosen) < k:
        weights = nearest ** 2
        total = weights.sum()
        if total <= 0:
            # Every point coincides with a centroid; pick any unused point.
            remaining = [i for i in range(len(data)) if i not in chosen]
            idx = int(rng.choice(remaining))
        else:
            idx = int(rng.choice(len(data), p=weights / total))
        chosen.append(idx)
        nearest = np.minimum(nearest, _distances(data, data[[idx]])[:, 0])
    return data[chosen].copy()


def _reseed_empty(
    data: np.ndarray,
    centroids: np.ndarray,
    assignments: np.ndarray,
    distances: np.ndarray,
) -> None:
    """Move each empty centroid onto the point farthest from its nearest centroid.

    Mutates *centroids* and *assignments* in place.
    """
    k = len(centroids)
    for c in range(k):
        if (assignments == c).any():
            continue
        nearest = distances.min(axis=1)
        # Only take points from clusters that can spare one.
        counts = np.bincount(assignments, minlength=k)
        candidates = np.where(counts[assignments] > 1)[0]
        if len(candidates) == 0:
            continue
        idx = int(candidates[nearest[candidates].argmax()])
        centroids[c] = data[idx]
        assignments[idx] = c
        distances[:, c] = np.clip(1.0 - data @ data[idx], 0.0, 2.0)
        distances[idx, :] = 2.0
        distances[idx, c] = 0.0


def _unit(vector: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vector)
    return vector / norm if norm > 0 else vector
