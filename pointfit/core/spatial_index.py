#!/usr/bin/env python3
"""
Nearest-neighbor index over fixed-dimension descriptor arrays
"""

from typing import Tuple

import numpy as np
from scipy.spatial import cKDTree

# Candidates inspected per query when resolving equidistant neighbors
TIE_CANDIDATES = 4
TIE_RTOL = 1e-12


class SpatialIndex:
    """KD-tree backed nearest-neighbor queries (3D, 6D or 9D descriptors)"""

    def __init__(self, data: np.ndarray):
        data = np.asarray(data, dtype=float)
        if data.ndim != 2 or len(data) == 0:
            raise ValueError(f"SpatialIndex needs a non-empty (N, D) array, got shape {data.shape}")
        self.dim = data.shape[1]
        self.size = data.shape[0]
        self._tree = cKDTree(data)

    def nearest_neighbor(self, queries: np.ndarray,
                         max_distance: float = np.inf) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Query the single nearest neighbor of every row in `queries`

        Args:
            queries: (M, D) query descriptors
            max_distance: Neighbors farther than this are reported as missing

        Returns:
            (found_mask, indices, distances) where indices/distances are only
            meaningful where found_mask is True

        Among equidistant candidates (the TIE_CANDIDATES nearest) the lowest
        data index wins, so results do not depend on the tree layout.
        """
        queries = np.asarray(queries, dtype=float)
        if queries.ndim != 2 or queries.shape[1] != self.dim:
            raise ValueError(f"Expected queries of dimension {self.dim}, got shape {queries.shape}")
        if len(queries) == 0:
            return np.zeros(0, dtype=bool), np.zeros(0, dtype=np.intp), np.zeros(0)

        k = min(TIE_CANDIDATES, self.size)
        distances, indices = self._tree.query(queries, k=k)
        if k > 1:
            tied = distances <= distances[:, :1] * (1.0 + TIE_RTOL)
            best = np.argmin(np.where(tied, indices, self.size), axis=1)
            rows = np.arange(len(queries))
            distances, indices = distances[rows, best], indices[rows, best]
        found = distances <= max_distance
        indices = np.where(found, indices, 0).astype(np.intp)
        return found, indices, distances

    def __len__(self):
        return self.size

    def __repr__(self):
        return f"SpatialIndex(dim={self.dim}, size={self.size})"
