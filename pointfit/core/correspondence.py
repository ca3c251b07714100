#!/usr/bin/env python3
"""
Point correspondences between a source and a destination point set
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class CorrespondenceSet:
    """Aligned arrays of (source index, destination index, distance) triples"""

    src_indices: np.ndarray
    dst_indices: np.ndarray
    distances: np.ndarray

    @classmethod
    def empty(cls) -> "CorrespondenceSet":
        return cls(np.zeros(0, dtype=np.intp), np.zeros(0, dtype=np.intp), np.zeros(0))

    def __len__(self):
        return len(self.src_indices)

    def __iter__(self):
        for src, dst, dist in zip(self.src_indices, self.dst_indices, self.distances):
            yield int(src), int(dst), float(dist)

    def prune(self, fraction: float) -> "CorrespondenceSet":
        """
        Keep the closest `fraction` of correspondences

        Candidates are ordered by ascending distance; equal distances keep
        their original order. With fraction >= 1 the set is returned as is.
        """
        n = len(self)
        if fraction >= 1.0 or n == 0:
            return self

        keep = min(n, int(np.floor(fraction * n + 0.5)))
        order = np.argsort(self.distances, kind='stable')[:keep]
        return CorrespondenceSet(self.src_indices[order], self.dst_indices[order], self.distances[order])

    def mean_distance(self) -> float:
        return float(np.mean(self.distances)) if len(self) else 0.0
