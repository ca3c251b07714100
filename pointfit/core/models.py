#!/usr/bin/env python3
"""
Model estimators that plug into RandomSampleConsensus
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .rigid_transform import RigidTransform, estimate_rigid_transform_point_to_point
from .ransac import RandomSampleConsensus, RansacConfig, RansacResult


def _fit_hyperplane(points: np.ndarray):
    """Total least squares hyperplane: unit normal n and offset d with n.x + d = 0"""
    centroid = points.mean(axis=0)
    _, s, Vt = np.linalg.svd(points - centroid, full_matrices=False)
    # Direction of least variance; rank must allow a unique plane
    if len(points) < points.shape[1] or (len(s) > 1 and s[-2] <= 1e-12):
        return None
    normal = Vt[-1]
    return normal, -float(normal @ centroid)


class LineEstimator:
    """2-D line a*x + b*y + c = 0 with a^2 + b^2 = 1"""

    sample_size = 2

    def __init__(self, points):
        self.points = np.asarray(points, dtype=float)
        if self.points.ndim != 2 or self.points.shape[1] != 2:
            raise ValueError(f"Expected points shape (N, 2) but got {self.points.shape}")

    def data_count(self) -> int:
        return len(self.points)

    def estimate_parameters(self, sample_indices) -> Optional[np.ndarray]:
        fit = _fit_hyperplane(self.points[sample_indices])
        if fit is None:
            return None
        normal, offset = fit
        return np.array([normal[0], normal[1], offset])

    def compute_residuals(self, params: np.ndarray) -> np.ndarray:
        return np.abs(self.points @ params[:2] + params[2])


@dataclass(frozen=True)
class Plane:
    normal: np.ndarray
    offset: float

    def signed_distance(self, points: np.ndarray) -> np.ndarray:
        return points @ self.normal + self.offset


class PlaneEstimator:
    """3-D plane n.x + d = 0 with unit normal"""

    sample_size = 3

    def __init__(self, points):
        self.points = np.asarray(points, dtype=float)
        if self.points.ndim != 2 or self.points.shape[1] != 3:
            raise ValueError(f"Expected points shape (N, 3) but got {self.points.shape}")

    def data_count(self) -> int:
        return len(self.points)

    def estimate_parameters(self, sample_indices) -> Optional[Plane]:
        fit = _fit_hyperplane(self.points[sample_indices])
        if fit is None:
            return None
        return Plane(*fit)

    def compute_residuals(self, params: Plane) -> np.ndarray:
        return np.abs(params.signed_distance(self.points))


class RigidTransformEstimator:
    """Rigid transform from putative point correspondences (src[i] <-> dst[i])"""

    sample_size = 3

    def __init__(self, dst_points, src_points):
        self.dst_points = np.asarray(dst_points, dtype=float)
        self.src_points = np.asarray(src_points, dtype=float)
        if self.dst_points.shape != self.src_points.shape or self.dst_points.ndim != 2 \
                or self.dst_points.shape[1] != 3:
            raise ValueError("Correspondence point sets must both have shape (N, 3)")

    def data_count(self) -> int:
        return len(self.src_points)

    def estimate_parameters(self, sample_indices) -> Optional[RigidTransform]:
        src = self.src_points[sample_indices]
        # Collinear samples leave the rotation about their axis undetermined
        if len(src) >= 3 and np.linalg.matrix_rank(src - src.mean(axis=0), tol=1e-9) < 2:
            return None
        return estimate_rigid_transform_point_to_point(self.dst_points[sample_indices], src)

    def compute_residuals(self, params: RigidTransform) -> np.ndarray:
        return np.linalg.norm(params.apply(self.src_points) - self.dst_points, axis=1)


def estimate_plane(points, max_inlier_residual: float = 0.01, max_iterations: int = 1000,
                   target_inlier_count: Optional[int] = None, re_estimate: bool = True,
                   seed: Optional[int] = None) -> RansacResult[Plane]:
    """Fit the dominant plane of a point set"""
    estimator = PlaneEstimator(points)
    config = RansacConfig(
        sample_size=PlaneEstimator.sample_size,
        target_inlier_count=estimator.data_count() if target_inlier_count is None else target_inlier_count,
        max_iterations=max_iterations,
        max_inlier_residual=max_inlier_residual,
        re_estimate=re_estimate,
        seed=seed,
    )
    return RandomSampleConsensus(estimator, config=config).get_estimation_results()
