#!/usr/bin/env python3
"""
Core estimation engines for pointfit
"""

from .icp import (
    IterativeClosestPoint,
    Metric,
    CorrespondencesType,
    RegistrationConfig,
    RegistrationState,
    Adjustment,
    correct_correspondences_type,
    correct_metric,
)
from .ransac import RandomSampleConsensus, RansacConfig, RansacResult, ModelEstimator, run_ransac
from .models import LineEstimator, PlaneEstimator, Plane, RigidTransformEstimator, estimate_plane
from .rigid_transform import RigidTransform, orthonormalize_rotation
from .correspondence import CorrespondenceSet
from .spatial_index import SpatialIndex
from .point_cloud import PointCloud

__all__ = [
    "IterativeClosestPoint",
    "Metric",
    "CorrespondencesType",
    "RegistrationConfig",
    "RegistrationState",
    "Adjustment",
    "correct_correspondences_type",
    "correct_metric",
    "RandomSampleConsensus",
    "RansacConfig",
    "RansacResult",
    "ModelEstimator",
    "run_ransac",
    "LineEstimator",
    "PlaneEstimator",
    "Plane",
    "RigidTransformEstimator",
    "estimate_plane",
    "RigidTransform",
    "orthonormalize_rotation",
    "CorrespondenceSet",
    "SpatialIndex",
    "PointCloud",
]
