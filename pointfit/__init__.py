#!/usr/bin/env python3
"""
pointfit

A Python library for rigid point cloud registration and robust model
fitting from noisy, partially-corresponding data.

Features:
- Iterative Closest Point with point-to-point, point-to-plane and combined metrics
- Correspondence search on positions, normals and colors
- Closest-fraction correspondence pruning
- Generic RANSAC over any model exposing fit/residual operations
- Line, plane and rigid transform estimators
- Binary/text matrix files and PLY/PCD/text point cloud I/O
"""

__version__ = "1.0.0"
__author__ = "pointfit developers"

# Core classes
from .core.icp import (
    IterativeClosestPoint,
    Metric,
    CorrespondencesType,
    RegistrationConfig,
    RegistrationState,
)
from .core.ransac import RandomSampleConsensus, RansacConfig, RansacResult, ModelEstimator
from .core.models import LineEstimator, PlaneEstimator, RigidTransformEstimator, estimate_plane
from .core.rigid_transform import RigidTransform
from .core.point_cloud import PointCloud
from .config.settings import ConfigManager

# Utility functions
from .utils.performance import PerformanceMonitor
from .utils.validation import validate_point_cloud, validate_config

__all__ = [
    "IterativeClosestPoint",
    "Metric",
    "CorrespondencesType",
    "RegistrationConfig",
    "RegistrationState",
    "RandomSampleConsensus",
    "RansacConfig",
    "RansacResult",
    "ModelEstimator",
    "LineEstimator",
    "PlaneEstimator",
    "RigidTransformEstimator",
    "estimate_plane",
    "RigidTransform",
    "PointCloud",
    "ConfigManager",
    "PerformanceMonitor",
    "validate_point_cloud",
    "validate_config",
    "__version__",
    "__author__",
]

# Check for optional point cloud I/O support
try:
    import open3d
    OPEN3D_AVAILABLE = True
except ImportError:
    OPEN3D_AVAILABLE = False

import os
CPU_CORES = os.cpu_count()


def print_info():
    """Print library information"""
    print(f"pointfit v{__version__}")
    print(f"PLY/PCD point cloud I/O: {'Available' if OPEN3D_AVAILABLE else 'Not available'}")
    print(f"CPU cores: {CPU_CORES}")
    if not OPEN3D_AVAILABLE:
        print("For PLY/PCD support, install open3d: pip install pointfit[io]")


if __name__ == "__main__":
    print_info()
