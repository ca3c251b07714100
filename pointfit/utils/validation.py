#!/usr/bin/env python3
"""
Validation utilities for pointfit
"""

import os
import numpy as np
from typing import Tuple, Dict, Any

METRICS = ("point_to_point", "point_to_plane", "combined")
CORRESPONDENCES_TYPES = ("points", "normals", "colors", "points_normals", "points_colors",
                         "normals_colors", "points_normals_colors")


def validate_point_cloud(cloud, min_points: int = 1) -> Tuple[bool, str]:
    """
    Validate point cloud before it reaches an engine

    Args:
        cloud: PointCloud to validate
        min_points: Minimum number of points required

    Returns:
        (is_valid, error_message)
    """
    if cloud is None or len(cloud.points) == 0:
        return False, "Point cloud has no points"

    if len(cloud.points) < min_points:
        return False, f"Point cloud has too few points ({len(cloud.points)} < {min_points})"

    if not np.all(np.isfinite(cloud.points)):
        return False, "Point cloud has non-finite coordinates"

    if cloud.has_normals():
        norms = np.linalg.norm(cloud.normals, axis=1)
        if not np.all(np.isfinite(norms)) or np.any(norms == 0):
            return False, "Point cloud has invalid (zero or non-finite) normals"

    return True, "Point cloud is valid"


def validate_point_cloud_pair(source, target) -> Tuple[bool, str]:
    """
    Validate point cloud pair for registration

    Args:
        source: Source point cloud
        target: Target point cloud

    Returns:
        (is_valid, error_message)
    """
    source_valid, source_msg = validate_point_cloud(source)
    if not source_valid:
        return False, f"Source validation failed: {source_msg}"

    target_valid, target_msg = validate_point_cloud(target)
    if not target_valid:
        return False, f"Target validation failed: {target_msg}"

    return True, "Point cloud pair is valid for registration"


def validate_config(config: Dict[str, Any]) -> Tuple[bool, str]:
    """
    Validate configuration settings

    Args:
        config: Configuration dictionary

    Returns:
        (is_valid, error_message)
    """
    try:
        if 'registration' in config:
            reg = config['registration']

            if reg.get('metric', 'point_to_plane') not in METRICS:
                return False, f"metric must be one of {', '.join(METRICS)}"

            if reg.get('correspondences_type', 'points') not in CORRESPONDENCES_TYPES:
                return False, f"correspondences_type must be one of {', '.join(CORRESPONDENCES_TYPES)}"

            if not (0.0 < reg.get('correspondences_fraction', 1.0) <= 1.0):
                return False, "correspondences_fraction must be in (0, 1]"

            if reg.get('max_correspondence_distance', 0.0) < 0:
                return False, "max_correspondence_distance must be non-negative"

            if not (0.0 <= reg.get('convergence_tolerance', 0.0) <= 1.0):
                return False, "convergence_tolerance must be between 0.0 and 1.0"

            for param in ('max_iterations', 'max_optimization_step_iterations'):
                value = reg.get(param, 1)
                if not isinstance(value, int) or value < 0:
                    return False, f"{param} must be a non-negative integer"

            for param in ('point_to_point_weight', 'point_to_plane_weight', 'correspondence_point_weight',
                          'correspondence_normal_weight', 'correspondence_color_weight'):
                if reg.get(param, 0.0) < 0:
                    return False, f"{param} must be non-negative"

        if 'robust_estimation' in config:
            ransac = config['robust_estimation']

            for param in ('sample_size', 'target_inlier_count', 'max_iterations'):
                value = ransac.get(param, 1)
                if not isinstance(value, int) or value < 0:
                    return False, f"{param} must be a non-negative integer"

            if ransac.get('sample_size', 1) < 1:
                return False, "sample_size must be at least 1"

            if ransac.get('max_inlier_residual', 0.0) < 0:
                return False, "max_inlier_residual must be non-negative"

            if not isinstance(ransac.get('re_estimate', True), bool):
                return False, "re_estimate must be a boolean"

            seed = ransac.get('seed')
            if seed is not None and not isinstance(seed, int):
                return False, "seed must be an integer or null"

        return True, "Configuration is valid"

    except TypeError as e:
        return False, f"Configuration validation error: {str(e)}"


def validate_file_path(filepath: str, check_exists: bool = True) -> Tuple[bool, str]:
    """
    Validate input file path

    Args:
        filepath: Path to validate
        check_exists: Whether to check if file exists

    Returns:
        (is_valid, error_message)
    """
    if not filepath:
        return False, "File path is empty"

    if check_exists and not os.path.exists(filepath):
        return False, f"File does not exist: {filepath}"

    supported_extensions = ['.ply', '.pcd', '.xyz', '.pts', '.txt', '.csv',
                            '.obj', '.stl', '.off', '.glb', '.gltf']
    file_ext = os.path.splitext(filepath)[1].lower()

    if file_ext not in supported_extensions:
        return False, f"Unsupported file format: {file_ext}"

    return True, "File path is valid"
