#!/usr/bin/env python3
"""
Point cloud container and loading utilities for pointfit
"""
import os
from typing import Optional

import numpy as np
import trimesh

from ..utils.logging import get_logger

logger = get_logger(__name__)

POINT_CLOUD_FORMATS = ['.ply', '.pcd', '.xyz', '.pts']
TEXT_FORMATS = ['.txt', '.csv']
MESH_FORMATS = ['.obj', '.stl', '.off', '.glb', '.gltf']


def _import_open3d():
    try:
        import open3d as o3d
    except ImportError:
        raise ImportError("Please install open3d to read/write PLY/PCD point clouds: pip install pointfit[io]")
    return o3d


def _as_vector_array(values, name: str, n_points: Optional[int] = None) -> Optional[np.ndarray]:
    if values is None:
        return None
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return None
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"{name} must have shape (N, 3), got {arr.shape}")
    if n_points is not None and len(arr) != n_points:
        raise ValueError(f"{name} has {len(arr)} rows but there are {n_points} points")
    return arr


class PointCloud:
    """Positions with optional per-point normals and colors"""

    def __init__(self, points, normals=None, colors=None):
        points = _as_vector_array(points, "points")
        self.points = points if points is not None else np.zeros((0, 3))
        self.normals = _as_vector_array(normals, "normals", len(self.points))
        self.colors = _as_vector_array(colors, "colors", len(self.points))

    def __len__(self):
        return len(self.points)

    def __repr__(self):
        return (f"PointCloud({len(self)} points, normals={self.has_normals()}, "
                f"colors={self.has_colors()})")

    def is_empty(self) -> bool:
        return len(self.points) == 0

    def has_normals(self) -> bool:
        return self.normals is not None and len(self.normals) == len(self.points) and not self.is_empty()

    def has_colors(self) -> bool:
        return self.colors is not None and len(self.colors) == len(self.points) and not self.is_empty()

    def transformed(self, transform) -> "PointCloud":
        """Return a copy with a RigidTransform applied to points and normals"""
        normals = transform.rotate(self.normals) if self.has_normals() else None
        colors = self.colors.copy() if self.has_colors() else None
        return PointCloud(transform.apply(self.points), normals, colors)

    def select(self, indices) -> "PointCloud":
        """Return the subset of points given by `indices`"""
        indices = np.asarray(indices, dtype=np.intp)
        return PointCloud(
            self.points[indices],
            self.normals[indices] if self.has_normals() else None,
            self.colors[indices] if self.has_colors() else None,
        )

    @classmethod
    def from_file(cls, filename: str) -> "PointCloud":
        """Load point cloud from various formats"""
        if not os.path.exists(filename):
            raise ValueError(f"File not found: {filename}")

        ext = os.path.splitext(filename)[1].lower()

        if ext in POINT_CLOUD_FORMATS:
            o3d = _import_open3d()
            pcd = o3d.io.read_point_cloud(filename)
            points = np.asarray(pcd.points)
            normals = np.asarray(pcd.normals) if pcd.has_normals() else None
            colors = np.asarray(pcd.colors) if pcd.has_colors() else None
            cloud = cls(points, normals, colors)

        elif ext in TEXT_FORMATS:
            # x y z [nx ny nz [r g b]]
            delimiter = ',' if ext == '.csv' else None
            data = np.loadtxt(filename, delimiter=delimiter, ndmin=2)
            if data.shape[1] < 3:
                raise ValueError("File must have at least 3 columns (x, y, z)")
            points = data[:, :3]
            normals = data[:, 3:6] if data.shape[1] >= 6 else None
            colors = data[:, 6:9] if data.shape[1] >= 9 else None
            cloud = cls(points, normals, colors)

        elif ext in MESH_FORMATS:
            mesh = trimesh.load(filename, force='mesh')
            if not isinstance(mesh, trimesh.Trimesh) or len(mesh.vertices) == 0:
                raise ValueError(f"Failed to load mesh from {filename}")
            cloud = cls(np.asarray(mesh.vertices), np.asarray(mesh.vertex_normals))

        else:
            raise ValueError(f"Unsupported point cloud format: {ext}")

        logger.info("Loaded %s from %s", cloud, filename)
        return cloud

    def to_file(self, filename: str) -> None:
        """Write point cloud; PLY/PCD through open3d, .txt/.csv as plain columns"""
        ext = os.path.splitext(filename)[1].lower()

        if ext in TEXT_FORMATS:
            columns = [self.points]
            if self.has_normals():
                columns.append(self.normals)
                if self.has_colors():
                    columns.append(self.colors)
            delimiter = ',' if ext == '.csv' else ' '
            np.savetxt(filename, np.hstack(columns), delimiter=delimiter)

        elif ext in POINT_CLOUD_FORMATS:
            o3d = _import_open3d()
            pcd = o3d.geometry.PointCloud()
            pcd.points = o3d.utility.Vector3dVector(self.points)
            if self.has_normals():
                pcd.normals = o3d.utility.Vector3dVector(self.normals)
            if self.has_colors():
                pcd.colors = o3d.utility.Vector3dVector(self.colors)
            if not o3d.io.write_point_cloud(filename, pcd):
                raise ValueError(f"Failed to write point cloud to {filename}")

        else:
            raise ValueError(f"Unsupported point cloud format: {ext}")

        logger.info("Saved %d points to %s", len(self), filename)

    def estimate_normals(self, k_neighbors: int = 30) -> np.ndarray:
        """Estimate normals for the point cloud using PCA over k neighbors"""
        o3d = _import_open3d()
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self.points)
        pcd.estimate_normals(search_param=o3d.geometry.KDTreeSearchParamKNN(k_neighbors))
        pcd.orient_normals_consistent_tangent_plane(k_neighbors)
        self.normals = np.asarray(pcd.normals)
        return self.normals

    def voxel_downsample(self, voxel_size: float) -> "PointCloud":
        """Downsample point cloud using a voxel grid"""
        o3d = _import_open3d()
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self.points)
        if self.has_normals():
            pcd.normals = o3d.utility.Vector3dVector(self.normals)
        if self.has_colors():
            pcd.colors = o3d.utility.Vector3dVector(self.colors)

        downsampled = pcd.voxel_down_sample(voxel_size)
        return PointCloud(
            np.asarray(downsampled.points),
            np.asarray(downsampled.normals) if self.has_normals() else None,
            np.asarray(downsampled.colors) if self.has_colors() else None,
        )
