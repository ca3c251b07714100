#!/usr/bin/env python3
"""
Rigid transform primitives for pointfit
Closed-form and linearized solvers for weighted point-to-point / point-to-plane alignment
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.spatial.transform import Rotation


@dataclass(frozen=True)
class RigidTransform:
    """Rotation + translation pair mapping source coordinates onto destination coordinates"""

    rotation: np.ndarray
    translation: np.ndarray

    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> "RigidTransform":
        """Build from a 4x4 homogeneous matrix, re-orthonormalizing the rotation block"""
        matrix = np.asarray(matrix, dtype=float)
        if matrix.shape != (4, 4):
            raise ValueError(f"Expected a 4x4 matrix but got {matrix.shape}")
        return cls(orthonormalize_rotation(matrix[:3, :3]), matrix[:3, 3].copy())

    def as_matrix(self) -> np.ndarray:
        matrix = np.eye(4)
        matrix[:3, :3] = self.rotation
        matrix[:3, 3] = self.translation
        return matrix

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Transform an (N, 3) array of points"""
        return points @ self.rotation.T + self.translation

    def rotate(self, vectors: np.ndarray) -> np.ndarray:
        """Rotate an (N, 3) array of direction vectors (normals)"""
        return vectors @ self.rotation.T

    def compose(self, other: "RigidTransform") -> "RigidTransform":
        """Return self * other, i.e. apply `other` first"""
        return RigidTransform(
            self.rotation @ other.rotation,
            self.rotation @ other.translation + self.translation,
        )

    def inverse(self) -> "RigidTransform":
        rot_inv = self.rotation.T
        return RigidTransform(rot_inv, -rot_inv @ self.translation)


def orthonormalize_rotation(rot_mat: np.ndarray) -> np.ndarray:
    """Project a 3x3 matrix onto the closest proper rotation (det = +1)"""
    rot_mat = np.asarray(rot_mat, dtype=float)
    if rot_mat.shape != (3, 3):
        raise ValueError(f"Expected a 3x3 matrix but got {rot_mat.shape}")

    U, _, Vt = np.linalg.svd(rot_mat)
    rot = U @ Vt
    if np.linalg.det(rot) < 0:
        U[:, -1] *= -1
        rot = U @ Vt
    return rot


def _normalized_weights(weights: Optional[np.ndarray], n: int) -> np.ndarray:
    if weights is None:
        return np.ones(n)
    weights = np.asarray(weights, dtype=float)
    if weights.shape != (n,):
        raise ValueError(f"Expected {n} weights but got shape {weights.shape}")
    return weights


def estimate_rigid_transform_point_to_point(dst_points: np.ndarray,
                                            src_points: np.ndarray,
                                            weights: Optional[np.ndarray] = None) -> RigidTransform:
    """
    Weighted closed-form point-to-point alignment (Kabsch/Umeyama without scale)

    Args:
        dst_points: (N, 3) destination points
        src_points: (N, 3) corresponding source points
        weights: Optional (N,) non-negative weights

    Returns:
        RigidTransform minimizing sum w_i * |R s_i + t - d_i|^2
    """
    dst_points = np.asarray(dst_points, dtype=float)
    src_points = np.asarray(src_points, dtype=float)
    if dst_points.shape != src_points.shape or dst_points.ndim != 2 or dst_points.shape[1] != 3:
        raise ValueError("Point sets must both have shape (N, 3)")
    if len(src_points) == 0:
        return RigidTransform.identity()

    w = _normalized_weights(weights, len(src_points))
    w_sum = w.sum()
    if w_sum <= 0:
        return RigidTransform.identity()

    src_mean = (w[:, None] * src_points).sum(axis=0) / w_sum
    dst_mean = (w[:, None] * dst_points).sum(axis=0) / w_sum
    src_centered = src_points - src_mean
    dst_centered = dst_points - dst_mean

    # Cross-covariance
    H = (w[:, None] * src_centered).T @ dst_centered
    U, _, Vt = np.linalg.svd(H)
    d = np.sign(np.linalg.det(Vt.T @ U.T))
    if d == 0:
        d = 1.0
    D = np.diag([1.0, 1.0, d])
    rot = Vt.T @ D @ U.T
    t = dst_mean - rot @ src_mean
    return RigidTransform(rot, t)


def _skew(v: np.ndarray) -> np.ndarray:
    """Batched cross-product matrices for an (N, 3) array"""
    zeros = np.zeros(len(v))
    return np.stack([
        np.stack([zeros, -v[:, 2], v[:, 1]], axis=1),
        np.stack([v[:, 2], zeros, -v[:, 0]], axis=1),
        np.stack([-v[:, 1], v[:, 0], zeros], axis=1),
    ], axis=1)


def estimate_rigid_transform_combined(dst_points: np.ndarray,
                                      dst_normals: np.ndarray,
                                      src_points: np.ndarray,
                                      point_to_point_weight: float = 0.0,
                                      point_to_plane_weight: float = 1.0,
                                      max_iterations: int = 1,
                                      convergence_tol: float = 1e-5,
                                      weights: Optional[np.ndarray] = None) -> Tuple[RigidTransform, int]:
    """
    Linearized combined point-to-point / point-to-plane alignment

    Minimizes
        w_pp * |R s + t - d|^2 + w_pl * ((R s + t - d) . n)^2
    by repeated small-angle linearization around the current estimate.

    Args:
        dst_points: (N, 3) destination points
        dst_normals: (N, 3) destination normals
        src_points: (N, 3) corresponding source points
        point_to_point_weight: Weight of the point-to-point term
        point_to_plane_weight: Weight of the point-to-plane term
        max_iterations: Number of linearized steps
        convergence_tol: Stop when the step norm drops below this value
        weights: Optional (N,) per-correspondence weights

    Returns:
        (transform, performed_steps)
    """
    dst_points = np.asarray(dst_points, dtype=float)
    dst_normals = np.asarray(dst_normals, dtype=float)
    src_points = np.asarray(src_points, dtype=float)
    n = len(src_points)
    if n == 0:
        return RigidTransform.identity(), 0

    w = _normalized_weights(weights, n)
    transform = RigidTransform.identity()
    steps = 0

    for _ in range(max(1, int(max_iterations))):
        src_trans = transform.apply(src_points)
        diff = src_trans - dst_points

        A = np.zeros((6, 6))
        b = np.zeros(6)

        if point_to_point_weight > 0:
            # d(R s)/d(omega) = -[s]_x for R ~ (I + [omega]_x) R
            J = np.concatenate([-_skew(src_trans), np.broadcast_to(np.eye(3), (n, 3, 3))], axis=2)
            Jw = J * (w * point_to_point_weight)[:, None, None]
            A += np.einsum('nki,nkj->ij', Jw, J)
            b += np.einsum('nki,nk->i', Jw, diff)

        if point_to_plane_weight > 0:
            J = np.concatenate([np.cross(src_trans, dst_normals), dst_normals], axis=1)
            r = np.einsum('ij,ij->i', diff, dst_normals)
            Jw = J * (w * point_to_plane_weight)[:, None]
            A += Jw.T @ J
            b += Jw.T @ r

        x = np.linalg.lstsq(A, -b, rcond=None)[0]
        steps += 1

        step = RigidTransform(Rotation.from_rotvec(x[:3]).as_matrix(), x[3:])
        transform = step.compose(transform)
        transform = RigidTransform(orthonormalize_rotation(transform.rotation), transform.translation)

        if np.linalg.norm(x) < convergence_tol:
            break

    return transform, steps


def transform_update_magnitude(delta: RigidTransform) -> float:
    """Size of an incremental update, used for convergence checks"""
    return max(np.linalg.norm(delta.rotation - np.eye(3)), np.linalg.norm(delta.translation))
