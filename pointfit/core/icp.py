#!/usr/bin/env python3
"""
Iterative Closest Point rigid registration

Aligns a source point set onto a destination point set by alternating
nearest-neighbor correspondence search in a composite descriptor space
(positions, optionally weighted normals and colors) with a rigid transform
update under a point-to-point, point-to-plane or combined metric.

Results are computed lazily: the first result accessor after construction or
after any relevant parameter change runs the whole estimation, later calls
return the cached transform.
"""

import time
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import List, Optional

import numpy as np

from .correspondence import CorrespondenceSet
from .point_cloud import PointCloud
from .rigid_transform import (
    RigidTransform,
    estimate_rigid_transform_combined,
    estimate_rigid_transform_point_to_point,
    orthonormalize_rotation,
    transform_update_magnitude,
)
from .spatial_index import SpatialIndex
from ..utils.logging import get_logger

logger = get_logger(__name__)


class Metric(Enum):
    POINT_TO_POINT = "point_to_point"
    POINT_TO_PLANE = "point_to_plane"
    COMBINED = "combined"

    @property
    def needs_normals(self) -> bool:
        return self is not Metric.POINT_TO_POINT


class CorrespondencesType(Enum):
    POINTS = "points"
    NORMALS = "normals"
    COLORS = "colors"
    POINTS_NORMALS = "points_normals"
    POINTS_COLORS = "points_colors"
    NORMALS_COLORS = "normals_colors"
    POINTS_NORMALS_COLORS = "points_normals_colors"

    @property
    def uses_points(self) -> bool:
        return "points" in self.value

    @property
    def uses_normals(self) -> bool:
        return "normals" in self.value

    @property
    def uses_colors(self) -> bool:
        return "colors" in self.value

    @property
    def channel_count(self) -> int:
        return int(self.uses_points) + int(self.uses_normals) + int(self.uses_colors)

    @property
    def is_composite(self) -> bool:
        """Several channels; only these descriptors carry per-channel weights"""
        return self.channel_count > 1

    @property
    def descriptor_dim(self) -> int:
        return 3 * self.channel_count

    @classmethod
    def from_channels(cls, points: bool, normals: bool, colors: bool) -> "CorrespondencesType":
        """Type using exactly the given channels; POINTS when none is selected"""
        name = "_".join(channel for channel, used in
                        (("points", points), ("normals", normals), ("colors", colors)) if used)
        return cls(name) if name else cls.POINTS


class RegistrationState(Enum):
    STALE = "stale"
    RUNNING = "running"
    CONVERGED = "converged"
    ITERATION_LIMIT_REACHED = "iteration_limit_reached"
    NO_CORRESPONDENCES = "no_correspondences"


@dataclass(frozen=True)
class Adjustment:
    """Outcome of correcting a requested setting against the available data"""

    setting: str
    requested: Enum
    effective: Enum

    @property
    def adjusted(self) -> bool:
        return self.requested is not self.effective


def correct_correspondences_type(requested: CorrespondencesType,
                                 has_normals: bool,
                                 has_colors: bool) -> Adjustment:
    """
    Drop descriptor channels the data cannot provide

    Args:
        requested: Requested correspondences type
        has_normals: Both point sets carry normals
        has_colors: Both point sets carry colors

    Returns:
        Adjustment holding the best supported type
    """
    effective = CorrespondencesType.from_channels(
        requested.uses_points,
        requested.uses_normals and has_normals,
        requested.uses_colors and has_colors,
    )
    return Adjustment("correspondences_type", requested, effective)


def correct_metric(requested: Metric, has_dst_normals: bool) -> Adjustment:
    """Fall back to point-to-point when the destination has no normals"""
    effective = requested if (has_dst_normals or not requested.needs_normals) else Metric.POINT_TO_POINT
    return Adjustment("metric", requested, effective)


@dataclass(frozen=True)
class RegistrationConfig:
    """Immutable set of ICP parameters"""

    metric: Metric = Metric.POINT_TO_PLANE
    point_to_point_weight: float = 0.1
    point_to_plane_weight: float = 1.0
    correspondences_type: CorrespondencesType = CorrespondencesType.POINTS
    correspondence_point_weight: float = 1.0
    correspondence_normal_weight: float = 10.0
    correspondence_color_weight: float = 1.0
    max_correspondence_distance: float = 0.05
    correspondences_fraction: float = 1.0
    convergence_tolerance: float = 1e-3
    max_iterations: int = 15
    max_optimization_step_iterations: int = 1
    initial_rotation: np.ndarray = field(default_factory=lambda: np.eye(3), compare=False)
    initial_translation: np.ndarray = field(default_factory=lambda: np.zeros(3), compare=False)

    def __post_init__(self):
        if not isinstance(self.metric, Metric):
            object.__setattr__(self, "metric", Metric(self.metric))
        if not isinstance(self.correspondences_type, CorrespondencesType):
            object.__setattr__(self, "correspondences_type", CorrespondencesType(self.correspondences_type))

        rot = np.asarray(self.initial_rotation, dtype=float)
        t = np.asarray(self.initial_translation, dtype=float).reshape(-1)
        if rot.shape != (3, 3) or t.shape != (3,):
            raise ValueError("Initial transformation needs a 3x3 rotation and a 3-vector translation")
        object.__setattr__(self, "initial_rotation", orthonormalize_rotation(rot))
        object.__setattr__(self, "initial_translation", t.copy())

        if self.max_correspondence_distance < 0:
            raise ValueError("max_correspondence_distance must be non-negative")
        if not (0.0 < self.correspondences_fraction <= 1.0):
            raise ValueError("correspondences_fraction must be in (0, 1]")
        if self.convergence_tolerance < 0:
            raise ValueError("convergence_tolerance must be non-negative")
        if self.max_iterations < 0 or self.max_optimization_step_iterations < 0:
            raise ValueError("Iteration caps must be non-negative")
        for name in ("point_to_point_weight", "point_to_plane_weight", "correspondence_point_weight",
                     "correspondence_normal_weight", "correspondence_color_weight"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")

    @property
    def initial_transformation(self) -> RigidTransform:
        return RigidTransform(self.initial_rotation.copy(), self.initial_translation.copy())

    @classmethod
    def from_dict(cls, params: dict) -> "RegistrationConfig":
        names = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in params.items() if key in names})

    def to_dict(self) -> dict:
        params = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, np.ndarray):
                value = value.tolist()
            params[f.name] = value
        return params


_NUMERIC_SETTINGS = (
    "max_correspondence_distance",
    "correspondences_fraction",
    "convergence_tolerance",
    "max_iterations",
    "max_optimization_step_iterations",
)


def _config_property(name: str, doc: str):
    def getter(self):
        return getattr(self._config, name)

    def setter(self, value):
        self.configure(**{name: value})

    return property(getter, setter, doc=doc)


def _as_vector_set(values, name: str, n_points: Optional[int] = None) -> Optional[np.ndarray]:
    if values is None:
        return None
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return None
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"{name} must have shape (N, 3), got {arr.shape}")
    if n_points is not None and len(arr) != n_points:
        raise ValueError(f"{name} has {len(arr)} rows, expected {n_points}")
    return arr


class IterativeClosestPoint:
    """Rigid point-set registration engine"""

    def __init__(self, dst_points, src_points, dst_normals=None, src_normals=None,
                 dst_colors=None, src_colors=None, metric: Optional[Metric] = None,
                 correspondences_type: Optional[CorrespondencesType] = None,
                 config: Optional[RegistrationConfig] = None):
        self.dst_points = _as_vector_set(dst_points, "dst_points")
        self.src_points = _as_vector_set(src_points, "src_points")
        if self.dst_points is None or self.src_points is None:
            raise ValueError("Both point sets must be non-empty")
        self.dst_normals = _as_vector_set(dst_normals, "dst_normals", len(self.dst_points))
        self.src_normals = _as_vector_set(src_normals, "src_normals", len(self.src_points))
        self.dst_colors = _as_vector_set(dst_colors, "dst_colors", len(self.dst_points))
        self.src_colors = _as_vector_set(src_colors, "src_colors", len(self.src_points))

        self.adjustments: List[Adjustment] = []

        if metric is None:
            if config is not None:
                metric = config.metric
            else:
                metric = Metric.POINT_TO_PLANE if self.dst_normals is not None else Metric.POINT_TO_POINT
        config = config or RegistrationConfig()
        if correspondences_type is None:
            correspondences_type = config.correspondences_type

        metric_adj = self._record(correct_metric(Metric(metric), self.dst_normals is not None))
        corr_adj = self._record(self._correct_type(CorrespondencesType(correspondences_type)))
        self._config = replace(config, metric=metric_adj.effective,
                               correspondences_type=corr_adj.effective)

        self._index: Optional[SpatialIndex] = None
        self._dst_descriptors: Optional[np.ndarray] = None
        self._invalidate()

    @classmethod
    def from_point_clouds(cls, dst: PointCloud, src: PointCloud,
                          metric: Metric = Metric.POINT_TO_PLANE,
                          correspondences_type: CorrespondencesType = CorrespondencesType.POINTS,
                          config: Optional[RegistrationConfig] = None) -> "IterativeClosestPoint":
        return cls(
            dst.points, src.points,
            dst_normals=dst.normals if dst.has_normals() else None,
            src_normals=src.normals if src.has_normals() else None,
            dst_colors=dst.colors if dst.has_colors() else None,
            src_colors=src.colors if src.has_colors() else None,
            metric=metric,
            correspondences_type=correspondences_type,
            config=config,
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    metric = _config_property("metric", "Optimization metric")
    point_to_point_weight = _config_property("point_to_point_weight", "Point-to-point weight of the combined metric")
    point_to_plane_weight = _config_property("point_to_plane_weight", "Point-to-plane weight of the combined metric")
    correspondences_type = _config_property("correspondences_type", "Descriptor channels used for matching")
    correspondence_point_weight = _config_property("correspondence_point_weight", "Position scale in descriptors")
    correspondence_normal_weight = _config_property("correspondence_normal_weight", "Normal scale in descriptors")
    correspondence_color_weight = _config_property("correspondence_color_weight", "Color scale in descriptors")
    max_correspondence_distance = _config_property("max_correspondence_distance",
                                                   "Largest descriptor distance accepted as a match")
    correspondences_fraction = _config_property("correspondences_fraction",
                                                "Fraction of closest correspondences kept per iteration")
    convergence_tolerance = _config_property("convergence_tolerance", "Update size that counts as converged")
    max_iterations = _config_property("max_iterations", "Outer iteration cap")
    max_optimization_step_iterations = _config_property("max_optimization_step_iterations",
                                                        "Linearized solver steps per iteration")

    @property
    def config(self) -> RegistrationConfig:
        return self._config

    @property
    def initial_transformation(self) -> RigidTransform:
        return self._config.initial_transformation

    @initial_transformation.setter
    def initial_transformation(self, transform):
        if isinstance(transform, RigidTransform):
            self.set_initial_transformation(transform.rotation, transform.translation)
        else:
            transform = RigidTransform.from_matrix(transform)
            self.set_initial_transformation(transform.rotation, transform.translation)

    def set_initial_transformation(self, rotation, translation) -> "IterativeClosestPoint":
        return self.configure(initial_rotation=rotation, initial_translation=translation)

    def configure(self, **changes) -> "IterativeClosestPoint":
        """
        Apply several parameter changes at once

        Cached results are dropped only when a change affects the fit; the
        spatial index is dropped only when the descriptor space changes.
        """
        names = {f.name for f in fields(RegistrationConfig)}
        unknown = set(changes) - names
        if unknown:
            raise TypeError(f"Unknown registration parameters: {', '.join(sorted(unknown))}")

        if "metric" in changes:
            changes["metric"] = self._record(
                correct_metric(Metric(changes["metric"]), self.dst_normals is not None)).effective
        if "correspondences_type" in changes:
            changes["correspondences_type"] = self._record(
                self._correct_type(CorrespondencesType(changes["correspondences_type"]))).effective

        old, new = self._config, replace(self._config, **changes)
        invalidate, drop_index = self._classify_change(old, new, changes)
        self._config = new

        if drop_index:
            self._release_index()
        if invalidate:
            self._invalidate()
        return self

    @staticmethod
    def _classify_change(old: RegistrationConfig, new: RegistrationConfig, changes: dict):
        invalidate = False
        drop_index = False

        if new.metric is not old.metric:
            invalidate = True
        if new.metric is Metric.COMBINED and (
                new.point_to_point_weight != old.point_to_point_weight or
                new.point_to_plane_weight != old.point_to_plane_weight):
            invalidate = True

        corr = new.correspondences_type
        if corr is not old.correspondences_type:
            invalidate = drop_index = True
        if corr.is_composite and (
                (corr.uses_points and new.correspondence_point_weight != old.correspondence_point_weight) or
                (corr.uses_normals and new.correspondence_normal_weight != old.correspondence_normal_weight) or
                (corr.uses_colors and new.correspondence_color_weight != old.correspondence_color_weight)):
            invalidate = drop_index = True

        if any(getattr(new, name) != getattr(old, name) for name in _NUMERIC_SETTINGS):
            invalidate = True
        if "initial_rotation" in changes or "initial_translation" in changes:
            invalidate = True

        return invalidate, drop_index

    def _correct_type(self, requested: CorrespondencesType) -> Adjustment:
        has_normals = self.dst_normals is not None and self.src_normals is not None
        has_colors = self.dst_colors is not None and self.src_colors is not None
        return correct_correspondences_type(requested, has_normals, has_colors)

    def _record(self, adjustment: Adjustment) -> Adjustment:
        if adjustment.adjusted:
            logger.warning("Requested %s %s is not supported by the data, using %s",
                           adjustment.setting, adjustment.requested.name, adjustment.effective.name)
            self.adjustments.append(adjustment)
        return adjustment

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def state(self) -> RegistrationState:
        return self._state

    @property
    def iteration_count(self) -> int:
        return self._iteration_count

    def has_converged(self) -> bool:
        return self._state is RegistrationState.CONVERGED

    def get_transformation(self) -> RigidTransform:
        """Estimated transform mapping source points onto the destination"""
        self._ensure_estimated()
        return RigidTransform(self._transform.rotation.copy(), self._transform.translation.copy())

    def get_transformation_matrix(self) -> np.ndarray:
        self._ensure_estimated()
        return self._transform.as_matrix()

    def get_correspondences(self) -> CorrespondenceSet:
        """Correspondences used by the last iteration"""
        self._ensure_estimated()
        return self._correspondences

    def get_residuals(self, correspondences_type: Optional[CorrespondencesType] = None,
                      metric: Optional[Metric] = None) -> np.ndarray:
        """
        Per-source-point residuals under the current transform estimate

        Each transformed source point is matched to its nearest destination
        neighbor in the descriptor space of `correspondences_type` (no
        distance bound). The residual is the squared point distance, the
        squared point-to-plane distance, or their weighted sum for the
        combined metric. Does not run the estimation or change engine state.
        """
        cfg = self._config
        corr_type = cfg.correspondences_type if correspondences_type is None else \
            self._correct_type(CorrespondencesType(correspondences_type)).effective
        metric = cfg.metric if metric is None else \
            correct_metric(Metric(metric), self.dst_normals is not None).effective

        transform = self._transform
        if corr_type is cfg.correspondences_type:
            index = self._ensure_index()
        else:
            index = SpatialIndex(self._build_dst_descriptors(corr_type, cfg))

        _, nn, _ = index.nearest_neighbor(self._build_src_descriptors(transform, corr_type, cfg))
        diff = transform.apply(self.src_points) - self.dst_points[nn]

        point_res = np.einsum('ij,ij->i', diff, diff)
        if metric is Metric.POINT_TO_POINT:
            return point_res
        plane_res = np.einsum('ij,ij->i', diff, self.dst_normals[nn]) ** 2
        if metric is Metric.POINT_TO_PLANE:
            return plane_res
        return cfg.point_to_point_weight * point_res + cfg.point_to_plane_weight * plane_res

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def _invalidate(self):
        self._state = RegistrationState.STALE
        self._iteration_count = 0
        self._transform = self._config.initial_transformation
        self._correspondences = CorrespondenceSet.empty()

    def _release_index(self):
        self._index = None
        self._dst_descriptors = None

    def _ensure_estimated(self):
        if self._state is RegistrationState.STALE:
            self._estimate_transform()

    def _ensure_index(self) -> SpatialIndex:
        if self._index is None:
            self._dst_descriptors = self._build_dst_descriptors(self._config.correspondences_type, self._config)
            self._index = SpatialIndex(self._dst_descriptors)
            logger.debug("Built %s for %s correspondences", self._index, self._config.correspondences_type.name)
        return self._index

    def _build_dst_descriptors(self, corr_type: CorrespondencesType, cfg: RegistrationConfig) -> np.ndarray:
        return self._stack_descriptor(corr_type, cfg, self.dst_points, self.dst_normals, self.dst_colors)

    def _build_src_descriptors(self, transform: RigidTransform, corr_type: CorrespondencesType,
                               cfg: RegistrationConfig) -> np.ndarray:
        points = transform.apply(self.src_points) if corr_type.uses_points else None
        normals = transform.rotate(self.src_normals) if corr_type.uses_normals else None
        return self._stack_descriptor(corr_type, cfg, points, normals, self.src_colors)

    @staticmethod
    def _stack_descriptor(corr_type, cfg, points, normals, colors) -> np.ndarray:
        # Single-channel descriptors are searched unweighted
        weighted = corr_type.is_composite
        parts = []
        if corr_type.uses_points:
            parts.append(cfg.correspondence_point_weight * points if weighted else points)
        if corr_type.uses_normals:
            parts.append(cfg.correspondence_normal_weight * normals if weighted else normals)
        if corr_type.uses_colors:
            parts.append(cfg.correspondence_color_weight * colors if weighted else colors)
        return np.hstack(parts)

    def _find_correspondences(self, transform: RigidTransform) -> CorrespondenceSet:
        cfg = self._config
        index = self._ensure_index()
        queries = self._build_src_descriptors(transform, cfg.correspondences_type, cfg)
        found, nn, dist = index.nearest_neighbor(queries, cfg.max_correspondence_distance)

        src_idx = np.flatnonzero(found)
        correspondences = CorrespondenceSet(src_idx, nn[src_idx], dist[src_idx])
        return correspondences.prune(cfg.correspondences_fraction)

    def _solve_increment(self, src_points_trans: np.ndarray, corr: CorrespondenceSet) -> RigidTransform:
        cfg = self._config
        dst = self.dst_points[corr.dst_indices]
        src = src_points_trans[corr.src_indices]

        if cfg.metric is Metric.POINT_TO_POINT:
            return estimate_rigid_transform_point_to_point(dst, src)

        if cfg.metric is Metric.POINT_TO_PLANE:
            w_pp, w_pl = 0.0, 1.0
        else:
            w_pp, w_pl = cfg.point_to_point_weight, cfg.point_to_plane_weight
        delta, _ = estimate_rigid_transform_combined(
            dst, self.dst_normals[corr.dst_indices], src,
            point_to_point_weight=w_pp,
            point_to_plane_weight=w_pl,
            max_iterations=cfg.max_optimization_step_iterations,
            convergence_tol=cfg.convergence_tolerance,
        )
        return delta

    def _estimate_transform(self):
        cfg = self._config
        self._state = RegistrationState.RUNNING
        self._iteration_count = 0
        transform = cfg.initial_transformation
        final_state = RegistrationState.ITERATION_LIMIT_REACHED
        start_time = time.time()

        logger.info("Starting ICP: %d source -> %d destination points, metric=%s, correspondences=%s",
                    len(self.src_points), len(self.dst_points), cfg.metric.name, cfg.correspondences_type.name)

        while self._iteration_count < cfg.max_iterations:
            src_points_trans = transform.apply(self.src_points)
            corr = self._find_correspondences(transform)
            if len(corr) == 0:
                logger.warning("No correspondences within distance %.6g at iteration %d",
                               cfg.max_correspondence_distance, self._iteration_count)
                final_state = RegistrationState.NO_CORRESPONDENCES
                break
            self._correspondences = corr

            delta = self._solve_increment(src_points_trans, corr)
            transform = RigidTransform(
                orthonormalize_rotation(delta.rotation @ transform.rotation),
                delta.rotation @ transform.translation + delta.translation,
            )
            self._transform = transform
            self._iteration_count += 1

            update = transform_update_magnitude(delta)
            logger.debug("  ICP iteration %d: %d correspondences, mean distance = %.6f, update = %.3e",
                         self._iteration_count, len(corr), corr.mean_distance(), update)

            if update < cfg.convergence_tolerance:
                final_state = RegistrationState.CONVERGED
                break

        self._transform = transform
        self._state = final_state
        logger.info("ICP finished after %d iterations (%s) in %.3f s",
                    self._iteration_count, final_state.value, time.time() - start_time)
