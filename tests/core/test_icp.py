"""Unit tests for the ICP registration engine."""

import itertools
import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy.spatial.transform import Rotation

from pointfit.core.icp import (
    Adjustment,
    CorrespondencesType,
    IterativeClosestPoint,
    Metric,
    RegistrationConfig,
    RegistrationState,
    correct_correspondences_type,
    correct_metric,
)
from pointfit.core.point_cloud import PointCloud
from pointfit.core.rigid_transform import RigidTransform


def _unit_cube_corners(far_face_first):
    """Corners ordered with the x = 1 face first or the x = 0 face first"""
    x_values = (1.0, 0.0) if far_face_first else (0.0, 1.0)
    return np.array(list(itertools.product(x_values, (0.0, 1.0), (0.0, 1.0))))


def _ellipsoid(n=3000, axes=(1.0, 0.7, 0.5), seed=0):
    """Surface samples of an axis-aligned ellipsoid with analytic outward normals"""
    rng = np.random.default_rng(seed)
    directions = rng.normal(size=(n, 3))
    directions /= np.linalg.norm(directions, axis=1, keepdims=True)
    axes = np.asarray(axes)
    points = directions * axes
    normals = points / axes ** 2
    normals /= np.linalg.norm(normals, axis=1, keepdims=True)
    return points, normals


def _small_motion():
    rotation = Rotation.from_euler('xyz', [3.0, -2.0, 4.0], degrees=True).as_matrix()
    return RigidTransform(rotation, np.array([0.03, -0.02, 0.01]))


def _surface_pair():
    """Destination ellipsoid with normals and a source displaced by the inverse of a known motion"""
    dst_points, dst_normals = _ellipsoid()
    truth = _small_motion()
    inverse = truth.inverse()
    return dst_points, dst_normals, inverse.apply(dst_points), inverse.rotate(dst_normals), truth


def _random_pair(seed=0, offset=(0.02, -0.01, 0.015), n=300):
    rng = np.random.default_rng(seed)
    dst = rng.uniform(0.0, 1.0, size=(n, 3))
    return dst, dst - np.asarray(offset)


class TestCorrections:
    """Test suite for the downgrade policy helpers."""

    def test_normal_channels_need_normals_on_both_sets(self):
        adjustment = correct_correspondences_type(CorrespondencesType.POINTS_NORMALS_COLORS,
                                                  has_normals=False, has_colors=True)
        assert adjustment.effective is CorrespondencesType.POINTS_COLORS
        assert adjustment.adjusted

    def test_empty_channel_set_falls_back_to_points(self):
        adjustment = correct_correspondences_type(CorrespondencesType.NORMALS_COLORS,
                                                  has_normals=False, has_colors=False)
        assert adjustment.effective is CorrespondencesType.POINTS

    def test_supported_type_is_unchanged(self):
        adjustment = correct_correspondences_type(CorrespondencesType.NORMALS,
                                                  has_normals=True, has_colors=False)
        assert adjustment == Adjustment("correspondences_type", CorrespondencesType.NORMALS,
                                        CorrespondencesType.NORMALS)
        assert not adjustment.adjusted

    def test_plane_metrics_need_destination_normals(self):
        assert correct_metric(Metric.COMBINED, has_dst_normals=False).effective is Metric.POINT_TO_POINT
        assert correct_metric(Metric.POINT_TO_PLANE, has_dst_normals=True).effective is Metric.POINT_TO_PLANE
        assert not correct_metric(Metric.POINT_TO_POINT, has_dst_normals=False).adjusted

    def test_descriptor_dimensions(self):
        assert CorrespondencesType.POINTS.descriptor_dim == 3
        assert CorrespondencesType.NORMALS_COLORS.descriptor_dim == 6
        assert CorrespondencesType.POINTS_NORMALS_COLORS.descriptor_dim == 9


class TestRegistrationConfig:
    """Test suite for RegistrationConfig."""

    def test_defaults(self):
        config = RegistrationConfig()
        assert config.metric is Metric.POINT_TO_PLANE
        assert config.point_to_point_weight == 0.1
        assert config.correspondence_normal_weight == 10.0
        assert config.max_correspondence_distance == 0.05
        assert config.convergence_tolerance == 1e-3
        assert config.max_iterations == 15
        assert config.max_optimization_step_iterations == 1

    def test_strings_are_coerced_to_enums(self):
        config = RegistrationConfig(metric="combined", correspondences_type="points_normals")
        assert config.metric is Metric.COMBINED
        assert config.correspondences_type is CorrespondencesType.POINTS_NORMALS

    def test_dict_round_trip(self):
        config = RegistrationConfig(metric=Metric.POINT_TO_POINT, max_iterations=7)
        restored = RegistrationConfig.from_dict(config.to_dict())
        assert restored == config

    @pytest.mark.parametrize("changes", [
        {"correspondences_fraction": 0.0},
        {"correspondences_fraction": 1.5},
        {"max_correspondence_distance": -1.0},
        {"max_iterations": -1},
        {"correspondence_color_weight": -0.1},
    ])
    def test_invalid_values_raise(self, changes):
        with pytest.raises(ValueError):
            RegistrationConfig(**changes)

    def test_initial_rotation_is_orthonormalized(self):
        config = RegistrationConfig(initial_rotation=np.eye(3) * 1.01)
        assert_allclose(config.initial_rotation, np.eye(3), atol=1e-12)


class TestConstruction:
    """Test suite for engine construction."""

    def test_default_metric_follows_destination_normals(self):
        dst, dst_normals, src, _, _ = _surface_pair()
        assert IterativeClosestPoint(dst, src, dst_normals=dst_normals).metric is Metric.POINT_TO_PLANE
        assert IterativeClosestPoint(dst, src).metric is Metric.POINT_TO_POINT

    def test_normal_objective_without_normals_is_downgraded(self, caplog):
        dst, src = _random_pair()

        with caplog.at_level(logging.WARNING, logger="pointfit"):
            icp = IterativeClosestPoint(dst, src, metric=Metric.POINT_TO_PLANE,
                                        correspondences_type=CorrespondencesType.POINTS_NORMALS)

        assert icp.metric is Metric.POINT_TO_POINT
        assert icp.correspondences_type is CorrespondencesType.POINTS
        assert [a.setting for a in icp.adjustments] == ["metric", "correspondences_type"]
        assert "not supported" in caplog.text

    def test_from_point_clouds(self):
        dst, dst_normals, src, src_normals, _ = _surface_pair()
        icp = IterativeClosestPoint.from_point_clouds(
            PointCloud(dst, dst_normals), PointCloud(src, src_normals),
            correspondences_type=CorrespondencesType.POINTS_NORMALS)
        assert icp.metric is Metric.POINT_TO_PLANE
        assert icp.correspondences_type is CorrespondencesType.POINTS_NORMALS
        assert icp.adjustments == []

    def test_mismatched_normals_raise(self):
        dst, src = _random_pair()
        with pytest.raises(ValueError):
            IterativeClosestPoint(dst, src, dst_normals=np.ones((5, 3)))

    def test_empty_point_set_raises(self):
        with pytest.raises(ValueError):
            IterativeClosestPoint(np.zeros((0, 3)), np.ones((4, 3)))

    def test_new_engine_is_stale_with_initial_transform(self):
        dst, src = _random_pair()
        icp = IterativeClosestPoint(dst, src)
        assert icp.state is RegistrationState.STALE
        assert icp.iteration_count == 0
        assert not icp.has_converged()


class TestRegistration:
    """Test suite for ICP estimation."""

    @staticmethod
    def _register_translated_cube(far_face_first):
        src = _unit_cube_corners(far_face_first)
        dst = src + np.array([1.0, 0.0, 0.0])
        icp = IterativeClosestPoint(dst, src, metric=Metric.POINT_TO_POINT)
        icp.configure(max_correspondence_distance=10.0, correspondences_fraction=1.0,
                      convergence_tolerance=1e-4, max_iterations=50)
        return icp, icp.get_transformation()

    def test_translated_unit_cube(self):
        """Recover a unit translation of the unit cube corners."""
        # After the first half step each x = 1.5 corner is equidistant from both
        # destination faces; the lower destination index (here the x = 2 face) wins
        icp, transform = self._register_translated_cube(far_face_first=True)

        assert_allclose(transform.translation, [1.0, 0.0, 0.0], atol=1e-3)
        assert_allclose(transform.rotation, np.eye(3), atol=1e-3)
        assert icp.has_converged()
        assert icp.state is RegistrationState.CONVERGED

    def test_translated_unit_cube_tie_toward_near_face(self):
        """With the x = 1 destination face listed first, ties stall at a half step."""
        icp, transform = self._register_translated_cube(far_face_first=False)

        # a local minimum: the increment vanishes, so the run still reports convergence
        assert_allclose(transform.translation, [0.5, 0.0, 0.0], atol=1e-9)
        assert_allclose(transform.rotation, np.eye(3), atol=1e-9)
        assert icp.state is RegistrationState.CONVERGED
        assert icp.iteration_count == 2

    def test_point_to_point_recovers_shift(self):
        dst, src = _random_pair()
        icp = IterativeClosestPoint(dst, src, metric=Metric.POINT_TO_POINT)
        icp.configure(max_correspondence_distance=1.0, convergence_tolerance=1e-9, max_iterations=50)

        transform = icp.get_transformation()

        assert_allclose(transform.translation, [0.02, -0.01, 0.015], atol=1e-6)
        assert_allclose(icp.get_residuals(), 0.0, atol=1e-10)

    def test_point_to_plane_recovers_motion(self):
        dst, dst_normals, src, _, truth = _surface_pair()
        icp = IterativeClosestPoint(dst, src, dst_normals=dst_normals, metric=Metric.POINT_TO_PLANE)
        icp.configure(max_correspondence_distance=0.5, convergence_tolerance=1e-7, max_iterations=100)

        transform = icp.get_transformation()

        assert_allclose(transform.rotation, truth.rotation, atol=1e-2)
        assert_allclose(transform.translation, truth.translation, atol=1e-2)

    def test_combined_metric_with_normal_correspondences(self):
        dst, dst_normals, src, src_normals, truth = _surface_pair()
        icp = IterativeClosestPoint(dst, src, dst_normals=dst_normals, src_normals=src_normals,
                                    metric=Metric.COMBINED,
                                    correspondences_type=CorrespondencesType.POINTS_NORMALS)
        icp.configure(correspondence_normal_weight=0.1, max_correspondence_distance=0.5,
                      convergence_tolerance=1e-7, max_iterations=100, max_optimization_step_iterations=3)

        transform = icp.get_transformation()

        assert_allclose(transform.rotation, truth.rotation, atol=1e-2)
        assert_allclose(transform.translation, truth.translation, atol=1e-2)

    def test_rotation_stays_orthonormal(self):
        dst, dst_normals, src, _, _ = _surface_pair()
        icp = IterativeClosestPoint(dst, src, dst_normals=dst_normals, metric=Metric.COMBINED)
        icp.max_correspondence_distance = 0.5

        for max_iterations in (1, 2, 5, 15):
            icp.max_iterations = max_iterations
            rotation = icp.get_transformation().rotation
            assert_allclose(rotation.T @ rotation, np.eye(3), atol=1e-9)
            assert np.linalg.det(rotation) == pytest.approx(1.0, abs=1e-9)

    def test_point_to_point_residuals_do_not_increase(self):
        rng = np.random.default_rng(11)
        dst = rng.uniform(0.0, 1.0, size=(200, 3))
        rotation = Rotation.from_euler('z', 8.0, degrees=True).as_matrix()
        src = (dst - 0.5) @ rotation + 0.5 + np.array([0.05, 0.0, -0.03])

        icp = IterativeClosestPoint(dst, src, metric=Metric.POINT_TO_POINT)
        icp.configure(max_correspondence_distance=np.inf, convergence_tolerance=0.0)

        costs = []
        for max_iterations in range(0, 12):
            icp.max_iterations = max_iterations
            icp.get_transformation()
            costs.append(icp.get_residuals().sum())

        assert all(later <= earlier + 1e-9 for earlier, later in zip(costs, costs[1:]))
        assert costs[-1] < costs[0]

    def test_no_correspondences_ends_without_convergence(self):
        dst, src = _random_pair()
        icp = IterativeClosestPoint(dst + 100.0, src, metric=Metric.POINT_TO_POINT)

        transform = icp.get_transformation()

        assert icp.state is RegistrationState.NO_CORRESPONDENCES
        assert not icp.has_converged()
        assert icp.iteration_count == 0
        assert len(icp.get_correspondences()) == 0
        assert_allclose(transform.as_matrix(), np.eye(4))

    def test_zero_iteration_cap_returns_initial_transform(self):
        dst, src = _random_pair()
        icp = IterativeClosestPoint(dst, src, metric=Metric.POINT_TO_POINT)
        icp.max_iterations = 0
        icp.initial_transformation = RigidTransform(np.eye(3), np.array([0.5, 0.0, 0.0]))

        assert_allclose(icp.get_transformation().translation, [0.5, 0.0, 0.0])
        assert icp.state is RegistrationState.ITERATION_LIMIT_REACHED

    def test_fraction_prunes_correspondences(self):
        dst, src = _random_pair(n=100)
        icp = IterativeClosestPoint(dst, src, metric=Metric.POINT_TO_POINT)
        icp.configure(max_correspondence_distance=1.0, correspondences_fraction=0.5, max_iterations=1)
        assert len(icp.get_correspondences()) == 50


class TestCaching:
    """Test suite for lazy evaluation and invalidation."""

    @staticmethod
    def _counted_engine(**kwargs):
        dst, dst_normals, src, src_normals, _ = _surface_pair()
        icp = IterativeClosestPoint(dst, src, dst_normals=dst_normals, src_normals=src_normals, **kwargs)
        icp.max_correspondence_distance = 0.5
        calls = []
        run = icp._estimate_transform

        def counting_run():
            calls.append(1)
            run()

        icp._estimate_transform = counting_run
        return icp, calls

    def test_repeated_queries_run_once(self):
        icp, calls = self._counted_engine(metric=Metric.POINT_TO_PLANE)

        first = icp.get_transformation()
        iterations = icp.iteration_count
        second = icp.get_transformation()
        icp.get_correspondences()
        icp.has_converged()

        assert len(calls) == 1
        assert icp.iteration_count == iterations
        assert_allclose(first.as_matrix(), second.as_matrix())

    def test_returned_transform_is_a_copy(self):
        icp, _ = self._counted_engine(metric=Metric.POINT_TO_PLANE)
        first = icp.get_transformation()
        first.translation[:] = 99.0
        assert not np.allclose(icp.get_transformation().translation, 99.0)

    def test_setting_same_value_keeps_results(self):
        icp, calls = self._counted_engine(metric=Metric.POINT_TO_PLANE)
        icp.get_transformation()
        state = icp.state

        icp.max_iterations = icp.max_iterations
        icp.metric = Metric.POINT_TO_PLANE
        icp.get_transformation()

        assert icp.state is state
        assert len(calls) == 1

    def test_numeric_change_invalidates_but_keeps_index(self):
        icp, calls = self._counted_engine(metric=Metric.POINT_TO_PLANE)
        icp.get_transformation()
        index = icp._index

        icp.convergence_tolerance = 1e-5
        assert icp.state is RegistrationState.STALE
        icp.get_transformation()

        assert len(calls) == 2
        assert icp._index is index

    def test_combined_weights_only_matter_for_combined_metric(self):
        icp, _ = self._counted_engine(metric=Metric.POINT_TO_PLANE)
        icp.get_transformation()
        icp.point_to_point_weight = 0.5
        assert icp.state is not RegistrationState.STALE

        icp.metric = Metric.COMBINED
        icp.get_transformation()
        icp.point_to_plane_weight = 2.0
        assert icp.state is RegistrationState.STALE

    def test_descriptor_weight_changes(self):
        icp, _ = self._counted_engine(metric=Metric.POINT_TO_PLANE)
        icp.get_transformation()
        index = icp._index

        # single-channel POINTS descriptors carry no weights
        icp.correspondence_normal_weight = 3.0
        icp.correspondence_point_weight = 2.0
        assert icp.state is not RegistrationState.STALE
        assert icp._index is index

        icp.correspondences_type = CorrespondencesType.POINTS_NORMALS
        icp.get_transformation()
        index = icp._index

        # colors are not part of POINTS_NORMALS descriptors
        icp.correspondence_color_weight = 5.0
        assert icp.state is not RegistrationState.STALE
        assert icp._index is index

        icp.correspondence_point_weight = 4.0
        assert icp.state is RegistrationState.STALE
        assert icp._index is None

    def test_point_weight_does_not_scale_point_search(self):
        dst = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
        icp = IterativeClosestPoint(dst, dst - np.array([0.04, 0.0, 0.0]), metric=Metric.POINT_TO_POINT)
        icp.max_iterations = 1
        assert len(icp.get_correspondences()) == 4

        icp.correspondence_point_weight = 2.0

        assert len(icp.get_correspondences()) == 4

    def test_correspondences_type_change_drops_index(self):
        icp, _ = self._counted_engine(metric=Metric.POINT_TO_PLANE)
        icp.get_transformation()

        icp.correspondences_type = CorrespondencesType.POINTS_NORMALS

        assert icp.state is RegistrationState.STALE
        assert icp._index is None
        icp.get_transformation()
        assert icp._index.dim == 6

    def test_unsupported_type_request_is_recorded_without_invalidating(self):
        dst, src = _random_pair()
        icp = IterativeClosestPoint(dst, src, metric=Metric.POINT_TO_POINT)
        icp.max_correspondence_distance = 1.0
        icp.get_transformation()

        icp.correspondences_type = CorrespondencesType.NORMALS

        assert icp.correspondences_type is CorrespondencesType.POINTS
        assert icp.adjustments[-1].requested is CorrespondencesType.NORMALS
        assert icp.state is not RegistrationState.STALE

    def test_initial_transformation_invalidates(self):
        icp, _ = self._counted_engine(metric=Metric.POINT_TO_PLANE)
        icp.get_transformation()

        icp.set_initial_transformation(np.eye(3), np.array([0.01, 0.0, 0.0]))

        assert icp.state is RegistrationState.STALE
        assert_allclose(icp.initial_transformation.translation, [0.01, 0.0, 0.0])

    def test_unknown_parameter_raises(self):
        icp, _ = self._counted_engine()
        with pytest.raises(TypeError):
            icp.configure(max_iteration=3)


class TestResiduals:
    """Test suite for residual queries."""

    def test_residual_query_does_not_run_estimation(self):
        dst, src = _random_pair()
        icp = IterativeClosestPoint(dst, src, metric=Metric.POINT_TO_POINT)

        residuals = icp.get_residuals()

        assert residuals.shape == (len(src),)
        assert icp.state is RegistrationState.STALE
        assert icp.iteration_count == 0

    def test_other_descriptor_space_uses_temporary_index(self):
        dst, dst_normals, src, src_normals, _ = _surface_pair()
        icp = IterativeClosestPoint(dst, src, dst_normals=dst_normals, src_normals=src_normals)

        icp.get_residuals(correspondences_type=CorrespondencesType.NORMALS)

        assert icp._index is None

    def test_plane_residuals_are_squared_normal_distances(self):
        dst = np.array([[0.0, 0.0, 0.0], [10.0, 0.0, 0.0]])
        normals = np.array([[0.0, 0.0, 1.0], [0.0, 0.0, 1.0]])
        src = np.array([[0.3, 0.4, 0.0]])
        icp = IterativeClosestPoint(dst, src, dst_normals=normals, metric=Metric.COMBINED)
        icp.configure(point_to_point_weight=2.0, point_to_plane_weight=1.0)

        assert_allclose(icp.get_residuals(metric=Metric.POINT_TO_POINT), [0.25])
        assert_allclose(icp.get_residuals(metric=Metric.POINT_TO_PLANE), [0.0])
        assert_allclose(icp.get_residuals(), [0.5])
