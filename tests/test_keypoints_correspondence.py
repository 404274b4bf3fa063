"""
Tests for keypoint selection and 3D correspondence grouping.
"""

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from PoseTracking.algorithms.registration.keypoints import (
    compute_color_edges,
    keypoints_with_mask,
    UniformSamplingSharedVoxelGrid,
)
from PoseTracking.algorithms.registration.correspondence import (
    determine_correspondences,
    geometric_consistency_grouping,
    ransac_rigid_rejection,
    RigidTransformRansac,
)
from PoseTracking.algorithms.geometry.transforms import rt_to_transform, transform_points
from PoseTracking.core.interfaces.base_estimator import EstimationStatus
from PoseTracking.core.structures.point_cloud import OrganizedPointCloud

from conftest import make_plane_cloud


# ============================================================================
# EDGES
# ============================================================================

def test_color_edges_follow_texture(small_camera):
    cloud = make_plane_cloud(small_camera, square=20)
    edges = compute_color_edges(cloud)

    assert 0 < edges.size < cloud.size
    rows, cols = np.unravel_index(edges, (cloud.height, cloud.width))
    near_border = (np.abs(rows % 20 - 10) >= 8) | (np.abs(cols % 20 - 10) >= 8)
    assert np.all(near_border)


def test_color_edges_fall_back_to_finite_points(small_camera):
    depth = np.full((60, 80), 1.0)
    depth[0, :] = np.nan
    colors = np.full((60, 80, 3), 128, dtype=np.uint8)
    cloud = OrganizedPointCloud.from_depth(depth, small_camera, colors=colors)

    edges = compute_color_edges(cloud)

    assert edges.size == 59 * 80
    assert np.array_equal(edges, cloud.finite_indices())


def test_depth_edges_without_color(small_camera):
    depth = np.full((60, 80), 2.0)
    depth[:, 40:] = 1.0
    cloud = OrganizedPointCloud.from_depth(depth, small_camera)

    edges = compute_color_edges(cloud)
    rows, cols = np.unravel_index(edges, (60, 80))

    assert edges.size == 60
    assert np.all(cols == 40)


def test_keypoints_with_mask():
    assert keypoints_with_mask(np.array([1, 5, 9, 12]), np.array([5, 6, 12])).tolist() == [5, 12]


# ============================================================================
# UNIFORM SAMPLING
# ============================================================================

def test_uniform_sampling_keeps_point_nearest_voxel_centre():
    points = np.array([
        [0.01, 0.01, 0.01],
        [0.05, 0.05, 0.05],     # centre of voxel (0, 0, 0) for radius 0.1
        [0.09, 0.02, 0.08],
        [0.15, 0.05, 0.05],     # voxel (1, 0, 0)
        [np.nan, 0.0, 0.0],
    ])
    sampler = UniformSamplingSharedVoxelGrid(0.1)
    indices = sampler.compute(points)

    assert indices.tolist() == [1, 3]
    min_b, max_b = sampler.get_voxel_grid_values()
    assert min_b.tolist() == [0, 0, 0]
    assert max_b.tolist() == [1, 0, 0]


def test_uniform_sampling_shared_grid_is_deterministic():
    rng = np.random.default_rng(0)
    target = rng.uniform(0, 1, size=(500, 3))
    source = target + 0.001

    reference = UniformSamplingSharedVoxelGrid(0.2)
    reference.compute(target)
    min_b, max_b = reference.get_voxel_grid_values()

    shared = UniformSamplingSharedVoxelGrid(0.2)
    shared.set_voxel_grid_values(min_b - 1, max_b)
    first = shared.compute(source)
    second = shared.compute(source)

    assert np.array_equal(first, second)
    assert 0 < first.size <= 216
    assert shared.get_voxel_grid_values()[0].tolist() == (min_b - 1).tolist()


def test_uniform_sampling_validation():
    with pytest.raises(ValueError):
        UniformSamplingSharedVoxelGrid(0.0)
    with pytest.raises(ValueError):
        UniformSamplingSharedVoxelGrid(0.1).get_voxel_grid_values()
    assert UniformSamplingSharedVoxelGrid(0.1).compute(np.full((3, 3), np.nan)).size == 0


# ============================================================================
# CORRESPONDENCES
# ============================================================================

def test_determine_correspondences_respects_max_distance():
    target = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
    source = np.array([[0.01, 0.0, 0.0], [0.5, 0.5, 0.0], [1.0, 0.015, 0.0], [np.nan, 0, 0]])

    corr, dist = determine_correspondences(source, target, 0.02)

    assert corr.tolist() == [[0, 0], [2, 1]]
    assert np.allclose(dist, [0.01, 0.015])


def make_rigid_scene(num_inliers=15, num_outliers=5, seed=0):
    rng = np.random.default_rng(seed)
    source = rng.uniform(-0.5, 0.5, size=(num_inliers + num_outliers, 3))
    T = rt_to_transform(Rotation.from_euler('xyz', [5, -3, 8], degrees=True).as_matrix(), [0.05, -0.02, 0.03])
    target = transform_points(T, source)
    target[num_inliers:] = rng.uniform(-0.5, 0.5, size=(num_outliers, 3))
    corr = np.column_stack([np.arange(source.shape[0]), np.arange(source.shape[0])])
    return source, target, corr, T


def test_geometric_consistency_grouping_separates_outliers():
    source, target, corr, _ = make_rigid_scene()

    clusters = geometric_consistency_grouping(source, target, corr, gc_size=0.01, gc_threshold=5)

    assert len(clusters) == 1
    assert sorted(clusters[0][:, 0].tolist()) == list(range(15))


def test_geometric_consistency_grouping_many_correspondences():
    # dense VGA edge maps produce thousands of correspondences
    source, target, corr, _ = make_rigid_scene(num_inliers=4000, num_outliers=0)

    clusters = geometric_consistency_grouping(source, target, corr, gc_size=0.01, gc_threshold=5)

    assert len(clusters) == 1
    assert clusters[0].shape == (4000, 2)


def test_geometric_consistency_grouping_threshold_is_exclusive():
    source, target, corr, _ = make_rigid_scene(num_inliers=5, num_outliers=0)
    assert geometric_consistency_grouping(source, target, corr, 0.01, gc_threshold=5) == []
    assert len(geometric_consistency_grouping(source, target, corr, 0.01, gc_threshold=4)) == 1


def test_ransac_rigid_rejection():
    source, target, corr, T = make_rigid_scene()

    inliers, model = ransac_rigid_rejection(source, target, corr, threshold=0.005, max_iterations=500, rng=0)

    assert sorted(inliers[:, 0].tolist()) == list(range(15))
    assert np.allclose(model, T, atol=1e-8)


def test_rigid_ransac_too_few_correspondences():
    source, target, corr, _ = make_rigid_scene(num_inliers=2, num_outliers=0)
    result = RigidTransformRansac().estimate(source, target, corr)
    assert not result
    assert result.status == EstimationStatus.INSUFFICIENT_POINTS

    inliers, model = ransac_rigid_rejection(source, target, corr, 0.01, 100)
    assert inliers.shape == (0, 2)
    assert model is None
