"""
Tests for hypothesis-tree ICP with geometric consistency.
"""

import numpy as np
import pytest

from PoseTracking.algorithms.registration.fast_icp_gc import (
    FastIterativeClosestPointWithGC,
    ICPNode,
    AlignmentResult,
)
from PoseTracking.algorithms.geometry.transforms import rt_to_transform, rvec_to_transform
from PoseTracking.core.structures.point_cloud import OrganizedPointCloud

from conftest import make_plane_cloud


def make_icp(camera, cloud, **config):
    icp = FastIterativeClosestPointWithGC(camera, rng=0, uniform_sampling_radius=0.05, **config)
    icp.set_input_cloud(cloud)
    icp.set_target_cloud(cloud)
    return icp


# ============================================================================
# ROOTS AND TERMINATION
# ============================================================================

def test_zero_iterations_returns_root(small_camera, plane_cloud):
    guess = rvec_to_transform(np.array([0.01, 0.02, 0.0]), np.array([0.1, 0.0, 0.05]))
    icp = make_icp(small_camera, plane_cloud, max_iterations=0)

    results = icp.align(guess)

    assert len(results) == 1
    assert results[0].score == 0.0
    assert np.array_equal(results[0].transform, guess)
    assert np.array_equal(icp.get_final_transformation(), guess)


def test_zero_iterations_returns_all_initial_poses(small_camera, plane_cloud):
    poses = [np.eye(4), rt_to_transform(np.eye(3), [0.5, 0.0, 0.0]), rt_to_transform(np.eye(3), [0.0, 0.5, 0.0])]
    icp = make_icp(small_camera, plane_cloud, max_iterations=0)
    icp.set_initial_poses(poses)

    results = icp.align()

    assert len(results) == 3
    for result, pose in zip(results, poses):
        assert result.score == 0.0
        assert np.array_equal(result.transform, pose)


def test_align_requires_clouds(small_camera, plane_cloud):
    icp = FastIterativeClosestPointWithGC(small_camera)
    icp.set_target_cloud(plane_cloud)
    with pytest.raises(ValueError):
        icp.align()


def test_no_overlap_prunes_everything(small_camera, plane_cloud):
    far_away = rt_to_transform(np.eye(3), [5.0, 0.0, 0.0])
    icp = make_icp(small_camera, plane_cloud, max_iterations=3)

    results = icp.align(far_away)

    assert results == []
    assert icp.get_final_transformation() is None


def test_target_roi_without_edges_returns_nothing(small_camera, plane_cloud):
    icp = make_icp(small_camera, plane_cloud, max_iterations=3)
    icp.set_input_indices(np.arange(plane_cloud.size))
    # interior pixel of the first checker square
    icp.set_target_indices(np.array([5 * 80 + 5]))

    src_idx, tgt_idx = icp.compute_keypoints()
    assert src_idx.size == 0 and tgt_idx.size == 0

    assert icp.align(np.eye(4)) == []
    assert icp.get_final_transformation() is None


def test_target_without_valid_depth_returns_nothing(small_camera, plane_cloud):
    icp = make_icp(small_camera, plane_cloud, max_iterations=3)
    icp.set_target_cloud(OrganizedPointCloud(np.full((60, 80, 3), np.nan)))

    assert icp.align(np.eye(4)) == []
    assert icp.get_final_transformation() is None


# ============================================================================
# CONVERGENCE AND SCORING
# ============================================================================

def test_identity_alignment_score(small_camera, plane_cloud):
    icp = make_icp(small_camera, plane_cloud, max_iterations=2)

    results = icp.align(np.eye(4))

    assert len(results) == 1
    assert np.allclose(results[0].transform, np.eye(4), atol=1e-9)
    # no free-space violations, overlap capped at OVERLAP_PERCENTAGE
    assert results[0].score == pytest.approx((1.0 - 0.02) * 0.5)


def test_small_offset_converges(small_camera, plane_cloud):
    offset = rt_to_transform(np.eye(3), [0.01, 0.0, 0.0])
    icp = make_icp(small_camera, plane_cloud, max_iterations=3)

    icp.align(offset)
    final = icp.get_final_transformation()

    assert np.allclose(final, np.eye(4), atol=1e-6)
    assert icp.get_results()[0].score > 0.0


def test_normals_scale_the_score(small_camera):
    cloud = make_plane_cloud(small_camera, normals=True)
    icp = make_icp(small_camera, cloud, max_iterations=1)

    results = icp.align(np.eye(4))

    # normals agree everywhere, so the normal term is 1
    assert results[0].score == pytest.approx(0.49)


def test_roi_indices_restrict_keypoints(small_camera, plane_cloud):
    icp = make_icp(small_camera, plane_cloud, max_iterations=1)
    src_all, tgt_all = icp.compute_keypoints()

    roi = np.arange(plane_cloud.size // 2)
    icp.set_input_indices(roi)
    icp.set_target_indices(roi)
    src_roi, tgt_roi = icp.compute_keypoints()

    assert 0 < src_roi.size < src_all.size
    assert np.all(src_roi < plane_cloud.size // 2)
    assert np.all(tgt_roi < plane_cloud.size // 2)


def test_without_geometric_consistency(small_camera, plane_cloud):
    icp = make_icp(small_camera, plane_cloud, max_iterations=2, use_geometric_consistency=False)
    icp.align(rt_to_transform(np.eye(3), [0.0, 0.01, 0.0]))
    assert np.allclose(icp.get_final_transformation(), np.eye(4), atol=1e-6)


# ============================================================================
# SURVIVOR SELECTION
# ============================================================================

def test_near_duplicates_collapse_to_best(small_camera, plane_cloud):
    icp = make_icp(small_camera, plane_cloud, translation_dedup_tolerance=0.02)
    reference = np.array([[0.0, 0.0, 1.0]])

    low = ICPNode(rt_to_transform(np.eye(3), [0.005, 0.0, 0.0]), reg_error=0.3)
    high = ICPNode(rt_to_transform(np.eye(3), [0.0, 0.01, 0.0]), reg_error=0.6)
    distinct = ICPNode(rt_to_transform(np.eye(3), [0.2, 0.0, 0.0]), reg_error=0.1)

    survivors = icp.select_survivors([low, distinct, high], reference)

    assert len(survivors) == 2
    assert survivors[0] is high and survivors[1] is distinct


def test_survivors_are_stable_and_truncated(small_camera, plane_cloud):
    icp = make_icp(small_camera, plane_cloud, max_keep=2)
    reference = np.zeros((1, 3))
    nodes = [ICPNode(rt_to_transform(np.eye(3), [0.1 * i, 0.0, 0.0]), reg_error=0.5) for i in range(4)]
    nodes.append(ICPNode(rt_to_transform(np.eye(3), [0.0, 1.0, 0.0]), reg_error=-1.0))

    survivors = icp.select_survivors(nodes, reference)

    assert len(survivors) == 2
    assert survivors[0] is nodes[0] and survivors[1] is nodes[1]


def test_dedup_uses_rotation_of_reference(small_camera, plane_cloud):
    icp = make_icp(small_camera, plane_cloud)
    reference = np.array([[1.0, 0.0, 0.0]])

    a = ICPNode(np.eye(4), reg_error=1.0)
    b = ICPNode(rvec_to_transform(np.array([0.0, 0.0, np.pi / 2]), np.zeros(3)), reg_error=0.5)

    survivors = icp.select_survivors([a, b], reference)
    assert len(survivors) == 2 and survivors[0] is a
    assert not icp.filter_hypotheses_by_pose(b, [a], reference)


def test_alignment_result_fields():
    result = AlignmentResult(0.5, np.eye(4))
    assert result.score == 0.5
    assert result.transform.shape == (4, 4)
