"""
Tests for free-space violation and normal consistency scoring.
"""

import numpy as np
import pytest

from PoseTracking.algorithms.registration.visibility import VisibilityReasoning
from PoseTracking.algorithms.geometry.transforms import rt_to_transform
from PoseTracking.core.structures.point_cloud import OrganizedPointCloud

from conftest import make_plane_cloud


def test_fsv_counts_floating_points(small_camera, plane_cloud):
    vr = VisibilityReasoning(small_camera, threshold_tss=0.01)
    points = np.array([
        [0.0, 0.0, 0.5],     # floats in front of the plane
        [0.1, 0.1, 1.0],     # on the plane
        [0.0, 0.0, 1.5],     # behind the plane (occluded, not a violation)
        [5.0, 0.0, 1.0],     # outside the image
        [np.nan, 0.0, 1.0],  # invalid
    ])

    fsv = vr.compute_fsv(plane_cloud, points)

    assert fsv == pytest.approx(1.0 / 3.0)
    assert vr.fsv_used_points == 3


def test_fsv_tolerance(small_camera, plane_cloud):
    points = np.array([[0.0, 0.0, 0.995], [0.0, 0.0, 0.95]])
    fsv, used = VisibilityReasoning(small_camera, threshold_tss=0.01).compute_fsv_with_count(plane_cloud, points)
    assert used == 2
    assert fsv == pytest.approx(0.5)


def test_fsv_skips_pixels_without_target_depth(small_camera):
    depth = np.full((60, 80), 1.0)
    depth[:, :40] = np.nan
    target = OrganizedPointCloud.from_depth(depth, small_camera)

    points = np.array([[-0.2, 0.0, 0.5], [0.2, 0.0, 0.5]])
    fsv, used = VisibilityReasoning(small_camera).compute_fsv_with_count(target, points)

    assert used == 1
    assert fsv == pytest.approx(1.0)


def test_fsv_no_overlap_is_zero(small_camera, plane_cloud):
    vr = VisibilityReasoning(small_camera)
    assert vr.compute_fsv(plane_cloud, np.array([[0.0, 0.0, -1.0]])) == 0.0
    assert vr.fsv_used_points == 0


def test_fsv_applies_pose(small_camera, plane_cloud):
    vr = VisibilityReasoning(small_camera)
    points = np.array([[0.0, 0.0, 1.0], [0.05, 0.05, 1.0]])

    assert vr.compute_fsv(plane_cloud, points) == 0.0
    towards_camera = rt_to_transform(np.eye(3), [0.0, 0.0, -0.2])
    assert vr.compute_fsv(plane_cloud, points, towards_camera) == pytest.approx(1.0)
    assert vr.fsv_used_points == 2


def test_normal_consistency(small_camera):
    target = make_plane_cloud(small_camera, normals=True)
    vr = VisibilityReasoning(small_camera)
    points = np.array([[0.0, 0.0, 1.0], [0.1, 0.0, 1.0]])

    facing = np.array([[0.0, 0.0, -1.0], [0.0, 0.0, -1.0]])
    mixed = np.array([[0.0, 0.0, -1.0], [0.0, 0.0, 1.0]])

    assert vr.normal_consistency(target, None, points, facing) == pytest.approx(1.0)
    assert vr.normal_consistency(target, None, points, mixed) == pytest.approx(0.0)
    assert vr.normal_consistency(target, None, points, -facing) == pytest.approx(-1.0)


def test_normal_consistency_without_valid_pixels(small_camera):
    target = make_plane_cloud(small_camera, normals=True)
    vr = VisibilityReasoning(small_camera)
    normals = np.array([[0.0, 0.0, -1.0]])

    assert vr.normal_consistency(target, None, np.array([[9.0, 0.0, 1.0]]), normals) == 0.0
    assert vr.normal_consistency(target, None, np.array([[0.0, 0.0, 1.0]]), np.full((1, 3), np.nan)) == 0.0
    assert vr.normal_consistency(make_plane_cloud(small_camera), None, np.array([[0.0, 0.0, 1.0]]), normals) == 0.0
