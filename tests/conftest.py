"""
Shared fixtures: camera, synthetic correspondences and organized clouds.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

project_root = Path(__file__).parent.parent  # Go up from tests/ to project root
sys.path.insert(0, str(project_root))

from PoseTracking.core.structures.camera import CameraModel
from PoseTracking.core.structures.point_cloud import OrganizedPointCloud
from PoseTracking.algorithms.geometry.transforms import rvec_to_transform, transform_points


@pytest.fixture
def camera():
    return CameraModel.from_intrinsics(525.0, 525.0, 320.0, 240.0)


@pytest.fixture
def cube_points():
    """Corners of a 0.4 m cube centred 2 m in front of the camera"""
    return np.array([[x, y, z]
                     for x in (-0.2, 0.2)
                     for y in (-0.2, 0.2)
                     for z in (1.8, 2.2)], dtype=np.float64)


@pytest.fixture
def gt_pose():
    return rvec_to_transform(np.array([0.05, -0.1, 0.08]), np.array([0.1, -0.05, 0.3]))


def make_correspondences(camera, pose, num_points, seed=0):
    """Random model points in front of the camera and their exact projections"""
    rng = np.random.default_rng(seed)
    points_3d = rng.uniform([-0.5, -0.4, 1.5], [0.5, 0.4, 2.5], size=(num_points, 3))
    pts_cam = transform_points(pose, points_3d)
    points_2d = camera.project(pts_cam)
    return points_3d, points_2d, pts_cam[:, 2].copy()


def plant_outliers(points_2d, indices, seed=1, min_offset=50.0):
    """Move selected observations at least ``min_offset`` pixels away"""
    rng = np.random.default_rng(seed)
    out = points_2d.copy()
    for i in indices:
        angle = rng.uniform(0, 2 * np.pi)
        radius = rng.uniform(min_offset + 10.0, min_offset + 100.0)
        out[i] += radius * np.array([np.cos(angle), np.sin(angle)])
    return out


@pytest.fixture
def small_camera():
    return CameraModel.from_intrinsics(80.0, 80.0, 40.0, 30.0)


def make_plane_cloud(camera, width=80, height=60, z=1.0, square=10, normals=False):
    """Fronto-parallel plane with a black and white checkerboard texture"""
    depth = np.full((height, width), z)
    v, u = np.mgrid[0:height, 0:width]
    checker = ((u // square + v // square) % 2).astype(np.uint8) * 255
    colors = np.dstack([checker, checker, checker])
    nrm = None
    if normals:
        nrm = np.zeros((height, width, 3))
        nrm[:, :, 2] = -1.0
    return OrganizedPointCloud.from_depth(depth, camera, colors=colors, normals=nrm)


@pytest.fixture
def plane_cloud(small_camera):
    return make_plane_cloud(small_camera)
