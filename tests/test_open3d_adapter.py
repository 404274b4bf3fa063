"""
Tests for the Open3D / RGB-D boundary adapters.
"""

import numpy as np
import cv2
import pytest

o3d = pytest.importorskip("open3d")

from PoseTracking.io.open3d_adapter import to_open3d, estimate_normals, load_rgbd, save_point_cloud
from PoseTracking.core.structures.point_cloud import OrganizedPointCloud

from conftest import make_plane_cloud


def test_to_open3d_keeps_finite_points(small_camera):
    depth = np.full((60, 80), 1.0)
    depth[:10] = 0.0
    cloud = OrganizedPointCloud.from_depth(depth, small_camera)

    pcd = to_open3d(cloud)

    assert len(pcd.points) == 50 * 80
    assert not pcd.has_colors()


def test_to_open3d_scales_colors(small_camera, plane_cloud):
    pcd = to_open3d(plane_cloud)
    colors = np.asarray(pcd.colors)
    assert colors.max() <= 1.0
    assert colors.max() == pytest.approx(1.0)


def test_estimate_normals_face_the_camera(small_camera, plane_cloud):
    with_normals = estimate_normals(plane_cloud, radius=0.05, max_nn=20)

    assert with_normals.has_normals
    normals = with_normals.flat_normals
    assert np.allclose(normals[:, 2], -1.0, atol=1e-3)
    assert np.array_equal(with_normals.points, plane_cloud.points)


def test_load_rgbd(tmp_path, small_camera):
    color = np.zeros((60, 80, 3), dtype=np.uint8)
    color[:, :, 2] = 200      # red in BGR
    depth = np.full((60, 80), 1500, dtype=np.uint16)
    depth[0, 0] = 0

    color_path = tmp_path / "color.png"
    depth_path = tmp_path / "depth.png"
    cv2.imwrite(str(color_path), color)
    cv2.imwrite(str(depth_path), depth)

    cloud = load_rgbd(color_path, depth_path, small_camera, depth_scale=1000.0)

    assert cloud.points.shape == (60, 80, 3)
    assert cloud.depth[30, 40] == pytest.approx(1.5)
    assert np.isnan(cloud.depth[0, 0])
    assert cloud.colors[5, 5].tolist() == [200, 0, 0]


def test_load_rgbd_missing_file(tmp_path, small_camera):
    with pytest.raises(FileNotFoundError):
        load_rgbd(tmp_path / "none.png", tmp_path / "none_depth.png", small_camera)


def test_save_point_cloud(tmp_path, small_camera):
    filename = tmp_path / "cloud.ply"
    assert save_point_cloud(make_plane_cloud(small_camera), filename)
    assert len(o3d.io.read_point_cloud(str(filename)).points) == 60 * 80
