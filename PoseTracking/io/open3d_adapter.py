"""
Boundary between organized clouds and Open3D / image files.

Registration code only sees OrganizedPointCloud; this module converts to and
from Open3D geometry, estimates normals and loads RGB-D frames from disk.
"""

import numpy as np
import cv2
import open3d as o3d
from pathlib import Path
from typing import Union

from PoseTracking.core.structures.camera import CameraModel
from PoseTracking.core.structures.point_cloud import OrganizedPointCloud
from PoseTracking.logger import get_logger

logger = get_logger("io.open3d_adapter")


def to_open3d(cloud: OrganizedPointCloud, with_normals: bool = True) -> o3d.geometry.PointCloud:
    """
    Unorganized Open3D cloud from the finite points of an organized cloud.

    Point order follows the flat indices of ``cloud.finite_indices()``.
    """
    finite = cloud.finite_indices()

    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(cloud.flat_points[finite])

    if cloud.has_colors:
        colors = cloud.colors.reshape(-1, 3)[finite].astype(np.float64)
        pcd.colors = o3d.utility.Vector3dVector(colors / 255.0 if colors.max() > 1 else colors)

    if with_normals and cloud.has_normals:
        normals = cloud.flat_normals[finite]
        pcd.normals = o3d.utility.Vector3dVector(np.nan_to_num(normals))

    return pcd


def estimate_normals(cloud: OrganizedPointCloud,
                     radius: float = 0.02,
                     max_nn: int = 30) -> OrganizedPointCloud:
    """
    Organized cloud with normals estimated by Open3D.

    Normals point towards the camera (origin). Invalid points keep NaN normals.

    Args:
        cloud: Input organized cloud
        radius: Neighbourhood radius for the hybrid KD-tree search
        max_nn: Maximum neighbours per point

    Returns:
        New OrganizedPointCloud sharing positions and colors with the input
    """
    finite = cloud.finite_indices()
    normals = np.full((cloud.size, 3), np.nan)

    if finite.size >= 3:
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(cloud.flat_points[finite])
        pcd.estimate_normals(
            search_param=o3d.geometry.KDTreeSearchParamHybrid(radius=radius, max_nn=max_nn)
        )
        pcd.orient_normals_towards_camera_location(camera_location=np.zeros(3))
        normals[finite] = np.asarray(pcd.normals)
    else:
        logger.warning(f"Too few valid points ({finite.size}) for normal estimation")

    return OrganizedPointCloud(
        cloud.points,
        colors=cloud.colors,
        normals=normals.reshape(cloud.height, cloud.width, 3),
    )


def load_rgbd(color_path: Union[str, Path],
              depth_path: Union[str, Path],
              camera: CameraModel,
              depth_scale: float = 1000.0) -> OrganizedPointCloud:
    """
    Load a registered colour / depth pair as an organized cloud.

    Args:
        color_path: Colour image readable by OpenCV
        depth_path: 16-bit or float depth image
        camera: Intrinsics of the depth camera
        depth_scale: Raw depth units per meter

    Raises:
        FileNotFoundError: If an image cannot be read
        ValueError: If the images have different sizes
    """
    color = cv2.imread(str(color_path), cv2.IMREAD_COLOR)
    if color is None:
        raise FileNotFoundError(f"Could not read colour image {color_path}")
    depth_raw = cv2.imread(str(depth_path), cv2.IMREAD_UNCHANGED)
    if depth_raw is None:
        raise FileNotFoundError(f"Could not read depth image {depth_path}")

    if depth_raw.ndim == 3:
        depth_raw = depth_raw[:, :, 0]
    if color.shape[:2] != depth_raw.shape[:2]:
        raise ValueError(f"Colour {color.shape[:2]} and depth {depth_raw.shape[:2]} sizes differ")

    depth = depth_raw.astype(np.float64) / depth_scale
    colors = cv2.cvtColor(color, cv2.COLOR_BGR2RGB)

    logger.debug(f"Loaded RGB-D frame {depth.shape[1]}x{depth.shape[0]} from {color_path}")
    return OrganizedPointCloud.from_depth(depth, camera, colors=colors)


def save_point_cloud(cloud: OrganizedPointCloud, filename: Union[str, Path]) -> bool:
    """Write the finite points to a PLY/PCD file"""
    success = o3d.io.write_point_cloud(str(filename), to_open3d(cloud))
    if success:
        logger.info(f"Saved point cloud to {filename}")
    else:
        logger.error(f"Failed to save point cloud to {filename}")
    return success
