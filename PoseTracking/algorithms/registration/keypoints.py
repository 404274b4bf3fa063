"""
Keypoint selection for registration.

Colour edges of an organized cloud are thinned with a uniform voxel grid so
that source and target keypoints have comparable density.
"""

import numpy as np
import cv2
from typing import Optional, Tuple

from PoseTracking.core.structures.point_cloud import OrganizedPointCloud
from PoseTracking.logger import get_logger

logger = get_logger("registration.keypoints")


def compute_color_edges(cloud: OrganizedPointCloud,
                        canny_low: float = 150.0,
                        canny_high: float = 200.0,
                        depth_discontinuity: float = 0.03) -> np.ndarray:
    """
    Flat indices of finite points lying on image edges.

    Canny runs on the grayscale colour image. Clouds without colour use depth
    discontinuities instead: a pixel is an edge when a 4-neighbour's depth
    differs by more than ``depth_discontinuity * z``.

    Args:
        cloud: Organized cloud
        canny_low: Lower Canny hysteresis threshold
        canny_high: Upper Canny hysteresis threshold
        depth_discontinuity: Relative depth jump for colourless clouds

    Returns:
        Sorted flat indices; all finite indices when no edge is found
    """
    finite = cloud.finite_mask().reshape(cloud.height, cloud.width)

    if cloud.has_colors:
        colors = np.ascontiguousarray(cloud.colors)
        if colors.dtype != np.uint8:
            colors = np.clip(colors, 0, 255).astype(np.uint8)
        gray = cv2.cvtColor(colors, cv2.COLOR_RGB2GRAY)
        edges = cv2.Canny(gray, canny_low, canny_high) > 0
    else:
        edges = _depth_edges(cloud.depth, depth_discontinuity)

    indices = np.flatnonzero(edges & finite)
    if indices.size == 0:
        logger.debug("No edges found, using all finite points as keypoint candidates")
        return np.flatnonzero(finite)
    return indices


def _depth_edges(depth: np.ndarray, threshold: float) -> np.ndarray:
    z = np.where(np.isfinite(depth), depth, np.inf)
    edges = np.zeros(depth.shape, dtype=bool)

    with np.errstate(invalid='ignore'):
        jump_x = np.abs(z[:, 1:] - z[:, :-1]) > threshold * np.minimum(z[:, 1:], z[:, :-1])
        jump_y = np.abs(z[1:, :] - z[:-1, :]) > threshold * np.minimum(z[1:, :], z[:-1, :])

    # the nearer side of a jump is the occluding edge
    near_left = z[:, :-1] < z[:, 1:]
    edges[:, :-1] |= jump_x & near_left
    edges[:, 1:] |= jump_x & ~near_left
    near_top = z[:-1, :] < z[1:, :]
    edges[:-1, :] |= jump_y & near_top
    edges[1:, :] |= jump_y & ~near_top
    return edges & np.isfinite(depth)


def keypoints_with_mask(keypoint_indices: np.ndarray, roi_indices: np.ndarray) -> np.ndarray:
    """Keypoints restricted to a region of interest (both flat indices)"""
    return np.intersect1d(keypoint_indices, roi_indices)


class UniformSamplingSharedVoxelGrid:
    """
    Uniform sampling on a voxel lattice that can be shared between clouds.

    Each occupied voxel contributes the point closest to its centre. Setting
    the grid bounds from one cloud with ``set_voxel_grid_values`` aligns the
    voxel boundaries of every subsequent ``compute`` call to that cloud.
    """

    def __init__(self, radius: float):
        if radius <= 0:
            raise ValueError(f"Sampling radius must be positive, got {radius}")
        self.radius = float(radius)
        self.min_b: Optional[np.ndarray] = None
        self.max_b: Optional[np.ndarray] = None
        self._shared = False

    def set_voxel_grid_values(self, min_b: np.ndarray, max_b: np.ndarray):
        """Fix the voxel grid bounds (integer voxel coordinates)"""
        self.min_b = np.asarray(min_b, dtype=np.int64).reshape(3)
        self.max_b = np.asarray(max_b, dtype=np.int64).reshape(3)
        self._shared = True

    def get_voxel_grid_values(self) -> Tuple[np.ndarray, np.ndarray]:
        if self.min_b is None:
            raise ValueError("Voxel grid bounds are not known before compute()")
        return self.min_b.copy(), self.max_b.copy()

    def compute(self, points: np.ndarray) -> np.ndarray:
        """
        Sample one point per voxel.

        Args:
            points: Nx3 points, non-finite rows are ignored

        Returns:
            Sorted indices into ``points``
        """
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        finite = np.flatnonzero(np.all(np.isfinite(pts), axis=1))
        if finite.size == 0:
            return np.zeros(0, dtype=np.int64)

        voxels = np.floor(pts[finite] / self.radius).astype(np.int64)
        if not self._shared:
            self.min_b = voxels.min(axis=0)
            self.max_b = voxels.max(axis=0)

        keys = voxels - self.min_b
        centres = (voxels + 0.5) * self.radius
        dist = np.linalg.norm(pts[finite] - centres, axis=1)

        order = np.lexsort((dist, keys[:, 2], keys[:, 1], keys[:, 0]))
        sorted_keys = keys[order]
        first = np.ones(order.size, dtype=bool)
        first[1:] = np.any(sorted_keys[1:] != sorted_keys[:-1], axis=1)

        return np.sort(finite[order[first]])
