"""
Organized point cloud representation.

A single generic representation is used by all registration code: positions,
optional colors and optional normals stored as parallel (H, W, 3) arrays laid
out like the depth image they came from. Invalid measurements are NaN.
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional

from .camera import CameraModel


@dataclass
class OrganizedPointCloud:
    """
    Image-structured point cloud.

    Attributes:
        points: (H, W, 3) float positions in the camera frame, NaN where invalid
        colors: Optional (H, W, 3) uint8 RGB colors
        normals: Optional (H, W, 3) float unit normals, NaN where invalid
    """
    points: np.ndarray
    colors: Optional[np.ndarray] = None
    normals: Optional[np.ndarray] = None

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float64)
        if self.points.ndim != 3 or self.points.shape[2] != 3:
            raise ValueError(f"Organized points must have shape (H, W, 3), got {self.points.shape}")
        if self.points.shape[0] == 0 or self.points.shape[1] == 0:
            raise ValueError("Organized point cloud is empty")

        if self.colors is not None:
            self.colors = np.asarray(self.colors)
            if self.colors.shape != self.points.shape:
                raise ValueError(f"Colors shape {self.colors.shape} does not match points {self.points.shape}")
        if self.normals is not None:
            self.normals = np.asarray(self.normals, dtype=np.float64)
            if self.normals.shape != self.points.shape:
                raise ValueError(f"Normals shape {self.normals.shape} does not match points {self.points.shape}")

    @classmethod
    def from_depth(cls,
                   depth: np.ndarray,
                   camera: CameraModel,
                   colors: Optional[np.ndarray] = None,
                   normals: Optional[np.ndarray] = None) -> 'OrganizedPointCloud':
        """
        Back-project a metric depth image.

        Args:
            depth: (H, W) depth in meters; 0 or NaN marks missing data
            camera: Camera intrinsics
            colors: Optional (H, W, 3) RGB image
            normals: Optional (H, W, 3) normals

        Returns:
            OrganizedPointCloud in the camera frame
        """
        depth = np.asarray(depth, dtype=np.float64)
        if depth.ndim != 2:
            raise ValueError(f"Depth image must be 2D, got shape {depth.shape}")

        height, width = depth.shape
        u, v = np.meshgrid(np.arange(width), np.arange(height))

        z = np.where(np.isfinite(depth) & (depth > 0), depth, np.nan)
        x = (u - camera.cx) * z / camera.fx
        y = (v - camera.cy) * z / camera.fy

        return cls(np.dstack([x, y, z]), colors=colors, normals=normals)

    @property
    def height(self) -> int:
        return self.points.shape[0]

    @property
    def width(self) -> int:
        return self.points.shape[1]

    @property
    def size(self) -> int:
        return self.height * self.width

    @property
    def has_normals(self) -> bool:
        return self.normals is not None

    @property
    def has_colors(self) -> bool:
        return self.colors is not None

    @property
    def flat_points(self) -> np.ndarray:
        """(H*W, 3) view of the positions in row-major order"""
        return self.points.reshape(-1, 3)

    @property
    def flat_normals(self) -> Optional[np.ndarray]:
        return None if self.normals is None else self.normals.reshape(-1, 3)

    @property
    def depth(self) -> np.ndarray:
        """(H, W) z-channel"""
        return self.points[:, :, 2]

    def finite_mask(self) -> np.ndarray:
        """(H*W,) mask of points with all coordinates finite"""
        return np.all(np.isfinite(self.flat_points), axis=1)

    def finite_indices(self) -> np.ndarray:
        return np.flatnonzero(self.finite_mask())

    def select(self, indices: np.ndarray) -> np.ndarray:
        """Positions at the given flat indices (Nx3)"""
        return self.flat_points[np.asarray(indices, dtype=np.int64)]

    def select_normals(self, indices: np.ndarray) -> Optional[np.ndarray]:
        if self.normals is None:
            return None
        return self.flat_normals[np.asarray(indices, dtype=np.int64)]

    def centroid(self) -> np.ndarray:
        """Centroid of all finite points"""
        pts = self.flat_points[self.finite_mask()]
        if pts.shape[0] == 0:
            return np.zeros(3)
        return pts.mean(axis=0)
