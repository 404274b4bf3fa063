"""
Camera model shared by the pose solver, the tracker and the visibility scorer.

Wraps the intrinsic matrix and optional distortion coefficients and exposes
the 3D-to-2D projection used for inlier counting and visibility reasoning.
The model is immutable once constructed.
"""

import numpy as np
import cv2
from typing import Optional, Tuple


# Accepted distortion vector lengths (OpenCV order k1, k2, p1, p2[, k3[, k4, k5, k6]])
VALID_DISTORTION_SIZES = (0, 4, 5, 8)


class CameraModel:
    """
    Pinhole camera with optional radial/tangential distortion.

    Attributes:
        camera_matrix: 3x3 intrinsic matrix (float64, read-only)
        dist_coeffs: Distortion coefficients padded to 8 values, or None
        width: Image width in pixels (optional)
        height: Image height in pixels (optional)
    """

    def __init__(self,
                 camera_matrix: np.ndarray,
                 dist_coeffs: Optional[np.ndarray] = None,
                 width: Optional[int] = None,
                 height: Optional[int] = None):
        """
        Args:
            camera_matrix: Intrinsic matrix (3x3)
            dist_coeffs: 0, 4, 5 or 8 distortion coefficients
            width: Image width (needed for bounds checks)
            height: Image height (needed for bounds checks)

        Raises:
            ValueError: If the intrinsics or distortion coefficients are malformed
        """
        K = np.asarray(camera_matrix, dtype=np.float64)
        if K.shape != (3, 3):
            raise ValueError(f"Invalid camera matrix shape: {K.shape}, expected (3, 3)")
        if not np.all(np.isfinite(K)):
            raise ValueError("Camera matrix contains non-finite values")
        if K[0, 0] <= 0 or K[1, 1] <= 0:
            raise ValueError(f"Focal lengths must be positive, got fx={K[0, 0]}, fy={K[1, 1]}")
        if not np.allclose(K[2], [0.0, 0.0, 1.0]):
            raise ValueError(f"Last row of camera matrix must be [0, 0, 1], got {K[2]}")

        self.camera_matrix = K.copy()
        self.camera_matrix.setflags(write=False)

        self.dist_coeffs = None
        if dist_coeffs is not None:
            d = np.asarray(dist_coeffs, dtype=np.float64).ravel()
            if d.size not in VALID_DISTORTION_SIZES:
                raise ValueError(
                    f"Invalid number of distortion coefficients: {d.size}, "
                    f"expected one of {VALID_DISTORTION_SIZES}"
                )
            if not np.all(np.isfinite(d)):
                raise ValueError("Distortion coefficients contain non-finite values")
            if d.size > 0:
                padded = np.zeros(8, dtype=np.float64)
                padded[:d.size] = d
                self.dist_coeffs = padded
                self.dist_coeffs.setflags(write=False)

        if (width is None) != (height is None):
            raise ValueError("width and height must be given together")
        if width is not None and (width <= 0 or height <= 0):
            raise ValueError(f"Invalid image size {width}x{height}")
        self.width = None if width is None else int(width)
        self.height = None if height is None else int(height)

    @classmethod
    def from_intrinsics(cls,
                        fx: float,
                        fy: float,
                        cx: float,
                        cy: float,
                        dist_coeffs: Optional[np.ndarray] = None,
                        width: Optional[int] = None,
                        height: Optional[int] = None) -> 'CameraModel':
        """Build a camera from focal lengths and principal point."""
        K = np.array([[fx, 0.0, cx],
                      [0.0, fy, cy],
                      [0.0, 0.0, 1.0]])
        return cls(K, dist_coeffs, width, height)

    def with_image_size(self, width: int, height: int) -> 'CameraModel':
        """Copy of this camera with a (new) image size."""
        return CameraModel(self.camera_matrix, self.dist_coeffs, width, height)

    @property
    def fx(self) -> float:
        return float(self.camera_matrix[0, 0])

    @property
    def fy(self) -> float:
        return float(self.camera_matrix[1, 1])

    @property
    def cx(self) -> float:
        return float(self.camera_matrix[0, 2])

    @property
    def cy(self) -> float:
        return float(self.camera_matrix[1, 2])

    @property
    def has_distortion(self) -> bool:
        return self.dist_coeffs is not None

    @property
    def has_image_size(self) -> bool:
        return self.width is not None

    def cv_dist_coeffs(self) -> np.ndarray:
        """Distortion vector in the form OpenCV expects (zeros if undistorted)."""
        if self.dist_coeffs is None:
            return np.zeros(5, dtype=np.float64)
        return np.array(self.dist_coeffs)

    def project(self, points_cam: np.ndarray) -> np.ndarray:
        """
        Project points given in the camera frame to pixel coordinates.

        Points with non-positive depth produce non-finite or meaningless
        coordinates; callers mask them using the depth.

        Args:
            points_cam: Points in camera coordinates (Nx3)

        Returns:
            Pixel coordinates (Nx2, float64)
        """
        pts = np.asarray(points_cam, dtype=np.float64).reshape(-1, 3)
        if pts.shape[0] == 0:
            return np.zeros((0, 2), dtype=np.float64)

        if self.dist_coeffs is None:
            with np.errstate(divide='ignore', invalid='ignore'):
                x = pts[:, 0] / pts[:, 2]
                y = pts[:, 1] / pts[:, 2]
            return np.column_stack([self.fx * x + self.cx, self.fy * y + self.cy])

        finite = np.all(np.isfinite(pts), axis=1) & (np.abs(pts[:, 2]) > np.finfo(np.float64).eps)
        uv = np.full((pts.shape[0], 2), np.nan, dtype=np.float64)
        if np.any(finite):
            projected, _ = cv2.projectPoints(
                pts[finite].reshape(-1, 1, 3),
                np.zeros(3), np.zeros(3),
                np.array(self.camera_matrix), self.cv_dist_coeffs()
            )
            uv[finite] = projected.reshape(-1, 2)
        return uv

    def project_pixels(self, points_cam: np.ndarray,
                       image_size: Optional[Tuple[int, int]] = None) -> Tuple[np.ndarray, np.ndarray]:
        """
        Integer pixel coordinates with a validity mask.

        A point is valid when it is finite, lies in front of the camera and
        truncates to a pixel inside the image.

        Args:
            points_cam: Points in camera coordinates (Nx3)
            image_size: (width, height); defaults to the camera's own size

        Returns:
            Tuple (pixels (Nx2 int, u then v), valid mask (N,))
        """
        if image_size is None:
            if not self.has_image_size:
                raise ValueError("Camera has no image size; pass image_size explicitly")
            image_size = (self.width, self.height)
        width, height = image_size

        pts = np.asarray(points_cam, dtype=np.float64).reshape(-1, 3)
        valid = np.all(np.isfinite(pts), axis=1) & (pts[:, 2] > 0)

        uv = self.project(pts)
        valid &= np.all(np.isfinite(uv), axis=1)

        pixels = np.zeros((pts.shape[0], 2), dtype=np.int64)
        # truncation towards zero, as the integer cast of the projected coordinate
        pixels[valid] = np.trunc(uv[valid]).astype(np.int64)
        valid &= (uv[:, 0] >= 0) & (uv[:, 1] >= 0)
        valid &= (pixels[:, 0] < width) & (pixels[:, 1] < height)
        pixels[~valid] = 0
        return pixels, valid

    def __repr__(self) -> str:
        size = f", {self.width}x{self.height}" if self.has_image_size else ""
        return (f"CameraModel(fx={self.fx:.2f}, fy={self.fy:.2f}, cx={self.cx:.2f}, "
                f"cy={self.cy:.2f}, distortion={self.has_distortion}{size})")
