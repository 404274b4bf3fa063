"""
Rigid transform helpers.

4x4 homogeneous transforms follow the convention T_a_b: maps points expressed
in frame b to frame a. Rotation conversions go through cv2.Rodrigues.
"""

import numpy as np
import cv2
from typing import Optional, Tuple


def rt_to_transform(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Build a 4x4 transform from rotation (3x3) and translation (3,)."""
    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = np.asarray(t, dtype=np.float64).reshape(3)
    return T


def invert_transform(T: np.ndarray) -> np.ndarray:
    """Closed-form inverse of a rigid transform."""
    R = T[:3, :3]
    t = T[:3, 3]
    Ti = np.eye(4)
    Ti[:3, :3] = R.T
    Ti[:3, 3] = -R.T @ t
    return Ti


def rvec_to_transform(rvec: np.ndarray, tvec: np.ndarray) -> np.ndarray:
    """Axis-angle rotation + translation to a 4x4 transform."""
    R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
    return rt_to_transform(R, tvec)


def transform_to_rvec_tvec(T: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """4x4 transform to (rvec (3,), tvec (3,))."""
    rvec, _ = cv2.Rodrigues(np.ascontiguousarray(T[:3, :3], dtype=np.float64))
    return rvec.reshape(3), np.array(T[:3, 3], dtype=np.float64)


def transform_points(T: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 4x4 transform to Nx3 points."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    return pts @ T[:3, :3].T + T[:3, 3]


def transform_normals(T: np.ndarray, normals: Optional[np.ndarray]) -> Optional[np.ndarray]:
    """Rotate Nx3 normals by the rotational part of a transform."""
    if normals is None:
        return None
    n = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
    return n @ T[:3, :3].T


def is_finite_transform(T: Optional[np.ndarray]) -> bool:
    """True for a 4x4 transform without NaN/inf entries."""
    return T is not None and T.shape == (4, 4) and bool(np.all(np.isfinite(T)))


def estimate_rigid_transform_svd(source: np.ndarray, target: np.ndarray) -> Optional[np.ndarray]:
    """
    Least-squares rigid transform mapping source onto target (Kabsch / Umeyama
    without scale).

    Args:
        source: Nx3 points
        target: Nx3 corresponding points

    Returns:
        4x4 transform T with target ~= T * source, or None when fewer than
        three correspondences are given or the result is not finite.
    """
    src = np.asarray(source, dtype=np.float64).reshape(-1, 3)
    tgt = np.asarray(target, dtype=np.float64).reshape(-1, 3)
    if src.shape[0] < 3 or src.shape != tgt.shape:
        return None

    src_mean = src.mean(axis=0)
    tgt_mean = tgt.mean(axis=0)
    H = (src - src_mean).T @ (tgt - tgt_mean)

    try:
        U, _, Vt = np.linalg.svd(H)
    except np.linalg.LinAlgError:
        return None

    R = Vt.T @ U.T
    # Reflection guard
    if np.linalg.det(R) < 0:
        Vt[2, :] *= -1
        R = Vt.T @ U.T

    t = tgt_mean - R @ src_mean
    T = rt_to_transform(R, t)
    return T if is_finite_transform(T) else None


def rotation_error_deg(R_est: np.ndarray, R_true: np.ndarray) -> float:
    """Geodesic angle between two rotations in degrees."""
    cos_angle = (np.trace(R_est.T @ R_true) - 1.0) / 2.0
    return float(np.degrees(np.arccos(np.clip(cos_angle, -1.0, 1.0))))


def translation_error(T_est: np.ndarray, T_true: np.ndarray) -> float:
    """Euclidean distance between translation parts."""
    return float(np.linalg.norm(T_est[:3, 3] - T_true[:3, 3]))
