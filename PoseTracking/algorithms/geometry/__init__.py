"""
Geometric algorithms: rigid transforms and pose estimation.
"""

from .transforms import (
    rt_to_transform,
    invert_transform,
    rvec_to_transform,
    transform_to_rvec_tvec,
    transform_points,
    transform_normals,
    is_finite_transform,
    estimate_rigid_transform_svd,
    rotation_error_deg,
    translation_error,
)

__all__ = [
    'rt_to_transform',
    'invert_transform',
    'rvec_to_transform',
    'transform_to_rvec_tvec',
    'transform_points',
    'transform_normals',
    'is_finite_transform',
    'estimate_rigid_transform_svd',
    'rotation_error_deg',
    'translation_error',
]
