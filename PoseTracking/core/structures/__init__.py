"""
Core data structures: camera model and organized point clouds.
"""

from .camera import CameraModel, VALID_DISTORTION_SIZES
from .point_cloud import OrganizedPointCloud

__all__ = [
    'CameraModel',
    'VALID_DISTORTION_SIZES',
    'OrganizedPointCloud',
]
