"""
Open3D and image file adapters (requires the ``open3d`` extra).
"""

from .open3d_adapter import to_open3d, estimate_normals, load_rgbd, save_point_cloud

__all__ = ['to_open3d', 'estimate_normals', 'load_rgbd', 'save_point_cloud']
