"""
Pose estimation from 2D-3D correspondences.
"""

from .ransac_pnp_depth import RansacPnPDepthSolver, RansacPnPDepthConfig

__all__ = [
    'RansacPnPDepthSolver',
    'RansacPnPDepthConfig',
]
