"""
Point cloud registration.

Keypoint selection, correspondence grouping, visibility reasoning and the
hypothesis-tree ICP built on them.
"""

from .visibility import VisibilityReasoning
from .keypoints import compute_color_edges, keypoints_with_mask, UniformSamplingSharedVoxelGrid
from .correspondence import (
    determine_correspondences,
    geometric_consistency_grouping,
    ransac_rigid_rejection,
    RigidTransformRansac,
    RigidRansacConfig,
)
from .fast_icp_gc import FastIterativeClosestPointWithGC, FastICPConfig, ICPNode, AlignmentResult

__all__ = [
    'VisibilityReasoning',
    'compute_color_edges',
    'keypoints_with_mask',
    'UniformSamplingSharedVoxelGrid',
    'determine_correspondences',
    'geometric_consistency_grouping',
    'ransac_rigid_rejection',
    'RigidTransformRansac',
    'RigidRansacConfig',
    'FastIterativeClosestPointWithGC',
    'FastICPConfig',
    'ICPNode',
    'AlignmentResult',
]
