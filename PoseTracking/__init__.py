"""
PoseTracking

Robust object pose estimation and tracking:
- RANSAC PnP with depth and least-squares pose refinement
- Lucas-Kanade frame-to-frame pose tracking
- Hypothesis-tree ICP with geometric consistency and visibility scoring
"""

from .logger import setup_logger, get_logger, configure_root_logger

from .core import (
    BaseConfig,
    CameraModel,
    OrganizedPointCloud,
    EstimationResult,
    EstimationStatus,
    OptimizationResult,
    OptimizationStatus,
    RANSAC_EXHAUSTED,
)
from .algorithms.geometry.pose import RansacPnPDepthSolver
from .algorithms.optimization import PoseRefiner
from .algorithms.registration import (
    FastIterativeClosestPointWithGC,
    AlignmentResult,
    VisibilityReasoning,
)
from .tracking import LKPoseTracker, TrackerState, TrackingResult

__version__ = "0.1.0"

__all__ = [
    'setup_logger',
    'get_logger',
    'configure_root_logger',
    'BaseConfig',
    'CameraModel',
    'OrganizedPointCloud',
    'EstimationResult',
    'EstimationStatus',
    'OptimizationResult',
    'OptimizationStatus',
    'RANSAC_EXHAUSTED',
    'RansacPnPDepthSolver',
    'PoseRefiner',
    'FastIterativeClosestPointWithGC',
    'AlignmentResult',
    'VisibilityReasoning',
    'LKPoseTracker',
    'TrackerState',
    'TrackingResult',
]
