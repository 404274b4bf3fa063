"""
Core module: interfaces, data structures and configuration helpers.
"""

from .config import BaseConfig
from .interfaces import (
    BaseEstimator,
    RANSACEstimator,
    EstimationResult,
    EstimationStatus,
    RANSAC_EXHAUSTED,
    BaseOptimizer,
    OptimizationResult,
    OptimizationStatus,
)
from .structures import CameraModel, OrganizedPointCloud

__all__ = [
    'BaseConfig',
    'BaseEstimator',
    'RANSACEstimator',
    'EstimationResult',
    'EstimationStatus',
    'RANSAC_EXHAUSTED',
    'BaseOptimizer',
    'OptimizationResult',
    'OptimizationStatus',
    'CameraModel',
    'OrganizedPointCloud',
]
