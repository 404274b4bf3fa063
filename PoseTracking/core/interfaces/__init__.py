"""
Core interfaces.

Abstract base classes and result types shared by every estimator and
optimizer in the package.

Usage:
    from PoseTracking.core.interfaces import RANSACEstimator, EstimationResult

    class MyEstimator(RANSACEstimator):
        def estimate(self, *args):
            ...
"""

# Estimator interfaces
from .base_estimator import (
    BaseEstimator,
    RANSACEstimator,
    EstimationResult,
    EstimationStatus,
    RANSAC_EXHAUSTED,
)

# Optimizer interfaces
from .base_optimizer import (
    BaseOptimizer,
    OptimizationResult,
    OptimizationStatus,
)


__all__ = [
    # Estimator
    'BaseEstimator',
    'RANSACEstimator',
    'EstimationResult',
    'EstimationStatus',
    'RANSAC_EXHAUSTED',

    # Optimizer
    'BaseOptimizer',
    'OptimizationResult',
    'OptimizationStatus',
]
