"""
Base interface for all estimation algorithms.

This defines the contract for algorithms that estimate geometric relationships
from noisy correspondences (camera pose from 2D-3D matches, rigid transforms
from 3D-3D matches, ...).
"""

import math
import sys
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass, field
from enum import Enum
import numpy as np


# Trial count reported when RANSAC could not gather enough support.
RANSAC_EXHAUSTED = sys.maxsize


class EstimationStatus(Enum):
    """Status codes for estimation results"""
    SUCCESS = "success"
    INSUFFICIENT_POINTS = "insufficient_points"
    INSUFFICIENT_SUPPORT = "insufficient_support"
    DEGENERATE_CONFIG = "degenerate_configuration"
    NO_SOLUTION = "no_solution"
    FAILED = "failed"


@dataclass
class EstimationResult:
    """
    Result of an estimation algorithm.

    Attributes:
        success: Whether estimation succeeded
        status: Status code from EstimationStatus
        model: Estimated model (e.g. 4x4 pose)
        inliers: Indices of inlier correspondences
        num_inliers: Number of inlier correspondences
        num_points: Number of correspondences the estimate was computed from
        residuals: Residual errors for each point
        confidence: Confidence score [0, 1]
        metadata: Additional algorithm-specific information
    """
    success: bool
    status: EstimationStatus
    model: Optional[Any] = None
    inliers: Optional[np.ndarray] = None
    num_inliers: int = 0
    num_points: int = 0
    residuals: Optional[np.ndarray] = None
    confidence: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        """Allow truthiness check"""
        return self.success


class BaseEstimator(ABC):
    """
    Abstract base class for all estimation algorithms.

    Subclasses keep their tunables on a Config object (``self.config``) with
    UPPER_CASE attributes. Keyword overrides passed to the constructor are
    applied through ``configure``.
    """

    config_class = None

    def __init__(self, **config):
        """
        Initialize estimator with configuration.

        Args:
            **config: Configuration overrides (case-insensitive names)
        """
        self.config = self.config_class() if self.config_class is not None else None
        self.configure(**config)

    # ========================================================================
    # CORE ESTIMATION METHOD (Required)
    # ========================================================================

    @abstractmethod
    def estimate(self, *args, **kwargs) -> EstimationResult:
        """
        Perform estimation.

        Returns:
            EstimationResult: Estimation result with model and metadata
        """
        pass

    @abstractmethod
    def validate_input(self, *args, **kwargs) -> Tuple[bool, str]:
        """
        Validate input data before estimation.

        Returns:
            Tuple[bool, str]: (is_valid, error_message)
        """
        pass

    # ========================================================================
    # CONFIGURATION METHODS
    # ========================================================================

    def configure(self, **config):
        """
        Update estimator configuration.

        Args:
            **config: Configuration parameters to update
        """
        if self.config is not None:
            self.config.update(**config)

    def get_config(self) -> Dict[str, Any]:
        """
        Get current configuration.

        Returns:
            dict: Current configuration parameters
        """
        return self.config.to_dict() if self.config is not None else {}

    def get_min_points(self) -> int:
        """Minimum number of correspondences required."""
        return 0

    def get_algorithm_name(self) -> str:
        """
        Get name of the estimation algorithm.

        Returns:
            str: Human-readable algorithm name
        """
        return self.__class__.__name__

    def __repr__(self) -> str:
        """String representation"""
        return f"{self.get_algorithm_name()}(config={self.get_config()})"


class RANSACEstimator(BaseEstimator):
    """
    Base class for RANSAC-based estimators.

    Provides the adaptive trial budget shared by all hypothesise-and-verify
    estimators in the package. Subclass configs must define CONFIDENCE,
    MAX_TRIALS and SAMPLE_SIZE.
    """

    def get_min_points(self) -> int:
        return self.config.SAMPLE_SIZE

    def trials_needed(self, inlier_ratio: float) -> int:
        """
        Compute required number of RANSAC trials.

        Standard stopping rule ``ceil(log(1 - eta) / log(1 - eps^s))`` where eta
        is the confidence, eps the inlier ratio and s the sample size.

        Args:
            inlier_ratio: Current inlier ratio estimate

        Returns:
            int: Number of trials needed, clamped to MAX_TRIALS
        """
        max_trials = int(self.config.MAX_TRIALS)
        if inlier_ratio <= 0:
            return max_trials
        if inlier_ratio >= 1:
            return min(1, max_trials)

        prob = inlier_ratio ** self.config.SAMPLE_SIZE
        if prob <= 0 or prob >= 1:
            return max_trials

        num_trials = math.ceil(math.log(1.0 - self.config.CONFIDENCE) / math.log(1.0 - prob))
        return int(min(max(num_trials, 1), max_trials))

    def should_continue(self, trial: int, inlier_ratio: float) -> bool:
        """
        Whether another trial is needed after ``trial`` trials.

        Equivalent to ``(1 - eps^s)^k >= 1 - eta`` bounded by MAX_TRIALS.
        """
        if trial >= self.config.MAX_TRIALS:
            return False
        return trial < self.trials_needed(inlier_ratio)
