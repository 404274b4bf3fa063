"""
Base interface for optimization algorithms.

This defines the contract for algorithms that refine estimates through
iterative non-linear optimization (pose refinement).
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass, field
from enum import Enum
import numpy as np


class OptimizationStatus(Enum):
    """Status codes for optimization results"""
    SUCCESS = "success"
    CONVERGED = "converged"
    NUMERICAL_ERROR = "numerical_error"
    INVALID_INPUT = "invalid_input"
    FAILED = "failed"


@dataclass
class OptimizationResult:
    """
    Result of an optimization algorithm.

    Attributes:
        success: Whether optimization succeeded
        status: Status code from OptimizationStatus
        optimized_params: Optimized parameters (e.g. refined pose)
        initial_cost: Cost before optimization
        final_cost: Cost after optimization
        num_iterations: Number of function evaluations performed
        residuals: Final residuals
        runtime: Optimization runtime in seconds
        metadata: Additional algorithm-specific information
    """
    success: bool
    status: OptimizationStatus
    optimized_params: Optional[Any] = None
    initial_cost: float = 0.0
    final_cost: float = 0.0
    num_iterations: int = 0
    residuals: Optional[np.ndarray] = None
    runtime: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        """Allow truthiness check"""
        return self.success


class BaseOptimizer(ABC):
    """
    Abstract base class for optimization algorithms.

    Like estimators, optimizers keep their tunables on ``self.config`` and
    accept case-insensitive keyword overrides.
    """

    config_class = None

    def __init__(self, **config):
        """
        Initialize optimizer with configuration.

        Args:
            **config: Configuration overrides
        """
        self.config = self.config_class(**config) if self.config_class is not None else None

    @abstractmethod
    def compute_residuals(self, params: Any, *args, **kwargs) -> np.ndarray:
        """
        Compute residuals for given parameters.

        Args:
            params: Current parameter values
            *args: Additional data needed for residual computation

        Returns:
            np.ndarray: Residuals
        """
        pass

    @abstractmethod
    def validate_input(self, *args, **kwargs) -> Tuple[bool, str]:
        """
        Validate input before optimization.

        Returns:
            Tuple[bool, str]: (is_valid, error_message)
        """
        pass

    def get_algorithm_name(self) -> str:
        """Get algorithm name."""
        return self.__class__.__name__
