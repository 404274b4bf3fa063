"""
Non-linear optimization.
"""

from .refinement import PoseRefiner, PoseRefinerConfig

__all__ = ['PoseRefiner', 'PoseRefinerConfig']
