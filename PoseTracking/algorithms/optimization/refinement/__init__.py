from .pose_refiner import PoseRefiner, PoseRefinerConfig

__all__ = ['PoseRefiner', 'PoseRefinerConfig']
