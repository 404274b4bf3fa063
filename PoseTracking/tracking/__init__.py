"""
Frame-to-frame object tracking.
"""

from .lk_pose_tracker import LKPoseTracker, LKTrackerConfig, TrackerState, TrackingResult, to_gray

__all__ = [
    'LKPoseTracker',
    'LKTrackerConfig',
    'TrackerState',
    'TrackingResult',
    'to_gray',
]
