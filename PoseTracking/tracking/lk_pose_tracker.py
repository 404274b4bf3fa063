"""
Incremental Lucas-Kanade pose tracker.

Tracks a rigid object from one frame to the next:

1. Project the 3D model points with the last pose.
2. Follow the in-image projections into the new frame with pyramidal LK.
3. Drop points with invalid flow status or flow error above MAX_FLOW_ERROR.
4. Estimate the new pose with RANSAC PnP on the surviving 3D-2D matches.

The last frame and pose live in a caller-owned TrackerState, so several
sequences can share one tracker and a reset is explicit.

Usage:
    tracker = LKPoseTracker(camera, model_points)
    state = TrackerState()
    tracker.set_last_frame(state, first_image, initial_pose)
    for image in frames:
        result = tracker.detect_incremental(state, image)
        if not result:
            state.reset()   # re-detect the object
"""

import numpy as np
import cv2
from dataclasses import dataclass, field
from typing import Optional, Tuple

from PoseTracking.core.config import BaseConfig
from PoseTracking.core.structures.camera import CameraModel
from PoseTracking.algorithms.geometry.transforms import transform_points
from PoseTracking.algorithms.geometry.pose.ransac_pnp_depth import RansacPnPDepthSolver
from PoseTracking.logger import get_logger

logger = get_logger("tracking.lk_pose_tracker")


class LKTrackerConfig(BaseConfig):
    """Configuration for the LK pose tracker"""

    # Optical flow
    WINDOW_SIZE = (21, 21)
    PYRAMID_LEVELS = 2
    TERMINATION_MAX_ITER = 20
    TERMINATION_EPS = 0.03
    MAX_FLOW_ERROR = 100.0

    # Pose RANSAC
    INLIER_DISTANCE = 2.0
    CONFIDENCE = 0.99
    MAX_RAND_TRIALS = 2000
    SAMPLE_SIZE = 4
    PNP_METHOD = 'P3P'
    REFINE = True


@dataclass
class TrackerState:
    """Single-frame memory of one tracked sequence"""
    last_image: Optional[np.ndarray] = None
    last_pose: Optional[np.ndarray] = None
    have_last: bool = False

    def reset(self):
        self.last_image = None
        self.last_pose = None
        self.have_last = False


@dataclass
class TrackingResult:
    """
    Outcome of one incremental tracking step.

    Attributes:
        success: Whether a pose was found
        confidence: Inliers / model points, 0.0 on loss
        pose: New 4x4 pose, None on loss
        inliers: Model point indices supporting the pose
        num_tracked: Points surviving optical flow
        trials: RANSAC trials used
    """
    success: bool
    confidence: float = 0.0
    pose: Optional[np.ndarray] = None
    inliers: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    num_tracked: int = 0
    trials: int = 0

    def __bool__(self) -> bool:
        return self.success


def to_gray(image: np.ndarray) -> np.ndarray:
    """
    Grayscale uint8 copy of a 1- or 3-channel image.

    Raises:
        ValueError: For empty images or other channel counts
    """
    if image is None:
        raise ValueError("Image is None")
    img = np.asarray(image)
    if img.size == 0:
        raise ValueError("Image is empty")

    if img.ndim == 3 and img.shape[2] == 1:
        img = img[:, :, 0]
    if img.ndim == 2:
        gray = img
    elif img.ndim == 3 and img.shape[2] == 3:
        gray = cv2.cvtColor(np.ascontiguousarray(img), cv2.COLOR_BGR2GRAY)
    else:
        raise ValueError(f"Expected a gray or 3-channel image, got shape {img.shape}")

    if gray.dtype != np.uint8:
        gray = np.clip(gray, 0, 255).astype(np.uint8)
    return np.array(gray, copy=True)


class LKPoseTracker:
    """Frame-to-frame object pose tracker"""

    def __init__(self,
                 camera: Optional[CameraModel] = None,
                 model_points: Optional[np.ndarray] = None,
                 rng=None,
                 **config):
        self.config = LKTrackerConfig(**config)
        self.camera = None
        self.model_points = None
        self.solver = RansacPnPDepthSolver(
            rng=rng,
            inlier_pixel_threshold=self.config.INLIER_DISTANCE,
            confidence=self.config.CONFIDENCE,
            max_trials=self.config.MAX_RAND_TRIALS,
            sample_size=self.config.SAMPLE_SIZE,
            pnp_method=self.config.PNP_METHOD,
            refine=self.config.REFINE,
        )
        if camera is not None:
            self.set_camera_parameter(camera)
        if model_points is not None:
            self.set_model(model_points)

    def set_camera_parameter(self, camera_matrix, dist_coeffs: Optional[np.ndarray] = None):
        """Accepts a CameraModel or an intrinsic matrix with optional distortion"""
        self.camera = (camera_matrix if isinstance(camera_matrix, CameraModel)
                       else CameraModel(camera_matrix, dist_coeffs))
        self.solver.set_camera_parameter(self.camera)

    def set_model(self, points_3d: np.ndarray):
        """3D keypoints of the object (Nx3, object frame)"""
        pts = np.asarray(points_3d, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] != 3 or pts.shape[0] == 0:
            raise ValueError(f"Model points must be a non-empty Nx3 array, got {pts.shape}")
        self.model_points = pts

    def set_last_frame(self, state: TrackerState, image: np.ndarray, pose: np.ndarray):
        """Store the reference frame and pose for the next detect_incremental() call"""
        state.last_image = to_gray(image)
        state.last_pose = np.array(pose, dtype=np.float64)
        state.have_last = True

    def _check_ready(self, state: TrackerState):
        if self.model_points is None:
            raise ValueError("No model set, call set_model() first")
        if self.camera is None:
            raise ValueError("Camera parameters not set")
        if not state.have_last:
            raise ValueError("No reference frame, call set_last_frame() first")

    def get_projections(self, state: TrackerState) -> Tuple[np.ndarray, np.ndarray]:
        """
        Model points visible under the last pose.

        Returns:
            Tuple (model indices (K,), pixel coordinates (Kx2 float32))
        """
        self._check_ready(state)
        height, width = state.last_image.shape[:2]

        pts_cam = transform_points(state.last_pose, self.model_points)
        uv = self.camera.project(pts_cam)
        with np.errstate(invalid='ignore'):
            visible = (pts_cam[:, 2] > 0) & np.all(np.isfinite(uv), axis=1)
            visible &= (uv[:, 0] >= 0) & (uv[:, 1] >= 0) & (uv[:, 0] < width) & (uv[:, 1] < height)

        indices = np.flatnonzero(visible)
        return indices, uv[indices].astype(np.float32)

    def detect_incremental(self, state: TrackerState, image: np.ndarray) -> TrackingResult:
        """
        Track the object into a new frame.

        On success the state advances to the new frame and pose; on tracking
        loss it is left untouched and the caller decides how to reinitialize.

        Raises:
            ValueError: On invalid images or a tracker that is not set up
        """
        gray = to_gray(image)
        self._check_ready(state)

        if gray.shape != state.last_image.shape:
            raise ValueError(f"Image size changed from {state.last_image.shape} to {gray.shape}")

        indices, points0 = self.get_projections(state)
        if indices.size < self.config.SAMPLE_SIZE:
            logger.warning(f"Tracking lost: only {indices.size} model points project into the image")
            return TrackingResult(success=False)

        termcrit = (cv2.TERM_CRITERIA_COUNT | cv2.TERM_CRITERIA_EPS,
                    self.config.TERMINATION_MAX_ITER, self.config.TERMINATION_EPS)
        points1, status, error = cv2.calcOpticalFlowPyrLK(
            state.last_image, gray,
            points0.reshape(-1, 1, 2), None,
            winSize=tuple(self.config.WINDOW_SIZE),
            maxLevel=self.config.PYRAMID_LEVELS,
            criteria=termcrit,
        )

        status = status.ravel().astype(bool)
        error = error.ravel()
        keep = status & (error <= self.config.MAX_FLOW_ERROR)
        tracked = indices[keep]
        points1 = points1.reshape(-1, 2)[keep].astype(np.float64)

        if tracked.size < self.config.SAMPLE_SIZE:
            logger.warning(f"Tracking lost: {tracked.size} points survived optical flow")
            return TrackingResult(success=False, num_tracked=int(tracked.size))

        result = self.solver.ransac(self.model_points[tracked], points1)
        if not result:
            logger.warning(f"Tracking lost: insufficient RANSAC support on {tracked.size} tracked points")
            return TrackingResult(success=False, num_tracked=int(tracked.size),
                                  trials=result.metadata.get('trials', 0))

        inliers = tracked[result.inliers]
        confidence = inliers.size / float(self.model_points.shape[0])

        state.last_image = gray
        state.last_pose = result.model
        state.have_last = True

        logger.debug(f"Tracked {tracked.size} points, {inliers.size} inliers, confidence {confidence:.3f}")

        return TrackingResult(
            success=True,
            confidence=confidence,
            pose=result.model,
            inliers=inliers,
            num_tracked=int(tracked.size),
            trials=result.metadata['trials'],
        )
