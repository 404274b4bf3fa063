"""
RANSAC PnP with depth

Robust object pose estimation from 3D model points and their 2D image
observations, optionally with measured depth:

1. Depths are turned into inverse depths (NaN where unknown).
2. Minimal samples are drawn uniformly without replacement and fitted with a
   direct PnP solver (or a rigid SVD fit for 3D-3D samples in the two-pool
   variant).
3. Hypotheses are scored by counting correspondences that reproject within
   INLIER_PIXEL_THRESHOLD and whose inverse depth agrees within
   INLIER_DEPTH_THRESHOLD.
4. The trial budget adapts to the best inlier ratio seen so far.
5. The best pose is refined on its inliers (PoseRefiner) and the inlier set
   recomputed.

Usage:
    camera = CameraModel.from_intrinsics(525, 525, 320, 240)
    solver = RansacPnPDepthSolver(camera, inlier_pixel_threshold=2.0)
    result = solver.ransac(points_3d, points_2d, depth, rng=0)
    if result:
        pose, inliers = result.model, result.inliers
"""

import numpy as np
import cv2
from typing import Optional, Tuple, Union

from PoseTracking.core.config import BaseConfig
from PoseTracking.core.interfaces.base_estimator import (
    RANSACEstimator,
    EstimationResult,
    EstimationStatus,
    RANSAC_EXHAUSTED,
)
from PoseTracking.core.structures.camera import CameraModel
from PoseTracking.algorithms.geometry.transforms import (
    rvec_to_transform,
    transform_points,
    is_finite_transform,
    estimate_rigid_transform_svd,
)
from PoseTracking.algorithms.optimization.refinement.pose_refiner import PoseRefiner
from PoseTracking.logger import get_logger

logger = get_logger("pose.ransac_pnp_depth")


PNP_METHODS = {
    'P3P': cv2.SOLVEPNP_P3P,
    'AP3P': cv2.SOLVEPNP_AP3P,
    'EPNP': cv2.SOLVEPNP_EPNP,
    'ITERATIVE': cv2.SOLVEPNP_ITERATIVE,
    'SQPNP': cv2.SOLVEPNP_SQPNP,
}

# Minimal solvers that only accept exactly four points
FOUR_POINT_METHODS = ('P3P', 'AP3P')

MIN_SUPPORT = 4


class RansacPnPDepthConfig(BaseConfig):
    """Configuration for RANSAC PnP with depth"""

    # Inlier thresholds
    INLIER_PIXEL_THRESHOLD = 2.0    # pixels
    INLIER_DEPTH_THRESHOLD = 0.01   # inverse depth (1/m)

    # Sampling
    CONFIDENCE = 0.99
    MAX_TRIALS = 5000
    SAMPLE_SIZE = 4
    PNP_METHOD = 'P3P'

    # Refinement
    REFINE = True
    DEPTH_ERROR_SCALE = 100.0
    USE_ROBUST_LOSS = False
    LOSS_SCALE = 1.0

    # Relative size below which a sample's 3D points count as collinear
    DEGENERACY_TOLERANCE = 1e-6


RngLike = Union[None, int, np.random.Generator]


class RansacPnPDepthSolver(RANSACEstimator):
    """
    Hypothesise-and-verify pose solver for 2D-3D correspondences with optional depth.

    Failure is reported through the result, never by exception: when fewer
    than four correspondences support the best hypothesis the result has
    status INSUFFICIENT_SUPPORT and metadata['trials'] == RANSAC_EXHAUSTED.
    Structural input errors (no camera, too few or mismatched points) raise
    ValueError.
    """

    config_class = RansacPnPDepthConfig

    def __init__(self,
                 camera: Optional[CameraModel] = None,
                 rng: RngLike = None,
                 **config):
        """
        Args:
            camera: Camera model used for projection
            rng: Default random generator or seed, used when a call passes none
            **config: Overrides for RansacPnPDepthConfig
        """
        super().__init__(**config)
        self.camera = camera
        self.rng = np.random.default_rng(rng)
        self._sync_refiner()

    def _sync_refiner(self):
        self.refiner = PoseRefiner(
            depth_error_scale=self.config.DEPTH_ERROR_SCALE,
            use_robust_loss=self.config.USE_ROBUST_LOSS,
            loss_scale=self.config.LOSS_SCALE,
        )

    def configure(self, **config):
        super().configure(**config)
        if hasattr(self, 'refiner'):
            self._sync_refiner()

    def set_camera_parameter(self,
                             camera_matrix: Union[np.ndarray, CameraModel],
                             dist_coeffs: Optional[np.ndarray] = None):
        """
        Set the camera used for projection.

        Raises:
            ValueError: If the intrinsics are malformed
        """
        if isinstance(camera_matrix, CameraModel):
            self.camera = camera_matrix
        else:
            self.camera = CameraModel(camera_matrix, dist_coeffs)

    # ========================================================================
    # VALIDATION
    # ========================================================================

    def validate_input(self, points_3d: np.ndarray, points_2d: np.ndarray,
                       depth: Optional[np.ndarray] = None) -> Tuple[bool, str]:
        """Check shapes and sizes of the correspondence set"""
        if self.camera is None:
            return False, "Camera parameters not set"
        if points_3d.ndim != 2 or points_3d.shape[1] != 3:
            return False, f"points_3d must be Nx3, got {points_3d.shape}"
        if points_2d.ndim != 2 or points_2d.shape[1] != 2:
            return False, f"points_2d must be Nx2, got {points_2d.shape}"
        if points_3d.shape[0] != points_2d.shape[0]:
            return False, (f"Mismatch between 3D ({points_3d.shape[0]}) and "
                           f"2D ({points_2d.shape[0]}) points")
        if depth is not None and depth.shape[0] != points_3d.shape[0]:
            return False, f"Depth has {depth.shape[0]} entries, expected {points_3d.shape[0]}"
        min_points = max(self.get_min_points(), MIN_SUPPORT)
        if points_3d.shape[0] < min_points:
            return False, f"Need at least {min_points} correspondences, got {points_3d.shape[0]}"
        return True, ""

    # ========================================================================
    # HYPOTHESIS GENERATION AND SCORING
    # ========================================================================

    @staticmethod
    def to_inverse_depth(depth: Optional[np.ndarray], size: int) -> np.ndarray:
        """Inverse depth per point, NaN where depth is missing or not positive"""
        inv_depth = np.full(size, np.nan)
        if depth is None:
            return inv_depth
        d = np.asarray(depth, dtype=np.float64).ravel()
        valid = np.isfinite(d) & (d > np.finfo(np.float32).eps)
        inv_depth[valid] = 1.0 / d[valid]
        return inv_depth

    def _pnp_flag(self) -> int:
        method = str(self.config.PNP_METHOD).upper()
        if method not in PNP_METHODS:
            raise ValueError(f"Invalid PnP method: {self.config.PNP_METHOD}. "
                             f"Valid methods: {list(PNP_METHODS)}")
        if method in FOUR_POINT_METHODS and self.config.SAMPLE_SIZE != 4:
            return cv2.SOLVEPNP_EPNP
        return PNP_METHODS[method]

    def _is_degenerate_sample(self, points: np.ndarray) -> bool:
        """Coincident or collinear model points cannot determine a pose"""
        centered = points - points.mean(axis=0)
        singular_values = np.linalg.svd(centered, compute_uv=False)
        if singular_values[0] <= np.finfo(np.float64).eps:
            return True
        return singular_values[1] < self.config.DEGENERACY_TOLERANCE * singular_values[0]

    def estimate_pnp(self, points_3d: np.ndarray, points_2d: np.ndarray,
                     flag: int) -> Optional[np.ndarray]:
        """
        Fit a pose to a minimal 2D-3D sample.

        Returns:
            4x4 pose, or None for degenerate samples / solver failure
        """
        if self._is_degenerate_sample(points_3d):
            return None
        try:
            ok, rvec, tvec = cv2.solvePnP(
                points_3d.reshape(-1, 1, 3),
                points_2d.reshape(-1, 1, 2),
                np.array(self.camera.camera_matrix),
                self.camera.cv_dist_coeffs(),
                flags=flag
            )
        except cv2.error as e:
            logger.debug(f"solvePnP failed on sample: {e}")
            return None
        if not ok or rvec is None or tvec is None:
            return None
        pose = rvec_to_transform(rvec, tvec)
        return pose if is_finite_transform(pose) else None

    def estimate_rigid(self, points_3d: np.ndarray, points_3d_observed: np.ndarray) -> Optional[np.ndarray]:
        """Fit a pose to a minimal 3D-3D sample"""
        if self._is_degenerate_sample(points_3d):
            return None
        return estimate_rigid_transform_svd(points_3d, points_3d_observed)

    def inlier_mask(self, pose: np.ndarray, points_3d: np.ndarray,
                    points_2d: np.ndarray, inv_depth: np.ndarray) -> np.ndarray:
        """
        Correspondences consistent with a pose.

        A correspondence is an inlier when the point lies in front of the
        camera, its squared reprojection distance is below the squared pixel
        threshold, and either its inverse depth is unknown or
        ``inv_depth - 1/z < INLIER_DEPTH_THRESHOLD``.
        """
        pts_cam = transform_points(pose, points_3d)
        z = pts_cam[:, 2]
        uv = self.camera.project(pts_cam)

        with np.errstate(invalid='ignore', divide='ignore'):
            sqr_dist = np.sum((uv - points_2d) ** 2, axis=1)
            mask = (z > 0) & np.isfinite(sqr_dist)
            mask &= sqr_dist < self.config.INLIER_PIXEL_THRESHOLD ** 2
            depth_ok = np.isnan(inv_depth) | (inv_depth - 1.0 / z < self.config.INLIER_DEPTH_THRESHOLD)
        return mask & depth_ok

    def count_inliers(self, pose: np.ndarray, points_3d: np.ndarray,
                      points_2d: np.ndarray, inv_depth: np.ndarray) -> int:
        return int(np.count_nonzero(self.inlier_mask(pose, points_3d, points_2d, inv_depth)))

    def reprojection_errors(self, pose: np.ndarray, points_3d: np.ndarray,
                            points_2d: np.ndarray) -> np.ndarray:
        """Per-point reprojection distance in pixels"""
        uv = self.camera.project(transform_points(pose, points_3d))
        return np.linalg.norm(uv - points_2d, axis=1)

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def estimate(self, points_3d: np.ndarray, points_2d: np.ndarray,
                 depth: Optional[np.ndarray] = None, rng: RngLike = None) -> EstimationResult:
        """Alias of ransac() to satisfy the estimator interface"""
        return self.ransac(points_3d, points_2d, depth, rng=rng)

    def ransac(self,
               points_3d: np.ndarray,
               points_2d: np.ndarray,
               depth: Optional[np.ndarray] = None,
               rng: RngLike = None) -> EstimationResult:
        """
        Estimate the model-to-camera pose from 2D-3D correspondences.

        Args:
            points_3d: Model points (Nx3)
            points_2d: Observed image points (Nx2)
            depth: Optional measured depth per observation (N,), NaN if unknown
            rng: Random generator or seed for this call

        Returns:
            EstimationResult with model (4x4 pose), inliers (indices) and
            metadata['trials'] (RANSAC_EXHAUSTED on failure)

        Raises:
            ValueError: On structural input errors
        """
        pts3, pts2 = self._as_arrays(points_3d, points_2d)
        depth_arr = None if depth is None else np.asarray(depth, dtype=np.float64).ravel()

        is_valid, error_msg = self.validate_input(pts3, pts2, depth_arr)
        if not is_valid:
            raise ValueError(error_msg)

        inv_depth = self.to_inverse_depth(depth_arr, pts3.shape[0])
        generator = self.rng if rng is None else np.random.default_rng(rng)
        flag = self._pnp_flag()

        def hypothesis(_trial):
            idx = generator.choice(pts3.shape[0], size=self.config.SAMPLE_SIZE, replace=False)
            return self.estimate_pnp(pts3[idx], pts2[idx], flag)

        return self._run(hypothesis, pts3, pts2, inv_depth)

    def ransac_with_points3d(self,
                             points_3d: np.ndarray,
                             points_2d: np.ndarray,
                             points_3d_observed: np.ndarray,
                             rng: RngLike = None) -> EstimationResult:
        """
        Two-pool variant for observations that carry a 3D measurement.

        Each trial first picks a pool with probabilities proportional to
        (N - N3d, N3d): pool 0 samples any correspondences and fits with PnP,
        pool 1 samples only correspondences whose observed 3D point is finite
        and fits a rigid transform by SVD. Scoring and refinement are shared
        with ransac(); the inverse depth is taken from the observed z.

        Args:
            points_3d: Model points (Nx3)
            points_2d: Observed image points (Nx2)
            points_3d_observed: Observed 3D points in the camera frame (Nx3), NaN if unknown
            rng: Random generator or seed for this call

        Returns:
            EstimationResult as for ransac(), with metadata['pool_trials']
        """
        pts3, pts2 = self._as_arrays(points_3d, points_2d)
        obs3 = np.asarray(points_3d_observed, dtype=np.float64).reshape(-1, 3)

        is_valid, error_msg = self.validate_input(pts3, pts2)
        if not is_valid:
            raise ValueError(error_msg)
        if obs3.shape[0] != pts3.shape[0]:
            raise ValueError(f"points_3d_observed has {obs3.shape[0]} entries, expected {pts3.shape[0]}")

        inv_depth = self.to_inverse_depth(obs3[:, 2], pts3.shape[0])
        generator = self.rng if rng is None else np.random.default_rng(rng)
        flag = self._pnp_flag()

        ind3d = np.flatnonzero(np.all(np.isfinite(obs3), axis=1))
        if ind3d.size < max(self.config.SAMPLE_SIZE, MIN_SUPPORT):
            ind3d = np.zeros(0, dtype=np.int64)

        weights = np.array([pts3.shape[0] - ind3d.size, ind3d.size], dtype=np.float64)
        weights /= weights.sum()
        pool_trials = [0, 0]

        def hypothesis(_trial):
            pool = int(generator.choice(2, p=weights))
            pool_trials[pool] += 1
            if pool == 0:
                idx = generator.choice(pts3.shape[0], size=self.config.SAMPLE_SIZE, replace=False)
                return self.estimate_pnp(pts3[idx], pts2[idx], flag)
            idx = ind3d[generator.choice(ind3d.size, size=self.config.SAMPLE_SIZE, replace=False)]
            return self.estimate_rigid(pts3[idx], obs3[idx])

        result = self._run(hypothesis, pts3, pts2, inv_depth)
        result.metadata['pool_trials'] = tuple(pool_trials)
        result.metadata['num_points_3d'] = int(ind3d.size)
        return result

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @staticmethod
    def _as_arrays(points_3d, points_2d) -> Tuple[np.ndarray, np.ndarray]:
        pts3 = np.asarray(points_3d, dtype=np.float64)
        pts2 = np.asarray(points_2d, dtype=np.float64)
        if pts3.ndim == 3:
            pts3 = pts3.reshape(-1, 3)
        if pts2.ndim == 3:
            pts2 = pts2.reshape(-1, 2)
        return pts3, pts2

    def _run(self, hypothesis, pts3: np.ndarray, pts2: np.ndarray,
             inv_depth: np.ndarray) -> EstimationResult:
        """Shared trial loop, support check and refinement"""
        num_points = pts3.shape[0]
        best_pose = None
        best_support = 0
        eps = self.config.SAMPLE_SIZE / float(num_points)
        k = 0

        while self.should_continue(k, eps):
            pose = hypothesis(k)
            k += 1
            if pose is None:
                continue

            support = self.count_inliers(pose, pts3, pts2, inv_depth)
            if support > best_support:
                best_support = support
                best_pose = pose
                eps = best_support / float(num_points)
                logger.debug(f"trial {k}: new best support {best_support}/{num_points}")

        if best_pose is None or best_support < MIN_SUPPORT:
            logger.debug(f"Insufficient support after {k} trials (best {best_support})")
            return EstimationResult(
                success=False,
                status=EstimationStatus.INSUFFICIENT_SUPPORT,
                inliers=np.zeros(0, dtype=np.int64),
                num_points=num_points,
                metadata={'trials': RANSAC_EXHAUSTED, 'trials_run': k, 'best_support': best_support}
            )

        pose = best_pose
        mask = self.inlier_mask(pose, pts3, pts2, inv_depth)
        refinement_status = None

        if self.config.REFINE:
            refined = self.refiner.refine(pose, pts3, pts2, self.camera, inv_depth,
                                          inliers=np.flatnonzero(mask))
            refinement_status = refined.status.value
            if refined.success:
                pose = refined.optimized_params['pose']
                mask = self.inlier_mask(pose, pts3, pts2, inv_depth)

        inliers = np.flatnonzero(mask)
        residuals = self.reprojection_errors(pose, pts3[inliers], pts2[inliers])

        logger.debug(f"RANSAC PnP: {inliers.size}/{num_points} inliers after {k} trials")

        return EstimationResult(
            success=True,
            status=EstimationStatus.SUCCESS,
            model=pose,
            inliers=inliers,
            num_inliers=int(inliers.size),
            num_points=num_points,
            residuals=residuals,
            confidence=inliers.size / float(num_points),
            metadata={
                'trials': k,
                'best_support': best_support,
                'refinement': refinement_status,
                'algorithm': self.get_algorithm_name(),
            }
        )
