"""
Iterative Pose Refinement

Refines a 6-DoF object pose after RANSAC by non-linear least squares on the
inlier set:
- reprojection residuals (2 per point)
- an optional inverse-depth residual per point with known depth, scaled by
  DEPTH_ERROR_SCALE
- optional Cauchy loss to down-weight remaining outliers

3D model points and camera intrinsics are held fixed; only the pose
(axis-angle + translation) is optimized.
"""

import time
import numpy as np
import cv2
from typing import Optional, Tuple
from scipy.optimize import least_squares

from PoseTracking.core.config import BaseConfig
from PoseTracking.core.interfaces.base_optimizer import BaseOptimizer, OptimizationResult, OptimizationStatus
from PoseTracking.core.structures.camera import CameraModel
from PoseTracking.algorithms.geometry.transforms import (
    rvec_to_transform,
    transform_to_rvec_tvec,
    is_finite_transform,
)
from PoseTracking.logger import get_logger

logger = get_logger("optimization.pose_refiner")


class PoseRefinerConfig(BaseConfig):
    """Configuration for pose refinement"""

    # Optimization parameters
    MAX_ITERATIONS = 100
    FUNCTION_TOLERANCE = 1e-8
    PARAMETER_TOLERANCE = 1e-8

    # Weight of the inverse-depth residual relative to pixel residuals
    DEPTH_ERROR_SCALE = 100.0

    # Robust loss
    USE_ROBUST_LOSS = False
    LOSS_SCALE = 2.0

    # Declared converged below this RMS reduction (pixels)
    MIN_COST_REDUCTION = 1e-4


class PoseRefiner(BaseOptimizer):
    """
    Levenberg-Marquardt refinement of a single object pose.

    Usage:
        refiner = PoseRefiner(use_robust_loss=True, loss_scale=1.5)
        result = refiner.refine(pose, points_3d, points_2d, camera, inv_depth, inliers)
        if result:
            pose = result.optimized_params['pose']
    """

    config_class = PoseRefinerConfig

    def validate_input(self, pose: np.ndarray, points_3d: np.ndarray,
                       points_2d: np.ndarray, **kwargs) -> Tuple[bool, str]:
        """Validate input for pose refinement"""
        if pose.shape != (4, 4):
            return False, f"Invalid pose shape: {pose.shape}"
        if not is_finite_transform(pose):
            return False, "Initial pose contains non-finite values"
        if points_3d.shape[0] != points_2d.shape[0]:
            return False, "Mismatch between 3D and 2D points"
        if points_3d.shape[0] < 3:
            return False, f"Need at least 3 points, got {points_3d.shape[0]}"
        return True, ""

    def compute_residuals(self, params: np.ndarray, points_3d: np.ndarray,
                          points_2d: np.ndarray, camera: CameraModel,
                          inv_depth: np.ndarray) -> np.ndarray:
        """
        Residual vector for the parameter vector [rvec, tvec].

        Layout: all 2D reprojection residuals first (2N), followed by one
        scaled inverse-depth residual for every point whose inverse depth is
        finite.
        """
        rvec = params[:3]
        tvec = params[3:6]

        projected, _ = cv2.projectPoints(
            points_3d.reshape(-1, 1, 3), rvec, tvec,
            np.array(camera.camera_matrix), camera.cv_dist_coeffs()
        )
        reproj = (projected.reshape(-1, 2) - points_2d).ravel()

        has_depth = np.isfinite(inv_depth)
        if not np.any(has_depth):
            return reproj

        R, _ = cv2.Rodrigues(rvec)
        z = points_3d[has_depth] @ R[2] + tvec[2]
        with np.errstate(divide='ignore'):
            depth_res = self.config.DEPTH_ERROR_SCALE * (inv_depth[has_depth] - 1.0 / z)
        return np.concatenate([reproj, depth_res])

    def refine(self,
               pose: np.ndarray,
               points_3d: np.ndarray,
               points_2d: np.ndarray,
               camera: CameraModel,
               inv_depth: Optional[np.ndarray] = None,
               inliers: Optional[np.ndarray] = None) -> OptimizationResult:
        """
        Refine a pose over a (sub)set of correspondences.

        Args:
            pose: Initial 4x4 pose (model -> camera)
            points_3d: Model points (Nx3)
            points_2d: Observed image points (Nx2)
            camera: Camera model (held fixed)
            inv_depth: Optional per-point inverse depth (N,), NaN where unknown
            inliers: Optional indices restricting the residuals to these points

        Returns:
            OptimizationResult with optimized_params {'pose', 'rvec', 'tvec'}.
            On failure the initial pose is returned in optimized_params.
        """
        start_time = time.time()

        pts3 = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
        pts2 = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
        if inv_depth is None:
            inv = np.full(pts3.shape[0], np.nan)
        else:
            inv = np.asarray(inv_depth, dtype=np.float64).ravel()

        if inliers is not None:
            idx = np.asarray(inliers, dtype=np.int64)
            pts3, pts2, inv = pts3[idx], pts2[idx], inv[idx]

        fallback = {'pose': np.array(pose, dtype=np.float64)}

        is_valid, error_msg = self.validate_input(np.asarray(pose), pts3, pts2)
        if not is_valid:
            logger.debug(f"Pose refinement skipped: {error_msg}")
            return OptimizationResult(
                success=False,
                status=OptimizationStatus.INVALID_INPUT,
                optimized_params=fallback,
                metadata={'error': error_msg}
            )

        rvec, tvec = transform_to_rvec_tvec(pose)
        params = np.concatenate([rvec, tvec])
        args = (pts3, pts2, camera, inv)

        initial_residuals = self.compute_residuals(params, *args)
        initial_cost = float(np.sqrt(np.mean(initial_residuals ** 2)))

        # LM needs at least as many residuals as parameters
        use_lm = not self.config.USE_ROBUST_LOSS and initial_residuals.size >= params.size

        try:
            if use_lm:
                result = least_squares(
                    fun=self.compute_residuals,
                    x0=params,
                    args=args,
                    method='lm',
                    max_nfev=self.config.MAX_ITERATIONS * len(params),
                    ftol=self.config.FUNCTION_TOLERANCE,
                    xtol=self.config.PARAMETER_TOLERANCE,
                )
            else:
                result = least_squares(
                    fun=self.compute_residuals,
                    x0=params,
                    args=args,
                    method='trf',
                    loss='cauchy' if self.config.USE_ROBUST_LOSS else 'linear',
                    f_scale=self.config.LOSS_SCALE,
                    max_nfev=self.config.MAX_ITERATIONS * len(params),
                    ftol=self.config.FUNCTION_TOLERANCE,
                    xtol=self.config.PARAMETER_TOLERANCE,
                )
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.debug(f"Pose refinement failed: {e}")
            return OptimizationResult(
                success=False,
                status=OptimizationStatus.NUMERICAL_ERROR,
                optimized_params=fallback,
                initial_cost=initial_cost,
                runtime=time.time() - start_time,
                metadata={'error': str(e)}
            )

        refined = rvec_to_transform(result.x[:3], result.x[3:6])
        final_residuals = self.compute_residuals(result.x, *args)
        final_cost = float(np.sqrt(np.mean(final_residuals ** 2)))

        if not is_finite_transform(refined) or not np.isfinite(final_cost):
            logger.debug("Pose refinement produced a non-finite pose, keeping the initial one")
            return OptimizationResult(
                success=False,
                status=OptimizationStatus.NUMERICAL_ERROR,
                optimized_params=fallback,
                initial_cost=initial_cost,
                num_iterations=result.nfev,
                runtime=time.time() - start_time,
                metadata={'error': 'non-finite result'}
            )

        cost_reduction = initial_cost - final_cost
        status = (OptimizationStatus.CONVERGED
                  if cost_reduction < self.config.MIN_COST_REDUCTION
                  else OptimizationStatus.SUCCESS)

        logger.debug(f"Pose refined on {pts3.shape[0]} points: "
                     f"{initial_cost:.4f} -> {final_cost:.4f} ({result.nfev} evaluations)")

        return OptimizationResult(
            success=True,
            status=status,
            optimized_params={
                'pose': refined,
                'rvec': result.x[:3].copy(),
                'tvec': result.x[3:6].copy(),
            },
            initial_cost=initial_cost,
            final_cost=final_cost,
            num_iterations=result.nfev,
            residuals=final_residuals,
            runtime=time.time() - start_time,
            metadata={
                'algorithm': self.get_algorithm_name(),
                'num_points': int(pts3.shape[0]),
                'num_depth_residuals': int(np.count_nonzero(np.isfinite(inv))),
                'robust_loss': bool(self.config.USE_ROBUST_LOSS),
                'cost_reduction': cost_reduction,
            }
        )
