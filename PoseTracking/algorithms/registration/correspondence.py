"""
3D-3D correspondence estimation and rejection.

Correspondences are (M, 2) integer arrays of [source_index, target_index]
pairs, accompanied by their Euclidean distances where relevant.

- determine_correspondences: nearest target neighbour of every source point
- geometric_consistency_grouping: clusters whose pairwise distances agree
  between source and target
- RigidTransformRansac / ransac_rigid_rejection: 3-point SVD consensus
"""

import numpy as np
from scipy.spatial import cKDTree
from typing import List, Optional, Tuple, Union

from PoseTracking.core.config import BaseConfig
from PoseTracking.core.interfaces.base_estimator import (
    RANSACEstimator,
    EstimationResult,
    EstimationStatus,
)
from PoseTracking.algorithms.geometry.transforms import (
    transform_points,
    estimate_rigid_transform_svd,
)
from PoseTracking.logger import get_logger

logger = get_logger("registration.correspondence")


def determine_correspondences(source: np.ndarray,
                              target: Union[np.ndarray, cKDTree],
                              max_distance: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Nearest-neighbour correspondences from source to target.

    Args:
        source: Source points (Nx3)
        target: Target points (Mx3) or a prebuilt cKDTree over them
        max_distance: Pairs farther apart than this are dropped

    Returns:
        Tuple (correspondences (Kx2 int), distances (K,))
    """
    tree = target if isinstance(target, cKDTree) else cKDTree(np.asarray(target, dtype=np.float64))
    src = np.asarray(source, dtype=np.float64).reshape(-1, 3)

    finite = np.flatnonzero(np.all(np.isfinite(src), axis=1))
    if finite.size == 0 or tree.n == 0:
        return np.zeros((0, 2), dtype=np.int64), np.zeros(0)

    # cKDTree's bound is exclusive, pairs at exactly max_distance are kept
    bound = np.nextafter(max_distance, np.inf)
    distances, matches = tree.query(src[finite], k=1, distance_upper_bound=bound)

    found = np.isfinite(distances)
    corr = np.column_stack([finite[found], matches[found]]).astype(np.int64)
    return corr, distances[found]


def geometric_consistency_grouping(source: np.ndarray,
                                   target: np.ndarray,
                                   correspondences: np.ndarray,
                                   gc_size: float,
                                   gc_threshold: int,
                                   distances: Optional[np.ndarray] = None) -> List[np.ndarray]:
    """
    Group correspondences that are mutually consistent with a rigid motion.

    Two correspondences are consistent when the distance between their source
    points and the distance between their target points differ by less than
    ``gc_size``. Seeds are visited in order of increasing correspondence
    distance; every seed greedily collects the unassigned correspondences
    consistent with all members so far. A cluster is accepted, and its members
    assigned, when it has more than ``gc_threshold`` members.

    Args:
        source: Source points (Nx3)
        target: Target points (Mx3)
        correspondences: (K, 2) pairs [source_index, target_index]
        gc_size: Consensus set resolution (meters)
        gc_threshold: Minimum cluster size (exclusive)
        distances: Optional correspondence distances used to order the seeds

    Returns:
        List of (k_i, 2) correspondence arrays
    """
    corr = np.asarray(correspondences, dtype=np.int64).reshape(-1, 2)
    if corr.shape[0] == 0:
        return []

    src = np.asarray(source, dtype=np.float64)[corr[:, 0]]
    tgt = np.asarray(target, dtype=np.float64)[corr[:, 1]]

    if distances is None:
        distances = np.linalg.norm(src - tgt, axis=1)
    order = np.argsort(distances, kind='stable')

    def consistent_with(i):
        d_src = np.linalg.norm(src - src[i], axis=1)
        d_tgt = np.linalg.norm(tgt - tgt[i], axis=1)
        return np.abs(d_src - d_tgt) < gc_size

    taken = np.zeros(corr.shape[0], dtype=bool)
    clusters = []

    for seed in order:
        if taken[seed]:
            continue

        members = [seed]
        allowed = consistent_with(seed) & ~taken
        allowed[seed] = False

        for j in order:
            if allowed[j]:
                members.append(j)
                allowed &= consistent_with(j)
                allowed[j] = False

        if len(members) > gc_threshold:
            taken[members] = True
            clusters.append(corr[np.array(members)])

    return clusters


class RigidRansacConfig(BaseConfig):
    """Configuration for 3-point rigid RANSAC"""

    INLIER_THRESHOLD = 0.01   # meters
    CONFIDENCE = 0.99
    MAX_TRIALS = 10000
    SAMPLE_SIZE = 3

    # Minimum triangle area (m^2) of a sample
    MIN_SAMPLE_AREA = 1e-8


class RigidTransformRansac(RANSACEstimator):
    """
    Rigid transform consensus over 3D-3D correspondences.

    Usage:
        rej = RigidTransformRansac(inlier_threshold=0.01, max_trials=1000)
        result = rej.estimate(source, target, correspondences, rng=0)
        inlier_corr = correspondences[result.inliers]
    """

    config_class = RigidRansacConfig

    def __init__(self, rng=None, **config):
        super().__init__(**config)
        self.rng = np.random.default_rng(rng)

    def validate_input(self, source: np.ndarray, target: np.ndarray,
                       correspondences: np.ndarray) -> Tuple[bool, str]:
        if correspondences.ndim != 2 or correspondences.shape[1] != 2:
            return False, f"Correspondences must be Kx2, got {correspondences.shape}"
        if correspondences.shape[0] < self.config.SAMPLE_SIZE:
            return False, (f"Need at least {self.config.SAMPLE_SIZE} correspondences, "
                           f"got {correspondences.shape[0]}")
        return True, ""

    def _is_good_sample(self, points: np.ndarray) -> bool:
        area = 0.5 * np.linalg.norm(np.cross(points[1] - points[0], points[2] - points[0]))
        return bool(area > self.config.MIN_SAMPLE_AREA)

    def estimate(self, source: np.ndarray, target: np.ndarray,
                 correspondences: np.ndarray, rng=None) -> EstimationResult:
        """
        Find the rigid transform (source -> target) with the largest support.

        Returns:
            EstimationResult whose inliers index rows of ``correspondences``
        """
        corr = np.asarray(correspondences, dtype=np.int64).reshape(-1, 2)
        is_valid, error_msg = self.validate_input(source, target, corr)
        if not is_valid:
            return EstimationResult(
                success=False,
                status=EstimationStatus.INSUFFICIENT_POINTS,
                inliers=np.zeros(0, dtype=np.int64),
                num_points=corr.shape[0],
                metadata={'error': error_msg}
            )

        src = np.asarray(source, dtype=np.float64)[corr[:, 0]]
        tgt = np.asarray(target, dtype=np.float64)[corr[:, 1]]
        generator = self.rng if rng is None else np.random.default_rng(rng)

        num = corr.shape[0]
        sqr_threshold = self.config.INLIER_THRESHOLD ** 2
        best_mask = None
        best_transform = None
        best_count = 0
        ratio = 0.0
        k = 0

        while self.should_continue(k, ratio):
            k += 1
            idx = generator.choice(num, size=self.config.SAMPLE_SIZE, replace=False)
            if not self._is_good_sample(src[idx]):
                continue

            T = estimate_rigid_transform_svd(src[idx], tgt[idx])
            if T is None:
                continue

            sqr_dist = np.sum((transform_points(T, src) - tgt) ** 2, axis=1)
            mask = sqr_dist < sqr_threshold
            count = int(np.count_nonzero(mask))
            if count > best_count:
                best_count = count
                best_mask = mask
                best_transform = T
                ratio = count / float(num)

        if best_transform is None:
            return EstimationResult(
                success=False,
                status=EstimationStatus.DEGENERATE_CONFIG,
                inliers=np.zeros(0, dtype=np.int64),
                num_points=num,
                metadata={'trials': k}
            )

        return EstimationResult(
            success=True,
            status=EstimationStatus.SUCCESS,
            model=best_transform,
            inliers=np.flatnonzero(best_mask),
            num_inliers=best_count,
            num_points=num,
            confidence=ratio,
            metadata={'trials': k}
        )


def ransac_rigid_rejection(source: np.ndarray,
                           target: np.ndarray,
                           correspondences: np.ndarray,
                           threshold: float,
                           max_iterations: int,
                           rng=None) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Reject correspondences inconsistent with the dominant rigid motion.

    Returns:
        Tuple (inlier correspondences (Kx2), best transform or None)
    """
    rej = RigidTransformRansac(inlier_threshold=threshold, max_trials=max_iterations)
    result = rej.estimate(source, target, correspondences, rng=rng)
    corr = np.asarray(correspondences, dtype=np.int64).reshape(-1, 2)
    if not result:
        return np.zeros((0, 2), dtype=np.int64), None
    return corr[result.inliers], result.model
