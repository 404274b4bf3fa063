"""
Hypothesis-tree ICP with geometric consistency.

Aligns an organized input cloud to an organized target cloud while keeping
several candidate alignments alive at once:

1. Keypoints: colour edges of both clouds, thinned by uniform sampling on a
   voxel grid shared with the target (computed once).
2. Per iteration and alive node: nearest-neighbour correspondences between
   the node's transformed source keypoints and the target keypoints,
   geometric consistency clustering, RANSAC rejection per cluster and an SVD
   fit on the surviving correspondences. Each accepted cluster spawns a child
   whose accumulated transform is the fit composed with the parent's.
3. Children are scored by bidirectional free-space violation and overlap,
   scaled by normal consistency, sorted, deduplicated by the position of the
   input centroid and truncated to MAX_KEEP.

Usage:
    icp = FastIterativeClosestPointWithGC(camera, max_iterations=5)
    icp.set_input_cloud(model_view)
    icp.set_target_cloud(scene)
    results = icp.align(initial_guess)
    best_pose = icp.get_final_transformation()
"""

import time
import numpy as np
from dataclasses import dataclass, field
from scipy.spatial import cKDTree
from typing import List, Optional

from PoseTracking.core.config import BaseConfig
from PoseTracking.core.structures.camera import CameraModel
from PoseTracking.core.structures.point_cloud import OrganizedPointCloud
from PoseTracking.algorithms.geometry.transforms import (
    invert_transform,
    transform_points,
    transform_normals,
    estimate_rigid_transform_svd,
    is_finite_transform,
)
from PoseTracking.algorithms.registration.keypoints import (
    compute_color_edges,
    keypoints_with_mask,
    UniformSamplingSharedVoxelGrid,
)
from PoseTracking.algorithms.registration.correspondence import (
    determine_correspondences,
    geometric_consistency_grouping,
    ransac_rigid_rejection,
)
from PoseTracking.algorithms.registration.visibility import VisibilityReasoning
from PoseTracking.logger import get_logger

logger = get_logger("registration.fast_icp_gc")


class FastICPConfig(BaseConfig):
    """Configuration for hypothesis-tree ICP"""

    # Correspondences
    CORRESPONDENCE_DISTANCE_THRESHOLD = 0.02
    MIN_NUMBER_CORRESPONDENCES = 5
    USE_GEOMETRIC_CONSISTENCY = True
    GEOMETRIC_CONSISTENCY_SIZE = 0.01
    RANSAC_THRESHOLD = 0.01
    RANSAC_MAX_ITERATIONS = 10000

    # Tree
    MAX_ITERATIONS = 5
    MAX_KEEP = 7
    TRANSLATION_DEDUP_TOLERANCE = 0.02

    # Scoring
    OVERLAP_PERCENTAGE = 0.5
    FSV_CUTOFF = 0.02
    THRESHOLD_TSS = 0.01

    # Keypoints
    UNIFORM_SAMPLING_RADIUS = 0.01
    CANNY_LOW_THRESHOLD = 150.0
    CANNY_HIGH_THRESHOLD = 200.0
    DEPTH_DISCONTINUITY_THRESHOLD = 0.03


@dataclass
class ICPNode:
    """One candidate alignment in the hypothesis tree"""
    accum_transform: np.ndarray
    iteration: int = 0
    is_root: bool = False
    reg_error: float = 0.0
    overlap: int = 0
    fsv_fraction: float = 0.0
    src_keypoints: Optional[np.ndarray] = None
    src_normals: Optional[np.ndarray] = None


@dataclass
class AlignmentResult:
    """Ranked alignment returned by align()"""
    score: float
    transform: np.ndarray = field(repr=False)


class FastIterativeClosestPointWithGC:
    """
    Multi-hypothesis ICP between two organized clouds.

    Scores are only comparable within one align() call. A hypothesis without
    any overlap scores -1.
    """

    def __init__(self, camera: CameraModel, rng=None, **config):
        """
        Args:
            camera: Camera both organized clouds were captured with
            rng: Random generator or seed for the RANSAC rejection
            **config: Overrides for FastICPConfig
        """
        self.config = FastICPConfig(**config)
        self.camera = camera
        self.rng = np.random.default_rng(rng)

        self.input_cloud: Optional[OrganizedPointCloud] = None
        self.target_cloud: Optional[OrganizedPointCloud] = None
        self.input_indices: Optional[np.ndarray] = None
        self.target_indices: Optional[np.ndarray] = None
        self.initial_poses: List[np.ndarray] = []
        self.results: List[AlignmentResult] = []

    # ========================================================================
    # SETUP
    # ========================================================================

    def set_input_cloud(self, cloud: OrganizedPointCloud):
        self.input_cloud = cloud

    def set_target_cloud(self, cloud: OrganizedPointCloud):
        self.target_cloud = cloud

    def set_input_indices(self, indices: np.ndarray):
        """Region of interest in the input cloud (flat indices)"""
        self.input_indices = np.asarray(indices, dtype=np.int64).ravel()

    def set_target_indices(self, indices: np.ndarray):
        """Region of interest in the target cloud (flat indices)"""
        self.target_indices = np.asarray(indices, dtype=np.int64).ravel()

    def set_initial_poses(self, poses: List[np.ndarray]):
        """Seed several root hypotheses instead of a single initial guess"""
        self.initial_poses = [np.array(p, dtype=np.float64) for p in poses]

    # ========================================================================
    # KEYPOINTS
    # ========================================================================

    def _edge_indices(self, cloud: OrganizedPointCloud) -> np.ndarray:
        return compute_color_edges(
            cloud,
            canny_low=self.config.CANNY_LOW_THRESHOLD,
            canny_high=self.config.CANNY_HIGH_THRESHOLD,
            depth_discontinuity=self.config.DEPTH_DISCONTINUITY_THRESHOLD,
        )

    def compute_keypoints(self):
        """
        Source and target keypoint indices (flat) into the organized clouds.

        ROI masks are applied only when both input and target indices are set.
        """
        src_edges = self._edge_indices(self.input_cloud)
        tgt_edges = self._edge_indices(self.target_cloud)

        if self.input_indices is not None and self.target_indices is not None:
            logger.info(f"Filtering keypoints with ROI masks "
                        f"({self.input_indices.size} input, {self.target_indices.size} target indices)")
            src_edges = keypoints_with_mask(src_edges, self.input_indices)
            tgt_edges = keypoints_with_mask(tgt_edges, self.target_indices)

        sampler = UniformSamplingSharedVoxelGrid(self.config.UNIFORM_SAMPLING_RADIUS)
        tgt_idx = tgt_edges[sampler.compute(self.target_cloud.select(tgt_edges))]
        if tgt_idx.size == 0:
            logger.warning("Target cloud has no keypoints")
            return np.zeros(0, dtype=np.int64), tgt_idx

        min_b, max_b = sampler.get_voxel_grid_values()
        shared = UniformSamplingSharedVoxelGrid(self.config.UNIFORM_SAMPLING_RADIUS)
        shared.set_voxel_grid_values(min_b, max_b)
        src_idx = src_edges[shared.compute(self.input_cloud.select(src_edges))]

        return src_idx, tgt_idx

    # ========================================================================
    # HYPOTHESIS EXPANSION AND SCORING
    # ========================================================================

    def _expand(self, node: ICPNode, src_kp: np.ndarray, tgt_kp: np.ndarray,
                tgt_tree: cKDTree, iteration: int) -> List[ICPNode]:
        """Children of one alive node, one per accepted correspondence cluster"""
        src_local = transform_points(node.accum_transform, src_kp)

        corr, distances = determine_correspondences(
            src_local, tgt_tree, self.config.CORRESPONDENCE_DISTANCE_THRESHOLD)
        if corr.shape[0] == 0:
            return []

        if self.config.USE_GEOMETRIC_CONSISTENCY:
            clusters = geometric_consistency_grouping(
                src_local, tgt_kp, corr,
                gc_size=self.config.GEOMETRIC_CONSISTENCY_SIZE,
                gc_threshold=self.config.MIN_NUMBER_CORRESPONDENCES,
                distances=distances,
            )
        else:
            clusters = [corr]

        children = []
        for cluster in clusters:
            inlier_corr, _ = ransac_rigid_rejection(
                src_local, tgt_kp, cluster,
                threshold=self.config.RANSAC_THRESHOLD,
                max_iterations=self.config.RANSAC_MAX_ITERATIONS,
                rng=self.rng,
            )
            if inlier_corr.shape[0] < self.config.MIN_NUMBER_CORRESPONDENCES:
                continue

            T = estimate_rigid_transform_svd(src_local[inlier_corr[:, 0]], tgt_kp[inlier_corr[:, 1]])
            if T is None:
                continue

            accum = T @ node.accum_transform
            if not is_finite_transform(accum):
                continue
            children.append(ICPNode(accum_transform=accum, iteration=iteration + 1))

        return children

    def _score(self, node: ICPNode, src_kp: np.ndarray, src_normals: Optional[np.ndarray],
               tgt_kp: np.ndarray, tgt_normals: Optional[np.ndarray],
               vr: VisibilityReasoning):
        """Registration score of a child hypothesis (higher is better)"""
        accum = node.accum_transform
        accum_inv = invert_transform(accum)

        node.src_keypoints = transform_points(accum, src_kp)
        node.src_normals = transform_normals(accum, src_normals)

        fsv_ij, used_ij = vr.compute_fsv_with_count(self.target_cloud, node.src_keypoints)
        fsv_ji, used_ji = vr.compute_fsv_with_count(self.input_cloud, tgt_kp, accum_inv)

        node.overlap = max(used_ij, used_ji)
        max_points = min(src_kp.shape[0], tgt_kp.shape[0])

        if node.overlap > 0 and max_points > 0:
            node.fsv_fraction = max(fsv_ij, fsv_ji)
            max_ov = self.config.OVERLAP_PERCENTAGE * max_points
            ov = min(float(node.overlap), max_ov) / float(max_points)
            node.reg_error = (1.0 - max(node.fsv_fraction, self.config.FSV_CUTOFF)) * ov
        else:
            node.reg_error = -1.0
            return

        if self._has_normals():
            normal_ij = vr.normal_consistency(self.target_cloud, None, node.src_keypoints, node.src_normals)
            normal_ji = vr.normal_consistency(self.input_cloud, None, tgt_kp, tgt_normals, accum_inv)
            node.reg_error *= max(normal_ij, normal_ji)

    def _has_normals(self) -> bool:
        return self.input_cloud.has_normals and self.target_cloud.has_normals

    def filter_hypotheses_by_pose(self, node: ICPNode, kept: List[ICPNode],
                                  reference: np.ndarray) -> bool:
        """True if ``node`` moves ``reference`` within the dedup tolerance of a kept node"""
        position = transform_points(node.accum_transform, reference)[0]
        for other in kept:
            other_position = transform_points(other.accum_transform, reference)[0]
            if np.linalg.norm(position - other_position) < self.config.TRANSLATION_DEDUP_TOLERANCE:
                return True
        return False

    def select_survivors(self, nodes: List[ICPNode], reference: np.ndarray) -> List[ICPNode]:
        """Stable sort by descending score, drop near-duplicates, keep MAX_KEEP"""
        ranked = sorted(nodes, key=lambda n: n.reg_error, reverse=True)
        survivors = []
        for node in ranked:
            if not self.filter_hypotheses_by_pose(node, survivors, reference):
                survivors.append(node)
        return survivors[:self.config.MAX_KEEP]

    # ========================================================================
    # ALIGNMENT
    # ========================================================================

    def _validate(self):
        if self.input_cloud is None or self.target_cloud is None:
            raise ValueError("Input and target clouds must be set before align()")
        if self.camera is None:
            raise ValueError("Camera parameters not set")

    def align(self, initial_guess: Optional[np.ndarray] = None) -> List[AlignmentResult]:
        """
        Run the hypothesis tree.

        Args:
            initial_guess: Root pose used when no initial poses were set (default identity)

        Returns:
            Alignments of the last alive generation, best first
        """
        self._validate()
        start_time = time.time()

        if self.initial_poses:
            roots = [ICPNode(accum_transform=p.copy(), is_root=True) for p in self.initial_poses]
        else:
            guess = np.eye(4) if initial_guess is None else np.array(initial_guess, dtype=np.float64)
            roots = [ICPNode(accum_transform=guess, is_root=True)]

        alive = roots
        nr_iterations = 0

        if self.config.MAX_ITERATIONS > 0:
            src_idx, tgt_idx = self.compute_keypoints()
            src_kp = self.input_cloud.select(src_idx)
            tgt_kp = self.target_cloud.select(tgt_idx)
            src_normals = self.input_cloud.select_normals(src_idx)
            tgt_normals = self.target_cloud.select_normals(tgt_idx)

            logger.debug(f"Keypoints: {src_kp.shape[0]} source, {tgt_kp.shape[0]} target")

            tgt_tree = cKDTree(tgt_kp) if tgt_kp.shape[0] > 0 else None
            reference = self.input_cloud.centroid().reshape(1, 3)
            vr = VisibilityReasoning(self.camera, self.config.THRESHOLD_TSS)

            while nr_iterations < self.config.MAX_ITERATIONS and alive:
                children = []
                if tgt_tree is not None and src_kp.shape[0] > 0:
                    for node in alive:
                        children.extend(self._expand(node, src_kp, tgt_kp, tgt_tree, nr_iterations))

                for child in children:
                    self._score(child, src_kp, src_normals, tgt_kp, tgt_normals, vr)

                alive = self.select_survivors(children, reference)
                nr_iterations += 1

                logger.debug(f"Iteration {nr_iterations}: {len(children)} hypotheses, "
                             f"{len(alive)} survived")

        self.results = [AlignmentResult(n.reg_error, n.accum_transform) for n in alive]

        if not self.results:
            logger.warning(f"All hypotheses pruned after {nr_iterations} iterations")
        else:
            logger.info(f"ICP finished after {nr_iterations} iterations in {time.time() - start_time:.3f}s, "
                        f"{len(self.results)} hypotheses, best score {self.results[0].score:.4f}")

        return self.results

    def get_results(self) -> List[AlignmentResult]:
        return self.results

    def get_final_transformation(self) -> Optional[np.ndarray]:
        """Transform of the best hypothesis, None if align() produced none"""
        if not self.results:
            return None
        return self.results[0].transform
