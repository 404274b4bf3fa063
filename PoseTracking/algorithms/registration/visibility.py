"""
Visibility reasoning between organized clouds.

Scores a candidate alignment by projecting one point set into the depth map
of an organized cloud:

- free-space violation (FSV): the point lies clearly in front of the surface
  observed at its pixel, i.e. it occupies space the camera saw as empty
- normal consistency: agreement of surface normals at the overlapping pixels

Image bounds come from the organized cloud, so the camera does not need an
image size.
"""

import numpy as np
from typing import Optional, Tuple

from PoseTracking.core.structures.camera import CameraModel
from PoseTracking.core.structures.point_cloud import OrganizedPointCloud
from PoseTracking.algorithms.geometry.transforms import transform_points, transform_normals


class VisibilityReasoning:
    """
    Free-space violation scoring against an organized target.

    Attributes:
        camera: Camera the organized clouds were captured with
        threshold_tss: Depth margin (meters) before a point counts as floating
        fsv_used_points: Points with valid overlap in the last compute_fsv call
    """

    def __init__(self, camera: CameraModel, threshold_tss: float = 0.01):
        self.camera = camera
        self.threshold_tss = threshold_tss
        self.fsv_used_points = 0

    def _project(self, target: OrganizedPointCloud, points: np.ndarray,
                 pose: Optional[np.ndarray]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Points in the target camera frame, their pixels and a validity mask"""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if pose is not None:
            pts = transform_points(pose, pts)
        pixels, valid = self.camera.project_pixels(pts, (target.width, target.height))
        return pts, pixels, valid

    def compute_fsv_with_count(self, target: OrganizedPointCloud, points: np.ndarray,
                               pose: Optional[np.ndarray] = None) -> Tuple[float, int]:
        """
        FSV fraction and number of overlapping points.

        A point is used when it is finite, in front of the camera, projects
        inside the target image and the target depth at that pixel is finite.
        A used point violates free space when ``z_target - z_point`` exceeds
        ``threshold_tss``.

        Args:
            target: Organized target cloud
            points: Points to test (Nx3)
            pose: Optional transform applied to the points first

        Returns:
            Tuple (violations / used, used); the fraction is 0.0 when no point is used
        """
        pts, pixels, valid = self._project(target, points, pose)
        if not np.any(valid):
            return 0.0, 0

        depth = target.depth
        z_target = depth[pixels[valid, 1], pixels[valid, 0]]
        z_point = pts[valid, 2]

        has_depth = np.isfinite(z_target)
        used = int(np.count_nonzero(has_depth))
        if used == 0:
            return 0.0, 0

        violations = np.count_nonzero((z_target[has_depth] - z_point[has_depth]) > self.threshold_tss)
        return violations / float(used), used

    def compute_fsv(self, target: OrganizedPointCloud, points: np.ndarray,
                    pose: Optional[np.ndarray] = None) -> float:
        """FSV fraction; the overlap count is kept in ``fsv_used_points``."""
        fraction, used = self.compute_fsv_with_count(target, points, pose)
        self.fsv_used_points = used
        return fraction

    def normal_consistency(self,
                           target: OrganizedPointCloud,
                           target_normals: Optional[np.ndarray],
                           points: np.ndarray,
                           normals: Optional[np.ndarray],
                           pose: Optional[np.ndarray] = None) -> float:
        """
        Mean dot product between point normals and target normals at the same pixel.

        Only points with finite position and normal, a pixel inside the image
        and a finite target depth and normal at that pixel take part.

        Args:
            target: Organized target cloud
            target_normals: (H, W, 3) target normals; defaults to target.normals
            points: Points (Nx3)
            normals: Normals of the points (Nx3)
            pose: Optional transform applied to points and normals

        Returns:
            Mean dot product, 0.0 when no point takes part
        """
        if target_normals is None:
            target_normals = target.normals
        if target_normals is None or normals is None:
            return 0.0

        nrm = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
        if pose is not None:
            nrm = transform_normals(pose, nrm)

        _, pixels, valid = self._project(target, points, pose)
        valid &= np.all(np.isfinite(nrm), axis=1)
        if not np.any(valid):
            return 0.0

        u, v = pixels[valid, 0], pixels[valid, 1]
        tgt_n = np.asarray(target_normals, dtype=np.float64)[v, u]
        keep = np.isfinite(target.depth[v, u]) & np.all(np.isfinite(tgt_n), axis=1)
        if not np.any(keep):
            return 0.0

        dots = np.sum(tgt_n[keep] * nrm[valid][keep], axis=1)
        return float(np.mean(dots))
