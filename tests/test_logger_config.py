"""
Tests for logging setup and configuration handling.
"""

import logging

import pytest

from PoseTracking.logger import setup_logger, get_logger, set_level, ROOT_LOGGER_NAME
from PoseTracking.core.config import BaseConfig
from PoseTracking.algorithms.geometry.pose.ransac_pnp_depth import RansacPnPDepthSolver, RansacPnPDepthConfig
from PoseTracking.algorithms.registration.fast_icp_gc import FastIterativeClosestPointWithGC, FastICPConfig
from PoseTracking.algorithms.optimization.refinement.pose_refiner import PoseRefiner
from PoseTracking.tracking.lk_pose_tracker import LKPoseTracker


def test_module_loggers_live_under_package_namespace():
    logger = get_logger("registration.fast_icp_gc")
    assert logger.name == f"{ROOT_LOGGER_NAME}.registration.fast_icp_gc"


def test_setup_logger_writes_file(tmp_path):
    log_file = tmp_path / "logs" / "tracking.log"
    logger = setup_logger("PoseTracking.test_file", level="DEBUG", log_file=str(log_file), console=False)

    logger.debug("hello tracker")
    for handler in logger.handlers:
        handler.flush()

    assert log_file.exists()
    assert "[DEBUG] [PoseTracking.test_file] hello tracker" in log_file.read_text()

    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)


def test_setup_logger_is_idempotent():
    first = setup_logger("PoseTracking.test_idempotent", console=True)
    count = len(first.handlers)
    second = setup_logger("PoseTracking.test_idempotent", console=True)
    assert second is first
    assert len(second.handlers) == count


def test_set_level():
    root = logging.getLogger(ROOT_LOGGER_NAME)
    previous = root.level
    set_level("warning")
    assert root.level == logging.WARNING
    root.setLevel(previous)


def test_config_overrides_and_unknown_keys():
    config = RansacPnPDepthConfig(inlier_pixel_threshold=3.0)
    assert config.INLIER_PIXEL_THRESHOLD == 3.0
    assert RansacPnPDepthConfig.INLIER_PIXEL_THRESHOLD == 2.0
    assert config.to_dict()['MAX_TRIALS'] == 5000

    config = RansacPnPDepthConfig(not_an_option=1)
    assert 'NOT_AN_OPTION' not in config.to_dict()
    assert not hasattr(config, 'not_an_option')


def test_estimator_configure_is_case_insensitive(camera):
    solver = RansacPnPDepthSolver(camera, MAX_TRIALS=100, confidence=0.999, bogus=True)
    assert solver.config.MAX_TRIALS == 100
    assert solver.config.CONFIDENCE == 0.999
    assert 'BOGUS' not in solver.get_config()

    solver.configure(use_robust_loss=True, loss_scale=3.0)
    assert solver.refiner.config.USE_ROBUST_LOSS
    assert solver.refiner.config.LOSS_SCALE == 3.0


def test_invalid_pnp_method(camera, cube_points):
    solver = RansacPnPDepthSolver(camera, pnp_method='DLT')
    with pytest.raises(ValueError):
        solver.ransac(cube_points, camera.project(cube_points))


def test_unknown_options_are_ignored_everywhere(camera):
    icp = FastIterativeClosestPointWithGC(camera, max_iteration=3, max_keep=2)
    assert icp.config.MAX_ITERATIONS == FastICPConfig.MAX_ITERATIONS
    assert icp.config.MAX_KEEP == 2
    assert 'MAX_ITERATION' not in icp.config.to_dict()

    tracker = LKPoseTracker(camera, not_an_option=1, window_size=(15, 15))
    assert tracker.config.WINDOW_SIZE == (15, 15)
    assert 'NOT_AN_OPTION' not in tracker.config.to_dict()

    refiner = PoseRefiner(not_an_option=1, loss_scale=3.5)
    assert refiner.config.LOSS_SCALE == 3.5

    solver = RansacPnPDepthSolver(camera, not_an_option=1)
    assert 'NOT_AN_OPTION' not in solver.get_config()


def test_base_config_repr():
    class DemoConfig(BaseConfig):
        ALPHA = 1
        BETA = 'x'

    assert repr(DemoConfig(beta='y')) == "DemoConfig(ALPHA=1, BETA='y')"
