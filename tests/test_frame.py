import math

import numpy as np
import pytest

from visualslam.camera import Camera, KeyPoint
from visualslam.frame import Frame


def _camera(bf=50.0):
    return Camera(fx=500.0, fy=500.0, cx=320.0, cy=240.0, width=640, height=480, bf=bf)


def _descriptors(n, seed=0):
    return np.random.default_rng(seed).integers(0, 256, (n, 32), dtype=np.uint8)


def _frame(keypoints, scale_factors=(1.0, 1.2, 1.44), bf=50.0):
    return Frame(keypoints, _descriptors(len(keypoints)), _camera(bf), 0.0, scale_factors)


def test_ids_increase():
    f1 = _frame([KeyPoint(10.0, 10.0)])
    f2 = _frame([KeyPoint(10.0, 10.0)])
    assert f2.id == f1.id + 1


def test_monocular_has_no_depth():
    f = _frame([KeyPoint(10.0, 10.0), KeyPoint(20.0, 30.0)])
    assert f.depth == [-1.0, -1.0]
    assert f.u_right == [-1.0, -1.0]
    assert f.map_points == [None, None]
    assert f.outliers == [False, False]


def test_descriptor_count_must_match():
    with pytest.raises(ValueError):
        Frame([KeyPoint(1.0, 1.0)], _descriptors(2), _camera(), 0.0, (1.0,))


def test_octave_without_scale_factor_rejected():
    with pytest.raises(ValueError):
        Frame([KeyPoint(1.0, 1.0, octave=3)], _descriptors(1), _camera(), 0.0, (1.0, 1.2))


def test_scale_info_derived():
    f = _frame([KeyPoint(1.0, 1.0)], scale_factors=(1.0, 1.2, 1.44))
    assert f.scale_levels == 3
    assert f.log_scale_factor == pytest.approx(math.log(1.2))
    assert f.level_sigma2[2] == pytest.approx(1.44 * 1.44)
    assert f.inv_scale_factors[1] == pytest.approx(1 / 1.2)


def test_features_in_area_finds_nearby_points():
    kps = [KeyPoint(100.0, 100.0), KeyPoint(102.0, 101.0), KeyPoint(300.0, 200.0)]
    f = _frame(kps)
    found = f.features_in_area(101.0, 100.0, 3.0)
    assert sorted(found) == [0, 1]


def test_features_in_area_every_point_found_at_itself():
    rng = np.random.default_rng(3)
    kps = [KeyPoint(float(x), float(y)) for x, y in zip(rng.uniform(1, 639, 40), rng.uniform(1, 479, 40))]
    f = _frame(kps)
    for i, kp in enumerate(kps):
        assert i in f.features_in_area(kp.x, kp.y, 1.0)


def test_features_in_area_level_filter():
    kps = [KeyPoint(100.0, 100.0, octave=0), KeyPoint(100.5, 100.5, octave=2)]
    f = _frame(kps)
    assert f.features_in_area(100.0, 100.0, 2.0, 0, 1) == [0]
    assert f.features_in_area(100.0, 100.0, 2.0, 1, -1) == [1]


def test_features_in_area_outside_image_is_empty():
    f = _frame([KeyPoint(100.0, 100.0)])
    assert f.features_in_area(5000.0, 100.0, 3.0) == []
    assert f.features_in_area(100.0, -5000.0, 3.0) == []


def test_set_pose_camera_centre():
    f = _frame([KeyPoint(10.0, 10.0)])
    T = np.eye(4)
    T[:3, 3] = [1.0, 2.0, 3.0]
    f.set_pose(T)
    np.testing.assert_allclose(f.Ow, [-1.0, -2.0, -3.0])
    np.testing.assert_allclose(f.Rwc @ f.Rcw, np.eye(3))


def test_set_pose_rejects_bad_shape():
    f = _frame([KeyPoint(10.0, 10.0)])
    with pytest.raises(ValueError):
        f.set_pose(np.eye(3))


def test_rgbd_depth_and_right_coordinate():
    cam = _camera(bf=50.0)
    kps = [KeyPoint(100.0, 50.0), KeyPoint(200.0, 60.0)]
    f = Frame(kps, _descriptors(2), cam, 0.0, (1.0,))
    depth = np.zeros((480, 640), dtype=np.float32)
    depth[50, 100] = 2.0
    f.compute_stereo_from_rgbd(depth)
    assert f.depth[0] == pytest.approx(2.0)
    assert f.u_right[0] == pytest.approx(100.0 - cam.bf / 2.0)
    assert f.depth[1] == -1.0
    assert f.u_right[1] == -1.0


def test_unproject_stereo_round_trip():
    cam = _camera()
    kps = [KeyPoint(150.0, 80.0)]
    f = Frame(kps, _descriptors(1), cam, 0.0, (1.0,))
    depth = np.zeros((480, 640))
    depth[80, 150] = 3.0
    f.compute_stereo_from_rgbd(depth)
    angle = 0.3
    T = np.eye(4)
    T[:3, :3] = [[math.cos(angle), 0, math.sin(angle)], [0, 1, 0], [-math.sin(angle), 0, math.cos(angle)]]
    T[:3, 3] = [0.5, -0.2, 1.0]
    f.set_pose(T)
    world = f.unproject_stereo(0)
    pc = f.Rcw @ world + f.tcw
    assert pc[2] == pytest.approx(3.0)
    assert cam.fx * pc[0] / pc[2] + cam.cx == pytest.approx(150.0)
    assert cam.fy * pc[1] / pc[2] + cam.cy == pytest.approx(80.0)


def test_unproject_without_depth_is_none():
    f = _frame([KeyPoint(10.0, 10.0)])
    f.set_pose(np.eye(4))
    assert f.unproject_stereo(0) is None


def test_unproject_without_pose_raises():
    f = Frame([KeyPoint(10.0, 10.0)], _descriptors(1), _camera(), 0.0, (1.0,))
    depth = np.ones((480, 640))
    f.compute_stereo_from_rgbd(depth)
    with pytest.raises(ValueError):
        f.unproject_stereo(0)


def _stereo_images(disparity):
    rng = np.random.default_rng(7)
    left = rng.integers(0, 256, (100, 200)).astype(np.int64)
    right = np.roll(left, -disparity, axis=1) + rng.integers(0, 3, (100, 200))
    return left, np.clip(right, 0, 255)


def test_stereo_matches_recover_disparity():
    disparity = 10
    left, right = _stereo_images(disparity)
    cam = _camera(bf=50.0)
    left_kps = [KeyPoint(100.0, 40.0), KeyPoint(150.0, 60.0)]
    right_kps = [KeyPoint(100.0 - disparity, 40.0), KeyPoint(150.0 - disparity, 60.0)]
    desc = _descriptors(2)
    f = Frame(left_kps, desc, cam, 0.0, (1.0,))
    f.compute_stereo_matches(right_kps, desc.copy(), [left], [right], 50, 100)
    for i, kp in enumerate(left_kps):
        assert f.u_right[i] == pytest.approx(kp.x - disparity, abs=0.5)
        assert f.depth[i] == pytest.approx(cam.bf / (kp.x - f.u_right[i]))


def test_stereo_matches_reject_negative_disparity():
    left, right = _stereo_images(10)
    desc = _descriptors(1)
    f = Frame([KeyPoint(100.0, 40.0)], desc, _camera(), 0.0, (1.0,))
    f.compute_stereo_matches([KeyPoint(120.0, 40.0)], desc.copy(), [left], [right], 50, 100)
    assert f.depth == [-1.0]
    assert f.u_right == [-1.0]


def test_stereo_matches_reject_distant_descriptors():
    left, right = _stereo_images(10)
    desc = np.zeros((1, 32), dtype=np.uint8)
    other = np.full((1, 32), 255, dtype=np.uint8)
    f = Frame([KeyPoint(100.0, 40.0)], desc, _camera(), 0.0, (1.0,))
    f.compute_stereo_matches([KeyPoint(90.0, 40.0)], other, [left], [right], 50, 100)
    assert f.depth == [-1.0]


def test_stereo_matches_need_baseline():
    left, right = _stereo_images(10)
    desc = _descriptors(1)
    f = Frame([KeyPoint(100.0, 40.0)], desc, _camera(bf=0.0), 0.0, (1.0,))
    with pytest.raises(ValueError):
        f.compute_stereo_matches([KeyPoint(90.0, 40.0)], desc, [left], [right], 50, 100)