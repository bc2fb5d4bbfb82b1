import math

import numpy as np
import pytest

from realistic_render.camera import PerspectiveCamera
from realistic_render.controls import OrbitControls, Spherical


@pytest.fixture
def camera():
    camera = PerspectiveCamera(75, 16 / 9, 0.1, 100)
    camera.position.set(-0.5, 0.75, 3.0)
    return camera


def test_spherical_round_trip():
    offset = np.array([-0.5, 0.75, 3.0])
    np.testing.assert_allclose(Spherical.from_offset(offset).to_offset(), offset)


def test_controls_look_at_target(camera):
    OrbitControls(camera)
    assert camera.target.to_tuple() == (0.0, 0.0, 0.0)
    # Camera looks down its -Z axis towards the origin.
    forward = -camera.rotation_matrix()[:, 2]
    expected = -camera.position.to_array() / np.linalg.norm(camera.position.to_array())
    np.testing.assert_allclose(forward, expected)


def test_update_within_limits_does_not_move(camera):
    controls = OrbitControls(camera)
    controls.enable_damping = True
    version = camera.version
    assert controls.update() is False
    assert camera.position.to_tuple() == (-0.5, 0.75, 3.0)
    assert camera.version == version


def test_distance_limits(camera):
    controls = OrbitControls(camera)
    theta = controls.get_spherical().theta
    controls.max_distance = 2.0
    assert controls.update() is True
    spherical = controls.get_spherical()
    assert spherical.radius == pytest.approx(2.0)
    assert spherical.theta == pytest.approx(theta)

    controls.max_distance = math.inf
    controls.min_distance = 5.0
    assert controls.update() is True
    assert controls.get_spherical().radius == pytest.approx(5.0)


def test_polar_limit(camera):
    controls = OrbitControls(camera)
    controls.max_polar_angle = math.pi / 4
    assert controls.update() is True
    assert controls.get_spherical().phi == pytest.approx(math.pi / 4)
    assert controls.update() is False


def test_camera_over_the_pole_is_nudged_off(camera):
    camera.position.set(0.0, 3.0, 0.0)
    controls = OrbitControls(camera)
    controls.update()
    phi = controls.get_spherical().phi
    assert 0.0 < phi < math.pi


def test_disabled_controls_leave_camera_alone(camera):
    controls = OrbitControls(camera)
    controls.enabled = False
    controls.max_distance = 1.0
    assert controls.update() is False
    assert camera.position.to_tuple() == (-0.5, 0.75, 3.0)


def test_sync_from_client_ignores_echo(camera):
    controls = OrbitControls(camera)
    version = camera.version
    assert not controls.sync_from_client(camera.position.to_tuple(), (0.0, 0.0, 0.0))
    assert camera.version == version


def test_sync_from_client_adopts_pose(camera):
    controls = OrbitControls(camera)
    controls.enable_damping = True

    assert controls.sync_from_client((0.0, 1.0, 5.0), (0.0, 1.0, 0.0))
    assert camera.position.to_tuple() == (0.0, 1.0, 5.0)
    assert controls.target.to_tuple() == (0.0, 1.0, 0.0)
    assert controls.update() is False


def test_adopted_pose_is_clamped_on_next_update(camera):
    controls = OrbitControls(camera)
    controls.max_distance = 4.0
    controls.sync_from_client((0.0, 0.0, 10.0), (0.0, 0.0, 0.0))
    assert controls.update() is True
    np.testing.assert_allclose(camera.position.to_array(), [0.0, 0.0, 4.0], atol=1e-9)
