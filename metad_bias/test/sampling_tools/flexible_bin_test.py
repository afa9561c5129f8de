import numpy as np
import pytest as pytest
from metad_bias.sampling_tools.flexible_bin import FlexibleBin
from metad_bias.sampling_tools.kernels import upper_to_matrix


def test_diffusion_running_average():
    flexbin = FlexibleBin("diffusion", 2.0, 1)
    flexbin.update(False, np.array([0.0]))
    assert flexbin.average == pytest.approx([0.0])
    assert flexbin.variance == pytest.approx([0.0])

    flexbin.update(False, np.array([1.0]))
    # decay is 1/sigma
    assert flexbin.average == pytest.approx([0.5])
    assert flexbin.variance == pytest.approx([0.5])

    flexbin.update(True, np.array([1.0]))
    assert flexbin.average == pytest.approx([0.75])
    assert flexbin.variance == pytest.approx([0.5 + 0.5 * (0.25 - 0.5)])
    assert flexbin.get_inverse_matrix() == pytest.approx([1.0 / 0.375])


def test_diffusion_periodic():
    flexbin = FlexibleBin("diffusion", 2.0, 1, periodicity=[[-np.pi, np.pi]])
    flexbin.update(False, np.array([np.pi - 0.1]))
    flexbin.update(False, np.array([-np.pi + 0.1]))
    # the average moves across the boundary
    assert flexbin.average[0] == pytest.approx(-np.pi, abs=1.0e-10) or flexbin.average[
        0
    ] == pytest.approx(np.pi, abs=1.0e-10)
    assert flexbin.variance == pytest.approx([0.5 * 0.04])


def test_diffusion_2d():
    rng = np.random.default_rng(0)
    flexbin = FlexibleBin("diffusion", 200.0, 2)
    for _ in range(2000):
        flexbin.update(False, rng.normal(0.0, [0.1, 0.5]))
    cov = upper_to_matrix(flexbin.variance, 2)
    assert cov[0, 0] == pytest.approx(0.01, rel=0.5)
    assert cov[1, 1] == pytest.approx(0.25, rel=0.5)
    inverse = upper_to_matrix(flexbin.get_inverse_matrix(), 2)
    assert np.matmul(inverse, cov) == pytest.approx(np.eye(2), abs=1.0e-8)


def test_geometry():
    flexbin = FlexibleBin("geometry", 0.5, 2)
    jacobian = np.array([[1.0, 1.0, 0.0], [0.0, 0.0, 2.0]])
    flexbin.update(True, np.zeros(2), jacobian)
    assert flexbin.variance == pytest.approx(0.25 * np.array([2.0, 0.0, 4.0]))
    assert flexbin.get_inverse_matrix() == pytest.approx([2.0, 0.0, 1.0])

    with pytest.raises(ValueError):
        flexbin.update(True, np.zeros(2))


def test_errors():
    with pytest.raises(ValueError):
        FlexibleBin("something", 1.0, 1)
    with pytest.raises(ValueError):
        FlexibleBin("diffusion", 0.0, 1)

    flexbin = FlexibleBin("diffusion", 1.0, 2)
    with pytest.raises(ValueError):
        flexbin.get_inverse_matrix()
    # a single point has no spread
    flexbin.update(False, np.zeros(2))
    with pytest.raises(ValueError):
        flexbin.get_inverse_matrix()
