import numpy as np
import pytest as pytest
from metad_bias.sampling_tools.kernels import *
from metad_bias.sampling_tools.utils import diff, correct_periodicity


def test_kernel_value_at_center_and_one_sigma():
    kernel = Kernel([1.0], [0.2], 0.3)
    value, der = evaluate_kernel([1.0], kernel)
    assert value == pytest.approx(0.3)
    assert der[0] == pytest.approx(0.0)

    value, der = evaluate_kernel([1.2], kernel)
    assert value == pytest.approx(0.3 * np.exp(-0.5))
    assert der[0] == pytest.approx(-value / 0.2)


def test_kernel_cutoff():
    kernel = Kernel([0.0], [1.0], 1.0)
    # dp2 = 0.5 * 3.5^2 = 6.125 is inside the support
    value, _ = evaluate_kernel([3.5], kernel)
    assert value == pytest.approx(np.exp(-6.125))
    # dp2 = 0.5 * 3.6^2 = 6.48 is truncated
    value, der = evaluate_kernel([3.6], kernel)
    assert value == 0.0
    assert np.all(der == 0.0)


def test_kernel_interval():
    kernel = Kernel([1.0], [0.5], 1.0)
    value, _ = evaluate_kernel([1.1], kernel, interval=(0.5, 1.5))
    assert value > 0.0
    value, der = evaluate_kernel([1.6], kernel, interval=(0.5, 1.5))
    assert value == 0.0
    assert der[0] == 0.0


def test_kernel_zero_sigma():
    kernel = Kernel([0.0, 0.0], [0.0, 1.0], 1.0)
    assert kernel.inv_sigma[0] == 0.0
    value, _ = evaluate_kernel([5.0, 0.0], kernel)
    assert value == pytest.approx(1.0)


def test_kernel_wrong_sigma():
    with pytest.raises(ValueError):
        Kernel([0.0, 0.0], [1.0], 1.0)
    with pytest.raises(ValueError):
        Kernel([0.0, 0.0], [1.0, 0.0], 1.0, multivariate=True)


def test_periodic_kernel():
    periodicity = [[-np.pi, np.pi]]
    kernel = Kernel([np.pi - 0.1], [0.3], 1.0)
    value_wrap, der_wrap = evaluate_kernel([-np.pi + 0.1], kernel, periodicity)
    value, der = evaluate_kernel([np.pi - 0.3], kernel, periodicity)
    assert value_wrap == pytest.approx(value)
    assert der_wrap[0] == pytest.approx(-der[0])


def test_finite_difference():
    kernel = Kernel([0.5, -0.2], [0.3, 0.6], 2.0)
    analytical, numerical = finite_difference_kernel(np.array([0.7, 0.1]), kernel)
    assert analytical == pytest.approx(numerical, abs=1.0e-6)

    precision = matrix_to_upper(np.array([[4.0, 1.0], [1.0, 2.0]]))
    kernel = Kernel([0.5, -0.2], precision, 2.0, multivariate=True)
    analytical, numerical = finite_difference_kernel(np.array([0.4, 0.2]), kernel)
    assert analytical == pytest.approx(numerical, abs=1.0e-6)


def test_multivariate_diagonal_equals_diagonal_kernel():
    sigma = np.array([0.3, 0.6])
    diagonal = Kernel([0.0, 0.0], sigma, 1.0)
    multivariate = Kernel(
        [0.0, 0.0], matrix_to_upper(np.diag(1.0 / sigma**2)), 1.0, multivariate=True
    )
    for cv in ([0.1, 0.2], [0.5, -0.4], [-0.2, 0.0]):
        v1, d1 = evaluate_kernel(cv, diagonal)
        v2, d2 = evaluate_kernel(cv, multivariate)
        assert v1 == pytest.approx(v2)
        assert d1 == pytest.approx(d2)


def test_band_round_trip():
    cov = np.array([[0.04, 0.01, 0.0], [0.01, 0.09, 0.02], [0.0, 0.02, 0.16]])
    upper = matrix_to_upper(np.linalg.inv(cov))
    band = precision_to_band(upper, 3)
    assert len(band) == n_upper(3)
    # diagonal of the Cholesky factor first
    assert band[0] == pytest.approx(0.2)
    assert band_to_precision(band, 3) == pytest.approx(upper)


def test_band_field_names():
    assert band_field_names(["x", "y"]) == ["sigma_x_x", "sigma_y_y", "sigma_y_x"]


def test_support():
    kernel = Kernel([0.0, 0.0], [0.2, 0.1], 1.0)
    nneigh = kernel_support(kernel, np.array([0.1, 0.1]))
    assert list(nneigh) == [8, 4]

    upper = matrix_to_upper(np.diag([1.0 / 0.04, 1.0 / 0.01]))
    kernel = Kernel([0.0, 0.0], upper, 1.0, multivariate=True)
    nneigh = kernel_support(kernel, np.array([0.1, 0.1]))
    # only the principal axis of the largest variance
    assert nneigh[0] == 8
    assert nneigh[1] <= 1


def test_hills_list():
    hills = HillsList(1)
    bias, der = hills.bias_and_derivatives(np.array([0.0]))
    assert bias == 0.0
    assert der[0] == 0.0

    hills.append(Kernel([0.0], [0.5], 1.0))
    hills.append(Kernel([0.5], [0.5], 2.0))
    assert len(hills) == 2

    cv = np.array([0.2])
    bias, der = hills.bias_and_derivatives(cv)
    ref_bias, ref_der = 0.0, np.zeros(1)
    for kernel in hills:
        value, d = evaluate_kernel(cv, kernel)
        ref_bias += value
        ref_der += d
    assert bias == pytest.approx(ref_bias)
    assert der == pytest.approx(ref_der)

    with pytest.raises(ValueError):
        hills.append(Kernel([0.0, 0.0], [0.5, 0.5], 1.0))


def test_hills_list_interval():
    hills = HillsList(1, interval=(0.0, 1.0))
    hills.append(Kernel([0.9], [0.5], 1.0))
    bias, _ = hills.bias_and_derivatives(np.array([0.95]))
    assert bias > 0.0
    bias, der = hills.bias_and_derivatives(np.array([1.05]))
    assert bias == 0.0
    assert der[0] == 0.0


def test_periodic_utils():
    periodicity = [-np.pi, np.pi]
    assert diff(np.pi - 0.1, -np.pi + 0.1, periodicity) == pytest.approx(-0.2)
    assert diff(2.0, 1.0, None) == pytest.approx(1.0)
    assert correct_periodicity(np.pi + 0.5, periodicity) == pytest.approx(-np.pi + 0.5)
    with pytest.raises(ValueError):
        diff(1.0, 0.0, [0.0])


class PartialComm:
    """one rank of a process group without reduction"""

    def __init__(self, rank, size):
        self.rank = rank
        self.size = size

    def Get_rank(self):
        return self.rank

    def Get_size(self):
        return self.size

    def Sum(self, data):
        return data


def test_hills_list_partition():
    hills = HillsList(2)
    rng = np.random.default_rng(1)
    for center in rng.uniform(-1.0, 1.0, size=(7, 2)):
        hills.append(Kernel(center, [0.5, 0.5], 1.0))

    cv = np.array([0.1, -0.2])
    bias, der = hills.bias_and_derivatives(cv)
    bias_0, der_0 = hills.bias_and_derivatives(cv, comm=PartialComm(0, 2))
    bias_1, der_1 = hills.bias_and_derivatives(cv, comm=PartialComm(1, 2))
    assert bias_0 + bias_1 == pytest.approx(bias)
    assert der_0 + der_1 == pytest.approx(der)
