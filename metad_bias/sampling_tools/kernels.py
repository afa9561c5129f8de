import numpy as np
from dataclasses import dataclass, field
from typing import Tuple
from scipy import linalg

from .utils import diff

# kernels with 0.5*(s-s0)^T M (s-s0) above this value are truncated to zero
DP2CUTOFF = 6.25


def n_upper(ncoords: int) -> int:
    """number of elements in the upper triangle of a (ncoords x ncoords) matrix"""
    return ncoords * (ncoords + 1) // 2


def upper_to_matrix(upper: np.ndarray, ncoords: int) -> np.ndarray:
    """recompose the full symmetric matrix from its upper triangle

    Args:
        upper: upper triangle in row-major order (j >= i)
        ncoords: dimension of the matrix

    Returns:
        matrix: symmetric (ncoords x ncoords) matrix
    """
    matrix = np.zeros((ncoords, ncoords))
    matrix[np.triu_indices(ncoords)] = upper
    return matrix + np.triu(matrix, 1).T


def matrix_to_upper(matrix: np.ndarray) -> np.ndarray:
    """flatten the upper triangle of a square matrix in row-major order"""
    return np.asarray(matrix)[np.triu_indices(len(matrix))]


def precision_to_band(upper: np.ndarray, ncoords: int) -> np.ndarray:
    """Convert the upper triangle of a kernel precision matrix to the band form
    of the lower Cholesky factor of its inverse, the sigma-like numbers written to hills files

    The band is ordered diagonal first, then the first sub-diagonal, ...:
    L[0,0], L[1,1], ..., L[1,0], L[2,1], ..., L[ncoords-1,0]
    """
    cov = linalg.inv(upper_to_matrix(upper, ncoords))
    cov = np.triu(cov) + np.triu(cov, 1).T
    lower = linalg.cholesky(cov, lower=True)
    return np.asarray(
        [lower[j + i, j] for i in range(ncoords) for j in range(ncoords - i)]
    )


def band_to_precision(band: np.ndarray, ncoords: int) -> np.ndarray:
    """Inverse of `precision_to_band`: L*L^T is inverted and returned as upper triangle"""
    lower = np.zeros((ncoords, ncoords))
    k = 0
    for i in range(ncoords):
        for j in range(ncoords - i):
            lower[j + i, j] = band[k]
            k += 1
    return matrix_to_upper(linalg.inv(np.matmul(lower, lower.T)))


def band_field_names(names: list) -> list:
    """names of sigma fields of multivariate kernels in band order"""
    ncoords = len(names)
    return [
        f"sigma_{names[j + i]}_{names[j]}"
        for i in range(ncoords)
        for j in range(ncoords - i)
    ]


@dataclass(frozen=True)
class Kernel:
    """Gaussian kernel (hill) of the metadynamics bias

    Args:
        center: center of the kernel in CV space
        sigma: standard deviations (diagonal kernel) or the upper triangle
            of the inverse covariance matrix (multivariate kernel)
        height: height of the kernel
        multivariate: selects the interpretation of `sigma`
    """

    center: np.ndarray
    sigma: np.ndarray
    height: float
    multivariate: bool = False
    inv_sigma: np.ndarray = field(init=False, repr=False, compare=False)
    precision: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        center = np.array(self.center, dtype=float).ravel()
        sigma = np.array(self.sigma, dtype=float).ravel()
        ncoords = len(center)

        if self.multivariate and len(sigma) != n_upper(ncoords):
            raise ValueError(
                f" >>> Error: Multivariate kernel in {ncoords} dimensions needs {n_upper(ncoords)} sigma values, got {len(sigma)}!"
            )
        if not self.multivariate and len(sigma) != ncoords:
            raise ValueError(
                f" >>> Error: Kernel in {ncoords} dimensions needs {ncoords} sigma values, got {len(sigma)}!"
            )

        # zero elements can appear in flexible hills
        inv_sigma = np.divide(
            1.0, sigma, out=np.zeros_like(sigma), where=np.abs(sigma) > 1.0e-20
        )
        if self.multivariate:
            precision = upper_to_matrix(sigma, ncoords)
        else:
            precision = np.diag(np.square(inv_sigma))

        for arr in (center, sigma, inv_sigma, precision):
            arr.setflags(write=False)
        object.__setattr__(self, "center", center)
        object.__setattr__(self, "sigma", sigma)
        object.__setattr__(self, "height", float(self.height))
        object.__setattr__(self, "multivariate", bool(self.multivariate))
        object.__setattr__(self, "inv_sigma", inv_sigma)
        object.__setattr__(self, "precision", precision)

    @property
    def ncoords(self) -> int:
        return len(self.center)


def _periodic_delta(
    points: np.ndarray, center: np.ndarray, periodicity: list
) -> np.ndarray:
    """distances of points (n, ncoords) to a kernel center"""
    delta = np.empty_like(points)
    for i in range(points.shape[1]):
        per = periodicity[i] if periodicity else None
        delta[:, i] = diff(points[:, i], center[i], per)
    return delta


def evaluate_kernel_on_points(
    points: np.ndarray,
    kernel: Kernel,
    periodicity: list = None,
    interval: tuple = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Value and gradient of one kernel on many points

    Args:
        points: (n, ncoords) array of CV values
        kernel: the kernel
        periodicity: per CV [lower, upper] or None
        interval: (lower, upper) bounds of the first CV outside of which the kernel is zero

    Returns:
        values: (n,) kernel values
        derivatives: (n, ncoords) gradients of the kernel
    """
    points = np.atleast_2d(np.asarray(points, dtype=float))
    delta = _periodic_delta(points, kernel.center, periodicity)
    m_delta = np.matmul(delta, kernel.precision)
    dp2 = 0.5 * np.sum(delta * m_delta, axis=1)

    mask = dp2 < DP2CUTOFF
    if interval is not None:
        mask &= (points[:, 0] > interval[0]) & (points[:, 0] < interval[1])

    values = np.zeros(len(points))
    values[mask] = kernel.height * np.exp(-dp2[mask])
    derivatives = -values[:, np.newaxis] * m_delta
    return values, derivatives


def evaluate_kernel(
    cv: np.ndarray,
    kernel: Kernel,
    periodicity: list = None,
    interval: tuple = None,
) -> Tuple[float, np.ndarray]:
    """Value and gradient of a kernel at the CV point `cv`"""
    values, derivatives = evaluate_kernel_on_points(
        np.asarray(cv, dtype=float).reshape((1, -1)), kernel, periodicity, interval
    )
    return values[0], derivatives[0]


def finite_difference_kernel(
    cv: np.ndarray,
    kernel: Kernel,
    periodicity: list = None,
    step: float = 1.0e-6,
) -> Tuple[np.ndarray, np.ndarray]:
    """Analytical and central finite difference gradient of a kernel at `cv`"""
    cv = np.asarray(cv, dtype=float)
    _, analytical = evaluate_kernel(cv, kernel, periodicity)
    numerical = np.zeros_like(cv)
    for i in range(len(cv)):
        displacement = np.zeros_like(cv)
        displacement[i] = step
        forward, _ = evaluate_kernel(cv + displacement, kernel, periodicity)
        backward, _ = evaluate_kernel(cv - displacement, kernel, periodicity)
        numerical[i] = (forward - backward) / (2.0 * step)
    return analytical, numerical


def kernel_support(kernel: Kernel, dx: np.ndarray) -> np.ndarray:
    """Number of grid nodes per dimension covered by the DP2CUTOFF isosurface of a kernel

    For multivariate kernels only the principal axis with the largest
    eigenvalue of the covariance matrix is used.

    Args:
        kernel: the kernel
        dx: grid spacing per dimension

    Returns:
        nneigh: half width of the support window in nodes per dimension
    """
    if kernel.multivariate:
        cov = linalg.inv(kernel.precision)
        eigval, eigvec = linalg.eigh(cov)
        imax = np.argmax(eigval)
        cutoff = np.sqrt(2.0 * DP2CUTOFF) * np.abs(
            np.sqrt(eigval[imax]) * eigvec[:, imax]
        )
    else:
        cutoff = np.sqrt(2.0 * DP2CUTOFF) * kernel.sigma
    return np.ceil(cutoff / np.asarray(dx)).astype(int)


class HillsList:
    """Append-only list of deposited kernels

    The bias is evaluated as the sum over all kernels in deposition order.

    Args:
        ncoords: number of CVs
        periodicity: per CV [lower, upper] or None
        interval: (lower, upper) bounds of the first CV for the bias
    """

    def __init__(self, ncoords: int, periodicity: list = None, interval: tuple = None):
        self.ncoords = ncoords
        self.periodicity = periodicity if periodicity else [None] * ncoords
        self.interval = interval
        self.kernels = []
        self._stacked = None

    def __len__(self):
        return len(self.kernels)

    def __iter__(self):
        return iter(self.kernels)

    def __getitem__(self, idx):
        return self.kernels[idx]

    def append(self, kernel: Kernel):
        if kernel.ncoords != self.ncoords:
            raise ValueError(
                f" >>> Error: Kernel has {kernel.ncoords} dimensions, expected {self.ncoords}!"
            )
        self.kernels.append(kernel)
        self._stacked = None

    def _stack(self):
        if self._stacked is None:
            self._stacked = (
                np.asarray([k.center for k in self.kernels]),
                np.asarray([k.height for k in self.kernels]),
                np.asarray([k.precision for k in self.kernels]),
            )
        return self._stacked

    def bias_and_derivatives(self, cv: np.ndarray, comm=None) -> Tuple[float, np.ndarray]:
        """Sum of all kernels and their gradients at `cv`

        With a communicator, kernels are distributed round-robin over the
        ranks and the partial sums are reduced.

        Args:
            cv: CV value
            comm: process group handle (see `parallel.py`), or None

        Returns:
            bias: bias potential
            der: gradient of the bias potential
        """
        cv = np.asarray(cv, dtype=float)
        result = np.zeros(self.ncoords + 1)

        if len(self.kernels) > 0:
            rank, size = (comm.Get_rank(), comm.Get_size()) if comm else (0, 1)
            centers, heights, precisions = self._stack()
            centers = centers[rank::size]
            heights = heights[rank::size]
            precisions = precisions[rank::size]

            delta = cv - centers
            for i, per in enumerate(self.periodicity):
                delta[:, i] = diff(delta[:, i], 0.0, per)
            m_delta = np.einsum("nij,nj->ni", precisions, delta)
            dp2 = 0.5 * np.sum(delta * m_delta, axis=1)

            inside = (
                True
                if self.interval is None
                else self.interval[0] < cv[0] < self.interval[1]
            )
            mask = dp2 < DP2CUTOFF if inside else np.zeros(len(dp2), dtype=bool)
            values = np.zeros(len(dp2))
            values[mask] = heights[mask] * np.exp(-dp2[mask])

            result[0] = np.sum(values)
            result[1:] = -np.sum(values[:, np.newaxis] * m_delta, axis=0)

        if comm:
            comm.Sum(result)
        return result[0], result[1:]
