import numpy as np
from scipy import linalg

from .kernels import matrix_to_upper, upper_to_matrix, n_upper
from .utils import diff, correct_periodicity


class FlexibleBin:
    """Adaptive kernel shapes for metadynamics

    see: Branduardi et. al., J. Chem. Theory Comput. (2012); https://doi.org/10.1021/ct3002464

    The covariance of the deposited kernels follows the local CV fluctuations
    ("diffusion") or the local compression of Cartesian space by the CVs ("geometry").

    Args:
        adaptive: "diffusion" or "geometry"
        sigma: for "diffusion" the decay time in MD steps, for "geometry" the
               width in Cartesian space
        ncoords: number of CVs
        periodicity: per CV [lower, upper] or None
    """

    schemes = ("diffusion", "geometry")

    def __init__(
        self,
        adaptive: str,
        sigma: float,
        ncoords: int,
        periodicity: list = None,
    ):
        if adaptive not in self.schemes:
            raise ValueError(
                f" >>> Error: Unknown adaptive scheme `{adaptive}`, choose from {self.schemes}!"
            )
        if sigma <= 0:
            raise ValueError(" >>> Error: Sigma of adaptive hills has to be > 0!")

        self.type = adaptive
        self.sigma = float(sigma)
        self.ncoords = ncoords
        self.periodicity = periodicity if periodicity else [None] * ncoords

        self.average = None
        self.variance = None

    def update(self, now_add_hill: bool, cv: np.ndarray, cv_jacobian: np.ndarray = None):
        """Called once per MD step, also when no hill is added

        Args:
            now_add_hill: True if a hill is deposited in this step
            cv: current CV values
            cv_jacobian: (ncoords, n_cartesian) gradients of the CVs, needed for "geometry"
        """
        cv = np.asarray(cv, dtype=float)

        if self.type == "diffusion":
            decay = 1.0 / self.sigma
            delta = np.zeros(self.ncoords)
            if self.average is None:
                self.average = np.copy(cv)
            else:
                for i in range(self.ncoords):
                    delta[i] = diff(cv[i], self.average[i], self.periodicity[i])
                    self.average[i] = correct_periodicity(
                        self.average[i] + decay * delta[i], self.periodicity[i]
                    )

            if self.variance is None:
                self.variance = np.zeros(n_upper(self.ncoords))
            else:
                self.variance += decay * (
                    matrix_to_upper(np.outer(delta, delta)) - self.variance
                )

        else:
            if cv_jacobian is None:
                raise ValueError(
                    " >>> Error: Geometry based adaptive hills need the gradient of the CVs!"
                )
            jac = np.asarray(cv_jacobian, dtype=float).reshape((self.ncoords, -1))
            self.variance = self.sigma * self.sigma * matrix_to_upper(
                np.matmul(jac, jac.T)
            )

    def get_inverse_matrix(self) -> np.ndarray:
        """Upper triangle of the inverse covariance matrix of the next kernel"""
        if self.variance is None:
            raise ValueError(" >>> Error: Adaptive hills were not updated yet!")
        try:
            inverse = linalg.inv(upper_to_matrix(self.variance, self.ncoords))
        except (linalg.LinAlgError, ValueError) as e:
            raise ValueError(
                f" >>> Error: Covariance of adaptive hills is singular: {self.variance}"
            ) from e
        return matrix_to_upper(inverse)
