import numpy as np
from dataclasses import dataclass
from typing import Protocol


@dataclass
class SamplingData:
    """The necessary sampling data to apply the metadynamics bias."""

    cv: np.ndarray  # Values of the collective variables, shape (ncoords,)
    step: int  # MD step number
    dt: float  # MD step size, simulation time is step * dt
    # Below only needed for geometry based adaptive hills or forces on host coordinates
    cv_jacobian: np.ndarray = None  # Gradients of the CVs, shape (ncoords, n_host_coordinates)
    epot: float = 0.0  # Potential energy, only used for trajectory output
    temp: float = 0.0  # Temperature, only used for trajectory output


class MDInterface(Protocol):
    def get_sampling_data(self) -> SamplingData:
        """Define this function for your MD class to provide the
        required sampling data for metadynamics. If you do not
        wish to have this package as a dependency, wrap the import
        in a `try`/`except` clause, e.g.,

        ```
        class MD:
            # Your MD code
            ...

            def get_sampling_data(self):
                try:
                    from metad_bias.interface.sampling_data import SamplingData

                    cv   = ...
                    step = ...
                    dt   = ...
                    # Optional for adaptive hills with ADAPTIVE=geometry
                    cv_jacobian = ...

                    return SamplingData(cv, step, dt, cv_jacobian)
                except ImportError as e:
                    raise NotImplementedError("`get_sampling_data()` is missing `metad_bias` package") from e
        ```
        """
        ...
