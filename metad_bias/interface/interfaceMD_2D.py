#!/usr/bin/env python
import random
import numpy as np
from typing import Tuple
from .sampling_data import SamplingData
from metad_bias import units


class MD:
    """Toy host for the scripts in `examples/` and the interface tests:
    Langevin dynamics of one particle in a 2D double well

    The potential is a quartic double well along x with minima at x=80 and
    x=160 bohr and a harmonic confinement along y. The CVs are the coordinates
    of the particle. Energies are in atomic units and `forces` holds the
    gradient of the potential, a bias force on the CVs is subtracted from it.

    Args:
        mass_in: mass of the particle in a.u.
        coords_in: initial coordinates
        dt_in: time step in fs
        target_temp_in: temperature of the thermostat in K
        seed_in: seed of the random number generator
        friction: friction of the thermostat in 1/fs
    """

    def __init__(
        self,
        mass_in: float = 1.0,
        coords_in: list = [80.0, 0.0],
        dt_in: float = 0.1,
        target_temp_in: float = 298.15,
        seed_in: int = 4911,
        friction: float = 1.0e-3,
        verbose: bool = True,
    ):
        if not isinstance(seed_in, int):
            raise ValueError(" >>> Error: The random number seed has to be an int!")
        random.seed(seed_in)
        if verbose:
            print(" >>> Info: The random number seed was: %i" % (seed_in))

        self.step = 0
        self.coords = np.array(coords_in, dtype=float)
        self.masses = np.full(2, float(mass_in))
        self.dt_fs = dt_in
        self.dt = dt_in / units.atomic_to_fs_times_sqrt_amu2au
        self.target_temp = target_temp_in
        self.friction = friction

        self.forces = np.zeros(2)
        self.momenta = np.zeros(2)
        self.rand_gauss = np.zeros(2)
        self.epot = 0.0
        self.ekin = 0.0
        self.temp = 0.0

    def calc_init(self, init_temp: float = 298.15):
        """energy and gradient of the start configuration, momenta drawn at `init_temp`"""
        self.calc()
        self.momenta = np.array([random.gauss(0.0, 1.0), random.gauss(0.0, 1.0)])
        self.momenta *= np.sqrt(init_temp * self.masses)

        temp = (np.square(self.momenta) / self.masses).sum() / 2.0 * units.atomic_to_K
        self.momenta *= np.sqrt(init_temp / temp)

    def calc(self) -> Tuple[float, np.ndarray]:
        """Potential energy and its gradient with torch autograd

        Returns:
           epot: potential energy
           forces: gradient of the potential energy
        """
        import torch

        coords = torch.from_numpy(self.coords)
        coords.requires_grad = True
        x, y = coords[0], coords[1]

        a = 8.0e-6 / units.atomic_to_kJmol
        b = 0.5 / units.atomic_to_kJmol
        epot = a * torch.square(x - 80.0) * torch.square(x - 160.0) + b * y * y

        grad = torch.autograd.grad(epot, coords)[0]
        self.epot = float(epot)
        self.forces = grad.detach().numpy()
        return self.epot, self.forces

    def calc_etvp(self):
        """kinetic energy and temperature"""
        self.ekin = (np.square(self.momenta) / self.masses).sum() / 2.0
        self.temp = 2.0 * self.ekin / units.kB_in_atomic

    def _random_push(self) -> float:
        return np.sqrt(
            self.target_temp * self.friction * self.dt_fs * units.kB_in_atomic / 2.0
        )

    def propagate(self):
        """first half of the Langevin velocity Verlet step, moves the particle"""
        prefac = 2.0 / (2.0 + self.friction * self.dt_fs)
        self.rand_gauss = np.array([random.gauss(0.0, 1.0), random.gauss(0.0, 1.0)])

        self.momenta += np.sqrt(self.masses) * self._random_push() * self.rand_gauss
        self.momenta -= 0.5 * self.dt * self.forces
        self.coords += prefac * self.dt * self.momenta / self.masses

    def up_momenta(self):
        """second half of the Langevin velocity Verlet step"""
        damping = (2.0 - self.friction * self.dt_fs) / (2.0 + self.friction * self.dt_fs)
        self.momenta *= damping
        self.momenta += np.sqrt(self.masses) * self._random_push() * self.rand_gauss
        self.momenta -= 0.5 * self.dt * self.forces

    def get_sampling_data(self) -> SamplingData:
        """interface to metad_bias, the CVs are the coordinates of the particle"""
        return SamplingData(
            np.copy(self.coords),
            self.step,
            self.dt_fs,
            cv_jacobian=np.eye(2),
            epot=self.epot,
            temp=self.temp,
        )
