#!/usr/bin/env python
import os, sys
import numpy as np
from typing import Tuple
from abc import ABC, abstractmethod

from ..interface.sampling_data import MDInterface
from .parallel import SerialComm
from ..units import kB_in_kJmol


class EnhancedSampling(ABC):
    """Abstract class for history dependent biasing methods on collective variables

    Args:
        md: Object of the MD Interface, supplies the CVs in every step
        cv_def: definition of the Collective Variables (CVs)
            [["name", periodicity], [possible second dimension], ...],
            with periodicity = [lower, upper] or None
        equil_temp: equilibrium temperature of MD
        kb: Boltzmann constant in the energy units of the MD
        verbose: print verbose information
        output_freq: frequency in steps for writing outputs
        comm: process group that shares the bias (see `parallel.py`), default is a single process
    """

    def __init__(
        self,
        md: MDInterface,
        cv_def: list,
        equil_temp: float = 300.0,
        kb: float = kB_in_kJmol,
        verbose: bool = True,
        output_freq: int = 100,
        comm=None,
        **kwargs,
    ):
        self.the_md = md
        self.out_freq = output_freq
        self.equil_temp = equil_temp
        self.kb = kb
        self.verbose = verbose
        self.comm = comm if comm is not None else SerialComm()

        # definition of CVs
        self.ncoords = len(cv_def)
        if self.ncoords == 0:
            raise ValueError(" >>> Error: At least one collective variable is needed!")
        self.cv_names = [str(item[0]) for item in cv_def]
        self.periodicity = []
        for item in cv_def:
            per = item[1] if len(item) > 1 else None
            if per is not None:
                if len(per) != 2 or per[1] <= per[0]:
                    raise ValueError(
                        f" >>> Error: Invalid periodicity {per} of CV {item[0]}!"
                    )
                per = [float(per[0]), float(per[1])]
            self.periodicity.append(per)
        if len(set(self.cv_names)) != self.ncoords:
            raise ValueError(" >>> Error: Names of collective variables have to be unique!")

        # store trajectories of CVs and bias between outputs
        self.traj = []
        self.bias_pot_traj = []
        self.epot = []
        self.temp = []

        if self.verbose and self.comm.Get_rank() == 0:
            for i in range(self.ncoords):
                print(f"\n Initialize {self.cv_names[i]} as collective variable:")
                if self.periodicity[i]:
                    print(f"\t Periodic:\t[{self.periodicity[i][0]}, {self.periodicity[i][1]}]")
                else:
                    print("\t Periodic:\tFalse")
            print("\t----------------------------------------------")

    @abstractmethod
    def step_bias(self):
        pass

    @abstractmethod
    def shared_bias(self):
        pass

    @abstractmethod
    def restart(self):
        pass

    @abstractmethod
    def write_traj(self):
        pass

    def get_cv(self, **kwargs) -> Tuple[np.ndarray, np.ndarray]:
        """get state of collective variable from the MD

        Returns:
            xi: state of the collective variable
            grad_xi: gradient of the collective variable, None if the MD does not supply it
        """
        self.md_state = self.the_md.get_sampling_data()
        xi = np.asarray(self.md_state.cv, dtype=float).reshape(-1)
        if len(xi) != self.ncoords:
            raise ValueError(
                f" >>> Error: MD supplied {len(xi)} CVs, but {self.ncoords} are defined!"
            )
        grad_xi = self.md_state.cv_jacobian
        if grad_xi is not None:
            grad_xi = np.asarray(grad_xi, dtype=float).reshape((self.ncoords, -1))
        return xi, grad_xi

    def get_projected_force(self, cv_force: np.ndarray, grad_xi: np.ndarray) -> np.ndarray:
        """project forces acting on CVs to the coordinates of the MD

        Args:
            cv_force: force on each CV
            grad_xi: gradients of the CVs

        Returns:
            bias_force: force on MD coordinates
        """
        bias_force = np.zeros(grad_xi.shape[1])
        for i in range(self.ncoords):
            bias_force += cv_force[i] * grad_xi[i]
        return bias_force

    def _write_traj(self, data: dict = {}, filename: str = "CV_traj.dat"):
        """write trajectory of CVs and `data` at output times

        Args:
            data: data to write, lists of the same length as `self.traj`
            filename: name of trajectory file
        """
        if self.comm.Get_rank() != 0 or len(self.traj) == 0:
            return

        dt = self.md_state.dt
        # write header
        if not os.path.isfile(filename):
            with open(filename, "w") as traj_out:
                traj_out.write("%14s\t" % "time")
                for name in self.cv_names:
                    traj_out.write("%14s\t" % name)
                for kw in data.keys():
                    traj_out.write("%14s\t" % kw)

        # append new steps of trajectory since last output
        with open(filename, "a") as traj_out:
            for n, (step, xi) in enumerate(self.traj):
                traj_out.write("\n%14.6f\t" % (step * dt))
                for i in range(self.ncoords):
                    traj_out.write("%14.6f\t" % xi[i])
                for val in data.values():
                    traj_out.write("%14.6f\t" % val[n])
        sys.stdout.flush()
