import os
import numpy as np
from typing import Tuple

from .enhanced_sampling import EnhancedSampling
from .flexible_bin import FlexibleBin
from .grid import Grid, SparseGrid
from .hills_file import HillsReader, HillsWriter, backup_file
from .kernels import (
    Kernel,
    HillsList,
    evaluate_kernel_on_points,
    kernel_support,
)


class MetaD(EnhancedSampling):
    """(Well-Tempered) Metadynamics

    see: Laio and Parrinello, PNAS (2002); https://doi.org/10.1073/pnas.202427399
         Barducci et. al., Phys. rev. lett. (2008); https://doi.org/10.1103/PhysRevLett.100.020603

    A repulsive bias potential is built by a superposition of Gaussian hills along the CVs.
    Hills are deposited every `hill_drop_freq` steps and logged to `hills_file`, which is
    used for restarts and to share the bias between multiple walkers.

    Args:
        hill_height: height of Gaussian hills in energy units of the MD
        hill_std: standard deviation of Gaussian hills in units of the CVs,
                  for adaptive hills a single number (see `adaptive`)
        hill_drop_freq: frequency of hill creation in steps
        adaptive: None, "diffusion" (`hill_std` is a decay time in steps) or
                  "geometry" (`hill_std` is a width in Cartesian space)
        bias_factor: bias factor for well-tempered metadynamics, 1.0 switches well-tempering off
        hills_file: name of the file that stores the hills
        fmt: number format of the hills file
        grid_min: lower boundaries of the bias grid, if None hills are summed explicitly
        grid_max: upper boundaries of the bias grid
        grid_bin: number of bins of the bias grid
        grid_sparse: store only grid nodes that received contributions
        grid_spline: use spline interpolation on the grid
        grid_wstride: frequency in steps for writing the grid to `grid_wfile`
        grid_wfile: name of the grid file
        store_old_grids: keep previous grid files as `bck.<n>.<grid_wfile>`
        walkers_n: number of multiple walkers
        walkers_id: id of this walker in range(walkers_n)
        walkers_dir: shared directory of the hills files of all walkers
        walkers_rstride: frequency in steps for reading hills of other walkers
        lower_interval: for one CV, the bias vanishes below this value
        upper_interval: for one CV, the bias vanishes above this value
        restart: read all existing hills files and append to the own one
    """

    def __init__(
        self,
        *args,
        hill_height: float = -1,
        hill_std: np.array = -1,
        hill_drop_freq: int = 500,
        adaptive: str = None,
        bias_factor: float = 1.0,
        hills_file: str = "HILLS",
        fmt: str = "%20.12e",
        grid_min: np.array = None,
        grid_max: np.array = None,
        grid_bin: np.array = None,
        grid_sparse: bool = False,
        grid_spline: bool = True,
        grid_wstride: int = 0,
        grid_wfile: str = None,
        store_old_grids: bool = False,
        walkers_n: int = 1,
        walkers_id: int = 0,
        walkers_dir: str = "./",
        walkers_rstride: int = 1,
        lower_interval: float = None,
        upper_interval: float = None,
        restart: bool = False,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)

        # adaptive hills need one sigma only
        hill_std = np.atleast_1d(np.asarray(hill_std, dtype=float))
        if adaptive is None:
            if len(hill_std) != self.ncoords:
                raise ValueError(
                    " >>> Error: Number of CVs does not match number of hill standard deviations!"
                )
            self.flexbin = None
        else:
            if len(hill_std) != 1:
                raise ValueError(
                    " >>> Error: Adaptive hills need only one sigma according to the type (geometry/diffusion)!"
                )
            self.flexbin = FlexibleBin(
                adaptive, hill_std[0], self.ncoords, self.periodicity
            )
        if (hill_std <= 0).any():
            raise ValueError(" >>> Error: Hill standard deviation has to be > 0!")
        if hill_height <= 0:
            raise ValueError(" >>> Error: Hill height for MtD has to be > 0!")
        if int(hill_drop_freq) <= 0:
            raise ValueError(" >>> Error: Update interval for MtD has to be int > 0!")

        # general MtD parameters
        self.hill_height = float(hill_height)
        self.hill_std = hill_std
        self.hill_drop_freq = int(hill_drop_freq)
        self.adaptive = adaptive
        self.multivariate = self.flexbin is not None
        self.is_first_step = True
        self.n_hills = 0

        # Well-Tempered parameters
        if not np.isfinite(bias_factor) or bias_factor < 1.0:
            raise ValueError(" >>> Error: Well-tempered bias factor is nonsensical!")
        self.bias_factor = float(bias_factor)
        self.well_tempered = self.bias_factor > 1.0
        if self.well_tempered and (self.equil_temp is None or self.equil_temp <= 0):
            raise ValueError(
                " >>> Error: Well-tempered metadynamics needs the temperature `equil_temp` > 0!"
            )

        # interval of the bias, only for one CV
        self.interval = None
        if lower_interval is not None or upper_interval is not None:
            if lower_interval is None or upper_interval is None:
                raise ValueError(
                    " >>> Error: Both lower and upper interval limits have to be set!"
                )
            if self.ncoords != 1:
                raise ValueError(
                    " >>> Error: Bias limits correction works only for monodimensional metadynamics!"
                )
            if upper_interval < lower_interval:
                raise ValueError(
                    " >>> Error: The upper limit must be greater than the lower limit!"
                )
            self.interval = (float(lower_interval), float(upper_interval))
            grid_spline = False

        # bias on grid or as list of hills
        grid_args = [a for a in (grid_min, grid_max, grid_bin) if a is not None]
        if len(grid_args) not in [0, 3]:
            raise ValueError(
                " >>> Error: Grid min was specified without either grid max or grid bin!"
            )
        self.grid = None
        self.hills = None
        if grid_args:
            grid_min = np.atleast_1d(np.asarray(grid_min, dtype=float))
            grid_max = np.atleast_1d(np.asarray(grid_max, dtype=float))
            grid_bin = np.atleast_1d(np.asarray(grid_bin, dtype=int))
            for arr in (grid_min, grid_max, grid_bin):
                if len(arr) != self.ncoords:
                    raise ValueError(
                        " >>> Error: Not enough values for grid min, grid max or grid bin!"
                    )
            for i, per in enumerate(self.periodicity):
                if per and not np.allclose([grid_min[i], grid_max[i]], per):
                    raise ValueError(
                        f" >>> Error: Grid boundaries of periodic CV {self.cv_names[i]} have to match its periodicity!"
                    )
            the_grid = SparseGrid if grid_sparse else Grid
            self.grid = the_grid(
                self.cv_names,
                grid_min,
                grid_max,
                grid_bin,
                [per is not None for per in self.periodicity],
                spline=grid_spline,
            )
        else:
            self.hills = HillsList(self.ncoords, self.periodicity, self.interval)

        # grid output
        self.grid_wstride = int(grid_wstride)
        self.grid_wfile = grid_wfile
        self.store_old_grids = store_old_grids
        if self.grid_wfile and self.grid_wstride <= 0:
            raise ValueError(
                " >>> Error: Frequency with which to output the grid not specified, use `grid_wstride`!"
            )
        if self.grid_wstride > 0 and not self.grid_wfile:
            raise ValueError(" >>> Error: Grid filename not specified, use `grid_wfile`!")
        if self.grid_wstride > 0 and self.grid is None:
            raise ValueError(" >>> Error: Grid output is only available for bias on grid!")

        # multiple walkers
        self.walkers_n = int(walkers_n)
        self.walkers_id = int(walkers_id)
        self.walkers_dir = walkers_dir
        self.walkers_rstride = int(walkers_rstride)
        if self.walkers_n < 1 or not 0 <= self.walkers_id < self.walkers_n:
            raise ValueError(
                " >>> Error: Walker ID should be a numerical value less than the total number of walkers!"
            )
        if self.walkers_rstride <= 0:
            raise ValueError(" >>> Error: Stride for reading hills of walkers has to be > 0!")

        # store results
        self.bias_pot = 0.0
        self.bias_der = np.zeros(self.ncoords)
        self.mtd_force = np.zeros(self.ncoords)
        self.bias_force = None

        if self.verbose and self.comm.Get_rank() == 0:
            print(" >>> Info: MtD Parameters:")
            print("\t ---------------------------------------------")
            if self.adaptive:
                print(f"\t Adaptive:\t{self.adaptive}\t(sigma: {self.hill_std[0]})")
            else:
                print(f"\t Hill std:\t{self.hill_std}")
            print(f"\t Hill height:\t{self.hill_height}")
            print(f"\t Hill pace:\t{self.hill_drop_freq} steps")
            print(f"\t Hills file:\t{hills_file}")
            if self.well_tempered:
                print(f"\t Bias factor:\t{self.bias_factor}")
            if self.interval:
                print(f"\t Interval:\t[{self.interval[0]}, {self.interval[1]}]")
            if self.grid is not None:
                print(f"\t Grid min:\t{self.grid.min}")
                print(f"\t Grid max:\t{self.grid.max}")
                print(f"\t Grid bin:\t{self.grid.nbin}")
                print(f"\t Spline:\t{self.grid.use_spline}\t(sparse: {grid_sparse})")
                if self.grid_wstride > 0:
                    print(f"\t Grid file:\t{self.grid_wfile}\t({self.grid_wstride} steps)")
            if self.walkers_n > 1:
                print(f"\t Walkers:\t{self.walkers_n}\t(id: {self.walkers_id})")
                print(f"\t Read stride:\t{self.walkers_rstride}")
                print(f"\t Hills dir:\t{self.walkers_dir}")
            print("\t ---------------------------------------------")

        # hills files of all walkers, read if restarting
        self.readers = []
        for i in range(self.walkers_n):
            if self.walkers_n > 1:
                fname = os.path.join(self.walkers_dir, f"{hills_file}.{i}")
            else:
                fname = hills_file
            self.readers.append(HillsReader(fname, self.cv_names, self.periodicity))
        self.is_restart = restart
        if self.is_restart:
            self.restart()
        else:
            for i, reader in enumerate(self.readers):
                if i != self.walkers_id and reader.exists():
                    reader.open()

        # only the first process writes
        self.hills_writer = None
        if self.comm.Get_rank() == 0:
            self.hills_writer = HillsWriter(
                self.readers[self.walkers_id].filename,
                self.cv_names,
                self.periodicity,
                multivariate=self.multivariate,
                bias_factor=self.bias_factor,
                append=self.is_restart,
                clock=self.walkers_n > 1,
                fmt=fmt,
            )

    def step_bias(
        self,
        traj_file: str = "CV_traj.dat",
        **kwargs,
    ) -> np.array:
        """Apply MtD bias to MD

        If the MD supplies the gradient of the CVs, the force projected to
        MD coordinates is stored in `self.bias_force`.

        Returns:
            mtd_force: force acting on the CVs (negative gradient of the bias)
        """
        (cv, grad_cv) = self.get_cv(**kwargs)
        step = self.md_state.step

        # get mtd bias force
        self.calculate(cv)
        if grad_cv is not None:
            self.bias_force = self.get_projected_force(self.mtd_force, grad_cv)
        self.update(cv, step, cv_jacobian=grad_cv, time=step * self.md_state.dt)

        # Save values for traj output
        if traj_file:
            self.traj.append((step, cv))
            self.bias_pot_traj.append(self.bias_pot)
            self.epot.append(self.md_state.epot)
            self.temp.append(self.md_state.temp)
            if step % self.out_freq == 0:
                self.write_traj(filename=traj_file)

        return np.copy(self.mtd_force)

    def calculate(self, cv: np.array) -> Tuple[float, np.array]:
        """Bias potential and force on the CVs at `cv`

        Args:
            cv: value of CV

        Returns:
            bias_pot: MtD bias potential
            mtd_force: negative gradient of the bias potential
        """
        self.bias_pot, self.bias_der = self.get_bias_and_derivatives(cv)
        self.mtd_force = -self.bias_der
        return self.bias_pot, self.mtd_force

    def get_bias_and_derivatives(self, cv: np.array) -> Tuple[float, np.array]:
        """Bias potential and its gradient from list of hills or the grid

        Args:
            cv: value of CV

        Returns:
            bias: bias potential
            der: derivative of the bias potential
        """
        cv = np.asarray(cv, dtype=float)
        if self.grid is None:
            return self.hills.bias_and_derivatives(cv, comm=self.comm)

        bias, der = self.grid.get_value_and_derivatives(cv)
        if self.interval and not self.interval[0] < cv[0] < self.interval[1]:
            der = np.zeros(self.ncoords)
        return bias, der

    def get_height(self, cv: np.array) -> float:
        """height of a new hill at `cv`, scaled down in well-tempered metadynamics"""
        height = self.hill_height
        if self.well_tempered:
            bias, _ = self.get_bias_and_derivatives(cv)
            height *= np.exp(
                -bias / (self.kb * self.equil_temp * (self.bias_factor - 1.0))
            )
        return height

    def update(
        self,
        cv: np.array,
        step: int,
        cv_jacobian: np.array = None,
        time: float = None,
    ):
        """Deposit hills, write the grid and read hills of other walkers

        Args:
            cv: value of CV
            step: MD step
            cv_jacobian: gradient of CVs, only needed for geometry based adaptive hills
            time: simulation time written to the hills file, defaults to `step`
        """
        cv = np.asarray(cv, dtype=float)
        if time is None:
            time = float(step)

        # the first step never adds a hill, also after restarts
        now_add_hill = step % self.hill_drop_freq == 0 and not self.is_first_step
        self.is_first_step = False

        # adaptive hills follow the full trajectory
        if self.flexbin is not None:
            self.flexbin.update(now_add_hill, cv, cv_jacobian)

        if now_add_hill:
            height = self.get_height(cv)
            if self.flexbin is not None:
                sigma = self.flexbin.get_inverse_matrix()
            else:
                sigma = self.hill_std
            new_hill = Kernel(cv, sigma, height, self.multivariate)
            self.add_kernel(new_hill)
            self.write_hill(new_hill, time)

        if self.grid_wstride > 0 and step % self.grid_wstride == 0:
            self.write_grid()

        if self.walkers_n > 1 and step % self.walkers_rstride == 0:
            self.shared_bias()

    def add_kernel(self, hill: Kernel):
        """Add new hill to the list of hills or to the grid

        Args:
            hill: the new hill
        """
        self.n_hills += 1
        if self.grid is None:
            self.hills.append(hill)
            return

        nneigh = kernel_support(hill, self.grid.dx)
        neighbors = self.grid.get_neighbors(hill.center, nneigh)
        points = self.grid.get_points(neighbors)

        size = self.comm.Get_size()
        if size == 1:
            bias, der = evaluate_kernel_on_points(
                points, hill, self.periodicity, self.interval
            )
        else:
            # neighbors are distributed round-robin over processes
            rank = self.comm.Get_rank()
            bias = np.zeros(len(neighbors))
            der = np.zeros((len(neighbors), self.ncoords))
            bias[rank::size], der[rank::size] = evaluate_kernel_on_points(
                points[rank::size], hill, self.periodicity, self.interval
            )
            self.comm.Sum(bias)
            self.comm.Sum(der)

        self.grid.add_value_and_derivatives(neighbors, bias, der)

    def write_hill(self, hill: Kernel, time: float):
        """append hill to the hills file, the well-tempered scaling is removed from the height"""
        if self.hills_writer is None:
            return
        height = hill.height
        if self.well_tempered:
            height *= self.bias_factor / (self.bias_factor - 1.0)
        self.hills_writer.write_hill(hill, time, height)

    def write_grid(self):
        """dump the bias grid to `self.grid_wfile`"""
        if self.comm.Get_rank() != 0:
            return
        if self.store_old_grids:
            backup_file(self.grid_wfile)
        elif os.path.isfile(self.grid_wfile):
            os.remove(self.grid_wfile)
        self.grid.write_to_file(self.grid_wfile)

    def read_hills(self, reader: HillsReader) -> int:
        """add all new hills of a hills file to the bias

        Args:
            reader: reader of the hills file

        Returns:
            nhills: number of hills read
        """
        nhills = 0
        hill = reader.scan_one_hill()
        while hill is not None:
            height = hill.height
            if self.well_tempered:
                height *= (self.bias_factor - 1.0) / self.bias_factor
            self.add_kernel(Kernel(hill.center, hill.sigma, height, hill.multivariate))
            nhills += 1
            hill = reader.scan_one_hill()
        return nhills

    def restart(self):
        """Restart MtD from the hills files of all walkers"""
        for i, reader in enumerate(self.readers):
            if not reader.exists():
                continue
            reader.open()
            nhills = self.read_hills(reader)
            if self.verbose and self.comm.Get_rank() == 0:
                print(f" >>> Info: Restarting from {reader.filename}: {nhills} Gaussians read")
            # the own file is written from now on
            if i == self.walkers_id:
                reader.close()

    def shared_bias(self):
        """Multiple walker shared-bias: read new hills from files of all other walkers

        Files of walkers that did not start yet are skipped.
        """
        for i, reader in enumerate(self.readers):
            if i == self.walkers_id:
                continue
            if not reader.is_open:
                if not reader.exists():
                    continue
                reader.open()
            nhills = self.read_hills(reader)
            if self.verbose and nhills > 0 and self.comm.Get_rank() == 0:
                print(f" >>> Info: Reading hills from {reader.filename}: {nhills} Gaussians read")

    def write_traj(self, filename="CV_traj.dat"):
        data = {
            "Epot": self.epot,
            "T": self.temp,
            "Biaspot": self.bias_pot_traj,
        }
        self._write_traj(data, filename=filename)

        # Reset trajectories to save memory
        self.traj = []
        self.epot = []
        self.temp = []
        self.bias_pot_traj = []

    def close(self):
        """close all hills files"""
        if self.hills_writer is not None:
            self.hills_writer.close()
        for reader in self.readers:
            reader.close()
