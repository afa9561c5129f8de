import itertools
import numpy as np
from typing import Tuple

from .utils import correct_periodicity, parse_bound


class Grid:
    """Dense grid of a scalar function and its derivatives in CV space

    Non-periodic dimensions hold `nbins + 1` nodes (the upper boundary is a node),
    periodic dimensions hold `nbins` nodes. Nodes are stored with the first
    dimension running fastest.

    Args:
        names: names of the CVs
        gmin: lower boundaries of the grid
        gmax: upper boundaries of the grid
        nbins: number of bins per dimension
        periodic: periodicity flag per dimension
        spline: use cubic Hermite interpolation between nodes,
                else the value of the lower node is returned
        label: name of the stored function in grid files
    """

    def __init__(
        self,
        names: list,
        gmin: np.ndarray,
        gmax: np.ndarray,
        nbins: np.ndarray,
        periodic: np.ndarray = None,
        spline: bool = True,
        label: str = "metad.bias",
    ):
        self.names = list(names)
        self.dimension = len(self.names)
        self.min = np.asarray(gmin, dtype=float).reshape(-1)
        self.max = np.asarray(gmax, dtype=float).reshape(-1)
        self.nbin = np.asarray(nbins, dtype=int).reshape(-1)
        self.pbc = (
            np.zeros(self.dimension, dtype=bool)
            if periodic is None
            else np.asarray(periodic, dtype=bool).reshape(-1)
        )
        self.use_spline = spline
        self.label = label

        for arr in (self.min, self.max, self.nbin, self.pbc):
            if len(arr) != self.dimension:
                raise ValueError(
                    f" >>> Error: Grid needs {self.dimension} values for min, max, bins and periodicity!"
                )
        if (self.max <= self.min).any():
            raise ValueError(" >>> Error: Grid maximum has to be larger than minimum!")
        if (self.nbin <= 0).any():
            raise ValueError(" >>> Error: Number of grid bins has to be > 0!")

        self.dx = (self.max - self.min) / self.nbin
        self.npoints = np.where(self.pbc, self.nbin, self.nbin + 1)
        self.strides = np.concatenate(([1], np.cumprod(self.npoints)[:-1])).astype(int)
        self.size = int(np.prod(self.npoints))
        self._init_storage()

    def _init_storage(self):
        self.values = np.zeros(self.size)
        self.derivatives = np.zeros((self.size, self.dimension))

    # node access, overwritten by SparseGrid
    def get_node(self, index: int) -> Tuple[float, np.ndarray]:
        return self.values[index], self.derivatives[index]

    def set_node(self, index: int, value: float, der: np.ndarray):
        self.values[index] = value
        self.derivatives[index] = der

    def add_value_and_derivatives(
        self, index: np.ndarray, value: np.ndarray, der: np.ndarray
    ):
        """add values and derivatives to nodes

        Args:
            index: flat node index or array of indices
            value: value(s) to add
            der: derivative(s) to add, shape (dimension,) or (n, dimension)
        """
        index = np.atleast_1d(np.asarray(index, dtype=int))
        np.add.at(self.values, index, np.atleast_1d(value))
        np.add.at(
            self.derivatives, index, np.asarray(der).reshape((-1, self.dimension))
        )

    def get_index(self, indices: np.ndarray) -> int:
        """flat index of a node from its multi-dimensional indices"""
        return int(np.dot(np.asarray(indices, dtype=int), self.strides))

    def get_indices(self, x: np.ndarray) -> np.ndarray:
        """multi-dimensional indices of the node below point `x` (or of a flat index)

        Raises:
            ValueError: if x is outside of a non-periodic dimension
        """
        if np.ndim(x) == 0 and isinstance(x, (int, np.integer)):
            return (int(x) // self.strides) % self.npoints

        x = np.asarray(x, dtype=float).reshape(-1)
        indices = self._raw_indices(x)
        if (~self.pbc & ((indices < 0) | (indices >= self.npoints))).any():
            raise ValueError(
                f" >>> Error: Point {x} is outside of the grid [{self.min}, {self.max}]!"
            )
        return indices

    def _raw_indices(self, x: np.ndarray) -> np.ndarray:
        indices = np.floor((x - self.min) / self.dx).astype(int)
        return np.where(self.pbc, np.mod(indices, self.npoints), indices)

    def get_point(self, index) -> np.ndarray:
        """coordinates of a node given as flat index or multi-dimensional indices"""
        if np.ndim(index) == 0:
            index = self.get_indices(int(index))
        return self.min + np.asarray(index) * self.dx

    def get_points(self, index: np.ndarray = None) -> np.ndarray:
        """coordinates of nodes, shape (n, dimension)

        Args:
            index: flat node indices, all nodes in storage order if None
        """
        if index is None:
            index = np.arange(self.size)
        index = np.asarray(index, dtype=int).reshape(-1)
        indices = (index[:, np.newaxis] // self.strides) % self.npoints
        return self.min + indices * self.dx

    def get_neighbors(self, x: np.ndarray, nneigh: np.ndarray) -> np.ndarray:
        """flat indices of all nodes within `nneigh` nodes of the point `x`

        Periodic dimensions wrap around, nodes outside of non-periodic dimensions are dropped.
        The point itself does not have to be on the grid.

        Args:
            x: center of the neighborhood
            nneigh: number of nodes in each direction per dimension

        Returns:
            neighbors: flat node indices
        """
        x = np.asarray(x, dtype=float).reshape(-1).copy()
        for j in range(self.dimension):
            if self.pbc[j]:
                x[j] = correct_periodicity(x[j], [self.min[j], self.max[j]])
        center = self._raw_indices(x)

        axes = []
        for j in range(self.dimension):
            idx = center[j] + np.arange(-int(nneigh[j]), int(nneigh[j]) + 1)
            if self.pbc[j]:
                idx = np.mod(idx, self.npoints[j])
                if len(idx) > self.npoints[j]:
                    idx = np.unique(idx)
            else:
                idx = idx[(idx >= 0) & (idx < self.npoints[j])]
            axes.append(idx)

        mesh = np.meshgrid(*axes, indexing="ij")
        return np.sum(
            [m.ravel() * self.strides[j] for j, m in enumerate(mesh)], axis=0
        ).astype(int)

    def get_value(self, x: np.ndarray) -> float:
        return self.get_value_and_derivatives(x)[0]

    def get_value_and_derivatives(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        """Interpolated value and gradient at point `x`

        With splines, the cubic Hermite basis of every one of the 2^dimension
        nodes enclosing `x` is built from the node value and its derivatives.

        Args:
            x: point in CV space

        Returns:
            value: function value
            der: derivatives of the function
        """
        x = np.asarray(x, dtype=float).reshape(-1).copy()
        for j in range(self.dimension):
            if self.pbc[j]:
                x[j] = correct_periodicity(x[j], [self.min[j], self.max[j]])
        indices = self.get_indices(x)

        if not self.use_spline:
            value, der = self.get_node(self.get_index(indices))
            return float(value), np.array(der, dtype=float)

        xfloor = self.get_point(indices)
        value = 0.0
        der = np.zeros(self.dimension)
        C = np.zeros(self.dimension)
        D = np.zeros(self.dimension)
        for corner in itertools.product((0, 1), repeat=self.dimension):
            nindices = indices + np.asarray(corner)
            nindices = np.where(self.pbc, np.mod(nindices, self.npoints), nindices)
            if (nindices >= self.npoints).any():
                continue
            grid_value, dder = self.get_node(self.get_index(nindices))

            for j in range(self.dimension):
                x0 = corner[j]
                sign = -1.0 if x0 else 1.0
                X = abs((x[j] - xfloor[j]) / self.dx[j] - x0)
                X2 = X * X
                X3 = X2 * X
                yy = 0.0 if abs(grid_value) < 1.0e-7 else -dder[j] / grid_value
                C[j] = (1.0 - 3.0 * X2 + 2.0 * X3) - sign * yy * (
                    X - 2.0 * X2 + X3
                ) * self.dx[j]
                D[j] = (-6.0 * X + 6.0 * X2) - sign * yy * (
                    1.0 - 4.0 * X + 3.0 * X2
                ) * self.dx[j]
                D[j] *= sign / self.dx[j]

            value += grid_value * np.prod(C)
            for j in range(self.dimension):
                der[j] += grid_value * D[j] * np.prod(np.delete(C, j))

        return value, der

    def write_to_file(self, filename: str, fmt: str = "%20.12e"):
        """write the grid to file in the PLUMED grid format

        Args:
            filename: name of the grid file
            fmt: number format
        """
        points = self.get_points()
        with open(filename, "w") as fout:
            fields = " ".join(self.names + [self.label] + [f"der_{n}" for n in self.names])
            fout.write(f"#! FIELDS {fields}\n")
            for j, name in enumerate(self.names):
                fout.write(f"#! SET min_{name} {float(self.min[j])!r}\n")
                fout.write(f"#! SET max_{name} {float(self.max[j])!r}\n")
                fout.write(f"#! SET nbins_{name} {self.nbin[j]}\n")
                fout.write(f"#! SET periodic_{name} {'true' if self.pbc[j] else 'false'}\n")

            for i in range(self.size):
                if self.dimension > 1 and i > 0 and i % self.npoints[0] == 0:
                    fout.write("\n")
                value, der = self.get_node(i)
                row = list(points[i]) + [value] + list(der)
                fout.write(" ".join(fmt % v for v in row) + "\n")

    @classmethod
    def read_from_file(cls, filename: str, spline: bool = True):
        """restore a grid from a file written by `write_to_file`

        Args:
            filename: name of the grid file
            spline: interpolation mode of the new grid

        Returns:
            grid: new grid with values and derivatives from file
        """
        try:
            with open(filename, "r") as fin:
                lines = fin.readlines()
        except OSError as e:
            raise OSError(f" >>> Error: grid file {filename} could not be read!") from e

        fields, settings, data = None, {}, []
        for line in lines:
            words = line.split()
            if not words:
                continue
            if words[0] == "#!":
                if words[1] == "FIELDS":
                    fields = words[2:]
                elif words[1] == "SET":
                    settings[words[2]] = words[3]
                continue
            data.append([float(w) for w in words])
        if fields is None:
            raise ValueError(f" >>> Error: No FIELDS header in grid file {filename}!")

        ndim = (len(fields) - 1) // 2
        names = fields[:ndim]
        try:
            gmin = [parse_bound(settings[f"min_{n}"]) for n in names]
            gmax = [parse_bound(settings[f"max_{n}"]) for n in names]
            nbins = [int(settings[f"nbins_{n}"]) for n in names]
            periodic = [settings[f"periodic_{n}"] == "true" for n in names]
        except KeyError as e:
            raise ValueError(
                f" >>> Error: Missing {e.args[0]} in header of grid file {filename}!"
            ) from e

        grid = cls(names, gmin, gmax, nbins, periodic, spline=spline, label=fields[ndim])
        for row in data:
            x = np.asarray(row[:ndim])
            indices = np.rint((x - grid.min) / grid.dx).astype(int)
            indices = np.where(grid.pbc, np.mod(indices, grid.npoints), indices)
            grid.set_node(grid.get_index(indices), row[ndim], np.asarray(row[ndim + 1 : 2 * ndim + 1]))
        return grid


class SparseGrid(Grid):
    """Grid that only stores nodes which received a contribution

    Nodes that were never touched have value 0 and zero derivatives.
    """

    def _init_storage(self):
        self.nodes = {}

    def get_node(self, index: int) -> Tuple[float, np.ndarray]:
        if index in self.nodes:
            return self.nodes[index]
        return 0.0, np.zeros(self.dimension)

    def set_node(self, index: int, value: float, der: np.ndarray):
        self.nodes[int(index)] = (float(value), np.array(der, dtype=float))

    def add_value_and_derivatives(
        self, index: np.ndarray, value: np.ndarray, der: np.ndarray
    ):
        index = np.atleast_1d(np.asarray(index, dtype=int))
        value = np.broadcast_to(np.atleast_1d(value), index.shape)
        der = np.asarray(der).reshape((-1, self.dimension))
        for i, idx in enumerate(index):
            old_value, old_der = self.get_node(int(idx))
            self.nodes[int(idx)] = (old_value + value[i], old_der + der[i])

    @property
    def values(self) -> np.ndarray:
        values = np.zeros(self.size)
        for idx, (value, _) in self.nodes.items():
            values[idx] = value
        return values
