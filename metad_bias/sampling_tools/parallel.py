import numpy as np


class SerialComm:
    """Process group of a single process, all reductions are the identity"""

    def Get_rank(self) -> int:
        return 0

    def Get_size(self) -> int:
        return 1

    def Sum(self, data: np.ndarray) -> np.ndarray:
        return data


class MPIComm:
    """Process group of cooperating MPI processes that share one bias replica

    Args:
        comm: mpi4py communicator, defaults to MPI.COMM_WORLD
    """

    def __init__(self, comm=None):
        from mpi4py import MPI

        self._MPI = MPI
        self.comm = comm if comm is not None else MPI.COMM_WORLD
        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()

    def Get_rank(self) -> int:
        return self.rank

    def Get_size(self) -> int:
        return self.size

    def Sum(self, data: np.ndarray) -> np.ndarray:
        """in-place sum of a float array over all processes"""
        if self.size > 1:
            self.comm.Allreduce(self._MPI.IN_PLACE, data, op=self._MPI.SUM)
        return data
