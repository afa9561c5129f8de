from .enhanced_sampling import *
from .metadynamics import *
from .kernels import *
from .grid import *
from .flexible_bin import *
from .hills_file import *
from .parallel import *
from .utils import *

__all__ = [
    "EnhancedSampling",
    "MetaD",
    "Kernel",
    "HillsList",
    "Grid",
    "SparseGrid",
    "FlexibleBin",
    "HillsWriter",
    "HillsReader",
    "SerialComm",
    "MPIComm",
]
