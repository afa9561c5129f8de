from . import units
from .sampling_tools import MetaD
from .interface import SamplingData

__version__ = "1.0.0"
