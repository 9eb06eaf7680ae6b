# hmcmp/__init__.py

from . import config
from . import num
from . import mcmc
from .mcmc import LogDensity, NUTSOptions, nuts_sample
import os

__all__ = ["num", "mcmc", "LogDensity", "NUTSOptions", "nuts_sample", "__version__"]

# Read version from VERSION file at project root
_version_file = os.path.join(os.path.dirname(__file__), "..", "VERSION")
try:
    with open(_version_file, "r") as f:
        __version__ = f.read().strip()
except FileNotFoundError:
    __version__ = "0.0.0"
