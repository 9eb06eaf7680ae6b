# hmcmp/config.py
"""
Process-wide settings: package version, numerical backend and logger.

The backend is chosen once, before hmcmp.num is first imported, from the
HMCMP_BACKEND environment variable ('numpy' or 'torch'). Without it, torch
is used when installed. The log level of the "hmcmp" logger can be set
through HMCMP_LOG_LEVEL (e.g. DEBUG) or set_log_level().
"""
import os
import logging
from importlib.util import find_spec

_BACKENDS = ("numpy", "torch")
_LOG_FORMAT = "[%(levelname)s] %(message)s"


def _read_version():
    path = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "VERSION"))
    try:
        with open(path, "r") as f:
            return f.read().strip()
    except FileNotFoundError:
        return "0.0.0"


def _make_logger(level):
    logger = logging.getLogger("hmcmp")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


class _HMCMPConfig:
    """Settings shared by every chain of the process.

    Attributes
    ----------
    version : str
    backend : str or None
        'numpy' or 'torch'; None until init_backend() runs.
    dtype_resolved : dtype or None
        Floating point type of the backend arrays, set by the backend module.
    logger : logging.Logger
    """

    def __init__(self):
        self.version = _read_version()
        self.backend = None
        self.dtype_resolved = None
        self.logger = _make_logger(os.environ.get("HMCMP_LOG_LEVEL", "INFO").upper())

    def __repr__(self):
        return (
            f"<HMCMPConfig version={self.version!r}, backend={self.backend!r}, "
            f"dtype={self.dtype_resolved!r}, "
            f"log_level={logging.getLevelName(self.logger.level)}>"
        )


_config = _HMCMPConfig()


def get_config():
    return _config


def _detect_backend():
    requested = os.environ.get("HMCMP_BACKEND")
    if requested:
        if requested not in _BACKENDS:
            raise ValueError(f"HMCMP_BACKEND must be one of {_BACKENDS}, got {requested!r}")
        return requested
    return "torch" if find_spec("torch") is not None else "numpy"


def init_backend():
    """Select the backend on first call; later calls return the same choice."""
    if _config.backend is None:
        _config.backend = _detect_backend()
        os.environ["HMCMP_BACKEND"] = _config.backend
    return _config.backend


def set_backend(backend: str):
    """Force a backend. Only effective before hmcmp.num is imported."""
    if backend not in _BACKENDS:
        raise ValueError(f"backend must be one of {_BACKENDS}")
    _config.backend = backend
    os.environ["HMCMP_BACKEND"] = backend


def get_backend():
    return init_backend()


def get_logger():
    return _config.logger


def set_log_level(level):
    """Set the level of the "hmcmp" logger (name or logging constant)."""
    if isinstance(level, str):
        level = level.upper()
    _config.logger.setLevel(level)
