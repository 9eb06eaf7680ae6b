# hmcmp/num/__init__.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""
Array API used by the sampler, dispatched to numpy or torch.

Import as ``import hmcmp.num as gnp``. Every backend module provides the
names listed in ``_BACKEND_API``; the sampler code uses nothing else, so
that positions, momenta and gradients stay native backend arrays.
"""

from hmcmp.config import init_backend

from . import shared as _shared

_BACKEND_API = (
    # arrays
    "ndarray", "array", "asarray", "copy", "reshape", "stack", "zeros", "ones",
    "eye", "zeros_like", "ones_like", "diag", "outer", "matmul",
    # elementwise and reductions
    "where", "abs", "sqrt", "exp", "log", "clip", "minimum", "maximum",
    "sum", "mean", "all", "isnan", "isinf", "isfinite", "allclose",
    # linear algebra
    "cholesky", "solve_upper_triangular",
    # conversions
    "to_np", "to_scalar", "isarray", "isscalar",
    # constants
    "pi", "inf", "eps", "fmax", "finfo",
    # gradients
    "value_and_grad",
    # randomness
    "default_rng", "rand", "randn", "uniform",
)

_hmcmp_backend_ = init_backend()

if _hmcmp_backend_ == "numpy":
    from . import numpy_backend as _backend
elif _hmcmp_backend_ == "torch":
    from . import torch_backend as _backend
else:
    raise RuntimeError(
        "Please set the HMCMP_BACKEND environment variable to 'numpy' or 'torch'."
    )

_missing = [name for name in _BACKEND_API if not hasattr(_backend, name)]
if _missing:
    raise ImportError(f"backend {_hmcmp_backend_!r} does not provide {_missing}")

for _name in _BACKEND_API:
    globals()[_name] = getattr(_backend, _name)

# Backend-independent helpers.
get_dtype = _shared.get_dtype
chain_seed = _shared.chain_seed
dot = _shared.dot
derivative_finite_diff = _shared.derivative_finite_diff

__all__ = list(_BACKEND_API) + ["get_dtype", "chain_seed", "dot", "derivative_finite_diff"]
