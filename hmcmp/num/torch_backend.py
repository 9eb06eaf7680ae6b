# hmcmp/num/torch_backend.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""Torch numerical backend for HMCmp.

This module defines the Torch implementation of the hmcmp.num API.
Gradients of plain log-density functions are obtained with autograd.
"""

from typing import Any, Callable, Optional, Tuple, Union
from hmcmp.config import get_config, init_backend, get_logger

Scalar = Union[int, float]
ArrayLike = Any

_hmcmp_backend_: str = init_backend()
_config = get_config()
_logger = get_logger()
_logger.debug("Using backend: %s", _hmcmp_backend_)


# -----------------------------------------------------
#
#                      TORCH
#
# -----------------------------------------------------

import torch
import numpy

_torch_dtype = torch.float64
torch.set_default_dtype(_torch_dtype)
_config.dtype_resolved = _torch_dtype

TensorLike = Union[torch.Tensor, float, int]

from torch import is_tensor

ndarray = torch.Tensor

from torch import (
    reshape,
    where,
    isnan,
    isinf,
    isfinite,
    allclose,
    zeros_like,
    ones_like,
    diag,
    abs,
    sqrt,
    exp,
    log,
    sum,
    mean,
    minimum,
    maximum,
    outer,
    matmul,
    all,
)
from torch.linalg import cholesky
from torch import pi, inf
from torch import finfo

# ..................................................

eps = finfo(_torch_dtype).eps
fmax = finfo(_torch_dtype).max


def stack(arrays, axis=0):
    return torch.stack(list(arrays), dim=axis)


def copy(x):
    return torch.clone(x)


def isscalar(x):
    if torch.is_tensor(x):
        return x.reshape(-1).size()[0] == 1
    elif isinstance(x, (int, float)):
        return True
    else:
        return False


def clip(x, min=None, max=None):
    return torch.clamp(asarray(x), min=min, max=max)


def _resolve_torch_dtype(dtype):
    if dtype is None:
        return None
    if isinstance(dtype, torch.dtype):
        return dtype
    if dtype is float:
        return _torch_dtype
    if dtype is int:
        return torch.long
    if dtype is bool:
        return torch.bool
    s = str(dtype).lower()
    if "float32" in s:
        return torch.float32
    if "float64" in s or "double" in s:
        return torch.float64
    if "int64" in s or "long" in s:
        return torch.int64
    if "int32" in s:
        return torch.int32
    if "bool" in s:
        return torch.bool
    return dtype


def asarray(x, dtype=None):
    dtype = _resolve_torch_dtype(dtype)
    if isinstance(x, torch.Tensor):
        if dtype is not None:
            return x if x.dtype == dtype else x.to(dtype=dtype)
        if x.dtype != _torch_dtype and x.dtype != torch.bool:
            return x.to(dtype=_torch_dtype)
        return x
    if isinstance(x, numpy.ndarray):
        try:
            x_ = torch.from_numpy(x)
        except (TypeError, ValueError):
            x_ = torch.as_tensor(x)
        if dtype is not None:
            return x_ if x_.dtype == dtype else x_.to(dtype=dtype)
        if x_.dtype != _torch_dtype and x_.dtype != torch.bool:
            return x_.to(dtype=_torch_dtype)
        return x_
    x_ = torch.as_tensor(x)
    if dtype is not None:
        return x_ if x_.dtype == dtype else x_.to(dtype=dtype)
    if x_.dtype != _torch_dtype and x_.dtype != torch.bool:
        x_ = x_.to(dtype=_torch_dtype)
    return x_


def array(x, dtype=None):
    return torch.clone(asarray(x, dtype=dtype))


def zeros(shape, dtype=None):
    return torch.zeros(shape, dtype=_resolve_torch_dtype(dtype) or _torch_dtype)


def ones(shape, dtype=None):
    return torch.ones(shape, dtype=_resolve_torch_dtype(dtype) or _torch_dtype)


def eye(n, dtype=None):
    return torch.eye(n, dtype=_resolve_torch_dtype(dtype) or _torch_dtype)


def to_np(x):
    if is_tensor(x):
        return x.detach().cpu().numpy()
    return numpy.asarray(x)


def to_scalar(x):
    return x.item()


def isarray(x):
    return torch.is_tensor(x)


def solve_upper_triangular(U, b):
    x = torch.linalg.solve_triangular(U, b.reshape(-1, 1), upper=True)
    return x.reshape(-1)


# ..................................................


def value_and_grad(f: Callable[[ArrayLike], ArrayLike], x: ArrayLike):
    # Returns (y, grady) with y = f(x)
    with torch.enable_grad():
        x_ = asarray(x).detach().requires_grad_(True)
        y = f(x_)
        if not torch.is_tensor(y):
            raise ValueError("f(x) must return a torch scalar tensor.")
        if y.ndim != 0:
            if y.numel() == 1:
                y = y.reshape(())
            else:
                raise ValueError("f(x) must return a scalar.")
        if not torch.isfinite(y):
            return y.detach(), torch.zeros_like(x_).detach()
        (g,) = torch.autograd.grad(y, x_, create_graph=False, allow_unused=True)
        if g is None:
            g = torch.zeros_like(x_)
    return y.detach(), g.detach()


# ..................................................
# Randomness. Generators are explicit: each chain owns one.


def default_rng(seed: Optional[int] = None) -> torch.Generator:
    gen = torch.Generator()
    if seed is None:
        gen.seed()
    else:
        gen.manual_seed(int(seed))
    return gen


def rand(rng: torch.Generator, *shape: int) -> ArrayLike:
    return torch.rand(shape, generator=rng, dtype=_torch_dtype)


def randn(rng: torch.Generator, *shape: int) -> ArrayLike:
    return torch.randn(shape, generator=rng, dtype=_torch_dtype)


def uniform(rng: torch.Generator) -> float:
    """One U(0, 1) draw as a Python float."""
    return float(torch.rand((), generator=rng, dtype=_torch_dtype))
