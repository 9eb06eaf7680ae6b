# hmcmp/num/numpy_backend.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""NumPy numerical backend for HMCmp.

This module defines the NumPy implementation of the hmcmp.num API.
Gradients of plain log-density functions are obtained by finite
differences; supply an analytic gradient for anything beyond small
dimensions.
"""

from typing import Any, Callable, Optional, Tuple, Union
from hmcmp.config import get_config, init_backend, get_logger
from .shared import derivative_finite_diff

Scalar = Union[int, float]
ArrayLike = Any

_hmcmp_backend_: str = init_backend()
_config = get_config()
_logger = get_logger()
_logger.debug("Using backend: %s", _hmcmp_backend_)


# -----------------------------------------------------
#
#                      NUMPY
#
# -----------------------------------------------------

import numpy
from numpy.typing import NDArray

_np_dtype = numpy.float64
_config.dtype_resolved = _np_dtype

ndarray = NDArray[numpy.floating]
from numpy import (
    copy,
    reshape,
    where,
    isscalar,
    isnan,
    isinf,
    isfinite,
    allclose,
    stack,
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
from numpy.linalg import cholesky
from numpy import pi, inf
from numpy import finfo
from scipy.linalg import solve_triangular

# ..................................................

eps = finfo(_np_dtype).eps
fmax = numpy.finfo(_np_dtype).max

# ..................................................


def array(x, dtype=None):
    if dtype is not None:
        return numpy.array(x, dtype=dtype)
    out = numpy.array(x)
    if numpy.issubdtype(out.dtype, numpy.floating) or numpy.issubdtype(
        out.dtype, numpy.integer
    ):
        return out.astype(_np_dtype, copy=False)
    return out


def asarray(x, dtype=None):
    if dtype is not None:
        return numpy.asarray(x, dtype=dtype)
    if isinstance(x, numpy.ndarray):
        if numpy.issubdtype(x.dtype, numpy.floating):
            return x.astype(_np_dtype, copy=False)
        return x
    out = numpy.asarray(x)
    if numpy.issubdtype(out.dtype, numpy.floating) or numpy.issubdtype(
        out.dtype, numpy.integer
    ):
        return out.astype(_np_dtype, copy=False)
    return out


def zeros(shape, dtype=None):
    return numpy.zeros(shape, dtype=_np_dtype if dtype is None else dtype)


def ones(shape, dtype=None):
    return numpy.ones(shape, dtype=_np_dtype if dtype is None else dtype)


def eye(n, dtype=None):
    return numpy.eye(n, dtype=_np_dtype if dtype is None else dtype)


def clip(x, min=None, max=None):
    return numpy.clip(x, min, max)


def to_np(x):
    return numpy.asarray(x)


def to_scalar(x):
    return x.item()


def isarray(x):
    return isinstance(x, numpy.ndarray)


def solve_upper_triangular(U, b):
    return solve_triangular(U, b, lower=False)


# ..................................................


def value_and_grad(
    f: Callable[[ArrayLike], ArrayLike],
    x: ArrayLike,
    *,
    h: float = 1e-5,
) -> Tuple[ArrayLike, ArrayLike]:
    """Returns (y, grad_y) where y = f(x) is scalar.  Uses
    derivative_finite_diff on each coordinate (expects scalar
    input).

    """

    def _coerce_scalar_like(y_):
        if isscalar(y_):
            return y_
        if isarray(y_):
            if y_.ndim == 0:
                return y_
            if y_.size == 1:
                return reshape(y_, ())
        raise ValueError("f(x) must return a scalar.")

    y = _coerce_scalar_like(f(x))
    grad = zeros_like(x, dtype=_np_dtype)
    if not numpy.isfinite(y):
        return y, grad
    x_tmp = x.copy()
    for idx in range(x.shape[0]):
        xi = x[idx]

        def f_i(xi_scalar):
            x_tmp[idx] = xi_scalar
            return _coerce_scalar_like(f(x_tmp))

        grad[idx] = derivative_finite_diff(f_i, xi, h)
        x_tmp[idx] = x[idx]  # restore
    return y, grad


# ..................................................
# Randomness. Generators are explicit: each chain owns one.


def default_rng(seed: Optional[int] = None) -> numpy.random.Generator:
    return numpy.random.default_rng(seed)


def rand(rng: numpy.random.Generator, *shape: int) -> ArrayLike:
    return rng.random(shape, dtype=_np_dtype)


def randn(rng: numpy.random.Generator, *shape: int) -> ArrayLike:
    return rng.standard_normal(shape, dtype=_np_dtype)


def uniform(rng: numpy.random.Generator) -> float:
    """One U(0, 1) draw as a Python float."""
    return float(rng.random())
