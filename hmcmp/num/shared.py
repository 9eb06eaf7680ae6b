# hmcmp/num/shared.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""Backend-independent helpers for hmcmp.num."""

from typing import Any, Callable, Optional, Union

import numpy

from hmcmp.config import get_config

Scalar = Union[int, float]
ArrayLike = Any


def get_dtype():
    return get_config().dtype_resolved


def chain_seed(seed: Optional[int], chain_id: int) -> int:
    """
    Derive the seed of chain ``chain_id`` from a user seed.

    Streams are spawned from one numpy SeedSequence, so that chains with
    distinct ids draw statistically independent streams. With
    ``seed=None`` fresh OS entropy is used.
    """
    if chain_id < 0:
        raise ValueError("chain_id must be non-negative")
    root = numpy.random.SeedSequence(seed)
    child = numpy.random.SeedSequence(root.entropy, spawn_key=(int(chain_id),))
    return int(child.generate_state(1, dtype=numpy.uint32)[0])


def dot(x: ArrayLike, y: ArrayLike) -> float:
    """Inner product of two 1-d arrays, as a Python float."""
    return float((x * y).sum())


def derivative_finite_diff(
    f: Callable[[Scalar], ArrayLike], x: Scalar, h: Scalar
) -> ArrayLike:
    """
    5-point central difference derivative of f w.r.t. scalar x.
    f(x) must return a NumPy (or similar) array/matrix/tensor.
    """
    f_x_p2 = f(x + 2 * h)
    f_x_p1 = f(x + h)
    f_x_m1 = f(x - h)
    f_x_m2 = f(x - 2 * h)
    return (-f_x_p2 + 8 * f_x_p1 - 8 * f_x_m1 + f_x_m2) / (12.0 * h)
