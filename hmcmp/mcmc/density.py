# hmcmp/mcmc/density.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""
Log-density adapter consumed by the sampler.

The sampler only needs one capability from a model: given an unconstrained
parameter vector q of shape (dim,), return the log density and its gradient.
A model may provide both itself (``LogDensity(value_and_grad, dim)``) or
provide the log density only, in which case the gradient comes from the
numerical backend (``LogDensity.from_log_prob``): torch autograd, or
5-point finite differences with numpy.
"""

from __future__ import annotations

import math
from typing import Callable, Tuple

import hmcmp.num as gnp

ArrayLike = any  # Placeholder for unified array type


class NonFiniteDensityError(ArithmeticError):
    """The log density or its gradient is not finite at the requested point."""


class LogDensity:
    """Log density and gradient of a model on R^dim."""

    def __init__(
        self,
        value_and_grad: Callable[[ArrayLike], Tuple[ArrayLike, ArrayLike]],
        dim: int,
        name: str = "log_density",
    ):
        if int(dim) <= 0:
            raise ValueError("dim must be a positive integer")
        self._value_and_grad = value_and_grad
        self.dim = int(dim)
        self.name = name

    @classmethod
    def from_log_prob(
        cls, log_prob: Callable[[ArrayLike], ArrayLike], dim: int, name: str = None
    ) -> "LogDensity":
        def value_and_grad(q):
            return gnp.value_and_grad(log_prob, q)

        return cls(value_and_grad, dim, name=name or getattr(log_prob, "__name__", "log_prob"))

    def __repr__(self):
        return f"LogDensity(name={self.name!r}, dim={self.dim})"

    def __call__(self, q: ArrayLike) -> Tuple[float, ArrayLike]:
        return self.evaluate(q)

    def evaluate(self, q: ArrayLike) -> Tuple[float, ArrayLike]:
        """Return (log density, gradient) at q.

        Raises NonFiniteDensityError when either is not finite, or when the
        model raises an arithmetic or domain error at q.
        """
        q = gnp.asarray(q)
        try:
            value, grad = self._value_and_grad(q)
        except ArithmeticError as e:
            raise NonFiniteDensityError(
                f"{self.name} failed at the requested point: {e}"
            ) from e
        except ValueError as e:
            # math.log(-1.0) and friends; other ValueErrors are model bugs
            if "math domain error" not in str(e):
                raise
            raise NonFiniteDensityError(
                f"{self.name} is outside its domain at the requested point"
            ) from e

        value = float(value)
        grad = gnp.reshape(gnp.asarray(grad), (-1,))
        if grad.shape[0] != self.dim:
            raise ValueError(
                f"{self.name} returned a gradient of size {grad.shape[0]}, "
                f"expected {self.dim}"
            )
        if not math.isfinite(value):
            raise NonFiniteDensityError(f"{self.name} is not finite ({value})")
        if not bool(gnp.all(gnp.isfinite(grad))):
            raise NonFiniteDensityError(f"gradient of {self.name} is not finite")
        return value, grad

    def is_finite_at(self, q: ArrayLike) -> bool:
        try:
            self.evaluate(q)
        except NonFiniteDensityError:
            return False
        return True
