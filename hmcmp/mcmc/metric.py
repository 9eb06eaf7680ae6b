# hmcmp/mcmc/metric.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""
Euclidean metrics and their online adaptation.

The metric is stored through its inverse M^{-1}, which is an estimate of the
posterior covariance. Three kinds are supported:
  "unit"  : M^{-1} = I, never adapted,
  "diag"  : M^{-1} = diag(inv_metric), inv_metric of shape (dim,),
  "dense" : M^{-1} = inv_metric, of shape (dim, dim).

Momentum is sampled as p ~ N(0, M):
  diag  : p = z / sqrt(inv_metric),
  dense : p = L^{-T} z with M^{-1} = L L^T,
with z ~ N(0, I).

Adaptation uses Welford's online algorithm [1]: for each new draw x,
  n += 1, delta = x - mean, mean += delta / n, m2 += delta * (x - mean)
(outer product for the dense kind), and var = m2 / (n - 1). The estimate
returned to the sampler is shrunk toward a scaled identity,
  n / (n + w) * var + scale * w / (n + w),
which keeps the metric well conditioned after short windows.

[1] B. P. Welford (1962). "Note on a method for calculating corrected sums of
    squares and products." Technometrics 4(3):419-420.
"""

from __future__ import annotations

import hmcmp.num as gnp

ArrayLike = any  # Placeholder for unified array type

METRIC_KINDS = ("unit", "diag", "dense")


class EuclideanMetric:
    """Kinetic energy K(p) = 1/2 p^T M^{-1} p for a fixed M."""

    def __init__(self, kind: str, inv_metric: ArrayLike):
        if kind not in METRIC_KINDS:
            raise ValueError(f"metric kind must be one of {METRIC_KINDS}, got {kind!r}")
        inv_metric = gnp.asarray(inv_metric)
        if kind == "dense":
            if inv_metric.ndim != 2 or inv_metric.shape[0] != inv_metric.shape[1]:
                raise ValueError("a dense metric needs a square (dim, dim) matrix")
            # Lower factor of M^{-1}, computed once per metric.
            self._chol = gnp.cholesky(inv_metric)
        else:
            if inv_metric.ndim != 1:
                raise ValueError(f"a {kind} metric needs a (dim,) vector")
            if not bool(gnp.all(inv_metric > 0.0)):
                raise ValueError("inverse metric entries must be positive")
            self._chol = None
        self.kind = kind
        self.inv_metric = inv_metric

    @classmethod
    def identity(cls, dim: int, kind: str = "diag") -> "EuclideanMetric":
        if kind == "dense":
            return cls(kind, gnp.eye(dim))
        return cls(kind, gnp.ones(dim))

    @property
    def dim(self) -> int:
        return self.inv_metric.shape[0]

    def __repr__(self):
        return f"EuclideanMetric(kind={self.kind!r}, dim={self.dim})"

    def velocity(self, p: ArrayLike) -> ArrayLike:
        """dK/dp = M^{-1} p."""
        if self.kind == "dense":
            return gnp.matmul(self.inv_metric, p)
        return self.inv_metric * p

    def kinetic(self, p: ArrayLike) -> float:
        return 0.5 * gnp.dot(p, self.velocity(p))

    def sample_momentum(self, rng) -> ArrayLike:
        z = gnp.randn(rng, self.dim)
        if self.kind == "dense":
            return gnp.solve_upper_triangular(self._chol.T, z)
        return z / gnp.sqrt(self.inv_metric)


class MassMatrixAdapter:
    """Running (co)variance estimate of the draws seen in one warmup window."""

    def __init__(
        self,
        dim: int,
        kind: str = "diag",
        regularization_scale: float = 5e-3,
        regularization_weight: float = 5.0,
    ):
        if kind not in METRIC_KINDS:
            raise ValueError(f"metric kind must be one of {METRIC_KINDS}, got {kind!r}")
        self.dim = int(dim)
        self.kind = kind
        self.regularization_scale = float(regularization_scale)
        self.regularization_weight = float(regularization_weight)
        self._frozen = False
        self.reset()

    def reset(self) -> None:
        """Discard the statistics accumulated so far."""
        self.n = 0
        self.mean = gnp.zeros(self.dim)
        if self.kind == "dense":
            self.m2 = gnp.zeros((self.dim, self.dim))
        else:
            self.m2 = gnp.zeros(self.dim)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def observe(self, x: ArrayLike) -> None:
        if self._frozen:
            raise RuntimeError("mass matrix adaptation is frozen")
        if x.shape != (self.dim,):
            raise ValueError(f"expected a draw of shape ({self.dim},), got {tuple(x.shape)}")
        if self.kind == "unit":
            self.n += 1
            return
        self.n += 1
        delta = x - self.mean
        self.mean = self.mean + delta / self.n
        delta2 = x - self.mean
        if self.kind == "dense":
            self.m2 = self.m2 + gnp.outer(delta, delta2)
        else:
            self.m2 = self.m2 + delta * delta2

    def covariance(self) -> ArrayLike:
        """Unregularized sample (co)variance; identity below two draws."""
        if self.kind == "unit" or self.n < 2:
            return gnp.eye(self.dim) if self.kind == "dense" else gnp.ones(self.dim)
        if self.kind == "dense":
            return 0.5 * (self.m2 + self.m2.T) / (self.n - 1)
        return self.m2 / (self.n - 1)

    def current_matrix(self) -> ArrayLike:
        """Regularized inverse metric estimate."""
        if self.kind == "unit" or self.n < 2:
            return self.covariance()
        n = float(self.n)
        w = self.regularization_weight
        shrink = self.regularization_scale * (w / (n + w))
        est = (n / (n + w)) * self.covariance()
        if self.kind == "dense":
            return est + shrink * gnp.eye(self.dim)
        return est + shrink

    def current_metric(self) -> EuclideanMetric:
        return EuclideanMetric(self.kind, self.current_matrix())
