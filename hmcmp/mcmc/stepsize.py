# hmcmp/mcmc/stepsize.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""
Step size initialization and dual-averaging adaptation.

Dual averaging [1, 2] drives the mean acceptance statistic a_t of the
sampler toward a target delta. With t the iteration count,
  eta       = 1 / (t + t0)
  h_bar     = (1 - eta) * h_bar + eta * (delta - a_t)
  log_eps   = mu - sqrt(t) / gamma * h_bar
  log_eps_bar = t^{-kappa} * log_eps + (1 - t^{-kappa}) * log_eps_bar
where mu = log(mu_factor * eps_0) is the point the iterates shrink toward.
During warmup the sampler uses exp(log_eps); at the end of warmup the
smoothed value exp(log_eps_bar) is frozen.

[1] Y. Nesterov (2009). "Primal-dual subgradient methods for convex
    problems." Mathematical Programming 120(1):221-259.
[2] M. D. Hoffman and A. Gelman (2014). "The No-U-Turn Sampler." JMLR 15.
"""

from __future__ import annotations

from dataclasses import dataclass

import math

from hmcmp.config import get_logger

from .density import LogDensity, NonFiniteDensityError
from .integrator import PhaseState, hamiltonian, leapfrog

_logger = get_logger()


@dataclass
class DualAveragingState:
    mu: float
    log_eps: float
    log_eps_bar: float
    h_bar: float
    t: int

    @classmethod
    def start(cls, step_size: float, mu_factor: float = 10.0) -> "DualAveragingState":
        return cls(
            mu=math.log(mu_factor * step_size),
            log_eps=math.log(step_size),
            log_eps_bar=0.0,
            h_bar=0.0,
            t=0,
        )

    def update(
        self,
        accept_stat: float,
        target: float = 0.80,
        gamma: float = 0.05,
        t0: float = 10.0,
        kappa: float = 0.75,
    ) -> float:
        accept_stat = min(1.0, accept_stat)
        self.t += 1
        eta = 1.0 / (self.t + t0)
        self.h_bar = (1.0 - eta) * self.h_bar + eta * (target - accept_stat)
        self.log_eps = self.mu - (math.sqrt(self.t) / gamma) * self.h_bar
        w = self.t ** (-kappa)
        self.log_eps_bar = w * self.log_eps + (1.0 - w) * self.log_eps_bar
        return math.exp(self.log_eps)

    def final(self) -> float:
        return math.exp(self.log_eps_bar)


class StepSizeAdapter:
    """Dual-averaging controller for the leapfrog step size."""

    def __init__(
        self,
        initial_step_size: float,
        target_accept: float = 0.80,
        gamma: float = 0.05,
        t0: float = 10.0,
        kappa: float = 0.75,
        mu_factor: float = 10.0,
    ):
        if not 0.0 < target_accept < 1.0:
            raise ValueError("target_accept must lie in (0, 1)")
        self.target_accept = float(target_accept)
        self.gamma = float(gamma)
        self.t0 = float(t0)
        self.kappa = float(kappa)
        self.mu_factor = float(mu_factor)
        self._finalized = False
        self.restart(initial_step_size)

    def restart(self, step_size: float) -> None:
        """Restart dual averaging around a new step size (new metric)."""
        if self._finalized:
            raise RuntimeError("step size adaptation is finalized")
        self._step_size = float(step_size)
        self.state = DualAveragingState.start(self._step_size, self.mu_factor)

    @property
    def step_size(self) -> float:
        return self._step_size

    @property
    def finalized(self) -> bool:
        return self._finalized

    def observe(self, accept_stat: float) -> float:
        if self._finalized:
            raise RuntimeError("step size adaptation is finalized")
        self._step_size = self.state.update(
            accept_stat,
            target=self.target_accept,
            gamma=self.gamma,
            t0=self.t0,
            kappa=self.kappa,
        )
        return self._step_size

    def finalize(self) -> float:
        # Without any observation log_eps_bar carries no information.
        if self.state.t > 0:
            self._step_size = self.state.final()
        self._finalized = True
        return self._step_size


def find_reasonable_step_size(
    log_density: LogDensity,
    metric,
    state: PhaseState,
    rng,
    init_step_size: float = 1.0,
    target_accept: float = 0.5,
    scale_base: float = 2.0,
    min_step_size: float = 1e-6,
    max_step_size: float = 1e2,
    max_iter: int = 100,
) -> float:
    """Double or halve the step size until a single leapfrog step from
    ``state`` crosses the ``target_accept`` acceptance probability."""
    eps = float(init_step_size)
    z0 = state.with_momentum(metric.sample_momentum(rng))
    H0 = hamiltonian(metric, z0)

    def accept_prob(eps):
        try:
            z1 = leapfrog(log_density, metric, z0, eps)
        except NonFiniteDensityError:
            return 0.0
        H1 = hamiltonian(metric, z1)
        if math.isnan(H1):
            return 0.0
        return math.exp(min(0.0, H0 - H1))

    alpha = accept_prob(eps)
    direction = 1.0 if alpha > target_accept else -1.0

    for _ in range(max_iter):
        eps_next = eps * scale_base**direction
        if eps_next < min_step_size or eps_next > max_step_size:
            _logger.warning(
                "step size search stopped at bound: eps=%.6g (bounds [%.3g, %.3g])",
                eps,
                min_step_size,
                max_step_size,
            )
            break
        eps = eps_next
        alpha = accept_prob(eps)
        if (direction > 0 and alpha <= target_accept) or (
            direction < 0 and alpha >= target_accept
        ):
            break
    else:
        _logger.warning("step size search did not converge in %d iterations", max_iter)

    return float(eps)
