# hmcmp/mcmc/integrator.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""
Phase-space states and the leapfrog integrator.

With log density log_prob(q), the potential is U(q) = -log_prob(q) and the
Hamiltonian is
  H(q,p) = U(q) + K(p),  K(p) = 1/2 p^T M^{-1} p.

One leapfrog step with signed step size h = direction * eps updates
  p_{n+1/2} = p_n + (h/2) * grad log_prob(q_n)
  q_{n+1}   = q_n + h * M^{-1} p_{n+1/2}
  p_{n+1}   = p_{n+1/2} + (h/2) * grad log_prob(q_{n+1})

The step is volume preserving and time reversible: negating the momentum and
stepping again returns to the starting position.
"""

from __future__ import annotations

from dataclasses import dataclass

from .density import LogDensity

ArrayLike = any  # Placeholder for unified array type


@dataclass(frozen=True)
class PhaseState:
    """One point (q, p) of a trajectory, with log_prob(q) and its gradient."""

    position: ArrayLike
    momentum: ArrayLike
    log_density: float
    gradient: ArrayLike

    @classmethod
    def from_position(
        cls, log_density: LogDensity, q: ArrayLike, p: ArrayLike = None
    ) -> "PhaseState":
        value, grad = log_density.evaluate(q)
        if p is None:
            p = grad * 0.0
        return cls(position=q, momentum=p, log_density=value, gradient=grad)

    @property
    def dim(self) -> int:
        return self.position.shape[0]

    def with_momentum(self, p: ArrayLike) -> "PhaseState":
        if p.shape != self.position.shape:
            raise ValueError("momentum and position must have the same shape")
        return PhaseState(self.position, p, self.log_density, self.gradient)

    def flip(self) -> "PhaseState":
        return PhaseState(self.position, -self.momentum, self.log_density, self.gradient)


def hamiltonian(metric, state: PhaseState) -> float:
    return -state.log_density + metric.kinetic(state.momentum)


def leapfrog(
    log_density: LogDensity,
    metric,
    state: PhaseState,
    step_size: float,
    direction: int = 1,
) -> PhaseState:
    """One leapfrog step forward (direction=1) or backward (direction=-1).

    Raises NonFiniteDensityError if the log density or its gradient is not
    finite at the new position.
    """
    if direction not in (1, -1):
        raise ValueError("direction must be 1 (forward) or -1 (backward)")
    h = direction * step_size
    p_half = state.momentum + (0.5 * h) * state.gradient
    q_new = state.position + h * metric.velocity(p_half)
    value, g_new = log_density.evaluate(q_new)
    p_new = p_half + (0.5 * h) * g_new
    return PhaseState(position=q_new, momentum=p_new, log_density=value, gradient=g_new)
