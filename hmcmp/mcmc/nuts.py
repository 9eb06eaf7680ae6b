# hmcmp/mcmc/nuts.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""
NUTS (No-U-Turn Sampler) transition with multinomial trajectory sampling.

This file implements one Euclidean-metric NUTS transition for targets on R^d,
given a fixed step size and metric. Warmup adaptation lives in chain.py.

Transition
----------
At the start of a transition, sample momentum p0 ~ N(0, M) and compute
  H0 = -log_prob(q0) + K(p0).

The trajectory is a binary tree built by doubling. At depth j a direction
v in {+1,-1} is drawn uniformly and a new subtree of 2^j leapfrog steps is
built from the corresponding end of the current tree.

Multinomial weights
-------------------
Each state z of the trajectory has weight w(z) = exp(H0 - H(z)). A subtree
carries the log of the sum of its weights. Inside a subtree, the proposal is
chosen between the two halves in proportion to their weights (uniform
multinomial). In the outer doubling loop, the new subtree's proposal replaces
the running sample with probability
  min(1, w(new subtree) / w(current tree)),
which biases selection toward the newer, more distant states [2]. No state
other than the subtree ends and the proposals is kept in memory.

Divergences
-----------
A leapfrog step is divergent if H(z) - H0 > max_energy_error, or if the log
density or its gradient is not finite there. The subtree being built is
discarded; the transition keeps the sample selected so far.

No-U-Turn criteria
------------------
With v = M^{-1} p the velocity at an end of a (sub)tree:
- "momentum_sum" [3]: with rho the sum of the momenta of the (sub)tree,
  stop if v_left . rho <= 0 or v_right . rho <= 0.
- "position_difference" [1]: with dq = q_right - q_left,
  stop if dq . v_left < 0 or dq . v_right < 0.
Extra checks on the two overlapping halves of each merged tree guard against
trajectories that oscillate past a U-turn without detecting it.

Acceptance statistic
--------------------
accept_stat = mean over all leapfrog steps of min(1, exp(H0 - H(z))).
It feeds dual averaging during warmup.

References
----------
[1] M. D. Hoffman and A. Gelman (2014). "The No-U-Turn Sampler: Adaptively Setting
    Path Lengths in Hamiltonian Monte Carlo." JMLR 15:1593-1623.
[2] M. Betancourt (2017). "A Conceptual Introduction to Hamiltonian Monte Carlo."
    arXiv:1701.02434.
[3] M. Betancourt (2013). "Generalizing the No-U-Turn Sampler to Riemannian
    Manifolds." arXiv:1304.1920.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple

import math

import hmcmp.num as gnp

from .density import LogDensity, NonFiniteDensityError
from .integrator import PhaseState, hamiltonian, leapfrog
from .metric import EuclideanMetric

ArrayLike = any  # Placeholder for unified array type

UTURN_CRITERIA = ("momentum_sum", "position_difference")

# Total number of leapfrog steps a single trajectory may hold.
_MAX_TREE_SIZE = 2**31 - 1

_DEFAULT_MAX_TREE_DEPTH = 10
_DEFAULT_MAX_ENERGY_ERROR = 1000.0


def _log_add_exp(a: float, b: float) -> float:
    if a == -math.inf:
        return b
    if b == -math.inf:
        return a
    m = max(a, b)
    return m + math.log1p(math.exp(-abs(a - b)))


def is_uturn(
    metric: EuclideanMetric,
    left: PhaseState,
    right: PhaseState,
    rho: Optional[ArrayLike] = None,
    criterion: str = "momentum_sum",
) -> bool:
    v_left = metric.velocity(left.momentum)
    v_right = metric.velocity(right.momentum)
    if criterion == "momentum_sum":
        return gnp.dot(v_left, rho) <= 0.0 or gnp.dot(v_right, rho) <= 0.0
    dq = right.position - left.position
    return gnp.dot(dq, v_left) < 0.0 or gnp.dot(dq, v_right) < 0.0


class _Subtree(NamedTuple):
    left: PhaseState
    right: PhaseState
    proposal: PhaseState
    log_weight: float
    rho: ArrayLike
    depth: int


def _merge(left: _Subtree, right: _Subtree, proposal: PhaseState) -> _Subtree:
    return _Subtree(
        left=left.left,
        right=right.right,
        proposal=proposal,
        log_weight=_log_add_exp(left.log_weight, right.log_weight),
        rho=left.rho + right.rho,
        depth=left.depth + 1,
    )


@dataclass
class TransitionInfo:
    accept_stat: float
    tree_depth: int
    n_leapfrog: int
    divergent: bool
    hit_max_tree_depth: bool
    energy: float


class _TreeBuilder:
    """Builds subtrees for one transition; holds the transition-wide stats."""

    def __init__(
        self,
        log_density: LogDensity,
        metric: EuclideanMetric,
        step_size: float,
        rng,
        H0: float,
        max_energy_error: float,
        criterion: str,
        extra_subtree_checks: bool,
    ):
        self.log_density = log_density
        self.metric = metric
        self.step_size = step_size
        self.rng = rng
        self.H0 = H0
        self.max_energy_error = max_energy_error
        self.criterion = criterion
        self.extra_subtree_checks = extra_subtree_checks
        self.n_leapfrog = 0
        self.sum_accept = 0.0
        self.divergent = False

    def terminates(self, tree: _Subtree, left: _Subtree, right: _Subtree) -> bool:
        metric, criterion = self.metric, self.criterion
        if is_uturn(metric, tree.left, tree.right, tree.rho, criterion):
            return True
        if self.extra_subtree_checks and tree.depth > 1:
            rho = left.rho + right.left.momentum
            if is_uturn(metric, left.left, right.left, rho, criterion):
                return True
            rho = right.rho + left.right.momentum
            if is_uturn(metric, left.right, right.right, rho, criterion):
                return True
        return False

    def build(
        self, state: PhaseState, depth: int, direction: int
    ) -> Tuple[bool, Optional[_Subtree]]:
        """Returns (terminate, subtree).

        The subtree is None after a divergence or when one of its halves
        terminated. A subtree whose merged trajectory U-turns is returned
        with terminate=True and is not used by the caller.
        """
        if depth == 0:
            self.n_leapfrog += 1
            try:
                z = leapfrog(self.log_density, self.metric, state, self.step_size, direction)
            except NonFiniteDensityError:
                self.divergent = True
                return True, None
            H = hamiltonian(self.metric, z)
            if math.isnan(H):
                H = math.inf
            self.sum_accept += math.exp(min(0.0, self.H0 - H))
            if H - self.H0 > self.max_energy_error:
                self.divergent = True
                return True, None
            return False, _Subtree(z, z, z, self.H0 - H, z.momentum, 0)

        terminate, inner = self.build(state, depth - 1, direction)
        if terminate:
            return True, None
        edge = inner.right if direction > 0 else inner.left
        terminate, outer = self.build(edge, depth - 1, direction)
        if terminate:
            return True, None

        left, right = (inner, outer) if direction > 0 else (outer, inner)
        log_weight = _log_add_exp(inner.log_weight, outer.log_weight)
        if gnp.uniform(self.rng) < math.exp(outer.log_weight - log_weight):
            proposal = outer.proposal
        else:
            proposal = inner.proposal
        tree = _merge(left, right, proposal)
        return self.terminates(tree, left, right), tree


def nuts_transition(
    log_density: LogDensity,
    metric: EuclideanMetric,
    state: PhaseState,
    step_size: float,
    rng,
    max_tree_depth: int = _DEFAULT_MAX_TREE_DEPTH,
    max_energy_error: float = _DEFAULT_MAX_ENERGY_ERROR,
    uturn_criterion: str = "momentum_sum",
    extra_subtree_checks: bool = True,
) -> Tuple[PhaseState, TransitionInfo]:
    if uturn_criterion not in UTURN_CRITERIA:
        raise ValueError(f"uturn_criterion must be one of {UTURN_CRITERIA}")
    if max_tree_depth < 0:
        raise ValueError("max_tree_depth must be non-negative")

    p0 = metric.sample_momentum(rng)
    z0 = state.with_momentum(p0)
    H0 = hamiltonian(metric, z0)

    builder = _TreeBuilder(
        log_density,
        metric,
        step_size,
        rng,
        H0,
        max_energy_error,
        uturn_criterion,
        extra_subtree_checks,
    )
    tree = _Subtree(z0, z0, z0, 0.0, p0, 0)
    sample = z0
    depth = 0

    while True:
        if depth >= max_tree_depth:
            break
        if builder.n_leapfrog + 2**depth > _MAX_TREE_SIZE:
            break

        direction = 1 if gnp.uniform(rng) < 0.5 else -1
        edge = tree.right if direction > 0 else tree.left
        terminate, new_tree = builder.build(edge, depth, direction)
        if terminate:
            break
        depth += 1

        # Biased progressive sampling toward the new subtree.
        accept_prob = math.exp(min(0.0, new_tree.log_weight - tree.log_weight))
        if gnp.uniform(rng) < accept_prob:
            sample = new_tree.proposal

        left, right = (tree, new_tree) if direction > 0 else (new_tree, tree)
        tree = _merge(left, right, sample)
        if builder.terminates(tree, left, right):
            break

    n_leapfrog = builder.n_leapfrog
    accept_stat = builder.sum_accept / n_leapfrog if n_leapfrog > 0 else 0.0
    info = TransitionInfo(
        accept_stat=float(accept_stat),
        tree_depth=int(depth),
        n_leapfrog=int(n_leapfrog),
        divergent=bool(builder.divergent),
        hit_max_tree_depth=depth >= max_tree_depth,
        energy=float(hamiltonian(metric, sample)),
    )
    return sample, info


class NoUTurnSampler:
    """NUTS kernel bound to one log density.

    Step size and metric are passed per call: warmup changes them between
    iterations, sampling keeps them fixed.
    """

    def __init__(
        self,
        log_density: LogDensity,
        max_tree_depth: int = _DEFAULT_MAX_TREE_DEPTH,
        max_energy_error: float = _DEFAULT_MAX_ENERGY_ERROR,
        uturn_criterion: str = "momentum_sum",
        extra_subtree_checks: bool = True,
    ):
        if uturn_criterion not in UTURN_CRITERIA:
            raise ValueError(f"uturn_criterion must be one of {UTURN_CRITERIA}")
        self.log_density = log_density
        self.max_tree_depth = int(max_tree_depth)
        self.max_energy_error = float(max_energy_error)
        self.uturn_criterion = uturn_criterion
        self.extra_subtree_checks = bool(extra_subtree_checks)

    def sample(
        self,
        state: PhaseState,
        step_size: float,
        metric: EuclideanMetric,
        rng,
        max_tree_depth: Optional[int] = None,
    ) -> Tuple[PhaseState, TransitionInfo]:
        return nuts_transition(
            self.log_density,
            metric,
            state,
            step_size,
            rng,
            max_tree_depth=self.max_tree_depth if max_tree_depth is None else max_tree_depth,
            max_energy_error=self.max_energy_error,
            uturn_criterion=self.uturn_criterion,
            extra_subtree_checks=self.extra_subtree_checks,
        )
