import math

import numpy as np
import pytest

import hmcmp.num as gnp
from hmcmp.mcmc.density import LogDensity
from hmcmp.mcmc.integrator import PhaseState
from hmcmp.mcmc.metric import EuclideanMetric
from hmcmp.mcmc.integrator import hamiltonian
from hmcmp.mcmc.nuts import NoUTurnSampler, _TreeBuilder, is_uturn, nuts_transition


def gaussian_value_and_grad(q):
    return -0.5 * gnp.dot(q, q), -q


def setup(dim=2, q0=None):
    ld = LogDensity(gaussian_value_and_grad, dim=dim)
    q0 = gnp.zeros(dim) if q0 is None else gnp.asarray(q0)
    state = PhaseState.from_position(ld, q0)
    metric = EuclideanMetric.identity(dim, "diag")
    return ld, state, metric


def test_zero_depth_returns_start():
    ld, state, metric = setup(q0=[0.5, -0.5])
    z, info = nuts_transition(ld, metric, state, 0.1, gnp.default_rng(0), max_tree_depth=0)
    assert np.allclose(gnp.to_np(z.position), [0.5, -0.5])
    assert info.n_leapfrog == 0
    assert info.tree_depth == 0
    assert info.hit_max_tree_depth
    assert not info.divergent


def test_uturn_stops_before_max_depth():
    ld, state, metric = setup(q0=[1.0, 0.0])
    rng = gnp.default_rng(1)
    for _ in range(20):
        state, info = nuts_transition(ld, metric, state, 0.1, rng, max_tree_depth=10)
        assert not info.divergent
        assert not info.hit_max_tree_depth
        assert 1 <= info.tree_depth < 10
        assert info.n_leapfrog < 2 ** (info.tree_depth + 1)
        assert 0.0 <= info.accept_stat <= 1.0


def test_max_depth_is_reported():
    ld, state, metric = setup(q0=[1.0, 0.0])
    rng = gnp.default_rng(2)
    # a tiny step size cannot reach a U-turn in 2^3 - 1 steps
    z, info = nuts_transition(ld, metric, state, 1e-3, rng, max_tree_depth=3)
    assert info.hit_max_tree_depth
    assert info.tree_depth == 3
    assert info.n_leapfrog == 7
    assert info.accept_stat == pytest.approx(1.0, abs=1e-4)


def test_energy_divergence_keeps_start_state():
    ld, state, metric = setup(q0=[1.0, 1.0])
    z, info = nuts_transition(ld, metric, state, 1e5, gnp.default_rng(3))
    assert info.divergent
    assert info.tree_depth == 0
    assert info.n_leapfrog == 1
    assert info.accept_stat == pytest.approx(0.0)
    assert np.allclose(gnp.to_np(z.position), [1.0, 1.0])


def test_non_finite_density_is_a_divergence():
    def vg(q):
        if float(gnp.sum(q**2)) > 4.0:
            return -math.inf, q * 0.0
        return -0.5 * gnp.dot(q, q), -q

    ld = LogDensity(vg, dim=2)
    state = PhaseState.from_position(ld, gnp.asarray([1.5, 0.0]))
    metric = EuclideanMetric.identity(2, "diag")
    z, info = nuts_transition(ld, metric, state, 50.0, gnp.default_rng(4))
    assert info.divergent
    assert np.allclose(gnp.to_np(z.position), [1.5, 0.0])


def test_same_seed_same_transition():
    ld, state, metric = setup(q0=[0.3, 0.2])
    z1, info1 = nuts_transition(ld, metric, state, 0.3, gnp.default_rng(11))
    z2, info2 = nuts_transition(ld, metric, state, 0.3, gnp.default_rng(11))
    assert np.array_equal(gnp.to_np(z1.position), gnp.to_np(z2.position))
    assert info1 == info2


@pytest.mark.parametrize("criterion", ["momentum_sum", "position_difference"])
def test_standard_normal_moments(criterion):
    ld, state, metric = setup(dim=2)
    sampler = NoUTurnSampler(ld, uturn_criterion=criterion)
    rng = gnp.default_rng(5)
    xs = []
    for _ in range(2000):
        state, info = sampler.sample(state, 0.5, metric, rng)
        xs.append(gnp.to_np(state.position))
    xs = np.array(xs)
    assert np.all(np.abs(xs.mean(axis=0)) < 0.15)
    assert np.allclose(xs.var(axis=0), 1.0, atol=0.2)


def test_is_uturn():
    ld, _, metric = setup(dim=1)

    def st(q, p):
        return PhaseState(gnp.asarray([q]), gnp.asarray([p]), 0.0, gnp.zeros(1))

    left, right = st(0.0, 1.0), st(1.0, 1.0)
    assert not is_uturn(metric, left, right, gnp.asarray([2.0]))
    assert not is_uturn(metric, left, right, criterion="position_difference")

    right = st(1.0, -1.0)
    assert is_uturn(metric, left, right, gnp.asarray([0.0]))
    assert is_uturn(metric, left, right, criterion="position_difference")


def test_invalid_arguments():
    ld, state, metric = setup()
    with pytest.raises(ValueError):
        nuts_transition(ld, metric, state, 0.1, gnp.default_rng(0), uturn_criterion="riemann")
    with pytest.raises(ValueError):
        nuts_transition(ld, metric, state, 0.1, gnp.default_rng(0), max_tree_depth=-1)
    with pytest.raises(ValueError):
        NoUTurnSampler(ld, uturn_criterion="riemann")


def test_uturn_at_max_depth_is_flagged():
    ld, state, metric = setup(dim=1, q0=[1.0])
    n_at_max = 0
    for seed in range(200):
        _, info = nuts_transition(ld, metric, state, 1.5, gnp.default_rng(seed), max_tree_depth=1)
        if info.tree_depth == 1:
            n_at_max += 1
            assert info.hit_max_tree_depth
    assert n_at_max > 0


def test_uturned_subtree_is_returned_with_terminate():
    # q=0, p=1, eps=1: p goes 1 -> 0.5 -> -0.5, so the momentum sum is 0
    ld, _, metric = setup(dim=1)
    z0 = PhaseState.from_position(ld, gnp.zeros(1), gnp.ones(1))
    builder = _TreeBuilder(
        ld, metric, 1.0, gnp.default_rng(0), hamiltonian(metric, z0), 1000.0, "momentum_sum", True
    )
    terminate, subtree = builder.build(z0, 1, 1)
    assert terminate
    assert subtree is not None
    assert subtree.depth == 1
    assert builder.n_leapfrog == 2
    assert np.allclose(gnp.to_np(subtree.rho), [0.0])
