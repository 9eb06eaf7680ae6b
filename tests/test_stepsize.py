import math

import pytest

import hmcmp.num as gnp
from hmcmp.mcmc.density import LogDensity
from hmcmp.mcmc.integrator import PhaseState
from hmcmp.mcmc.metric import EuclideanMetric
from hmcmp.mcmc.stepsize import (
    DualAveragingState,
    StepSizeAdapter,
    find_reasonable_step_size,
)


def test_on_target_acceptance_moves_to_mu():
    adapter = StepSizeAdapter(0.5, target_accept=0.8)
    eps = adapter.observe(0.8)
    assert eps == pytest.approx(10.0 * 0.5)


def test_direction_of_updates():
    high = StepSizeAdapter(1.0, target_accept=0.8)
    low = StepSizeAdapter(1.0, target_accept=0.8)
    for _ in range(5):
        eps_high = high.observe(1.0)
        eps_low = low.observe(0.0)
    assert eps_high > eps_low


def test_accept_stat_above_one_is_clipped():
    a = DualAveragingState.start(1.0)
    b = DualAveragingState.start(1.0)
    assert a.update(1.7) == pytest.approx(b.update(1.0))


def test_converges_to_target_on_a_smooth_model():
    # acceptance 1 / (1 + eps^2) reaches 0.8 at eps = 0.5
    adapter = StepSizeAdapter(1.0, target_accept=0.8)
    eps = adapter.step_size
    for _ in range(3000):
        eps = adapter.observe(1.0 / (1.0 + eps**2))
    final = adapter.finalize()
    assert final == pytest.approx(0.5, rel=0.2)


def test_finalize_freezes():
    adapter = StepSizeAdapter(0.3)
    assert adapter.finalize() == pytest.approx(0.3)
    assert adapter.finalized
    with pytest.raises(RuntimeError):
        adapter.observe(0.5)
    with pytest.raises(RuntimeError):
        adapter.restart(0.1)


def test_restart_resets_the_counter():
    adapter = StepSizeAdapter(1.0)
    for _ in range(10):
        adapter.observe(0.9)
    adapter.restart(0.2)
    assert adapter.state.t == 0
    assert adapter.step_size == pytest.approx(0.2)
    assert adapter.state.mu == pytest.approx(math.log(2.0))


def test_invalid_target():
    with pytest.raises(ValueError):
        StepSizeAdapter(1.0, target_accept=1.0)


def test_search_doubles_up_to_the_upper_bound_on_a_flat_density():
    def flat(q):
        return 0.0, q * 0.0

    ld = LogDensity(flat, dim=2)
    state = PhaseState.from_position(ld, gnp.zeros(2))
    metric = EuclideanMetric.identity(2, "diag")
    eps = find_reasonable_step_size(ld, metric, state, gnp.default_rng(0), max_step_size=100.0)
    assert eps == pytest.approx(64.0)


def test_search_shrinks_on_a_narrow_density():
    scale = 0.01

    def narrow(q):
        z = q / scale
        return -0.5 * gnp.dot(z, z), -z / scale

    ld = LogDensity(narrow, dim=5)
    state = PhaseState.from_position(ld, scale * gnp.ones(5))
    metric = EuclideanMetric.identity(5, "diag")
    eps = find_reasonable_step_size(ld, metric, state, gnp.default_rng(1))
    assert 1e-6 <= eps < 0.05
