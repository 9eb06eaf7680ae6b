import math

import numpy as np
import pytest

import hmcmp.num as gnp
from hmcmp.mcmc.chain import ChainDriver, InitializationError, nuts_sample
from hmcmp.mcmc.density import LogDensity
from hmcmp.mcmc.options import ConfigurationError, NUTSOptions

SCALE = [1.0, 3.0]


def scaled_gaussian(scale=SCALE):
    s = gnp.asarray(scale)

    def value_and_grad(q):
        z = q / s
        return -0.5 * gnp.dot(z, z), -z / s

    return LogDensity(value_and_grad, dim=len(scale), name="scaled_gaussian")


def bounded_gaussian(bound=5.0):
    # finite only for q[0] <= bound
    def value_and_grad(q):
        if float(q[0]) > bound:
            return math.nan, q * 0.0
        return -0.5 * gnp.dot(q, q), -q

    return LogDensity(value_and_grad, dim=1)


def small_options(**kwargs):
    base = dict(num_warmup=60, num_samples=20, verbose=0)
    base.update(kwargs)
    return NUTSOptions(**base)


def test_moments_of_a_scaled_gaussian():
    samples, info = nuts_sample(
        scaled_gaussian(), num_samples=600, num_warmup=400, num_chains=2, seed=1, verbose=0
    )
    x = gnp.to_np(samples).reshape(-1, 2)
    assert samples.shape == (600, 2, 2)
    assert abs(x[:, 0].mean()) < 0.25
    assert abs(x[:, 1].mean()) < 0.75
    assert np.allclose(x.std(axis=0), SCALE, rtol=0.2)
    assert info["accept_stat"].shape == (600, 2)
    assert info["failed_chains"] == {}
    assert len(info["step_size_final"]) == 2


def test_adapted_metric_tracks_variances():
    result = ChainDriver(scaled_gaussian([1.0, 10.0]), small_options(num_warmup=500), seed=2).run()
    inv = gnp.to_np(result.inv_metric)
    assert result.metric_kind == "diag"
    assert 20.0 < inv[1] / inv[0] < 500.0


def test_dense_metric_run():
    result = ChainDriver(
        scaled_gaussian(), small_options(metric="dense", num_warmup=200), seed=3
    ).run()
    assert tuple(result.inv_metric.shape) == (2, 2)
    assert len(result.draws) == 20


def test_same_seed_same_draws():
    opts = small_options()
    a = ChainDriver(scaled_gaussian(), opts, chain_id=0, seed=42).run()
    b = ChainDriver(scaled_gaussian(), opts, chain_id=0, seed=42).run()
    c = ChainDriver(scaled_gaussian(), opts, chain_id=1, seed=42).run()
    assert np.array_equal(gnp.to_np(a.samples()), gnp.to_np(b.samples()))
    assert a.step_size == b.step_size
    assert not np.array_equal(gnp.to_np(a.samples()), gnp.to_np(c.samples()))


def test_parallel_chains_match_sequential_chains():
    kwargs = dict(num_samples=15, num_warmup=40, num_chains=3, seed=7, verbose=0)
    s1, _ = nuts_sample(scaled_gaussian(), n_workers=1, **kwargs)
    s2, _ = nuts_sample(scaled_gaussian(), n_workers=3, **kwargs)
    assert np.array_equal(gnp.to_np(s1), gnp.to_np(s2))


def test_draws_are_emitted_in_order():
    driver = ChainDriver(scaled_gaussian(), small_options(num_warmup=30, num_samples=10, save_warmup=True), seed=0)
    draws = list(driver.iter_draws())
    assert [d.warmup for d in draws] == [True] * 30 + [False] * 10
    assert [d.iteration for d in draws] == list(range(30)) + list(range(10))
    sampling_eps = {d.step_size for d in draws if not d.warmup}
    assert len(sampling_eps) == 1
    assert driver.mass_adapter.frozen


def test_no_warmup():
    result = ChainDriver(scaled_gaussian(), small_options(num_warmup=0, init_step_size=0.5), seed=0).run()
    assert len(result.draws) == 20
    assert result.step_size == pytest.approx(0.5)


def test_given_init_with_non_finite_density():
    driver = ChainDriver(bounded_gaussian(), small_options(), init=[10.0])
    with pytest.raises(InitializationError):
        driver.initialize()
    result = driver.run()
    assert result.failed
    assert "initialization failed" in result.failure_reason
    assert result.draws == []


def test_random_init_gives_up():
    def never_finite(q):
        return math.nan, q * 0.0

    ld = LogDensity(never_finite, dim=2)
    result = ChainDriver(ld, small_options(max_init_tries=5), seed=0).run()
    assert result.failed
    assert len(result.samples()) == 0


def test_random_init_retries():
    # finite only on a third of the initialization box
    ld = bounded_gaussian(bound=-2.0 / 3.0)
    driver = ChainDriver(ld, small_options(init_radius=2.0), seed=5)
    state = driver.initialize()
    assert float(state.position[0]) <= -2.0 / 3.0


def test_failed_chain_does_not_affect_others():
    samples, info = nuts_sample(
        bounded_gaussian(),
        num_samples=20,
        num_warmup=40,
        num_chains=2,
        init=[[10.0], [0.0]],
        seed=0,
        verbose=0,
    )
    assert samples.shape == (20, 1, 1)
    assert list(info["failed_chains"]) == [0]
    assert info["chain_ids"] == [1]


def test_init_dimension_mismatch():
    with pytest.raises(ConfigurationError):
        ChainDriver(scaled_gaussian(), small_options(), init=[0.0, 0.0, 0.0])
    with pytest.raises(ConfigurationError):
        nuts_sample(scaled_gaussian(), num_chains=2, init=[[0.0, 0.0]], verbose=0)


def test_invalid_configuration_before_any_chain():
    with pytest.raises(ConfigurationError):
        nuts_sample(scaled_gaussian(), target_accept=1.5)
    with pytest.raises(ConfigurationError):
        nuts_sample(lambda q: -0.5 * gnp.sum(q**2))


def test_plain_log_prob():
    samples, info = nuts_sample(
        lambda q: -0.5 * gnp.sum(q**2),
        dim=1,
        num_samples=10,
        num_warmup=30,
        num_chains=1,
        seed=0,
        verbose=0,
    )
    assert samples.shape == (10, 1, 1)


def test_cancelled_chain_stops_between_iterations():
    driver = ChainDriver(scaled_gaussian(), small_options(), seed=0)
    driver.cancel()
    result = driver.run()
    assert result.cancelled
    assert result.draws == []


def test_warmup_drives_accept_stat_to_target():
    opts = NUTSOptions(num_warmup=1000, num_samples=0, save_warmup=True, verbose=0)
    result = ChainDriver(scaled_gaussian([1.0, 2.0, 0.5]), opts, seed=0).run()
    accept = [d.accept_stat for d in result.warmup_draws[-50:]]
    assert len(result.warmup_draws) == 1000
    assert abs(np.mean(accept) - 0.8) < 0.08


def test_gradient_dimension_mismatch_before_any_chain():
    def wrong_size(q):
        return -0.5 * gnp.dot(q, q), gnp.zeros(3)

    with pytest.raises(ConfigurationError):
        nuts_sample(LogDensity(wrong_size, dim=2), num_chains=2, verbose=0)
