import math

import numpy as np
import pytest

import hmcmp.num as gnp
from hmcmp.mcmc.density import LogDensity, NonFiniteDensityError


def gaussian_value_and_grad(q):
    return -0.5 * gnp.dot(q, q), -q


def test_evaluate_returns_float_and_flat_gradient():
    ld = LogDensity(gaussian_value_and_grad, dim=3)
    value, grad = ld.evaluate(gnp.asarray([1.0, 2.0, -1.0]))
    assert isinstance(value, float)
    assert value == pytest.approx(-3.0)
    assert tuple(grad.shape) == (3,)
    assert np.allclose(gnp.to_np(grad), [-1.0, -2.0, 1.0])


def test_non_finite_value_raises():
    def vg(q):
        return math.nan, q * 0.0

    ld = LogDensity(vg, dim=2)
    with pytest.raises(NonFiniteDensityError):
        ld.evaluate(gnp.zeros(2))
    assert not ld.is_finite_at(gnp.zeros(2))


def test_non_finite_gradient_raises():
    def vg(q):
        return 0.0, q * math.inf

    ld = LogDensity(vg, dim=2)
    with pytest.raises(NonFiniteDensityError):
        ld.evaluate(gnp.ones(2))


def test_model_arithmetic_error_becomes_non_finite():
    def vg(q):
        raise ZeroDivisionError("division by zero")

    ld = LogDensity(vg, dim=1)
    with pytest.raises(NonFiniteDensityError):
        ld(gnp.zeros(1))


def test_gradient_size_mismatch_is_a_value_error():
    def vg(q):
        return 0.0, gnp.zeros(3)

    ld = LogDensity(vg, dim=2)
    with pytest.raises(ValueError):
        ld.evaluate(gnp.zeros(2))


def test_from_log_prob_gradient_matches_analytic():
    def log_prob(q):
        return -0.5 * gnp.sum(q**2)

    ld = LogDensity.from_log_prob(log_prob, dim=2)
    q = gnp.asarray([0.3, -1.2])
    value, grad = ld.evaluate(q)
    assert value == pytest.approx(-0.5 * (0.09 + 1.44))
    assert np.allclose(gnp.to_np(grad), [-0.3, 1.2], atol=1e-6)
    assert ld.name == "log_prob"


def test_chain_seed_is_deterministic_and_distinct():
    s0 = gnp.chain_seed(123, 0)
    assert s0 == gnp.chain_seed(123, 0)
    assert s0 != gnp.chain_seed(123, 1)
    assert s0 != gnp.chain_seed(124, 0)
    with pytest.raises(ValueError):
        gnp.chain_seed(123, -1)


def test_model_bugs_are_not_hidden():
    def vg(q):
        raise ValueError("operands could not be broadcast together with shapes (2,) (3,)")

    ld = LogDensity(vg, dim=2)
    with pytest.raises(ValueError) as excinfo:
        ld.evaluate(gnp.zeros(2))
    assert not isinstance(excinfo.value, NonFiniteDensityError)


def test_math_domain_error_is_non_finite():
    def vg(q):
        return math.log(float(q[0])), 1.0 / q

    ld = LogDensity(vg, dim=1)
    with pytest.raises(NonFiniteDensityError):
        ld.evaluate(gnp.asarray([-1.0]))
