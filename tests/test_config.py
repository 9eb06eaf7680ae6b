import logging

import pytest

import hmcmp
import hmcmp.num as gnp
from hmcmp import config


def test_backend_is_known():
    assert config.get_backend() in ("numpy", "torch")
    assert config.get_config().dtype_resolved is not None


def test_set_backend_rejects_unknown_names():
    with pytest.raises(ValueError):
        config.set_backend("jax")


def test_log_level():
    logger = config.get_logger()
    assert logger.name == "hmcmp"
    old = logger.level
    try:
        config.set_log_level("debug")
        assert logger.level == logging.DEBUG
    finally:
        config.set_log_level(old)


def test_num_exports():
    for name in ("asarray", "value_and_grad", "default_rng", "chain_seed", "dot"):
        assert name in gnp.__all__
    assert isinstance(hmcmp.__version__, str)


def test_lazy_mcmc_exports():
    from hmcmp import mcmc

    assert mcmc.nuts_sample is hmcmp.nuts_sample
    with pytest.raises(AttributeError):
        mcmc.does_not_exist
