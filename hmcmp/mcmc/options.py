# hmcmp/mcmc/options.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""Configuration of NUTS sampling and warmup adaptation."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Optional

import math

from .metric import METRIC_KINDS
from .nuts import UTURN_CRITERIA

_DEFAULT_NUM_WARMUP = 1000
_DEFAULT_NUM_SAMPLES = 1000
_DEFAULT_TARGET_ACCEPT = 0.80
_DEFAULT_MAX_TREE_DEPTH = 10
_DEFAULT_MAX_ENERGY_ERROR = 1000.0
_DEFAULT_METRIC = "diag"
_DEFAULT_PROGRESS = False
_DEFAULT_VERBOSE = 1
_DEFAULT_LOG_EVERY = 100

# Trees deeper than this cannot be stored in a 32-bit leapfrog counter.
_MAX_TREE_DEPTH_LIMIT = 30


class ConfigurationError(ValueError):
    """Invalid sampler configuration, detected before any chain starts."""


@dataclass
class NUTSOptions:
    """Configuration object for NUTS sampling and warmup adaptation."""

    # Main sampler settings
    num_warmup: int = _DEFAULT_NUM_WARMUP
    num_samples: int = _DEFAULT_NUM_SAMPLES
    target_accept: float = _DEFAULT_TARGET_ACCEPT
    max_tree_depth: int = _DEFAULT_MAX_TREE_DEPTH
    max_energy_error: float = _DEFAULT_MAX_ENERGY_ERROR
    metric: str = _DEFAULT_METRIC
    uturn_criterion: str = "momentum_sum"
    extra_subtree_checks: bool = True
    init_step_size: Optional[float] = None
    save_warmup: bool = False
    progress: bool = _DEFAULT_PROGRESS
    verbose: int = _DEFAULT_VERBOSE
    log_every: int = _DEFAULT_LOG_EVERY

    # Initialization
    init_radius: float = 2.0
    max_init_tries: int = 100

    # Dual-averaging hyperparameters
    dual_averaging_gamma: float = 0.05
    dual_averaging_t0: float = 10.0
    dual_averaging_kappa: float = 0.75
    dual_averaging_mu_factor: float = 10.0

    # Warmup window policy
    warmup_min_window_warmup: int = 20
    warmup_init_buffer: int = 75
    warmup_term_buffer: int = 50
    warmup_base_window: int = 25
    warmup_init_buffer_ratio: float = 0.15
    warmup_term_buffer_ratio: float = 0.10
    rerun_step_size_search: bool = True

    # Metric regularization toward scale * I
    metric_regularization_scale: float = 5e-3
    metric_regularization_weight: float = 5.0

    # Initial step-size search policy
    find_eps_init: float = 1.0
    find_eps_target_accept: float = 0.5
    find_eps_scale_base: float = 2.0
    find_eps_min: float = 1e-6
    find_eps_max: float = 1e2
    find_eps_max_iter: int = 100

    def window_kwargs(self) -> dict:
        return dict(
            init_buffer=self.warmup_init_buffer,
            term_buffer=self.warmup_term_buffer,
            base_window=self.warmup_base_window,
            min_warmup=self.warmup_min_window_warmup,
            init_buffer_ratio=self.warmup_init_buffer_ratio,
            term_buffer_ratio=self.warmup_term_buffer_ratio,
        )

    def validate(self) -> "NUTSOptions":
        def fail(msg):
            raise ConfigurationError(msg)

        if not 0.0 < self.target_accept < 1.0:
            fail(f"target_accept must lie in (0, 1), got {self.target_accept}")
        if int(self.max_tree_depth) != self.max_tree_depth or self.max_tree_depth <= 0:
            fail(f"max_tree_depth must be a positive integer, got {self.max_tree_depth}")
        if self.max_tree_depth > _MAX_TREE_DEPTH_LIMIT:
            fail(f"max_tree_depth must not exceed {_MAX_TREE_DEPTH_LIMIT}")
        if self.num_warmup < 0:
            fail("num_warmup must be non-negative")
        if self.num_samples < 0:
            fail("num_samples must be non-negative")
        if not self.max_energy_error > 0.0:
            fail("max_energy_error must be positive")
        if self.metric not in METRIC_KINDS:
            fail(f"metric must be one of {METRIC_KINDS}, got {self.metric!r}")
        if self.uturn_criterion not in UTURN_CRITERIA:
            fail(f"uturn_criterion must be one of {UTURN_CRITERIA}")
        if not (math.isfinite(self.init_radius) and self.init_radius >= 0.0):
            fail("init_radius must be finite and non-negative")
        if self.max_init_tries < 1:
            fail("max_init_tries must be at least 1")
        if self.init_step_size is not None and not (
            math.isfinite(self.init_step_size) and self.init_step_size > 0.0
        ):
            fail("init_step_size must be positive")
        if not 0.0 < self.find_eps_min < self.find_eps_max:
            fail("find_eps_min and find_eps_max must satisfy 0 < min < max")
        if not 0.0 < self.find_eps_target_accept < 1.0:
            fail("find_eps_target_accept must lie in (0, 1)")
        if self.find_eps_scale_base <= 1.0:
            fail("find_eps_scale_base must be greater than 1")
        if self.dual_averaging_gamma <= 0.0 or self.dual_averaging_t0 < 0.0:
            fail("dual_averaging_gamma must be positive and dual_averaging_t0 non-negative")
        if not 0.5 < self.dual_averaging_kappa <= 1.0:
            fail("dual_averaging_kappa must lie in (0.5, 1]")
        if self.metric_regularization_scale < 0.0 or self.metric_regularization_weight < 0.0:
            fail("metric regularization constants must be non-negative")
        if min(self.warmup_init_buffer, self.warmup_term_buffer) < 0 or self.warmup_base_window < 1:
            fail("warmup buffers must be non-negative and the base window positive")
        return self


def resolve_nuts_options(options: Optional[NUTSOptions] = None, **overrides) -> NUTSOptions:
    """Merge keyword arguments with an optional NUTSOptions object.

    Rule:
    - If `options` is None, start from the defaults.
    - A keyword overrides `options` when it differs from the field default,
      so that default-valued keywords never mask a provided object.
    """
    opts = replace(options) if options is not None else NUTSOptions()
    defaults = {f.name: f.default for f in fields(NUTSOptions)}
    for name, value in overrides.items():
        if name not in defaults:
            raise ConfigurationError(f"unknown NUTS option {name!r}")
        if options is None or value != defaults[name]:
            setattr(opts, name, value)
    return opts
