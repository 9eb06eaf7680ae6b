# hmcmp/mcmc/__init__.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""
Adaptive No-U-Turn sampling for HMCmp.

Public API
----------
LogDensity, NonFiniteDensityError
    Log density and gradient of a model on R^dim.
PhaseState, leapfrog, hamiltonian
    Phase-space states and the leapfrog integrator.
EuclideanMetric, MassMatrixAdapter
    Unit, diagonal and dense metrics and their windowed estimation.
DualAveragingState, StepSizeAdapter, find_reasonable_step_size
    Step size initialization and dual-averaging adaptation.
NoUTurnSampler, nuts_transition, TransitionInfo, is_uturn
    NUTS transition kernel.
WarmupScheduler, make_warmup_windows, describe_windows
    Windowed warmup schedule.
ChainDriver, Draw, ChainResult, InitializationError, nuts_sample
    Chain driver and multi-chain sampling entry point.
NUTSOptions, ConfigurationError, resolve_nuts_options
    Configuration of sampling and warmup adaptation.
"""
from __future__ import annotations

import importlib

__all__ = [
    "LogDensity",
    "NonFiniteDensityError",
    "PhaseState",
    "leapfrog",
    "hamiltonian",
    "EuclideanMetric",
    "MassMatrixAdapter",
    "DualAveragingState",
    "StepSizeAdapter",
    "find_reasonable_step_size",
    "NoUTurnSampler",
    "nuts_transition",
    "TransitionInfo",
    "is_uturn",
    "WarmupScheduler",
    "make_warmup_windows",
    "describe_windows",
    "ChainDriver",
    "Draw",
    "ChainResult",
    "InitializationError",
    "nuts_sample",
    "NUTSOptions",
    "ConfigurationError",
    "resolve_nuts_options",
]

_EXPORT_TO_MODULE = {
    # Model interface
    "LogDensity": "density",
    "NonFiniteDensityError": "density",
    # Dynamics
    "PhaseState": "integrator",
    "leapfrog": "integrator",
    "hamiltonian": "integrator",
    "EuclideanMetric": "metric",
    "MassMatrixAdapter": "metric",
    # Step size
    "DualAveragingState": "stepsize",
    "StepSizeAdapter": "stepsize",
    "find_reasonable_step_size": "stepsize",
    # NUTS
    "NoUTurnSampler": "nuts",
    "nuts_transition": "nuts",
    "TransitionInfo": "nuts",
    "is_uturn": "nuts",
    # Warmup
    "WarmupScheduler": "warmup",
    "make_warmup_windows": "warmup",
    "describe_windows": "warmup",
    # Chains
    "ChainDriver": "chain",
    "Draw": "chain",
    "ChainResult": "chain",
    "InitializationError": "chain",
    "nuts_sample": "chain",
    # Options
    "NUTSOptions": "options",
    "ConfigurationError": "options",
    "resolve_nuts_options": "options",
}


def __getattr__(name: str):
    module_name = _EXPORT_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = importlib.import_module(f"{__name__}.{module_name}")
    obj = getattr(module, name)
    globals()[name] = obj
    return obj


def __dir__():
    return sorted(set(globals().keys()) | set(__all__))
