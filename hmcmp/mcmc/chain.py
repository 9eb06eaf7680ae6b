# hmcmp/mcmc/chain.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""
Chain driver: warmup adaptation followed by sampling, for one or more chains.

Each chain owns its state, its adapters and its random stream; chains never
share mutable state. The stream of chain c is derived from (seed, c), so that
a chain is reproducible from the seed alone and distinct chains are
independent.

Warmup
------
Every warmup iteration runs one NUTS transition, then
1) dual averaging updates the step size from the transition's accept_stat,
2) inside a slow window, the new position is fed to the mass matrix adapter,
3) at a window end, the regularized estimate becomes the metric, the adapter
   is reset, the initial step size search is re-run with the new metric
   (optional) and dual averaging is restarted around the result.
At the end of warmup the smoothed dual-averaging step size is frozen and the
mass matrix adapter stops accepting draws.

Sampling
--------
num_samples transitions with the frozen step size and metric, one Draw per
iteration, in order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from multiprocessing.pool import ThreadPool
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

import math
import threading
import time

from tqdm.auto import tqdm

import hmcmp.num as gnp
from hmcmp.config import get_logger

from .density import LogDensity, NonFiniteDensityError
from .integrator import PhaseState
from .metric import EuclideanMetric, MassMatrixAdapter
from .nuts import NoUTurnSampler, TransitionInfo
from .options import ConfigurationError, NUTSOptions, resolve_nuts_options
from .stepsize import StepSizeAdapter, find_reasonable_step_size
from .warmup import WarmupScheduler

ArrayLike = any  # Placeholder for unified array type


class InitializationError(RuntimeError):
    """No initial point with a finite log density and gradient was found."""


# ---------------------------
# Logging
# ---------------------------


class SimpleLogger:
    """
    verbose:
      0: silent
      1: phase + window events + periodic summaries
      2: more frequent summaries
    """

    def __init__(self, verbose: int = 1, prefix: str = ""):
        self.verbose = int(verbose)
        self.prefix = prefix
        self._logger = get_logger()

    def log(self, msg: str, level: int = 1) -> None:
        if self.verbose >= level:
            self._logger.info("%s%s", self.prefix, msg)


# ---------------------------
# Draws and results
# ---------------------------


@dataclass(frozen=True)
class Draw:
    iteration: int
    position: ArrayLike
    log_density: float
    accept_stat: float
    tree_depth: int
    n_leapfrog: int
    divergent: bool
    hit_max_tree_depth: bool
    step_size: float
    energy: float
    warmup: bool = False


@dataclass
class ChainResult:
    chain_id: int
    seed: Optional[int]
    dim: int
    draws: List[Draw] = field(default_factory=list)
    warmup_draws: List[Draw] = field(default_factory=list)
    step_size: Optional[float] = None
    inv_metric: Optional[ArrayLike] = None
    metric_kind: Optional[str] = None
    failed: bool = False
    failure_reason: Optional[str] = None
    cancelled: bool = False
    num_divergent: int = 0
    num_max_tree_depth: int = 0
    num_warmup_divergent: int = 0
    warmup_time: float = 0.0
    sampling_time: float = 0.0

    def samples(self) -> ArrayLike:
        """Sampled positions, shape (num_draws, dim)."""
        if not self.draws:
            return gnp.zeros((0, self.dim))
        return gnp.stack([d.position for d in self.draws], axis=0)

    def stats(self) -> Dict[str, ArrayLike]:
        """Per-iteration diagnostics of the sampling phase."""
        return {
            "accept_stat": gnp.asarray([d.accept_stat for d in self.draws], dtype=float),
            "tree_depth": gnp.asarray([d.tree_depth for d in self.draws], dtype=int),
            "n_leapfrog": gnp.asarray([d.n_leapfrog for d in self.draws], dtype=int),
            "divergent": gnp.asarray([d.divergent for d in self.draws], dtype=bool),
            "energy": gnp.asarray([d.energy for d in self.draws], dtype=float),
            "log_density": gnp.asarray([d.log_density for d in self.draws], dtype=float),
        }

    def warnings(self) -> List[str]:
        msgs = []
        n = len(self.draws)
        if self.num_divergent > 0:
            msgs.append(
                f"chain {self.chain_id}: {self.num_divergent} of {n} "
                f"post-warmup transitions diverged"
            )
        if self.num_max_tree_depth > 0:
            msgs.append(
                f"chain {self.chain_id}: {self.num_max_tree_depth} of {n} "
                f"transitions hit the maximum tree depth"
            )
        return msgs


# ---------------------------
# Chain driver
# ---------------------------


class ChainDriver:
    """Runs one Markov chain end-to-end (warmup then sampling)."""

    def __init__(
        self,
        log_density: LogDensity,
        options: Optional[NUTSOptions] = None,
        chain_id: int = 0,
        seed: Optional[int] = None,
        init: Optional[ArrayLike] = None,
    ):
        self.options = (options if options is not None else NUTSOptions()).validate()
        self.log_density = log_density
        self.dim = log_density.dim
        self.chain_id = int(chain_id)
        self.seed = seed
        self.rng = gnp.default_rng(gnp.chain_seed(seed, self.chain_id))

        if init is not None:
            init = gnp.reshape(gnp.array(init), (-1,))
            if init.shape[0] != self.dim:
                raise ConfigurationError(
                    f"init has {init.shape[0]} coordinates, expected {self.dim}"
                )
        self.init = init

        opts = self.options
        self.sampler = NoUTurnSampler(
            log_density,
            max_tree_depth=opts.max_tree_depth,
            max_energy_error=opts.max_energy_error,
            uturn_criterion=opts.uturn_criterion,
            extra_subtree_checks=opts.extra_subtree_checks,
        )
        self.scheduler = WarmupScheduler(opts.num_warmup, **opts.window_kwargs())
        self.metric = EuclideanMetric.identity(self.dim, opts.metric)
        self.mass_adapter = MassMatrixAdapter(
            self.dim,
            opts.metric,
            regularization_scale=opts.metric_regularization_scale,
            regularization_weight=opts.metric_regularization_weight,
        )
        self.step_adapter: Optional[StepSizeAdapter] = None
        self.step_size: Optional[float] = None
        self.state: Optional[PhaseState] = None
        self.iteration = 0

        self.num_divergent = 0
        self.num_max_tree_depth = 0
        self.num_warmup_divergent = 0
        self.warmup_time = 0.0
        self.sampling_time = 0.0
        self._cancel = threading.Event()
        self._logger = SimpleLogger(opts.verbose, prefix=f"chain {self.chain_id}: ")

    def __repr__(self):
        return (
            f"ChainDriver(chain_id={self.chain_id}, dim={self.dim}, "
            f"iteration={self.iteration}, step_size={self.step_size})"
        )

    def cancel(self) -> None:
        """Stop the chain after the current iteration completes."""
        self._cancel.set()

    # ..................................................

    def _clamp_step_size(self, eps: float) -> float:
        eps_min = float(self.options.find_eps_min)
        eps_max = float(self.options.find_eps_max)
        if (not math.isfinite(eps)) or eps <= 0.0:
            return eps_min
        return min(max(eps, eps_min), eps_max)

    def _find_step_size(self, init_step_size: float) -> float:
        opts = self.options
        return find_reasonable_step_size(
            self.log_density,
            self.metric,
            self.state,
            self.rng,
            init_step_size=init_step_size,
            target_accept=opts.find_eps_target_accept,
            scale_base=opts.find_eps_scale_base,
            min_step_size=opts.find_eps_min,
            max_step_size=opts.find_eps_max,
            max_iter=opts.find_eps_max_iter,
        )

    def initialize(self) -> PhaseState:
        """Initial phase-space state, from ``init`` or by random restarts."""
        if self.init is not None:
            try:
                return PhaseState.from_position(self.log_density, self.init)
            except NonFiniteDensityError as e:
                raise InitializationError(
                    f"initialization failed: log density not finite at the given init ({e})"
                ) from e

        radius = float(self.options.init_radius)
        tries = int(self.options.max_init_tries)
        for attempt in range(tries):
            q = -radius + 2.0 * radius * gnp.rand(self.rng, self.dim)
            try:
                return PhaseState.from_position(self.log_density, q)
            except NonFiniteDensityError as e:
                self._logger.log(f"init attempt {attempt + 1} rejected: {e}", level=2)
        raise InitializationError(
            f"initialization failed: no finite log density after {tries} random "
            f"draws in [-{radius:g}, {radius:g}]^{self.dim}"
        )

    def _start(self) -> None:
        opts = self.options
        self.state = self.initialize()
        if opts.init_step_size is None:
            t0 = time.time()
            eps0 = self._find_step_size(opts.find_eps_init)
            self._logger.log(
                f"initial step size heuristic: eps0={eps0:.6g} (took {time.time()-t0:.2f}s)"
            )
        else:
            eps0 = float(opts.init_step_size)
            self._logger.log(f"initial step size: provided eps0={eps0:.6g}")
        self.step_size = self._clamp_step_size(eps0)
        self.step_adapter = StepSizeAdapter(
            self.step_size,
            target_accept=opts.target_accept,
            gamma=opts.dual_averaging_gamma,
            t0=opts.dual_averaging_t0,
            kappa=opts.dual_averaging_kappa,
            mu_factor=opts.dual_averaging_mu_factor,
        )

    def _transition(self, iteration: int, warmup: bool) -> Tuple[Draw, TransitionInfo]:
        step_size = self.step_size
        self.state, info = self.sampler.sample(self.state, step_size, self.metric, self.rng)
        draw = Draw(
            iteration=iteration,
            position=self.state.position,
            log_density=self.state.log_density,
            accept_stat=info.accept_stat,
            tree_depth=info.tree_depth,
            n_leapfrog=info.n_leapfrog,
            divergent=info.divergent,
            hit_max_tree_depth=info.hit_max_tree_depth,
            step_size=step_size,
            energy=info.energy,
            warmup=warmup,
        )
        return draw, info

    def _warmup_iteration(self, t: int) -> Draw:
        draw, info = self._transition(t, warmup=True)
        self.num_warmup_divergent += int(info.divergent)
        self.step_size = self._clamp_step_size(self.step_adapter.observe(info.accept_stat))

        if self.scheduler.in_window(t):
            self.mass_adapter.observe(self.state.position)

        # window end: update metric, restart dual averaging
        if self.scheduler.is_window_end(t):
            self.metric = self.mass_adapter.current_metric()
            self.mass_adapter.reset()
            self._logger.log(
                f"warmup iter {t+1}: metric update at window end; "
                f"mean(inv_metric diag) = {self._mean_inv_metric():.6g}"
            )
            if self.options.rerun_step_size_search:
                self.step_size = self._clamp_step_size(self._find_step_size(self.step_size))
            self.step_adapter.restart(self.step_size)
            self._logger.log(f"warmup iter {t+1}: dual averaging restart; eps={self.step_size:.6g}")
        return draw

    def _finish_warmup(self) -> None:
        self.step_size = self._clamp_step_size(self.step_adapter.finalize())
        self.mass_adapter.freeze()
        self._logger.log(f"warmup: step_size_final={self.step_size:.6g}")
        self._logger.log(f"warmup: inv_metric mean={self._mean_inv_metric():.6g}")

    def _mean_inv_metric(self) -> float:
        m = self.metric.inv_metric
        if self.metric.kind == "dense":
            m = gnp.diag(m)
        return float(gnp.mean(m))

    def _do_log(self, t: int, n: int) -> bool:
        log_every = max(1, int(self.options.log_every))
        do_log = ((t + 1) % log_every == 0) or (t == 0) or (t + 1 == n)
        if self.options.verbose >= 2:
            do_log = ((t + 1) % max(1, log_every // 5) == 0) or do_log
        return do_log

    # ..................................................

    def iter_draws(self) -> Iterator[Draw]:
        """Run the chain, yielding draws in iteration order.

        Warmup draws are yielded (flagged ``warmup=True``) only when
        ``options.save_warmup`` is set. Raises InitializationError if no
        valid initial point is found.
        """
        opts = self.options
        num_warmup, num_samples = opts.num_warmup, opts.num_samples
        progress = bool(opts.progress)

        if self._cancel.is_set():
            return
        if self.state is None:
            self._start()
            self._logger.log(f"dim={self.dim}, {self.scheduler.describe()}")

        t_warm0 = time.time()
        pbar = tqdm(
            range(num_warmup),
            desc=f"chain {self.chain_id} warmup",
            disable=not progress,
            leave=True,
        )
        for t in pbar:
            if self._cancel.is_set():
                return
            draw = self._warmup_iteration(t)
            self.iteration += 1
            if self._do_log(t, num_warmup):
                self._logger.log(
                    f"warmup iter {t+1}/{num_warmup}: eps={self.step_size:.6g}, "
                    f"accept_stat={draw.accept_stat:.3f}, depth={draw.tree_depth}"
                )
            if progress:
                pbar.set_postfix(eps=f"{self.step_size:.3g}", acc=f"{draw.accept_stat:.3f}")
            if opts.save_warmup:
                yield draw
        self.warmup_time = time.time() - t_warm0
        self._finish_warmup()

        t_samp0 = time.time()
        pbar = tqdm(
            range(num_samples),
            desc=f"chain {self.chain_id} sample",
            disable=not progress,
            leave=True,
        )
        for t in pbar:
            if self._cancel.is_set():
                return
            draw, info = self._transition(t, warmup=False)
            self.iteration += 1
            self.num_divergent += int(info.divergent)
            self.num_max_tree_depth += int(info.hit_max_tree_depth)
            if self._do_log(t, num_samples):
                self._logger.log(
                    f"sample iter {t+1}/{num_samples}: accept_stat={draw.accept_stat:.3f}, "
                    f"divergences={self.num_divergent}"
                )
            if progress:
                pbar.set_postfix(eps=f"{self.step_size:.3g}", acc=f"{draw.accept_stat:.3f}")
            yield draw
            self.sampling_time = time.time() - t_samp0

    def run(self, log_summary: bool = True) -> ChainResult:
        """Run the chain to completion and collect its draws.

        Initialization failure is reported in the result (zero draws), not
        raised, so that it does not abort other chains.
        """
        result = ChainResult(chain_id=self.chain_id, seed=self.seed, dim=self.dim)
        try:
            for draw in self.iter_draws():
                if draw.warmup:
                    result.warmup_draws.append(draw)
                else:
                    result.draws.append(draw)
        except InitializationError as e:
            get_logger().error("chain %d: %s", self.chain_id, e)
            result.failed = True
            result.failure_reason = str(e)
            return result
        except KeyboardInterrupt:
            # The interrupted iteration is dropped; completed draws are kept.
            get_logger().warning(
                "chain %d: interrupted after %d iterations", self.chain_id, self.iteration
            )
            self.cancel()

        result.cancelled = self._cancel.is_set()
        result.step_size = self.step_size
        result.inv_metric = gnp.copy(self.metric.inv_metric)
        result.metric_kind = self.metric.kind
        result.num_divergent = self.num_divergent
        result.num_max_tree_depth = self.num_max_tree_depth
        result.num_warmup_divergent = self.num_warmup_divergent
        result.warmup_time = self.warmup_time
        result.sampling_time = self.sampling_time
        if log_summary:
            for msg in result.warnings():
                get_logger().warning(msg)
        return result


# ---------------------------
# Sampling driver
# ---------------------------


def _check_model(log_density: LogDensity, q: ArrayLike) -> None:
    """One evaluation before any chain starts, to catch dimension errors.

    A non-finite value at q is not an error here: chains may still
    initialize elsewhere.
    """
    try:
        log_density.evaluate(q)
    except NonFiniteDensityError:
        pass
    except ValueError as e:
        raise ConfigurationError(
            f"{log_density.name} rejected a ({log_density.dim},) input: {e}"
        ) from e


def _chain_inits(init, num_chains: int, dim: int) -> List[Optional[ArrayLike]]:
    if init is None:
        return [None] * num_chains
    init = gnp.array(init)
    if init.ndim == 1:
        if init.shape[0] != dim:
            raise ConfigurationError(f"init has {init.shape[0]} coordinates, expected {dim}")
        return [init] * num_chains
    if init.ndim != 2 or init.shape[0] != num_chains or init.shape[1] != dim:
        raise ConfigurationError(
            f"init must have shape ({dim},) or ({num_chains}, {dim}), got {tuple(init.shape)}"
        )
    return [init[c] for c in range(num_chains)]


def nuts_sample(
    log_density: Union[LogDensity, Callable[[ArrayLike], ArrayLike]],
    num_samples: int = 1000,
    *,
    dim: Optional[int] = None,
    num_chains: int = 4,
    num_warmup: int = 1000,
    target_accept: float = 0.80,
    max_tree_depth: int = 10,
    metric: str = "diag",
    init: Optional[ArrayLike] = None,
    seed: Optional[int] = None,
    n_workers: int = 1,
    progress: bool = False,
    verbose: int = 1,
    options: Optional[NUTSOptions] = None,
) -> Tuple[ArrayLike, Dict[str, object]]:
    """Run independent NUTS chains.

    log_density:
      a LogDensity, or a function q -> log_prob(q) differentiated by the
      numerical backend (requires ``dim`` or ``init``).
    init:
      None (random init in [-init_radius, init_radius]^dim), one vector of
      shape (dim,) shared by all chains, or one row per chain.
    options:
      Optional NUTSOptions object. Keyword arguments override `options`
      when set to non-default values.
    n_workers:
      number of threads running chains concurrently.

    Returns (samples, info) with samples of shape (num_samples, chains, dim)
    over the chains that did not fail.
    """
    opts = resolve_nuts_options(
        options,
        num_samples=num_samples,
        num_warmup=num_warmup,
        target_accept=target_accept,
        max_tree_depth=max_tree_depth,
        metric=metric,
        progress=progress,
        verbose=verbose,
    ).validate()
    if num_chains < 1:
        raise ConfigurationError("num_chains must be at least 1")

    if not isinstance(log_density, LogDensity):
        if dim is None:
            if init is None:
                raise ConfigurationError("dim or init is required with a plain log_prob")
            dim = gnp.array(init).shape[-1]
        log_density = LogDensity.from_log_prob(log_density, dim)
    elif dim is not None and dim != log_density.dim:
        raise ConfigurationError(f"dim={dim} does not match log_density.dim={log_density.dim}")
    dim = log_density.dim

    inits = _chain_inits(init, num_chains, dim)
    _check_model(log_density, inits[0] if inits[0] is not None else gnp.zeros(dim))
    drivers = [
        ChainDriver(log_density, opts, chain_id=c, seed=seed, init=inits[c])
        for c in range(num_chains)
    ]

    logger = SimpleLogger(verbose=opts.verbose)
    logger.log(f"chains={num_chains}, dim={dim}")
    logger.log(f"num_warmup={opts.num_warmup}, num_samples={opts.num_samples}")
    logger.log(
        f"target_accept={opts.target_accept}, max_tree_depth={opts.max_tree_depth}, "
        f"max_energy_error={opts.max_energy_error}, metric={opts.metric}"
    )

    def _run(driver: ChainDriver) -> ChainResult:
        result = driver.run(log_summary=False)
        if result.cancelled:
            # an interrupted chain stops the chains that have not started yet
            for d in drivers:
                d.cancel()
        return result

    if n_workers > 1:
        with ThreadPool(min(n_workers, num_chains)) as pool:
            results = pool.map(_run, drivers)
    else:
        results = [_run(d) for d in drivers]

    ok = [r for r in results if not r.failed]
    if ok:
        n_kept = min(len(r.draws) for r in ok)
        if any(r.cancelled for r in ok):
            get_logger().warning(
                "sampling interrupted; keeping the first %d draws of each chain", n_kept
            )
        samples = gnp.stack([r.samples()[:n_kept] for r in ok], axis=1)
        stats = [r.stats() for r in ok]
        info_stats = {
            key: gnp.stack([s[key][:n_kept] for s in stats], axis=1) for key in stats[0]
        }
    else:
        samples = gnp.zeros((0, 0, dim))
        info_stats = {}

    warnings = [msg for r in results for msg in r.warnings()]
    for msg in warnings:
        get_logger().warning(msg)
    failed = {r.chain_id: r.failure_reason for r in results if r.failed}
    if failed:
        get_logger().warning(
            "%d of %d chains failed to initialize: %s",
            len(failed),
            num_chains,
            sorted(failed),
        )

    info = dict(info_stats)
    info.update(
        {
            "chain_ids": [r.chain_id for r in ok],
            "step_size_final": [r.step_size for r in ok],
            "inv_metric_final": [r.inv_metric for r in ok],
            "num_divergent": sum(r.num_divergent for r in ok),
            "num_max_tree_depth": sum(r.num_max_tree_depth for r in ok),
            "failed_chains": failed,
            "warnings": warnings,
            "chain_results": results,
        }
    )
    return samples, info
