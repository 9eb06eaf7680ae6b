"""
Samples a two-dimensional banana-shaped density, given as a plain log
density function. Gradients come from the numerical backend (autograd
with torch, finite differences with numpy).

Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
Copyright (c) 2022-2026, CentraleSupelec
License: GPLv3 (see LICENSE)
"""

import numpy as np

import hmcmp
import hmcmp.num as gnp
from hmcmp.mcmc import nuts_sample


def banana_log_prob(q, b=0.5):
    """Banana density: x ~ N(0, 4), y | x ~ N(b * (x^2 - 4), 1)."""
    x, y = q[0], q[1]
    return -0.5 * (x**2 / 4.0 + (y - b * (x**2 - 4.0)) ** 2)


def main():
    print(f"HMCmp {hmcmp.__version__}, backend: {hmcmp.config.get_backend()}")

    samples, info = nuts_sample(
        banana_log_prob,
        dim=2,
        num_samples=1000,
        num_warmup=1000,
        num_chains=2,
        n_workers=2,
        target_accept=0.9,
        seed=1,
        progress=True,
    )

    x = gnp.to_np(samples).reshape(-1, 2)
    print("\nPosterior summary")
    print("-----------------")
    print(f"E[x], E[y]     : {x.mean(axis=0)} (exact: [0, 0])")
    print(f"Var[x]         : {x[:, 0].var():.3f} (exact: 4)")
    print(f"accept_stat    : {gnp.to_np(info['accept_stat']).mean():.3f}")
    print(f"leapfrog/iter  : {gnp.to_np(info['n_leapfrog']).mean():.1f}")
    for msg in info["warnings"]:
        print(f"warning: {msg}")


if __name__ == "__main__":
    main()
