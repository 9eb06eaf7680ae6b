"""
Samples a correlated bivariate Gaussian with NUTS, once with a diagonal
and once with a dense metric, and compares the adapted inverse metrics
with the true covariance.

Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
Copyright (c) 2022-2026, CentraleSupelec
License: GPLv3 (see LICENSE)
"""

import numpy as np

import hmcmp.num as gnp
from hmcmp.mcmc import LogDensity, NUTSOptions, nuts_sample


def make_log_density():
    """
    Zero-mean Gaussian with covariance [[1, 1.8], [1.8, 4]].

    Returns
    -------
    (LogDensity, numpy.ndarray)
        log density with analytic gradient, and the covariance
    """
    cov = np.array([[1.0, 1.8], [1.8, 4.0]])
    prec = gnp.asarray(np.linalg.inv(cov))

    def value_and_grad(q):
        g = -gnp.matmul(prec, q)
        return 0.5 * gnp.dot(q, g), g

    return LogDensity(value_and_grad, dim=2, name="correlated_gaussian"), cov


def summarize(name, samples, info):
    x = gnp.to_np(samples).reshape(-1, samples.shape[-1])
    print(f"\n{name}")
    print("-" * len(name))
    print(f"mean             : {x.mean(axis=0)}")
    print(f"covariance       :\n{np.cov(x, rowvar=False)}")
    print(f"final step sizes : {np.round(info['step_size_final'], 4)}")
    print(f"mean tree depth  : {gnp.to_np(info['tree_depth']).mean():.2f}")
    print(f"divergences      : {info['num_divergent']}")


def main():
    log_density, cov = make_log_density()
    print(f"true covariance:\n{cov}")

    for metric in ("diag", "dense"):
        options = NUTSOptions(metric=metric, verbose=0)
        samples, info = nuts_sample(
            log_density,
            num_samples=1000,
            num_chains=4,
            seed=2026,
            options=options,
        )
        summarize(f"metric = {metric}", samples, info)
        print(f"inverse metric (chain 0):\n{gnp.to_np(info['inv_metric_final'][0])}")


if __name__ == "__main__":
    main()
