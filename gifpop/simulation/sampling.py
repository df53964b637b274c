"""Draw the integer spike count of a population from its expected value.

Two samplers are available, selected per population:

    BINOMIAL  each of the N neurons fires independently with p = n_expect / N
    POISSON   the count is Poisson with mean n_expect

Both saturate at N. The Poisson sampler falls back to a single Bernoulli
trial when the mean is so small that P(count >= 1) cannot be told apart
from P(count == 1) in double precision.
"""

import numpy as np

from gifpop.models.gif_params import SpikeCountSampling

# Smallest positive normalized double.
MIN_DOUBLE = np.finfo(np.float64).tiny


def draw_poisson(n_expect, N, rng):
    """Poisson spike count with mean n_expect, clipped to [0, N]."""
    if n_expect > N:
        return N
    if n_expect <= MIN_DOUBLE:
        return 0

    if 1.0 - (n_expect + 1.0) * np.exp(-n_expect) > MIN_DOUBLE:
        n_spikes = int(rng.poisson(n_expect))
    else:
        n_spikes = int(rng.random_sample() < n_expect)

    return min(max(n_spikes, 0), N)


def draw_binomial(n_expect, N, rng):
    """Binomial spike count out of N trials with p = n_expect / N."""
    p = n_expect / N
    if p >= 1.0:
        return N
    if p <= 0.0:
        return 0
    return int(rng.binomial(N, p))


_SAMPLERS = {
    SpikeCountSampling.BINOMIAL: draw_binomial,
    SpikeCountSampling.POISSON: draw_poisson,
}


def draw_spike_count(n_expect, N, sampling, rng):
    """Draw a spike count with the given sampler.

    Parameters
    ----------
    n_expect : float
        Expected number of spikes this step (may exceed N).
    N : int
        Population size.
    sampling : SpikeCountSampling
        Which sampler to use.
    rng : np.random.RandomState
        Per-population random source.

    Returns
    -------
    int
        Spike count in [0, N].
    """
    return _SAMPLERS[sampling](n_expect, N, rng)
