"""Adaptation kernel, history sizing and escape-rate functions.

The threshold of a GIF neuron jumps after every spike and relaxes back
as a sum of exponentials:

    theta(t) = sum_j q_j * exp(-t / tau_j)

The population model needs this kernel on the simulation grid, both to
fill its history table and to decide how many steps of history are
worth keeping.

Spiking is an inhomogeneous point process with hazard

    lambda(u - theta) = lambda_0 * exp((u - theta) / Delta_V)

References:
    Schwalger T et al. (2017). PLoS Comput Biol 13(4):e1005507, Eqs. 89-90.
"""

from dataclasses import dataclass

import numpy as np

# Longest history the automatic sizing will consider (ms).
MAX_KERNEL_MS = 20000.0

# Relative kernel amplitude (in units of Delta_V) below which the
# adaptation tail is folded into the free population.
KERNEL_TOLERANCE = 0.1


def adaptation_kernel(k, tau_sfa, q_sfa, h):
    """Sum-of-exponentials adaptation kernel at a lag of k steps.

    Parameters
    ----------
    k : int or array-like of int
        Lag in time steps (>= 0).
    tau_sfa : sequence of float
        Adaptation time constants (ms).
    q_sfa : sequence of float
        Adaptation jump sizes (mV).
    h : float
        Time step (ms).

    Returns
    -------
    float or np.ndarray
        Kernel value(s) in mV, same shape as k.
    """
    k = np.asarray(k, dtype=np.float64)
    tau = np.asarray(tau_sfa, dtype=np.float64)
    q = np.asarray(q_sfa, dtype=np.float64)
    # Outer product over lags x exponentials, evaluated directly.
    values = np.exp(-np.multiply.outer(k * h, 1.0 / tau)) @ q
    if values.ndim == 0:
        return float(values)
    return values


def history_size(params, h):
    """Choose the history buffer length (in steps) for a population.

    Searches downward from MAX_KERNEL_MS and returns the shortest lag on
    that path at which the adaptation kernel has decayed below
    KERNEL_TOLERANCE * Delta_V. The result is at least 5 * tau_m worth of
    steps, and always covers the absolute refractory period plus one step.

    Parameters
    ----------
    params : GIFPopParams
        Population parameters.
    h : float
        Time step (ms).

    Returns
    -------
    int
    """
    k_max = int(MAX_KERNEL_MS / h)
    k_min = int(5 * params.tau_m / h)

    k = k_max
    if k_max > k_min:
        lags = np.arange(k_max, k_min, -1)
        relative = adaptation_kernel(lags, params.tau_sfa, params.q_sfa, h) / params.Delta_V
        above = np.flatnonzero(relative >= KERNEL_TOLERANCE)
        if len(above) == 0:
            k = k_min
        elif above[0] == 0:
            # Kernel never decays within MAX_KERNEL_MS.
            k = k_max
        else:
            # First lag (searching down) still above tolerance, plus one.
            k = int(lags[above[0]]) + 1

    if k * h <= params.t_ref:
        k = int(params.t_ref / h) + 1
    return k


@dataclass(frozen=True)
class ExponentialEscapeRate:
    """Exponential hazard lambda(x) = lambda_0 * exp(x / Delta_V), in 1/s.

    x is the distance of the membrane potential above the (adapted)
    threshold in mV. The rate is not clamped; callers convert it to a
    probability per step.
    """
    lambda_0: float
    Delta_V: float

    @classmethod
    def from_params(cls, params):
        return cls(lambda_0=params.lambda_0, Delta_V=params.Delta_V)

    def __call__(self, x):
        if self.lambda_0 == 0.0:
            return np.zeros_like(x, dtype=np.float64) if np.ndim(x) else 0.0
        with np.errstate(over="ignore"):
            return self.lambda_0 * np.exp(np.asarray(x, dtype=np.float64) / self.Delta_V)
