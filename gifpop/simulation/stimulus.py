"""Stimulus protocols for population simulation.

Each generator returns a 1-d array of length n_steps holding the input
of one population per time step, together with a StimulusProtocol for
provenance. Spike inputs are summed synaptic weights (pA) and go to the
`stimulus` argument of the engine; currents (pA) go to `current`.
"""

from dataclasses import dataclass

import numpy as np


@dataclass
class StimulusProtocol:
    """Description of a stimulus for provenance tracking.

    Attributes
    ----------
    name : str
        Protocol name.
    params : dict
        Protocol parameters.
    """
    name: str
    params: dict


def poisson_input(n_steps, rate_hz=10.0, n_sources=100, weight=20.0,
                  dt=0.1, seed=None):
    """Spikes from a pool of independent Poisson sources.

    Parameters
    ----------
    n_steps : int
        Number of simulation timesteps.
    rate_hz : float
        Firing rate of each source (Hz).
    n_sources : int
        Number of sources projecting onto the population.
    weight : float
        Synaptic weight per spike (pA); negative for inhibitory input.
    dt : float
        Timestep (ms).
    seed : int, optional
        Random seed.

    Returns
    -------
    stimulus : np.ndarray
        Shape (n_steps,), summed weight arriving in each step.
    protocol : StimulusProtocol
    """
    rng = np.random.RandomState(seed)
    mean_count = n_sources * rate_hz * dt / 1000.0
    stimulus = rng.poisson(mean_count, size=n_steps) * weight

    protocol = StimulusProtocol(
        name="poisson",
        params={"rate_hz": rate_hz, "n_sources": n_sources,
                "weight": weight, "dt": dt, "seed": seed},
    )
    return stimulus.astype(np.float64), protocol


def step_current(n_steps, amplitude=100.0, start_ms=100.0, end_ms=500.0, dt=0.1):
    """Constant current between start_ms and end_ms.

    Returns
    -------
    current : np.ndarray
        Shape (n_steps,), current in pA.
    protocol : StimulusProtocol
    """
    current = np.zeros(n_steps, dtype=np.float64)
    start_step = int(start_ms / dt)
    end_step = min(int(end_ms / dt), n_steps)
    current[start_step:end_step] = amplitude

    protocol = StimulusProtocol(
        name="step",
        params={"amplitude": amplitude, "start_ms": start_ms, "end_ms": end_ms},
    )
    return current, protocol


def pulse_input(n_steps, weight=500.0, time_ms=100.0, dt=0.1):
    """A single volley of synaptic input at time_ms.

    Returns
    -------
    stimulus : np.ndarray
        Shape (n_steps,), weight (pA) in the step containing time_ms.
    protocol : StimulusProtocol
    """
    stimulus = np.zeros(n_steps, dtype=np.float64)
    step = int(time_ms / dt)
    if step < n_steps:
        stimulus[step] = weight

    protocol = StimulusProtocol(
        name="pulse",
        params={"weight": weight, "time_ms": time_ms},
    )
    return stimulus, protocol


def combine_stimuli(*stimuli):
    """Sum stimulus arrays of the same shape."""
    result = np.array(stimuli[0], dtype=np.float64)
    for s in stimuli[1:]:
        result += s
    return result


def as_input_matrix(values, labels, n_steps, what="stimulus"):
    """Arrange per-population inputs as an array of shape (n_populations, n_steps).

    Parameters
    ----------
    values : None, array-like or dict
        None; an array of shape (n_populations, n_steps) in label order
        (1-d allowed for a single population); or a dict mapping labels
        to arrays of length n_steps. Missing labels get zero input.
    labels : list of str
        Population labels in network order.
    n_steps : int
        Number of timesteps.
    what : str
        Name used in error messages.

    Returns
    -------
    np.ndarray or None
    """
    if values is None:
        return None
    if isinstance(values, dict):
        unknown = set(values) - set(labels)
        if unknown:
            raise ValueError(f"{what} for unknown population(s): {sorted(unknown)}")
        matrix = np.zeros((len(labels), n_steps))
        for i, label in enumerate(labels):
            if label not in values:
                continue
            row = np.asarray(values[label], dtype=np.float64)
            if row.shape != (n_steps,):
                raise ValueError(f"{what} for '{label}' must have length {n_steps}, "
                                 f"got shape {row.shape}")
            matrix[i] = row
        return matrix

    matrix = np.asarray(values, dtype=np.float64)
    if matrix.ndim == 1:
        matrix = matrix[None, :]
    if matrix.shape != (len(labels), n_steps):
        raise ValueError(f"{what} must have shape ({len(labels)}, {n_steps}), "
                         f"got {matrix.shape}")
    return matrix
