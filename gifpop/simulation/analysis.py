"""Post-simulation analysis of population spike counts.

Functions for population rates, count statistics and for comparing the
spike-count distributions produced by two runs (e.g. Binomial against
Poisson sampling).
"""

import numpy as np
import pandas as pd
from scipy import stats


def population_rate(result, label, bin_ms=None):
    """Population firing rate (Hz per neuron).

    Parameters
    ----------
    result : PopulationResult
        Simulation output.
    label : str
        Population label.
    bin_ms : float, optional
        Bin width (ms). If None, the rate is given per time step.

    Returns
    -------
    times : np.ndarray
        Bin start times (ms).
    rate : np.ndarray
        Firing rate in each bin (Hz).
    """
    counts = result.spike_counts(label)
    N = result.population_sizes[label]
    dt = result.dt

    bin_steps = 1 if bin_ms is None else max(1, int(round(bin_ms / dt)))
    n_bins = len(counts) // bin_steps
    binned = counts[:n_bins * bin_steps].reshape(n_bins, bin_steps).sum(axis=1)

    rate = binned / (N * bin_steps * dt / 1000.0)
    times = np.arange(n_bins) * bin_steps * dt
    return times, rate


def fano_factor(counts, bin_steps=1):
    """Variance over mean of spike counts in bins of bin_steps steps."""
    counts = np.asarray(counts, dtype=np.float64)
    n_bins = len(counts) // bin_steps
    binned = counts[:n_bins * bin_steps].reshape(n_bins, bin_steps).sum(axis=1)
    mean = binned.mean() if n_bins > 0 else 0.0
    if mean == 0.0:
        return np.nan
    return float(binned.var() / mean)


def rate_summary(result, time_window=None):
    """Per-population activity summary.

    Parameters
    ----------
    result : PopulationResult
        Simulation output.
    time_window : tuple of float, optional
        (start_ms, end_ms) to restrict the statistics.

    Returns
    -------
    pd.DataFrame
        One row per population: n_neurons, total_spikes, mean_rate_hz,
        fano_factor, and mean_expected when "mean" was recorded.
    """
    t = result.time
    mask = np.ones(len(t), dtype=bool)
    if time_window is not None:
        mask = (t > time_window[0]) & (t <= time_window[1])
    duration_s = mask.sum() * result.dt / 1000.0

    rows = []
    for label in result.labels:
        counts = result.spike_counts(label)[mask]
        N = result.population_sizes[label]
        row = {
            "population": label,
            "n_neurons": N,
            "total_spikes": int(counts.sum()),
            "mean_rate_hz": counts.sum() / (N * duration_s) if duration_s > 0 else 0.0,
            "fano_factor": fano_factor(counts),
        }
        if "mean" in result.traces[label]:
            row["mean_expected"] = float(result.trace(label, "mean")[mask].mean())
        rows.append(row)
    return pd.DataFrame(rows)


def compare_count_distributions(counts_a, counts_b, min_expected=5.0):
    """Test whether two samples of spike counts share a distribution.

    Runs a two-sample Kolmogorov-Smirnov test and a chi-square test of
    homogeneity on the count histograms. Sparse tail counts are pooled
    so that every expected cell frequency is at least `min_expected`.

    Parameters
    ----------
    counts_a, counts_b : array-like of int
        Spike counts per step from two runs.
    min_expected : float
        Minimum expected frequency per histogram cell.

    Returns
    -------
    dict
        ks_statistic, ks_pvalue, chi2, chi2_pvalue, dof, mean_a, mean_b,
        var_a, var_b.
    """
    a = np.asarray(counts_a, dtype=np.int64)
    b = np.asarray(counts_b, dtype=np.int64)

    ks = stats.ks_2samp(a, b)

    top = int(max(a.max(), b.max()))
    table = np.vstack([
        np.bincount(a, minlength=top + 1),
        np.bincount(b, minlength=top + 1),
    ]).astype(np.float64)
    table = _pool_sparse_cells(table, min_expected)

    if table.shape[1] > 1:
        chi2, chi2_p, dof, _ = stats.chi2_contingency(table)
    else:
        chi2, chi2_p, dof = 0.0, 1.0, 0

    return {
        "ks_statistic": float(ks.statistic),
        "ks_pvalue": float(ks.pvalue),
        "chi2": float(chi2),
        "chi2_pvalue": float(chi2_p),
        "dof": int(dof),
        "mean_a": float(a.mean()),
        "mean_b": float(b.mean()),
        "var_a": float(a.var()),
        "var_b": float(b.var()),
    }


def _pool_sparse_cells(table, min_expected):
    """Merge adjacent histogram columns until expected counts are large enough."""
    total = table.sum()
    row_frac = table.sum(axis=1, keepdims=True) / total

    pooled = []
    acc = np.zeros((table.shape[0], 1))
    for col in table.T:
        acc[:, 0] += col
        if (row_frac[:, 0] * acc[:, 0].sum()).min() >= min_expected:
            pooled.append(acc[:, 0].copy())
            acc[:] = 0.0
    if acc.sum() > 0:
        if pooled:
            pooled[-1] = pooled[-1] + acc[:, 0]
        else:
            pooled.append(acc[:, 0].copy())
    return np.column_stack(pooled)
