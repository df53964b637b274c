"""Tests for the GIF population model.

Drives single populations step by step, the way the engine does, and
checks the bookkeeping of the spike history, the membrane and synaptic
integration, and the bounds on expected and drawn spike counts.
"""

import math

import numpy as np
import pytest

from gifpop.models import GIFPopParams, SpikeCountSampling
from gifpop.simulation.kernels import adaptation_kernel
from gifpop.simulation.population import (
    GIFPopulation, RECORDABLES, LINEAR_ESCAPE_LIMIT, escape_probability,
)


def run_steps(pop, n_steps, names=("V_m", "n_events", "mean")):
    """Advance a calibrated population one step at a time and record."""
    rec = {name: [] for name in names}
    events = []
    for step in range(n_steps):
        for lag, n in pop.update(0, 1):
            events.append((step, n))
        for name in names:
            rec[name].append(pop.get_recordable(name))
        pop.advance_buffers(1)
    return {name: np.array(vals) for name, vals in rec.items()}, events


@pytest.fixture
def population():
    pop = GIFPopulation(seed=42)
    pop.calibrate(0.1)
    return pop


# ---------------------------------------------------------------------------
# Calibration and history allocation
# ---------------------------------------------------------------------------

class TestCalibration:

    def test_auto_history_length(self, population):
        assert population.history_length == 2749
        assert population.get_status()["history_length"] == 2749

    def test_initial_occupancy(self, population):
        hist = population.history
        assert hist.n[-1] == 100
        assert hist.m[-1] == 100
        assert hist.m.sum() == 100
        assert hist.x == 0.0
        assert hist.z == 0.0
        assert hist.k0 == 0

    def test_refractory_steps(self, population):
        assert population.history.k_ref == 40

    def test_threshold_tables(self, population):
        hist = population.history
        p = population.params
        K = hist.K
        assert hist.theta[0] == pytest.approx(adaptation_kernel(K, p.tau_sfa, p.q_sfa, 0.1))
        assert hist.theta[-1] == pytest.approx(adaptation_kernel(1, p.tau_sfa, p.q_sfa, 0.1))
        expected = p.Delta_V * (1 - np.exp(-hist.theta[5] / p.Delta_V)) / p.N
        assert hist.theta_tld[5] == pytest.approx(expected)

    def test_adaptation_constants(self, population):
        hist = population.history
        K = hist.K
        assert hist.Q30[0] == pytest.approx(np.exp(-0.1 / 300.0))
        assert hist.Q30K[0] == pytest.approx(0.5 * 300.0 * np.exp(-0.1 * K / 300.0))
        np.testing.assert_array_equal(hist.g, [0.0])

    def test_explicit_history_length(self):
        pop = GIFPopulation(len_kernel=300)
        pop.calibrate(0.1)
        assert pop.history_length == 300

    def test_recalibration_keeps_history(self, population):
        hist = population.history
        population.calibrate(0.1)
        assert population.history is hist

    def test_state_write_reallocates(self, population):
        hist = population.history
        population.set_state(V_m=3.0)
        assert not population.state.initialized
        population.calibrate(0.1)
        assert population.history is not hist
        assert population.state.V_m == 3.0

    def test_parameter_write_reallocates(self, population):
        population.set_params(N=50)
        population.calibrate(0.1)
        assert population.history.n[-1] == 50

    def test_rejected_parameter_write(self, population):
        with pytest.raises(ValueError):
            population.set_params(N=-1)
        assert population.params.N == 100
        assert population.state.initialized

    def test_step_size_change_reallocates(self, population):
        population.calibrate(0.5)
        assert population.history.h == 0.5

    def test_empty_adaptation_rejected(self):
        pop = GIFPopulation(tau_sfa=(), q_sfa=())
        with pytest.raises(ValueError, match="empty"):
            pop.calibrate(0.1)

    def test_update_requires_calibration(self):
        pop = GIFPopulation()
        with pytest.raises(ValueError, match="calibrate"):
            pop.update(0, 1)

    def test_invalid_step_range(self, population):
        with pytest.raises(ValueError):
            population.update(3, 3)


# ---------------------------------------------------------------------------
# Parameter / state exchange and recordables
# ---------------------------------------------------------------------------

class TestStatus:

    def test_status_contents(self, population):
        status = population.get_status()
        for key in ("N", "tau_m", "tau_sfa", "sampling", "V_m", "n_spikes",
                    "theta_hat", "I_syn_ex"):
            assert key in status

    def test_recordables(self, population):
        run_steps(population, 1)
        for name in RECORDABLES:
            assert np.isfinite(population.get_recordable(name))

    def test_unknown_recordable(self, population):
        with pytest.raises(KeyError):
            population.get_recordable("w")

    def test_unwritable_state(self, population):
        with pytest.raises(KeyError):
            population.set_state(n_expect=3.0)

    def test_free_threshold_starts_at_baseline(self, population):
        run_steps(population, 1)
        assert population.get_recordable("E_sfa") == pytest.approx(15.0)


# ---------------------------------------------------------------------------
# Membrane and synaptic integration
# ---------------------------------------------------------------------------

class TestIntegration:

    def test_passive_relaxation(self):
        pop = GIFPopulation(E_L=0.0, V_reset=0.0, seed=1)
        pop.set_state(V_m=10.0)
        pop.calibrate(0.1)
        rec, _ = run_steps(pop, 200, names=("V_m",))
        t = (np.arange(200) + 1) * 0.1
        np.testing.assert_allclose(rec["V_m"], 10.0 * np.exp(-t / 20.0), rtol=1e-9)

    def test_current_acts_after_one_step(self, population):
        population.handle_current(500.0, offset=0)
        rec, _ = run_steps(population, 2, names=("V_m",))
        assert rec["V_m"][0] == 0.0
        assert rec["V_m"][1] == pytest.approx(500.0 * population.prop.P20)

    def test_excitatory_current_jump_and_decay(self, population):
        population.handle_spike(1000.0, offset=0)
        rec, _ = run_steps(population, 2, names=("I_syn_ex", "I_syn_in"))
        jump = 1000.0 / 0.1 * 3.0 * (1 - np.exp(-0.1 / 3.0))
        assert rec["I_syn_ex"][0] == pytest.approx(jump)
        assert rec["I_syn_ex"][1] == pytest.approx(jump * np.exp(-0.1 / 3.0))
        np.testing.assert_array_equal(rec["I_syn_in"], [0.0, 0.0])

    def test_inhibition_hyperpolarizes(self):
        quiet = GIFPopulation(seed=3)
        inhibited = GIFPopulation(seed=3)
        for pop in (quiet, inhibited):
            pop.calibrate(0.1)
        for _ in range(50):
            inhibited.handle_spike(-500.0, offset=0)
            run_steps(inhibited, 1)
            run_steps(quiet, 1)
        assert inhibited.state.I_syn_in < 0
        assert inhibited.state.V_m < quiet.state.V_m

    def test_spike_routing_by_sign(self, population):
        population.handle_spike(2.0, multiplicity=3, offset=4)
        population.handle_spike(-1.0, multiplicity=2, offset=4)
        assert population.ex_spikes.peek(4) == 6.0
        assert population.in_spikes.peek(4) == -2.0

    @pytest.mark.parametrize("tau_syn", [20.0, 20.000001])
    def test_equal_synaptic_and_membrane_time_constant(self, tau_syn):
        pop = GIFPopulation(tau_m=20.0, tau_syn_ex=tau_syn, lambda_0=0.0)
        pop.calibrate(0.1)
        pop.handle_spike(1000.0, offset=0)
        rec, _ = run_steps(pop, 100, names=("V_m",))
        assert np.all(np.isfinite(rec["V_m"]))
        assert rec["V_m"].max() > 0.0

    def test_equal_time_constant_matches_neighbour(self):
        traces = []
        for tau_syn in (20.0, 20.000001):
            pop = GIFPopulation(tau_m=20.0, tau_syn_ex=tau_syn, lambda_0=0.0)
            pop.calibrate(0.1)
            pop.handle_spike(1000.0, offset=0)
            rec, _ = run_steps(pop, 100, names=("V_m",))
            traces.append(rec["V_m"])
        np.testing.assert_allclose(traces[0], traces[1], rtol=1e-5)


# ---------------------------------------------------------------------------
# Spike counts
# ---------------------------------------------------------------------------

class TestSpikeCounts:

    def test_zero_escape_rate_never_spikes(self):
        pop = GIFPopulation(lambda_0=0.0, I_e=1e5, len_kernel=50, seed=5)
        pop.calibrate(0.1)
        rec, events = run_steps(pop, 300)
        assert events == []
        np.testing.assert_array_equal(rec["n_events"], 0)
        np.testing.assert_array_equal(rec["mean"], 0.0)

    def test_zero_escape_rate_conserves_population(self):
        pop = GIFPopulation(lambda_0=0.0, len_kernel=50, seed=5)
        pop.calibrate(0.1)
        run_steps(pop, 120)
        assert pop.history.total_mass == pytest.approx(100.0)
        assert pop.history.x == pytest.approx(100.0)

    @pytest.mark.parametrize("sampling", list(SpikeCountSampling))
    def test_counts_bounded_under_strong_drive(self, sampling):
        pop = GIFPopulation(N=50, I_e=1000.0, len_kernel=100,
                            sampling=sampling, seed=11)
        pop.calibrate(0.1)
        rec, _ = run_steps(pop, 1500)
        assert np.all(np.isfinite(rec["mean"]))
        assert np.all(rec["mean"] >= 0.0)
        assert np.all(rec["n_events"] >= 0)
        assert np.all(rec["n_events"] <= 50)
        assert rec["n_events"].sum() > 0
        assert pop.history.m.max() <= 50

    def test_silent_until_refractory_period_ends(self):
        pop = GIFPopulation(V_T_star=-10.0, lambda_0=1000.0, seed=2)
        pop.calibrate(0.1)
        rec, _ = run_steps(pop, 60)
        # every neuron fired just before the start and is refractory for 40 steps
        np.testing.assert_array_equal(rec["mean"][:39], 0.0)
        assert rec["mean"][45:].sum() > 0.0

    def test_events_only_for_positive_counts(self):
        pop = GIFPopulation(V_T_star=0.0, seed=9)
        pop.calibrate(0.1)
        run_steps(pop, 100)
        counts = []
        events = pop.update(0, 50, observer=lambda lag, p: counts.append(p.state.n_spikes))
        lags = [lag for lag, _ in events]
        assert lags == sorted(lags)
        assert all(n > 0 for _, n in events)
        assert sum(n for _, n in events) == sum(counts)
        assert len(counts) == 50

    def test_same_seed_same_counts(self):
        runs = []
        for seed in (123, 123, 124):
            pop = GIFPopulation(V_T_star=0.0, len_kernel=500, seed=seed)
            pop.calibrate(0.1)
            rec, _ = run_steps(pop, 2000, names=("n_events",))
            runs.append(rec["n_events"])
        np.testing.assert_array_equal(runs[0], runs[1])
        assert runs[0].sum() > 0
        assert not np.array_equal(runs[0], runs[2])

    def test_injected_escape_rate(self):
        def silent(params):
            return lambda x: np.zeros_like(np.asarray(x, dtype=np.float64))

        pop = GIFPopulation(V_T_star=-50.0, escape_rate_factory=silent, seed=4)
        pop.calibrate(0.1)
        rec, _ = run_steps(pop, 200, names=("n_events",))
        assert rec["n_events"].sum() == 0

    def test_population_conserved_on_average(self):
        pop = GIFPopulation(N=5000, V_T_star=0.0, q_sfa=(0.0,),
                            len_kernel=200, seed=17)
        pop.calibrate(0.1)
        mass, total = [], 0
        for _ in range(3000):
            for _, n in pop.update(0, 1):
                total += n
            mass.append(pop.history.total_mass)
            pop.advance_buffers(1)
        assert total > 0
        # single draws move the total away from N; the expected count pulls it back
        assert np.mean(mass) == pytest.approx(5000.0, rel=0.05)


# ---------------------------------------------------------------------------
# Step-by-step comparison with a scalar rendition of the update
# ---------------------------------------------------------------------------

def scalar_update_loop(params, h, n_steps, seed):
    """Expected and drawn spike counts from a slot-by-slot loop.

    Binomial sampling, constant current, no synaptic input. Returns the
    expected counts, the drawn counts, and how often each branch of the
    per-slot escape probability was taken.
    """
    N, K = params.N, params.len_kernel
    DV, E_L = params.Delta_V, params.E_L
    k_ref = int(round(params.t_ref / h))
    pairs = list(zip(params.tau_sfa, params.q_sfa))

    def kernel(lag):
        return sum(q * math.exp(-lag * h / tau) for tau, q in pairs)

    def esc(d):
        return params.lambda_0 * math.exp(d / DV)

    theta = [kernel(K - l) for l in range(K)]
    theta_tld = [DV * (1.0 - math.exp(-th / DV)) / N for th in theta]
    Q30 = [math.exp(-h / tau) for tau, _ in pairs]
    Q30K = [q * tau * math.exp(-h * K / tau) for tau, q in pairs]
    P22 = math.exp(-h / params.tau_m)
    h_tot = params.I_e * params.tau_m / params.c_m * (1.0 - P22) + E_L

    n, m, v = [0.0] * K, [0.0] * K, [0.0] * K
    u, lam = [0.0] * K, [0.0] * K
    n[K - 1] = m[K - 1] = float(N)
    g = [0.0] * len(pairs)
    x = z = lambda_free = V = 0.0
    k0 = 0
    rng = np.random.RandomState(seed)

    expected, counts = [], []
    branches = {"linear": 0, "exact": 0}
    for _ in range(n_steps):
        for j in range(len(g)):
            g[j] = g[j] * Q30[j] + (1.0 - Q30[j]) * n[k0] / (N * h)
        theta_hat = params.V_T_star + sum(qk * gj for qk, gj in zip(Q30K, g))

        V = (V - E_L) * P22 + h_tot
        lambda_tld = esc(V - theta_hat)
        P_free = 1.0 - math.exp(-0.5 * (lambda_free + lambda_tld) * h / 1000.0)
        lambda_free = lambda_tld

        theta_hat -= n[k0] * theta_tld[0]
        X = sum(m)
        W = Y = Z = 0.0
        for l in range(K - k_ref):
            k = (k0 + l) % K
            theta_l = theta[l] + theta_hat
            theta_hat += n[k] * theta_tld[l]
            u[k] = (u[k] - E_L) * P22 + h_tot
            lam_new = esc(u[k] - theta_l)
            P = 0.5 * (lam_new + lam[k]) * h / 1000.0
            if P > 0.01:
                P = 1.0 - math.exp(-P)
                branches["exact"] += 1
            else:
                branches["linear"] += 1
            lam[k] = lam_new
            Y += P * v[k]
            Z += v[k]
            W += P * m[k]
            v[k] = (1.0 - P) ** 2 * v[k] + P * m[k]
            m[k] = (1.0 - P) * m[k]

        P_Lambda = (Y + P_free * z) / (Z + z) if Z + z > 0.0 else 0.0
        n_exp = max(W + P_free * x + P_Lambda * (N - X - x), 0.0)
        p = n_exp / N
        if p >= 1.0:
            n_spk = N
        elif p <= 0.0:
            n_spk = 0
        else:
            n_spk = int(rng.binomial(N, p))
        expected.append(n_exp)
        counts.append(n_spk)

        z = (1.0 - P_free) ** 2 * z + x * P_free + v[k0]
        x = x * (1.0 - P_free) + m[k0]
        n[k0] = m[k0] = float(n_spk)
        v[k0] = 0.0
        u[k0] = params.V_reset
        lam[k0] = 0.0
        k0 = (k0 + 1) % K

    return np.array(expected), np.array(counts), branches


REFERENCE_CONFIGS = {
    "two_exponentials": dict(N=200, len_kernel=120, t_ref=2.0, I_e=1500.0,
                             tau_sfa=(20.0, 200.0), q_sfa=(1.0, 0.5)),
    "single_exponential": dict(N=50, len_kernel=60, I_e=600.0),
}


class TestAgainstScalarLoop:

    @pytest.mark.parametrize("name", sorted(REFERENCE_CONFIGS))
    def test_counts_match_step_by_step(self, name):
        params = GIFPopParams(**REFERENCE_CONFIGS[name])
        ref_expected, ref_counts, _ = scalar_update_loop(params, 0.1, 800, seed=31)

        pop = GIFPopulation(params, seed=31)
        pop.calibrate(0.1)
        rec, _ = run_steps(pop, 800, names=("mean", "n_events"))

        np.testing.assert_allclose(rec["mean"], ref_expected, rtol=1e-8, atol=1e-12)
        np.testing.assert_array_equal(rec["n_events"], ref_counts)
        assert ref_counts.sum() > 0

    def test_both_escape_branches_exercised(self):
        params = GIFPopParams(**REFERENCE_CONFIGS["two_exponentials"])
        _, _, branches = scalar_update_loop(params, 0.1, 800, seed=31)
        assert branches["linear"] > 0
        assert branches["exact"] > 0


class TestEscapeProbability:

    def test_linear_below_limit(self):
        # 0.5 * (90 + 90) Hz * 0.1 ms = 0.009
        p = escape_probability(np.array([90.0]), np.array([90.0]), 0.1)
        assert p[0] == pytest.approx(0.009, rel=1e-12)
        assert p[0] < LINEAR_ESCAPE_LIMIT

    def test_exact_above_limit(self):
        p = escape_probability(np.array([110.0]), np.array([110.0]), 0.1)
        assert p[0] == pytest.approx(1.0 - np.exp(-0.011), rel=1e-12)
        assert p[0] != pytest.approx(0.011, rel=1e-6)

    def test_averages_old_and_new_rate(self):
        p = escape_probability(np.array([0.0, 40.0]), np.array([20.0, 0.0]), 0.1)
        np.testing.assert_allclose(p, [0.001, 0.002])
