"""Population-density model of N GIF neurons with exponential currents.

Instead of simulating N neurons, the population is described by how
many neurons last fired k steps ago, for k = 1..K, plus a "free"
aggregate of neurons whose last spike is older than the K-step window.
Each step the model computes the expected number of spikes from this
occupancy, draws the actual count from a Binomial or Poisson
distribution, and shifts the history by one step. This reproduces the
finite-size fluctuations of the full network (Schwalger et al. 2017).

Per step:
    1. Input spikes and currents are read from the input buffers and the
       membrane drive h_tot is integrated exactly (integrator.py).
    2. Adaptation accumulators absorb the spikes leaving the window and
       give the free-population threshold theta_hat.
    3. Each history slot updates its membrane potential, escape rate,
       survivor mass m and variance proxy v.
    4. Free and slot statistics combine into the expected spike count.
    5. A spike count is drawn and written into the recycled slot.

The history is a rotating buffer: logical age l (0 = oldest, the slot
recycled this step) lives in physical slot (k0 + l) % K.

References:
    Schwalger T, Deger M, Gerstner W (2017). PLoS Comput Biol
    13(4):e1005507, Figs. 10 and 12.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional

import numpy as np

from gifpop.models.gif_params import GIFPopParams
from gifpop.simulation.buffers import RingBuffer
from gifpop.simulation.integrator import Propagators, membrane_drive
from gifpop.simulation.kernels import (
    ExponentialEscapeRate, adaptation_kernel, history_size,
)
from gifpop.simulation.sampling import draw_spike_count
from gifpop.utils import get_logger

LOG = get_logger("simulation.population")

# Per-slot escape probabilities below this use the linear approximation
# lambda * h instead of 1 - exp(-lambda * h).
LINEAR_ESCAPE_LIMIT = 0.01

DEFAULT_BUFFER_SIZE = 64


@dataclass
class GIFPopState:
    """Dynamic state of a population, updated every step.

    Attributes
    ----------
    y0 : float
        External current latched for the next step (pA).
    I_syn_ex, I_syn_in : float
        Filtered excitatory and inhibitory synaptic currents (pA).
    V_m : float
        Membrane potential of the free population (mV).
    n_expect : float
        Expected number of spikes in the last step.
    n_spikes : int
        Number of spikes drawn in the last step.
    theta_hat : float
        Adapted threshold of the free population (mV).
    initialized : bool
        False until calibration has allocated the history.
    """
    y0: float = 0.0
    I_syn_ex: float = 0.0
    I_syn_in: float = 0.0
    V_m: float = 0.0
    n_expect: float = 0.0
    n_spikes: int = 0
    theta_hat: float = 0.0
    initialized: bool = False


@dataclass
class PopulationHistory:
    """Occupancy of the K-step spike history and the free population.

    Arrays have length K and are indexed physically; see the module
    docstring for the age mapping.
    """
    h: float
    K: int
    k_ref: int
    n: np.ndarray          # spikes emitted in the step that created the slot
    m: np.ndarray          # expected survivors (not fired since)
    v: np.ndarray          # variance proxy of the survivors
    u: np.ndarray          # membrane potential of the slot (mV)
    lam: np.ndarray        # escape rate of the slot at the last step (1/s)
    theta: np.ndarray      # adaptation kernel by logical age (mV)
    theta_tld: np.ndarray  # per-spike threshold contribution by logical age
    g: np.ndarray          # adaptation accumulators, one per exponential
    Q30: np.ndarray        # per-step decay of g
    Q30K: np.ndarray       # weight of g in the free threshold
    x: float = 0.0         # free population count
    z: float = 0.0         # free population variance proxy
    lambda_free: float = 0.0
    k0: int = 0
    ages: np.ndarray = field(default=None, repr=False)

    @classmethod
    def allocate(cls, params, h, K):
        """Initial history: every neuron fired one step before the start."""
        tau = np.asarray(params.tau_sfa)
        q = np.asarray(params.q_sfa)

        theta = adaptation_kernel(K - np.arange(K), tau, q, h)
        theta_tld = params.Delta_V * (1.0 - np.exp(-theta / params.Delta_V)) / params.N

        n = np.zeros(K)
        m = np.zeros(K)
        n[K - 1] = params.N
        m[K - 1] = params.N

        k_ref = int(round(params.t_ref / h))
        return cls(
            h=h,
            K=K,
            k_ref=k_ref,
            n=n,
            m=m,
            v=np.zeros(K),
            u=np.zeros(K),
            lam=np.zeros(K),
            theta=theta,
            theta_tld=theta_tld,
            # Q30K carries a factor tau_sfa: the accumulators are rates.
            g=np.zeros(len(tau)),
            Q30=np.exp(-h / tau),
            Q30K=q * tau * np.exp(-h * K / tau),
            ages=np.arange(max(K - k_ref, 0)),
        )

    def slots(self):
        """Physical indices of the non-refractory slots, oldest first."""
        return (self.k0 + self.ages) % self.K

    @property
    def total_mass(self):
        """Neurons accounted for by the history and the free population."""
        return float(self.m.sum() + self.x)


def _escape_factory(params):
    return ExponentialEscapeRate.from_params(params)


def escape_probability(lam, lam_prev, h):
    """Probability of firing within one step of h ms.

    Uses the rate averaged over the step (1/s). Small values keep the
    linear form lambda * h; above LINEAR_ESCAPE_LIMIT the exact
    1 - exp(-lambda * h) is used.
    """
    p = 0.5 * (np.asarray(lam) + lam_prev) * h / 1000.0
    return np.where(p > LINEAR_ESCAPE_LIMIT, 1.0 - np.exp(-p), p)


RECORDABLES = {
    "V_m": lambda pop: pop.state.V_m,
    "n_events": lambda pop: pop.state.n_spikes,
    "E_sfa": lambda pop: pop.state.theta_hat,
    "mean": lambda pop: pop.state.n_expect,
    "I_syn_ex": lambda pop: pop.state.I_syn_ex,
    "I_syn_in": lambda pop: pop.state.I_syn_in,
}

_WRITABLE_STATE = ("V_m", "I_syn_ex", "I_syn_in")


class GIFPopulation:
    """A finite population of GIF neurons simulated by its spike history.

    Parameters
    ----------
    params : GIFPopParams, optional
        Population parameters. Keyword overrides are applied on top.
    seed : int, optional
        Seed of the population's own random source.
    escape_rate_factory : callable, optional
        Builds the hazard function from the parameters,
        factory(params) -> callable(x) giving a rate in 1/s.
        Defaults to the exponential escape rate.
    label : str, optional
        Name used in logs and results.
    buffer_size : int
        Number of future steps the input buffers can hold.
    **overrides
        Parameter values replacing those of `params`.
    """

    def __init__(self, params=None, seed=None, escape_rate_factory=None,
                 label=None, buffer_size=DEFAULT_BUFFER_SIZE, **overrides):
        params = params if params is not None else GIFPopParams()
        self.params = params.with_updates(**overrides) if overrides else params
        self.label = label or "population"
        self.state = GIFPopState()
        self.history: Optional[PopulationHistory] = None
        self.prop: Optional[Propagators] = None
        self._escape_rate_factory = escape_rate_factory or _escape_factory
        self.escape_rate = None

        self.ex_spikes = RingBuffer(buffer_size)
        self.in_spikes = RingBuffer(buffer_size)
        self.currents = RingBuffer(buffer_size)

        self.seed(seed)

    # ------------------------------------------------------------------
    # Parameter and state exchange
    # ------------------------------------------------------------------

    def seed(self, seed=None):
        """Reset the random source. Only call between runs."""
        self.rng = np.random.RandomState(seed)

    def set_params(self, **kwargs):
        """Replace parameters; the next calibration rebuilds the history."""
        self.params = self.params.with_updates(**kwargs)
        self.state.initialized = False

    def set_state(self, **kwargs):
        """Overwrite V_m, I_syn_ex or I_syn_in.

        The history is rebuilt at the next calibration.
        """
        unknown = set(kwargs) - set(_WRITABLE_STATE)
        if unknown:
            raise KeyError(f"State variable(s) not writable: {sorted(unknown)}")
        for name, value in kwargs.items():
            setattr(self.state, name, float(value))
        self.state.initialized = False

    def get_status(self):
        """Parameters and state as a flat dict."""
        status = self.params.to_dict()
        status.update({
            name: value for name, value in asdict(self.state).items()
            if name != "initialized"
        })
        if self.history is not None:
            status["history_length"] = self.history.K
        return status

    def get_recordable(self, name):
        if name not in RECORDABLES:
            raise KeyError(f"Unknown recordable '{name}'. "
                           f"Available: {sorted(RECORDABLES)}")
        return RECORDABLES[name](self)

    @property
    def history_length(self):
        return self.history.K if self.history is not None else None

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def calibrate(self, h):
        """Prepare the population for stepping with time step h (ms).

        Propagators are recomputed on every call. The history is
        allocated on the first call and again whenever parameters or
        state have been overwritten since, or the step size changed.
        """
        p = self.params
        if len(p.tau_sfa) == 0:
            raise ValueError("Time constant array should not be empty.")
        if len(p.q_sfa) == 0:
            raise ValueError("Adaptation value array should not be empty.")

        self.prop = Propagators.from_params(p, h)
        self.escape_rate = self._escape_rate_factory(p)

        if self.history is not None and self.history.h != h:
            self.state.initialized = False

        if not self.state.initialized:
            K = history_size(p, h) if p.auto_kernel else p.len_kernel
            self.history = PopulationHistory.allocate(p, h, K)
            self.state.initialized = True
            LOG.info("%s: history of %d steps (%.1f ms), %d refractory",
                     self.label, K, K * h, self.history.k_ref)

    # ------------------------------------------------------------------
    # Input / output
    # ------------------------------------------------------------------

    def ensure_buffer_size(self, size):
        for buf in (self.ex_spikes, self.in_spikes, self.currents):
            buf.resize(size)

    def handle_spike(self, weight, multiplicity=1, offset=0):
        """Deposit weighted spikes `offset` steps after the slice origin."""
        s = weight * multiplicity
        if s > 0.0:
            self.ex_spikes.add_value(offset, s)
        else:
            self.in_spikes.add_value(offset, s)

    def handle_current(self, current, weight=1.0, offset=0):
        """Deposit a weighted current `offset` steps after the slice origin."""
        self.currents.add_value(offset, weight * current)

    def advance_buffers(self, n_steps):
        for buf in (self.ex_spikes, self.in_spikes, self.currents):
            buf.advance(n_steps)

    def clear_buffers(self):
        for buf in (self.ex_spikes, self.in_spikes, self.currents):
            buf.clear()

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self, from_step, to_step, observer=None):
        """Advance the population over steps [from_step, to_step) of a slice.

        Parameters
        ----------
        from_step, to_step : int
            Step offsets relative to the slice origin, 0 <= from < to.
        observer : callable, optional
            Called as observer(lag, population) after every step.

        Returns
        -------
        list of (int, int)
            (lag, spike count) for each step with at least one spike.
        """
        if self.prop is None or not self.state.initialized:
            raise ValueError(f"{self.label}: calibrate() before update()")
        if not 0 <= from_step < to_step:
            raise ValueError(f"Invalid step range [{from_step}, {to_step})")

        events = []
        for lag in range(from_step, to_step):
            n_spikes = self._step(lag)
            if observer is not None:
                observer(lag, self)
            if n_spikes > 0:
                events.append((lag, n_spikes))
        return events

    def _step(self, lag):
        p, s, hist, prop = self.params, self.state, self.history, self.prop

        h_tot = membrane_drive(
            self.ex_spikes.get_value(lag), self.in_spikes.get_value(lag),
            s, p, prop)
        s.y0 = self.currents.get_value(lag)

        theta_hat = self._adapt(hist, p, prop)
        p_free = self._free_escape(hist, s, p, prop, h_tot, theta_hat)

        # Spikes of the recycled slot are already in g; the sweep adds them back.
        theta_hat -= hist.n[hist.k0] * hist.theta_tld[0]
        s.theta_hat = theta_hat

        X = hist.m.sum()
        W, Y, Z = self._sweep(hist, p, prop, h_tot, theta_hat)

        denom = Z + hist.z
        p_lambda = (Y + p_free * hist.z) / denom if denom > 0.0 else 0.0
        n_expect = W + p_free * hist.x + p_lambda * (p.N - X - hist.x)
        s.n_expect = max(float(n_expect), 0.0)

        s.n_spikes = draw_spike_count(s.n_expect, p.N, p.sampling, self.rng)
        self._recycle(hist, p, p_free, s.n_spikes)
        return s.n_spikes

    def _adapt(self, hist, p, prop):
        """Decay the adaptation accumulators toward the retiring spike count."""
        retired = hist.n[hist.k0] / (p.N * prop.h)
        hist.g = hist.g * hist.Q30 + (1.0 - hist.Q30) * retired
        return p.V_T_star + float(hist.Q30K @ hist.g)

    def _free_escape(self, hist, s, p, prop, h_tot, theta_hat):
        """Escape probability of the free population over this step."""
        s.V_m = (s.V_m - p.E_L) * prop.P22 + h_tot
        lambda_tld = float(self.escape_rate(s.V_m - theta_hat))
        p_free = 1.0 - np.exp(-0.5 * (hist.lambda_free + lambda_tld) * prop.h / 1000.0)
        hist.lambda_free = lambda_tld
        return p_free

    def _sweep(self, hist, p, prop, h_tot, theta_hat):
        """Update non-refractory slots; return escape-weighted statistics W, Y, Z."""
        if len(hist.ages) == 0:
            return 0.0, 0.0, 0.0

        idx = hist.slots()
        L = len(idx)
        n_l = hist.n[idx]
        m_l = hist.m[idx]
        v_l = hist.v[idx]

        # Threshold of each slot: kernel of its own age plus spikes of older slots.
        older = np.cumsum(n_l * hist.theta_tld[:L])
        running = theta_hat + np.concatenate(([0.0], older[:-1]))
        theta_l = hist.theta[:L] + running

        u = (hist.u[idx] - p.E_L) * prop.P22 + h_tot
        lam = self.escape_rate(u - theta_l)
        p_lam = escape_probability(lam, hist.lam[idx], prop.h)

        W = float(p_lam @ m_l)
        Y = float(p_lam @ v_l)
        Z = float(v_l.sum())

        hist.u[idx] = u
        hist.lam[idx] = lam
        hist.v[idx] = (1.0 - p_lam) ** 2 * v_l + p_lam * m_l
        hist.m[idx] = (1.0 - p_lam) * m_l
        return W, Y, Z

    def _recycle(self, hist, p, p_free, n_spikes):
        """Fold the oldest slot into the free population and reuse it."""
        k0 = hist.k0
        hist.z = (1.0 - p_free) ** 2 * hist.z + hist.x * p_free + hist.v[k0]
        hist.x = hist.x * (1.0 - p_free) + hist.m[k0]

        hist.n[k0] = n_spikes
        hist.m[k0] = n_spikes
        hist.v[k0] = 0.0
        hist.u[k0] = p.V_reset
        hist.lam[k0] = 0.0
        hist.k0 = (k0 + 1) % hist.K
