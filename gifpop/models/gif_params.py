"""Parameters of a GIF population with exponential synaptic currents.

A GIFPopParams describes one statistically homogeneous population of N
generalized integrate-and-fire neurons: leaky membrane, exponential
escape noise, absolute refractoriness, and a threshold that adapts as
a sum of exponentials after every spike.

Parameters are frozen. Writing a parameter means building a new,
validated instance (dataclasses.replace), so a rejected write can never
leave a half-updated configuration behind.

Units follow the usual conventions: ms, mV, pF, pA, and 1/s for rates.
"""

from dataclasses import dataclass, asdict, replace
from enum import Enum
from pathlib import Path
from typing import Tuple


class SpikeCountSampling(Enum):
    """How the expected spike count is turned into an integer count."""
    BINOMIAL = "binomial"
    POISSON = "poisson"

    @classmethod
    def parse(cls, value):
        """Accept an enum member, its name, or its value (case-insensitive)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if key in (member.value, member.name.lower()):
                    return member
        raise ValueError(
            f"Unknown spike-count sampling '{value}'. "
            f"Use one of {[m.value for m in cls]}"
        )


@dataclass(frozen=True)
class GIFPopParams:
    """Parameters of a GIF population (Schwalger et al. 2016).

    Parameters
    ----------
    N : int
        Number of neurons in the population.
    tau_m : float
        Membrane time constant (ms).
    c_m : float
        Membrane capacitance (pF).
    t_ref : float
        Absolute refractory period (ms).
    lambda_0 : float
        Escape rate at threshold (1/s).
    Delta_V : float
        Softness of the escape-rate nonlinearity (mV).
    len_kernel : int
        Length of the spike-history buffer in time steps. Values below 1
        let calibration choose it from the adaptation kernel.
    I_e : float
        Constant external current (pA).
    V_reset : float
        Membrane potential after a spike (mV).
    V_T_star : float
        Baseline firing threshold (mV).
    E_L : float
        Resting potential (mV).
    tau_syn_ex, tau_syn_in : float
        Decay time constants of excitatory and inhibitory currents (ms).
    tau_sfa : tuple of float
        Time constants of the adaptation exponentials (ms).
    q_sfa : tuple of float
        Jump sizes of the adaptation exponentials (mV).
    sampling : SpikeCountSampling
        Binomial or Poisson draw of the per-step spike count.
    """
    N: int = 100
    tau_m: float = 20.0
    c_m: float = 250.0
    t_ref: float = 4.0
    lambda_0: float = 10.0
    Delta_V: float = 2.0
    len_kernel: int = -1
    I_e: float = 0.0
    V_reset: float = 0.0
    V_T_star: float = 15.0
    E_L: float = 0.0
    tau_syn_ex: float = 3.0
    tau_syn_in: float = 6.0
    tau_sfa: Tuple[float, ...] = (300.0,)
    q_sfa: Tuple[float, ...] = (0.5,)
    sampling: SpikeCountSampling = SpikeCountSampling.BINOMIAL

    def __post_init__(self):
        # Normalize container and enum types before validating.
        object.__setattr__(self, "tau_sfa", tuple(float(t) for t in self.tau_sfa))
        object.__setattr__(self, "q_sfa", tuple(float(q) for q in self.q_sfa))
        object.__setattr__(self, "sampling", SpikeCountSampling.parse(self.sampling))
        for name in ("N", "len_kernel"):
            value = getattr(self, name)
            if value != int(value):
                raise ValueError(f"'{name}' must be an integer, got {value}.")
        object.__setattr__(self, "N", int(self.N))
        object.__setattr__(self, "len_kernel", int(self.len_kernel))
        self.validate()

    def validate(self):
        """Raise ValueError if the parameter combination is not admissible."""
        if len(self.tau_sfa) != len(self.q_sfa):
            raise ValueError(
                "'tau_sfa' and 'q_sfa' need to have the same dimension. "
                f"Size of tau_sfa: {len(self.tau_sfa)}, "
                f"size of q_sfa: {len(self.q_sfa)}"
            )
        if self.c_m <= 0:
            raise ValueError("Capacitance must be strictly positive.")
        if self.tau_m <= 0:
            raise ValueError("The membrane time constant must be strictly positive.")
        if self.tau_syn_ex <= 0 or self.tau_syn_in <= 0:
            raise ValueError("The synaptic time constants must be strictly positive.")
        if any(tau <= 0 for tau in self.tau_sfa):
            raise ValueError("All adaptation time constants must be strictly positive.")
        if self.N <= 0:
            raise ValueError("Number of neurons must be positive.")
        if self.lambda_0 < 0:
            raise ValueError("lambda_0 cannot be negative.")
        if self.Delta_V <= 0:
            raise ValueError("Delta_V must be strictly positive.")
        if self.t_ref < 0:
            raise ValueError("Absolute refractory period cannot be negative.")

    @property
    def n_adaptation(self):
        """Number of adaptation exponentials J."""
        return len(self.tau_sfa)

    @property
    def auto_kernel(self):
        """True if the history length is chosen at calibration."""
        return self.len_kernel < 1

    def with_updates(self, **kwargs):
        """Return a validated copy with some fields replaced.

        Raises KeyError for names that are not parameters, ValueError for
        inadmissible values. The original instance is untouched either way.
        """
        unknown = set(kwargs) - set(self.__dataclass_fields__)
        if unknown:
            raise KeyError(f"Unknown parameter(s): {sorted(unknown)}")
        return replace(self, **kwargs)

    def to_dict(self):
        d = asdict(self)
        d["tau_sfa"] = list(self.tau_sfa)
        d["q_sfa"] = list(self.q_sfa)
        d["sampling"] = self.sampling.value
        return d

    @classmethod
    def from_dict(cls, d):
        """Build parameters from a plain mapping (e.g. parsed YAML).

        The boolean key ``BinoRand`` is accepted as an alias for
        ``sampling`` (True: binomial, False: poisson) and takes
        precedence over it.
        """
        d = dict(d)
        if "BinoRand" in d:
            d["sampling"] = "binomial" if d.pop("BinoRand") else "poisson"
        unknown = set(d) - set(cls.__dataclass_fields__)
        if unknown:
            raise KeyError(f"Unknown parameter(s): {sorted(unknown)}")
        return cls(**d)


# Named parameter sets. "default" holds the reference values of the
# population model; the cortical presets are illustrative excitatory
# populations with fast membranes and slow, strong adaptation.
GIF_POP_PRESETS = {
    "default": GIFPopParams(),
    "no_adaptation": GIFPopParams(tau_sfa=(300.0,), q_sfa=(0.0,)),
    "poisson": GIFPopParams(sampling=SpikeCountSampling.POISSON),
    "l23_excitatory": GIFPopParams(
        N=800, tau_m=10.0, c_m=250.0, t_ref=3.0, lambda_0=10.0,
        Delta_V=5.0, V_T_star=20.0, tau_sfa=(1000.0,), q_sfa=(1.0,),
    ),
    "l4_excitatory": GIFPopParams(
        N=1000, tau_m=10.0, c_m=250.0, t_ref=3.0, lambda_0=10.0,
        Delta_V=5.0, V_T_star=20.0, tau_sfa=(1000.0,), q_sfa=(1.0,),
    ),
}


def get_preset(name):
    """Look up a named parameter set."""
    if name not in GIF_POP_PRESETS:
        raise KeyError(f"Unknown preset '{name}'. "
                       f"Available: {sorted(GIF_POP_PRESETS)}")
    return GIF_POP_PRESETS[name]


def load_params(path):
    """Read population parameters from a YAML file.

    The file is either a flat mapping of parameter names to values, or
    a mapping with a ``preset`` key naming an entry of GIF_POP_PRESETS
    plus overrides::

        preset: default
        N: 500
        tau_sfa: [100.0, 1000.0]
        q_sfa: [0.5, 0.2]

    Requires pyyaml (a gifpop dependency).
    """
    import yaml

    with open(Path(path)) as f:
        data = yaml.safe_load(f) or {}
    return params_from_config(data)


def params_from_config(data):
    """Build GIFPopParams from a parsed config mapping (see load_params)."""
    data = dict(data)
    preset = data.pop("preset", None)
    if preset is None:
        return GIFPopParams.from_dict(data)
    base = get_preset(preset).to_dict()
    base.update(data)
    return GIFPopParams.from_dict(base)
