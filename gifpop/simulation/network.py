"""Networks of GIF populations connected by delayed projections.

A PopulationNetwork is the population-level counterpart of a circuit:
its units are whole populations, and a projection sends every spike of
the source population to the target with a fixed weight (pA) and
transmission delay (ms).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from gifpop.models.gif_params import GIFPopParams, params_from_config
from gifpop.simulation.population import GIFPopulation
from gifpop.utils import get_logger

LOG = get_logger("simulation.network")


@dataclass
class Projection:
    """All-to-all coupling from one population to another.

    Attributes
    ----------
    source, target : str
        Population labels.
    weight : float
        Synaptic weight per spike (pA). Positive weights are excitatory,
        negative inhibitory.
    delay : float
        Transmission delay (ms), at least one time step.
    """
    source: str
    target: str
    weight: float
    delay: float = 1.0

    def delay_steps(self, dt):
        steps = int(round(self.delay / dt))
        if steps < 1:
            raise ValueError(
                f"Projection {self.source}->{self.target}: delay {self.delay} ms "
                f"is shorter than one time step ({dt} ms)")
        return steps


@dataclass
class PopulationNetwork:
    """Labelled populations and the projections between them."""
    populations: Dict[str, GIFPopulation] = field(default_factory=dict)
    projections: List[Projection] = field(default_factory=list)

    @property
    def labels(self):
        return list(self.populations)

    @property
    def n_populations(self):
        return len(self.populations)

    def add_population(self, label, params=None, seed=None, **overrides):
        """Create a population and add it under `label`."""
        if label in self.populations:
            raise ValueError(f"Population '{label}' already exists")
        pop = GIFPopulation(params, seed=seed, label=label, **overrides)
        self.populations[label] = pop
        return pop

    def connect(self, source, target, weight, delay=1.0):
        for label in (source, target):
            if label not in self.populations:
                raise ValueError(f"Unknown population '{label}'. "
                                 f"Available: {self.labels}")
        proj = Projection(source=source, target=target,
                          weight=float(weight), delay=float(delay))
        self.projections.append(proj)
        return proj

    def population(self, label):
        if label not in self.populations:
            raise ValueError(f"Unknown population '{label}'. "
                             f"Available: {self.labels}")
        return self.populations[label]

    def summary(self):
        """Return a summary string."""
        lines = [f"PopulationNetwork: {self.n_populations} populations, "
                 f"{len(self.projections)} projections"]
        for label, pop in self.populations.items():
            lines.append(f"  {label}: N={pop.params.N}, "
                         f"sampling={pop.params.sampling.value}")
        for proj in self.projections:
            lines.append(f"  {proj.source} -> {proj.target}: "
                         f"w={proj.weight:g} pA, d={proj.delay:g} ms")
        return "\n".join(lines)


def build_network(config):
    """Build a network from a parsed configuration mapping.

    Expected layout::

        populations:
          exc: {preset: default, N: 400}
          inh: {N: 100, V_T_star: 10.0}
        projections:
          - {source: exc, target: inh, weight: 20.0, delay: 1.5}
          - {source: inh, target: exc, weight: -60.0, delay: 1.0}
    """
    net = PopulationNetwork()
    for label, pop_config in (config.get("populations") or {}).items():
        pop_config = dict(pop_config or {})
        seed = pop_config.pop("seed", None)
        params = params_from_config(pop_config) if pop_config else GIFPopParams()
        net.add_population(label, params, seed=seed)
    for proj in config.get("projections") or []:
        net.connect(proj["source"], proj["target"], proj["weight"],
                    proj.get("delay", 1.0))
    LOG.info("Built network: %d populations, %d projections",
             net.n_populations, len(net.projections))
    return net


def load_network(path):
    """Read a network description from YAML (see build_network).

    Requires pyyaml (a gifpop dependency).
    """
    import yaml

    with open(Path(path)) as f:
        return build_network(yaml.safe_load(f) or {})
