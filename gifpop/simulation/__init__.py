"""simulation — Population-density simulation of GIF neurons.

Pure-numpy implementation of the finite-size mesoscopic population
model of Schwalger et al. (2017): one stochastic spike-count draw per
population and time step reproduces the activity of N generalized
integrate-and-fire neurons with adaptation and refractoriness.

References:
    Schwalger T, Deger M, Gerstner W (2017). PLoS Comput Biol 13(4):e1005507.
"""

from .kernels import (
    adaptation_kernel,
    history_size,
    ExponentialEscapeRate,
)
from .integrator import Propagators
from .sampling import (
    draw_binomial,
    draw_poisson,
    draw_spike_count,
)
from .buffers import RingBuffer
from .population import (
    GIFPopulation,
    GIFPopState,
    PopulationHistory,
    RECORDABLES,
    escape_probability,
)
from .network import (
    PopulationNetwork,
    Projection,
    build_network,
    load_network,
)
from .engine import (
    PopulationResult,
    simulate_network,
    simulate_population,
)
from .stimulus import (
    StimulusProtocol,
    poisson_input,
    step_current,
    pulse_input,
    combine_stimuli,
)
from .analysis import (
    population_rate,
    fano_factor,
    rate_summary,
    compare_count_distributions,
)
