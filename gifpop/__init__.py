"""gifpop — population-density GIF neuron models.

Simulates finite populations of generalized integrate-and-fire neurons
with refractoriness and spike-frequency adaptation by tracking their
age-since-last-spike occupancy instead of individual neurons
(Schwalger et al. 2016).

Subpackages:
    models      Population parameters, presets and YAML configuration
    simulation  Population update, spike-count sampling, host engine
    utils       Logging helpers

References:
    Schwalger T, Deger M, Gerstner W (2017). PLoS Comput Biol 13(4):e1005507.
"""

__version__ = "0.1.0"
