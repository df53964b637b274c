"""models — population parameters, presets and configuration files."""

from .gif_params import (
    GIFPopParams,
    SpikeCountSampling,
    GIF_POP_PRESETS,
    get_preset,
    load_params,
    params_from_config,
)
