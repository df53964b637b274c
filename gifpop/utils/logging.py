"""Print-based logging for simulation runs.

Messages go to stdout (and optionally a second stream) with a short
header naming the emitting module, so they stay visible in notebooks
without configuring the standard logging tree. A package-wide
threshold silences chatty levels during long parameter sweeps:

    from gifpop.utils import get_logger, set_log_level
    LOG = get_logger("simulation.population")
    LOG.info("History length: %d steps", 2749)
    set_log_level("WARNING")
"""

import sys
from datetime import datetime

LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}

_threshold = {"level": LEVELS["INFO"]}


def set_log_level(level):
    """Set the minimum level printed by every gifpop logger.

    Parameters
    ----------
    level : str
        One of DEBUG, INFO, WARNING, ERROR.
    """
    key = level.upper()
    if key not in LEVELS:
        raise ValueError(f"Unknown log level '{level}'. Use one of {sorted(LEVELS)}")
    _threshold["level"] = LEVELS[key]


def get_logger(name, out=None):
    """Create a print-based logger.

    Parameters
    ----------
    name : str
        Logger name, shown in every message header as ``gifpop:<name>``.
    out : file-like, optional
        Additional output stream (e.g., an open log file).

    Returns
    -------
    callable
        A log function with .debug, .info, .warning, .error methods.
    """
    prefix = f"gifpop:{name}"
    outputs = [sys.stdout] + ([out] if out else [])

    def log(level, msg, args):
        if LEVELS[level] < _threshold["level"]:
            return
        now = datetime.now().strftime("%H:%M:%S")
        try:
            text = msg % args
        except TypeError:
            text = msg
        for dest in outputs:
            print(f"[{now}] {prefix} {level}: {text}", file=dest)

    log.debug = lambda msg, *args: log("DEBUG", msg, args)
    log.info = lambda msg, *args: log("INFO", msg, args)
    log.warning = lambda msg, *args: log("WARNING", msg, args)
    log.error = lambda msg, *args: log("ERROR", msg, args)

    return log
