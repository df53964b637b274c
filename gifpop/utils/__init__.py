"""
Simple utilities shared by the simulation code.
"""
from .logging import get_logger, set_log_level
