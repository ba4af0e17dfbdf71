"""
Settings module for configuration and data generation

This module provides configuration management and the clustered
data-generating process used by simulations and tests.
"""

# Config related
from .config import (
    Config,
    get_config,
)

# Common functions
from .functions import print_config_summary

# DGP for simulation
from .simulation import generate_data

__all__ = [
    # Config
    "Config",
    "get_config",
    # Functions
    "print_config_summary",
    # Simulation
    "generate_data",
]
