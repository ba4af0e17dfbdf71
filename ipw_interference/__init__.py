"""
Cluster bootstrap variance of IPW estimators under interference

Estimates population average potential outcomes under counterfactual
treatment allocation strategies in clustered data, and their sampling
distribution by resampling clusters.
"""

from .exceptions import ConfigurationError, PropensityFitError
from .settings import Config, get_config, generate_data
from .model import (
    ClusterBootstrap,
    bootstrap_variance,
    get_boot_sample,
    group_ipw,
    BootstrapResult,
    KnownPropensity,
    EstimatedPropensity,
    PropensityFit,
)

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "PropensityFitError",
    "Config",
    "get_config",
    "generate_data",
    "ClusterBootstrap",
    "bootstrap_variance",
    "get_boot_sample",
    "group_ipw",
    "BootstrapResult",
    "KnownPropensity",
    "EstimatedPropensity",
    "PropensityFit",
]
