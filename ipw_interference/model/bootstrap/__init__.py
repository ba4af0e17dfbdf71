"""
Bootstrap methods for variance estimation

This module provides the cluster bootstrap of the group-level IPW
estimators and the result containers it fills.
"""

from .cluster_bootstrap import ClusterBootstrap, get_boot_sample, bootstrap_variance
from .results import BootstrapReplicate, BootstrapResult

__all__ = [
    "ClusterBootstrap",
    "get_boot_sample",
    "bootstrap_variance",
    "BootstrapReplicate",
    "BootstrapResult",
]
