"""
Common functions module

Provides common processing such as setting display.
"""

from typing import Optional
from .config import Config, get_config


def print_config_summary(config: Optional[Config] = None) -> None:
    """Display configuration summary"""
    if config is None:
        config = get_config("default")

    print("=== Configuration Summary ===")
    print(f"Clusters: {config.n_clusters}")
    print(f"Cluster size: {config.cluster_size_min}-{config.cluster_size_max}")
    print(f"Treatment coefficients: {config.trt_coef}")
    print(f"Random effect variance: {config.re_var}")
    print(f"Direct Effect (τ): {config.tau}")
    print(f"Spillover Effect: {config.spillover}")
    print(f"Bootstrap samples: {config.n_bootstrap}")
    print(f"Random Seed: {config.random_seed}")
    print("=============================")
