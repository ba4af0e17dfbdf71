"""
Model estimators package

This package contains the estimation methods organized by role:
- propensity: Propensity score fitting (known, fixed effects, random intercept)
- ipw: Group-level IPW estimator under treatment allocation strategies
- bootstrap: Cluster bootstrap of the IPW estimators
- common: Common models
"""

# Propensity score
from .propensity import (
    PSStrategy,
    resolve_strategy,
    fit_propensity,
)

# IPW estimator
from .ipw import (
    alpha_to_random_effect,
    log_denominator,
    group_ipw,
)

# Bootstrap
from .bootstrap import (
    ClusterBootstrap,
    get_boot_sample,
    bootstrap_variance,
    BootstrapReplicate,
    BootstrapResult,
)

# Common models
from .common import (
    KnownPropensity,
    EstimatedPropensity,
    PropensityFit,
    GroupIPWResult,
    BootSample,
)

__all__ = [
    # Propensity score
    "PSStrategy",
    "resolve_strategy",
    "fit_propensity",
    # IPW
    "alpha_to_random_effect",
    "log_denominator",
    "group_ipw",
    # Bootstrap
    "ClusterBootstrap",
    "get_boot_sample",
    "bootstrap_variance",
    "BootstrapReplicate",
    "BootstrapResult",
    # Common
    "KnownPropensity",
    "EstimatedPropensity",
    "PropensityFit",
    "GroupIPWResult",
    "BootSample",
]
