"""Propensity score model fitting"""

from .fitting import (
    PSStrategy,
    resolve_strategy,
    check_design_columns,
    check_propensity_formula,
    fit_known_propensity,
    fit_fixed_propensity,
    fit_mixed_propensity,
    fit_propensity,
    coerce_known_propensity,
    coerce_estimated_propensity,
)

__all__ = [
    "PSStrategy",
    "resolve_strategy",
    "check_design_columns",
    "check_propensity_formula",
    "fit_known_propensity",
    "fit_fixed_propensity",
    "fit_mixed_propensity",
    "fit_propensity",
    "coerce_known_propensity",
    "coerce_estimated_propensity",
]
