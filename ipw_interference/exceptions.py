"""Exceptions raised by the estimators and the bootstrap driver"""


class ConfigurationError(ValueError):
    """Invalid or missing input detected before any computation runs"""


class PropensityFitError(RuntimeError):
    """Propensity score model fitting failed or did not converge"""
