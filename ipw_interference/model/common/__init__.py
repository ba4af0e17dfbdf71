"""Common models and exceptions for estimation methods"""

from ...exceptions import ConfigurationError, PropensityFitError
from .models import (
    KnownPropensity,
    EstimatedPropensity,
    PropensityFit,
    GroupIPWResult,
    BootSample,
)

__all__ = [
    "ConfigurationError",
    "PropensityFitError",
    "KnownPropensity",
    "EstimatedPropensity",
    "PropensityFit",
    "GroupIPWResult",
    "BootSample",
]
