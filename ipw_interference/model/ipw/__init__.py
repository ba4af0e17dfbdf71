"""Group-level IPW estimator under treatment allocation strategies"""

from .allocation import alpha_to_random_effect, allocation_probabilities
from .denominator import log_denominator, denominator
from .group_ipw import group_ipw

__all__ = [
    "alpha_to_random_effect",
    "allocation_probabilities",
    "log_denominator",
    "denominator",
    "group_ipw",
]
