"""
Execution module

Provides execution functionality for simulated bootstrap experiments.
"""

from .simulation import (
    build_propensity_inputs,
    run_bootstrap_experiment,
    print_bootstrap_summary,
)

__all__ = [
    "build_propensity_inputs",
    "run_bootstrap_experiment",
    "print_bootstrap_summary",
]
