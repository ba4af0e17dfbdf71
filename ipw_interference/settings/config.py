"""
Experiment settings and parameter management

This module centrally manages the parameters used by the bootstrap driver,
the propensity score fitters and the simulation data-generating process,
allowing users to easily change settings.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional
from scipy.stats import norm


@dataclass
class Config:
    """Unified configuration class"""

    # === Simulation Settings ===
    n_clusters: int = 30
    cluster_size_min: int = 5
    cluster_size_max: int = 15
    random_seed: int = 42

    # === DGP Settings ===
    # Covariates: x1 ~ N(0, x1_std^2), x2 ~ Bernoulli(x2_prob)
    x1_std: float = 1.0
    x2_prob: float = 0.5

    # Treatment assignment: logit P(A=1) = trt_coef . (1, x1, x2) + b_j, b_j ~ N(0, re_var)
    trt_coef: tuple = (-0.2, 0.5, -0.4)
    re_var: float = 0.5

    # Outcome: Y = beta_0 + beta_x1 * x1 + tau * A + spillover * (share of treated neighbours) + e
    beta_0: float = 1.0
    beta_x1: float = 0.6
    tau: float = 1.0  # Direct effect
    spillover: float = 0.8
    y_error_std: float = 1.0

    # === Estimator Settings ===
    integral_bound: float = 10.0  # Random effect integral limits in units of its SD
    logistic_max_iter: int = 1000
    glmm_fe_prior_sd: float = 10.0
    glmm_vcp_prior_sd: float = 1.0
    glmm_fit_method: str = "L-BFGS-B"  # Optimizer of the variational fit
    # Optimizer control applied when use_control is requested for the mixed model
    glmm_control_method: str = "L-BFGS-B"
    glmm_control_max_iter: int = 200000
    # Treat optimizer non-convergence of the mixed model as a fit failure (else warn)
    glmm_require_convergence: bool = True

    # === Bootstrap Settings ===
    n_bootstrap: int = 500
    n_jobs: int = 1
    progress_interval: int = 10
    verbose: bool = True
    skip_failed_samples: bool = False  # Isolate failed repetitions instead of aborting
    confidence_level: float = 0.95

    # === Column names ===
    cluster_col: str = "neigh"
    treatment_col: str = "A"
    outcome_col: str = "Y"

    def __post_init__(self):
        """Post-initialization processing"""
        # Dynamically calculate z_critical based on confidence_level
        self.z_critical = norm.ppf(1 - (1 - self.confidence_level) / 2)


def get_config(
    config_name: str = "default", overrides: Optional[Dict[str, Any]] = None
) -> Config:
    """
    Return configuration based on configuration name (with override functionality)

    Args:
        config_name: Base configuration name ("default", "quick")
            - "default": Settings for full bootstrap runs
            - "quick": Small cluster count and few bootstrap samples for smoke runs
        overrides: Dictionary of settings to override

    Returns:
        Configuration object
    """
    if config_name == "quick":
        config = Config(
            n_clusters=12,
            n_bootstrap=20,
            verbose=False,
        )
    else:
        config = Config()

    # Apply override processing
    if overrides:
        for key, value in overrides.items():
            if hasattr(config, key):
                setattr(config, key, value)
            else:
                print(f"Warning: Unknown config key '{key}' - skipping")

        # Keep derived values consistent with overridden fields
        config.z_critical = norm.ppf(1 - (1 - config.confidence_level) / 2)

    return config
