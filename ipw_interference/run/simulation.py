"""
Simulation execution module

Generates a clustered dataset and runs the cluster bootstrap of the IPW
potential outcome estimators on it.
"""

from datetime import datetime
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..settings import Config, generate_data
from ..model.bootstrap import ClusterBootstrap, BootstrapResult
from ..model.common.models import KnownPropensity, EstimatedPropensity


COVARIATES = ["x1", "x2"]


def build_propensity_inputs(
    config: Config,
    ps: str,
    with_re: bool,
    use_control: bool = False,
) -> Tuple[Optional[KnownPropensity], Optional[EstimatedPropensity]]:
    """Propensity score inputs matching the simulation DGP

    The counterfactual allocation model uses the true treatment coefficients.

    Args:
        config: Configuration object
        ps: "true" (known propensity score) or "est" (estimated)
        with_re: Whether the estimated model has a random intercept
        use_control: Whether to apply the configured optimizer control

    Returns:
        Tuple of (known parameters, estimation settings); one of them is None
    """
    if ps in ("true", "known"):
        return KnownPropensity(trt_coef=config.trt_coef, re_var=config.re_var), None

    formula = f"{config.treatment_col} ~ {' + '.join(COVARIATES)}"
    if with_re:
        formula += f" + (1 | {config.cluster_col})"

    return None, EstimatedPropensity(
        glm_form=formula,
        ps_with_re=with_re,
        gamma_numer=config.trt_coef,
        use_control=use_control,
    )


def run_bootstrap_experiment(
    config: Config,
    alpha: Sequence[float],
    ps: str = "true",
    with_re: bool = True,
    use_control: bool = False,
    n_jobs: Optional[int] = None,
) -> Tuple[pd.DataFrame, BootstrapResult]:
    """Generate data and run the cluster bootstrap on it

    Args:
        config: Configuration object
        alpha: Allocation strategies
        ps: "true" (known propensity score) or "est" (estimated)
        with_re: Whether the estimated model has a random intercept
        use_control: Whether to apply the configured optimizer control
        n_jobs: Number of parallel jobs (config.n_jobs if None)

    Returns:
        Tuple of (generated data, bootstrap result)
    """
    df = generate_data(config)
    phi_hat_true, ps_info_est = build_propensity_inputs(config, ps, with_re, use_control)

    if config.verbose:
        print(f"\nGenerated data: {len(df)} units in {df[config.cluster_col].max()} clusters")
        print(f"Treated share: {df[config.treatment_col].mean():.3f}")

    start_time = datetime.now()
    result = ClusterBootstrap(config=config).run(
        df,
        alpha=alpha,
        cov_cols=COVARIATES,
        ps=ps,
        phi_hat_true=phi_hat_true,
        ps_info_est=ps_info_est,
        trt_col=config.treatment_col,
        out_col=config.outcome_col,
        keep_group=True,
        n_jobs=n_jobs,
    )
    duration = datetime.now() - start_time

    if config.verbose:
        print(f"\nBootstrap completed: {duration.total_seconds():.2f} seconds")

    return df, result


def print_bootstrap_summary(result: BootstrapResult, config: Config) -> None:
    """Display the bootstrap distribution summary and effect standard errors"""
    summary = result.to_frame(config.confidence_level)

    print("\n=== Bootstrap Summary ===")
    print(f"Samples: {result.n_bootstrap} (valid: {int((~result.failed).sum())})")
    print(f"Positive random effect variance: {result.re_var_positive.mean():.2%}")
    print(summary.to_string(index=False, float_format=lambda v: f"{v:.4f}"))

    direct = result.direct_effects()[:, ~result.failed]
    indirect = result.indirect_effects(ref=0)[:, ~result.failed]
    print("\nEffect standard errors:")
    for aa, curr_alpha in enumerate(result.alpha):
        de_se = np.std(direct[aa], ddof=1) if direct.shape[1] > 1 else np.nan
        ie_se = np.std(indirect[aa], ddof=1) if indirect.shape[1] > 1 else np.nan
        print(f"  alpha={curr_alpha:.2f}: DE se={de_se:.4f}, IE (vs alpha={result.alpha[0]:.2f}) se={ie_se:.4f}")
    print("=========================")
