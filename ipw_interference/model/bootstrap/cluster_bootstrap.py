"""
Cluster Bootstrap for the Variance of IPW Potential Outcome Estimators

Clusters are resampled with replacement, the propensity score model is
refitted on every resampled dataset, and the group-level IPW estimates are
recomputed. Drawn clusters are relabeled by draw position, so a cluster
drawn twice enters the resampled data as two distinct clusters.
"""

import numpy as np
import pandas as pd
from typing import List, Optional, Sequence, Union
from tqdm import tqdm

from ...exceptions import ConfigurationError, PropensityFitError
from ...settings import Config
from ...utils import validate_cluster_ids, cluster_index_partition, check_coefficients
from ..common.models import BootSample, KnownPropensity, EstimatedPropensity
from ..ipw import group_ipw
from ..propensity import (
    PSStrategy,
    resolve_strategy,
    check_propensity_formula,
    fit_propensity,
    coerce_known_propensity,
    coerce_estimated_propensity,
)
from .base_bootstrap import BaseBootstrap, ProgressCallback
from .results import BootstrapReplicate, BootstrapResult


def get_boot_sample(
    dta: pd.DataFrame,
    rng: np.random.Generator,
    cluster_col: str = "neigh",
    n_clusters: Optional[int] = None,
    cluster_rows: Optional[List[np.ndarray]] = None,
) -> BootSample:
    """Draw one cluster bootstrap sample

    Args:
        dta: Original dataframe (cluster ids 1..n_clusters)
        rng: Random number generator
        cluster_col: Cluster column name
        n_clusters: Number of clusters (validated from data if None)
        cluster_rows: Row positions of every cluster (computed if None)

    Returns:
        Resampled dataframe with relabeled clusters and the drawn cluster ids
    """
    if n_clusters is None:
        n_clusters = validate_cluster_ids(dta, cluster_col)
    if cluster_rows is None:
        cluster_rows = cluster_index_partition(dta, cluster_col, n_clusters)

    # Sample clusters with replacement
    chosen_clusters = rng.choice(np.arange(1, n_clusters + 1), size=n_clusters, replace=True)

    # Concatenate drawn clusters in draw order, relabeling each draw position
    rows = [cluster_rows[cluster_id - 1] for cluster_id in chosen_clusters]
    boot_df = dta.iloc[np.concatenate(rows)].reset_index(drop=True)
    boot_df[cluster_col] = np.repeat(
        np.arange(1, n_clusters + 1), [len(r) for r in rows]
    )

    return BootSample(boot_df=boot_df, chosen_clusters=chosen_clusters)


# Top-level function: runs in worker threads
def _cluster_bootstrap_iteration(
    dta: pd.DataFrame,
    bb: int,
    iteration_seed: int,
    strategy: PSStrategy,
    cov_cols: List[str],
    alpha: np.ndarray,
    phi_hat_true: Optional[KnownPropensity],
    ps_info_est: Optional[EstimatedPropensity],
    trt_col: Optional[str],
    out_col: Optional[str],
    n_clusters: int,
    cluster_rows: List[np.ndarray],
    config: Config,
) -> BootstrapReplicate:
    """Execute one bootstrap iteration

    Args:
        dta: Original dataframe (read only)
        bb: Repetition index
        iteration_seed: Seed for this iteration
        strategy: Propensity score fitting strategy
        cov_cols: Covariate column names
        alpha: Allocation strategies
        phi_hat_true: Known propensity score parameters
        ps_info_est: Estimation settings
        trt_col: Treatment column name override
        out_col: Outcome column name override
        n_clusters: Number of clusters
        cluster_rows: Row positions of every original cluster
        config: Config object

    Returns:
        Replicate for slot bb

    Raises:
        PropensityFitError: If fitting fails and failed samples are not skipped
    """
    rng = np.random.default_rng(iteration_seed)
    boot = get_boot_sample(dta, rng, config.cluster_col, n_clusters, cluster_rows)
    boot_df = boot.boot_df

    try:
        neigh_ind = cluster_index_partition(boot_df, config.cluster_col, n_clusters)
        phi_hat = fit_propensity(
            strategy, boot_df, config, phi_hat_true, ps_info_est, cov_cols=cov_cols
        )
        gamma_numer = None if strategy is PSStrategy.KNOWN else ps_info_est.gamma_numer

        ygroup = group_ipw(
            dta=boot_df,
            cov_cols=cov_cols,
            phi_hat=phi_hat,
            alpha=alpha,
            gamma_numer=gamma_numer,
            neigh_ind=neigh_ind,
            keep_re_alpha=False,
            estimand="1",
            verbose=False,
            integral_bound=config.integral_bound,
            trt_col=trt_col,
            out_col=out_col,
            cluster_col=config.cluster_col,
        ).yhat_group
    except ConfigurationError:
        raise
    except (PropensityFitError, FloatingPointError, ValueError, np.linalg.LinAlgError) as e:
        if not config.skip_failed_samples:
            raise
        tqdm.write(f"Warning: bootstrap sample {bb + 1} failed and is skipped: {e}")
        return BootstrapReplicate(
            index=bb,
            chosen_clusters=boot.chosen_clusters,
            failed=True,
            error=str(e),
        )

    return BootstrapReplicate(
        index=bb,
        chosen_clusters=boot.chosen_clusters,
        ygroup=ygroup,
        re_var=phi_hat.re_var,
        re_var_positive=phi_hat.re_var > 0,
    )


class ClusterBootstrap(BaseBootstrap):
    """Cluster bootstrap class

    Generates bootstrap samples by cluster and collects the group and
    population estimates of the average potential outcomes.
    """

    def _validate_inputs(
        self,
        dta: pd.DataFrame,
        n_bootstrap: int,
        alpha: np.ndarray,
        cov_cols: List[str],
        strategy: PSStrategy,
        phi_hat_true: Optional[KnownPropensity],
        ps_info_est: Optional[EstimatedPropensity],
        trt_col: Optional[str],
        out_col: Optional[str],
    ) -> int:
        """Check all inputs before any resampling

        Returns:
            Number of clusters

        Raises:
            ConfigurationError: If any input is invalid
        """
        if int(n_bootstrap) != n_bootstrap or n_bootstrap < 1:
            raise ConfigurationError(f"B must be a positive integer, got {n_bootstrap}")
        if alpha.size == 0:
            raise ConfigurationError("alpha must contain at least one value")
        if np.any((alpha <= 0) | (alpha >= 1)):
            raise ConfigurationError(f"alpha values must be in (0, 1), got {alpha.tolist()}")

        n_clusters = validate_cluster_ids(dta, self.config.cluster_col)

        required = [
            "A" if trt_col is None else trt_col,
            "Y" if out_col is None else out_col,
        ] + cov_cols
        missing_cols = [c for c in required if c not in dta.columns]
        if missing_cols:
            raise ConfigurationError(f"Columns not found in data: {missing_cols}")

        if strategy is PSStrategy.KNOWN:
            check_coefficients(phi_hat_true.trt_coef, cov_cols, "phi_hat_true.trt_coef")
        else:
            check_coefficients(ps_info_est.gamma_numer, cov_cols, "ps_info_est.gamma_numer")
            check_propensity_formula(ps_info_est, dta, cov_cols, self.config.cluster_col)

        return n_clusters

    def run(
        self,
        dta: pd.DataFrame,
        alpha: Sequence[float],
        cov_cols: Sequence[str],
        ps: str = "true",
        phi_hat_true: Union[KnownPropensity, dict, Sequence, None] = None,
        ps_info_est: Union[EstimatedPropensity, dict, None] = None,
        n_bootstrap: Optional[int] = None,
        trt_col: Optional[str] = None,
        out_col: Optional[str] = None,
        keep_group: bool = True,
        seed: Optional[int] = None,
        n_jobs: Optional[int] = None,
        verbose: Optional[bool] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> BootstrapResult:
        """Run the cluster bootstrap

        Args:
            dta: Dataframe (cluster ids 1..n_clusters)
            alpha: Allocation strategies where potential outcomes are estimated
            cov_cols: Covariate column names of the propensity score model
            ps: "true" if the propensity score is known, "est" if estimated
            phi_hat_true: Known parameters (trt_coef, re_var) when ps="true"
            ps_info_est: Estimation settings (glm_form, ps_with_re, gamma_numer,
                use_control) when ps="est"
            n_bootstrap: Number of bootstrap samples (config.n_bootstrap if None)
            trt_col: Treatment column name if not "A"
            out_col: Outcome column name if not "Y"
            keep_group: Whether to keep the group estimates of every sample
            seed: Base random seed (config.random_seed if None)
            n_jobs: Number of parallel jobs (config.n_jobs if None)
            verbose: Whether to display progress (config.verbose if None)
            progress_callback: Called with (completed, total) every
                config.progress_interval samples

        Returns:
            Bootstrap result arrays

        Raises:
            ConfigurationError: If inputs are invalid (before any resampling)
            PropensityFitError: If a propensity score fit fails
        """
        config = self.config
        if n_bootstrap is None:
            n_bootstrap = config.n_bootstrap
        if verbose is None:
            verbose = config.verbose

        alpha = np.atleast_1d(np.asarray(alpha, dtype=float))
        cov_cols = list(cov_cols)
        phi_hat_true = coerce_known_propensity(phi_hat_true)
        ps_info_est = coerce_estimated_propensity(ps_info_est)

        strategy = resolve_strategy(ps, phi_hat_true, ps_info_est)
        n_clusters = self._validate_inputs(
            dta, n_bootstrap, alpha, cov_cols, strategy,
            phi_hat_true, ps_info_est, trt_col, out_col,
        )
        n_bootstrap = int(n_bootstrap)

        if verbose:
            print(
                f"Running cluster bootstrap... (n_bootstrap={n_bootstrap}, "
                f"clusters={n_clusters}, strategy={strategy.value})"
            )

        cluster_rows = cluster_index_partition(dta, config.cluster_col, n_clusters)
        iteration_seeds = self._generate_iteration_seeds(
            base_seed=seed, n_bootstrap=n_bootstrap
        )

        iteration_args = [
            (
                dta,
                bb,
                iteration_seeds[bb],
                strategy,
                cov_cols,
                alpha,
                phi_hat_true,
                ps_info_est,
                trt_col,
                out_col,
                n_clusters,
                cluster_rows,
                config,
            )
            for bb in range(n_bootstrap)
        ]

        result = BootstrapResult.allocate(n_clusters, alpha, n_bootstrap, keep_group)
        for replicate in self._run_parallel_bootstrap(
            n_bootstrap=n_bootstrap,
            iteration_func=_cluster_bootstrap_iteration,
            iteration_args=iteration_args,
            n_jobs=n_jobs,
            progress_desc="Running bootstrap",
            verbose=verbose,
            progress_callback=progress_callback,
        ):
            result.merge(replicate)

        n_failed = int(result.failed.sum())
        if n_failed > 0:
            print(f"Warning: {n_failed}/{n_bootstrap} bootstrap samples failed")

        return result


def bootstrap_variance(
    dta: pd.DataFrame,
    alpha: Sequence[float],
    cov_cols: Sequence[str],
    B: Optional[int] = None,
    ps: str = "true",
    phi_hat_true: Union[KnownPropensity, dict, Sequence, None] = None,
    ps_info_est: Union[EstimatedPropensity, dict, None] = None,
    verbose: Optional[bool] = None,
    trt_col: Optional[str] = None,
    out_col: Optional[str] = None,
    return_everything: bool = False,
    config: Optional[Config] = None,
    seed: Optional[int] = None,
    n_jobs: Optional[int] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> Union[np.ndarray, BootstrapResult]:
    """Bootstrap variance of the potential outcome estimators

    Uses resampling of clusters to acquire the distribution of the IPW
    estimator of the population average potential outcomes.

    Args:
        dta: Dataframe including the observed data (cluster column "neigh")
        alpha: Values of alpha where the potential outcomes are estimated
        cov_cols: Covariate column names of the propensity score model
        B: Number of bootstrap samples (config.n_bootstrap if None)
        ps: Whether the propensity score is known ("true") or estimated ("est")
        phi_hat_true: Known parameters (trt_coef, re_var) when ps="true"
        ps_info_est: Estimation settings when ps="est": glm_form (formula,
            optionally with a (1 | neigh) term), ps_with_re, gamma_numer
            (counterfactual allocation coefficients) and use_control
        verbose: Whether progress is displayed (config.verbose if None)
        trt_col: Treatment column name if not "A"
        out_col: Outcome column name if not "Y"
        return_everything: If False, return the population estimates
            [po, alpha, sample] only. If True, return the full result with
            group estimates, chosen clusters and the positive random effect
            variance indicator.
        config: Config object (default Config() if None)
        seed: Base random seed (config.random_seed if None)
        n_jobs: Number of parallel jobs (config.n_jobs if None)
        progress_callback: Called with (completed, total) every
            config.progress_interval samples

    Returns:
        Population estimates array, or BootstrapResult if return_everything
    """
    bootstrap = ClusterBootstrap(config=config)
    result = bootstrap.run(
        dta,
        alpha=alpha,
        cov_cols=cov_cols,
        ps=ps,
        phi_hat_true=phi_hat_true,
        ps_info_est=ps_info_est,
        n_bootstrap=B,
        trt_col=trt_col,
        out_col=out_col,
        keep_group=return_everything,
        seed=seed,
        n_jobs=n_jobs,
        verbose=verbose,
        progress_callback=progress_callback,
    )

    if return_everything:
        return result
    return result.boots
