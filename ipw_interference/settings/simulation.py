import numpy as np
import pandas as pd
from scipy.special import expit
from typing import Optional, Tuple

from .config import Config


def _generate_cluster_sizes(config: Config, rng: np.random.Generator) -> np.ndarray:
    """Draw the number of units of every cluster uniformly in [min, max]"""
    if config.cluster_size_min < 1 or config.cluster_size_max < config.cluster_size_min:
        raise ValueError(
            f"Invalid cluster size range: [{config.cluster_size_min}, {config.cluster_size_max}]"
        )
    return rng.integers(
        config.cluster_size_min, config.cluster_size_max + 1, size=config.n_clusters
    )


def _generate_covariates(
    n_units: int, config: Config, rng: np.random.Generator
) -> Tuple[np.ndarray, np.ndarray]:
    """Common function to generate covariates x1 and x2"""
    x1 = rng.normal(0, config.x1_std, size=n_units)
    x2 = rng.binomial(1, config.x2_prob, size=n_units).astype(float)
    return x1, x2


def _generate_treatment(
    x1: np.ndarray,
    x2: np.ndarray,
    neigh: np.ndarray,
    config: Config,
    rng: np.random.Generator,
) -> np.ndarray:
    """Common function to generate treatment variable A

    Logistic model with a normal cluster-specific random intercept.
    Raises ValueError if every unit shares the same treatment, allowing
    rejection sampling in the calling function.
    """
    if len(config.trt_coef) != 3:
        raise ValueError(
            f"trt_coef must hold (intercept, x1, x2) coefficients, got {config.trt_coef}"
        )

    re_sd = np.sqrt(config.re_var)
    b = rng.normal(0, re_sd, size=config.n_clusters) if re_sd > 0 else np.zeros(config.n_clusters)

    X = np.column_stack([np.ones(len(x1)), x1, x2])
    prob_a = expit(X @ np.asarray(config.trt_coef, dtype=float) + b[neigh - 1])
    A = (rng.uniform(0, 1, size=len(x1)) < prob_a).astype(int)

    if A.min() == A.max():
        raise ValueError(f"Degenerate treatment assignment: all units have A={A[0]}")

    return A


def _generate_outcome(
    x1: np.ndarray,
    A: np.ndarray,
    neigh: np.ndarray,
    config: Config,
    rng: np.random.Generator,
) -> np.ndarray:
    """Outcome with a direct effect and a spillover from treated cluster-mates"""
    n_clusters = config.n_clusters
    treated = np.bincount(neigh - 1, weights=A, minlength=n_clusters)
    sizes = np.bincount(neigh - 1, minlength=n_clusters)

    # Share of treated units among the other members of the cluster
    others = np.maximum(sizes[neigh - 1] - 1, 1)
    share_treated = (treated[neigh - 1] - A) / others

    return (
        config.beta_0
        + config.beta_x1 * x1
        + config.tau * A
        + config.spillover * share_treated
        + rng.normal(0, config.y_error_std, size=len(A))
    )


def generate_data(
    config: Config,
    random_seed: Optional[int] = None,
    max_attempts: int = 100,
) -> pd.DataFrame:
    """Generate a clustered dataset with interference inside clusters

    Args:
        config: Configuration object
        random_seed: Random seed (uses config.random_seed if None)
        max_attempts: Number of rejection sampling attempts

    Returns:
        DataFrame with columns neigh, A, Y, x1, x2 (cluster ids 1..n_clusters)

    Raises:
        ValueError: If no valid dataset could be generated within max_attempts
    """
    seed = config.random_seed if random_seed is None else random_seed
    rng = np.random.default_rng(seed)

    last_error = None
    for _ in range(max_attempts):
        sizes = _generate_cluster_sizes(config, rng)
        neigh = np.repeat(np.arange(1, config.n_clusters + 1), sizes)
        x1, x2 = _generate_covariates(len(neigh), config, rng)
        try:
            A = _generate_treatment(x1, x2, neigh, config, rng)
        except ValueError as e:
            last_error = e
            continue
        Y = _generate_outcome(x1, A, neigh, config, rng)

        return pd.DataFrame(
            {
                config.cluster_col: neigh,
                config.treatment_col: A,
                config.outcome_col: Y,
                "x1": x1,
                "x2": x2,
            }
        )

    raise ValueError(
        f"Could not generate valid data in {max_attempts} attempts: {last_error}"
    )
