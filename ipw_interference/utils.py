"""
Module providing general-purpose utility functions

This module provides functionality shared by the estimators:
- Cluster id validation and index partitioning
- Formula handling for random intercept models
- Design matrix construction
- Machine learning model retrieval

Estimator-specific logic is located under model/.
"""

import re
import numpy as np
import pandas as pd
from typing import List, Optional, Sequence, Tuple
from sklearn.linear_model import LogisticRegression

from .settings import Config
from .exceptions import ConfigurationError


# Matches an lme4-style random intercept term such as "(1 | neigh)"
_RANDOM_INTERCEPT_PATTERN = re.compile(r"\(\s*1\s*\|\s*([A-Za-z_][A-Za-z0-9_.]*)\s*\)")


# =============================================================================
# Cluster handling
# =============================================================================


def validate_cluster_ids(df: pd.DataFrame, cluster_col: str = "neigh") -> int:
    """Check that cluster ids are integers running 1..n_clusters without gaps

    Args:
        df: Dataframe
        cluster_col: Cluster column name

    Returns:
        Number of clusters (the maximum cluster id)

    Raises:
        ConfigurationError: If the column is missing or ids are malformed
    """
    if cluster_col not in df.columns:
        raise ConfigurationError(f"Cluster column '{cluster_col}' not found in data")
    if len(df) == 0:
        raise ConfigurationError("Data has no rows")

    ids = df[cluster_col].to_numpy()
    if pd.isna(ids).any():
        raise ConfigurationError(f"Cluster column '{cluster_col}' contains missing values")

    ids = ids.astype(float)
    if not np.all(ids == np.round(ids)):
        raise ConfigurationError(f"Cluster ids in '{cluster_col}' must be integers")

    ids = ids.astype(int)
    n_clusters = int(ids.max())
    if ids.min() < 1:
        raise ConfigurationError(
            f"Cluster ids must lie in 1..{n_clusters}, found {int(ids.min())}"
        )

    missing = np.setdiff1d(np.arange(1, n_clusters + 1), ids)
    if len(missing) > 0:
        raise ConfigurationError(
            f"Cluster ids must run 1..{n_clusters} without gaps, missing {missing[:10].tolist()}"
        )

    return n_clusters


def cluster_index_partition(
    df: pd.DataFrame, cluster_col: str = "neigh", n_clusters: Optional[int] = None
) -> List[np.ndarray]:
    """Row positions of each cluster

    Element nn holds the positional indices of the rows of cluster nn + 1.

    Args:
        df: Dataframe
        cluster_col: Cluster column name
        n_clusters: Number of clusters (the maximum cluster id if None)

    Returns:
        List of index arrays, one per cluster
    """
    ids = df[cluster_col].to_numpy().astype(int)
    if n_clusters is None:
        n_clusters = int(ids.max())
    return [np.flatnonzero(ids == nn) for nn in range(1, n_clusters + 1)]


# =============================================================================
# Formula handling
# =============================================================================


def split_random_intercept(formula: str) -> Tuple[str, Optional[str]]:
    """Separate an lme4-style random intercept term from a model formula

    Args:
        formula: Formula such as "A ~ x1 + x2 + (1 | neigh)"

    Returns:
        Tuple of (fixed effects formula, grouping column or None)

    Raises:
        ConfigurationError: If more than one random intercept term is present
        or the formula has no response

    Example:
        >>> split_random_intercept("A ~ x1 + (1 | neigh)")
        ('A ~ x1', 'neigh')
    """
    if "~" not in formula:
        raise ConfigurationError(f"Formula has no response: '{formula}'")

    groups = _RANDOM_INTERCEPT_PATTERN.findall(formula)
    if len(groups) > 1:
        raise ConfigurationError(
            f"Only a single random intercept term is supported: '{formula}'"
        )

    fixed = _RANDOM_INTERCEPT_PATTERN.sub("", formula)
    lhs, rhs = fixed.split("~", 1)
    if "|" in rhs:
        raise ConfigurationError(f"Unsupported random effect term in '{formula}'")

    # Drop the '+' left dangling by the removed term
    rhs = re.sub(r"\+\s*(?=\+)", "", rhs).strip().strip("+").strip()
    rhs = re.sub(r"\s+", " ", rhs)

    fixed_formula = f"{lhs.strip()} ~ {rhs if rhs else '1'}"
    return fixed_formula, (groups[0] if groups else None)


# =============================================================================
# Design matrices
# =============================================================================


def design_matrix(df: pd.DataFrame, cov_cols: Sequence[str]) -> np.ndarray:
    """Covariate matrix with a leading intercept column"""
    X = df[list(cov_cols)].to_numpy(dtype=float)
    return np.column_stack([np.ones(len(df)), X])


def check_coefficients(coefs: np.ndarray, cov_cols: Sequence[str], name: str) -> None:
    """Coefficient vectors hold an intercept followed by one entry per covariate"""
    expected = len(cov_cols) + 1
    if len(coefs) != expected:
        raise ConfigurationError(
            f"{name} has {len(coefs)} coefficients, expected {expected} "
            f"(intercept + {list(cov_cols)})"
        )


# =============================================================================
# Machine learning models
# =============================================================================


def get_ml_model(model_type: str, config: Config):
    """Return machine learning model instance"""
    if model_type == "logistic":
        # Unpenalised maximum likelihood on a design matrix that carries its own intercept
        return LogisticRegression(
            penalty=None,
            fit_intercept=False,
            solver="lbfgs",
            max_iter=config.logistic_max_iter,
        )
    raise ValueError(f"Invalid model_type: {model_type}")
