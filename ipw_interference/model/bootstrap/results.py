"""
Bootstrap Result Models

BootstrapReplicate holds the outcome of one bootstrap repetition.
BootstrapResult holds the arrays of all repetitions; it is allocated once
and every replicate is merged into its own repetition slot, so repetitions
can run in any order or in parallel.
"""

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field, ConfigDict
from typing import Iterable, Optional, Tuple


_PO_NAMES = ("y0", "y1")


class BootstrapReplicate(BaseModel):
    """Result of one bootstrap repetition"""

    index: int = Field(ge=0, description="Repetition index (0-based)")
    chosen_clusters: np.ndarray = Field(description="Original ids of the drawn clusters")
    ygroup: Optional[np.ndarray] = Field(
        default=None, description="Group estimates indexed [cluster, po, alpha]"
    )
    re_var: float = Field(default=np.nan, description="Random intercept variance used")
    re_var_positive: Optional[bool] = Field(
        default=None, description="Whether the random intercept variance is positive"
    )
    failed: bool = Field(default=False, description="Whether the repetition failed")
    error: Optional[str] = Field(default=None, description="Error message of a failed repetition")

    model_config = ConfigDict(arbitrary_types_allowed=True)


class BootstrapResult(BaseModel):
    """Cluster bootstrap estimates of the average potential outcomes

    Arrays:
        boots: Population estimates [po, alpha, sample]
        ygroup: Group estimates [cluster, po, alpha, sample] (optional)
        chosen_clusters: Drawn cluster ids [cluster, sample]
        re_var_positive: Whether the random intercept variance was positive [sample]
        failed: Whether the repetition failed [sample]
    """

    alpha: np.ndarray = Field(description="Allocation strategies")
    boots: np.ndarray = Field(description="Population estimates [po, alpha, sample]")
    ygroup: Optional[np.ndarray] = Field(default=None)
    chosen_clusters: np.ndarray = Field(description="Drawn cluster ids [cluster, sample]")
    re_var_positive: np.ndarray = Field(description="Positive random intercept variance [sample]")
    failed: np.ndarray = Field(description="Failed repetitions [sample]")

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @classmethod
    def allocate(
        cls,
        n_clusters: int,
        alpha: Iterable[float],
        n_bootstrap: int,
        keep_group: bool = True,
    ) -> "BootstrapResult":
        """Create empty (NaN-filled) arrays for all repetitions"""
        alpha = np.asarray(list(alpha), dtype=float)
        n_alpha = len(alpha)
        return cls(
            alpha=alpha,
            boots=np.full((2, n_alpha, n_bootstrap), np.nan),
            ygroup=(
                np.full((n_clusters, 2, n_alpha, n_bootstrap), np.nan)
                if keep_group
                else None
            ),
            chosen_clusters=np.zeros((n_clusters, n_bootstrap), dtype=int),
            re_var_positive=np.zeros(n_bootstrap, dtype=bool),
            failed=np.zeros(n_bootstrap, dtype=bool),
        )

    @classmethod
    def from_replicates(
        cls,
        replicates: Iterable[BootstrapReplicate],
        n_clusters: int,
        alpha: Iterable[float],
        n_bootstrap: int,
        keep_group: bool = True,
    ) -> "BootstrapResult":
        """Allocate and merge a collection of replicates"""
        result = cls.allocate(n_clusters, alpha, n_bootstrap, keep_group)
        for replicate in replicates:
            result.merge(replicate)
        return result

    @property
    def n_bootstrap(self) -> int:
        return self.boots.shape[2]

    @property
    def n_clusters(self) -> int:
        return self.chosen_clusters.shape[0]

    def merge(self, replicate: BootstrapReplicate) -> None:
        """Write one replicate into its repetition slot

        The population estimate is the mean over clusters of the group
        estimates for every (po, alpha) pair.

        Raises:
            IndexError: If the replicate index is out of range
            ValueError: If the replicate arrays have unexpected shapes
        """
        bb = replicate.index
        if bb >= self.n_bootstrap:
            raise IndexError(
                f"Replicate index {bb} out of range for {self.n_bootstrap} samples"
            )

        chosen = np.asarray(replicate.chosen_clusters)
        if chosen.shape != (self.n_clusters,):
            raise ValueError(
                f"chosen_clusters has shape {chosen.shape}, expected ({self.n_clusters},)"
            )
        self.chosen_clusters[:, bb] = chosen
        self.failed[bb] = replicate.failed
        self.re_var_positive[bb] = bool(replicate.re_var_positive)

        if replicate.failed or replicate.ygroup is None:
            self.failed[bb] = True
            self.boots[:, :, bb] = np.nan
            if self.ygroup is not None:
                self.ygroup[..., bb] = np.nan
            return

        expected = (self.n_clusters, 2, len(self.alpha))
        if replicate.ygroup.shape != expected:
            raise ValueError(
                f"ygroup has shape {replicate.ygroup.shape}, expected {expected}"
            )
        if self.ygroup is not None:
            self.ygroup[..., bb] = replicate.ygroup
        self.boots[:, :, bb] = replicate.ygroup.mean(axis=0)

    # =========================================================================
    # Summaries of the bootstrap distribution
    # =========================================================================

    def valid_boots(self) -> np.ndarray:
        """Population estimates of the successful repetitions [po, alpha, sample]"""
        return self.boots[:, :, ~self.failed]

    def variance(self) -> np.ndarray:
        """Bootstrap variance [po, alpha] (NaN with fewer than 2 valid samples)"""
        valid = self.valid_boots()
        if valid.shape[2] < 2:
            return np.full(valid.shape[:2], np.nan)
        return np.var(valid, axis=2, ddof=1)

    def standard_errors(self) -> np.ndarray:
        """Bootstrap standard errors [po, alpha]"""
        return np.sqrt(self.variance())

    def percentile_interval(
        self, confidence_level: float = 0.95
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Percentile bootstrap interval, each bound indexed [po, alpha]"""
        if not 0 < confidence_level < 1:
            raise ValueError(f"confidence_level must be in (0, 1), got {confidence_level}")
        valid = self.valid_boots()
        if valid.shape[2] == 0:
            empty = np.full(valid.shape[:2], np.nan)
            return empty, empty.copy()
        tail = (1 - confidence_level) / 2
        lower = np.quantile(valid, tail, axis=2)
        upper = np.quantile(valid, 1 - tail, axis=2)
        return lower, upper

    def direct_effects(self) -> np.ndarray:
        """Bootstrap draws of y1(alpha) - y0(alpha) [alpha, sample]"""
        return self.boots[1] - self.boots[0]

    def indirect_effects(self, ref: int = 0) -> np.ndarray:
        """Bootstrap draws of y0(alpha) - y0(alpha[ref]) [alpha, sample]"""
        return self.boots[0] - self.boots[0, ref][np.newaxis, :]

    def total_effects(self, ref: int = 0) -> np.ndarray:
        """Bootstrap draws of y1(alpha) - y0(alpha[ref]) [alpha, sample]"""
        return self.boots[1] - self.boots[0, ref][np.newaxis, :]

    def to_frame(self, confidence_level: float = 0.95) -> pd.DataFrame:
        """Summary table with one row per (po, alpha)"""
        valid = self.valid_boots()
        means = (
            valid.mean(axis=2)
            if valid.shape[2] > 0
            else np.full(valid.shape[:2], np.nan)
        )
        variances = self.variance()
        lower, upper = self.percentile_interval(confidence_level)

        rows = []
        for it, po in enumerate(_PO_NAMES):
            for aa, curr_alpha in enumerate(self.alpha):
                rows.append(
                    {
                        "po": po,
                        "alpha": curr_alpha,
                        "boot_mean": means[it, aa],
                        "boot_var": variances[it, aa],
                        "boot_se": np.sqrt(variances[it, aa]),
                        "ci_lower": lower[it, aa],
                        "ci_upper": upper[it, aa],
                        "n_valid": valid.shape[2],
                    }
                )
        return pd.DataFrame(rows)
