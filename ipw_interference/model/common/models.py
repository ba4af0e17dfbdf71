"""
Common Pydantic models for propensity scores and group estimates

Estimators with the same purpose use common models.
"""

from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Optional
import numpy as np
import pandas as pd


_ARRAY_CONFIG = ConfigDict(
    arbitrary_types_allowed=True,
    json_encoders={
        np.ndarray: lambda v: v.tolist(),
        np.float64: float,
        np.float32: float,
    },
)


def _as_float_vector(v) -> np.ndarray:
    arr = np.asarray(v, dtype=float).ravel()
    if arr.size == 0:
        raise ValueError("coefficient vector must not be empty")
    return arr


class KnownPropensity(BaseModel):
    """Known propensity score parameters

    Coefficients of the treatment model (intercept first) and the variance
    of the cluster-specific random intercept.
    """

    trt_coef: np.ndarray = Field(description="Treatment model coefficients")
    re_var: float = Field(ge=0.0, description="Random intercept variance")

    @field_validator("trt_coef", mode="before")
    @classmethod
    def validate_coef(cls, v):
        return _as_float_vector(v)

    model_config = _ARRAY_CONFIG


class EstimatedPropensity(BaseModel):
    """Settings for estimating the propensity score on every bootstrap sample"""

    glm_form: str = Field(
        description="Model formula, optionally with an lme4-style (1 | cluster) term"
    )
    ps_with_re: bool = Field(description="Whether the model has a random intercept")
    gamma_numer: np.ndarray = Field(
        description="Coefficients of the counterfactual treatment allocation model"
    )
    use_control: bool = Field(
        default=False, description="Apply the configured optimizer control to the mixed model"
    )

    @field_validator("gamma_numer", mode="before")
    @classmethod
    def validate_gamma(cls, v):
        return _as_float_vector(v)

    @field_validator("use_control", mode="before")
    @classmethod
    def default_use_control(cls, v):
        # An unspecified control flag means no control
        return False if v is None else v

    model_config = _ARRAY_CONFIG


class PropensityFit(BaseModel):
    """Fitted (or known) propensity score model parameters"""

    coefs: np.ndarray = Field(description="Fixed effect coefficients, intercept first")
    re_var: float = Field(ge=0.0, description="Random intercept variance (0 without random effect)")

    @field_validator("coefs", mode="before")
    @classmethod
    def validate_coefs(cls, v):
        return _as_float_vector(v)

    model_config = _ARRAY_CONFIG


class GroupIPWResult(BaseModel):
    """Group-level IPW estimates of the average potential outcomes

    yhat_group is indexed [cluster, potential outcome (y0, y1), alpha].
    """

    yhat_group: np.ndarray = Field(description="Group average potential outcome estimates")
    re_alpha: Optional[np.ndarray] = Field(
        default=None, description="Allocation intercepts indexed [cluster, alpha]"
    )

    model_config = _ARRAY_CONFIG


class BootSample(BaseModel):
    """One cluster bootstrap draw

    boot_df holds the concatenated records of the drawn clusters with
    the cluster column relabeled to the draw position (1..n_clusters).
    """

    boot_df: pd.DataFrame = Field(description="Resampled dataset")
    chosen_clusters: np.ndarray = Field(description="Original ids of the drawn clusters")

    model_config = _ARRAY_CONFIG
