import numpy as np
import pandas as pd
import pytest

from ipw_interference.settings import get_config, generate_data


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture
def small_data():
    """Four clusters with both treatment arms in every cluster"""
    return pd.DataFrame(
        {
            "neigh": [1, 1, 1, 2, 2, 2, 2, 3, 3, 3, 4, 4, 4, 4, 4],
            "A": [1, 0, 1, 0, 0, 1, 1, 1, 0, 0, 0, 1, 0, 1, 1],
            "Y": [2.1, 0.5, 1.8, 0.2, 0.9, 2.5, 1.7, 3.0, 1.1, 0.4, 0.3, 2.2, 0.8, 1.9, 2.6],
            "x1": [0.3, -1.2, 0.8, 0.1, -0.4, 1.5, 0.0, -0.7, 0.6, -0.1, 1.1, -0.9, 0.2, 0.5, -0.3],
            "x2": [1, 0, 0, 1, 1, 0, 1, 0, 0, 1, 1, 1, 0, 0, 1],
        }
    )


@pytest.fixture
def sim_config():
    return get_config(
        "quick",
        overrides={
            "n_clusters": 12,
            "n_bootstrap": 4,
        },
    )


@pytest.fixture
def sim_data(sim_config):
    return generate_data(sim_config)
