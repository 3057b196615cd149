"""
Shared synthetic community tables.

Scenario A: A is AR(1) and drives B at lag 1; C is independent noise.
Scenario B: as A, plus a constant (zero-variance) variable D.
"""

import numpy as np
import polars as pl
import pytest

from dynstab.core.timeseries import TimeSeriesBlock

N_POINTS = 120

# Small but realistic settings so the pipeline tests stay fast
FAST_OPTIONS = {
    'max_E': 4,
    'num_surr': 100,
    'lib_sizes': [20, 50, 100],
    'num_samples': 20,
    'alpha': 0.01,
    'theta': 0.0,
    'seed': 7,
    'n_jobs': 1,
}


def scenario_a_frame(n: int = N_POINTS, seed: int = 1) -> pl.DataFrame:
    rng = np.random.default_rng(seed)
    a = np.zeros(n)
    b = np.zeros(n)
    for t in range(1, n):
        a[t] = 0.7 * a[t - 1] + rng.normal()
        b[t] = 0.4 * b[t - 1] + 0.8 * a[t - 1] + 0.1 * rng.normal()
    c = rng.normal(size=n)
    return pl.DataFrame({
        'censusdate': np.arange(n, dtype=np.int64),
        'A': a,
        'B': b,
        'C': c,
    })


def scenario_b_frame(n: int = N_POINTS, seed: int = 1) -> pl.DataFrame:
    return scenario_a_frame(n, seed).drop('C').with_columns(pl.lit(5.0).alias('D'))


@pytest.fixture
def scenario_a() -> pl.DataFrame:
    return scenario_a_frame()


@pytest.fixture
def scenario_b() -> pl.DataFrame:
    return scenario_b_frame()


@pytest.fixture
def coupled_pair():
    """(cause, effect) arrays: effect driven by cause at lag 1."""
    df = scenario_a_frame()
    return df['A'].to_numpy(), df['B'].to_numpy()


@pytest.fixture
def small_block() -> TimeSeriesBlock:
    rng = np.random.default_rng(3)
    return TimeSeriesBlock(
        times=np.arange(30),
        columns=('x', 'y'),
        values=rng.normal(size=(30, 2)),
        time_column='censusdate',
    )
