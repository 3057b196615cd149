"""
Stage: Surrogates
=================

Pure orchestration - calls core/surrogates.py for computation.

Output:
    - surrogates.parquet   long format: variable, replicate, <time>, value

Builds the null ensemble for every variable with a defined embedding.
Variables without one can never be a tested cause and are skipped.
"""

import logging
from typing import Dict, List, Tuple

import numpy as np
import polars as pl

from dynstab.core.config import RunConfig
from dynstab.core.parallel import run_tasks
from dynstab.core.surrogates import SurrogateEnsemble, check_method, make_surrogates
from dynstab.core.timeseries import TimeSeriesBlock

logger = logging.getLogger(__name__)


def run(
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
    verbose: bool = True,
) -> Tuple[SurrogateEnsemble, List[str]]:
    """
    Surrogates for every embedded variable.

    Raises:
        ConfigurationError: unknown method or bad method parameters
    """
    params = check_method(config.surrogate_method, config.surrogate_params)
    embedding = inputs['embedding']
    valid = embedding.valid()

    if verbose:
        print(f"Method: {config.surrogate_method} {params}, num_surr={config.num_surr}")

    tasks = []
    for v in block.columns:
        if v not in valid:
            logger.debug("no surrogates for %s: no embedding", v)
            continue
        tasks.append((v, (
            block.series(v), v, config.num_surr, config.seed,
            config.surrogate_method, params,
        )))
    outcomes = run_tasks(make_surrogates, tasks, n_jobs=config.workers)

    ensemble = SurrogateEnsemble(method=config.surrogate_method, params=params)
    problems = []
    for outcome in outcomes:
        if outcome.ok:
            ensemble.series[outcome.entity] = outcome.value
        else:
            problems.append(f"{outcome.entity}: {outcome.error}")
            logger.debug("surrogates missing for %s: %s", outcome.entity, outcome.error)

    if verbose:
        print(f"  {len(ensemble.series)} variable(s) x {config.num_surr} surrogates")
    return ensemble, problems


def to_frames(ensemble: SurrogateEnsemble, block: TimeSeriesBlock) -> Dict[str, pl.DataFrame]:
    time_column = block.time_column
    parts = []
    for v, series in ensemble.series.items():
        num_surr, n = series.shape
        parts.append(pl.DataFrame({
            'variable': pl.Series('variable', [v] * (num_surr * n), dtype=pl.String),
            'replicate': np.repeat(np.arange(num_surr, dtype=np.int64), n),
            time_column: np.tile(np.asarray(block.times), num_surr),
            'value': series.reshape(-1),
        }))
    if not parts:
        empty = pl.DataFrame({time_column: np.asarray(block.times)[:0]})
        return {'': pl.DataFrame(schema={
            'variable': pl.String,
            'replicate': pl.Int64,
            time_column: empty.schema[time_column],
            'value': pl.Float64,
        })}
    return {'': pl.concat(parts)}


def from_frames(
    frames: Dict[str, pl.DataFrame],
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
) -> SurrogateEnsemble:
    df = frames['']
    n = len(block)
    ensemble = SurrogateEnsemble(
        method=config.surrogate_method,
        params=check_method(config.surrogate_method, config.surrogate_params),
    )
    # Rows were written variable by variable, replicate by replicate, in time order
    for v in df['variable'].unique(maintain_order=True).to_list():
        values = df.filter(pl.col('variable') == v)['value'].to_numpy()
        ensemble.series[v] = values.reshape(-1, n)
    return ensemble
