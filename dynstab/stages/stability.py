"""
Stage: Stability Metrics
========================

Pure orchestration - calls core/stability.py for computation.

Output:
    - volume_contraction.parquet   <time>, value
    - total_variance.parquet       <time>, value

value is null wherever the decomposition is missing.
"""

from typing import Dict, List, Tuple

import numpy as np
import polars as pl

from dynstab.core.config import RunConfig
from dynstab.core.stability import StabilityMetric, total_variance, volume_contraction
from dynstab.core.timeseries import TimeIndexed, TimeSeriesBlock
from dynstab.stages.tables import attach_time, frame, steps

SCHEMA = {'_step': pl.Int64, 'value': pl.Float64}


def _summarize(metric: StabilityMetric) -> None:
    values = metric.to_array()
    ok = np.isfinite(values)
    print(f"{metric.name}: {int(ok.sum())}/{len(values)} steps")
    if ok.any():
        print(f"  range: [{values[ok].min():.4f}, {values[ok].max():.4f}], "
              f"{int((values[ok] < 1).sum())} step(s) below 1")


def run_volume_contraction(
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
    verbose: bool = True,
) -> Tuple[StabilityMetric, List[str]]:
    metric = volume_contraction(inputs['eigen'])
    if verbose:
        _summarize(metric)
    return metric, []


def run_total_variance(
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
    verbose: bool = True,
) -> Tuple[StabilityMetric, List[str]]:
    metric = total_variance(inputs['svd'])
    if verbose:
        _summarize(metric)
    return metric, []


def to_frames(metric: StabilityMetric, block: TimeSeriesBlock) -> Dict[str, pl.DataFrame]:
    rows = [{'_step': i, 'value': v} for i, v in enumerate(metric.values.entries)]
    return {'': attach_time(frame(rows, SCHEMA), block.time_column, metric.values.times)}


def _from_frames(name: str, source: str, frames: Dict[str, pl.DataFrame], block: TimeSeriesBlock, inputs: Dict) -> StabilityMetric:
    times = inputs[source].steps.times
    main = frames['']
    entries = [None] * len(times)
    for step, value in zip(steps(main, block.time_column, times), main['value'].to_list()):
        entries[step] = value
    return StabilityMetric(name, TimeIndexed(times, entries))


def volume_from_frames(frames, block, config, inputs) -> StabilityMetric:
    return _from_frames('volume_contraction', 'eigen', frames, block, inputs)


def variance_from_frames(frames, block, config, inputs) -> StabilityMetric:
    return _from_frames('total_variance', 'svd', frames, block, inputs)
