"""
Stage: SVD
==========

Pure orchestration - calls core/decompose.py for computation.

Output:
    - svd.parquet   <time>, rank, singular_value, component, u, v
    - svd_ipr.parquet   <time>, rank, ipr_u, ipr_v (inverse participation ratios)

One row per (rank, component): u = U[component, rank-1] and
v = Vt[rank-1, component]. A missing step is one null row.
"""

from typing import Dict, List, Tuple

import numpy as np
import polars as pl

from dynstab.core.config import RunConfig
from dynstab.core.decompose import SVDDecomposition, SVDResult, svd_decompose
from dynstab.core.timeseries import TimeIndexed, TimeSeriesBlock
from dynstab.stages.eigen import failed_steps
from dynstab.stages.tables import attach_time, frame, nullable, steps

SCHEMA = {
    '_step': pl.Int64,
    'rank': pl.Int64,
    'singular_value': pl.Float64,
    'component': pl.Int64,
    'u': pl.Float64,
    'v': pl.Float64,
}

IPR_SCHEMA = {
    '_step': pl.Int64,
    'rank': pl.Int64,
    'ipr_u': pl.Float64,
    'ipr_v': pl.Float64,
}


def run(
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
    verbose: bool = True,
) -> Tuple[SVDDecomposition, List[str]]:
    matrices = inputs['matrices'].matrices
    decomposition = svd_decompose(matrices)
    problems = [f"singular value decomposition failed at {t!r}" for t in failed_steps(matrices, decomposition.steps)]

    if verbose:
        present = decomposition.steps.present()
        print(f"Decomposed {len(present)}/{len(decomposition.steps)} steps")
        if present:
            d1 = np.array([result.d[0] for _, result in present])
            print(f"  d_1 range: [{d1.min():.4f}, {d1.max():.4f}]")
    return decomposition, problems


def to_frames(decomposition: SVDDecomposition, block: TimeSeriesBlock) -> Dict[str, pl.DataFrame]:
    rows, ipr_rows = [], []
    for i, result in enumerate(decomposition.steps.entries):
        if result is None:
            rows.append({'_step': i, 'rank': None, 'singular_value': None,
                         'component': None, 'u': None, 'v': None})
            ipr_rows.append({'_step': i, 'rank': None, 'ipr_u': None, 'ipr_v': None})
            continue
        N = len(result.d)
        for r, (ipr_u, ipr_v) in enumerate(zip(result.ipr_u, result.ipr_v)):
            ipr_rows.append({'_step': i, 'rank': r + 1,
                             'ipr_u': nullable(ipr_u), 'ipr_v': nullable(ipr_v)})
        for r in range(N):
            for c in range(N):
                rows.append({
                    '_step': i,
                    'rank': r + 1,
                    'singular_value': float(result.d[r]),
                    'component': c,
                    'u': float(result.u[c, r]),
                    'v': float(result.vt[r, c]),
                })
    times = decomposition.steps.times
    return {
        '': attach_time(frame(rows, SCHEMA), block.time_column, times),
        'ipr': attach_time(frame(ipr_rows, IPR_SCHEMA), block.time_column, times),
    }


def from_frames(
    frames: Dict[str, pl.DataFrame],
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
) -> SVDDecomposition:
    times = inputs['matrices'].times
    main = frames['']
    main = main.with_columns(pl.Series('_step', steps(main, block.time_column, times)))
    present = main.filter(pl.col('rank').is_not_null())

    entries = [None] * len(times)
    for (step,), group in present.group_by(['_step'], maintain_order=True):
        N = int(group['rank'].max())
        rank = group['rank'].to_numpy() - 1
        component = group['component'].to_numpy()
        d = np.zeros(N)
        u = np.zeros((N, N))
        vt = np.zeros((N, N))
        d[rank] = group['singular_value'].to_numpy()
        u[component, rank] = group['u'].to_numpy()
        vt[rank, component] = group['v'].to_numpy()
        entries[step] = SVDResult(d=d, u=u, vt=vt)
    return SVDDecomposition(steps=TimeIndexed(times, entries))
