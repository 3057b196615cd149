"""
Stage: Eigen
============

Pure orchestration - calls core/decompose.py for computation.

Output:
    - eigen.parquet   <time>, rank, component, value_re, value_im, modulus,
                      vector_re, vector_im
    - eigen_ipr.parquet   <time>, rank, ipr (inverse participation ratio)

One row per (rank, component): eigenvalue `rank` (1 = largest modulus) and
component `component` of its eigenvector. A missing step is one null row.
"""

import logging
from typing import Dict, List, Tuple

import numpy as np
import polars as pl

from dynstab.core.config import RunConfig
from dynstab.core.decompose import EigenDecomposition, EigenPair, eigen_decompose
from dynstab.core.timeseries import TimeIndexed, TimeSeriesBlock
from dynstab.stages.tables import attach_time, frame, nullable, steps

logger = logging.getLogger(__name__)

SCHEMA = {
    '_step': pl.Int64,
    'rank': pl.Int64,
    'component': pl.Int64,
    'value_re': pl.Float64,
    'value_im': pl.Float64,
    'modulus': pl.Float64,
    'vector_re': pl.Float64,
    'vector_im': pl.Float64,
}

IPR_SCHEMA = {
    '_step': pl.Int64,
    'rank': pl.Int64,
    'ipr': pl.Float64,
}

_NULL = {k: None for k in SCHEMA if k != '_step'}


def failed_steps(matrices: TimeIndexed, steps_out: TimeIndexed) -> List:
    """Times where a matrix was present but its decomposition is missing."""
    return [
        t for t, J, d in zip(matrices.times, matrices.entries, steps_out.entries)
        if J is not None and d is None
    ]


def run(
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
    verbose: bool = True,
) -> Tuple[EigenDecomposition, List[str]]:
    matrices = inputs['matrices'].matrices
    decomposition = eigen_decompose(matrices)

    problems = [f"eigen decomposition failed at {t!r}" for t in failed_steps(matrices, decomposition.steps)]
    logger.debug("eigen: %d step(s) missing", len(decomposition.steps.missing_times()))

    if verbose:
        present = decomposition.steps.present()
        print(f"Decomposed {len(present)}/{len(decomposition.steps)} steps")
        if present:
            dominant = np.array([pair.moduli[0] for _, pair in present])
            print(f"  |lambda_1| range: [{dominant.min():.4f}, {dominant.max():.4f}]")
    return decomposition, problems


def to_frames(decomposition: EigenDecomposition, block: TimeSeriesBlock) -> Dict[str, pl.DataFrame]:
    rows, ipr_rows = [], []
    for i, pair in enumerate(decomposition.steps.entries):
        if pair is None:
            rows.append({'_step': i, **_NULL})
            ipr_rows.append({'_step': i, 'rank': None, 'ipr': None})
            continue
        N = len(pair.values)
        for r, ipr in enumerate(pair.ipr):
            ipr_rows.append({'_step': i, 'rank': r + 1, 'ipr': nullable(ipr)})
        for r in range(N):
            value = pair.values[r]
            for c in range(N):
                vector = pair.vectors[c, r]
                rows.append({
                    '_step': i,
                    'rank': r + 1,
                    'component': c,
                    'value_re': float(value.real),
                    'value_im': float(value.imag),
                    'modulus': float(abs(value)),
                    'vector_re': float(vector.real),
                    'vector_im': float(vector.imag),
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
) -> EigenDecomposition:
    times = inputs['matrices'].times
    main = frames['']
    main = main.with_columns(pl.Series('_step', steps(main, block.time_column, times)))
    present = main.filter(pl.col('rank').is_not_null())

    entries = [None] * len(times)
    for (step,), group in present.group_by(['_step'], maintain_order=True):
        N = int(group['rank'].max())
        rank = group['rank'].to_numpy() - 1
        component = group['component'].to_numpy()
        values = np.zeros(N, dtype=np.complex128)
        vectors = np.zeros((N, N), dtype=np.complex128)
        values[rank] = group['value_re'].to_numpy() + 1j * group['value_im'].to_numpy()
        vectors[component, rank] = group['vector_re'].to_numpy() + 1j * group['vector_im'].to_numpy()
        entries[step] = EigenPair(values=values, vectors=vectors)
    return EigenDecomposition(steps=TimeIndexed(times, entries))
