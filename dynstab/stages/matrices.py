"""
Stage: Matrices
===============

Pure orchestration - calls core/matrix.py for computation.

Output:
    - matrices.parquet          <time>, row, col, value (N x N rows per step)
    - matrices_layout.parquet   slot, variable, lag

A missing step is one row with null row/col/value.
"""

import logging
from typing import Dict, List, Tuple

import numpy as np
import polars as pl

from dynstab.core.config import RunConfig
from dynstab.core.matrix import CoefficientMatrix, assemble
from dynstab.core.timeseries import TimeIndexed, TimeSeriesBlock
from dynstab.stages.tables import attach_time, frame, steps

logger = logging.getLogger(__name__)

SCHEMA = {
    '_step': pl.Int64,
    'row': pl.Int64,
    'col': pl.Int64,
    'value': pl.Float64,
}

LAYOUT_SCHEMA = {
    'slot': pl.Int64,
    'variable': pl.String,
    'lag': pl.Int64,
}


def run(
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
    verbose: bool = True,
) -> Tuple[CoefficientMatrix, List[str]]:
    coefficients = inputs['coefficients']
    matrix = assemble(coefficients.fits, block.columns, times=coefficients.times)

    problems = []
    n_missing = int(matrix.matrices.missing_mask().sum())
    if n_missing:
        problems.append(f"{n_missing} of {len(matrix.times)} time step(s) have no complete matrix")
    if not matrix.layout:
        logger.debug("no fitted targets: every matrix is missing")

    if verbose:
        print(f"State size N={matrix.size}, {len(matrix.times) - n_missing}/{len(matrix.times)} steps complete")
    return matrix, problems


def to_frames(matrix: CoefficientMatrix, block: TimeSeriesBlock) -> Dict[str, pl.DataFrame]:
    rows = []
    N = matrix.size
    for i, J in enumerate(matrix.matrices.entries):
        if J is None:
            rows.append({'_step': i, 'row': None, 'col': None, 'value': None})
            continue
        for r in range(N):
            for c in range(N):
                rows.append({'_step': i, 'row': r, 'col': c, 'value': float(J[r, c])})

    layout = [
        {'slot': s, 'variable': v, 'lag': lag}
        for s, (v, lag) in enumerate(matrix.layout)
    ]
    return {
        '': attach_time(frame(rows, SCHEMA), block.time_column, matrix.times),
        'layout': frame(layout, LAYOUT_SCHEMA),
    }


def from_frames(
    frames: Dict[str, pl.DataFrame],
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
) -> CoefficientMatrix:
    times = inputs['coefficients'].times
    layout = tuple(
        (row['variable'], row['lag'])
        for row in frames['layout'].sort('slot').iter_rows(named=True)
    )
    N = len(layout)

    main = frames['']
    main = main.with_columns(pl.Series('_step', steps(main, block.time_column, times)))
    present = main.filter(pl.col('value').is_not_null())

    entries = [None] * len(times)
    for (step,), group in present.group_by(['_step'], maintain_order=True):
        J = np.zeros((N, N))
        J[group['row'].to_numpy(), group['col'].to_numpy()] = group['value'].to_numpy()
        entries[step] = J
    return CoefficientMatrix(layout=layout, matrices=TimeIndexed(times, entries))
