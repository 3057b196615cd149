"""
Long-format table helpers shared by the stage runners.

Time-indexed tables carry the block's time column. Rows are built with an
integer `_step` (position on the shared axis) which attach_time() swaps for
the real time values; steps() maps a stored time column back to positions.
"""

from typing import Dict, List, Sequence

import numpy as np
import polars as pl

from dynstab.errors import StoreIOError


def axis_series(time_column: str, times: Sequence) -> pl.Series:
    return pl.Series(time_column, np.asarray(times))


def frame(rows: List[Dict], schema: Dict[str, pl.DataType]) -> pl.DataFrame:
    """DataFrame with a fixed schema, also when rows is empty."""
    return pl.DataFrame(rows, schema=schema) if rows else pl.DataFrame(schema=schema)


def attach_time(df: pl.DataFrame, time_column: str, times: Sequence) -> pl.DataFrame:
    """Replace the `_step` column with the time value at that step (first column)."""
    axis = axis_series(time_column, times)
    time_values = axis.gather(df['_step'].to_list()) if df.height else axis.clear()
    rest = [c for c in df.columns if c != '_step']
    return df.with_columns(time_values.alias(time_column)).select([time_column] + rest)


def steps(df: pl.DataFrame, time_column: str, times: Sequence) -> np.ndarray:
    """Position on the axis of every row's time value."""
    if time_column not in df.columns:
        raise StoreIOError(f"stored table has no {time_column!r} column")
    axis = axis_series(time_column, times).to_physical().to_numpy()
    stored = df[time_column].to_physical().to_numpy()
    pos = np.searchsorted(axis, stored)
    ok = (pos < len(axis)) & (axis[np.minimum(pos, len(axis) - 1)] == stored) if len(axis) else pos < 0
    if not np.all(ok):
        raise StoreIOError("stored table does not match the time axis of the block")
    return pos


def nullable(value):
    """None for missing or non-finite floats."""
    if value is None:
        return None
    value = float(value)
    return value if np.isfinite(value) else None


def restore(value) -> float:
    return np.nan if value is None else float(value)
