"""
Reader: loads the community table.

Accepts parquet or csv (polars). Ordering is validated downstream, never
repaired here.
"""

from pathlib import Path

import polars as pl

from dynstab.core.timeseries import TimeSeriesBlock
from dynstab.errors import DataFormatError
from dynstab.validation import block_from_frame


def read_table(path: str) -> pl.DataFrame:
    """Read a parquet or csv community table."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"observations not found: {p}")
    try:
        if p.suffix == '.parquet':
            return pl.read_parquet(str(p))
        if p.suffix in ('.csv', '.txt'):
            return pl.read_csv(str(p), try_parse_dates=True)
    except pl.exceptions.PolarsError as e:
        raise DataFormatError(f"cannot read {p}: {e}")
    raise DataFormatError(f"unsupported file type {p.suffix!r} (expected .parquet or .csv)")


def load_block(path: str, time_column: str) -> TimeSeriesBlock:
    """Read, validate and convert a community table."""
    return block_from_frame(read_table(path), time_column)
