"""
Input Data Validation
=====================

Validates the cleaned community table before any stage runs.

PRINCIPLE: "A gapped or unordered block is fatal; a dull one is not."

    - time column present, no nulls
    - at least one numeric data column, no nulls / NaN
    - times strictly increasing
    - fixed sampling step: a step over 1.5 x the median step is a gap

Any violation raises DataFormatError naming the offending time index.
Constant columns only produce a warning; EmbeddingSelector marks them missing.

Usage:
    from dynstab.validation import validate_frame, block_from_frame

    report = validate_frame(df, time_column='censusdate')
    block = block_from_frame(df, time_column='censusdate')
"""

import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import polars as pl

from dynstab.core.timeseries import TimeSeriesBlock
from dynstab.errors import DataFormatError

GAP_FACTOR = 1.5


@dataclass
class InputValidationReport:
    """Report from input validation."""

    valid: bool = True
    warnings: List[str] = field(default_factory=list)

    n_times: int = 0
    n_columns: int = 0
    median_step: Optional[float] = None
    constant_columns: List[str] = field(default_factory=list)

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            "=" * 60,
            "INPUT VALIDATION REPORT",
            "=" * 60,
            f"Time steps: {self.n_times}",
            f"Variables:  {self.n_columns}",
        ]
        if self.constant_columns:
            lines.append(f"Constant variables ({len(self.constant_columns)}):")
            for c in self.constant_columns[:10]:
                lines.append(f"  - {c}")
        if self.warnings:
            lines.append("WARNINGS:")
            for w in self.warnings:
                lines.append(f"  - {w}")
        lines.append(f"Status: {'PASSED' if self.valid else 'FAILED'}")
        lines.append("=" * 60)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'warnings': self.warnings,
            'n_times': self.n_times,
            'n_columns': self.n_columns,
            'median_step': self.median_step,
            'constant_columns': self.constant_columns,
        }


def _time_steps(times: pl.Series) -> np.ndarray:
    """Time index as numbers (dates/datetimes via their physical integer)."""
    if times.dtype.is_temporal():
        times = times.to_physical()
    return times.cast(pl.Float64).to_numpy()


def validate_frame(df: pl.DataFrame, time_column: str) -> InputValidationReport:
    """
    Validate a community table.

    Args:
        df: Table with a time column plus one numeric column per variable
        time_column: Name of the time-index column

    Returns:
        InputValidationReport (constant columns reported as warnings)

    Raises:
        DataFormatError: on the first structural problem found
    """
    report = InputValidationReport()

    if time_column not in df.columns:
        raise DataFormatError(f"time column {time_column!r} not found (columns: {df.columns})")

    data_columns = [c for c in df.columns if c != time_column]
    if not data_columns:
        raise DataFormatError("no data columns besides the time column")
    for c in data_columns:
        if not df.schema[c].is_numeric():
            raise DataFormatError(f"column {c!r} is not numeric ({df.schema[c]})")

    times = df[time_column]
    if times.null_count() > 0:
        raise DataFormatError("null time value", index=int(np.argmax(times.is_null().to_numpy())))

    for c in data_columns:
        values = df[c].cast(pl.Float64).to_numpy()
        bad = ~np.isfinite(values)
        if bad.any():
            i = int(np.argmax(bad))
            raise DataFormatError(f"column {c!r} has a missing or non-finite value", index=times[i])

    report.n_times = df.height
    report.n_columns = len(data_columns)

    if df.height >= 2:
        steps = np.diff(_time_steps(times))
        bad = steps <= 0
        if bad.any():
            i = int(np.argmax(bad)) + 1
            raise DataFormatError("times are not strictly increasing", index=times[i])
        median_step = float(np.median(steps))
        gaps = steps > GAP_FACTOR * median_step
        if gaps.any():
            i = int(np.argmax(gaps)) + 1
            raise DataFormatError(
                f"gap in the time index: step {steps[i - 1]:g} vs median step {median_step:g}",
                index=times[i],
            )
        report.median_step = median_step

    for c in data_columns:
        values = df[c].cast(pl.Float64).to_numpy()
        if df.height > 0 and np.ptp(values) == 0:
            report.constant_columns.append(c)
    if report.constant_columns:
        report.warnings.append(
            f"{len(report.constant_columns)} constant variable(s): {', '.join(report.constant_columns)}"
        )

    return report


def block_from_frame(df: pl.DataFrame, time_column: str) -> TimeSeriesBlock:
    """Validate a table and convert it to a TimeSeriesBlock. Validation warnings are
    raised as RuntimeWarning."""
    report = validate_frame(df, time_column)
    for message in report.warnings:
        warnings.warn(message, RuntimeWarning, stacklevel=2)
    data_columns = [c for c in df.columns if c != time_column]
    return TimeSeriesBlock(
        times=df[time_column].to_numpy(),
        columns=tuple(data_columns),
        values=df.select(data_columns).cast(pl.Float64).to_numpy(),
        time_column=time_column,
    )
