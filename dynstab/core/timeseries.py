"""
Time Series Containers
======================

TimeSeriesBlock   the immutable multivariate input (one column per taxon)
TimeIndexed       a time axis plus one Optional entry per time step

Every artifact downstream of the S-map fit is a TimeIndexed on the shared
axis block.times[horizon - 1:]. None is the only missing marker; map()
propagates it without calling the function.
"""

import hashlib
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

T = TypeVar('T')
U = TypeVar('U')


def _frozen(a: np.ndarray) -> np.ndarray:
    a = np.array(a, copy=True)
    a.setflags(write=False)
    return a


@dataclass(frozen=True)
class TimeSeriesBlock:
    """
    Ordered, gap-free multivariate time series.

    Attributes:
        times: Time index (strictly increasing), read-only
        columns: Variable names, in column order
        values: (n_times, n_columns) float64 array, read-only
        time_column: Name of the time-index column in the source table
    """
    times: np.ndarray
    columns: Tuple[str, ...]
    values: np.ndarray
    time_column: str = 'time'

    def __post_init__(self):
        values = np.asarray(self.values, dtype=np.float64)
        if values.ndim == 1:
            values = values.reshape(-1, 1)
        object.__setattr__(self, 'times', _frozen(np.asarray(self.times)))
        object.__setattr__(self, 'values', _frozen(values))
        object.__setattr__(self, 'columns', tuple(str(c) for c in self.columns))
        if values.shape != (len(self.times), len(self.columns)):
            raise ValueError(
                f"values shape {values.shape} does not match "
                f"{len(self.times)} times x {len(self.columns)} columns"
            )

    def __len__(self) -> int:
        return len(self.times)

    @property
    def n_vars(self) -> int:
        return len(self.columns)

    def series(self, name: str) -> np.ndarray:
        """Column by name (read-only view)."""
        return self.values[:, self.columns.index(name)]

    def rescaled(self) -> 'TimeSeriesBlock':
        """Z-score every column. Zero-variance columns are only centred."""
        mean = self.values.mean(axis=0)
        std = self.values.std(axis=0, ddof=1) if len(self) > 1 else np.zeros(self.n_vars)
        std = np.where(std > 0, std, 1.0)
        return TimeSeriesBlock(
            times=self.times,
            columns=self.columns,
            values=(self.values - mean) / std,
            time_column=self.time_column,
        )

    def fingerprint(self) -> str:
        """Content hash of times, names and values."""
        h = hashlib.sha256()
        h.update(self.time_column.encode())
        h.update('\x1f'.join(self.columns).encode())
        h.update(np.asarray(self.times).astype(str).tobytes())
        h.update(np.ascontiguousarray(self.values).tobytes())
        return h.hexdigest()


@dataclass(frozen=True)
class TimeIndexed(Generic[T]):
    """
    One Optional entry per time step.

    Attributes:
        times: Time axis
        entries: Entry per time step; None marks a missing step
    """
    times: Tuple = ()
    entries: Tuple[Optional[T], ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, 'times', tuple(self.times))
        object.__setattr__(self, 'entries', tuple(self.entries))
        if len(self.times) != len(self.entries):
            raise ValueError(
                f"{len(self.entries)} entries for {len(self.times)} time steps"
            )

    def __len__(self) -> int:
        return len(self.times)

    def __getitem__(self, i: int) -> Optional[T]:
        return self.entries[i]

    def __iter__(self) -> Iterator[Tuple[object, Optional[T]]]:
        return iter(zip(self.times, self.entries))

    def is_missing(self, i: int) -> bool:
        return self.entries[i] is None

    def missing_mask(self) -> np.ndarray:
        return np.array([e is None for e in self.entries], dtype=bool)

    def missing_times(self) -> List:
        return [t for t, e in self if e is None]

    def present(self) -> List[Tuple[object, T]]:
        return [(t, e) for t, e in self if e is not None]

    def map(self, fn: Callable[[T], Optional[U]]) -> 'TimeIndexed[U]':
        """Apply fn to every present entry. Missing stays missing."""
        return TimeIndexed(self.times, [None if e is None else fn(e) for e in self.entries])

    @classmethod
    def missing(cls, times: Sequence) -> 'TimeIndexed':
        return cls(tuple(times), [None] * len(times))
