"""
Matrix Decomposition Engine
===========================

Per-time eigen and singular value decompositions of the coefficient matrices.

    eigen:  complex eigenvalues ranked by descending modulus (rank 1..N);
            eigenvector k is column k of `vectors`
    svd:    singular values descending; u columns and vt rows in the same order
    ipr:    inverse participation ratio of each ranked vector, sum |v_i|^4 after
            scaling to unit norm; 1/N for a fully spread vector, 1 for a basis
            vector

Missing matrices give missing decompositions. A solver failure on one step
marks that step missing and is reported, never raised.
"""

import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import linalg

from dynstab.core.timeseries import TimeIndexed


def inverse_participation_ratio(vectors: np.ndarray) -> np.ndarray:
    """IPR of every column of vectors (real or complex). NaN for a zero column."""
    power = np.abs(vectors) ** 2
    norm = power.sum(axis=0)
    with np.errstate(divide='ignore', invalid='ignore'):
        return np.where(norm > 0, (power ** 2).sum(axis=0) / norm ** 2, np.nan)


@dataclass
class EigenPair:
    """Ranked eigen-decomposition of one matrix."""
    values: np.ndarray   # complex128, descending modulus
    vectors: np.ndarray  # complex128, columns aligned with values

    @property
    def moduli(self) -> np.ndarray:
        return np.abs(self.values)

    @property
    def ranks(self) -> np.ndarray:
        return np.arange(1, len(self.values) + 1)

    @property
    def ipr(self) -> np.ndarray:
        return inverse_participation_ratio(self.vectors)


@dataclass
class SVDResult:
    """Ranked singular value decomposition of one matrix."""
    d: np.ndarray    # descending, non-negative
    u: np.ndarray    # left singular vectors (columns)
    vt: np.ndarray   # right singular vectors (rows)

    @property
    def ranks(self) -> np.ndarray:
        return np.arange(1, len(self.d) + 1)

    @property
    def ipr_u(self) -> np.ndarray:
        return inverse_participation_ratio(self.u)

    @property
    def ipr_v(self) -> np.ndarray:
        return inverse_participation_ratio(self.vt.T)


@dataclass
class EigenDecomposition:
    steps: TimeIndexed


@dataclass
class SVDDecomposition:
    steps: TimeIndexed


def eigen(J: np.ndarray) -> EigenPair:
    """Eigenvalues/vectors of J ranked by descending modulus (stable for ties)."""
    values, vectors = linalg.eig(J)
    values = values.astype(np.complex128)
    vectors = vectors.astype(np.complex128)
    order = np.argsort(-np.abs(values), kind='stable')
    return EigenPair(values=values[order], vectors=vectors[:, order])


def svd(J: np.ndarray) -> SVDResult:
    u, d, vt = linalg.svd(J)
    return SVDResult(d=d, u=u, vt=vt)


def _safe(fn, J: np.ndarray, label: str, t) -> Optional[object]:
    if not np.isfinite(J).all():
        warnings.warn(f"{label}: non-finite matrix at {t!r}", RuntimeWarning, stacklevel=3)
        return None
    try:
        return fn(J)
    except (linalg.LinAlgError, ValueError) as e:
        warnings.warn(f"{label}: {type(e).__name__} at {t!r}: {e}", RuntimeWarning, stacklevel=3)
        return None


def eigen_decompose(matrices: TimeIndexed) -> EigenDecomposition:
    entries = [None if J is None else _safe(eigen, J, 'eigen', t) for t, J in matrices]
    return EigenDecomposition(steps=TimeIndexed(matrices.times, entries))


def svd_decompose(matrices: TimeIndexed) -> SVDDecomposition:
    entries = [None if J is None else _safe(svd, J, 'svd', t) for t, J in matrices]
    return SVDDecomposition(steps=TimeIndexed(matrices.times, entries))
