"""
Stability Metrics
=================

    volume_contraction(t) = prod_k |lambda_k(t)|  (= |det J(t)|)
                            < 1 local phase-space contraction, > 1 expansion
    total_variance(t)     = sum_k d_k(t)^2        (squared Frobenius norm of J(t))

Both are missing wherever their decomposition is missing.
"""

from dataclasses import dataclass

import numpy as np

from dynstab.core.decompose import EigenDecomposition, EigenPair, SVDDecomposition, SVDResult
from dynstab.core.timeseries import TimeIndexed


@dataclass
class StabilityMetric:
    name: str
    values: TimeIndexed

    def to_array(self) -> np.ndarray:
        """Float array with NaN at missing steps."""
        return np.array([np.nan if v is None else v for v in self.values.entries], dtype=float)


def _volume(pair: EigenPair) -> float:
    return float(np.prod(pair.moduli))


def _variance(result: SVDResult) -> float:
    return float(np.sum(result.d ** 2))


def volume_contraction(decomposition: EigenDecomposition) -> StabilityMetric:
    return StabilityMetric('volume_contraction', decomposition.steps.map(_volume))


def total_variance(decomposition: SVDDecomposition) -> StabilityMetric:
    return StabilityMetric('total_variance', decomposition.steps.map(_variance))
