"""
Surrogate Engine
================

Null-model series for the causal test. Each surrogate keeps the series'
marginal seasonal signature and destroys its inter-annual structure.

Methods:
    annual_spline   periodic spline through per-phase means + permuted residuals
    seasonal        alias of annual_spline
    random_shuffle  permutation of the series
    ebisuzaki       Fourier phase randomisation (amplitude spectrum kept)

Replicate r of variable v is drawn from stream(seed, SURROGATE_STREAM, v, r),
so any single replicate can be regenerated on its own.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np
from scipy.interpolate import CubicSpline

from dynstab.core.streams import SURROGATE_STREAM, stream
from dynstab.errors import ConfigurationError, InsufficientDataError


@dataclass
class SurrogateEnsemble:
    """variable -> (num_surr, n) array of surrogate series."""
    method: str
    params: Dict[str, Any] = field(default_factory=dict)
    series: Dict[str, np.ndarray] = field(default_factory=dict)

    def __getitem__(self, variable: str) -> np.ndarray:
        return self.series[variable]

    def __contains__(self, variable: str) -> bool:
        return variable in self.series

    @property
    def num_surr(self) -> int:
        for block in self.series.values():
            return block.shape[0]
        return 0


def seasonal_curve(x: np.ndarray, period: int) -> np.ndarray:
    """
    Smooth periodic curve evaluated at every position.

    Per-phase means (phase = position mod period) are interpolated by a
    periodic cubic spline; phases never observed are filled by the spline.
    """
    x = np.asarray(x, dtype=np.float64)
    phase = np.arange(len(x)) % period
    observed = np.unique(phase)
    means = np.array([x[phase == p].mean() for p in observed])

    if len(observed) < 3:
        return np.full(len(x), x.mean())

    # Close the cycle: one knot past the last phase repeats the first
    knots = np.append(observed, observed[0] + period).astype(float)
    values = np.append(means, means[0])
    spline = CubicSpline(knots, values, bc_type='periodic')
    return spline(phase.astype(float))


def annual_spline_surrogate(
    x: np.ndarray,
    rng: np.random.Generator,
    T_period: int = 12,
    curve: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Seasonal curve + the residuals in random order."""
    if curve is None:
        curve = seasonal_curve(x, T_period)
    residuals = np.asarray(x, dtype=np.float64) - curve
    return curve + rng.permutation(residuals)


def random_shuffle_surrogate(x: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    return rng.permutation(np.asarray(x, dtype=np.float64))


def ebisuzaki_surrogate(x: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Phase-randomised series with the same amplitude spectrum and mean."""
    x = np.asarray(x, dtype=np.float64)
    n = len(x)
    spectrum = np.fft.rfft(x - x.mean())
    phases = rng.uniform(0.0, 2.0 * np.pi, len(spectrum))
    phases[0] = 0.0
    if n % 2 == 0:
        phases[-1] = 0.0
    randomised = np.abs(spectrum) * np.exp(1j * phases)
    return np.fft.irfft(randomised, n=n) + x.mean()


def check_method(method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Validate method and parameters; return the parameters with defaults."""
    params = dict(params or {})
    if method in ('annual_spline', 'seasonal'):
        period = params.get('T_period', 12)
        if isinstance(period, bool) or not isinstance(period, int) or period < 2:
            raise ConfigurationError(f"must be an integer >= 2, got {period!r}", 'T_period')
        params['T_period'] = period
    elif method not in ('random_shuffle', 'ebisuzaki'):
        raise ConfigurationError(f"unsupported surrogate method {method!r}", 'surrogate_method')
    return params


def make_surrogates(
    x: np.ndarray,
    variable: str,
    num_surr: int,
    seed: int,
    method: str = 'annual_spline',
    params: Optional[Dict[str, Any]] = None,
) -> np.ndarray:
    """
    Surrogate ensemble for one variable.

    Args:
        x: Series values
        variable: Variable name (part of every replicate's stream identity)
        num_surr: Number of surrogates
        seed: Global seed
        method: Surrogate method
        params: Method parameters (annual_spline: T_period)

    Returns:
        (num_surr, n) array
    """
    params = check_method(method, params)
    if isinstance(num_surr, bool) or not isinstance(num_surr, int) or num_surr <= 0:
        raise ConfigurationError(f"must be a positive integer, got {num_surr!r}", 'num_surr')

    x = np.asarray(x, dtype=np.float64)
    if len(x) < 4 or not np.isfinite(x).all():
        raise InsufficientDataError(variable, f"cannot build surrogates from {len(x)} points")

    curve = None
    if method in ('annual_spline', 'seasonal'):
        curve = seasonal_curve(x, params['T_period'])

    out = np.empty((num_surr, len(x)))
    for r in range(num_surr):
        rng = stream(seed, SURROGATE_STREAM, variable, r)
        if curve is not None:
            out[r] = annual_spline_surrogate(x, rng, curve=curve)
        elif method == 'random_shuffle':
            out[r] = random_shuffle_surrogate(x, rng)
        else:
            out[r] = ebisuzaki_surrogate(x, rng)
    return out
