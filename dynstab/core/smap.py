"""
S-map Engine
============

Locally weighted linear forecasts. For target i at state time t:

    state  z_t = (x_i[t], x_i[t-1], ..., x_i[t-E+1], d_1[t], ..., d_k[t])
    model  x_i[t+1] ~ c0 + c . z_t

fit over every other library state s, weighted by

    w_s = exp(-theta * |z_s - z_t| / mean_s |z_s - z_t|)

theta = 0 is an unweighted global linear fit. The coefficient vector c is the
local linearisation of the target's dynamics at t; its layout follows
SMapModel.terms (own lags first, then drivers at lag 0).
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from dynstab.core.parallel import TaskBudget
from dynstab.core.simplex import embed, skill
from dynstab.core.timeseries import TimeIndexed
from dynstab.errors import InsufficientDataError, NumericalDegeneracyError


@dataclass
class SMapModel:
    """Fitted S-map configuration for one target."""
    target: str
    E: int
    drivers: Tuple[str, ...] = ()
    theta: float = 0.0
    rho: float = np.nan
    mae: float = np.nan
    rmse: float = np.nan
    driver_lag: int = 0
    rolling_forecast: bool = False
    n_missing: int = 0
    n_regularized: int = 0

    @property
    def terms(self) -> List[Tuple[str, int]]:
        """(variable, lag) per coefficient: own lags, then drivers."""
        own = [(self.target, k) for k in range(self.E)]
        return own + [(d, self.driver_lag) for d in self.drivers]


@dataclass
class SMapRow:
    """Local fit at one time step."""
    intercept: float
    coefficients: np.ndarray
    predicted: float
    observed: Optional[float] = None


@dataclass
class SMapFit:
    model: SMapModel
    rows: TimeIndexed


@dataclass
class SMapResults:
    """Fits per target on the shared axis, plus targets that could not be fitted."""
    times: Tuple
    fits: Dict[str, SMapFit] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)

    def __getitem__(self, target: str) -> SMapFit:
        return self.fits[target]

    def __contains__(self, target: str) -> bool:
        return target in self.fits


def design(target: np.ndarray, E: int, drivers: Sequence[np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
    """
    State matrix and one-step-ahead targets.

    Returns:
        X: (n, E + len(drivers)); rows before E - 1 are NaN
        y: (n,) with y[t] = target[t + 1], NaN at the last step
    """
    target = np.asarray(target, dtype=np.float64)
    columns = [embed(target, E)]
    for d in drivers:
        columns.append(np.asarray(d, dtype=np.float64).reshape(-1, 1))
    X = np.hstack(columns)
    y = np.full(len(target), np.nan)
    y[:-1] = target[1:]
    return X, y


def local_fit(
    X_lib: np.ndarray,
    y_lib: np.ndarray,
    z: np.ndarray,
    theta: float,
    ridge_lambda: float = 1e-6,
    max_condition: float = 1e12,
    entity=None,
) -> Tuple[np.ndarray, bool]:
    """
    Weighted least squares around state z.

    Returns:
        (solution, regularized): solution[0] is the intercept; regularized is
        True when the design was rank deficient or ill-conditioned and the
        ridge solve was used.

    Raises:
        NumericalDegeneracyError: the ridge solve failed as well
    """
    dist = np.sqrt(((X_lib - z) ** 2).sum(axis=1))
    mean_dist = dist.mean()
    if theta > 0 and mean_dist > 0:
        w = np.exp(-theta * dist / mean_dist)
    else:
        w = np.ones(len(dist))
    sw = np.sqrt(w)

    A = np.hstack([np.ones((len(X_lib), 1)), X_lib]) * sw[:, None]
    b = y_lib * sw

    s = np.linalg.svd(A, compute_uv=False)
    rank_deficient = s[-1] <= s[0] * max(A.shape) * np.finfo(float).eps
    if not rank_deficient and s[0] / s[-1] <= max_condition:
        solution, *_ = np.linalg.lstsq(A, b, rcond=None)
        return solution, False

    penalty = np.full(A.shape[1], ridge_lambda)
    penalty[0] = 0.0
    try:
        solution = np.linalg.solve(A.T @ A + np.diag(penalty), A.T @ b)
    except np.linalg.LinAlgError as e:
        raise NumericalDegeneracyError(entity if entity is not None else 'fit', f"ridge solve failed: {e}")
    if not np.isfinite(solution).all():
        raise NumericalDegeneracyError(entity if entity is not None else 'fit', "ridge solve not finite")
    return solution, True


def library_mask(position: int, usable: np.ndarray, rolling: bool, half: int) -> np.ndarray:
    """Library positions for a prediction at `position` (itself excluded)."""
    mask = usable.copy()
    mask[position] = False
    if rolling:
        idx = np.arange(len(usable))
        if position < half:
            mask &= idx < half
        else:
            # Only pairs whose target x[s + 1] is observed by time `position`
            mask &= idx + 1 <= position
    return mask


def smap_pass(
    X: np.ndarray,
    y: np.ndarray,
    positions: Sequence[int],
    theta: float,
    ridge_lambda: float = 1e-6,
    max_condition: float = 1e12,
    rolling: bool = False,
    budget: Optional[TaskBudget] = None,
    entity=None,
) -> Tuple[List[Optional[SMapRow]], int]:
    """
    Local fits at every position for one theta.

    Returns:
        (rows, n_regularized): rows[i] is None when positions[i] has fewer
        than (terms + 2) library points or its fit is degenerate
    """
    n_terms = X.shape[1]
    usable = np.isfinite(X).all(axis=1) & np.isfinite(y)
    half = len(y) // 2
    rows: List[Optional[SMapRow]] = []
    n_regularized = 0

    for t in positions:
        if budget is not None:
            budget.check()
        z = X[t]
        if not np.isfinite(z).all():
            rows.append(None)
            continue
        mask = library_mask(t, usable, rolling, half)
        if mask.sum() < n_terms + 2:
            rows.append(None)
            continue
        try:
            solution, regularized = local_fit(
                X[mask], y[mask], z, theta,
                ridge_lambda=ridge_lambda, max_condition=max_condition, entity=entity,
            )
        except NumericalDegeneracyError:
            rows.append(None)
            continue
        n_regularized += int(regularized)
        observed = float(y[t]) if np.isfinite(y[t]) else None
        rows.append(SMapRow(
            intercept=float(solution[0]),
            coefficients=solution[1:].copy(),
            predicted=float(solution[0] + solution[1:] @ z),
            observed=observed,
        ))
    return rows, n_regularized


def _pass_skill(rows: List[Optional[SMapRow]]) -> Dict[str, float]:
    pairs = [(r.predicted, r.observed) for r in rows if r is not None and r.observed is not None]
    if not pairs:
        return {'rho': np.nan, 'mae': np.nan, 'rmse': np.nan, 'num_pred': 0}
    predicted, observed = zip(*pairs)
    return skill(np.array(predicted), np.array(observed))


def fit_smap(
    target_name: str,
    target: np.ndarray,
    E: int,
    drivers: Dict[str, np.ndarray],
    times: Sequence,
    horizon: int,
    theta: Sequence[float] = (0.0,),
    ridge_lambda: float = 1e-6,
    max_condition: float = 1e12,
    rolling_forecast: bool = False,
    timeout: Optional[float] = None,
) -> SMapFit:
    """
    S-map fit for one target on the shared time axis times[horizon - 1:].

    Args:
        target_name: Target variable
        target: Target series
        E: Target's embedding dimension
        drivers: Significant driver name -> series, in layout order
        times: Full time index of the block
        horizon: Largest E in use (the shared axis starts at horizon - 1)
        theta: Candidate thetas; the best leave-one-out rho wins, ties to the smaller
        ridge_lambda, max_condition: Degenerate-fit fallback settings
        rolling_forecast: Forecast the second half from prior data only
        timeout: Seconds allowed for this target

    Raises:
        InsufficientDataError: no time step could be fitted, or time budget spent
    """
    budget = TaskBudget(target_name, timeout)
    X, y = design(target, E, list(drivers.values()))
    positions = list(range(horizon - 1, len(target)))

    best = None
    for th in sorted(set(float(t) for t in theta)):
        rows, n_regularized = smap_pass(
            X, y, positions, th,
            ridge_lambda=ridge_lambda, max_condition=max_condition,
            rolling=rolling_forecast, budget=budget, entity=target_name,
        )
        scores = _pass_skill(rows)
        if best is None or (np.isfinite(scores['rho']) and not scores['rho'] <= best[1]['rho']):
            best = (th, scores, rows, n_regularized)

    th, scores, rows, n_regularized = best
    if all(r is None for r in rows):
        raise InsufficientDataError(
            target_name, f"no time step has {X.shape[1] + 2} library points"
        )

    model = SMapModel(
        target=target_name,
        E=int(E),
        drivers=tuple(drivers),
        theta=th,
        rho=float(scores['rho']),
        mae=float(scores['mae']),
        rmse=float(scores['rmse']),
        rolling_forecast=rolling_forecast,
        n_missing=sum(r is None for r in rows),
        n_regularized=n_regularized,
    )
    return SMapFit(model=model, rows=TimeIndexed(tuple(times[horizon - 1:]), rows))
