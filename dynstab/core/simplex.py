"""
Simplex Projection Engine
=========================

Nearest-neighbour forecasting on lagged-coordinate embeddings, used to pick
each variable's embedding dimension E.

    embedding at i:   (x[i], x[i-1], ..., x[i-E+1])
    forecast target:  x[i + tp]
    neighbours:       E + 1 nearest library vectors, the point itself excluded
    weights:          exp(-d / d_min)

Skill is Pearson rho of predicted vs observed. The chosen E maximises rho;
ties go to the smallest E.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sklearn.neighbors import NearestNeighbors

from dynstab.errors import InsufficientDataError

MIN_WEIGHT = 1e-6


def embed(x: np.ndarray, E: int) -> np.ndarray:
    """
    Lagged-coordinate embedding with unit delay.

    Returns:
        (n, E) array; row i holds (x[i], ..., x[i-E+1]), rows i < E-1 are NaN
    """
    x = np.asarray(x, dtype=np.float64)
    n = len(x)
    out = np.full((n, E), np.nan)
    for k in range(E):
        out[k:, k] = x[:n - k]
    return out


def neighbour_weights(distances: np.ndarray) -> np.ndarray:
    """
    Simplex weights for rows of ascending neighbour distances.

    A row whose nearest distance is zero gives all its weight to the
    zero-distance neighbours.
    """
    d_min = distances[:, :1]
    with np.errstate(divide='ignore', invalid='ignore'):
        w = np.where(d_min > 0, np.exp(-distances / np.where(d_min > 0, d_min, 1.0)), 0.0)
    w = np.where(d_min > 0, np.maximum(w, MIN_WEIGHT), (distances <= 0).astype(float))
    return w


def skill(predicted: np.ndarray, observed: np.ndarray) -> Dict[str, float]:
    """rho, mae, rmse over pairs where both values are finite."""
    predicted = np.asarray(predicted, dtype=np.float64)
    observed = np.asarray(observed, dtype=np.float64)
    ok = np.isfinite(predicted) & np.isfinite(observed)
    n = int(ok.sum())
    if n == 0:
        return {'rho': np.nan, 'mae': np.nan, 'rmse': np.nan, 'num_pred': 0}

    p, o = predicted[ok], observed[ok]
    err = p - o
    rho = np.nan
    if n >= 3 and np.std(p) > 0 and np.std(o) > 0:
        rho = float(np.corrcoef(p, o)[0, 1])
    return {
        'rho': rho,
        'mae': float(np.mean(np.abs(err))),
        'rmse': float(np.sqrt(np.mean(err ** 2))),
        'num_pred': n,
    }


def simplex_forecast(x: np.ndarray, E: int, tp: int = 1, entity=None) -> Dict[str, Any]:
    """
    Leave-one-out simplex forecast of x at horizon tp.

    Args:
        x: Series values
        E: Embedding dimension
        tp: Forecast horizon (steps ahead)
        entity: Label used in errors

    Returns:
        dict with predicted, observed, positions and the skill scores

    Raises:
        InsufficientDataError: fewer than E + 2 usable embedding vectors
    """
    x = np.asarray(x, dtype=np.float64)
    n = len(x)
    vectors = embed(x, E)

    positions = np.arange(E - 1, n - tp)
    if len(positions) > 0:
        complete = np.isfinite(vectors[positions]).all(axis=1) & np.isfinite(x[positions + tp])
        positions = positions[complete]
    if len(positions) < E + 2:
        raise InsufficientDataError(
            entity if entity is not None else 'series',
            f"E={E} needs {E + 2} embedding vectors, have {len(positions)}",
        )

    library = vectors[positions]
    k = E + 1
    nn = NearestNeighbors(n_neighbors=k + 1).fit(library)
    distances, indices = nn.kneighbors(library)

    # Drop the point itself; if ties pushed it out of the list, drop the last one
    not_self = indices != np.arange(len(positions))[:, None]
    no_self_found = not_self.all(axis=1)
    not_self[no_self_found, -1] = False
    distances = distances[not_self].reshape(len(positions), k)
    indices = indices[not_self].reshape(len(positions), k)

    weights = neighbour_weights(distances)
    targets = x[positions + tp]
    predicted = (weights * targets[indices]).sum(axis=1) / weights.sum(axis=1)
    observed = targets

    result = {
        'E': E,
        'positions': positions,
        'predicted': predicted,
        'observed': observed,
    }
    result.update(skill(predicted, observed))
    return result


@dataclass
class EmbeddingResult:
    """Chosen E for one variable, or the reason there is none."""
    variable: str
    E: Optional[int] = None
    rho: float = np.nan
    mae: float = np.nan
    rmse: float = np.nan
    reason: Optional[str] = None
    candidates: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.E is not None


@dataclass
class EmbeddingSpec:
    """Embedding result per variable, in block column order."""
    results: Dict[str, EmbeddingResult] = field(default_factory=dict)

    def __getitem__(self, variable: str) -> EmbeddingResult:
        return self.results[variable]

    def __contains__(self, variable: str) -> bool:
        return variable in self.results

    def valid(self) -> Dict[str, int]:
        """variable -> E for variables with a defined embedding."""
        return {v: r.E for v, r in self.results.items() if r.ok}

    def missing(self) -> Dict[str, str]:
        return {v: r.reason for v, r in self.results.items() if not r.ok}

    @property
    def horizon(self) -> int:
        """Largest E in use (1 when no variable has an embedding)."""
        valid = self.valid()
        return max(valid.values()) if valid else 1


def select_embedding(
    x: np.ndarray,
    candidates: Sequence[int],
    variable: str = 'series',
    tp: int = 1,
) -> EmbeddingResult:
    """
    Pick the E with the best simplex forecast skill.

    Candidates that need more points than available are skipped. Ties in rho
    break toward the smallest E.

    Raises:
        InsufficientDataError: no candidate produced a finite rho
    """
    table = []
    best = None
    for E in sorted(set(int(e) for e in candidates)):
        try:
            out = simplex_forecast(x, E, tp=tp, entity=variable)
        except InsufficientDataError:
            continue
        row = {k: out[k] for k in ('E', 'rho', 'mae', 'rmse', 'num_pred')}
        table.append(row)
        if np.isfinite(row['rho']) and (best is None or row['rho'] > best['rho']):
            best = row

    if best is None:
        if not table:
            reason = f"no candidate E in {list(candidates)} fits {len(x)} points"
        else:
            reason = "forecast skill undefined for every candidate E (constant series?)"
        raise InsufficientDataError(variable, reason)

    return EmbeddingResult(
        variable=variable,
        E=int(best['E']),
        rho=float(best['rho']),
        mae=float(best['mae']),
        rmse=float(best['rmse']),
        candidates=table,
    )
