"""
Convergent Cross Mapping Engine
===============================

Tests whether a putative cause's reconstructed state space carries
information about an effect, against a surrogate null.

For a pair (cause -> effect):
    1. Embed the cause with its own E.
    2. For each library size, draw libraries of embedding vectors and cross-map
       the effect at the same time step (simplex, E + 1 neighbours, the
       prediction point excluded). Skill per size = mean rho over libraries.
    3. Replay the very same library draws on every surrogate of the cause:
       the null distribution is the max-library rho of the surrogates.
    4. quantile test:     rho_max > (1 - alpha) quantile of the null
       convergence test:  quantile test and rho(max library) > rho(min library)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial.distance import cdist

from dynstab.core.parallel import TaskBudget
from dynstab.core.simplex import embed, neighbour_weights, skill
from dynstab.errors import InsufficientDataError


@dataclass
class CausalLink:
    """Result of testing cause -> effect."""
    cause: str
    effect: str
    E: int
    lib_sizes: List[int]
    rho_by_lib: List[float]
    rho: float
    null_quantile: float
    p_value: float
    significant: bool
    test: str = 'quantile'

    @property
    def effect_size(self) -> float:
        """Observed max-library rho above the null quantile."""
        return self.rho - self.null_quantile


@dataclass
class CausalNetwork:
    """Every tested link plus the pairs that could not be tested."""
    links: List[CausalLink] = field(default_factory=list)
    skipped: Dict[Tuple[str, str], str] = field(default_factory=dict)

    def significant(self) -> List[CausalLink]:
        return [link for link in self.links if link.significant]

    def drivers_of(self, target: str) -> List[str]:
        """Significant causes of target, in the order the pairs were tested."""
        return [link.cause for link in self.links if link.significant and link.effect == target]

    def link(self, cause: str, effect: str) -> Optional[CausalLink]:
        for link in self.links:
            if link.cause == cause and link.effect == effect:
                return link
        return None


def usable_lib_sizes(lib_sizes: Sequence[int], E: int, n_vectors: int) -> List[int]:
    """Clip library sizes to the available vectors; drop sizes below E + 2."""
    sizes = sorted(set(min(int(s), n_vectors) for s in lib_sizes))
    return [s for s in sizes if s >= E + 2]


def library_draws(
    n_vectors: int,
    lib_sizes: Sequence[int],
    num_samples: int,
    random_libs: bool,
    replace: bool,
    rng: np.random.Generator,
) -> List[List[np.ndarray]]:
    """
    Library index sets per library size.

    Random libraries are drawn from rng; sequential libraries are contiguous
    runs starting at num_samples evenly spaced positions.
    """
    draws = []
    for size in lib_sizes:
        if random_libs:
            samples = [
                rng.choice(n_vectors, size=size, replace=replace)
                for _ in range(num_samples)
            ]
        else:
            starts = np.unique(np.linspace(0, n_vectors - size, num_samples).astype(int))
            samples = [np.arange(s, s + size) for s in starts]
        draws.append(samples)
    return draws


def cross_map(
    vectors: np.ndarray,
    targets: np.ndarray,
    E: int,
    draws: List[List[np.ndarray]],
    distances: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Mean cross-map rho per library size.

    Args:
        vectors: (m, E) cause embedding vectors
        targets: (m,) effect values at the same time steps
        E: Embedding dimension
        draws: Library index sets per size (from library_draws)
        distances: Precomputed (m, m) distance matrix

    Returns:
        Array of mean rho, one per library size
    """
    if distances is None:
        distances = cdist(vectors, vectors)
    m = len(vectors)
    k = E + 1
    rows = np.arange(m)[:, None]

    means = np.empty(len(draws))
    for i, samples in enumerate(draws):
        rhos = []
        for lib in samples:
            d = distances[:, lib].copy()
            d[lib[None, :] == rows] = np.inf
            nearest = np.argpartition(d, k - 1, axis=1)[:, :k]
            nd = np.take_along_axis(d, nearest, axis=1)
            order = np.argsort(nd, axis=1)
            nearest = np.take_along_axis(nearest, order, axis=1)
            nd = np.take_along_axis(nd, order, axis=1)

            ok = np.isfinite(nd).all(axis=1)
            predicted = np.full(m, np.nan)
            if ok.any():
                w = neighbour_weights(nd[ok])
                predicted[ok] = (w * targets[lib[nearest[ok]]]).sum(axis=1) / w.sum(axis=1)
            rhos.append(skill(predicted, targets)['rho'])
        rhos = np.asarray(rhos, dtype=float)
        means[i] = np.nanmean(rhos) if np.isfinite(rhos).any() else np.nan
    return means


def evaluate_pair(
    cause: np.ndarray,
    effect: np.ndarray,
    surrogates: np.ndarray,
    E: int,
    lib_sizes: Sequence[int],
    rng: np.random.Generator,
    cause_name: str = 'cause',
    effect_name: str = 'effect',
    num_samples: int = 100,
    random_libs: bool = True,
    replace: bool = True,
    alpha: float = 0.05,
    test: str = 'quantile',
    timeout: Optional[float] = None,
) -> CausalLink:
    """
    CCM test of cause -> effect against the cause's surrogates.

    Args:
        cause, effect: Series of equal length
        surrogates: (num_surr, n) surrogates of the cause
        E: Cause's embedding dimension
        lib_sizes: Requested library sizes
        rng: Stream for library draws (shared by the real and surrogate trials)
        num_samples, random_libs, replace: Library sampling scheme
        alpha: Significance level
        test: 'quantile' or 'convergence'
        timeout: Seconds allowed for this pair

    Raises:
        InsufficientDataError: too few vectors, undefined skill, or time budget spent
    """
    entity = (cause_name, effect_name)
    budget = TaskBudget(entity, timeout)

    cause = np.asarray(cause, dtype=np.float64)
    effect = np.asarray(effect, dtype=np.float64)
    vectors = embed(cause, E)
    positions = np.arange(E - 1, len(cause))
    positions = positions[np.isfinite(vectors[positions]).all(axis=1) & np.isfinite(effect[positions])]

    sizes = usable_lib_sizes(lib_sizes, E, len(positions))
    if not sizes:
        raise InsufficientDataError(
            entity, f"{len(positions)} vectors cannot support a library of E + 2 = {E + 2}"
        )

    draws = library_draws(len(positions), sizes, num_samples, random_libs, replace, rng)
    targets = effect[positions]

    rho_by_lib = cross_map(vectors[positions], targets, E, draws)
    rho = rho_by_lib[-1]
    if not np.isfinite(rho):
        raise InsufficientDataError(entity, "cross-map skill undefined")

    null = np.empty(len(surrogates))
    for r, surrogate in enumerate(surrogates):
        budget.check()
        surrogate_vectors = embed(surrogate, E)[positions]
        null[r] = cross_map(surrogate_vectors, targets, E, draws[-1:])[0]

    null = null[np.isfinite(null)]
    if len(null) == 0:
        raise InsufficientDataError(entity, "surrogate cross-map skill undefined")

    null_quantile = float(np.quantile(null, 1.0 - alpha))
    p_value = float((1 + np.sum(null >= rho)) / (1 + len(null)))
    significant = bool(rho > null_quantile)
    if test == 'convergence' and len(rho_by_lib) > 1:
        significant = significant and bool(rho_by_lib[-1] > rho_by_lib[0])

    return CausalLink(
        cause=cause_name,
        effect=effect_name,
        E=int(E),
        lib_sizes=[int(s) for s in sizes],
        rho_by_lib=[float(r) for r in rho_by_lib],
        rho=float(rho),
        null_quantile=null_quantile,
        p_value=p_value,
        significant=significant,
        test=test,
    )
