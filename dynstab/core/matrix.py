"""
Coefficient Matrix Assembly
===========================

Stacks every target's S-map coefficients into one companion-form Jacobian per
time step.

Layout (state slots, block column order over the fitted targets):

    (v1, 0), (v1, 1), ..., (v1, E1-1), (v2, 0), ..., (v2, E2-1), ...

    row (i, 0)         target i's S-map coefficients: own lag k -> column (i, k),
                       driver j -> column (j, 0), zero elsewhere
    row (i, k), k >= 1 shift: 1 in column (i, k-1)

The matrix maps the state at t to the state at t+1, so its eigenvalues are
the local multipliers of the community. A step where any target's row is
missing is missing as a whole.
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np

from dynstab.core.smap import SMapFit
from dynstab.core.timeseries import TimeIndexed


@dataclass
class CoefficientMatrix:
    """Square Jacobian per time step on a fixed state layout."""
    layout: Tuple[Tuple[str, int], ...]
    matrices: TimeIndexed

    @property
    def size(self) -> int:
        return len(self.layout)

    @property
    def times(self) -> Tuple:
        return self.matrices.times


def state_layout(fits: Dict[str, SMapFit], order: Sequence[str]) -> List[Tuple[str, int]]:
    """(variable, lag) slots for the fitted targets, in `order`."""
    layout = []
    for v in order:
        if v in fits:
            layout.extend((v, k) for k in range(fits[v].model.E))
    return layout


def assemble(fits: Dict[str, SMapFit], order: Sequence[str], times: Sequence = ()) -> CoefficientMatrix:
    """
    Per-time companion matrices from per-target S-map fits.

    Args:
        fits: target -> SMapFit, all on the same time axis
        order: Variable order (block columns)
        times: Shared time axis, used when there are no fits

    Returns:
        CoefficientMatrix; empty layout and all-missing when there are no fits
    """
    layout = state_layout(fits, order)
    targets = [v for v in order if v in fits]
    if not targets:
        return CoefficientMatrix(layout=(), matrices=TimeIndexed.missing(tuple(times)))

    times = fits[targets[0]].rows.times
    for v in targets[1:]:
        if fits[v].rows.times != times:
            raise ValueError(f"S-map fit for {v!r} is on a different time axis")

    slot = {s: i for i, s in enumerate(layout)}
    N = len(layout)

    # Coefficient -> column mapping per target; drivers without a slot are zero-filled
    placement = {}
    for v in targets:
        model = fits[v].model
        placement[v] = [
            (c, slot[term]) for c, term in enumerate(model.terms) if term in slot
        ]

    template = np.zeros((N, N))
    for v in targets:
        for k in range(1, fits[v].model.E):
            template[slot[(v, k)], slot[(v, k - 1)]] = 1.0

    entries = []
    for i in range(len(times)):
        rows = {v: fits[v].rows[i] for v in targets}
        if any(r is None for r in rows.values()):
            entries.append(None)
            continue
        J = template.copy()
        for v in targets:
            r = slot[(v, 0)]
            coefficients = rows[v].coefficients
            for c, col in placement[v]:
                J[r, col] = coefficients[c]
        entries.append(J)

    return CoefficientMatrix(layout=tuple(layout), matrices=TimeIndexed(times, entries))
