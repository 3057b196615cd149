"""
dynstab engines
===============

Compute only: numpy in, typed artifacts out, no file I/O.

Structure:
    timeseries.py  - TimeSeriesBlock input, TimeIndexed container
    config.py      - RunConfig (defaults, validation, per-stage sections)
    streams.py     - per-sub-task seeded random streams
    parallel.py    - joblib worker pool, per-task time budget
    simplex.py     - simplex projection, embedding dimension selection
    surrogates.py  - seasonal / shuffle / phase-randomised surrogates
    ccm.py         - convergent cross mapping with surrogate significance
    smap.py        - locally weighted (S-map) linear fits
    matrix.py      - companion-form coefficient matrices
    decompose.py   - ranked eigen / singular value decompositions
    stability.py   - volume contraction, total variance
"""

from dynstab.core.config import RunConfig
from dynstab.core.timeseries import TimeIndexed, TimeSeriesBlock

__all__ = ['RunConfig', 'TimeIndexed', 'TimeSeriesBlock']
