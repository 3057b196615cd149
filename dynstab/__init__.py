"""
dynstab: dynamic stability of ecological community time series.

Public API:
    from dynstab import run
    report = run('community.parquet', 'output/', num_surr=200, seed=42)
    report['volume_contraction'].to_array()

Layers:
    dynstab.stages      Runners: fan entities out to the worker pool, artifacts <-> tables
    dynstab.core        Engines: compute (numpy in, typed artifacts out, no file I/O)

Also:
    dynstab.io          manifest.yaml, community table reader, results store
    dynstab.validation  Input validation (ordered, gap-free, no nulls)
    dynstab.errors      Error taxonomy

Pipeline:
    embedding -> surrogates -> causal_network -> coefficients -> matrices
              -> eigen -> volume_contraction
              -> svd   -> total_variance
"""

from dynstab.run import RunReport, run

__all__ = ["run", "RunReport"]
