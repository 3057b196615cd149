"""
Stage: Coefficients
===================

Pure orchestration - calls core/smap.py for computation.

Output:
    - coefficients.parquet          <time>, target, term, variable, lag, coefficient,
                                    intercept, predicted, observed
    - coefficients_models.parquet   one row per target: E, drivers, theta, skill

Fits an S-map model for every embedded variable, with its significant
drivers (causal network) as extra coordinates. A time step without a fit is
a single row whose payload columns are null.
"""

import logging
import warnings
from typing import Dict, List, Tuple

import numpy as np
import polars as pl

from dynstab.core.config import RunConfig
from dynstab.core.parallel import run_tasks
from dynstab.core.smap import SMapFit, SMapModel, SMapResults, SMapRow, fit_smap
from dynstab.core.timeseries import TimeIndexed, TimeSeriesBlock
from dynstab.errors import StoreIOError
from dynstab.stages.tables import attach_time, frame, nullable, restore, steps

logger = logging.getLogger(__name__)

ROW_SCHEMA = {
    '_step': pl.Int64,
    'target': pl.String,
    'term': pl.Int64,
    'variable': pl.String,
    'lag': pl.Int64,
    'coefficient': pl.Float64,
    'intercept': pl.Float64,
    'predicted': pl.Float64,
    'observed': pl.Float64,
}

MODEL_SCHEMA = {
    'target': pl.String,
    'status': pl.String,
    'E': pl.Int64,
    'drivers': pl.List(pl.String),
    'driver_lag': pl.Int64,
    'theta': pl.Float64,
    'rho': pl.Float64,
    'mae': pl.Float64,
    'rmse': pl.Float64,
    'rolling_forecast': pl.Boolean,
    'n_missing': pl.Int64,
    'n_regularized': pl.Int64,
    'reason': pl.String,
}


def run(
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
    verbose: bool = True,
) -> Tuple[SMapResults, List[str]]:
    """
    S-map fits for every embedded target on the shared axis.

    Returns:
        (SMapResults, missing-entity messages)
    """
    embedding = inputs['embedding']
    network = inputs['causal_network']
    valid = embedding.valid()
    horizon = embedding.horizon
    times = np.asarray(block.times)

    results = SMapResults(times=tuple(times[horizon - 1:]))
    tasks = []
    for target in block.columns:
        if target not in valid:
            results.skipped[target] = f"no embedding for {target}"
            logger.debug("no S-map for %s: no embedding", target)
            continue
        causes = set(network.drivers_of(target))
        drivers = {d: block.series(d) for d in block.columns if d in causes}
        tasks.append((target, (
            target, block.series(target), valid[target], drivers, times, horizon,
            config.theta_grid, config.ridge_lambda, config.max_condition,
            config.rolling_forecast, config.task_timeout,
        )))

    if verbose:
        print(f"Targets: {len(tasks)}, horizon H={horizon}, "
              f"axis {len(results.times)} steps, {len(config.theta_grid)} theta value(s)")

    problems = []
    for outcome in run_tasks(fit_smap, tasks, n_jobs=config.workers):
        target = outcome.entity
        if not outcome.ok:
            results.skipped[target] = outcome.error
            problems.append(f"{target}: {outcome.error}")
            logger.debug("S-map missing for %s: %s", target, outcome.error)
            continue
        fit = outcome.value
        results.fits[target] = fit
        model = fit.model
        if model.n_missing:
            problems.append(f"{target}: {model.n_missing} time step(s) without a local fit")
        if model.n_regularized:
            warnings.warn(
                f"{target}: {model.n_regularized} ill-conditioned local fit(s) solved with "
                f"ridge penalty {config.ridge_lambda:g}",
                RuntimeWarning, stacklevel=2,
            )
        if verbose:
            drivers = ', '.join(model.drivers) or '-'
            print(f"  {target:<24} E={model.E} theta={model.theta:g} rho={model.rho:.3f} drivers: {drivers}")

    return results, problems


def to_frames(results: SMapResults, block: TimeSeriesBlock) -> Dict[str, pl.DataFrame]:
    rows, models = [], []
    for target in block.columns:
        if target in results.skipped:
            models.append({
                'target': target, 'status': 'missing', 'E': None, 'drivers': None,
                'driver_lag': None, 'theta': None, 'rho': None, 'mae': None,
                'rmse': None, 'rolling_forecast': None, 'n_missing': None,
                'n_regularized': None, 'reason': results.skipped[target],
            })
            continue
        if target not in results.fits:
            continue
        fit = results.fits[target]
        model = fit.model
        models.append({
            'target': target,
            'status': 'fitted',
            'E': model.E,
            'drivers': list(model.drivers),
            'driver_lag': model.driver_lag,
            'theta': model.theta,
            'rho': nullable(model.rho),
            'mae': nullable(model.mae),
            'rmse': nullable(model.rmse),
            'rolling_forecast': model.rolling_forecast,
            'n_missing': model.n_missing,
            'n_regularized': model.n_regularized,
            'reason': None,
        })
        terms = model.terms
        for i, row in enumerate(fit.rows.entries):
            if row is None:
                rows.append({'_step': i, 'target': target, 'term': None, 'variable': None,
                             'lag': None, 'coefficient': None, 'intercept': None,
                             'predicted': None, 'observed': None})
                continue
            for k, (variable, lag) in enumerate(terms):
                rows.append({
                    '_step': i,
                    'target': target,
                    'term': k,
                    'variable': variable,
                    'lag': lag,
                    'coefficient': float(row.coefficients[k]),
                    'intercept': row.intercept,
                    'predicted': row.predicted,
                    'observed': row.observed,
                })

    main = attach_time(frame(rows, ROW_SCHEMA), block.time_column, results.times)
    return {'': main, 'models': frame(models, MODEL_SCHEMA)}


def from_frames(
    frames: Dict[str, pl.DataFrame],
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
) -> SMapResults:
    embedding = inputs['embedding']
    times = tuple(np.asarray(block.times)[embedding.horizon - 1:])
    results = SMapResults(times=times)

    main = frames['']
    main = main.with_columns(pl.Series('_step', steps(main, block.time_column, times)))

    for m in frames['models'].iter_rows(named=True):
        target = m['target']
        if m['status'] != 'fitted':
            results.skipped[target] = m['reason']
            continue
        model = SMapModel(
            target=target,
            E=m['E'],
            drivers=tuple(m['drivers']),
            theta=m['theta'],
            rho=restore(m['rho']),
            mae=restore(m['mae']),
            rmse=restore(m['rmse']),
            driver_lag=m['driver_lag'],
            rolling_forecast=m['rolling_forecast'],
            n_missing=m['n_missing'],
            n_regularized=m['n_regularized'],
        )
        n_terms = len(model.terms)
        entries = [None] * len(times)
        present = main.filter(
            (pl.col('target') == target) & pl.col('coefficient').is_not_null()
        ).sort(['_step', 'term'])
        for (step,), group in present.group_by(['_step'], maintain_order=True):
            coefficients = group['coefficient'].to_numpy().copy()
            if len(coefficients) != n_terms:
                raise StoreIOError(
                    f"coefficients for {target!r} at step {step}: "
                    f"{len(coefficients)} terms stored, model has {n_terms}"
                )
            first = group.row(0, named=True)
            entries[step] = SMapRow(
                intercept=first['intercept'],
                coefficients=coefficients,
                predicted=first['predicted'],
                observed=first['observed'],
            )
        results.fits[target] = SMapFit(model=model, rows=TimeIndexed(times, entries))
    return results
