"""
Stage: Causal Network
=====================

Pure orchestration - calls core/ccm.py for computation.

Output:
    - causal_network.parquet   one row per ordered pair (cause, effect)

Every ordered pair of distinct embedded variables is tested by convergent
cross mapping against the cause's surrogates. Pairs with a side lacking an
embedding or surrogates are kept as 'skipped' rows with the reason.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import polars as pl

from dynstab.core.ccm import CausalLink, CausalNetwork, evaluate_pair
from dynstab.core.config import RunConfig
from dynstab.core.parallel import run_tasks
from dynstab.core.streams import CCM_STREAM, stream
from dynstab.core.timeseries import TimeSeriesBlock
from dynstab.stages.tables import frame, restore

logger = logging.getLogger(__name__)

SCHEMA = {
    'cause': pl.String,
    'effect': pl.String,
    'status': pl.String,
    'E': pl.Int64,
    'rho': pl.Float64,
    'rho_min_lib': pl.Float64,
    'null_quantile': pl.Float64,
    'p_value': pl.Float64,
    'significant': pl.Boolean,
    'test': pl.String,
    'lib_sizes': pl.List(pl.Int64),
    'rho_by_lib': pl.List(pl.Float64),
    'reason': pl.String,
}


def _test_link(
    cause_name: str,
    effect_name: str,
    cause: np.ndarray,
    effect: np.ndarray,
    surrogates: np.ndarray,
    E: int,
    seed: int,
    lib_sizes: Sequence[int],
    num_samples: int,
    random_libs: bool,
    replace: bool,
    alpha: float,
    test: str,
    timeout: Optional[float],
) -> CausalLink:
    """One pair, with its own library-draw stream."""
    rng = stream(seed, CCM_STREAM, cause_name, effect_name)
    return evaluate_pair(
        cause, effect, surrogates, E, lib_sizes, rng,
        cause_name=cause_name, effect_name=effect_name,
        num_samples=num_samples, random_libs=random_libs, replace=replace,
        alpha=alpha, test=test, timeout=timeout,
    )


def run(
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
    verbose: bool = True,
) -> Tuple[CausalNetwork, List[str]]:
    """
    Test every ordered pair of distinct variables.

    Returns:
        (CausalNetwork, missing-entity messages)
    """
    embedding = inputs['embedding']
    surrogates = inputs['surrogates']
    valid = embedding.valid()

    network = CausalNetwork()
    tasks = []
    for cause in block.columns:
        for effect in block.columns:
            if cause == effect:
                continue
            pair = (cause, effect)
            if cause not in valid or effect not in valid:
                side = cause if cause not in valid else effect
                network.skipped[pair] = f"no embedding for {side}"
                logger.debug("skipping %s -> %s: no embedding for %s", cause, effect, side)
                continue
            if cause not in surrogates:
                network.skipped[pair] = f"no surrogates for {cause}"
                logger.debug("skipping %s -> %s: no surrogates", cause, effect)
                continue
            tasks.append((pair, (
                cause, effect,
                block.series(cause), block.series(effect), surrogates[cause],
                valid[cause], config.seed, config.lib_sizes, config.num_samples,
                config.random_libs, config.replace, config.alpha,
                config.significance_test, config.task_timeout,
            )))

    if verbose:
        print(f"Pairs: {len(tasks)} tested, {len(network.skipped)} skipped "
              f"({config.significance_test} test, alpha={config.alpha})")

    problems = []
    for outcome in run_tasks(_test_link, tasks, n_jobs=config.workers):
        if outcome.ok:
            network.links.append(outcome.value)
        else:
            network.skipped[outcome.entity] = outcome.error
            problems.append(f"{outcome.entity[0]} -> {outcome.entity[1]}: {outcome.error}")
            logger.debug("link %s -> %s missing: %s", *outcome.entity, outcome.error)

    if verbose:
        for link in network.significant():
            print(f"  {link.cause} -> {link.effect}: rho={link.rho:.3f} "
                  f"(null {link.null_quantile:.3f}, p={link.p_value:.3f})")
        print(f"  {len(network.significant())} significant link(s)")
    return network, problems


def to_frames(network: CausalNetwork, block: TimeSeriesBlock) -> Dict[str, pl.DataFrame]:
    rows = []
    for link in network.links:
        rows.append({
            'cause': link.cause,
            'effect': link.effect,
            'status': 'tested',
            'E': link.E,
            'rho': link.rho,
            'rho_min_lib': link.rho_by_lib[0],
            'null_quantile': link.null_quantile,
            'p_value': link.p_value,
            'significant': link.significant,
            'test': link.test,
            'lib_sizes': list(link.lib_sizes),
            'rho_by_lib': list(link.rho_by_lib),
            'reason': None,
        })
    for (cause, effect), reason in network.skipped.items():
        rows.append({
            'cause': cause, 'effect': effect, 'status': 'skipped',
            'E': None, 'rho': None, 'rho_min_lib': None, 'null_quantile': None,
            'p_value': None, 'significant': None, 'test': None,
            'lib_sizes': None, 'rho_by_lib': None, 'reason': reason,
        })
    return {'': frame(rows, SCHEMA)}


def from_frames(
    frames: Dict[str, pl.DataFrame],
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
) -> CausalNetwork:
    network = CausalNetwork()
    for row in frames[''].iter_rows(named=True):
        if row['status'] == 'skipped':
            network.skipped[(row['cause'], row['effect'])] = row['reason']
            continue
        network.links.append(CausalLink(
            cause=row['cause'],
            effect=row['effect'],
            E=row['E'],
            lib_sizes=list(row['lib_sizes']),
            rho_by_lib=[restore(r) for r in row['rho_by_lib']],
            rho=row['rho'],
            null_quantile=row['null_quantile'],
            p_value=row['p_value'],
            significant=row['significant'],
            test=row['test'],
        ))
    return network
