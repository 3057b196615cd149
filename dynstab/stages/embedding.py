"""
Stage: Embedding
================

Pure orchestration - calls core/simplex.py for computation.

Output:
    - embedding.parquet          one row per variable (E null when missing)
    - embedding_skill.parquet    simplex skill of every candidate E

Picks each variable's embedding dimension by simplex forecast skill. A
variable with no finite skill (constant series, too few points) is recorded
as missing with the reason and excluded downstream.
"""

import logging
from typing import Dict, List, Tuple

import polars as pl

from dynstab.core.config import RunConfig
from dynstab.core.parallel import run_tasks
from dynstab.core.simplex import EmbeddingResult, EmbeddingSpec, select_embedding
from dynstab.core.timeseries import TimeSeriesBlock
from dynstab.stages.tables import frame, nullable, restore

logger = logging.getLogger(__name__)

SCHEMA = {
    'variable': pl.String,
    'E': pl.Int64,
    'rho': pl.Float64,
    'mae': pl.Float64,
    'rmse': pl.Float64,
    'reason': pl.String,
}

SKILL_SCHEMA = {
    'variable': pl.String,
    'E': pl.Int64,
    'rho': pl.Float64,
    'mae': pl.Float64,
    'rmse': pl.Float64,
    'num_pred': pl.Int64,
}


def run(
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
    verbose: bool = True,
) -> Tuple[EmbeddingSpec, List[str]]:
    """
    Select E for every variable of the block.

    Returns:
        (EmbeddingSpec in block column order, missing-entity messages)
    """
    candidates = config.candidate_E
    if verbose:
        print(f"Variables: {block.n_vars}, candidate E: {candidates}")

    tasks = [(v, (block.series(v), candidates, v)) for v in block.columns]
    outcomes = run_tasks(select_embedding, tasks, n_jobs=config.workers)

    spec = EmbeddingSpec()
    problems = []
    for outcome in outcomes:
        if outcome.ok:
            spec.results[outcome.entity] = outcome.value
        else:
            spec.results[outcome.entity] = EmbeddingResult(variable=outcome.entity, reason=outcome.error)
            problems.append(f"{outcome.entity}: {outcome.error}")
            logger.debug("embedding missing for %s: %s", outcome.entity, outcome.error)

    if verbose:
        for v, r in spec.results.items():
            if r.ok:
                print(f"  {v:<24} E={r.E:<3d} rho={r.rho:.3f}")
            else:
                print(f"  {v:<24} missing ({r.reason})")
    return spec, problems


def to_frames(spec: EmbeddingSpec, block: TimeSeriesBlock) -> Dict[str, pl.DataFrame]:
    rows, skill_rows = [], []
    for v, r in spec.results.items():
        rows.append({
            'variable': v,
            'E': r.E,
            'rho': nullable(r.rho) if r.ok else None,
            'mae': nullable(r.mae) if r.ok else None,
            'rmse': nullable(r.rmse) if r.ok else None,
            'reason': r.reason,
        })
        for c in r.candidates:
            skill_rows.append({
                'variable': v,
                'E': int(c['E']),
                'rho': nullable(c['rho']),
                'mae': nullable(c['mae']),
                'rmse': nullable(c['rmse']),
                'num_pred': int(c['num_pred']),
            })
    return {'': frame(rows, SCHEMA), 'skill': frame(skill_rows, SKILL_SCHEMA)}


def from_frames(
    frames: Dict[str, pl.DataFrame],
    block: TimeSeriesBlock,
    config: RunConfig,
    inputs: Dict,
) -> EmbeddingSpec:
    candidates: Dict[str, List[Dict]] = {}
    if 'skill' in frames:
        for row in frames['skill'].iter_rows(named=True):
            candidates.setdefault(row['variable'], []).append({
                'E': row['E'],
                'rho': restore(row['rho']),
                'mae': restore(row['mae']),
                'rmse': restore(row['rmse']),
                'num_pred': row['num_pred'],
            })

    spec = EmbeddingSpec()
    for row in frames[''].iter_rows(named=True):
        v = row['variable']
        spec.results[v] = EmbeddingResult(
            variable=v,
            E=row['E'],
            rho=restore(row['rho']),
            mae=restore(row['mae']),
            rmse=restore(row['rmse']),
            reason=row['reason'],
            candidates=candidates.get(v, []),
        )
    return spec
