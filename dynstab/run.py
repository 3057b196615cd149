"""
dynstab Sequencer
=================

Runs the stages in dependency order against an append-only results store.
Pure orchestration: no computation here.

Before a stage runs, the store is checked for its key. A present key whose
fingerprint matches is loaded instead of recomputed (skipped-cached); a
present key with another fingerprint means the inputs or options changed,
which is a ConfigurationError (use fresh=True). New results are written right
after their stage, so an interrupted run resumes where it stopped.

Fingerprint of a stage = sha256(block, the stage's option section,
fingerprints of the stages it requires).

Usage:
    python -m dynstab data/portal
    python -m dynstab data/portal --stages causal_network
    python -m dynstab data/portal --fresh -q
"""

import argparse
import hashlib
import json
import logging
import time
import warnings
from dataclasses import dataclass, field
from graphlib import TopologicalSorter
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import polars as pl

from dynstab.core.config import RunConfig, merge_options
from dynstab.core.timeseries import TimeSeriesBlock
from dynstab.errors import ConfigurationError
from dynstab.io.manifest import get_observations_path, get_options, get_store_dir, load_manifest
from dynstab.io.reader import load_block
from dynstab.io.store import ResultStore
from dynstab.stages import (
    causal_network, coefficients, embedding, eigen, matrices, stability, surrogates, svd,
)
from dynstab.validation import block_from_frame

logger = logging.getLogger(__name__)

COMPLETED = 'completed'
CACHED = 'skipped-cached'
PARTIAL = 'partially-missing'


@dataclass(frozen=True)
class Stage:
    key: str
    requires: Tuple[str, ...]
    run: Callable
    to_frames: Callable
    from_frames: Callable


# ═══════════════════════════════════════════════════════════════
# STAGE REGISTRY
# ═══════════════════════════════════════════════════════════════

STAGES: Dict[str, Stage] = {s.key: s for s in [
    Stage('embedding', (),
          embedding.run, embedding.to_frames, embedding.from_frames),
    Stage('surrogates', ('embedding',),
          surrogates.run, surrogates.to_frames, surrogates.from_frames),
    Stage('causal_network', ('embedding', 'surrogates'),
          causal_network.run, causal_network.to_frames, causal_network.from_frames),
    Stage('coefficients', ('embedding', 'causal_network'),
          coefficients.run, coefficients.to_frames, coefficients.from_frames),
    Stage('matrices', ('embedding', 'coefficients'),
          matrices.run, matrices.to_frames, matrices.from_frames),
    Stage('eigen', ('matrices',),
          eigen.run, eigen.to_frames, eigen.from_frames),
    Stage('svd', ('matrices',),
          svd.run, svd.to_frames, svd.from_frames),
    Stage('volume_contraction', ('eigen',),
          stability.run_volume_contraction, stability.to_frames, stability.volume_from_frames),
    Stage('total_variance', ('svd',),
          stability.run_total_variance, stability.to_frames, stability.variance_from_frames),
]}


def stage_order(targets: Optional[Sequence[str]] = None) -> List[str]:
    """
    Execution order for the target stages plus everything they require.

    Raises:
        ConfigurationError: unknown stage key
    """
    targets = list(targets) if targets else list(STAGES)
    unknown = [k for k in targets if k not in STAGES]
    if unknown:
        raise ConfigurationError(
            f"unknown stage(s) {', '.join(unknown)} (expected: {', '.join(STAGES)})", 'stages'
        )

    needed = set()
    pending = list(targets)
    while pending:
        key = pending.pop()
        if key not in needed:
            needed.add(key)
            pending.extend(STAGES[key].requires)

    graph = {k: STAGES[k].requires for k in STAGES if k in needed}
    return list(TopologicalSorter(graph).static_order())


def stage_fingerprint(key: str, block_fingerprint: str, config: RunConfig, upstream: Dict[str, str]) -> str:
    h = hashlib.sha256()
    h.update(key.encode())
    h.update(block_fingerprint.encode())
    h.update(json.dumps(config.section(key), sort_keys=True, default=str).encode())
    for dep in STAGES[key].requires:
        h.update(upstream[dep].encode())
    return h.hexdigest()


# ═══════════════════════════════════════════════════════════════
# RUN REPORT
# ═══════════════════════════════════════════════════════════════

@dataclass
class StageStatus:
    key: str
    status: str
    problems: List[str] = field(default_factory=list)
    elapsed: float = 0.0


@dataclass
class RunReport:
    """Per-stage status plus every artifact computed or loaded."""
    store_dir: str
    stages: Dict[str, StageStatus] = field(default_factory=dict)
    artifacts: Dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.artifacts[key]

    def __contains__(self, key: str) -> bool:
        return key in self.artifacts

    def status(self, key: str) -> str:
        return self.stages[key].status

    def missing(self) -> Dict[str, List[str]]:
        """Stage -> missing-entity messages, for stages that have any."""
        return {k: s.problems for k, s in self.stages.items() if s.problems}

    def summary(self) -> str:
        lines = ["=" * 70, "RUN SUMMARY", "=" * 70]
        for key, s in self.stages.items():
            lines.append(f"  {key:<20} {s.status:<18} {s.elapsed:6.1f}s")
        missing = self.missing()
        if missing:
            lines.append("Missing entities:")
            for key, problems in missing.items():
                for p in problems:
                    lines.append(f"  [{key}] {p}")
        lines.append("=" * 70)
        return "\n".join(lines)


def _as_block(data: Union[str, Path, pl.DataFrame, TimeSeriesBlock], time_column: str) -> TimeSeriesBlock:
    if isinstance(data, TimeSeriesBlock):
        return data
    if isinstance(data, pl.DataFrame):
        return block_from_frame(data, time_column)
    return load_block(str(data), time_column)


def run(
    data: Union[str, Path, pl.DataFrame, TimeSeriesBlock],
    store_dir: str,
    options: Optional[Dict[str, Any]] = None,
    stages: Optional[Sequence[str]] = None,
    fresh: bool = False,
    verbose: bool = True,
    **kwargs,
) -> RunReport:
    """
    Run the pipeline (or the stages needed for `stages`) against a store.

    Args:
        data: Community table path (parquet/csv), polars DataFrame or TimeSeriesBlock
        store_dir: Results store directory
        options: Run options (see RunConfig); keyword arguments override them
        stages: Target stage keys (their requirements are added); default all
        fresh: Wipe the store first
        verbose: Print progress

    Returns:
        RunReport with per-stage status and artifacts

    Raises:
        DataFormatError: malformed or gapped input (before any stage runs)
        ConfigurationError: invalid option, or a stored stage built with other inputs
        StoreIOError: store unreadable or unwritable
    """
    config = RunConfig.from_dict(merge_options(options, kwargs))
    order = stage_order(stages)
    report = RunReport(store_dir=str(store_dir))
    with warnings.catch_warnings():
        if config.silent:
            warnings.simplefilter('ignore')

        block = _as_block(data, config.time_column)
        if config.rescale:
            block = block.rescaled()

        store = ResultStore(store_dir)
        if fresh:
            store.wipe()

        if verbose:
            print("=" * 70)
            print("DYNSTAB PIPELINE")
            print("=" * 70)
            print(f"Block:    {len(block)} steps x {block.n_vars} variables ({block.time_column})")
            print(f"Store:    {store_dir}")
            print(f"Stages:   {len(order)}")
            print(f"Workers:  {config.workers} ({'parallel' if config.workers != 1 else 'sequential'})")
            print()

        _execute(order, block, config, store, report, verbose)

    if verbose:
        print(report.summary())

    missing = report.missing()
    if missing and not config.silent:
        n = sum(len(p) for p in missing.values())
        details = '; '.join(f"{k}: {len(p)}" for k, p in missing.items())
        warnings.warn(
            f"{n} missing entit{'y' if n == 1 else 'ies'} ({details}); see RunReport.missing()",
            RuntimeWarning, stacklevel=2,
        )
    return report


def _execute(
    order: List[str],
    block: TimeSeriesBlock,
    config: RunConfig,
    store: ResultStore,
    report: RunReport,
    verbose: bool,
) -> None:
    block_fingerprint = block.fingerprint()
    fingerprints: Dict[str, str] = {}

    for key in order:
        stage = STAGES[key]
        fingerprint = stage_fingerprint(key, block_fingerprint, config, fingerprints)
        fingerprints[key] = fingerprint
        start = time.monotonic()

        if verbose:
            print(f"--- {key} ---")

        if store.has(key):
            if store.fingerprint(key) != fingerprint:
                raise ConfigurationError(
                    f"stored {key!r} was computed from other data or options; "
                    f"rerun with fresh=True or use another store"
                )
            artifact = stage.from_frames(store.read(key), block, config, report.artifacts)
            status = StageStatus(key, CACHED)
            logger.debug("%s loaded from %s", key, store.root)
            if verbose:
                print("  cached")
        else:
            artifact, problems = stage.run(block, config, report.artifacts, verbose)
            store.write(key, fingerprint, stage.to_frames(artifact, block), verbose=verbose)
            status = StageStatus(key, PARTIAL if problems else COMPLETED, problems)

        status.elapsed = time.monotonic() - start
        report.artifacts[key] = artifact
        report.stages[key] = status
        if verbose:
            print()


def main():
    """CLI entry point. Resolves the manifest into explicit paths and calls run()."""
    parser = argparse.ArgumentParser(
        description="dynstab: dynamic stability of community time series",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Stages: {', '.join(STAGES)}

Usage:
  python -m dynstab data/portal
  python -m dynstab data/portal --stages causal_network
  python -m dynstab data/portal --fresh
"""
    )
    parser.add_argument('data_path', help='Data directory holding manifest.yaml (or the manifest file)')
    parser.add_argument('--stages', help='Comma-separated stage keys to run (requirements included)')
    parser.add_argument('--fresh', action='store_true', help='Wipe the results store first')
    parser.add_argument('-q', '--quiet', action='store_true', help='Suppress output')

    args = parser.parse_args()

    manifest = load_manifest(args.data_path)
    stages_list = [s.strip() for s in args.stages.split(',')] if args.stages else None

    run(
        get_observations_path(manifest),
        get_store_dir(manifest),
        options=get_options(manifest),
        stages=stages_list,
        fresh=args.fresh,
        verbose=not args.quiet,
    )


if __name__ == '__main__':
    main()
