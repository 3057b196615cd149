"""
Worker Pool
===========

Runs the independent sub-tasks of one stage (variables, pairs, targets) with
joblib. Each call is a barrier: it returns only when every sub-task finished,
and results come back in submission order.

Per-entity failures travel back as values (Outcome), never as exceptions, so
one bad variable cannot abort the stage.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Tuple

from joblib import Parallel, delayed

from dynstab.errors import InsufficientDataError, NumericalDegeneracyError


@dataclass
class Outcome:
    """Result of one sub-task: a value or the reason it is missing."""
    entity: Any
    value: Any = None
    error: Optional[str] = None
    kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TaskBudget:
    """Cooperative per-sub-task time budget."""

    def __init__(self, entity, seconds: Optional[float]):
        self.entity = entity
        self.seconds = seconds
        self.start = time.monotonic()

    def check(self) -> None:
        """Raise InsufficientDataError once the budget is spent."""
        if self.seconds is None:
            return
        elapsed = time.monotonic() - self.start
        if elapsed > self.seconds:
            raise InsufficientDataError(
                self.entity, f"time budget of {self.seconds:g}s exceeded ({elapsed:.1f}s)"
            )


def _guarded(fn: Callable, entity, args: Tuple) -> Outcome:
    try:
        return Outcome(entity=entity, value=fn(*args))
    except InsufficientDataError as e:
        return Outcome(entity=entity, error=e.reason, kind='insufficient_data')
    except NumericalDegeneracyError as e:
        return Outcome(entity=entity, error=e.reason, kind='numerical_degeneracy')


def run_tasks(
    fn: Callable,
    tasks: Iterable[Tuple[Any, Tuple]],
    n_jobs: int = 1,
) -> List[Outcome]:
    """
    Run fn(*args) for every (entity, args) task.

    Args:
        fn: Module-level function (picklable for the loky backend)
        tasks: (entity, args) pairs
        n_jobs: Worker count; 1 runs in-process

    Returns:
        Outcomes in task order
    """
    tasks = list(tasks)
    if not tasks:
        return []
    if n_jobs == 1 or len(tasks) == 1:
        return [_guarded(fn, entity, args) for entity, args in tasks]
    return Parallel(n_jobs=n_jobs)(
        delayed(_guarded)(fn, entity, args) for entity, args in tasks
    )
