"""
Run Configuration
=================

Single source of truth for option defaults and validation. Options come from
manifest.yaml (io/manifest.py) or keyword arguments to run().

Each stage hashes only its own section (STAGE_OPTIONS) into its cache
fingerprint, so changing an S-map option never invalidates the causal network.
"""

import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional, Union

from dynstab.errors import ConfigurationError


# rEDM's default S-map theta grid
DEFAULT_THETA: List[float] = [
    0.0, 1e-4, 3e-4, 1e-3, 3e-3, 0.01, 0.03, 0.1, 0.3,
    0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 4.0, 6.0, 8.0,
]

DEFAULT_LIB_SIZES: List[int] = list(range(10, 101, 10))

SURROGATE_METHODS = ('annual_spline', 'seasonal', 'random_shuffle', 'ebisuzaki')

SIGNIFICANCE_TESTS = ('quantile', 'convergence')

# Options that feed each stage's fingerprint
STAGE_OPTIONS: Dict[str, List[str]] = {
    'embedding': ['max_E', 'E_list'],
    'surrogates': ['surrogate_method', 'surrogate_params', 'num_surr', 'seed'],
    'causal_network': [
        'lib_sizes', 'random_libs', 'num_samples', 'replace', 'seed',
        'alpha', 'significance_test', 'task_timeout',
    ],
    'coefficients': [
        'theta', 'ridge_lambda', 'max_condition', 'rolling_forecast', 'task_timeout',
    ],
    'matrices': [],
    'eigen': [],
    'svd': [],
    'volume_contraction': [],
    'total_variance': [],
}


@dataclass
class RunConfig:
    """All run options, with defaults."""
    time_column: str = 'censusdate'
    max_E: int = 10
    E_list: Optional[List[int]] = None
    surrogate_method: str = 'annual_spline'
    surrogate_params: Dict[str, Any] = field(default_factory=lambda: {'T_period': 12})
    num_surr: int = 200
    lib_sizes: List[int] = field(default_factory=lambda: list(DEFAULT_LIB_SIZES))
    random_libs: bool = True
    num_samples: int = 100
    replace: bool = True
    seed: int = 42
    alpha: float = 0.05
    significance_test: str = 'quantile'
    theta: Union[float, List[float]] = field(default_factory=lambda: list(DEFAULT_THETA))
    ridge_lambda: float = 1e-6
    max_condition: float = 1e12
    rescale: bool = True
    rolling_forecast: bool = False
    silent: bool = False
    n_jobs: Optional[int] = None
    task_timeout: Optional[float] = None

    def __post_init__(self):
        self.validate()

    @property
    def candidate_E(self) -> List[int]:
        if self.E_list:
            return sorted(set(int(e) for e in self.E_list))
        return list(range(1, self.max_E + 1))

    @property
    def theta_grid(self) -> List[float]:
        if isinstance(self.theta, (int, float)):
            return [float(self.theta)]
        return [float(t) for t in self.theta]

    @property
    def workers(self) -> int:
        """Worker pool size: n_jobs, else DYNSTAB_WORKERS, else 1."""
        if self.n_jobs is not None:
            return self.n_jobs
        env = os.environ.get('DYNSTAB_WORKERS', '')
        if env:
            try:
                return int(env) or (os.cpu_count() or 1)
            except ValueError:
                raise ConfigurationError(f"not an integer: {env!r}", 'DYNSTAB_WORKERS')
        return 1

    def validate(self) -> None:
        """Raise ConfigurationError on the first invalid option."""
        # yaml reads 1e-6 as a string
        for name in ('alpha', 'ridge_lambda', 'max_condition', 'task_timeout'):
            value = getattr(self, name)
            if value is not None and not isinstance(value, (int, float)):
                try:
                    setattr(self, name, float(value))
                except (TypeError, ValueError):
                    raise ConfigurationError(f"not a number: {value!r}", name)
        if isinstance(self.theta, str):
            try:
                self.theta = float(self.theta)
            except ValueError:
                raise ConfigurationError(f"not a number: {self.theta!r}", 'theta')
        elif not isinstance(self.theta, (int, float)):
            try:
                self.theta = [float(t) for t in self.theta]
            except (TypeError, ValueError):
                raise ConfigurationError(f"must be a number or a list of numbers, got {self.theta!r}", 'theta')
        if not self.time_column:
            raise ConfigurationError("must be a non-empty column name", 'time_column')
        _positive_int(self.max_E, 'max_E')
        if self.E_list is not None:
            if len(self.E_list) == 0:
                raise ConfigurationError("must not be empty", 'E_list')
            for e in self.E_list:
                _positive_int(e, 'E_list')
        if self.surrogate_method not in SURROGATE_METHODS:
            raise ConfigurationError(
                f"unsupported method {self.surrogate_method!r} "
                f"(expected one of {', '.join(SURROGATE_METHODS)})",
                'surrogate_method',
            )
        if not isinstance(self.surrogate_params, dict):
            raise ConfigurationError("must be a mapping", 'surrogate_params')
        _positive_int(self.num_surr, 'num_surr')
        if not self.lib_sizes:
            raise ConfigurationError("must not be empty", 'lib_sizes')
        for size in self.lib_sizes:
            _positive_int(size, 'lib_sizes')
        _positive_int(self.num_samples, 'num_samples')
        if not isinstance(self.seed, int) or isinstance(self.seed, bool) or self.seed < 0:
            raise ConfigurationError("must be a non-negative integer", 'seed')
        if not 0.0 < float(self.alpha) < 1.0:
            raise ConfigurationError("must be in (0, 1)", 'alpha')
        if self.significance_test not in SIGNIFICANCE_TESTS:
            raise ConfigurationError(
                f"unsupported test {self.significance_test!r} "
                f"(expected one of {', '.join(SIGNIFICANCE_TESTS)})",
                'significance_test',
            )
        grid = self.theta_grid
        if not grid or any(t < 0 for t in grid):
            raise ConfigurationError("must be non-negative", 'theta')
        if self.ridge_lambda <= 0:
            raise ConfigurationError("must be positive", 'ridge_lambda')
        if self.max_condition <= 1:
            raise ConfigurationError("must be greater than 1", 'max_condition')
        if self.n_jobs is not None and (not isinstance(self.n_jobs, int) or self.n_jobs == 0):
            raise ConfigurationError("must be a non-zero integer", 'n_jobs')
        if self.task_timeout is not None and self.task_timeout <= 0:
            raise ConfigurationError("must be positive", 'task_timeout')

    def section(self, stage: str) -> Dict[str, Any]:
        """Options that determine a stage's output."""
        values = asdict(self)
        return {name: values[name] for name in STAGE_OPTIONS[stage]}

    @classmethod
    def from_dict(cls, options: Optional[Dict[str, Any]] = None) -> 'RunConfig':
        options = dict(options or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ConfigurationError(f"unknown option(s): {', '.join(unknown)}")
        return cls(**options)


def _positive_int(value, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"must be a positive integer, got {value!r}", name)


def merge_options(*sources: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge option dicts left to right, later sources win. None values in
    later sources do not override."""
    merged: Dict[str, Any] = {}
    for source in sources:
        for key, value in (source or {}).items():
            if value is not None or key not in merged:
                merged[key] = value
    return merged

