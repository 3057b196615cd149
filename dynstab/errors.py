"""
Error taxonomy.

Fatal errors (raised out of run()):
    DataFormatError       malformed or gapped input, before any stage runs
    ConfigurationError    invalid option, at the stage that needs it
    StoreIOError          results store unreadable / unwritable

Per-entity errors (caught by stage runners, recorded as missing):
    InsufficientDataError     variable / pair / time step lacks valid points
    NumericalDegeneracyError  singular or ill-conditioned fit / decomposition
"""

from typing import Optional


class DynStabError(Exception):
    """Base class for all dynstab errors."""


class DataFormatError(DynStabError):
    """Raised when the input block is malformed, unordered or gapped."""

    def __init__(self, message: str, index=None):
        self.index = index
        if index is not None:
            message = f"{message} (at time index {index!r})"
        super().__init__(message)


class ConfigurationError(DynStabError):
    """Raised when an option is invalid."""

    def __init__(self, message: str, option: Optional[str] = None):
        self.option = option
        if option is not None:
            message = f"{option}: {message}"
        super().__init__(message)


class InsufficientDataError(DynStabError):
    """Raised when an entity has too few valid points to be computed."""

    def __init__(self, entity, message: str):
        self.entity = entity
        self.reason = message
        super().__init__(f"{_label(entity)}: {message}")


class NumericalDegeneracyError(DynStabError):
    """Raised when a local fit or a decomposition is numerically degenerate."""

    def __init__(self, entity, message: str):
        self.entity = entity
        self.reason = message
        super().__init__(f"{_label(entity)}: {message}")


class StoreIOError(DynStabError):
    """Raised when the results store cannot be read or written."""

    def __init__(self, message: str, path=None):
        self.path = path
        if path is not None:
            message = f"{message} [{path}]"
        super().__init__(message)


def _label(entity) -> str:
    if isinstance(entity, tuple):
        return ' -> '.join(str(e) for e in entity)
    return str(entity)
