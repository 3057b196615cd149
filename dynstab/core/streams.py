"""
Seeded Random Streams
=====================

Every sub-task draws from its own generator, derived from the global seed and
the sub-task's identity (stage, variable names, replicate index). Parallel
execution order therefore never changes a result.
"""

import zlib
from typing import Union

import numpy as np

# Stage codes keep streams of different stages disjoint
SURROGATE_STREAM = 1
CCM_STREAM = 2


def entity_code(name: str) -> int:
    """Stable 32-bit code for a variable name (crc32, not Python's hash)."""
    return zlib.crc32(str(name).encode('utf-8'))


def stream(seed: int, stage: int, *identity: Union[str, int]) -> np.random.Generator:
    """
    Independent generator for one sub-task.

    Args:
        seed: Global seed
        stage: Stage code (SURROGATE_STREAM, CCM_STREAM)
        identity: Variable names (hashed with crc32) and integer indices

    Returns:
        numpy Generator seeded by SeedSequence(seed, spawn_key=(stage, *codes))
    """
    key = [stage]
    for part in identity:
        key.append(entity_code(part) if isinstance(part, str) else int(part))
    return np.random.default_rng(np.random.SeedSequence(seed, spawn_key=tuple(key)))
