"""
dynstab I/O: manifest, community table reader, results store.
"""

from dynstab.io.manifest import load_manifest
from dynstab.io.reader import load_block, read_table
from dynstab.io.store import ResultStore

__all__ = ['load_manifest', 'load_block', 'read_table', 'ResultStore']
