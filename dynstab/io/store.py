"""
Results Store: the persisted bundle. All parquet reads and writes of stage
outputs go through here.

Layout:
    <store>/bundle.yaml               index: key -> fingerprint, tables, rows
    <store>/<key>.parquet             main table of a stage
    <store>/<key>_<sidecar>.parquet   sidecar tables beside their parent

Append-only: a key is written once. Table files are written first and the
index last (both via rename), so a crash mid-stage leaves the key absent and
the stage is recomputed on resume.
"""

import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import polars as pl
import yaml

from dynstab.errors import StoreIOError

INDEX_FILE = 'bundle.yaml'
FORMAT_VERSION = 1
MAIN = ''


def table_filename(key: str, table: str = MAIN) -> str:
    return f"{key}.parquet" if table == MAIN else f"{key}_{table}.parquet"


class ResultStore:
    """Directory-backed, append-only bundle of stage outputs."""

    def __init__(self, root: str):
        self.root = Path(root)
        self._index = self._load_index()

    @property
    def index_path(self) -> Path:
        return self.root / INDEX_FILE

    def _load_index(self) -> Dict:
        if not self.index_path.exists():
            return {'format': FORMAT_VERSION, 'entries': {}}
        try:
            with open(self.index_path) as f:
                index = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise StoreIOError(f"cannot read store index: {e}", self.index_path)
        if index.get('format') != FORMAT_VERSION or not isinstance(index.get('entries'), dict):
            raise StoreIOError("unrecognised store index", self.index_path)
        return index

    def _save_index(self) -> None:
        tmp = self.index_path.with_suffix('.yaml.tmp')
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with open(tmp, 'w') as f:
                yaml.safe_dump(self._index, f, sort_keys=True)
            os.replace(tmp, self.index_path)
        except (OSError, yaml.YAMLError) as e:
            raise StoreIOError(f"cannot write store index: {e}", self.index_path)

    # ── queries ──

    def keys(self) -> List[str]:
        """Keys whose entry and table files are all present."""
        return [k for k in self._index['entries'] if self._complete(k)]

    def _complete(self, key: str) -> bool:
        entry = self._index['entries'].get(key)
        if entry is None:
            return False
        return all((self.root / table_filename(key, t)).exists() for t in entry.get('tables', []))

    def has(self, key: str, fingerprint: Optional[str] = None) -> bool:
        """True if key is present (and, when given, was built with fingerprint)."""
        if not self._complete(key):
            return False
        return fingerprint is None or self.fingerprint(key) == fingerprint

    def fingerprint(self, key: str) -> Optional[str]:
        entry = self._index['entries'].get(key)
        return entry.get('fingerprint') if entry else None

    # ── read / write ──

    def read(self, key: str) -> Dict[str, pl.DataFrame]:
        """All tables of a key: {'': main, '<sidecar>': ...}."""
        if not self._complete(key):
            raise StoreIOError(f"key {key!r} is not in the store", self.root)
        tables = {}
        for table in self._index['entries'][key]['tables']:
            path = self.root / table_filename(key, table)
            try:
                tables[table] = pl.read_parquet(str(path))
            except (OSError, pl.exceptions.PolarsError) as e:
                raise StoreIOError(f"cannot read {key!r}: {e}", path)
        return tables

    def write(self, key: str, fingerprint: str, tables: Dict[str, pl.DataFrame], verbose: bool = False) -> None:
        """
        Persist a stage output once.

        Args:
            key: Stage key
            fingerprint: Stage fingerprint the output was built with
            tables: {'': main table, '<sidecar>': table, ...}
            verbose: Print each path written

        Raises:
            StoreIOError: key already present, or the write failed
        """
        if self._complete(key):
            raise StoreIOError(f"key {key!r} already written (store is append-only)", self.root)
        if MAIN not in tables:
            raise StoreIOError(f"no main table for {key!r}", self.root)

        rows = {}
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            for table, df in tables.items():
                path = self.root / table_filename(key, table)
                tmp = path.with_suffix('.parquet.tmp')
                df.write_parquet(str(tmp))
                os.replace(tmp, path)
                rows[table or 'main'] = df.height
                if verbose:
                    print(f"  -> {path} ({df.height} rows)")
        except (OSError, pl.exceptions.PolarsError) as e:
            raise StoreIOError(f"cannot write {key!r}: {e}", self.root)

        self._index['entries'][key] = {
            'fingerprint': fingerprint,
            'tables': sorted(tables),
            'rows': rows,
            'created': datetime.now(timezone.utc).isoformat(timespec='seconds'),
        }
        self._save_index()

    def wipe(self) -> None:
        """Remove the whole store (fresh start)."""
        if self.root.exists():
            if not self.index_path.exists() and any(self.root.iterdir()):
                raise StoreIOError("refusing to wipe a directory that is not a results store", self.root)
            shutil.rmtree(self.root)
        self._index = {'format': FORMAT_VERSION, 'entries': {}}
