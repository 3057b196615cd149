"""
Manifest: parse manifest.yaml into run options.

    paths:
      observations: community.parquet   # relative to the manifest
      store: output                     # results store directory
    options:
      time_column: censusdate
      num_surr: 200
      ...
"""

import yaml
from pathlib import Path
from typing import Any, Dict

from dynstab.errors import ConfigurationError


def load_manifest(data_path: str) -> Dict[str, Any]:
    """
    Load manifest.yaml from a data directory.

    Tries:
        1. data_path/manifest.yaml
        2. data_path itself (if it's a .yaml file)
    """
    p = Path(data_path)

    if p.is_file() and p.suffix in ('.yaml', '.yml'):
        manifest_path = p
    else:
        manifest_path = p / 'manifest.yaml'

    if not manifest_path.exists():
        raise FileNotFoundError(f"No manifest.yaml in {data_path}")

    with open(manifest_path) as f:
        try:
            manifest = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"cannot parse {manifest_path}: {e}")

    if not isinstance(manifest, dict):
        raise ConfigurationError(f"{manifest_path} must hold a mapping")
    options = manifest.get('options') or {}
    if not isinstance(options, dict):
        raise ConfigurationError("must be a mapping", 'options')

    # Stash the manifest path for resolving relative paths
    manifest['_manifest_path'] = str(manifest_path)
    manifest['_data_dir'] = str(manifest_path.parent)

    return manifest


def get_options(manifest: Dict[str, Any]) -> Dict[str, Any]:
    """Run options from the manifest (empty when absent)."""
    return dict(manifest.get('options') or {})


def get_observations_path(manifest: Dict[str, Any]) -> str:
    """Get absolute path to the community table from manifest."""
    obs_rel = manifest.get('paths', {}).get('observations', 'observations.parquet')
    data_dir = Path(manifest.get('_data_dir', '.'))
    return str(data_dir / obs_rel)


def get_store_dir(manifest: Dict[str, Any]) -> str:
    """Get absolute path to the results store from manifest."""
    store_rel = manifest.get('paths', {}).get('store', 'output')
    data_dir = Path(manifest.get('_data_dir', '.'))
    return str(data_dir / store_rel)
