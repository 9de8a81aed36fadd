"""
Values are the inputs of the manifest renderer. They are read from the values file, merged with the outputs of the
provisioner and written back, so the file always reflects what the manifests were rendered from.
"""

from pathlib import Path
from typing import Any, Mapping

from loguru import logger
import yaml

from kcm.tools.filechanges import write_file

Values = dict[str, Any]


def load_values(path: Path) -> Values:
    """
    Load values from a YAML file. A missing or empty file yields no values.

    Raises:
        ValueError: If the file does not contain a mapping.
    """

    if not path.exists():
        logger.debug("Values file {} does not exist", path)
        return {}

    data = yaml.safe_load(path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"values file '{path}' must contain a mapping, got {type(data).__name__}")
    return data


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Values:
    """
    Merge *override* into *base* and return the result as a new mapping. Nested mappings are merged recursively, all
    other values in *override* replace those in *base*.
    """

    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value
    return result


def dump_values(values: Mapping[str, Any]) -> bytes:
    return yaml.safe_dump(dict(values), sort_keys=True, default_flow_style=False).encode()


def save_values(path: Path, values: Mapping[str, Any], dry_run: bool = False) -> None:
    write_file(path, dump_values(values), dry_run)
