"""Schema file loading and saving.

Schemas are stored as YAML (``.yaml``/``.yml``) or JSON documents in the
format produced by ``Schema.to_dict``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from rebac.core import SchemaValidationError
from rebac.schema import Schema

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in YAML_SUFFIXES


def load_schema_file(path: str | Path, validate: bool = True) -> Schema:
    """Load a schema from a YAML or JSON file.

    Args:
        path: Schema file path.
        validate: Validate the schema eagerly.

    Raises:
        FileNotFoundError: If the file does not exist.
        SchemaValidationError: If the document cannot be parsed, is
            malformed, or (with ``validate``) fails validation.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")

    try:
        data: Any = yaml.safe_load(text) if _is_yaml(path) else json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise SchemaValidationError([f"cannot parse schema file {path}: {e}"]) from e

    if not isinstance(data, dict):
        raise SchemaValidationError([f"schema file {path} must contain a mapping"])

    schema = Schema.from_dict(data, validate=validate)
    logger.info(f"Loaded schema from {path}: {len(schema.entities)} entity types")
    return schema


def dump_schema_file(schema: Schema, path: str | Path) -> Path:
    """Write a schema as YAML or JSON, chosen by file suffix."""
    path = Path(path)
    data = schema.to_dict()
    if _is_yaml(path):
        path.write_text(
            yaml.dump(data, default_flow_style=False, sort_keys=False), encoding="utf-8"
        )
    else:
        path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return path
