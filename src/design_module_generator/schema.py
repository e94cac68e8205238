"""Versioned schema vocabularies loaded from YAML.

Each YAML file under ``schemas/`` describes one version::

    version: "2024.1"
    valid_field_types: [text, richtext, ...]
    valid_content_types: [LANDING_PAGE, ...]
    reserved_field_names: [id, name, ...]

A file may also hold several versions under a top-level ``versions:`` list.
New versions are added by dropping in a file (or calling ``register``);
no code change is needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

import yaml

from .models import SchemaVocabulary

logger = logging.getLogger(__name__)

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"

DEFAULT_SCHEMA_VERSION = "2024.1"


def _parse_vocabularies(data: Any, source: Path) -> list[SchemaVocabulary]:
    if not isinstance(data, dict):
        raise ValueError(f"Schema file {source} has invalid format")
    entries = data.get("versions", [data])
    if not isinstance(entries, list):
        raise ValueError(f"Schema file {source}: 'versions' must be a list")
    return [SchemaVocabulary.model_validate(entry) for entry in entries]


class SchemaProvider:
    """Registry of schema vocabularies keyed by version."""

    def __init__(self, schema_dir: str | Path | None = SCHEMAS_DIR) -> None:
        self._schemas: dict[str, SchemaVocabulary] = {}
        self._lock = threading.Lock()
        if schema_dir is not None:
            for path in sorted(Path(schema_dir).glob("*.yaml")):
                self.load_file(path)

    def load_file(self, path: str | Path) -> list[SchemaVocabulary]:
        """Load and register every vocabulary in a YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Schema file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f)
        vocabularies = _parse_vocabularies(data, path)
        for vocabulary in vocabularies:
            self.register(vocabulary)
        logger.debug("Loaded %d schema version(s) from %s", len(vocabularies), path)
        return vocabularies

    def register(self, vocabulary: SchemaVocabulary) -> None:
        with self._lock:
            if vocabulary.version in self._schemas:
                logger.info("Replacing schema version %s", vocabulary.version)
            self._schemas[vocabulary.version] = vocabulary

    def get(self, version: str) -> SchemaVocabulary | None:
        with self._lock:
            return self._schemas.get(version)

    def versions(self) -> list[str]:
        with self._lock:
            return sorted(self._schemas)
