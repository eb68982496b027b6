"""Schema Registry — field definitions for the three logical fact tables.

Default schemas ship as YAML files (one per table) in the schemas directory.
Users may edit a schema at runtime; the edited version is persisted through
the ConfigStore and takes precedence over the YAML default. The registry also
builds the header -> key lookup used by the field mapper and scores file
headers to auto-detect which table a spreadsheet belongs to.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from yunzhou.core.config import settings
from yunzhou.core.config_store import ConfigStore
from yunzhou.core.models import FieldDefinition, TableSchema, TableType

logger = logging.getLogger(__name__)


def _config_key(table_type: TableType) -> str:
    return f"schema_{table_type.value}"


class SchemaRegistry:
    """Loads, validates, caches and persists table schemas."""

    def __init__(
        self,
        config_store: Optional[ConfigStore] = None,
        schemas_dir: Optional[str] = None,
    ):
        self._config_store = config_store
        self._defaults: dict[TableType, TableSchema] = {}
        self._schemas_dir = Path(schemas_dir or settings.schemas_dir)
        if not self._schemas_dir.is_absolute():
            self._schemas_dir = settings.project_root / self._schemas_dir

    def load_schema_from_yaml(self, yaml_content: str) -> TableSchema:
        """Parse and validate a table schema from a YAML string."""
        raw = yaml.safe_load(yaml_content)
        if not isinstance(raw, dict):
            raise ValueError("Schema YAML must be a mapping")

        schema = TableSchema(
            table_type=raw["table_type"],
            version=raw.get("version", 1),
            fields=[FieldDefinition(**f) for f in raw.get("fields", [])],
        )
        errors = self.validate_schema(schema)
        if errors:
            raise ValueError(f"Schema validation errors for {schema.table_type.value}: {errors}")
        return schema

    def load_default(self, table_type: TableType) -> TableSchema:
        """Load the YAML default for a table type from the schemas directory."""
        if table_type in self._defaults:
            return self._defaults[table_type]

        candidates = list(self._schemas_dir.glob("*.yaml")) + \
                     list(self._schemas_dir.glob("*.yml"))
        for path in candidates:
            if path.name.startswith("_"):
                continue
            try:
                content = path.read_text(encoding="utf-8")
                raw = yaml.safe_load(content)
            except yaml.YAMLError:
                logger.warning(f"Skipping unreadable schema file {path}")
                continue
            if isinstance(raw, dict) and raw.get("table_type") == table_type.value:
                schema = self.load_schema_from_yaml(content)
                self._defaults[table_type] = schema
                logger.info(f"Loaded default schema for '{table_type.value}' from {path}")
                return schema

        raise FileNotFoundError(
            f"No schema file found for table '{table_type.value}' in {self._schemas_dir}"
        )

    def get_schema(self, table_type: TableType) -> TableSchema:
        """User-edited schema if one is persisted, else the YAML default."""
        if self._config_store is not None:
            stored = self._config_store.get(_config_key(table_type))
            if stored:
                try:
                    return TableSchema(**stored)
                except ValidationError as e:
                    logger.warning(
                        f"Persisted schema for '{table_type.value}' is invalid, using default: {e}"
                    )
        return self.load_default(table_type)

    def get_all(self) -> dict[TableType, TableSchema]:
        return {t: self.get_schema(t) for t in TableType}

    def update_schema(self, table_type: TableType, fields: list[FieldDefinition]) -> TableSchema:
        """Replace a table's fields, bump its version and persist it."""
        current = self.get_schema(table_type)
        schema = TableSchema(table_type=table_type, version=current.version + 1, fields=fields)
        errors = self.validate_schema(schema)
        if errors:
            raise ValueError(f"Schema validation errors: {errors}")
        if self._config_store is None:
            raise RuntimeError("Schema edits require a config store")
        self._config_store.set(_config_key(table_type), schema.model_dump(mode="json"))
        logger.info(f"Schema for '{table_type.value}' updated to version {schema.version}")
        return schema

    def reset_schema(self, table_type: TableType) -> TableSchema:
        """Drop the persisted edit and fall back to the YAML default."""
        if self._config_store is not None:
            self._config_store.delete(_config_key(table_type))
        return self.load_default(table_type)

    def validate_schema(self, schema: TableSchema) -> list[str]:
        """Validate schema integrity. Returns list of error messages (empty = valid)."""
        errors: list[str] = []
        seen_keys: set[str] = set()
        alias_owner: dict[str, str] = {}

        for f in schema.fields:
            if not f.key.strip():
                errors.append("Field with empty key")
                continue
            if f.key in seen_keys:
                errors.append(f"Duplicate field key '{f.key}'")
            seen_keys.add(f.key)
            if not f.label.strip():
                errors.append(f"Field '{f.key}': empty label")

            for alias in [f.label.strip(), *[t.strip() for t in f.tags]]:
                if not alias:
                    continue
                owner = alias_owner.setdefault(alias, f.key)
                if owner != f.key:
                    errors.append(
                        f"Header '{alias}' is claimed by both '{owner}' and '{f.key}'"
                    )

        return errors


# ---------------------------------------------------------------------------
# Header resolution and table detection
# ---------------------------------------------------------------------------

def build_header_lookup(schema: TableSchema) -> dict[str, str]:
    """Map every known header spelling to its field key. First match wins."""
    lookup: dict[str, str] = {}
    for f in schema.fields:
        lookup.setdefault(f.label, f.key)
        for tag in f.tags:
            lookup.setdefault(tag, f.key)
        lookup.setdefault(f.key, f.key)
        trimmed = f.label.strip()
        lookup.setdefault(trimmed, f.key)
        lookup.setdefault(trimmed.upper(), f.key)
    return lookup


def resolve_header(lookup: dict[str, str], header: str) -> Optional[str]:
    """Resolve a raw header label to a field key, or None if unknown."""
    if header in lookup:
        return lookup[header]
    trimmed = str(header).strip()
    if trimmed in lookup:
        return lookup[trimmed]
    return lookup.get(trimmed.upper())


def score_headers(headers: list[str], schema: TableSchema) -> float:
    """Fraction of headers that match a label or tag of the schema."""
    if not headers:
        return 0.0
    known: set[str] = set()
    for f in schema.fields:
        known.add(f.label)
        known.update(f.tags)
    matched = sum(1 for h in headers if str(h) in known)
    return matched / len(headers)


def detect_table_type(
    headers: list[str],
    schemas: dict[TableType, TableSchema],
    threshold: Optional[float] = None,
) -> tuple[Optional[TableType], dict[str, float]]:
    """Pick the table whose schema best matches the headers.

    A table must score strictly above the threshold; the highest score wins,
    and on a tie the earlier table in declaration order is kept.
    """
    threshold = settings.detection_threshold if threshold is None else threshold
    scores = {t.value: score_headers(headers, s) for t, s in schemas.items()}

    best: Optional[TableType] = None
    best_score = threshold
    for table_type in schemas:
        score = scores[table_type.value]
        if score > best_score:
            best, best_score = table_type, score
    return best, scores
