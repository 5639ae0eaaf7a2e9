"""JSON Schema validation for registry snapshots.

Schemas ship inside the package (`reliefchain/schemas`). They are registered
by `$id` so cross-schema `$ref`s resolve without network access.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from reliefchain.core import SCHEMAS_DIR, load_json

SNAPSHOT_SCHEMA = "supply-registry.snapshot.schema.json"
TOKEN_SCHEMA = "supply-token.schema.json"


@lru_cache(maxsize=1)
def _schema_registry(schemas_dir: Path = SCHEMAS_DIR) -> Registry:
    """Registry of every packaged schema, keyed by its `$id`."""
    resources = []
    for schema_path in sorted(schemas_dir.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or f"https://schemas.reliefchain.org/{schema_path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(schema_name: str) -> Draft202012Validator:
    """Cached validator for a packaged schema file."""
    schema = load_json(SCHEMAS_DIR / schema_name)
    return Draft202012Validator(schema, registry=_schema_registry())


def validate_against_schema(obj: Any, schema_name: str) -> List[str]:
    """Validate an object; returns error messages (empty if valid)."""
    validator = schema_validator(schema_name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]
