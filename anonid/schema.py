"""JSON Schema validation for proof, verification-key, and event-log documents.

Schemas ship inside the package (``anonid/schemas/*.schema.json``) and refer to
each other by ``$id``; the registry below makes those references resolvable
without network access.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012


SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"
SCHEMA_BASE_URI = "https://schemas.anonid.dev/"

GROTH16_PROOF = "groth16-proof.schema.json"
GROTH16_VERIFICATION_KEY = "groth16-verification-key.schema.json"
OPENING_PROOF = "opening-proof.schema.json"
EVENT_RECORD = "event-record.schema.json"


class DocumentValidationError(ValueError):
    """A JSON document failed schema validation."""

    def __init__(self, schema_name: str, errors: List[str]):
        self.schema_name = schema_name
        self.errors = errors
        super().__init__(f"{schema_name}: " + "; ".join(errors))


def load_schema(name: str) -> Any:
    return json.loads((SCHEMAS_DIR / name).read_text(encoding="utf-8"))


@lru_cache(maxsize=1)
def _schema_registry() -> Registry:
    """Build a registry of every packaged schema, keyed by ``$id``."""
    resources = []
    for schema_path in sorted(SCHEMAS_DIR.glob("*.schema.json")):
        schema = load_schema(schema_path.name)
        schema_id = schema.get("$id") or SCHEMA_BASE_URI + schema_path.name
        resource = Resource.from_contents(schema, default_specification=DRAFT202012)
        resources.append((schema_id, resource))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(name: str) -> Draft202012Validator:
    """Create (and cache) a validator for a packaged schema."""
    return Draft202012Validator(load_schema(name), registry=_schema_registry())


def validate_document(obj: Any, name: str) -> List[str]:
    """Validate an object against a packaged schema.

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = schema_validator(name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]


def require_valid(obj: Any, name: str) -> None:
    errors = validate_document(obj, name)
    if errors:
        raise DocumentValidationError(name, errors)
