# services/validation/schema_validation.py
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Tuple

import jsonschema

REPO_ROOT = Path(__file__).resolve().parents[2]
SCHEMA_DIR = REPO_ROOT / "config" / "schemas"

REGISTRY_RECORD = "registry_record"
SAVE_PAYLOAD = "save_payload"


@lru_cache(maxsize=None)
def _load_schema(name: str) -> dict:
    schema_path = SCHEMA_DIR / f"{name}.schema.json"
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema not found: {schema_path}")
    return json.loads(schema_path.read_text(encoding="utf-8"))


def validate_with_schema(data: Any, name: str) -> Tuple[bool, str]:
    try:
        schema = _load_schema(name)
    except Exception as e:
        return False, str(e)

    try:
        jsonschema.validate(instance=data, schema=schema)
        return True, "Valid"
    except jsonschema.exceptions.ValidationError as e:
        return False, e.message


def validate_registry_rows(rows: List[Dict[str, Any]]) -> Tuple[bool, str]:
    """All-or-nothing: one malformed row invalidates the registry response."""
    for i, row in enumerate(rows):
        ok, msg = validate_with_schema(row, REGISTRY_RECORD)
        if not ok:
            return False, f"record {i}: {msg}"
    return True, "Valid"


def validate_save_payload(payload: Dict[str, Any]) -> Tuple[bool, str]:
    return validate_with_schema(payload, SAVE_PAYLOAD)
