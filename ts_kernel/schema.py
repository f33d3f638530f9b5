"""JSON Schema validation for bundle envelopes.

Only the structural envelope is validated here (top-level object, a `project`
object, array-typed sections, digest records). Ledger contents are checked by
`ts_kernel.ledger`, not by schema, so that a malformed entry becomes an
integrity finding instead of aborting the whole report.

Design notes:
- Uses jsonschema Draft 2020-12.
- Fails closed: schema load errors are treated as validation failures.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Tuple

import jsonschema


@dataclass
class SchemaMessage:
    ok: bool
    code: str
    detail: str


SCHEMA_FILES: Dict[str, str] = {
    "bundle": "bundle.schema.json",
    "dlc_signature": "dlc_signature.schema.json",
}

_SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"
_MAX_REPORTED_ERRORS = 50


@lru_cache(maxsize=None)
def _get_validator(schema_name: str) -> jsonschema.Draft202012Validator:
    schema_file = SCHEMA_FILES.get(schema_name)
    if not schema_file:
        raise ValueError(f"Unknown schema: {schema_name}")
    with (_SCHEMAS_DIR / schema_file).open("r", encoding="utf-8") as f:
        schema = json.load(f)
    return jsonschema.Draft202012Validator(schema)


def validate_instance(obj: Any, *, schema_name: str) -> Tuple[bool, List[SchemaMessage]]:
    msgs: List[SchemaMessage] = []
    try:
        validator = _get_validator(schema_name)
    except (OSError, ValueError) as e:
        return False, [SchemaMessage(False, "SCHEMA_MISSING", str(e))]

    errors = sorted(validator.iter_errors(obj), key=lambda e: [str(p) for p in e.absolute_path])
    if errors:
        for e in errors[:_MAX_REPORTED_ERRORS]:
            loc = "/".join(str(p) for p in e.absolute_path) or "<root>"
            msgs.append(SchemaMessage(False, "SCHEMA_ERROR", f"{schema_name} {loc}: {e.message}"))
        if len(errors) > _MAX_REPORTED_ERRORS:
            msgs.append(
                SchemaMessage(False, "SCHEMA_ERROR", f"{schema_name}: {len(errors) - _MAX_REPORTED_ERRORS} more errors...")
            )
        return False, msgs
    msgs.append(SchemaMessage(True, "SCHEMA_OK", f"{schema_name}: valid"))
    return True, msgs


def validate_bundle_structure(bundle: Any) -> Tuple[bool, List[SchemaMessage]]:
    return validate_instance(bundle, schema_name="bundle")


def validate_dlc_signature(record: Any) -> Tuple[bool, List[SchemaMessage]]:
    return validate_instance(record, schema_name="dlc_signature")
