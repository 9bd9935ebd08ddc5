from __future__ import annotations

from importlib import resources
import json
from typing import Any

from jsonschema import Draft202012Validator

SCHEMA_FILE = "schemas/device-record.schema.json"


def load_schema() -> dict[str, Any]:
    schema_path = resources.files("pretty_rocm_smi").joinpath(SCHEMA_FILE)
    return json.loads(schema_path.read_text(encoding="utf-8"))


def get_validator() -> Draft202012Validator:
    return Draft202012Validator(schema=load_schema())


def validate_record(record: dict[str, Any]) -> list[str]:
    validator = get_validator()
    errors = sorted(validator.iter_errors(record), key=lambda e: list(e.path))
    return [error.message for error in errors]
