import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator

from ks_core.issues import Issue

_TEST_LIST = {
    "type": "array",
    "items": {
        "oneOf": [
            {"type": "string", "minLength": 1},
            {
                "type": "object",
                "minProperties": 1,
                "maxProperties": 1,
                "additionalProperties": {"type": ["object", "null"]},
            },
        ]
    },
}

_COLUMN = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "data_type": {"type": "string"},
        "tests": _TEST_LIST,
        "data_tests": _TEST_LIST,
    },
}

_RELATION = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "database": {"type": "string"},
        "schema": {"type": "string"},
        "alias": {"type": "string"},
        "identifier": {"type": "string"},
        "materialized": {
            "enum": ["table", "incremental", "snapshot", "view", "ephemeral"],
        },
        "config": {"type": "object"},
        "columns": {"type": "array", "items": _COLUMN},
        "tests": _TEST_LIST,
        "data_tests": _TEST_LIST,
    },
}

PROJECT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "keysynth project",
    "type": "object",
    "properties": {
        "project": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "database": {"type": "string"},
                "schema": {"type": "string"},
            },
        },
        "vars": {"type": "object"},
        "models": {"type": "array", "items": _RELATION},
        "snapshots": {"type": "array", "items": _RELATION},
        "sources": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "database": {"type": "string"},
                    "schema": {"type": "string"},
                    "tables": {"type": "array", "items": _RELATION},
                },
            },
        },
    },
}


def load_schema(schema_path: Optional[str] = None) -> Dict[str, Any]:
    if not schema_path:
        return PROJECT_SCHEMA
    path = Path(schema_path)
    if not path.exists():
        raise FileNotFoundError(f"Schema file not found: {schema_path}")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _to_json_path(parts: List[Any]) -> str:
    if not parts:
        return "/"
    formatted = []
    for part in parts:
        formatted.append(str(part))
    return "/" + "/".join(formatted)


def project_issues(project: Dict[str, Any], schema: Optional[Dict[str, Any]] = None) -> List[Issue]:
    validator = Draft202012Validator(schema or PROJECT_SCHEMA)
    issues: List[Issue] = []

    for error in sorted(validator.iter_errors(project), key=lambda e: [str(p) for p in e.absolute_path]):
        issues.append(
            Issue(
                severity="error",
                code="SCHEMA_VALIDATION_FAILED",
                message=error.message,
                path=_to_json_path(list(error.absolute_path)),
            )
        )

    return issues
