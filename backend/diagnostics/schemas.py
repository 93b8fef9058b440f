"""JSON payload schemas for the workflow API."""

from typing import Any, Dict, List

from jsonschema import Draft202012Validator

from .errors import ValidationError

_UUID = {"type": "string", "minLength": 1}
_NULLABLE_UUID = {"type": ["string", "null"]}
_TEXT = {"type": "string"}
_REQUIRED_TEXT = {"type": "string", "minLength": 1}

STEP_FIELDS = {
    "title": {"type": "string", "minLength": 1, "maxLength": 300},
    "description": _TEXT,
    "instruction": _REQUIRED_TEXT,
    "estimated_time": {"type": ["integer", "null"], "minimum": 0},
    "remote_id": _NULLABLE_UUID,
}

SCHEMAS: Dict[str, Dict[str, Any]] = {
    "problem.create": {
        "type": "object",
        "required": ["title"],
        "properties": {
            "title": {"type": "string", "minLength": 1, "maxLength": 300},
            "description": _TEXT,
            "status": {"enum": ["draft", "published"]},
            "priority": {"type": "integer", "minimum": 0},
        },
    },
    "problem.update": {
        "type": "object",
        "properties": {
            "title": {"type": "string", "minLength": 1, "maxLength": 300},
            "description": _TEXT,
            "status": {"enum": ["draft", "published", "archived"]},
            "priority": {"type": "integer", "minimum": 0},
        },
    },
    "step.create": {
        "type": "object",
        "required": ["title", "instruction"],
        "properties": dict(STEP_FIELDS, step_number={"type": ["integer", "null"], "minimum": 1}),
    },
    "step.insert": {
        "type": "object",
        "required": ["problem_id", "after_number", "step"],
        "properties": {
            "problem_id": _UUID,
            "after_number": {"type": "integer", "minimum": 0},
            "step": {"type": "object", "required": ["title", "instruction"], "properties": STEP_FIELDS},
        },
    },
    "step.reorder": {
        "type": "object",
        "required": ["problem_id", "step_ids"],
        "properties": {
            "problem_id": _UUID,
            "step_ids": {"type": "array", "items": _UUID},
        },
    },
    "step.fix_numbering": {
        "type": "object",
        "required": ["problem_id"],
        "properties": {"problem_id": _UUID},
    },
    "step.duplicate": {
        "type": "object",
        "properties": {"problem_id": _NULLABLE_UUID},
    },
    "session.create": {
        "type": "object",
        "required": ["device_id", "problem_id"],
        "properties": {
            "device_id": _UUID,
            "problem_id": _UUID,
            "session_id": {"type": ["string", "null"], "maxLength": 200},
            "metadata": {"type": ["object", "null"]},
        },
    },
    "session.update": {
        "type": "object",
        "properties": {
            "feedback": {"type": ["string", "null"]},
            "metadata": {"type": ["object", "null"]},
            "session_id": {"type": ["string", "null"], "maxLength": 200},
            "force": {"type": "boolean"},
        },
    },
    "session.progress": {
        "type": "object",
        "required": ["step_id"],
        "properties": {
            "step_id": _UUID,
            "completed": {"type": "boolean"},
            "result": {"enum": ["success", "failure", "skipped"]},
            "time_spent": {"type": ["integer", "null"], "minimum": 0},
            "errors": {"type": "array"},
            "user_input": {},
            "force": {"type": "boolean"},
        },
    },
    "session.complete": {
        "type": "object",
        "required": ["success"],
        "properties": {
            "success": {"type": "boolean"},
            "error_steps": {"type": ["array", "null"], "items": _UUID},
            "feedback": {"type": ["string", "null"]},
        },
    },
    "remote.create": {
        "type": "object",
        "required": ["name"],
        "properties": {
            "device_id": _NULLABLE_UUID,
            "name": {"type": "string", "minLength": 1, "maxLength": 200},
            "manufacturer": _TEXT,
            "model": _TEXT,
            "layout": {"enum": ["standard", "compact", "smart", "custom"]},
            "buttons": {"type": "array"},
            "is_default": {"type": "boolean"},
        },
    },
    "remote.update": {
        "type": "object",
        "properties": {
            "device_id": _NULLABLE_UUID,
            "name": {"type": "string", "minLength": 1, "maxLength": 200},
            "manufacturer": _TEXT,
            "model": _TEXT,
            "layout": {"enum": ["standard", "compact", "smart", "custom"]},
            "buttons": {"type": "array"},
            "is_default": {"type": "boolean"},
        },
    },
    "remote.set_default": {
        "type": "object",
        "required": ["device_id"],
        "properties": {"device_id": _NULLABLE_UUID},
    },
}


def payload_errors(payload: Any, name: str) -> List[str]:
    validator = Draft202012Validator(SCHEMAS[name])
    errors = []
    for error in sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.path]):
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        errors.append(f"{path}: {error.message}")
    return errors


def validate_payload(payload: Any, name: str) -> Dict[str, Any]:
    errors = payload_errors(payload, name)
    if errors:
        raise ValidationError("Invalid request payload", field=name, details={"errors": errors})
    return payload
