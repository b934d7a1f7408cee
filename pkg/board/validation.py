"""
Payload validation for board API requests.

Every create/update body is checked against a field schema. Unknown keys
are rejected rather than merged, so an update can never smuggle an
``order``, ``owner`` or ``id`` change past the store.
"""
import re
from typing import Any, Dict

from .errors import ValidationFailure
from .schema import NoteColor, TaskPriority, TaskStatus

DATE_PATTERN = r"\d{4}-\d{2}-\d{2}"
TIME_PATTERN = r"([01]\d|2[0-3]):[0-5]\d"
EMAIL_PATTERN = r"[^@\s]+@[^@\s]+\.[^@\s]+"

# Accepts the legacy "progress" spelling; callers normalize via TaskStatus.from_str
STATUS_VALUES = TaskStatus.values() + ["progress"]


NOTE_CREATE = {
    "text": {"type": "string", "default": "", "max_length": 20000},
    "color": {"type": "string", "default": "yellow", "allowed": [c.value for c in NoteColor]},
}

NOTE_PATCH = {
    "text": {"type": "string", "max_length": 20000},
    "color": {"type": "string", "allowed": [c.value for c in NoteColor]},
}

TASK_CREATE = {
    "title": {"type": "string", "required": True, "max_length": 500},
    "description": {"type": "string", "default": ""},
    "priority": {"type": "string", "default": "medium", "allowed": [p.value for p in TaskPriority]},
    "due_date": {"type": "string", "pattern": DATE_PATTERN, "nullable": True},
    "status": {"type": "string", "default": "active", "allowed": STATUS_VALUES},
}

# status/position are not content: when present they trigger a move
TASK_PATCH = {
    "title": {"type": "string", "max_length": 500, "non_empty": True},
    "description": {"type": "string"},
    "priority": {"type": "string", "allowed": [p.value for p in TaskPriority]},
    "due_date": {"type": "string", "pattern": DATE_PATTERN, "nullable": True},
    "status": {"type": "string", "allowed": STATUS_VALUES},
    "position": {"type": "integer"},
}

CALENDAR_CREATE = {
    "title": {"type": "string", "required": True, "max_length": 500},
    "time": {"type": "string", "required": True, "pattern": TIME_PATTERN},
    "date": {"type": "string", "required": True, "pattern": DATE_PATTERN},
    "description": {"type": "string", "default": ""},
}

CALENDAR_PATCH = {
    "title": {"type": "string", "max_length": 500, "non_empty": True},
    "time": {"type": "string", "pattern": TIME_PATTERN},
    "date": {"type": "string", "pattern": DATE_PATTERN},
    "description": {"type": "string"},
    "completed": {"type": "boolean"},
}

REGISTER = {
    "username": {"type": "string", "required": True, "min_length": 3, "max_length": 64},
    "email": {"type": "string", "required": True, "pattern": EMAIL_PATTERN},
    "password": {"type": "string", "required": True, "min_length": 6},
}

LOGIN = {
    "email": {"type": "string", "required": True, "pattern": EMAIL_PATTERN},
    "password": {"type": "string", "required": True},
}


class PayloadValidator:
    """
    Validates and coerces JSON bodies against a field schema.

    Supports:
        - required / optional with defaults
        - types: string, integer, boolean
        - allowed-value lists and regex patterns
        - length bounds for strings
        - nullable fields (None or "" becomes None)
        - rejection of unknown fields

    With ``partial=True`` (patches) defaults are not filled in, so the
    result only contains the fields the caller actually sent.
    """

    def validate(self, body: Any, schema: dict, partial: bool = False) -> Dict[str, Any]:
        if not isinstance(body, dict):
            raise ValidationFailure("Request body must be a JSON object")

        unknown = set(body.keys()) - set(schema.keys())
        if unknown:
            raise ValidationFailure(
                f"Unknown field(s): {', '.join(sorted(unknown))}. "
                f"Allowed: {', '.join(sorted(schema.keys()))}"
            )

        result = {}
        for name, rule in schema.items():
            if name not in body or body[name] is None:
                if name in body:
                    if not rule.get("nullable"):
                        raise ValidationFailure(f"Field {name} cannot be null")
                    result[name] = None
                    continue
                if rule.get("required") and not partial:
                    raise ValidationFailure(f"Missing required field: {name}")
                if not partial and "default" in rule:
                    result[name] = rule["default"]
                continue
            result[name] = self._coerce(name, body[name], rule)
        return result

    def _coerce(self, name: str, value: Any, rule: dict) -> Any:
        kind = rule.get("type", "string")

        if kind == "string":
            if not isinstance(value, str):
                raise ValidationFailure(f"Field {name} must be a string")
            if value == "" and rule.get("nullable"):
                return None
            if not value.strip() and (rule.get("required") or rule.get("non_empty")):
                raise ValidationFailure(f"Missing required field: {name}")

            allowed = rule.get("allowed")
            if allowed and value not in allowed:
                raise ValidationFailure(
                    f"Invalid value for {name}: '{value}'. "
                    f"Allowed: {', '.join(allowed)}"
                )
            pattern = rule.get("pattern")
            if pattern and not re.fullmatch(pattern, value):
                raise ValidationFailure(f"Invalid format for {name}: '{value}'")

            min_len = rule.get("min_length")
            max_len = rule.get("max_length")
            if min_len is not None and len(value) < min_len:
                raise ValidationFailure(
                    f"Field {name} must be at least {min_len} characters long"
                )
            if max_len is not None and len(value) > max_len:
                raise ValidationFailure(
                    f"Field {name} must be at most {max_len} characters long"
                )
            return value

        if kind == "integer":
            # bool is an int subclass; true/false is not a position
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationFailure(f"Field {name} must be an integer, got: {value!r}")
            return value

        if kind == "boolean":
            if not isinstance(value, bool):
                raise ValidationFailure(f"Field {name} must be true or false")
            return value

        raise ValidationFailure(f"Unknown field type in schema: {kind}")


_validator = PayloadValidator()


def validate(body: Any, schema: dict, partial: bool = False) -> Dict[str, Any]:
    """Module-level shortcut around a shared PayloadValidator."""
    return _validator.validate(body, schema, partial=partial)


def parse_ordered_ids(body: Any, key: str = "orderedIds") -> list:
    """Extract the id list of a reorder request. Non-array → ValidationFailure."""
    if not isinstance(body, dict):
        raise ValidationFailure(f"{key} must be an array")
    ids = body.get(key)
    if not isinstance(ids, list):
        raise ValidationFailure(f"{key} must be an array")
    if not all(isinstance(i, str) for i in ids):
        raise ValidationFailure(f"{key} must contain string ids")
    return ids
