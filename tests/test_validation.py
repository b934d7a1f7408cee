"""Tests for payload validation, the ownership guard and item schemas."""
import pytest

from pkg.board.errors import Forbidden, NotFound, ValidationFailure
from pkg.board.guard import Access, authorize, check_access, owned_ids
from pkg.board.schema import BoardTask, NoteColor, StickyNote, TaskStatus
from pkg.board.validation import (
    CALENDAR_PATCH,
    NOTE_CREATE,
    NOTE_PATCH,
    TASK_CREATE,
    TASK_PATCH,
    parse_ordered_ids,
    validate,
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Payloads
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_note_create_defaults():
    assert validate({}, NOTE_CREATE) == {"text": "", "color": "yellow"}


def test_patch_rejects_order_and_owner():
    for key in ("order", "owner", "id"):
        with pytest.raises(ValidationFailure, match="Unknown field"):
            validate({"text": "x", key: 1}, NOTE_PATCH, partial=True)


def test_patch_returns_only_sent_fields():
    assert validate({"description": "d"}, TASK_PATCH, partial=True) == {"description": "d"}


def test_task_create_requires_title():
    with pytest.raises(ValidationFailure, match="title"):
        validate({"title": "   "}, TASK_CREATE)


def test_position_must_be_integer():
    with pytest.raises(ValidationFailure):
        validate({"position": True}, TASK_PATCH, partial=True)
    with pytest.raises(ValidationFailure):
        validate({"position": "1"}, TASK_PATCH, partial=True)
    assert validate({"position": 2}, TASK_PATCH, partial=True) == {"position": 2}


def test_due_date_nullable():
    assert validate({"due_date": ""}, TASK_PATCH, partial=True) == {"due_date": None}
    with pytest.raises(ValidationFailure):
        validate({"due_date": "next week"}, TASK_PATCH, partial=True)


def test_boolean_field():
    assert validate({"completed": False}, CALENDAR_PATCH, partial=True) == {"completed": False}
    with pytest.raises(ValidationFailure):
        validate({"completed": "yes"}, CALENDAR_PATCH, partial=True)


def test_body_must_be_object():
    with pytest.raises(ValidationFailure):
        validate(["text"], NOTE_CREATE)


def test_ordered_ids():
    assert parse_ordered_ids({"orderedIds": ["a", "b"]}) == ["a", "b"]
    assert parse_ordered_ids({"orderedIds": []}) == []
    for body in ({}, {"orderedIds": "a,b"}, {"orderedIds": {"a": 0}}, None):
        with pytest.raises(ValidationFailure, match="orderedIds must be an array"):
            parse_ordered_ids(body)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Guard
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _note(owner):
    return StickyNote(note_id="n1", owner=owner)


def test_check_access():
    assert check_access("u1", None) is Access.NOT_FOUND
    assert check_access("u1", _note("u2")) is Access.FORBIDDEN
    assert check_access("u1", _note("u1")) is Access.ALLOWED


def test_authorize_raises():
    with pytest.raises(NotFound, match="Sticky note not found"):
        authorize("u1", None, "Sticky note")
    with pytest.raises(Forbidden):
        authorize("u1", _note("u2"), "Sticky note")
    note = _note("u1")
    assert authorize("u1", note) is note


def test_owned_ids_filters_and_dedupes():
    owners = {"a": "u1", "b": "u2", "c": "u1"}
    assert owned_ids("u1", owners, ["c", "b", "zzz", "a", "c"]) == ["c", "a"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Schema
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_status_parsing():
    assert TaskStatus.from_str("progress") is TaskStatus.IN_PROGRESS
    assert TaskStatus.from_str(" Completed ") is TaskStatus.COMPLETED
    with pytest.raises(ValueError):
        TaskStatus.from_str("blocked")


def test_note_dict_uses_wire_names():
    data = StickyNote(note_id="n1", owner="u1", text="hi", color=NoteColor.PINK, order=3).to_dict()
    assert data["id"] == "n1"
    assert data["color"] == "pink"
    assert data["order"] == 3
    again = StickyNote.from_dict(data)
    assert (again.note_id, again.color, again.order) == ("n1", NoteColor.PINK, 3)


def test_task_from_dict_accepts_legacy_status():
    task = BoardTask.from_dict({"id": "t1", "owner": "u1", "title": "T", "status": "progress"})
    assert task.status is TaskStatus.IN_PROGRESS
    assert task.to_dict()["status"] == "in-progress"


def test_null_rejected_for_non_nullable_fields():
    with pytest.raises(ValidationFailure, match="Field text cannot be null"):
        validate({"text": None}, NOTE_PATCH, partial=True)
    with pytest.raises(ValidationFailure, match="cannot be null"):
        validate({"title": None}, TASK_CREATE)
    assert validate({"due_date": None}, TASK_PATCH, partial=True) == {"due_date": None}
