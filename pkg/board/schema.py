"""
Board item schema.

Sticky notes live in one ordered column per user. Tasks live in three
status columns per user:
  active → in-progress → completed

Every column keeps a dense zero-based ``order`` (0..n-1). Order and status
only change through reorder/move operations in store.py; plain field
edits never touch them.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _parse_dt(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(value)
    return utc_now()


class TaskStatus(Enum):
    """Kanban columns. Each status is its own ordering scope."""
    ACTIVE = "active"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"

    @classmethod
    def from_str(cls, value: str) -> "TaskStatus":
        """Parse a status, accepting the legacy ``progress`` spelling."""
        value = (value or "").strip().lower()
        if value == "progress":
            return cls.IN_PROGRESS
        return cls(value)

    @classmethod
    def values(cls):
        return [s.value for s in cls]


class TaskPriority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class NoteColor(Enum):
    YELLOW = "yellow"
    PINK = "pink"
    BLUE = "blue"
    GREEN = "green"
    PURPLE = "purple"
    GRAY = "gray"


@dataclass
class StickyNote:
    """A freely ordered note in the side panel."""

    note_id: str
    owner: str                      # user id, immutable
    text: str = ""
    color: NoteColor = NoteColor.YELLOW
    order: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.note_id,
            "owner": self.owner,
            "text": self.text,
            "color": self.color.value,
            "order": self.order,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StickyNote":
        try:
            color = NoteColor(data.get("color") or "yellow")
        except ValueError:
            color = NoteColor.YELLOW
        return cls(
            note_id=data["id"],
            owner=data["owner"],
            text=data.get("text") or "",
            color=color,
            order=int(data.get("order") or 0),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
        )


@dataclass
class BoardTask:
    """A kanban task. ``(owner, status)`` is its ordering scope."""

    task_id: str
    owner: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.ACTIVE
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[str] = None  # YYYY-MM-DD
    order: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.task_id,
            "owner": self.owner,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "due_date": self.due_date,
            "order": self.order,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoardTask":
        try:
            priority = TaskPriority(data.get("priority") or "medium")
        except ValueError:
            priority = TaskPriority.MEDIUM
        return cls(
            task_id=data["id"],
            owner=data["owner"],
            title=data.get("title") or "",
            description=data.get("description") or "",
            status=TaskStatus.from_str(data.get("status") or "active"),
            priority=priority,
            due_date=data.get("due_date"),
            order=int(data.get("order") or 0),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
        )


@dataclass
class CalendarEntry:
    """A timed entry on the calendar. Not ordered; sorted by date and time."""

    entry_id: str
    owner: str
    title: str
    date: str                       # YYYY-MM-DD
    time: str                       # HH:MM
    description: str = ""
    completed: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.entry_id,
            "owner": self.owner,
            "title": self.title,
            "date": self.date,
            "time": self.time,
            "description": self.description,
            "completed": self.completed,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalendarEntry":
        return cls(
            entry_id=data["id"],
            owner=data["owner"],
            title=data.get("title") or "",
            date=data.get("date") or "",
            time=data.get("time") or "",
            description=data.get("description") or "",
            completed=bool(data.get("completed", False)),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
        )


@dataclass
class User:
    user_id: str
    username: str
    email: str
    password_hash: str = field(default="", repr=False)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        """Public view. Never includes the password hash."""
        return {
            "id": self.user_id,
            "username": self.username,
            "email": self.email,
            "created_at": _iso(self.created_at),
        }
