# src/gtaskall/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import IntEnum, StrEnum
from typing import NamedTuple


class TaskState(StrEnum):
    """
    Local tri-state of a task.

    Remotely a task only has status needsAction/completed; IN_PROGRESS is carried
    by a marker in notes. The translation lives in notes_codec (to_remote_status /
    from_remote_status) and nowhere else.
    """

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, raw: str | None) -> TaskState:
        s = (raw or "").strip().lower().replace("-", "_")
        aliases = {"done": cls.COMPLETED, "active": cls.IN_PROGRESS, "doing": cls.IN_PROGRESS}
        if s in aliases:
            return aliases[s]
        try:
            return cls(s)
        except ValueError:
            return cls.TODO


class Priority(IntEnum):
    P1 = 1
    P2 = 2
    P3 = 3
    NONE = 4

    @classmethod
    def coerce(cls, raw: object) -> Priority:
        try:
            return cls(int(raw))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return cls.NONE


class TaskKey(NamedTuple):
    list_id: str
    task_id: str


@dataclass(frozen=True, slots=True)
class TaskList:
    id: str
    title: str
    account_id: str = ""
    updated: datetime | None = None


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    title: str
    list_id: str
    account_id: str = ""

    state: TaskState = TaskState.TODO
    notes: str = ""
    due: date | None = None
    completed_at: datetime | None = None

    # Structured metadata (remotely encoded inside notes).
    start_date: date | None = None
    color: str | None = None
    recurring: bool = False
    priority: Priority = Priority.NONE

    updated: datetime | None = None
    position: str | None = None
    parent: str | None = None

    # Denormalized owner identity for display.
    account_email: str = ""
    account_name: str = ""
    account_picture: str = ""

    @property
    def key(self) -> TaskKey:
        return TaskKey(self.list_id, self.id)

    @property
    def is_completed(self) -> bool:
        return self.state == TaskState.COMPLETED

    def is_overdue(self, today: date) -> bool:
        return self.due is not None and self.due < today and not self.is_completed

    def tagged(self, *, account_id: str, email: str, name: str, picture: str) -> Task:
        """Return a copy carrying the owning account's identity."""
        return replace(
            self,
            account_id=account_id,
            account_email=email,
            account_name=name,
            account_picture=picture,
        )
