# src/gtaskall/tasks/notes_codec.py

"""
Translation between the remote Google Tasks representation and the local Task model.

Google Tasks has no fields for priority, color, start date, recurrence or an
"in progress" column, so they travel inside the free-text notes:

    <!--gtm:{"priority": 2}-->
    user notes...
    [Start: 2024-03-18]
    [Color: #22c55e]
    [Recurring]
    [In Progress]

Only this module reads or writes those markers. Everything past the client
boundary works with structured fields.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from .task_models import Priority, Task, TaskList, TaskState

logger = logging.getLogger(__name__)

STATUS_NEEDS_ACTION = "needsAction"
STATUS_COMPLETED = "completed"

IN_PROGRESS_MARKER = "[In Progress]"
RECURRING_MARKER = "[Recurring]"

_METADATA_RE = re.compile(r"<!--gtm:(.+?)-->")
_IN_PROGRESS_RE = re.compile(r"^\[(in progress|active)\]$", re.IGNORECASE)
_RECURRING_RE = re.compile(r"^\[recurring\]$", re.IGNORECASE)
_START_RE = re.compile(r"^\[start:\s*(\d{4}-\d{2}-\d{2})\]$", re.IGNORECASE)
_COLOR_RE = re.compile(r"^\[color:\s*(#[0-9a-f]{6})\]$", re.IGNORECASE)
_BARE_COLOR_RE = re.compile(r"^(#[0-9a-f]{6})$", re.IGNORECASE)


def normalize_color(raw: str) -> str:
    """Return a `#rrggbb` color in lower case; anything else is a ValueError."""
    s = raw.strip()
    if not _BARE_COLOR_RE.match(s):
        raise ValueError(f"color must look like #rrggbb, got {raw!r}")
    return s.lower()


@dataclass(frozen=True, slots=True)
class NotesMeta:
    priority: Priority = Priority.NONE
    in_progress: bool = False
    recurring: bool = False
    start_date: date | None = None
    color: str | None = None


def _parse_priority(raw_json: str) -> Priority:
    try:
        data = json.loads(raw_json)
    except json.JSONDecodeError:
        logger.debug("Ignoring malformed notes metadata: %r", raw_json)
        return Priority.NONE
    if not isinstance(data, dict):
        return Priority.NONE
    return Priority.coerce(data.get("priority"))


def decode_notes(notes: str | None) -> tuple[str, NotesMeta]:
    """Split remote notes into (clean notes, structured metadata)."""
    if not notes:
        return "", NotesMeta()

    priority = Priority.NONE
    m = _METADATA_RE.search(notes)
    if m:
        priority = _parse_priority(m.group(1))
        notes = _METADATA_RE.sub("", notes, count=1)

    in_progress = False
    recurring = False
    start_date: date | None = None
    color: str | None = None
    kept: list[str] = []

    for line in notes.splitlines():
        s = line.strip()
        if _IN_PROGRESS_RE.match(s):
            in_progress = True
            continue
        if _RECURRING_RE.match(s):
            recurring = True
            continue
        sm = _START_RE.match(s)
        if sm:
            try:
                start_date = date.fromisoformat(sm.group(1))
                continue
            except ValueError:
                pass
        cm = _COLOR_RE.match(s) or _BARE_COLOR_RE.match(s)
        if cm:
            color = cm.group(1).lower()
            continue
        kept.append(line)

    clean = "\n".join(kept).strip()
    return clean, NotesMeta(
        priority=priority,
        in_progress=in_progress,
        recurring=recurring,
        start_date=start_date,
        color=color,
    )


def encode_notes(clean_notes: str, meta: NotesMeta) -> str:
    """Inverse of decode_notes."""
    head = ""
    if meta.priority != Priority.NONE:
        head = "<!--gtm:" + json.dumps({"priority": int(meta.priority)}) + "-->"

    lines: list[str] = []
    if head:
        lines.append(head)
    body = (clean_notes or "").strip()
    if body:
        lines.append(body)
    if meta.start_date is not None:
        lines.append(f"[Start: {meta.start_date.isoformat()}]")
    if meta.color:
        lines.append(f"[Color: {meta.color.lower()}]")
    if meta.recurring:
        lines.append(RECURRING_MARKER)
    if meta.in_progress:
        lines.append(IN_PROGRESS_MARKER)
    return "\n".join(lines)


def to_remote_status(state: TaskState) -> tuple[str, bool]:
    """TaskState -> (remote status, in-progress marker present)."""
    if state == TaskState.COMPLETED:
        return STATUS_COMPLETED, False
    if state == TaskState.IN_PROGRESS:
        return STATUS_NEEDS_ACTION, True
    return STATUS_NEEDS_ACTION, False


def from_remote_status(status: str | None, in_progress_marker: bool) -> TaskState:
    if status == STATUS_COMPLETED:
        return TaskState.COMPLETED
    if in_progress_marker:
        return TaskState.IN_PROGRESS
    return TaskState.TODO


# ---- timestamps ----


def parse_rfc3339(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable timestamp from remote: %r", raw)
        return None


def parse_due(raw: str | None) -> date | None:
    """
    Google stores due as midnight UTC of the calendar day (time part is discarded
    by the API), so the date portion is the due day.
    """
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        logger.debug("Unparseable due date from remote: %r", raw)
        return None


def format_due(d: date | None) -> str | None:
    return None if d is None else f"{d.isoformat()}T00:00:00.000Z"


def format_rfc3339(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---- whole resources ----


def decode_task_list(item: dict[str, Any], *, account_id: str = "") -> TaskList:
    return TaskList(
        id=str(item.get("id") or ""),
        title=str(item.get("title") or ""),
        account_id=account_id,
        updated=parse_rfc3339(item.get("updated")),
    )


def decode_task(item: dict[str, Any], *, list_id: str) -> Task:
    clean, meta = decode_notes(item.get("notes"))
    return Task(
        id=str(item.get("id") or ""),
        title=str(item.get("title") or ""),
        list_id=list_id,
        state=from_remote_status(item.get("status"), meta.in_progress),
        notes=clean,
        due=parse_due(item.get("due")),
        completed_at=parse_rfc3339(item.get("completed")),
        start_date=meta.start_date,
        color=meta.color,
        recurring=meta.recurring,
        priority=meta.priority,
        updated=parse_rfc3339(item.get("updated")),
        position=item.get("position"),
        parent=item.get("parent"),
    )


def encode_task(task: Task, *, now: datetime | None = None) -> dict[str, Any]:
    """
    Remote-visible fields of a local task (the body for PATCH / POST).

    Keys with None values are meaningful for PATCH: they clear the remote field.
    """
    status, marker = to_remote_status(task.state)
    meta = NotesMeta(
        priority=task.priority,
        in_progress=marker,
        recurring=task.recurring,
        start_date=task.start_date,
        color=task.color,
    )
    completed: str | None = None
    if status == STATUS_COMPLETED:
        completed = format_rfc3339(task.completed_at or now or datetime.now(timezone.utc))

    return {
        "title": task.title,
        "notes": encode_notes(task.notes, meta),
        "status": status,
        "due": format_due(task.due),
        "completed": completed,
    }
