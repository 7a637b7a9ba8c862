# src/gtaskall/tasks/task_collection.py

"""
The aggregated task collection shared by the sync engine and the mutation layer.

Only two writers exist:
- SyncEngine.publish (whole-collection replace at the end of a cycle),
- TaskMutator (single-task optimistic updates).

Both run on the same event loop and every write is a synchronous method, so a
reader never observes half of a merge. Readers get copies (snapshot()).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from datetime import date, datetime
from typing import Any

from .task_models import Priority, Task, TaskKey, TaskList, TaskState

logger = logging.getLogger(__name__)

ChangeListener = Callable[["TaskCollection"], None]


class TaskCollection:
    def __init__(self) -> None:
        self._by_list: dict[str, list[Task]] = {}
        self._lists: dict[str, TaskList] = {}
        # Optimistic copies that must survive a publish while their remote call is in flight.
        self._pending: dict[TaskKey, Task] = {}
        self._version = 0
        self._listeners: list[ChangeListener] = []

    # ---- observation ----

    @property
    def version(self) -> int:
        return self._version

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        self._version += 1
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("TaskCollection listener failed")

    # ---- reads ----

    def snapshot(self) -> list[Task]:
        return [t for tasks in self._by_list.values() for t in tasks]

    def tasks_by_list(self) -> dict[str, list[Task]]:
        return {list_id: list(tasks) for list_id, tasks in self._by_list.items()}

    def lists(self) -> list[TaskList]:
        return list(self._lists.values())

    def get_list(self, list_id: str) -> TaskList | None:
        return self._lists.get(list_id)

    def get(self, key: TaskKey) -> Task | None:
        for t in self._by_list.get(key.list_id, ()):
            if t.id == key.task_id:
                return t
        return None

    def find(self, task_id: str) -> Task | None:
        """Look a task up by id alone (ids are unique across Google accounts)."""
        for tasks in self._by_list.values():
            for t in tasks:
                if t.id == task_id:
                    return t
        return None

    def account_slice(self, account_id: str) -> tuple[dict[str, list[Task]], list[TaskList]]:
        """Current lists + tasks of one account (used to keep stale data on transient failures)."""
        lists = [tl for tl in self._lists.values() if tl.account_id == account_id]
        ids = {tl.id for tl in lists}
        tasks = {
            list_id: list(tasks)
            for list_id, tasks in self._by_list.items()
            if list_id in ids or any(t.account_id == account_id for t in tasks)
        }
        return tasks, lists

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_list.values())

    # ---- whole-collection writes ----

    def publish(self, tasks_by_list: Mapping[str, Iterable[Task]], lists: Iterable[TaskList]) -> None:
        """Atomically replace everything with a freshly merged sync result."""
        new_by_list = {list_id: list(tasks) for list_id, tasks in tasks_by_list.items()}

        for key, local in self._pending.items():
            bucket = new_by_list.setdefault(key.list_id, [])
            for i, t in enumerate(bucket):
                if t.id == key.task_id:
                    bucket[i] = local
                    break
            else:
                bucket.append(local)

        self._by_list = new_by_list
        self._lists = {tl.id: tl for tl in lists}
        self._changed()

    def drop_account(self, account_id: str) -> int:
        """Remove every task and list attributed to an account. Returns removed task count."""
        removed = 0
        new_by_list: dict[str, list[Task]] = {}
        for list_id, tasks in self._by_list.items():
            keep = [t for t in tasks if t.account_id != account_id]
            removed += len(tasks) - len(keep)
            if keep:
                new_by_list[list_id] = keep
        self._by_list = new_by_list
        self._lists = {k: v for k, v in self._lists.items() if v.account_id != account_id}
        self._pending = {k: v for k, v in self._pending.items() if v.account_id != account_id}
        self._changed()
        return removed

    # ---- single-task writes (mutation layer) ----

    def upsert(self, task: Task) -> None:
        bucket = self._by_list.setdefault(task.list_id, [])
        for i, t in enumerate(bucket):
            if t.id == task.id:
                bucket[i] = task
                break
        else:
            bucket.insert(0, task)
        self._changed()

    def remove(self, key: TaskKey) -> Task | None:
        bucket = self._by_list.get(key.list_id)
        if not bucket:
            return None
        for i, t in enumerate(bucket):
            if t.id == key.task_id:
                del bucket[i]
                self._changed()
                return t
        return None

    def replace_key(self, old: TaskKey, task: Task) -> None:
        """Swap a task stored under `old` for `task` (e.g. local temp id -> server id)."""
        bucket = self._by_list.setdefault(old.list_id, [])
        for i, t in enumerate(bucket):
            if t.id == old.task_id:
                del bucket[i]
                break
        target = self._by_list.setdefault(task.list_id, [])
        target[:] = [t for t in target if t.id != task.id]
        target.insert(0, task)
        self._changed()

    def set_pending(self, task: Task) -> None:
        self._pending[task.key] = task
        self.upsert(task)

    def clear_pending(self, key: TaskKey) -> None:
        self._pending.pop(key, None)

    def has_pending(self, key: TaskKey) -> bool:
        return key in self._pending

    # ---- persistence helpers ----

    def to_json(self) -> dict[str, Any]:
        return {
            "lists": [_list_to_json(tl) for tl in self._lists.values()],
            "tasks": [_task_to_json(t) for t in self.snapshot()],
        }

    def load_json(self, data: Mapping[str, Any]) -> None:
        """Restore a cached collection (before the first sync cycle completes)."""
        lists = [_list_from_json(x) for x in data.get("lists") or [] if isinstance(x, dict)]
        by_list: dict[str, list[Task]] = {}
        for raw in data.get("tasks") or []:
            if not isinstance(raw, dict):
                continue
            try:
                t = _task_from_json(raw)
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed cached task: %r", raw)
                continue
            by_list.setdefault(t.list_id, []).append(t)
        self._by_list = by_list
        self._lists = {tl.id: tl for tl in lists}
        self._changed()


def _iso(v: date | datetime | None) -> str | None:
    return None if v is None else v.isoformat()


def _task_to_json(t: Task) -> dict[str, Any]:
    return {
        "id": t.id,
        "title": t.title,
        "list_id": t.list_id,
        "account_id": t.account_id,
        "state": t.state.value,
        "notes": t.notes,
        "due": _iso(t.due),
        "completed_at": _iso(t.completed_at),
        "start_date": _iso(t.start_date),
        "color": t.color,
        "recurring": t.recurring,
        "priority": int(t.priority),
        "updated": _iso(t.updated),
        "position": t.position,
        "parent": t.parent,
        "account_email": t.account_email,
        "account_name": t.account_name,
        "account_picture": t.account_picture,
    }


def _task_from_json(d: Mapping[str, Any]) -> Task:
    def _d(v: Any) -> date | None:
        return date.fromisoformat(v) if v else None

    def _dt(v: Any) -> datetime | None:
        return datetime.fromisoformat(v) if v else None

    base = Task(id=str(d["id"]), title=str(d.get("title") or ""), list_id=str(d["list_id"]))
    return replace(
        base,
        account_id=str(d.get("account_id") or ""),
        state=TaskState.parse(d.get("state")),
        notes=str(d.get("notes") or ""),
        due=_d(d.get("due")),
        completed_at=_dt(d.get("completed_at")),
        start_date=_d(d.get("start_date")),
        color=d.get("color"),
        recurring=bool(d.get("recurring")),
        priority=Priority.coerce(d.get("priority")),
        updated=_dt(d.get("updated")),
        position=d.get("position"),
        parent=d.get("parent"),
        account_email=str(d.get("account_email") or ""),
        account_name=str(d.get("account_name") or ""),
        account_picture=str(d.get("account_picture") or ""),
    )


def _list_to_json(tl: TaskList) -> dict[str, Any]:
    return {"id": tl.id, "title": tl.title, "account_id": tl.account_id, "updated": _iso(tl.updated)}


def _list_from_json(d: Mapping[str, Any]) -> TaskList:
    return TaskList(
        id=str(d.get("id") or ""),
        title=str(d.get("title") or ""),
        account_id=str(d.get("account_id") or ""),
        updated=datetime.fromisoformat(d["updated"]) if d.get("updated") else None,
    )
