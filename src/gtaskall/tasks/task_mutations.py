# src/gtaskall/tasks/task_mutations.py

"""
Optimistic mutations.

Every action follows the same shape:
1. compute the desired task and put it into the collection (synchronously,
   before the first await), marked pending so a sync publish cannot undo it;
2. PATCH / POST it to the remote store;
3. success: the server response (re-tagged with the account identity)
   replaces the local copy and a debounced sync is requested;
4. failure: the pre-mutation task is restored exactly and MutationError is
   raised. A 401 also marks the owning account expired.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import date, datetime, timezone
from enum import StrEnum

from ..accounts.registry import Account, AccountRegistry
from ..core.errors import (
    AccountNotFoundError,
    MutationError,
    TaskNotFoundError,
    UnauthorizedError,
)
from ..core.ports import SyncRequester, TaskStoreClient
from .notes_codec import normalize_color
from .task_collection import TaskCollection
from .task_models import Priority, Task, TaskKey, TaskState

logger = logging.getLogger(__name__)

LOCAL_ID_PREFIX = "local-"

_UNSET = object()


class BoardColumn(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"

    @classmethod
    def parse(cls, raw: str) -> BoardColumn:
        s = raw.strip().lower().replace("-", "_").replace(" ", "_")
        aliases = {
            "completed": cls.DONE,
            "active": cls.IN_PROGRESS,
            "doing": cls.IN_PROGRESS,
            "review": cls.IN_PROGRESS,
            "to_do": cls.TODO,
        }
        if s in aliases:
            return aliases[s]
        return cls(s)


def new_local_id() -> str:
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex[:8]}"


def is_local_id(task_id: str) -> bool:
    return task_id.startswith(LOCAL_ID_PREFIX)


class TaskMutator:
    def __init__(
        self,
        collection: TaskCollection,
        registry: AccountRegistry,
        client: TaskStoreClient,
        *,
        sync: SyncRequester | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        id_factory: Callable[[], str] = new_local_id,
    ) -> None:
        self._collection = collection
        self._registry = registry
        self._client = client
        self._sync = sync
        self._now = now
        self._id_factory = id_factory
        # Due dates of tasks that left the TODO column, restored when they come back.
        self._remembered_due: dict[TaskKey, date] = {}
        collection.subscribe(self._forget_vanished)

    def attach_sync(self, sync: SyncRequester) -> None:
        self._sync = sync

    # ---- lookups ----

    def _require(self, key: TaskKey | str) -> Task:
        task = self._collection.find(key) if isinstance(key, str) else self._collection.get(key)
        if task is None:
            raise TaskNotFoundError(key)
        return task

    def _require_settled(self, key: TaskKey | str, action: str) -> Task:
        task = self._require(key)
        if is_local_id(task.id):
            raise MutationError(action, RuntimeError("task is still being created"))
        if self._collection.has_pending(task.key):
            raise MutationError(action, RuntimeError("another change to this task is still in flight"))
        return task

    def _account_of(self, task: Task) -> Account:
        account_id = task.account_id
        if not account_id:
            tl = self._collection.get_list(task.list_id)
            account_id = tl.account_id if tl is not None else ""
        return self._registry.get(account_id)

    # ---- actions ----

    async def complete(self, key: TaskKey | str) -> Task:
        task = self._require_settled(key, "complete")
        self._remember_due(task)
        desired = replace(task, state=TaskState.COMPLETED, completed_at=self._now())
        return await self._patch("complete", task, desired)

    async def uncomplete(self, key: TaskKey | str) -> Task:
        task = self._require_settled(key, "uncomplete")
        desired = replace(task, state=TaskState.TODO, completed_at=None)
        return await self._patch("uncomplete", task, desired)

    async def reschedule(self, key: TaskKey | str, due: date | None) -> Task:
        task = self._require_settled(key, "reschedule")
        return await self._patch("reschedule", task, replace(task, due=due))

    async def edit(
        self,
        key: TaskKey | str,
        *,
        title: str | None = None,
        notes: str | None = None,
        priority: Priority | None = None,
        color: object = _UNSET,
        start_date: object = _UNSET,
        recurring: bool | None = None,
    ) -> Task:
        """Change any subset of the editable fields. color/start_date accept None to clear."""
        task = self._require_settled(key, "edit")
        changes: dict[str, object] = {}
        if title is not None:
            if not title.strip():
                raise ValueError("title must not be empty")
            changes["title"] = title.strip()
        if notes is not None:
            changes["notes"] = notes
        if priority is not None:
            changes["priority"] = Priority.coerce(priority)
        if color is not _UNSET:
            changes["color"] = None if color is None else normalize_color(str(color))
        if start_date is not _UNSET:
            changes["start_date"] = start_date
        if recurring is not None:
            changes["recurring"] = bool(recurring)
        if not changes:
            return task
        return await self._patch("edit", task, replace(task, **changes))  # type: ignore[arg-type]

    async def move_to_column(self, key: TaskKey | str, column: BoardColumn | date) -> Task:
        """
        Board moves.

        DONE        -> completed
        IN_PROGRESS -> in-progress marker, completion cleared
        TODO        -> both cleared, remembered due date restored if the task lost it
        a date      -> reschedule to that day
        """
        task = self._require_settled(key, "move")
        if isinstance(column, date):
            return await self._patch("move", task, replace(task, due=column))

        column = BoardColumn(column)
        if column != BoardColumn.TODO:
            self._remember_due(task)

        if column == BoardColumn.DONE:
            desired = replace(task, state=TaskState.COMPLETED, completed_at=task.completed_at or self._now())
        elif column == BoardColumn.IN_PROGRESS:
            desired = replace(task, state=TaskState.IN_PROGRESS, completed_at=None)
        else:
            due = task.due
            remembered = self._remembered_due.pop(task.key, None)
            if due is None and remembered is not None:
                due = remembered
            desired = replace(task, state=TaskState.TODO, completed_at=None, due=due)

        if desired == task:
            return task
        return await self._patch("move", task, desired)

    async def create(
        self,
        list_id: str,
        title: str,
        *,
        notes: str = "",
        due: date | None = None,
        priority: Priority = Priority.NONE,
        state: TaskState = TaskState.TODO,
        start_date: date | None = None,
        color: str | None = None,
        recurring: bool = False,
    ) -> Task:
        if not title.strip():
            raise ValueError("title must not be empty")
        if color is not None:
            color = normalize_color(color)
        tl = self._collection.get_list(list_id)
        if tl is None:
            raise TaskNotFoundError(list_id)
        account = self._registry.get(tl.account_id)

        local = Task(
            id=self._id_factory(),
            title=title.strip(),
            list_id=list_id,
            state=state,
            notes=notes,
            due=due,
            completed_at=self._now() if state == TaskState.COMPLETED else None,
            start_date=start_date,
            color=color,
            recurring=recurring,
            priority=Priority.coerce(priority),
            updated=self._now(),
        ).tagged(
            account_id=account.id,
            email=account.email,
            name=account.name,
            picture=account.picture,
        )
        self._collection.set_pending(local)

        try:
            created = await self._client.insert_task(self._token(account), list_id, local)
        except Exception as e:
            self._collection.clear_pending(local.key)
            self._collection.remove(local.key)
            self._on_remote_failure("create", account, e)
            raise MutationError("create", e) from e

        created = self._tag(created, account)
        self._collection.clear_pending(local.key)
        self._collection.replace_key(local.key, created)
        logger.info("Task created id=%s list=%s account=%s", created.id, list_id, account.email)
        self._request_sync()
        return created

    # ---- shared path ----

    async def _patch(self, action: str, before: Task, desired: Task) -> Task:
        account = self._account_of(before)
        self._collection.set_pending(desired)
        try:
            server = await self._client.patch_task(
                self._token(account), before.list_id, before.id, desired
            )
        except Exception as e:
            self._collection.clear_pending(before.key)
            self._collection.upsert(before)
            self._on_remote_failure(action, account, e)
            raise MutationError(action, e) from e

        reconciled = self._tag(server, account)
        self._collection.clear_pending(before.key)
        self._collection.upsert(reconciled)
        logger.debug("Mutation %s ok task=%s", action, before.id)
        self._request_sync()
        return reconciled

    def _token(self, account: Account) -> str:
        if not account.can_sync:
            raise UnauthorizedError(f"Account {account.email} needs to be reconnected.")
        return account.access_token or ""

    def _tag(self, task: Task, account: Account) -> Task:
        return task.tagged(
            account_id=account.id,
            email=account.email,
            name=account.name,
            picture=account.picture,
        )

    def _remember_due(self, task: Task) -> None:
        if task.state == TaskState.TODO and task.due is not None:
            self._remembered_due[task.key] = task.due

    def _forget_vanished(self, collection: TaskCollection) -> None:
        for key in [k for k in self._remembered_due if collection.get(k) is None]:
            del self._remembered_due[key]

    def _on_remote_failure(self, action: str, account: Account, error: Exception) -> None:
        logger.warning("Mutation %s failed account=%s: %s", action, account.email, error)
        if isinstance(error, UnauthorizedError):
            try:
                self._registry.mark_expired(account.id)
            except AccountNotFoundError:
                logger.debug("Account %s already removed", account.id)

    def _request_sync(self) -> None:
        if self._sync is not None:
            self._sync.request_sync_soon()
