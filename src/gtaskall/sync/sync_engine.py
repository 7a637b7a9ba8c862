# src/gtaskall/sync/sync_engine.py

"""
Sync engine.

One owned instance per application. It holds the registry, the remote client,
the task collection, its scheduler state and the in-flight flag.

A cycle:
- snapshots the active accounts,
- fans out one fetch per account (lists, then every list's tasks concurrently),
- tags each task with its owning account,
- on 401 marks the account expired and leaves it out of the merge,
- on a transient error keeps that account's previous tasks,
- waits for every account, then publishes the merged result in one replace.

If no account succeeds the collection is left untouched.

Scheduling has one source of truth, `next_due_at`:
- baseline: visible_interval while visible, hidden_interval while hidden,
- request_sync_soon(): trailing debounce (bursts collapse into one cycle),
- trigger_now() / on_visibility_change(True): due immediately.
Triggers arriving while a cycle is in flight are dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from ..accounts.registry import Account, AccountRegistry
from ..core.errors import AccountNotFoundError, RemoteTaskError, UnauthorizedError
from ..core.ports import TaskStoreClient
from ..tasks.task_collection import TaskCollection
from ..tasks.task_models import Task, TaskList

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CycleReport:
    started_at: float
    finished_at: float = 0.0
    succeeded: list[str] = field(default_factory=list)
    expired: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    task_count: int = 0
    published: bool = False
    skipped_reason: str | None = None

    @property
    def duration(self) -> float:
        return max(0.0, self.finished_at - self.started_at)


@dataclass(slots=True)
class _AccountFetch:
    account: Account
    lists: list[TaskList] = field(default_factory=list)
    tasks_by_list: dict[str, list[Task]] = field(default_factory=dict)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def unauthorized(self) -> bool:
        return isinstance(self.error, UnauthorizedError)


CycleListener = Callable[[CycleReport], None]


class SyncEngine:
    def __init__(
        self,
        registry: AccountRegistry,
        client: TaskStoreClient,
        collection: TaskCollection,
        *,
        visible_interval: float = 15.0,
        hidden_interval: float = 60.0,
        soon_debounce: float = 2.0,
        idle_hidden_seconds: float = 300.0,
        on_cycle: CycleListener | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._client = client
        self._collection = collection

        self._visible_interval = max(0.01, float(visible_interval))
        self._hidden_interval = max(self._visible_interval, float(hidden_interval))
        self._soon_debounce = max(0.0, float(soon_debounce))
        self._idle_hidden_seconds = float(idle_hidden_seconds)
        self._on_cycle = on_cycle
        self._clock = clock

        now = clock()
        self._visible = True
        self._last_activity = now
        self._baseline_due = now
        self._soon_at: float | None = None
        self._soon_seq = 0

        self._in_flight = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._wake = asyncio.Event()
        self._stopped = False
        self._task: asyncio.Task[None] | None = None

        self.last_report: CycleReport | None = None

    # ---- scheduler state ----

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def is_visible(self) -> bool:
        if not self._visible:
            return False
        if self._idle_hidden_seconds <= 0:
            return True
        return (self._clock() - self._last_activity) < self._idle_hidden_seconds

    @property
    def current_interval(self) -> float:
        return self._visible_interval if self.is_visible else self._hidden_interval

    @property
    def next_due_at(self) -> float:
        if self._soon_at is None:
            return self._baseline_due
        return min(self._baseline_due, self._soon_at)

    # ---- external hooks ----

    def trigger_now(self) -> bool:
        """Run a cycle as soon as possible. Dropped (returns False) while a cycle is in flight."""
        if self._in_flight:
            logger.debug("trigger_now dropped: cycle in flight")
            return False
        self._soon_at = self._clock()
        self._soon_seq += 1
        self._wake.set()
        return True

    def request_sync_soon(self) -> None:
        """Debounced sync after a local mutation; a burst of calls yields one cycle."""
        self._soon_at = self._clock() + self._soon_debounce
        self._soon_seq += 1
        self._wake.set()

    def on_visibility_change(self, visible: bool) -> None:
        was_visible = self.is_visible
        self._visible = bool(visible)
        if visible:
            self._last_activity = self._clock()
        logger.debug("Visibility changed visible=%s (was %s)", visible, was_visible)
        if visible and not was_visible:
            self.trigger_now()

    def note_activity(self) -> None:
        """User did something; counts as a visibility signal."""
        self.on_visibility_change(True)

    # ---- lifecycle ----

    def start(self) -> asyncio.Task[None]:
        """Start the scheduler loop on the running event loop."""
        if self._task is not None and not self._task.done():
            return self._task
        self._stopped = False
        self._task = asyncio.get_running_loop().create_task(self.run(), name="gtaskall-sync")
        logger.info(
            "Sync engine started (visible=%.1fs hidden=%.1fs debounce=%.1fs)",
            self._visible_interval,
            self._hidden_interval,
            self._soon_debounce,
        )
        return self._task

    async def stop(self, timeout: float = 30.0) -> None:
        """
        Stop scheduling. An in-flight cycle finishes its network calls but its
        result is not published.
        """
        self._stopped = True
        self._wake.set()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Sync loop did not stop within %.1fs; cancelling", timeout)
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Sync engine stopped")

    async def run(self) -> None:
        while not self._stopped:
            if self._in_flight:
                await self._idle.wait()
                continue

            delay = self.next_due_at - self._clock()
            if delay > 0:
                self._wake.clear()
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._wake.wait(), timeout=delay)
                continue

            try:
                await self.run_cycle()
            except Exception:
                # run_cycle isolates per-account failures; this is a bug guard for the loop itself.
                logger.exception("Sync cycle crashed")
                self._baseline_due = self._clock() + self.current_interval

    # ---- one cycle ----

    async def run_cycle(self) -> CycleReport | None:
        """Run one full cycle now. Returns None if another cycle is already in flight."""
        if self._in_flight:
            logger.debug("run_cycle skipped: cycle in flight")
            return None

        self._in_flight = True
        self._idle.clear()
        seq_at_start = self._soon_seq
        report = CycleReport(started_at=self._clock())
        try:
            await self._cycle(report)
        finally:
            report.finished_at = self._clock()
            self._in_flight = False
            self._idle.set()
            self._baseline_due = report.finished_at + self.current_interval
            if self._soon_seq == seq_at_start:
                self._soon_at = None

        self.last_report = report
        logger.info(
            "Sync cycle done ok=%d expired=%d failed=%d tasks=%d published=%s (%.2fs)",
            len(report.succeeded),
            len(report.expired),
            len(report.failed),
            report.task_count,
            report.published,
            report.duration,
        )
        if self._on_cycle is not None:
            try:
                self._on_cycle(report)
            except Exception:
                logger.exception("on_cycle listener failed")
        return report

    async def _cycle(self, report: CycleReport) -> None:
        accounts = self._registry.active_accounts()
        if not accounts:
            report.skipped_reason = "no active accounts"
            logger.debug("Sync cycle skipped: no active accounts")
            return

        results = await asyncio.gather(*(self._fetch_account(a) for a in accounts))

        for r in results:
            if r.ok:
                report.succeeded.append(r.account.id)
            elif r.unauthorized:
                report.expired.append(r.account.id)
            else:
                report.failed.append(r.account.id)

        if self._stopped:
            report.skipped_reason = "engine stopped"
            return

        if not report.succeeded:
            report.skipped_reason = "no account succeeded"
            logger.warning("Sync cycle: no account succeeded; keeping last known state")
            return

        present = {a.id for a in self._registry.all_accounts()}
        merged: dict[str, list[Task]] = {}
        lists: list[TaskList] = []

        for r in results:
            if r.account.id not in present:
                continue
            if r.ok:
                tasks_by_list, account_lists = r.tasks_by_list, r.lists
            elif r.unauthorized:
                continue
            else:
                tasks_by_list, account_lists = self._collection.account_slice(r.account.id)
            lists.extend(account_lists)
            for list_id, tasks in tasks_by_list.items():
                merged.setdefault(list_id, []).extend(tasks)

        self._collection.publish(merged, lists)
        report.published = True
        report.task_count = sum(len(v) for v in merged.values())

    async def _fetch_account(self, account: Account) -> _AccountFetch:
        token = account.access_token or ""
        try:
            raw_lists = await self._client.list_task_lists(token)
            per_list = await asyncio.gather(
                *(self._client.list_tasks(token, tl.id) for tl in raw_lists),
                return_exceptions=True,
            )
            errors = [r for r in per_list if isinstance(r, BaseException)]
            if errors:
                raise next((e for e in errors if isinstance(e, UnauthorizedError)), errors[0])
        except UnauthorizedError as e:
            logger.warning("Account %s unauthorized: %s", account.email, e)
            self._expire(account)
            return _AccountFetch(account=account, error=e)
        except RemoteTaskError as e:
            logger.warning("Account %s fetch failed (will retry next cycle): %s", account.email, e)
            return _AccountFetch(account=account, error=e)
        except Exception as e:
            logger.exception("Account %s fetch crashed", account.email)
            return _AccountFetch(account=account, error=e)

        lists = [replace(tl, account_id=account.id) for tl in raw_lists]
        tasks_by_list: dict[str, list[Task]] = {}
        for tl, tasks in zip(lists, per_list):
            tasks_by_list[tl.id] = [
                t.tagged(
                    account_id=account.id,
                    email=account.email,
                    name=account.name,
                    picture=account.picture,
                )
                for t in tasks  # type: ignore[union-attr]
            ]
        logger.debug(
            "Account %s fetched lists=%d tasks=%d",
            account.email,
            len(lists),
            sum(len(v) for v in tasks_by_list.values()),
        )
        return _AccountFetch(account=account, lists=lists, tasks_by_list=tasks_by_list)

    def _expire(self, account: Account) -> None:
        try:
            self._registry.mark_expired(account.id)
        except AccountNotFoundError:
            logger.debug("Account %s removed before it could be marked expired", account.id)
