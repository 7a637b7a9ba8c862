# src/gtaskall/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import date, timedelta
from typing import cast

from ..accounts.registry import Account
from ..core.errors import GTaskAllError
from ..core.state import AppState
from ..llm.summary import make_llm_client, resolve_api_key, summarize
from ..tasks.task_models import Priority, Task, TaskState
from ..tasks.quick_add import find_account_tag, parse_natural_date, strip_phrase
from ..tasks.task_mutations import BoardColumn
from ..tasks.task_views import (
    Bucket,
    GroupBy,
    SortBy,
    StatusFilter,
    ViewOptions,
    aggregate,
    day_window,
    kanban_columns,
    local_today,
    search,
    sort_tasks,
    today_view,
)

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /sync, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                return cast(CommandHandler3, handler)(state, args, emit)
            return cast(CommandHandler2, handler)(state, args)
        except GTaskAllError as e:
            logger.info("/%s failed: %s", name, e)
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def _today(state: AppState) -> date:
    return state.view_options.today or local_today()


def _parse_day(raw: str, today: date) -> date | None:
    """today / tomorrow / +N / YYYY-MM-DD; 'none' means no date."""
    s = raw.strip().lower()
    if s in ("none", "-", "clear"):
        return None
    if s == "today":
        return today
    if s == "tomorrow":
        return today + timedelta(days=1)
    if s.startswith("+") and s[1:].isdigit():
        return today + timedelta(days=int(s[1:]))
    return date.fromisoformat(s)


def _split_kv(args: Sequence[str]) -> tuple[list[str], dict[str, str]]:
    words: list[str] = []
    kv: dict[str, str] = {}
    for a in args:
        k, sep, v = a.partition("=")
        if sep and k.isidentifier():
            kv[k.lower()] = v
        else:
            words.append(a)
    return words, kv


def _fmt_task(i: int, t: Task, today: date) -> str:
    box = {TaskState.TODO: "[ ]", TaskState.IN_PROGRESS: "[~]", TaskState.COMPLETED: "[x]"}[t.state]
    extras: list[str] = []
    if t.due is not None:
        extras.append(("OVERDUE " if t.is_overdue(today) else "due ") + t.due.isoformat())
    if t.priority != Priority.NONE:
        extras.append(f"P{int(t.priority)}")
    if t.recurring:
        extras.append("recurring")
    owner = t.account_name or t.account_email
    if owner:
        extras.append(owner)
    suffix = f"  ({', '.join(extras)})" if extras else ""
    return f"{i:>3}. {box} {t.title or '(untitled)'}{suffix}"


def _render_buckets(state: AppState, buckets: Sequence[Bucket], *, skip_empty: bool = False) -> str:
    today = _today(state)
    listing: list[Task] = []
    lines: list[str] = []
    for b in buckets:
        if skip_empty and not b.tasks:
            continue
        lines.append(f"== {b.label} ({len(b.tasks)})")
        for t in b.tasks:
            listing.append(t)
            lines.append(_fmt_task(len(listing), t, today))
    state.last_listing = listing
    return "\n".join(lines) if lines else "No tasks."


def _render_flat(state: AppState, title: str, tasks: Sequence[Task]) -> str:
    return _render_buckets(state, [Bucket(key="flat", label=title, tasks=tuple(tasks))])


def _resolve_task(state: AppState, ref: str) -> Task:
    if ref.isdigit():
        n = int(ref)
        if 1 <= n <= len(state.last_listing):
            listed = state.last_listing[n - 1]
            current = state.call(state.collection.get, listed.key)
            if current is not None:
                return current
    tasks = state.call(state.collection.snapshot)
    matches = [t for t in tasks if t.id == ref or t.id.startswith(ref)]
    if len(matches) != 1:
        raise GTaskAllError(f"No single task matches {ref!r}. List tasks first and use their number.")
    return matches[0]


def _resolve_account(state: AppState, ref: str) -> Account:
    accounts = state.call(state.registry.all_accounts)
    if ref.isdigit() and 1 <= int(ref) <= len(accounts):
        return accounts[int(ref) - 1]
    acc = state.call(state.registry.find, ref)
    if acc is None:
        raise GTaskAllError(f"Unknown account: {ref}")
    return acc


# ---- general ----


def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    accounts = state.call(state.registry.all_accounts)
    active = sum(1 for a in accounts if a.can_sync)
    total = state.call(len, state.collection)
    report = state.engine.last_report
    if report is None:
        last = "never"
    else:
        last = (
            f"ok={len(report.succeeded)} expired={len(report.expired)} "
            f"failed={len(report.failed)} published={report.published}"
        )
    return (
        "Status:\n"
        f"  Accounts: {len(accounts)} ({active} active)\n"
        f"  Tasks: {total}\n"
        f"  Last sync: {last}\n"
        f"  Visible: {'yes' if state.engine.is_visible else 'no'} "
        f"(interval {state.engine.current_interval:.0f}s)"
    )


def cmd_visible(state: AppState, args: list[str]) -> str:
    """/visible on|off -> focus signal for the sync scheduler."""
    if not args or args[0].lower() not in ("on", "off"):
        return "Usage: /visible on | /visible off"
    visible = args[0].lower() == "on"
    state.call(state.engine.on_visibility_change, visible)
    return f"Visibility set to {'visible' if visible else 'hidden'}."


# ---- accounts ----


def cmd_accounts(state: AppState, args: list[str]) -> str:
    accounts = state.call(state.registry.all_accounts)
    if not accounts:
        return "No accounts connected. Use /connect."
    lines = ["Accounts:"]
    for i, a in enumerate(accounts, start=1):
        flag = "" if a.can_sync else "  <- needs /reconnect"
        lines.append(f"{i:>3}. {a.display_name} <{a.email}> [{a.status.value}]{flag}")
    return "\n".join(lines)


def cmd_connect(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if state.oauth is None:
        return "OAuth is not configured."
    if emit:
        with contextlib.suppress(Exception):
            emit("[OAUTH] Opening the browser for Google sign-in...")
    acc = state.run(state.oauth.connect())
    state.call(state.engine.trigger_now)
    return f"Connected {acc.email}."


def cmd_reconnect(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if state.oauth is None:
        return "OAuth is not configured."
    if not args:
        return "Usage: /reconnect <account number|email>"
    acc = _resolve_account(state, args[0])
    if emit:
        with contextlib.suppress(Exception):
            emit(f"[OAUTH] Reconnecting {acc.email}...")
    acc = state.run(state.oauth.reconnect(acc.id))
    state.call(state.engine.trigger_now)
    return f"{acc.email} is active again."


def cmd_remove(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /remove <account number|email>"
    acc = _resolve_account(state, args[0])
    state.call(state.registry.remove_account, acc.id)
    return f"Removed {acc.email}."


def cmd_apikey(state: AppState, args: list[str]) -> str:
    """/apikey <key> [account email] -> store an LLM API key (encrypted)."""
    if not args:
        return "Usage: /apikey <key> [account email]"
    main = getattr(state.settings, "main_user_email", "")
    if state.connections is None or not main:
        return "Set GTASKALL_MAIN_USER_EMAIL to store API keys."
    account_email = args[1] if len(args) > 1 else main
    state.connections.put_api_key(main, account_email, args[0])  # type: ignore[attr-defined]
    return f"API key stored for {account_email}."


# ---- sync ----


def cmd_sync(state: AppState, args: list[str]) -> str:
    report = state.run(state.engine.run_cycle())
    if report is None:
        return "A sync is already in progress."
    if report.skipped_reason and not report.published:
        return f"Sync finished without changes: {report.skipped_reason}."
    msg = f"Synced {report.task_count} tasks from {len(report.succeeded)} account(s)."
    if report.expired:
        msg += f" Needs reconnect: {', '.join(report.expired)}."
    if report.failed:
        msg += f" Failed (kept previous data): {', '.join(report.failed)}."
    return msg


# ---- views ----


def cmd_today(state: AppState, args: list[str]) -> str:
    tasks = state.call(state.collection.snapshot)
    return _render_flat(state, "Today", today_view(tasks, _today(state)))


WEEK_USAGE = "Usage: /week [YYYY-MM-DD|today|tomorrow|+N] [days]"


def cmd_week(state: AppState, args: list[str]) -> str:
    """/week [start] [days]"""
    today = _today(state)
    try:
        start = _parse_day(args[0], today) if args else today
        days = int(args[1]) if len(args) > 1 else int(getattr(state.settings, "window_days", 7))
    except ValueError:
        return WEEK_USAGE
    if days < 1:
        return WEEK_USAGE
    tasks = state.call(state.collection.snapshot)
    buckets = [
        Bucket(key=d.day.isoformat(), label=d.label, tasks=d.tasks)
        for d in day_window(tasks, start or today, days, today=today)
    ]
    return _render_buckets(state, buckets)


def cmd_board(state: AppState, args: list[str]) -> str:
    tasks = state.call(state.collection.snapshot)
    return _render_buckets(state, kanban_columns(tasks, state.view_options.sort))


def cmd_list(state: AppState, args: list[str]) -> str:
    """
    /list [group=date|account|list|priority|status|day|none] [sort=...] [status=all|active|completed] [query words]

    Options are remembered for the next /list.
    """
    words, kv = _split_kv(args)
    opts = state.view_options
    try:
        if "group" in kv:
            opts = replace(opts, group_by=GroupBy(kv["group"]))
        if "sort" in kv:
            opts = replace(opts, sort=SortBy(kv["sort"]))
        if "status" in kv:
            opts = replace(opts, status=StatusFilter(kv["status"]))
    except ValueError as e:
        return f"Invalid option: {e}"
    state.view_options = opts
    if words:
        opts = replace(opts, query=" ".join(words))

    tasks = state.call(state.collection.snapshot)
    titles = {tl.id: tl.title for tl in state.call(state.collection.lists)}
    buckets = aggregate(tasks, opts, list_titles=titles)
    return _render_buckets(state, buckets, skip_empty=opts.group_by == GroupBy.DATE)


def cmd_search(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /search <text>"
    tasks = state.call(state.collection.snapshot)
    found = sort_tasks(search(tasks, " ".join(args)), state.view_options.sort)
    return _render_flat(state, f"Search: {' '.join(args)}", found)


# ---- mutations ----


def cmd_done(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /done <n>"
    t = _resolve_task(state, args[0])
    done = state.run(state.mutator.complete(t.key))
    return f"Completed: {done.title}"


def cmd_undo(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /undo <n>"
    t = _resolve_task(state, args[0])
    back = state.run(state.mutator.uncomplete(t.key))
    return f"Reopened: {back.title}"


def cmd_move(state: AppState, args: list[str]) -> str:
    """/move <n> <todo|in_progress|done|YYYY-MM-DD>"""
    if len(args) < 2:
        return "Usage: /move <n> <todo|in_progress|done|date>"
    t = _resolve_task(state, args[0])
    target: BoardColumn | date
    try:
        target = BoardColumn.parse(args[1])
    except ValueError:
        try:
            day = _parse_day(args[1], _today(state))
        except ValueError:
            return f"Unknown column: {args[1]}"
        if day is None:
            return "A day column needs a date."
        target = day
    moved = state.run(state.mutator.move_to_column(t.key, target))
    return f"Moved: {moved.title} -> {args[1]}"


def cmd_due(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /due <n> <YYYY-MM-DD|today|tomorrow|+N|none>"
    t = _resolve_task(state, args[0])
    try:
        due = _parse_day(args[1], _today(state))
    except ValueError:
        return f"Invalid date: {args[1]}"
    updated = state.run(state.mutator.reschedule(t.key, due))
    return f"Rescheduled: {updated.title} -> {due.isoformat() if due else 'no date'}"


def cmd_edit(state: AppState, args: list[str]) -> str:
    """/edit <n> [title words...] [priority=1-4] [color=#rrggbb|none] [start=DATE|none] [recurring=yes|no]"""
    if not args:
        return "Usage: /edit <n> [new title] [priority=..] [color=..] [start=..] [recurring=..]"
    t = _resolve_task(state, args[0])
    words, kv = _split_kv(args[1:])
    changes: dict[str, object] = {}
    if words:
        changes["title"] = " ".join(words)
    if "priority" in kv:
        changes["priority"] = Priority.coerce(kv["priority"])
    if "color" in kv:
        changes["color"] = None if kv["color"].lower() in ("", "none") else kv["color"]
    if "start" in kv:
        try:
            changes["start_date"] = _parse_day(kv["start"], _today(state))
        except ValueError:
            return f"Invalid date: {kv['start']}"
    if "recurring" in kv:
        changes["recurring"] = kv["recurring"].lower() in ("1", "yes", "true", "on")
    if not changes:
        return "Nothing to change."
    try:
        updated = state.run(state.mutator.edit(t.key, **changes))  # type: ignore[arg-type]
    except ValueError as e:
        return f"Invalid edit: {e}"
    return f"Updated: {updated.title}"


def cmd_note(state: AppState, args: list[str]) -> str:
    if len(args) < 1:
        return "Usage: /note <n> <text...>"
    t = _resolve_task(state, args[0])
    updated = state.run(state.mutator.edit(t.key, notes=" ".join(args[1:])))
    return f"Notes updated: {updated.title}"


def cmd_add(state: AppState, args: list[str]) -> str:
    """
    /add <title...> [list=<title or id>] [due=DATE] [priority=1-4]

    Without due=, a date phrase in the title (today, tmr, next week, weekend,
    friday, ...) becomes the due date, and a #tag naming an account picks its lists.
    Both are removed from the title.
    """
    words, kv = _split_kv(args)
    if not words:
        return "Usage: /add <title...> [list=..] [due=..] [priority=..]"
    today = _today(state)
    title = " ".join(words)

    accounts = state.call(state.registry.active_accounts)
    active = {a.id for a in accounts}
    tag = find_account_tag(title, accounts)
    if tag is not None:
        active = {tag.account.id}
        title = strip_phrase(title, tag.text)

    due: date | None = None
    if "due" in kv:
        try:
            due = _parse_day(kv["due"], today)
        except ValueError:
            return f"Invalid date: {kv['due']}"
    else:
        found = parse_natural_date(title, today)
        if found is not None:
            due = found.day
            title = strip_phrase(title, found.text)
    if not title:
        return "Usage: /add <title...> [list=..] [due=..] [priority=..]"

    lists = state.call(state.collection.lists)
    candidates = [tl for tl in lists if tl.account_id in active]
    if "list" in kv:
        needle = kv["list"].casefold()
        candidates = [tl for tl in candidates if tl.id == kv["list"] or tl.title.casefold() == needle]
    if not candidates:
        return "No matching task list (is an account connected and synced?)."
    created = state.run(
        state.mutator.create(
            candidates[0].id,
            title,
            due=due,
            priority=Priority.coerce(kv.get("priority")),
        )
    )
    suffix = f", due {created.due.isoformat()}" if created.due else ""
    return f"Created: {created.title} in {candidates[0].title}{suffix}"


# ---- AI ----


def cmd_summary(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    today = _today(state)
    tasks = today_view(state.call(state.collection.snapshot), today)
    api_key = resolve_api_key(state.settings, state.connections, args[0] if args else None)
    llm = make_llm_client(state.settings, api_key)
    if emit:
        with contextlib.suppress(Exception):
            emit(f"[AI] Summarizing {len(tasks)} task(s)...")
    result = state.run(
        summarize(llm, tasks, today=today, language=getattr(state.settings, "summary_language", "English"))
    )
    lines = [result.summary]
    lines.extend(f"  - {i}" for i in result.insights)
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show accounts, task count and last sync.")
registry.register("visible", cmd_visible, help_text="Focus signal for the scheduler: /visible on | off.")
registry.register("accounts", cmd_accounts, help_text="List connected accounts.", aliases=["acc"])
registry.register("connect", cmd_connect, help_text="Connect a Google account (browser sign-in).")
registry.register("reconnect", cmd_reconnect, help_text="Reconnect an expired account: /reconnect <n|email>.")
registry.register("remove", cmd_remove, help_text="Disconnect an account: /remove <n|email>.")
registry.register("apikey", cmd_apikey, help_text="Store an LLM API key: /apikey <key> [account].")
registry.register("sync", cmd_sync, help_text="Sync all accounts now.")
registry.register("today", cmd_today, help_text="Overdue + due today.")
registry.register("week", cmd_week, help_text="Day columns: /week [start] [days].", aliases=["upcoming"])
registry.register("board", cmd_board, help_text="Kanban columns (to do / in progress / done).")
registry.register("list", cmd_list, help_text="Grouped list: /list group=.. sort=.. status=.. [query].", aliases=["ls"])
registry.register("search", cmd_search, help_text="Search title and notes: /search <text>.")
registry.register("done", cmd_done, help_text="Complete a task: /done <n>.")
registry.register("undo", cmd_undo, help_text="Reopen a task: /undo <n>.")
registry.register("move", cmd_move, help_text="Move on the board: /move <n> <todo|in_progress|done|date>.")
registry.register("due", cmd_due, help_text="Reschedule: /due <n> <date|today|tomorrow|+N|none>.")
registry.register("edit", cmd_edit, help_text="Edit: /edit <n> [title] priority=.. color=.. start=.. recurring=..")
registry.register("note", cmd_note, help_text="Replace notes: /note <n> <text>.")
registry.register("add", cmd_add, help_text="Create: /add <title> [list=..] [due=..] [priority=..].")
registry.register("summary", cmd_summary, help_text="AI summary of today's tasks.")
