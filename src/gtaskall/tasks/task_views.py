# src/gtaskall/tasks/task_views.py

"""
View aggregation: pure functions from (tasks, options, today) to grouped shapes.

Nothing here touches the network or the collection; the same input always
produces the same buckets in the same order. Within a bucket, ties are broken
by title, then by id.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import StrEnum

from .task_models import Priority, Task, TaskState


class DateBucket(StrEnum):
    OVERDUE = "overdue"
    TODAY = "today"
    TOMORROW = "tomorrow"
    THIS_WEEK = "this-week"
    NEXT_WEEK = "next-week"
    FUTURE = "future"
    NO_DATE = "no-date"
    # Completed tasks due before today: not overdue, but still need a home.
    EARLIER = "earlier"


DATE_BUCKET_ORDER: tuple[DateBucket, ...] = tuple(DateBucket)

DATE_BUCKET_LABELS: dict[DateBucket, str] = {
    DateBucket.OVERDUE: "Overdue",
    DateBucket.TODAY: "Today",
    DateBucket.TOMORROW: "Tomorrow",
    DateBucket.THIS_WEEK: "This week",
    DateBucket.NEXT_WEEK: "Next week",
    DateBucket.FUTURE: "Later",
    DateBucket.NO_DATE: "No date",
    DateBucket.EARLIER: "Earlier (done)",
}


class GroupBy(StrEnum):
    NONE = "none"
    DATE = "date"
    ACCOUNT = "account"
    LIST = "list"
    PRIORITY = "priority"
    STATUS = "status"
    DAY = "day"


class SortBy(StrEnum):
    DUE_ASC = "due-asc"
    DUE_DESC = "due-desc"
    PRIORITY_HIGH = "priority-high"
    PRIORITY_LOW = "priority-low"
    UPDATED_DESC = "updated-desc"
    TITLE_ASC = "title-asc"
    TITLE_DESC = "title-desc"


class StatusFilter(StrEnum):
    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"


class DateFilter(StrEnum):
    ALL = "all"
    OVERDUE = "overdue"
    TODAY = "today"
    WEEK = "week"
    NO_DATE = "no-date"


@dataclass(frozen=True, slots=True)
class ViewOptions:
    group_by: GroupBy = GroupBy.DATE
    sort: SortBy = SortBy.DUE_ASC
    query: str = ""
    account_ids: frozenset[str] = frozenset()
    list_ids: frozenset[str] = frozenset()
    priorities: frozenset[Priority] = frozenset()
    status: StatusFilter = StatusFilter.ALL
    date_filter: DateFilter = DateFilter.ALL
    window_start: date | None = None
    window_days: int = 7
    today: date | None = None


@dataclass(frozen=True, slots=True)
class Bucket:
    key: str
    label: str
    tasks: tuple[Task, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.tasks)


@dataclass(frozen=True, slots=True)
class DayBucket:
    day: date
    tasks: tuple[Task, ...]

    @property
    def label(self) -> str:
        return self.day.strftime("%a %b %d")


def local_today(now: datetime | None = None) -> date:
    """Calendar date of 'now' in the local timezone."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone().date()


# ---- classification ----


def date_bucket(task: Task, today: date) -> DateBucket:
    due = task.due
    if due is None:
        return DateBucket.NO_DATE
    if due < today:
        return DateBucket.EARLIER if task.is_completed else DateBucket.OVERDUE
    delta = (due - today).days
    if delta == 0:
        return DateBucket.TODAY
    if delta == 1:
        return DateBucket.TOMORROW
    if delta <= 6:
        return DateBucket.THIS_WEEK
    if delta <= 13:
        return DateBucket.NEXT_WEEK
    return DateBucket.FUTURE


# ---- filtering ----


def search(tasks: Sequence[Task], query: str) -> list[Task]:
    """Case-insensitive substring match on title or notes. Blank query -> input unchanged."""
    q = (query or "").strip().casefold()
    if not q:
        return list(tasks)
    return [t for t in tasks if q in t.title.casefold() or q in (t.notes or "").casefold()]


def _matches_date(task: Task, flt: DateFilter, today: date) -> bool:
    if flt == DateFilter.ALL:
        return True
    if flt == DateFilter.NO_DATE:
        return task.due is None
    if task.due is None:
        return False
    if flt == DateFilter.OVERDUE:
        return task.is_overdue(today)
    if flt == DateFilter.TODAY:
        return task.due == today
    return today <= task.due < today + timedelta(days=7)


def filter_tasks(tasks: Sequence[Task], options: ViewOptions) -> list[Task]:
    today = options.today or local_today()
    out = search(tasks, options.query)
    if options.account_ids:
        out = [t for t in out if t.account_id in options.account_ids]
    if options.list_ids:
        out = [t for t in out if t.list_id in options.list_ids]
    if options.priorities:
        out = [t for t in out if t.priority in options.priorities]
    if options.status == StatusFilter.ACTIVE:
        out = [t for t in out if not t.is_completed]
    elif options.status == StatusFilter.COMPLETED:
        out = [t for t in out if t.is_completed]
    if options.date_filter != DateFilter.ALL:
        out = [t for t in out if _matches_date(t, options.date_filter, today)]
    return out


# ---- sorting ----

_FAR = date.max
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _tiebreak(t: Task) -> tuple[str, str]:
    return (t.title, t.id)


def sort_tasks(tasks: Iterable[Task], sort: SortBy = SortBy.DUE_ASC) -> list[Task]:
    """Stable sort; undated tasks always go last for the due orders."""
    items = sorted(tasks, key=_tiebreak)
    if sort in (SortBy.TITLE_ASC, SortBy.TITLE_DESC):
        return items if sort == SortBy.TITLE_ASC else sorted(items, key=_tiebreak, reverse=True)

    key: Callable[[Task], object]
    if sort == SortBy.DUE_ASC:
        key = lambda t: (t.due is None, t.due or _FAR)  # noqa: E731
    elif sort == SortBy.DUE_DESC:
        key = lambda t: (t.due is None, -(t.due or _FAR).toordinal())  # noqa: E731
    elif sort == SortBy.PRIORITY_HIGH:
        key = lambda t: int(t.priority)  # noqa: E731
    elif sort == SortBy.PRIORITY_LOW:
        key = lambda t: -int(t.priority)  # noqa: E731
    else:
        key = lambda t: -(t.updated or _EPOCH).timestamp()  # noqa: E731
    return sorted(items, key=key)


# ---- windows / columns ----


def day_window(
    tasks: Sequence[Task],
    start: date,
    days: int = 7,
    *,
    today: date | None = None,
) -> list[DayBucket]:
    """
    Exactly `days` consecutive day buckets starting at `start`.

    When the window starts today, incomplete tasks due before today are prepended
    to the first bucket so nothing overdue falls off the board.
    """
    today = today or start
    days = max(1, int(days))
    by_day: dict[date, list[Task]] = {start + timedelta(days=i): [] for i in range(days)}
    overdue: list[Task] = []

    for t in tasks:
        if t.due is None:
            continue
        if t.due in by_day:
            by_day[t.due].append(t)
        elif start == today and t.is_overdue(today):
            overdue.append(t)

    out: list[DayBucket] = []
    for i, (day, items) in enumerate(by_day.items()):
        ordered = sort_tasks(items, SortBy.PRIORITY_HIGH)
        if i == 0 and overdue:
            ordered = sort_tasks(overdue, SortBy.DUE_ASC) + ordered
        out.append(DayBucket(day=day, tasks=tuple(ordered)))
    return out


def kanban_columns(tasks: Sequence[Task], sort: SortBy = SortBy.DUE_ASC) -> list[Bucket]:
    labels = {
        TaskState.TODO: "To Do",
        TaskState.IN_PROGRESS: "In Progress",
        TaskState.COMPLETED: "Done",
    }
    return [
        Bucket(
            key=state.value,
            label=label,
            tasks=tuple(sort_tasks((t for t in tasks if t.state == state), sort)),
        )
        for state, label in labels.items()
    ]


def today_view(tasks: Sequence[Task], today: date) -> list[Task]:
    """Tasks for the 'today' screen: overdue first, then due today."""
    overdue = sort_tasks((t for t in tasks if t.is_overdue(today)), SortBy.DUE_ASC)
    due_today = sort_tasks((t for t in tasks if t.due == today), SortBy.PRIORITY_HIGH)
    return overdue + due_today


# ---- grouping ----


def _group_keyed(
    tasks: Sequence[Task],
    key_of: Callable[[Task], str],
    label_of: Callable[[Task], str],
    sort: SortBy,
    order: Callable[[str, str], object],
) -> list[Bucket]:
    groups: dict[str, list[Task]] = {}
    labels: dict[str, str] = {}
    for t in tasks:
        k = key_of(t)
        groups.setdefault(k, []).append(t)
        labels.setdefault(k, label_of(t))
    keys = sorted(groups, key=lambda k: order(k, labels[k]))
    return [Bucket(key=k, label=labels[k], tasks=tuple(sort_tasks(groups[k], sort))) for k in keys]


def aggregate(
    tasks: Sequence[Task],
    options: ViewOptions = ViewOptions(),
    *,
    list_titles: dict[str, str] | None = None,
) -> list[Bucket]:
    today = options.today or local_today()
    items = filter_tasks(tasks, options)
    sort = options.sort

    if options.group_by == GroupBy.NONE:
        return [Bucket(key="all", label="All tasks", tasks=tuple(sort_tasks(items, sort)))]

    if options.group_by == GroupBy.DATE:
        groups: dict[DateBucket, list[Task]] = {b: [] for b in DATE_BUCKET_ORDER}
        for t in items:
            groups[date_bucket(t, today)].append(t)
        return [
            Bucket(key=b.value, label=DATE_BUCKET_LABELS[b], tasks=tuple(sort_tasks(groups[b], sort)))
            for b in DATE_BUCKET_ORDER
        ]

    if options.group_by == GroupBy.DAY:
        start = options.window_start or today
        return [
            Bucket(key=d.day.isoformat(), label=d.label, tasks=d.tasks)
            for d in day_window(items, start, options.window_days, today=today)
        ]

    if options.group_by == GroupBy.STATUS:
        return kanban_columns(items, sort)

    if options.group_by == GroupBy.ACCOUNT:
        return _group_keyed(
            items,
            key_of=lambda t: t.account_id,
            label_of=lambda t: t.account_name or t.account_email or t.account_id,
            sort=sort,
            order=lambda k, label: (label.casefold(), k),
        )

    if options.group_by == GroupBy.LIST:
        titles = list_titles or {}
        return _group_keyed(
            items,
            key_of=lambda t: t.list_id,
            label_of=lambda t: titles.get(t.list_id) or t.list_id,
            sort=sort,
            order=lambda k, label: (label.casefold(), k),
        )

    return _group_keyed(
        items,
        key_of=lambda t: str(int(t.priority)),
        label_of=lambda t: "No priority" if t.priority == Priority.NONE else f"Priority {int(t.priority)}",
        sort=sort,
        order=lambda k, label: (int(k), label),
    )
