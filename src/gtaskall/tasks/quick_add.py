# src/gtaskall/tasks/quick_add.py

"""
Quick-add parsing: a due date and an account tag written inside a task title.

    "call bank friday #work"  ->  title "call bank", due next Friday, account "work"

Dates are resolved against an explicit `today`, so callers decide the time zone.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Generic, Protocol, TypeVar

_TODAY_RE = re.compile(r"\btoday\b", re.IGNORECASE)
_TOMORROW_RE = re.compile(r"\b(tomorrow|tmr)\b", re.IGNORECASE)
_NEXT_WEEK_RE = re.compile(r"\bnext\s+week\b", re.IGNORECASE)
_THIS_WEEK_RE = re.compile(r"\b(this\s+)?week\b", re.IGNORECASE)
_WEEKEND_RE = re.compile(r"\bweekend\b", re.IGNORECASE)
_ACCOUNT_TAG_RE = re.compile(r"#(\w+)")

# Monday == 0, as date.weekday().
_WEEKDAYS = [
    (re.compile(rf"\b({full}|{short})\b", re.IGNORECASE), n)
    for n, (full, short) in enumerate(
        [
            ("monday", "mon"),
            ("tuesday", "tue"),
            ("wednesday", "wed"),
            ("thursday", "thu"),
            ("friday", "fri"),
            ("saturday", "sat"),
            ("sunday", "sun"),
        ]
    )
]

_SATURDAY = 5


class _Named(Protocol):
    @property
    def email(self) -> str: ...

    @property
    def name(self) -> str: ...


A = TypeVar("A", bound=_Named)


@dataclass(frozen=True, slots=True)
class DateMatch:
    day: date
    text: str


@dataclass(frozen=True, slots=True)
class AccountMatch(Generic[A]):
    account: A
    text: str


def _monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def parse_natural_date(text: str, today: date) -> DateMatch | None:
    """
    First date phrase found in `text`, checked in this order:

    today; tomorrow / tmr; next week (its Monday); this week / week (this
    Monday); weekend (next Saturday, or today on a weekend); a weekday name,
    full or three letters (its next occurrence, never today).
    """
    if m := _TODAY_RE.search(text):
        return DateMatch(today, m.group(0))
    if m := _TOMORROW_RE.search(text):
        return DateMatch(today + timedelta(days=1), m.group(0))
    if m := _NEXT_WEEK_RE.search(text):
        return DateMatch(_monday_of(today) + timedelta(days=7), m.group(0))
    if m := _THIS_WEEK_RE.search(text):
        return DateMatch(_monday_of(today), m.group(0))
    if m := _WEEKEND_RE.search(text):
        if today.weekday() >= _SATURDAY:
            return DateMatch(today, m.group(0))
        return DateMatch(today + timedelta(days=_SATURDAY - today.weekday()), m.group(0))

    for pattern, weekday in _WEEKDAYS:
        if m := pattern.search(text):
            ahead = weekday - today.weekday()
            if ahead <= 0:
                ahead += 7
            return DateMatch(today + timedelta(days=ahead), m.group(0))
    return None


def find_account_tag(text: str, accounts: Iterable[A]) -> AccountMatch[A] | None:
    """
    `#tag` naming an account by a fragment of its email local part or display name.

    The first tag that matches any account wins; tags matching nothing stay in the title.
    """
    candidates = list(accounts)
    for m in _ACCOUNT_TAG_RE.finditer(text):
        tag = m.group(1).lower()
        for acc in candidates:
            prefix = acc.email.split("@")[0].lower()
            name = (acc.name or "").lower()
            if (prefix and (tag in prefix or prefix in tag)) or (name and (tag in name or name in tag)):
                return AccountMatch(acc, m.group(0))
    return None


def strip_phrase(text: str, phrase: str | None) -> str:
    """Remove every occurrence of `phrase` (case-insensitive, whole words) and tidy whitespace."""
    if phrase:
        if phrase[:1].isalnum():
            pattern = rf"\b{re.escape(phrase)}\b"
        else:
            pattern = rf"{re.escape(phrase)}\b"
        text = re.sub(pattern, "", text, flags=re.IGNORECASE)
    return " ".join(text.split())
