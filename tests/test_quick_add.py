# tests/test_quick_add.py

from __future__ import annotations

from datetime import date

import pytest

from gtaskall.accounts.registry import Account
from gtaskall.tasks.quick_add import find_account_tag, parse_natural_date, strip_phrase

from .fakes import TODAY  # Wednesday 2024-03-20


@pytest.mark.parametrize(
    ("text", "expected", "matched"),
    [
        ("pay rent today", date(2024, 3, 20), "today"),
        ("pay rent Tomorrow", date(2024, 3, 21), "Tomorrow"),
        ("pay rent tmr", date(2024, 3, 21), "tmr"),
        ("plan next week", date(2024, 3, 25), "next week"),
        ("plan this week", date(2024, 3, 18), "this week"),
        ("plan week", date(2024, 3, 18), "week"),
        ("hike weekend", date(2024, 3, 23), "weekend"),
        ("call bank friday", date(2024, 3, 22), "friday"),
        ("call bank Mon", date(2024, 3, 25), "Mon"),
        ("call bank sunday", date(2024, 3, 24), "sunday"),
    ],
)
def test_date_phrases(text: str, expected: date, matched: str) -> None:
    found = parse_natural_date(text, TODAY)
    assert found is not None
    assert found.day == expected
    assert found.text == matched


def test_same_weekday_means_next_week() -> None:
    assert parse_natural_date("standup wed", TODAY).day == date(2024, 3, 27)
    assert parse_natural_date("standup wednesday", TODAY).day == date(2024, 3, 27)


def test_weekend_on_a_weekend_is_today() -> None:
    saturday = date(2024, 3, 23)
    sunday = date(2024, 3, 24)
    assert parse_natural_date("clean garage weekend", saturday).day == saturday
    assert parse_natural_date("clean garage weekend", sunday).day == sunday


def test_earlier_phrases_win() -> None:
    found = parse_natural_date("friday or today", TODAY)
    assert found.day == TODAY
    assert parse_natural_date("next week friday", TODAY).text == "next week"


def test_phrases_inside_words_are_ignored() -> None:
    assert parse_natural_date("read monthly report", TODAY) is None
    assert parse_natural_date("weekly sunscreen todays", TODAY) is None
    assert parse_natural_date("", TODAY) is None


def test_strip_phrase() -> None:
    assert strip_phrase("call  bank Friday ", "friday") == "call bank"
    assert strip_phrase("plan next   week trip", "next   week") == "plan trip"
    assert strip_phrase("stretch #bob", "#bob") == "stretch"
    assert strip_phrase("fridays friday", "friday") == "fridays"
    assert strip_phrase(" keep  me ", None) == "keep me"


def test_account_tag() -> None:
    alice = Account(id="a1", email="alice.smith@example.com", name="Alice")
    bob = Account(id="b1", email="bob@work.example", name="")
    accounts = [alice, bob]

    found = find_account_tag("report #alice", accounts)
    assert found is not None and found.account is alice and found.text == "#alice"

    assert find_account_tag("gym #Bob", accounts).account is bob
    assert find_account_tag("x #nobody #smith", accounts).account is alice
    assert find_account_tag("issue #42", accounts) is None
    assert find_account_tag("no tags here", accounts) is None
