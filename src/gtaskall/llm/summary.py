# src/gtaskall/llm/summary.py

"""
AI summary of today's tasks.

The model is asked for {"summary": "...", "insights": [...]}. Models do not
always comply, so parse_summary() falls back to reading plain text: a line
mentioning "summary" (or the first two lines) becomes the summary and bullet
lines become insights.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Sequence

from ..core.errors import SummaryError
from ..core.ports import LLMClient
from ..tasks.task_models import Priority, Task
from .client import OpenAICompatClient
from .offline import OfflineLLMClient

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a productivity assistant summarizing a person's tasks for today.
Answer in {language}.
1. Give a short summary of what needs to be done.
2. Give 3-5 key insights or recommendations about productivity.
3. Point out conflicts or overlapping priorities.
Reply with exactly this JSON and nothing else:
{{"summary": "short summary", "insights": ["insight 1", "insight 2", "insight 3"]}}"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_BULLET_RE = re.compile(r"^\s*(?:[•\-*]|\d+[.)])\s+")


@dataclass(frozen=True, slots=True)
class TaskSummary:
    summary: str
    insights: tuple[str, ...] = ()


def _task_line(t: Task, today: date) -> str:
    parts = [f"- {t.title or '(untitled)'}"]
    owner = t.account_name or t.account_email
    if owner:
        parts.append(f"[{owner}]")
    if t.is_overdue(today) and t.due is not None:
        parts.append(f"(overdue since {t.due.isoformat()})")
    parts.append(f"status={t.state.value}")
    if t.priority != Priority.NONE:
        parts.append(f"priority=P{int(t.priority)}")
    line = " ".join(parts)
    notes = " ".join((t.notes or "").split())
    if notes:
        line += f" | notes: {notes[:200]}"
    return line


def build_prompt(tasks: Sequence[Task], *, today: date, language: str = "English") -> tuple[str, str]:
    """Returns (system_prompt, user_message)."""
    lines = [_task_line(t, today) for t in tasks]
    user = f"Today is {today.isoformat()}. Tasks:\n" + ("\n".join(lines) if lines else "(none)")
    return SYSTEM_PROMPT.format(language=language), user


def _coerce_insights(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(x).strip() for x in raw if str(x).strip())


def parse_summary(text: str) -> TaskSummary:
    s = _FENCE_RE.sub("", (text or "").strip()).strip()
    if not s:
        raise SummaryError("LLM returned an empty answer")

    start, end = s.find("{"), s.rfind("}")
    if start != -1 and end > start:
        try:
            data = json.loads(s[start : end + 1])
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return TaskSummary(
                summary=str(data.get("summary") or "Unable to generate summary").strip(),
                insights=_coerce_insights(data.get("insights")),
            )

    logger.debug("Summary is not JSON; using plain-text fallback")
    lines = [ln.strip() for ln in s.splitlines() if ln.strip()]
    head = next((ln for ln in lines if "summary" in ln.lower()), None)
    if head is None:
        head = " ".join(ln for ln in lines[:2] if not _BULLET_RE.match(ln)) or lines[0]
    else:
        head = head.split(":", 1)[1] if ":" in head else head
    insights = tuple(_BULLET_RE.sub("", ln).strip() for ln in lines if _BULLET_RE.match(ln))
    return TaskSummary(summary=head.strip() or "AI summary generated", insights=insights)


def resolve_api_key(settings: Any, connections: Any = None, account_email: str | None = None) -> str | None:
    """Settings key first, then a key stored for the account (or the main user) in the connection store."""
    key = getattr(settings, "llm_api_key", None)
    if key and str(key).strip():
        return str(key).strip()
    main = getattr(settings, "main_user_email", "") or ""
    if connections is None or not main:
        return None
    try:
        return connections.get_api_key(main, account_email)
    except Exception:
        logger.exception("Failed to read stored LLM API key")
        return None


def make_llm_client(settings: Any, api_key: str | None) -> LLMClient:
    if not api_key:
        logger.info("No LLM API key configured; using offline summary client")
        return OfflineLLMClient()
    return OpenAICompatClient(
        api_key=api_key,
        base_url=settings.llm_base_url,
        models=list(settings.llm_models),
        extra_headers=dict(getattr(settings, "extra_headers", {}) or {}),
    )


def _collect(llm: LLMClient, system_prompt: str, user: str) -> str:
    return "".join(llm.stream_chat([{"role": "user", "content": user}], system_prompt))


async def summarize(
    llm: LLMClient,
    tasks: Sequence[Task],
    *,
    today: date,
    language: str = "English",
) -> TaskSummary:
    """Run the (blocking, streaming) LLM call in a worker thread and parse its answer."""
    system_prompt, user = build_prompt(tasks, today=today, language=language)
    try:
        text = await asyncio.to_thread(_collect, llm, system_prompt, user)
    except SummaryError:
        raise
    except Exception as e:
        logger.exception("Summary generation failed")
        raise SummaryError(f"Failed to generate AI summary: {e}") from e
    return parse_summary(text)
