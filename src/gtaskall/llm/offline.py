# src/gtaskall/llm/offline.py

from __future__ import annotations

import json
import re
from collections.abc import Iterable

from ..core.ports import ChatMessage

_TASK_LINE_RE = re.compile(r"^- ", re.MULTILINE)
_OVERDUE_RE = re.compile(r"\(overdue", re.IGNORECASE)


class OfflineLLMClient:
    """
    Deterministic stand-in used when no LLM API key is configured.

    Counts the task lines in the prompt and answers in the same JSON shape the
    summary parser expects, so the /summary command still works offline.
    """

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        user_text = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_text = m["content"]
                break

        total = len(_TASK_LINE_RE.findall(user_text))
        overdue = len(_OVERDUE_RE.findall(user_text))

        if total == 0:
            summary = "Nothing is scheduled for today."
        else:
            summary = f"You have {total} task(s) for today."

        insights = ["Offline mode: set GTASKALL_LLM_API_KEY for AI summaries."]
        if overdue:
            insights.insert(0, f"{overdue} task(s) are overdue; start with those.")

        yield json.dumps({"summary": summary, "insights": insights})
