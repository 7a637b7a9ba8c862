# src/gtaskall/llm/client.py

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

import httpx
import openai
from openai import OpenAI

from ..core.errors import SummaryError
from ..core.ports import ChatMessage

logger = logging.getLogger(__name__)


def _is_auth_error(exc: Exception) -> bool:
    return isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError))


def _is_rate_limit_error(exc: Exception) -> bool:
    return isinstance(exc, openai.RateLimitError)


def _is_connection_error(exc: Exception) -> bool:
    return isinstance(exc, (openai.APIConnectionError, openai.APITimeoutError, httpx.TimeoutException))


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, openai.NotFoundError)


def _close_stream(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if callable(close):
        try:
            close()
        except Exception:
            logger.debug("Stream close failed", exc_info=True)


class OpenAICompatClient:
    """
    OpenAI-compatible chat client (OpenRouter by default) with model fallback.

    - Models are tried in order; 404 marks a model bad for an hour.
    - Rate limit / network / first-token timeout -> try the next model.
    - Auth errors fail fast.
    - Automatic SDK retries are disabled so fallback stays quick.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        models: List[str],
        extra_headers: Optional[Dict[str, str]] = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 25.0,
        first_token_timeout: float = 20.0,
        client: OpenAI | None = None,
    ) -> None:
        if not api_key or not api_key.strip():
            raise SummaryError("LLM API key is not set. Set GTASKALL_LLM_API_KEY in your .env.")
        if not base_url.strip():
            raise SummaryError("LLM base URL is not set. Set GTASKALL_LLM_BASE_URL in your .env.")

        self._models = [m.strip() for m in models if m and m.strip()]
        self._headers = dict(extra_headers or {})
        self._first_token_timeout = float(first_token_timeout)
        self._read_timeout = max(float(read_timeout), self._first_token_timeout)
        self._timeout = httpx.Timeout(connect=connect_timeout, read=self._read_timeout, write=10.0, pool=connect_timeout)
        self._bad_models: dict[str, float] = {}  # model -> retry_at (monotonic)
        self._client = client or OpenAI(
            base_url=base_url,
            api_key=api_key,
            timeout=self._timeout,
            max_retries=0,
        )

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        if not self._models:
            raise SummaryError("LLM model list is empty. Set GTASKALL_LLM_MODELS in your .env.")

        last_error: Optional[Exception] = None
        now = time.monotonic()

        for model in self._models:
            retry_at = self._bad_models.get(model)
            if retry_at is not None and retry_at > now:
                continue

            logger.info("LLM: trying model=%s (first_token_timeout=%.1fs)", model, self._first_token_timeout)
            t0 = time.monotonic()
            deadline = t0 + self._first_token_timeout
            stream = None
            used_any = False

            try:
                stream = self._client.chat.completions.create(
                    model=model,
                    stream=True,
                    extra_headers=self._headers or None,
                    messages=[{"role": "system", "content": system_prompt}, *messages],
                    timeout=self._timeout,
                )

                for chunk in stream:
                    if not used_any and time.monotonic() > deadline:
                        last_error = TimeoutError(f"First token timeout on model: {model}")
                        logger.info("LLM: first token timeout on model=%s -> trying next", model)
                        break

                    content = None
                    if chunk.choices:
                        delta = getattr(chunk.choices[0], "delta", None)
                        content = getattr(delta, "content", None) if delta is not None else None

                    if content:
                        if not used_any:
                            logger.info("LLM: first token from model=%s (%.2fs)", model, time.monotonic() - t0)
                        used_any = True
                        yield content

                if used_any:
                    return
                if last_error is None:
                    last_error = RuntimeError(f"Model returned no content: {model}")

            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise SummaryError("LLM authentication failed. Check GTASKALL_LLM_API_KEY.") from e

                if _is_not_found_error(e):
                    self._bad_models[model] = time.monotonic() + 3600.0
                    logger.info("LLM: model not available (404): %s", model)
                elif _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                elif _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                else:
                    logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)

            finally:
                if stream is not None:
                    _close_stream(stream)

        if last_error is not None and _is_rate_limit_error(last_error):
            raise SummaryError("LLM is rate-limited. Try again later.") from last_error
        if last_error is not None and _is_connection_error(last_error):
            raise SummaryError("LLM network/timeout error. Try again later or change models.") from last_error
        raise SummaryError("All LLM models failed.") from last_error
