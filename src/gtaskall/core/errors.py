# src/gtaskall/core/errors.py

from __future__ import annotations


class GTaskAllError(Exception):
    """Base class for every error raised by gtaskall."""


class RemoteTaskError(GTaskAllError):
    """
    Transient failure talking to the remote task store (network or non-401 HTTP status).

    Callers may retry on the next scheduled cycle.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(RemoteTaskError):
    """The access token was rejected (HTTP 401). Never retry with the same token."""

    def __init__(self, message: str = "Access token rejected (401).") -> None:
        super().__init__(message, status_code=401)


class AccountNotFoundError(GTaskAllError, KeyError):
    def __init__(self, account_id: str) -> None:
        super().__init__(account_id)
        self.account_id = account_id

    def __str__(self) -> str:
        return f"Unknown account: {self.account_id}"


class TaskNotFoundError(GTaskAllError, KeyError):
    def __init__(self, key: object) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Unknown task: {self.key}"


class MutationError(GTaskAllError):
    """A mutation was rejected remotely; the local optimistic change has been rolled back."""

    def __init__(self, action: str, cause: Exception) -> None:
        super().__init__(f"{action} failed: {cause}")
        self.action = action
        self.cause = cause


class SummaryError(GTaskAllError):
    """AI summary could not be produced (missing key, all models failed, ...)."""
