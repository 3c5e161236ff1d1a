from __future__ import annotations

from typing import Any, Optional


class CouchpenterError(RuntimeError):
    pass


class ConfigError(CouchpenterError):
    pass


class InvalidDocumentError(CouchpenterError):
    def __init__(self, *, db_name: str, value: Any) -> None:
        super().__init__(
            f"Invalid document {value!r} in db {db_name}, only object, list and string allowed"
        )
        self.db_name = db_name
        self.value = value


class ResolutionError(CouchpenterError):
    def __init__(self, message: str, *, db_name: str, reference: str) -> None:
        super().__init__(f"{message} (db={db_name}, reference={reference})")
        self.db_name = db_name
        self.reference = reference


class RemoteOperationError(CouchpenterError):
    """A CouchDB request failed or returned an unexpected status."""

    def __init__(self, message: str, *, status: Optional[int] = None, details: str = "") -> None:
        text = message if status is None else f"{message} HTTP {status}"
        if details:
            text = f"{text} {details}"
        super().__init__(text.strip())
        self.status = status
        self.details = details


class TaskFailedError(CouchpenterError):
    """A task in a sequence failed; tasks before it stay applied.

    `completed` holds the combined results of the tasks that succeeded before
    the failure, `index` the zero-based position of the failed task.
    """

    def __init__(self, *, task: str, index: int, completed: list[Any], reason: str = "") -> None:
        message = f"Task {task} failed after {index} completed task(s)"
        super().__init__(f"{message}: {reason}" if reason else message)
        self.task = task
        self.index = index
        self.completed = completed
