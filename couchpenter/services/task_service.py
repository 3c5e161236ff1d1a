from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, Sequence

from couchpenter.models.couchpenter import OperationResult
from couchpenter.services.config import CouchpenterConfig
from couchpenter.services.document_service import DocumentService
from couchpenter.services.errors import ConfigError, TaskFailedError
from couchpenter.services.setup.setup_loader import Setup, load_setup

logger = logging.getLogger(__name__)


class TaskKind(str, Enum):
    DATABASES = "databases"
    DOCUMENTS = "documents"


@dataclass(frozen=True)
class Task:
    """A named remote operation.

    DATABASES tasks receive the list of database names, DOCUMENTS tasks the
    setup with resolved documents. `method` is the database client method.
    """

    name: str
    kind: TaskKind
    method: str


TASKS: dict[str, Task] = {
    task.name: task
    for task in (
        Task("createDatabases", TaskKind.DATABASES, "create_databases"),
        Task("createDocuments", TaskKind.DOCUMENTS, "create_documents"),
        Task("saveDocuments", TaskKind.DOCUMENTS, "save_documents"),
        Task("removeDatabases", TaskKind.DATABASES, "remove_databases"),
        Task("removeDocuments", TaskKind.DOCUMENTS, "remove_documents"),
        Task("cleanDatabases", TaskKind.DATABASES, "clean_databases"),
        Task("warmViews", TaskKind.DOCUMENTS, "warm_views"),
        Task("liveDeployView", TaskKind.DOCUMENTS, "live_deploy_view"),
    )
}


class DatabaseClient(Protocol):
    async def create_databases(self, names: list[str]) -> list[OperationResult]: ...
    async def remove_databases(self, names: list[str]) -> list[OperationResult]: ...
    async def clean_databases(self, names: list[str]) -> list[OperationResult]: ...
    async def create_documents(self, setup: Setup) -> list[OperationResult]: ...
    async def save_documents(self, setup: Setup) -> list[OperationResult]: ...
    async def remove_documents(self, setup: Setup) -> list[OperationResult]: ...
    async def warm_views(self, setup: Setup) -> list[OperationResult]: ...
    async def live_deploy_view(self, setup: Setup) -> list[OperationResult]: ...


def get_tasks(task_names: Sequence[str]) -> list[Task]:
    unknown = [name for name in task_names if name not in TASKS]
    if unknown:
        raise ConfigError(f"Unknown task(s): {', '.join(unknown)}")
    return [TASKS[name] for name in task_names]


class TaskService:
    """Runs task sequences against the database client, strictly in order.

    The setup is loaded fresh for every run. Documents are resolved once, and
    only when a task of the sequence needs them; resolution happens before the
    first remote call so a bad setup never leaves partial changes behind.

    The first failing task stops the run with TaskFailedError. Tasks that
    already ran are not rolled back; their results are on `error.completed`.
    """

    def __init__(self, *, config: CouchpenterConfig, client: DatabaseClient) -> None:
        self._config = config
        self._client = client

    def load_setup(self) -> Setup:
        return load_setup(
            db_setup=self._config.db_setup,
            setup_file=None if self._config.db_setup is not None else self._config.setup_path,
            prefix=self._config.prefix,
        )

    async def run(self, task_names: Sequence[str]) -> list[OperationResult]:
        tasks = get_tasks(task_names)
        setup = self.load_setup()

        if any(task.kind is TaskKind.DOCUMENTS for task in tasks):
            DocumentService(self._config.dir).resolve(setup)

        combined: list[OperationResult] = []
        for index, task in enumerate(tasks):
            data: Any = list(setup) if task.kind is TaskKind.DATABASES else setup
            operation: Callable[[Any], Awaitable[list[OperationResult]]] = getattr(self._client, task.method)

            logger.info("Running task %s (%d/%d)", task.name, index + 1, len(tasks))
            try:
                results = await operation(data)
            except Exception as exc:
                # Any client failure ends the run; the cause stays chained on the error.
                logger.error("Task %s failed: %s", task.name, exc)
                raise TaskFailedError(
                    task=task.name, index=index, completed=combined, reason=str(exc) or type(exc).__name__
                ) from exc

            logger.info("Task %s complete: %d result(s)", task.name, len(results))
            combined.extend(results)

        return combined
