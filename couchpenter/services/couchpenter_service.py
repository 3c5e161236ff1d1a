from __future__ import annotations

import dataclasses
import logging
import shutil
from importlib import resources
from pathlib import Path
from typing import Any, Optional

import aiohttp

from couchpenter.models.couchpenter import OperationResult
from couchpenter.services.config import CouchDbConfig, CouchpenterConfig
from couchpenter.services.couchdb_service import CouchDbService
from couchpenter.services.errors import ConfigError
from couchpenter.services.task_service import DatabaseClient, TaskService

logger = logging.getLogger(__name__)

SAMPLE_SETUP_FILE = "couchpenter.json"

COMMANDS: dict[str, tuple[str, ...]] = {
    "setUp": ("createDatabases", "saveDocuments"),
    "setUpDatabases": ("createDatabases",),
    "setUpDocuments": ("createDocuments",),
    "setUpDocumentsOverwrite": ("saveDocuments",),
    "tearDown": ("removeDatabases",),
    "tearDownDatabases": ("removeDatabases",),
    "tearDownDocuments": ("removeDocuments",),
    "resetDatabases": ("removeDatabases", "createDatabases"),
    "reset": ("removeDatabases", "createDatabases", "createDocuments"),
    "resetDocuments": ("removeDatabases", "createDatabases", "createDocuments"),
    "clean": ("cleanDatabases",),
    "cleanDatabases": ("cleanDatabases",),
    "warmViews": ("warmViews",),
    "liveDeployView": ("liveDeployView",),
}


def init_setup_file(target_dir: Optional[Path] = None) -> Path:
    """Copy the sample couchpenter.json into `target_dir` (default: current directory)."""

    target = (target_dir or Path.cwd()) / SAMPLE_SETUP_FILE
    if target.exists():
        raise ConfigError(f"Setup file already exists: {target}")

    logger.info("Creating sample setup file: %s", target)
    sample = resources.files("couchpenter") / "data" / SAMPLE_SETUP_FILE
    with resources.as_file(sample) as source:
        shutil.copyfile(source, target)
    return target


class CouchpenterService:
    """Named Couchpenter commands, each a fixed sequence of tasks."""

    def __init__(self, *, config: CouchpenterConfig, client: DatabaseClient) -> None:
        self._config = config
        self._client = client
        self._tasks = TaskService(config=config, client=client)

    @staticmethod
    def from_env(
        *,
        session: aiohttp.ClientSession,
        url: Optional[str] = None,
        **options: Any,
    ) -> "CouchpenterService":
        config = CouchpenterConfig.from_env(**options)
        client = CouchDbService(CouchDbConfig.from_env(url=url, interval=config.interval), session=session)
        return CouchpenterService(config=config, client=client)

    @property
    def config(self) -> CouchpenterConfig:
        return self._config

    @property
    def tasks(self) -> TaskService:
        return self._tasks

    def with_prefix(self, prefix: Optional[str]) -> "CouchpenterService":
        """Same commands and client, different database name prefix."""
        return CouchpenterService(config=dataclasses.replace(self._config, prefix=prefix), client=self._client)

    async def run_command(self, command: str) -> list[OperationResult]:
        task_names = COMMANDS.get(command)
        if task_names is None:
            raise ConfigError(f"Unknown command: {command}")
        logger.info("Running command %s: %s", command, ", ".join(task_names))
        return await self._tasks.run(task_names)

    async def set_up(self) -> list[OperationResult]:
        """Create databases and documents, overwrite documents that exist."""
        return await self.run_command("setUp")

    async def set_up_databases(self) -> list[OperationResult]:
        return await self.run_command("setUpDatabases")

    async def set_up_documents(self) -> list[OperationResult]:
        """Create documents only, existing documents are not overwritten."""
        return await self.run_command("setUpDocuments")

    async def set_up_documents_overwrite(self) -> list[OperationResult]:
        return await self.run_command("setUpDocumentsOverwrite")

    async def tear_down(self) -> list[OperationResult]:
        return await self.run_command("tearDown")

    async def tear_down_databases(self) -> list[OperationResult]:
        return await self.run_command("tearDownDatabases")

    async def tear_down_documents(self) -> list[OperationResult]:
        return await self.run_command("tearDownDocuments")

    async def reset(self) -> list[OperationResult]:
        return await self.run_command("reset")

    async def reset_databases(self) -> list[OperationResult]:
        """Delete then recreate databases."""
        return await self.run_command("resetDatabases")

    async def reset_documents(self) -> list[OperationResult]:
        """Delete and recreate databases, then create documents."""
        return await self.run_command("resetDocuments")

    async def clean(self) -> list[OperationResult]:
        return await self.run_command("clean")

    async def clean_databases(self) -> list[OperationResult]:
        """Delete databases that are not in the setup."""
        return await self.run_command("cleanDatabases")

    async def warm_views(self) -> list[OperationResult]:
        """Query views of the setup design documents once, see WarmViewsScheduler for cron runs."""
        return await self.run_command("warmViews")

    async def live_deploy_view(self) -> list[OperationResult]:
        return await self.run_command("liveDeployView")
