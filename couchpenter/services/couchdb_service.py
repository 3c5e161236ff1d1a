from __future__ import annotations

import asyncio
import json
import logging
import re
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar
from urllib.parse import quote

import aiohttp
from tqdm import tqdm

from couchpenter.models.couchpenter import OperationResult
from couchpenter.services.config import CouchDbConfig
from couchpenter.services.errors import InvalidDocumentError, RemoteOperationError
from couchpenter.services.setup.setup_loader import Setup

logger = logging.getLogger(__name__)

T = TypeVar("T")

DESIGN_PREFIX = "_design/"
INDEX_TASK_TYPES = frozenset({"indexer", "view_compaction"})

# CouchDB 2+ reports shard paths, e.g. "shards/00000000-7fffffff/mydb.1591022466"
_SHARD_DB_RE = re.compile(r"^shards/[^/]+/(?P<db>.+)\.\d+$")


class CouchDbService:
    """CouchDB data-plane calls used by Couchpenter tasks.

    Each public method maps to one task and returns one OperationResult per
    database or document touched, in setup order. Work on different databases
    of the same call runs concurrently (bounded by `config.concurrency`).
    """

    def __init__(self, config: CouchDbConfig, *, session: aiohttp.ClientSession) -> None:
        self._config = config
        self._session = session

    # -----------------
    # Databases
    # -----------------

    async def create_databases(self, names: list[str]) -> list[OperationResult]:
        async def _create(db_name: str) -> list[OperationResult]:
            status, payload = await self._request(method="PUT", path=self._db_path(db_name))
            if status in (HTTPStatus.CREATED, HTTPStatus.ACCEPTED):
                return [OperationResult(id=db_name, message="created")]
            if status == HTTPStatus.PRECONDITION_FAILED:
                return [OperationResult(id=db_name, message="exists")]
            raise self._error(f"Failed to create database (db={db_name})", status, payload)

        return await self._for_each(names, _create)

    async def remove_databases(self, names: list[str]) -> list[OperationResult]:
        async def _remove(db_name: str) -> list[OperationResult]:
            return [await self._delete_database(db_name)]

        return await self._for_each(names, _remove)

    async def clean_databases(self, names: list[str]) -> list[OperationResult]:
        """Delete every non-system database on the server that is not in `names`."""

        status, payload = await self._request(method="GET", path="/_all_dbs")
        if status != HTTPStatus.OK:
            raise self._error("Failed to list databases", status, payload)

        configured = set(names)
        existing = self._parse_json(payload) or []
        unknown = [db for db in existing if not db.startswith("_") and db not in configured]
        logger.info("Cleaning databases: existing=%d, unknown=%d", len(existing), len(unknown))

        async def _remove(db_name: str) -> list[OperationResult]:
            return [await self._delete_database(db_name)]

        return await self._for_each(unknown, _remove)

    async def _delete_database(self, db_name: str) -> OperationResult:
        status, payload = await self._request(method="DELETE", path=self._db_path(db_name))
        if status in (HTTPStatus.OK, HTTPStatus.ACCEPTED):
            return OperationResult(id=db_name, message="deleted")
        if status == HTTPStatus.NOT_FOUND:
            return OperationResult(id=db_name, message="not found")
        raise self._error(f"Failed to delete database (db={db_name})", status, payload)

    # -----------------
    # Documents
    # -----------------

    async def create_documents(self, setup: Setup) -> list[OperationResult]:
        """Insert documents; a document that already exists is left untouched."""

        async def _create(db_name: str) -> list[OperationResult]:
            results = []
            for doc in self._documents(db_name, setup[db_name]):
                status, payload = await self._write_document(db_name, doc)
                doc_id = self._result_id(db_name, doc, payload)
                if status in (HTTPStatus.CREATED, HTTPStatus.ACCEPTED):
                    results.append(OperationResult(id=doc_id, message="created", rev=self._rev(payload)))
                elif status == HTTPStatus.CONFLICT:
                    results.append(OperationResult(id=doc_id, message="exists"))
                else:
                    raise self._error(f"Failed to create document (id={doc_id})", status, payload)
            return results

        return await self._for_each(list(setup), _create)

    async def save_documents(self, setup: Setup) -> list[OperationResult]:
        """Insert documents, overwriting the current revision of existing ones."""

        async def _save(db_name: str) -> list[OperationResult]:
            results = []
            for doc in self._documents(db_name, setup[db_name]):
                doc = dict(doc)
                current_rev = None
                if "_id" in doc:
                    current_rev = await self._current_rev(db_name, doc["_id"])
                    if current_rev:
                        doc["_rev"] = current_rev
                    else:
                        doc.pop("_rev", None)

                status, payload = await self._write_document(db_name, doc)
                doc_id = self._result_id(db_name, doc, payload)
                if status not in (HTTPStatus.CREATED, HTTPStatus.ACCEPTED):
                    raise self._error(f"Failed to save document (id={doc_id})", status, payload)
                message = "updated" if current_rev else "created"
                results.append(OperationResult(id=doc_id, message=message, rev=self._rev(payload)))
            return results

        return await self._for_each(list(setup), _save)

    async def remove_documents(self, setup: Setup) -> list[OperationResult]:
        async def _remove(db_name: str) -> list[OperationResult]:
            results = []
            for doc in self._documents(db_name, setup[db_name]):
                if "_id" not in doc:
                    logger.warning("Skipping document without _id in db %s", db_name)
                    continue
                doc_id = f"{db_name}/{doc['_id']}"
                current_rev = await self._current_rev(db_name, doc["_id"])
                if current_rev is None:
                    results.append(OperationResult(id=doc_id, message="not found"))
                    continue

                status, payload = await self._request(
                    method="DELETE",
                    path=self._doc_path(db_name, doc["_id"]),
                    params={"rev": current_rev},
                )
                if status not in (HTTPStatus.OK, HTTPStatus.ACCEPTED):
                    raise self._error(f"Failed to delete document (id={doc_id})", status, payload)
                results.append(OperationResult(id=doc_id, message="deleted", rev=self._rev(payload)))
            return results

        return await self._for_each(list(setup), _remove)

    # -----------------
    # Views
    # -----------------

    async def warm_views(self, setup: Setup) -> list[OperationResult]:
        """Query the first view of every design document so CouchDB builds its index."""

        async def _warm(db_name: str) -> list[OperationResult]:
            results = []
            for doc in self._design_documents(db_name, setup[db_name]):
                view_name = next(iter(doc["views"]))
                doc_id = f"{db_name}/{doc['_id']}"
                status, payload = await self._request(
                    method="GET",
                    path=f"{self._doc_path(db_name, doc['_id'])}/_view/{quote(view_name, safe='')}",
                    params={"limit": "0"},
                )
                if status != HTTPStatus.OK:
                    raise self._error(f"Failed to warm view (id={doc_id}, view={view_name})", status, payload)
                results.append(OperationResult(id=doc_id, message="warmed"))
            return results

        return await self._for_each(list(setup), _warm)

    async def live_deploy_view(self, setup: Setup) -> list[OperationResult]:
        """Follow index builds of the setup databases until none is left running."""

        db_names = set(setup)
        bars: dict[tuple[str, str], tqdm] = {}
        try:
            while True:
                running = await self._index_tasks(db_names)
                if not running:
                    for bar in bars.values():
                        bar.update(max(100 - bar.n, 0))
                    break
                # One indexer per shard; the slowest shard is the design document's progress.
                progress_by_key: dict[tuple[str, str], int] = {}
                for db_name, design_doc, progress in running:
                    key = (db_name, design_doc)
                    progress_by_key[key] = min(progress, progress_by_key.get(key, progress))

                for key, progress in progress_by_key.items():
                    db_name, design_doc = key
                    bar = bars.get(key)
                    if bar is None:
                        bar = tqdm(total=100, desc=f"{db_name}/{design_doc}", unit="%")
                        bars[key] = bar
                    bar.update(max(progress - bar.n, 0))
                await asyncio.sleep(self._config.interval)
        finally:
            for bar in bars.values():
                bar.close()

        if not bars:
            return [OperationResult(id=db_name, message="no index build in progress") for db_name in setup]
        return [OperationResult(id=f"{db}/{ddoc}", message="deployed") for db, ddoc in bars]

    async def _index_tasks(self, db_names: set[str]) -> list[tuple[str, str, int]]:
        status, payload = await self._request(method="GET", path="/_active_tasks")
        if status != HTTPStatus.OK:
            raise self._error("Failed to get active tasks", status, payload)

        running = []
        for task in self._parse_json(payload) or []:
            if task.get("type") not in INDEX_TASK_TYPES:
                continue
            db_name = self._task_db_name(str(task.get("database") or ""))
            if db_name not in db_names:
                continue
            running.append((db_name, str(task.get("design_document") or ""), int(task.get("progress") or 0)))
        return running

    @staticmethod
    def _task_db_name(database: str) -> str:
        match = _SHARD_DB_RE.match(database)
        return match.group("db") if match else database

    # -----------------
    # Private helpers
    # -----------------

    async def _for_each(
        self,
        items: Iterable[str],
        func: Callable[[str], Awaitable[list[T]]],
    ) -> list[T]:
        semaphore = asyncio.Semaphore(self._config.concurrency)

        async def _run(item: str) -> list[T]:
            async with semaphore:
                return await func(item)

        tasks = [asyncio.ensure_future(_run(item)) for item in items]
        if not tasks:
            return []

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            # No request may still be in flight once this call returns or raises.
            unfinished = [task for task in tasks if not task.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)

        for task in tasks:
            if task in done and not task.cancelled() and task.exception() is not None:
                raise task.exception()

        return [result for task in tasks for result in task.result()]

    @staticmethod
    def _documents(db_name: str, docs: list[Any]) -> list[dict[str, Any]]:
        """Flatten nested document lists; every leaf must be an object. Ids are stringified."""

        flat: list[dict[str, Any]] = []
        for item in docs:
            if isinstance(item, list):
                flat.extend(CouchDbService._documents(db_name, item))
            elif isinstance(item, dict):
                if "_id" in item and not isinstance(item["_id"], str):
                    # CouchDB ids are strings; the setup document itself stays unchanged.
                    item = {**item, "_id": str(item["_id"])}
                flat.append(item)
            else:
                raise InvalidDocumentError(db_name=db_name, value=item)
        return flat

    @classmethod
    def _design_documents(cls, db_name: str, docs: list[Any]) -> list[dict[str, Any]]:
        return [
            doc
            for doc in cls._documents(db_name, docs)
            if str(doc.get("_id", "")).startswith(DESIGN_PREFIX) and isinstance(doc.get("views"), dict) and doc["views"]
        ]

    async def _current_rev(self, db_name: str, doc_id: str) -> Optional[str]:
        status, payload = await self._request(method="GET", path=self._doc_path(db_name, doc_id))
        if status == HTTPStatus.OK:
            return self._parse_object(payload).get("_rev")
        if status == HTTPStatus.NOT_FOUND:
            return None
        raise self._error(f"Failed to get document (id={db_name}/{doc_id})", status, payload)

    async def _write_document(self, db_name: str, doc: dict[str, Any]) -> tuple[int, bytes]:
        if "_id" in doc:
            return await self._request(method="PUT", path=self._doc_path(db_name, doc["_id"]), body=doc)
        return await self._request(method="POST", path=self._db_path(db_name), body=doc)

    @staticmethod
    def _db_path(db_name: str) -> str:
        if not db_name or not db_name.strip():
            raise ValueError("db_name must be provided")
        return "/" + quote(db_name, safe="")

    @classmethod
    def _doc_path(cls, db_name: str, doc_id: str) -> str:
        if doc_id.startswith(DESIGN_PREFIX):
            return f"{cls._db_path(db_name)}/_design/{quote(doc_id[len(DESIGN_PREFIX):], safe='')}"
        return f"{cls._db_path(db_name)}/{quote(doc_id, safe='')}"

    def _result_id(self, db_name: str, doc: dict[str, Any], payload: bytes) -> str:
        doc_id = doc.get("_id") or self._parse_object(payload).get("id") or ""
        return f"{db_name}/{doc_id}"

    def _rev(self, payload: bytes) -> Optional[str]:
        return self._parse_object(payload).get("rev")

    @staticmethod
    def _parse_json(payload: bytes) -> Any:
        if not payload:
            return None
        try:
            return json.loads(payload.decode("utf-8"))
        except ValueError:
            return None

    @classmethod
    def _parse_object(cls, payload: bytes) -> dict[str, Any]:
        parsed = cls._parse_json(payload)
        return parsed if isinstance(parsed, dict) else {}

    @staticmethod
    def _error(message: str, status: int, payload: bytes) -> RemoteOperationError:
        try:
            details = payload.decode("utf-8") if payload else ""
        except UnicodeDecodeError:
            details = ""
        return RemoteOperationError(message, status=status, details=details.strip())

    async def _request(
        self,
        *,
        method: str,
        path: str,
        body: Optional[Any] = None,
        params: Optional[dict[str, str]] = None,
    ) -> tuple[int, bytes]:
        url = f"{self._config.endpoint}{path}"
        credentials = self._config.credentials
        auth = aiohttp.BasicAuth(*credentials) if credentials else None

        try:
            async with self._session.request(
                method.upper(),
                url,
                json=body,
                params=params,
                auth=auth,
                headers={"Accept": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self._config.timeout_seconds),
            ) as resp:
                return (resp.status, await resp.read())
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.exception("CouchDB request failed (method=%s url=%s)", method, url)
            raise RemoteOperationError(f"CouchDB request failed ({method} {path})") from exc
