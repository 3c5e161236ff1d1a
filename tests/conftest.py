"""Shared test helpers."""

import copy
from typing import Any, Dict, List, Optional

import pytest

from couchpenter.models.couchpenter import OperationResult
from couchpenter.services.errors import RemoteOperationError


class RecordingClient:
    """
    In-memory database client.

    Records every call as (method, data) and returns one result per database
    name, or per document for document tasks. `fail_on` makes that method
    raise `error`, RemoteOperationError by default.
    """

    def __init__(self, fail_on: Optional[str] = None, error: Optional[Exception] = None):
        self.calls: List[tuple] = []
        self.fail_on = fail_on
        self.error = error

    async def _record(self, method: str, data: Any) -> List[OperationResult]:
        self.calls.append((method, copy.deepcopy(data)))
        if method == self.fail_on:
            if self.error is not None:
                raise self.error
            raise RemoteOperationError(f"{method} failed", status=500)
        if isinstance(data, list):
            return [OperationResult(id=name, message=method) for name in data]
        return [
            OperationResult(id=f"{db}/{doc.get('_id', '')}", message=method)
            for db, docs in data.items()
            for doc in docs
        ]

    async def create_databases(self, names):
        return await self._record("create_databases", names)

    async def remove_databases(self, names):
        return await self._record("remove_databases", names)

    async def clean_databases(self, names):
        return await self._record("clean_databases", names)

    async def create_documents(self, setup):
        return await self._record("create_documents", setup)

    async def save_documents(self, setup):
        return await self._record("save_documents", setup)

    async def remove_documents(self, setup):
        return await self._record("remove_documents", setup)

    async def warm_views(self, setup):
        return await self._record("warm_views", setup)

    async def live_deploy_view(self, setup):
        return await self._record("live_deploy_view", setup)

    @property
    def methods(self) -> List[str]:
        return [method for method, _ in self.calls]


@pytest.fixture
def client():
    return RecordingClient()


@pytest.fixture
def simple_setup() -> Dict[str, List[Any]]:
    return {"db1": [{"_id": "a"}]}
