"""
Task Orchestrator Tests

Covers task kinds, sequential execution, result aggregation, fail-fast
behaviour and lazy document resolution.

Run with:
    pytest tests/test_task_service.py -v
"""

import asyncio
import json

import pytest

from conftest import RecordingClient
from couchpenter.services.config import CouchpenterConfig
from couchpenter.services.errors import (
    ConfigError,
    InvalidDocumentError,
    RemoteOperationError,
    TaskFailedError,
)
from couchpenter.services.task_service import TASKS, TaskKind, TaskService, get_tasks


def _service(client, tmp_path, **options):
    config = CouchpenterConfig(dir=tmp_path, **options)
    return TaskService(config=config, client=client)


class TestTasks:

    def test_every_task_has_a_client_method(self):
        for task in TASKS.values():
            assert hasattr(RecordingClient, task.method)

    @pytest.mark.parametrize("name", ["createDatabases", "removeDatabases", "cleanDatabases"])
    def test_database_tasks(self, name):
        assert TASKS[name].kind is TaskKind.DATABASES

    @pytest.mark.parametrize(
        "name",
        ["createDocuments", "saveDocuments", "removeDocuments", "warmViews", "liveDeployView"],
    )
    def test_document_tasks(self, name):
        assert TASKS[name].kind is TaskKind.DOCUMENTS

    def test_unknown_task(self):
        with pytest.raises(ConfigError, match="dropEverything"):
            get_tasks(["createDatabases", "dropEverything"])


class TestRun:

    def test_database_task_receives_names(self, client, tmp_path):
        service = _service(client, tmp_path, db_setup={"db1": [{"_id": "a"}], "db2": []})
        asyncio.run(service.run(["createDatabases"]))
        assert client.calls == [("create_databases", ["db1", "db2"])]

    def test_document_task_receives_setup(self, client, tmp_path):
        service = _service(client, tmp_path, db_setup={"db1": [{"_id": "a"}]})
        asyncio.run(service.run(["saveDocuments"]))
        assert client.calls == [("save_documents", {"db1": [{"_id": "a"}]})]

    def test_set_up_scenario(self, client, tmp_path, simple_setup):
        service = _service(client, tmp_path, db_setup=simple_setup)
        results = asyncio.run(service.run(["createDatabases", "saveDocuments"]))

        assert client.calls == [
            ("create_databases", ["db1"]),
            ("save_documents", {"db1": [{"_id": "a"}]}),
        ]
        assert [(r.id, r.message) for r in results] == [
            ("db1", "create_databases"),
            ("db1/a", "save_documents"),
        ]

    def test_prefix_targets_prefixed_databases(self, client, tmp_path):
        service = _service(client, tmp_path, db_setup={"db1": []}, prefix="test_")
        asyncio.run(service.run(["createDatabases"]))
        assert client.calls == [("create_databases", ["test_db1"])]

    def test_results_are_concatenated_in_task_order(self, client, tmp_path):
        setup = {"db1": [{"_id": "a"}, {"_id": "b"}], "db2": [{"_id": "c"}]}
        service = _service(client, tmp_path, db_setup=setup)
        results = asyncio.run(service.run(["removeDatabases", "createDatabases", "createDocuments"]))

        assert len(results) == 2 + 2 + 3
        assert [r.id for r in results] == ["db1", "db2", "db1", "db2", "db1/a", "db1/b", "db2/c"]
        assert client.methods == ["remove_databases", "create_databases", "create_documents"]

    def test_setup_file_is_relative_to_working_directory(self, client, tmp_path, monkeypatch):
        docs_dir = tmp_path / "docs"
        docs_dir.mkdir()
        (tmp_path / "couchpenter.json").write_text(json.dumps({"db1": ["seed.json"]}))
        (docs_dir / "seed.json").write_text(json.dumps({"_id": "seed"}))
        monkeypatch.chdir(tmp_path)

        service = _service(client, docs_dir)
        asyncio.run(service.run(["createDocuments"]))
        assert client.calls == [("create_documents", {"db1": [{"_id": "seed"}]})]

    def test_setup_file_is_not_looked_up_in_dir(self, client, tmp_path, monkeypatch):
        docs_dir = tmp_path / "docs"
        docs_dir.mkdir()
        (docs_dir / "couchpenter.json").write_text(json.dumps({"db1": []}))
        monkeypatch.chdir(tmp_path)

        service = _service(client, docs_dir)
        with pytest.raises(ConfigError):
            asyncio.run(service.run(["createDatabases"]))
        assert client.calls == []

    def test_setup_is_loaded_fresh_for_every_run(self, client, tmp_path):
        service = _service(client, tmp_path, db_setup={"db1": []}, prefix="p_")
        asyncio.run(service.run(["createDatabases"]))
        asyncio.run(service.run(["createDatabases"]))
        assert client.calls == [("create_databases", ["p_db1"]), ("create_databases", ["p_db1"])]


class TestFailures:

    def test_stops_at_first_failure(self, tmp_path, simple_setup):
        client = RecordingClient(fail_on="create_databases")
        service = _service(client, tmp_path, db_setup=simple_setup)

        with pytest.raises(TaskFailedError) as exc_info:
            asyncio.run(service.run(["removeDatabases", "createDatabases", "createDocuments"]))

        error = exc_info.value
        assert error.task == "createDatabases"
        assert error.index == 1
        assert [r.id for r in error.completed] == ["db1"]
        assert isinstance(error.__cause__, RemoteOperationError)
        assert client.methods == ["remove_databases", "create_databases"]

    def test_failure_in_first_task_has_no_completed_results(self, tmp_path, simple_setup):
        client = RecordingClient(fail_on="create_databases")
        service = _service(client, tmp_path, db_setup=simple_setup)

        with pytest.raises(TaskFailedError) as exc_info:
            asyncio.run(service.run(["createDatabases", "saveDocuments"]))
        assert exc_info.value.index == 0
        assert exc_info.value.completed == []

    def test_invalid_document_aborts_before_remote_calls(self, client, tmp_path):
        service = _service(client, tmp_path, db_setup={"db1": [42]})

        with pytest.raises(InvalidDocumentError):
            asyncio.run(service.run(["removeDatabases", "createDatabases", "createDocuments"]))
        assert client.calls == []

    def test_nested_invalid_document_aborts_before_remote_calls(self, client, tmp_path):
        service = _service(client, tmp_path, db_setup={"db1": [[42]]})

        with pytest.raises(InvalidDocumentError):
            asyncio.run(service.run(["createDatabases", "saveDocuments"]))
        assert client.calls == []

    def test_unexpected_client_error_is_reported_as_task_failure(self, tmp_path, simple_setup):
        client = RecordingClient(
            fail_on="save_documents",
            error=TypeError("Object of type datetime is not JSON serializable"),
        )
        service = _service(client, tmp_path, db_setup=simple_setup)

        with pytest.raises(TaskFailedError) as exc_info:
            asyncio.run(service.run(["createDatabases", "saveDocuments"]))

        error = exc_info.value
        assert error.task == "saveDocuments"
        assert error.index == 1
        assert [r.id for r in error.completed] == ["db1"]
        assert isinstance(error.__cause__, TypeError)
        assert "datetime" in str(error)

    def test_database_only_sequence_skips_resolution(self, client, tmp_path):
        service = _service(client, tmp_path, db_setup={"db1": ["missing.json", 42]})
        asyncio.run(service.run(["removeDatabases", "createDatabases"]))
        assert client.methods == ["remove_databases", "create_databases"]

    def test_unknown_task_aborts_before_remote_calls(self, client, tmp_path, simple_setup):
        service = _service(client, tmp_path, db_setup=simple_setup)
        with pytest.raises(ConfigError):
            asyncio.run(service.run(["createDatabases", "nope"]))
        assert client.calls == []

    def test_missing_setup_file(self, client, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        service = _service(client, tmp_path)
        with pytest.raises(ConfigError):
            asyncio.run(service.run(["createDatabases"]))
        assert client.calls == []
