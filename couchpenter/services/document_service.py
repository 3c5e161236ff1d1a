from __future__ import annotations

import importlib.util
import json
import logging
from pathlib import Path
from typing import Any, Callable

from couchpenter.services.errors import InvalidDocumentError, ResolutionError
from couchpenter.services.setup.setup_loader import Setup

logger = logging.getLogger(__name__)

DocumentProvider = Callable[[], Any]

DATA_FILE_SUFFIX = ".json"
MODULE_SUFFIX = ".py"
MODULE_EXPORT = "document"

_providers: dict[str, DocumentProvider] = {}


def register_document_provider(name: str) -> Callable[[DocumentProvider], DocumentProvider]:
    """Register a callable that builds a document, referenced by `name` in setup files.

    Example:
        @register_document_provider("design/users")
        def users_design() -> dict:
            return {"_id": "_design/users", "views": {...}}
    """

    def decorator(func: DocumentProvider) -> DocumentProvider:
        if name in _providers:
            raise ValueError(f"Document provider already registered: {name}")
        _providers[name] = func
        logger.debug("Registered document provider: %s", name)
        return func

    return decorator


def unregister_document_provider(name: str) -> None:
    _providers.pop(name, None)


def list_document_providers() -> list[str]:
    return sorted(_providers)


class DocumentService:
    """Turns setup document entries into documents.

    Entries are resolved in place:
    - object or list: used as-is
    - name of a registered document provider: the provider's return value
    - string ending with `.json`: parsed content of that file under `base_dir`
    - any other string: Python module under `base_dir`, its `document` attribute
      (called first when it is a callable)

    Anything else is rejected with InvalidDocumentError.
    """

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def resolve(self, setup: Setup) -> Setup:
        for db_name, docs in setup.items():
            self._resolve_items(db_name, docs)
        return setup

    def _resolve_items(self, db_name: str, items: list[Any]) -> None:
        """Resolve a document list in place, descending into nested lists."""

        for i, item in enumerate(items):
            if isinstance(item, dict):
                continue
            if isinstance(item, list):
                self._resolve_items(db_name, item)
            elif isinstance(item, str):
                value = self._resolve_reference(db_name=db_name, reference=item)
                if isinstance(value, list):
                    self._resolve_items(db_name, value)
                items[i] = value
            else:
                raise InvalidDocumentError(db_name=db_name, value=item)

    def _resolve_reference(self, *, db_name: str, reference: str) -> Any:
        provider = _providers.get(reference)
        if provider is not None:
            value = self._call_provider(db_name=db_name, reference=reference, provider=provider)
        elif reference.endswith(DATA_FILE_SUFFIX):
            value = self._read_data_file(db_name=db_name, reference=reference)
        else:
            value = self._load_module_document(db_name=db_name, reference=reference)

        if not isinstance(value, (dict, list)):
            raise ResolutionError(
                f"Document must be an object or list, got {type(value).__name__}",
                db_name=db_name,
                reference=reference,
            )
        return value

    @staticmethod
    def _call_provider(*, db_name: str, reference: str, provider: DocumentProvider) -> Any:
        try:
            return provider()
        except Exception as exc:
            raise ResolutionError("Document provider failed", db_name=db_name, reference=reference) from exc

    def _read_data_file(self, *, db_name: str, reference: str) -> Any:
        path = self._base_dir / reference
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ResolutionError(f"Unable to read document file {path}", db_name=db_name, reference=reference) from exc

        try:
            return json.loads(raw)
        except ValueError as exc:
            raise ResolutionError(f"Invalid JSON in document file {path}", db_name=db_name, reference=reference) from exc

    def _load_module_document(self, *, db_name: str, reference: str) -> Any:
        path = self._base_dir / reference
        if path.suffix != MODULE_SUFFIX:
            path = path.with_name(path.name + MODULE_SUFFIX)
        if not path.is_file():
            raise ResolutionError(f"Document module not found: {path}", db_name=db_name, reference=reference)

        # Not registered in sys.modules: each resolution reads the module fresh.
        module_name = "couchpenter_documents." + path.stem.replace("-", "_")
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ResolutionError(f"Unable to load document module: {path}", db_name=db_name, reference=reference)

        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as exc:
            raise ResolutionError(f"Document module failed to load: {path}", db_name=db_name, reference=reference) from exc

        if not hasattr(module, MODULE_EXPORT):
            raise ResolutionError(
                f"Document module has no '{MODULE_EXPORT}' attribute: {path}",
                db_name=db_name,
                reference=reference,
            )

        value = getattr(module, MODULE_EXPORT)
        if callable(value):
            return self._call_provider(db_name=db_name, reference=reference, provider=value)
        return value
