from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Optional

from couchpenter.services.errors import ConfigError

logger = logging.getLogger(__name__)

Setup = dict[str, list[Any]]


def load_setup(
    *,
    db_setup: Optional[dict[str, Any]] = None,
    setup_file: Optional[Path] = None,
    prefix: Optional[str] = None,
) -> Setup:
    """Load the database setup and apply the optional database name prefix.

    An explicit `db_setup` wins over `setup_file`. The explicit setup is copied,
    so the caller's object is never modified by prefixing or document resolution.
    """

    if db_setup is not None:
        setup = copy.deepcopy(db_setup)
        source = "<dbSetup>"
    else:
        if setup_file is None:
            raise ConfigError("Either db_setup or setup_file must be provided")
        setup = _read_setup_file(setup_file)
        source = str(setup_file)

    _validate(setup, source=source)

    if prefix:
        apply_prefix(setup, prefix)
    return setup


def apply_prefix(setup: Setup, prefix: str) -> Setup:
    """Rename every database key `k` to `prefix + k`, in place.

    All keys are renamed in one pass, so the result has exactly the keys
    `prefix + k`. Applying the same prefix twice yields `prefix + prefix + k`.
    """

    prefixed = {prefix + db_name: docs for db_name, docs in setup.items()}
    setup.clear()
    setup.update(prefixed)
    logger.debug("Prefixed %d database name(s) with %r", len(prefixed), prefix)
    return setup


def _read_setup_file(path: Path) -> Setup:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Unable to read setup file: {path}") from exc

    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid JSON in setup file: {path}") from exc


def _validate(setup: Any, *, source: str) -> None:
    if not isinstance(setup, dict):
        raise ConfigError(f"Setup must be an object of database name to document list ({source})")
    for db_name, docs in setup.items():
        if not isinstance(db_name, str) or not db_name.strip():
            raise ConfigError(f"Invalid database name {db_name!r} ({source})")
        if not isinstance(docs, list):
            raise ConfigError(f"Documents of db {db_name} must be a list ({source})")
