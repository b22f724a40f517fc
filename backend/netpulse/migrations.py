"""Bring the database schema to the Alembic head before the API serves requests."""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine.reflection import Inspector

from .database import SQLALCHEMY_DATABASE_URL
from .settings import read_float_env

if os.name == "posix":  # pragma: no cover - platform specific
    import fcntl
else:  # pragma: no cover - platform specific
    import msvcrt

LOGGER = logging.getLogger(__name__)

BACKEND_DIR = Path(__file__).resolve().parent.parent
LOCK_PATH = BACKEND_DIR / ".alembic-migration.lock"
LOCK_TIMEOUT_ENV = "ALEMBIC_MIGRATION_LOCK_TIMEOUT"
DEFAULT_LOCK_TIMEOUT = 30.0
LOCK_RETRY_DELAY = 0.25

# Windows reports a held lock as ERROR_SHARING_VIOLATION or ERROR_LOCK_VIOLATION.
_WINDOWS_LOCK_ERRORS = {32, 33}

SchemaProbe = Callable[[Inspector], bool]


def _has_columns(table: str, *columns: str) -> SchemaProbe:
    def probe(inspector: Inspector) -> bool:
        if not inspector.has_table(table):
            return False
        present = {column["name"] for column in inspector.get_columns(table)}
        return set(columns) <= present

    return probe


# Newest revision first; an unversioned database is stamped with the first match.
KNOWN_SCHEMAS: Sequence[tuple[str, Sequence[SchemaProbe]]] = (
    (
        "20251019_0001",
        (
            _has_columns("client_accounts", "wallet_balance", "disconnection_scheduled_at"),
            _has_columns("network_credentials", "username", "sync_status"),
            _has_columns("pending_charges", "checkout_request_id"),
        ),
    ),
)


def _try_lock(handle) -> None:
    if os.name == "posix":  # pragma: no cover - platform specific
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    else:  # pragma: no cover - platform specific
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)


def _unlock(handle) -> None:
    if os.name == "posix":  # pragma: no cover - platform specific
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    else:  # pragma: no cover - platform specific
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)


def _lock_is_held(error: OSError) -> bool:
    if isinstance(error, BlockingIOError):
        return True
    return getattr(error, "winerror", None) in _WINDOWS_LOCK_ERRORS


@contextmanager
def migration_lock(path: Path = LOCK_PATH, *, timeout: Optional[float] = None) -> Iterator[None]:
    """Serialise migrations between workers started at the same time."""

    wait = timeout if timeout is not None else read_float_env(
        LOCK_TIMEOUT_ENV, DEFAULT_LOCK_TIMEOUT, minimum=0.1
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + wait
    with path.open("a+") as handle:
        while True:
            try:
                _try_lock(handle)
                break
            except OSError as error:
                if not _lock_is_held(error):
                    raise
                if time.monotonic() >= deadline:
                    raise TimeoutError(f"Timed out after {wait:.1f}s waiting for {path}") from error
                time.sleep(LOCK_RETRY_DELAY)
        LOGGER.debug("Holding migration lock %s", path)
        try:
            yield
        finally:
            try:
                _unlock(handle)
            except OSError:  # pragma: no cover - closing the file releases it anyway
                LOGGER.debug("Could not release migration lock %s explicitly", path)


def build_alembic_config(database_url: Optional[str] = None) -> Config:
    config = Config(str(BACKEND_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    config.set_main_option(
        "sqlalchemy.url",
        database_url or os.getenv("DATABASE_URL") or SQLALCHEMY_DATABASE_URL,
    )
    return config


def detect_schema_revision(inspector: Inspector) -> Optional[str]:
    """Return the revision an unversioned schema corresponds to, if recognised."""

    for revision, probes in KNOWN_SCHEMAS:
        if all(probe(inspector) for probe in probes):
            return revision
    return None


def run_database_migrations(database_url: Optional[str] = None) -> None:
    """Upgrade the database to head, stamping recognised pre-existing schemas first."""

    config = build_alembic_config(database_url)
    url = config.get_main_option("sqlalchemy.url")
    head = ScriptDirectory.from_config(config).get_current_head()
    LOGGER.info("Running database migrations at %s", url)

    with migration_lock():
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        engine = create_engine(url, connect_args=connect_args)
        try:
            inspector = inspect(engine)
            versioned = inspector.has_table("alembic_version")
            detected = None if versioned else detect_schema_revision(inspector)
        finally:
            engine.dispose()

        if detected is not None:
            LOGGER.info("Existing schema matches revision %s; stamping it", detected)
            command.stamp(config, detected)
            if detected == head:
                return
        command.upgrade(config, "head")
