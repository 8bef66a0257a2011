"""
Relational store for the print ledger.

The Store is the single storage context of the application. It is created
once in create_app(), handed explicitly to every service that needs it, and
disposed at shutdown. There are no module-level engines or sessions.

TRANSACTIONS:
    All reads and writes go through Store.transaction(). A write transaction
    commits when the block exits normally and rolls back on any exception,
    so a multi-step read-modify-write either lands completely or not at all.
    Read-only transactions always roll back.

SQLITE LOCKING:
    pysqlite defers BEGIN until the first DML statement, which would let two
    requests read the same balance before either writes it. The engine is
    therefore switched to explicit transaction control and write transactions
    open with BEGIN IMMEDIATE: the second writer blocks (up to the busy
    timeout) until the first commits, then reads the committed balance.
    Other backends rely on SELECT ... FOR UPDATE issued by the ledger.

Usage:
    store = Store("sqlite:///data/print_quota.db")
    store.migrate(default_per_page_cents=10, default_color_page_cents=30)

    with store.transaction() as session:
        account = session.get(Account, user_id)
        ...

    store.dispose()
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.exceptions import StorageUnavailableError
from logging_config import get_logger
from models.entities import Base, Setting


logger = get_logger(__name__)

SETTING_PER_PAGE_CENTS = "per_page_cents"
SETTING_COLOR_PAGE_CENTS = "color_page_cents"

DEFAULT_PER_PAGE_CENTS = 10
DEFAULT_COLOR_PAGE_CENTS = 30


class Store:
    """
    Owns the SQLAlchemy engine and session factories.

    Attributes:
        database_url: SQLAlchemy URL the store was opened with
    """

    def __init__(self, database_url: str, busy_timeout_seconds: float = 5.0):
        """
        Open the database.

        Args:
            database_url: SQLAlchemy database URL
            busy_timeout_seconds: How long a SQLite writer waits for the lock

        Raises:
            StorageUnavailableError: If the engine cannot be created
        """
        self.database_url = database_url
        self.disposed = False
        self._is_sqlite = database_url.startswith("sqlite")

        connect_args = {}
        if self._is_sqlite:
            _ensure_sqlite_directory(database_url)
            connect_args = {"timeout": busy_timeout_seconds, "check_same_thread": False}

        try:
            self._engine: Engine = create_engine(database_url, connect_args=connect_args)
        except (SQLAlchemyError, ValueError) as e:
            raise StorageUnavailableError(database_url, str(e)) from e

        if self._is_sqlite:
            _install_sqlite_locking(self._engine, busy_timeout_seconds)

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._read_only_factory = sessionmaker(
            bind=self._engine.execution_options(read_only=True),
            expire_on_commit=False,
        )

        logger.info(f"Store opened: {self._engine.url.render_as_string(hide_password=True)}")

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def supports_row_locks(self) -> bool:
        """True when SELECT ... FOR UPDATE is meaningful for this backend."""
        return not self._is_sqlite

    def migrate(
        self,
        default_per_page_cents: int = DEFAULT_PER_PAGE_CENTS,
        default_color_page_cents: int = DEFAULT_COLOR_PAGE_CENTS,
    ) -> None:
        """
        Create missing tables and seed pricing defaults.

        Existing settings are never overwritten.

        Raises:
            StorageUnavailableError: If the schema cannot be created
        """
        try:
            Base.metadata.create_all(self._engine)
            with self.transaction() as session:
                for key, value in (
                    (SETTING_PER_PAGE_CENTS, default_per_page_cents),
                    (SETTING_COLOR_PAGE_CENTS, default_color_page_cents),
                ):
                    if session.get(Setting, key) is None:
                        session.add(Setting(key=key, value=str(value)))
        except SQLAlchemyError as e:
            raise StorageUnavailableError(self.database_url, str(e)) from e

        logger.info("Schema migrated")

    @contextmanager
    def transaction(self, read_only: bool = False) -> Iterator[Session]:
        """
        Run a block inside one database transaction.

        Args:
            read_only: Open a shared (non-locking) transaction that is
                always rolled back; rows loaded in it are detached, not
                expired, so they can be read after the block

        Yields:
            Session bound to the transaction
        """
        factory = self._read_only_factory if read_only else self._session_factory
        session = factory()
        try:
            yield session
            if read_only:
                # Loaded rows stay readable after the block
                session.expunge_all()
                session.rollback()
            else:
                session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Close all pooled connections. Call at application shutdown; repeat calls do nothing."""
        if self.disposed:
            return
        self._engine.dispose()
        self.disposed = True
        logger.info("Store disposed")


def get_setting_int(session: Session, key: str, default: int) -> int:
    """
    Read an integer setting.

    Returns:
        The stored value, or ``default`` when the key is absent

    Raises:
        ValueError: If the stored value is not an integer
    """
    setting = session.get(Setting, key)
    if setting is None:
        return default
    return int(setting.value)


def set_setting_int(session: Session, key: str, value: int) -> None:
    setting = session.get(Setting, key)
    if setting is None:
        session.add(Setting(key=key, value=str(value)))
    else:
        setting.value = str(value)


def _ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    prefix = "sqlite:///"
    if not database_url.startswith(prefix):
        return
    path = database_url[len(prefix):]
    if not path or path == ":memory:":
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def _install_sqlite_locking(engine: Engine, busy_timeout_seconds: float) -> None:
    busy_timeout_ms = int(busy_timeout_seconds * 1000)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Hand transaction control to the "begin" listener below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get("read_only"):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")
