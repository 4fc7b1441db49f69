"""
Database connection lifecycle.

The connector owns the SQLAlchemy engine and moves through an explicit set of
states:

    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTED -> DISCONNECTED -> RECONNECTING -> CONNECTED | DISCONNECTED
    any state -> CLOSED

The initial connection is attempted exactly once; failing it is fatal. After
that, driver errors that indicate a lost connection and pool invalidations
arm a single reconnect timer governed by a ReconnectPolicy. Every transition
is reported to a status sink (normally Metrics.update_db_connection_status).
"""

import logging
import random
import signal
import socket
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session, sessionmaker

from storefront.config import DatabaseConfig, ReconnectConfig
from storefront.exceptions import DatabaseError, DatabaseStartupError
from storefront.logging_setup import error_details
from storefront.models import Base

logger = logging.getLogger(__name__)

# write_concern -> PostgreSQL synchronous_commit level
COMMIT_LEVELS = {
    "majority": "on",
    "remote_apply": "remote_apply",
    "local": "local",
    "off": "off",
}

CATEGORY_MESSAGES = {
    "server_selection": "Could not reach any database server before the selection timeout",
    "network": "Network error occurred while attempting to connect to the database",
}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass
class ReconnectPolicy:
    """
    Delay schedule for reconnect attempts.

    Attempt n (1-based) waits min(delay * backoff_factor ** (n - 1), max_delay)
    seconds plus up to `jitter` seconds of uniform noise. max_attempts=None
    means the sequence never gives up.
    """
    delay: float = 5.0
    backoff_factor: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.0
    max_attempts: Optional[int] = 10

    @classmethod
    def from_config(cls, config: ReconnectConfig) -> "ReconnectPolicy":
        return cls(
            delay=config.delay_seconds,
            backoff_factor=config.backoff_factor,
            max_delay=config.max_delay_seconds,
            jitter=config.jitter_seconds,
            max_attempts=config.max_attempts,
        )

    def allows(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt <= self.max_attempts

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        base = min(self.delay * (self.backoff_factor ** (attempt - 1)), self.max_delay)
        if self.jitter > 0:
            base += rng() * self.jitter
        return base


class TimerScheduler:
    """Runs callbacks on daemon threading.Timer threads."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


def classify_connection_error(exc: BaseException) -> str:
    if isinstance(exc, PoolTimeoutError):
        return "server_selection"
    message = str(exc).lower()
    if isinstance(exc, OperationalError) and ("timeout" in message or "timed out" in message):
        return "server_selection"
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError, OSError)):
        return "network"
    return "unknown"


def resolve_hostaddr(host: Optional[str], port: Optional[int], ip_family: int) -> Optional[str]:
    """Resolve host to a numeric address of the requested family (4 or 6)."""
    if not host or host.startswith("/") or ip_family not in (4, 6):
        return None
    family = socket.AF_INET if ip_family == 4 else socket.AF_INET6
    infos = socket.getaddrinfo(host, port or 5432, family, socket.SOCK_STREAM)
    return infos[0][4][0]


def build_engine_options(config: DatabaseConfig) -> Dict[str, Any]:
    """create_engine() keyword arguments for the configured backend.

    hostaddr is not set here; DatabaseConnector resolves it for every new
    DBAPI connection so a database that moves to a new address is followed.
    """
    url = make_url(config.url)
    options: Dict[str, Any] = {"echo": config.echo, "pool_pre_ping": True}

    if url.get_backend_name() != "postgresql":
        return options

    options.update(
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
    )
    commit_level = COMMIT_LEVELS.get(config.write_concern, "on")
    connect_args: Dict[str, Any] = {
        "connect_timeout": config.server_selection_timeout,
        "keepalives": 1,
        "keepalives_idle": config.socket_timeout,
        "options": f"-c synchronous_commit={commit_level}",
        "application_name": "storefront",
    }
    options["connect_args"] = connect_args
    return options


class DatabaseConnector:
    def __init__(
        self,
        config: DatabaseConfig,
        policy: Optional[ReconnectPolicy] = None,
        status_sink: Optional[Callable[[bool], None]] = None,
        engine_factory: Callable[..., Engine] = create_engine,
        scheduler: Optional[Any] = None,
        metadata=None,
        resolver: Callable[[Optional[str], Optional[int], int], Optional[str]] = resolve_hostaddr,
    ):
        self.config = config
        self.policy = policy or ReconnectPolicy()
        self._status_sink = status_sink or (lambda connected: None)
        self._engine_factory = engine_factory
        self._scheduler = scheduler or TimerScheduler()
        self._metadata = metadata if metadata is not None else Base.metadata
        self._resolver = resolver

        self._lock = threading.RLock()
        self._state = ConnectionState.DISCONNECTED
        self._pending = None
        self._attempt = 0

        self.engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._pending is not None

    # ------------------------------------------------------------------ #
    # Startup                                                              #
    # ------------------------------------------------------------------ #
    def connect(self) -> Engine:
        """
        Open the engine, ping it, ensure the schema and install listeners.

        Raises DatabaseStartupError on any failure; the caller decides whether
        that is fatal (server.start_database exits the process).
        """
        with self._lock:
            if self._state is ConnectionState.CLOSED:
                raise DatabaseStartupError("Connector has been closed", "unknown")
            self._state = ConnectionState.CONNECTING

        engine = None
        try:
            logger.info("Attempting to connect to the database...")
            logger.info(f"Database URL: {make_url(self.config.url).render_as_string(hide_password=True)}")

            engine = self._engine_factory(self.config.url, **build_engine_options(self.config))
            self._install_resolver(engine)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info(f"Database connected: {engine.url.host or engine.url.database or 'local'}")
            logger.info("Database ping successful")

            with self._lock:
                self.engine = engine
                self._sessionmaker = sessionmaker(bind=engine, expire_on_commit=False)
                self._state = ConnectionState.CONNECTED
                self._attempt = 0
            self._report(True)

            self.ensure_indexes()
            self._install_listeners(engine)
            return engine

        except Exception as exc:
            with self._lock:
                self._state = ConnectionState.DISCONNECTED
                self.engine = None
                self._sessionmaker = None
            if engine is not None:
                engine.dispose()
            self._report(False)

            category = classify_connection_error(exc)
            logger.error(f"Database connection error: {exc}")
            logger.error(f"Error details: {error_details(exc)}")
            if category in CATEGORY_MESSAGES:
                logger.error(CATEGORY_MESSAGES[category])
            raise DatabaseStartupError(str(exc), category, exc) from exc

    def ensure_indexes(self) -> None:
        self._metadata.create_all(self.engine)
        logger.info(f"Current tables: {sorted(inspect(self.engine).get_table_names())}")
        logger.info("Database indexes ensured")

    def _install_resolver(self, engine: Engine) -> None:
        url = make_url(self.config.url)
        if url.get_backend_name() != "postgresql" or self.config.ip_family not in (4, 6):
            return
        event.listen(engine, "do_connect", self._on_do_connect)

    def _install_listeners(self, engine: Engine) -> None:
        event.listen(engine, "handle_error", self._on_engine_error)
        event.listen(engine, "invalidate", self._on_invalidate)
        event.listen(engine, "connect", self._on_pool_connect)

    # ------------------------------------------------------------------ #
    # Engine / pool event adapters                                         #
    # ------------------------------------------------------------------ #
    def _on_do_connect(self, dialect, connection_record, cargs, cparams) -> None:
        url = make_url(self.config.url)
        try:
            hostaddr = self._resolver(url.host, url.port, self.config.ip_family)
        except OSError as exc:
            raise DisconnectionError(f"Could not resolve database host {url.host}: {exc}") from exc
        if hostaddr:
            cparams["hostaddr"] = hostaddr

    def _on_engine_error(self, context) -> None:
        if context.is_disconnect:
            self.handle_error(context.original_exception)

    def _on_invalidate(self, dbapi_connection, connection_record, exception) -> None:
        self.handle_disconnected(exception)

    def _on_pool_connect(self, dbapi_connection, connection_record) -> None:
        # The pool opened a fresh connection on its own after a disconnect
        if self._state is ConnectionState.DISCONNECTED:
            self.handle_reconnected()

    # ------------------------------------------------------------------ #
    # Lifecycle events                                                     #
    # ------------------------------------------------------------------ #
    def handle_error(self, exc: Optional[BaseException] = None) -> None:
        logger.error(f"Database connection error: {exc}")
        self._report(False)
        self._lost_connection()

    def handle_disconnected(self, exc: Optional[BaseException] = None) -> None:
        logger.warning("Database disconnected" + (f": {exc}" if exc else ""))
        self._report(False)
        self._lost_connection()

    def handle_reconnected(self) -> None:
        with self._lock:
            if self._state in (ConnectionState.CLOSED, ConnectionState.CONNECTED):
                return
            pending, self._pending = self._pending, None
            self._state = ConnectionState.CONNECTED
            self._attempt = 0
        if pending is not None:
            pending.cancel()
        logger.info("Database reconnected")
        self._report(True)

    def _lost_connection(self) -> None:
        with self._lock:
            # A running attempt (initial or reconnect) handles its own failure
            if self._state in (
                ConnectionState.CLOSED,
                ConnectionState.CONNECTING,
                ConnectionState.RECONNECTING,
            ):
                return
            self._state = ConnectionState.DISCONNECTED
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Arm the reconnect timer unless one is already pending. Lock held."""
        if self._pending is not None:
            return
        attempt = self._attempt + 1
        if not self.policy.allows(attempt):
            logger.error(f"Giving up on reconnecting after {self._attempt} failed attempts")
            self._attempt = 0
            return
        self._attempt = attempt
        delay = self.policy.delay_for(attempt)
        logger.info(f"Scheduling reconnect attempt {attempt} in {delay:.1f}s")
        self._pending = self._scheduler.schedule(delay, self._attempt_reconnect)

    def _attempt_reconnect(self) -> None:
        with self._lock:
            self._pending = None
            if self._state is not ConnectionState.DISCONNECTED or self.engine is None:
                return
            self._state = ConnectionState.RECONNECTING
            attempt = self._attempt
            engine = self.engine

        logger.info(f"Reconnect attempt {attempt}...")
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as exc:
            logger.error(f"Reconnection failed: {exc}")
            self._report(False)
            with self._lock:
                if self._state is ConnectionState.CLOSED:
                    return
                self._state = ConnectionState.DISCONNECTED
                self._schedule_reconnect()
            return

        self.handle_reconnected()

    # ------------------------------------------------------------------ #
    # Usage                                                                #
    # ------------------------------------------------------------------ #
    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on error."""
        if self._sessionmaker is None:
            raise DatabaseError("Database is not connected", "SESSION")
        session = self._sessionmaker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        if self.engine is None or self._state is ConnectionState.CLOSED:
            return False
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            logger.warning(f"Database ping failed: {exc}")
            return False

    def close(self) -> None:
        with self._lock:
            if self._state is ConnectionState.CLOSED:
                return
            self._state = ConnectionState.CLOSED
            pending, self._pending = self._pending, None
        if pending is not None:
            pending.cancel()
        if self.engine is not None:
            self.engine.dispose()
        logger.info("Database connection closed")
        self._report(False)

    def _report(self, connected: bool) -> None:
        self._status_sink(connected)


def make_shutdown_handler(connector: DatabaseConnector, exit: Callable[[int], Any] = sys.exit):
    """Signal handler closing the connector; exit 0 on success, 1 if close fails."""

    def _handler(signum, frame):
        try:
            connector.close()
        except Exception as exc:
            logger.error(f"Error closing database connection: {exc}")
            exit(1)
            return
        logger.info("Database connection closed through app termination")
        exit(0)

    return _handler


def install_signal_handlers(connector: DatabaseConnector, signals=(signal.SIGINT, signal.SIGTERM)):
    handler = make_shutdown_handler(connector)
    for signum in signals:
        signal.signal(signum, handler)
    return handler
