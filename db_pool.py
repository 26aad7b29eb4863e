"""SQLite connection pool shared by the store's worker threads."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Generator, List

from engines.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class SQLiteConnectionPool:
    """Thread-safe SQLite connection pool.

    Connections are opened lazily up to ``max_connections``. A caller that
    cannot obtain a connection within ``acquire_timeout`` seconds gets
    :class:`StoreUnavailable` instead of blocking forever.
    """

    def __init__(
        self,
        database: str,
        max_connections: int = 5,
        *,
        acquire_timeout: float = 5.0,
        busy_timeout_ms: int = 3000,
    ):
        if max_connections < 1:
            raise ValueError("max_connections must be >= 1")
        self.database = database
        self.max_connections = max_connections
        self.acquire_timeout = acquire_timeout
        self.busy_timeout_ms = busy_timeout_ms
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._all: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False

    def _create_connection(self) -> sqlite3.Connection:
        try:
            # Connections move between asyncio worker threads.
            conn = sqlite3.connect(self.database, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"cannot open database {self.database}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        return conn

    def _acquire(self) -> sqlite3.Connection:
        if self._closed:
            raise StoreUnavailable("connection pool is closed")
        try:
            return self._pool.get(block=False)
        except Empty:
            pass
        with self._lock:
            if len(self._all) < self.max_connections:
                connection = self._create_connection()
                self._all.append(connection)
                logger.debug("Created new connection (total: %d)", len(self._all))
                return connection
        try:
            return self._pool.get(block=True, timeout=self.acquire_timeout)
        except Empty:
            raise StoreUnavailable(
                f"no database connection available within {self.acquire_timeout:.1f}s"
            ) from None

    def _discard(self, connection: sqlite3.Connection) -> None:
        with self._lock:
            if connection in self._all:
                self._all.remove(connection)
        try:
            connection.close()
        except sqlite3.Error:
            logger.debug("Closing discarded connection failed", exc_info=True)

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Yield a pooled connection; it is rolled back and returned afterwards."""
        connection = self._acquire()
        try:
            yield connection
        finally:
            try:
                connection.rollback()
            except sqlite3.Error as e:
                logger.error("Error resetting pooled connection: %s", e)
                self._discard(connection)
            else:
                if self._closed:
                    self._discard(connection)
                else:
                    self._pool.put(connection)

    def close(self) -> None:
        """Close every connection; later acquisitions raise ``StoreUnavailable``."""
        self._closed = True
        with self._lock:
            connections, self._all = self._all, []
        for connection in connections:
            try:
                connection.close()
            except sqlite3.Error:
                logger.debug("Closing pooled connection failed", exc_info=True)
        while True:
            try:
                self._pool.get(block=False)
            except Empty:
                break

    @property
    def size(self) -> int:
        return len(self._all)
