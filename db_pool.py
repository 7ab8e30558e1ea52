"""Thread-safe SQLite connection pool shared by the durable store."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Generator, List

logger = logging.getLogger(__name__)


class SQLiteConnectionPool:
    """Hands out at most ``max_connections`` connections to ``database``.

    Connections are opened with ``check_same_thread=False`` because a pooled
    connection may be returned by one worker thread and reused by another.
    """

    def __init__(self, database: str, max_connections: int = 5, timeout: float = 5.0):
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self.database = database
        self.max_connections = max_connections
        self.timeout = timeout
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created: List[sqlite3.Connection] = []

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database, timeout=self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection; uncommitted work is rolled back on return."""
        try:
            connection = self._pool.get(block=False)
        except Empty:
            with self._lock:
                can_create = len(self._created) < self.max_connections
                if can_create:
                    connection = self._create_connection()
                    self._created.append(connection)
                    logger.debug("Opened SQLite connection %d/%d for %s",
                                 len(self._created), self.max_connections, self.database)
            if not can_create:
                connection = self._pool.get(block=True, timeout=self.timeout)

        try:
            yield connection
        finally:
            try:
                connection.rollback()
                self._pool.put(connection)
            except sqlite3.Error as exc:
                logger.error("Discarding broken SQLite connection: %s", exc)
                with self._lock:
                    if connection in self._created:
                        self._created.remove(connection)
                try:
                    connection.close()
                except sqlite3.Error:
                    logger.debug("Closing broken connection failed", exc_info=True)

    def close_all(self) -> None:
        with self._lock:
            connections, self._created = self._created, []
        while True:
            try:
                self._pool.get(block=False)
            except Empty:
                break
        for connection in connections:
            try:
                connection.close()
            except sqlite3.Error:
                logger.debug("Closing pooled connection failed", exc_info=True)
