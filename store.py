"""Durable key-value stores for learner models and curriculum topics."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from copy import deepcopy
from typing import Any, Dict, Iterable, List, Optional, Protocol

from curriculum import Topic
from db_pool import SQLiteConnectionPool
from skill_catalog import SkillCatalog
from user_model import UserModel

logger = logging.getLogger(__name__)


class TutorStore(Protocol):
    def get_user_model(self, user_id: str) -> Optional[UserModel]:
        ...

    def put_user_model(self, user_id: str, model: UserModel) -> bool:
        ...

    def get_topic(self, topic_id: str) -> Optional[Topic]:
        ...

    def list_topics(self) -> List[Topic]:
        ...


class InMemoryStore:
    """Process-local store; models are kept as serialized payloads."""

    def __init__(self, topics: Iterable[Topic] = (), *, catalog: Optional[SkillCatalog] = None) -> None:
        self.catalog = catalog
        self._models: Dict[str, Dict[str, Any]] = {}
        self._topics: Dict[str, Topic] = {topic.id: topic for topic in topics}
        self._lock = threading.Lock()

    def get_user_model(self, user_id: str) -> Optional[UserModel]:
        with self._lock:
            payload = self._models.get(user_id)
        if payload is None:
            return None
        return UserModel.from_dict(payload, catalog=self.catalog)

    def put_user_model(self, user_id: str, model: UserModel) -> bool:
        payload = deepcopy(model.to_dict())
        with self._lock:
            self._models[user_id] = payload
        return True

    def get_topic(self, topic_id: str) -> Optional[Topic]:
        return self._topics.get(topic_id)

    def list_topics(self) -> List[Topic]:
        return list(self._topics.values())


class SQLiteStore:
    """SQLite-backed store using JSON payload columns."""

    def __init__(
        self,
        db_path: str,
        *,
        catalog: Optional[SkillCatalog] = None,
        max_connections: int = 5,
    ) -> None:
        self.db_path = db_path
        self.catalog = catalog
        self._pool = SQLiteConnectionPool(db_path, max_connections=max_connections)
        self._init_tables()

    # ------------------------------------------------------------------
    def _init_tables(self) -> None:
        with self._pool.get_connection() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS user_models (
                    user_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS topics (
                    id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL
                )
                """
            )
            con.commit()

    # ------------------------------------------------------------------
    def get_user_model(self, user_id: str) -> Optional[UserModel]:
        with self._pool.get_connection() as con:
            row = con.execute("SELECT payload FROM user_models WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        try:
            payload = json.loads(row["payload"])
        except (TypeError, ValueError):
            logger.warning("Stored model for user %s is not valid JSON; treating as absent", user_id)
            return None
        return UserModel.from_dict(payload, catalog=self.catalog)

    # ------------------------------------------------------------------
    def put_user_model(self, user_id: str, model: UserModel) -> bool:
        try:
            payload = json.dumps(model.to_dict(), ensure_ascii=False)
            with self._pool.get_connection() as con:
                con.execute(
                    """
                    INSERT INTO user_models (user_id, payload, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(user_id) DO UPDATE SET
                        payload = excluded.payload,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (user_id, payload),
                )
                con.commit()
        except (sqlite3.Error, TypeError, ValueError):
            logger.exception("Persisting model for user %s failed", user_id)
            return False
        return True

    # ------------------------------------------------------------------
    def save_topics(self, topics: Iterable[Topic]) -> int:
        rows = [(topic.id, json.dumps(topic.to_dict(), ensure_ascii=False)) for topic in topics]
        with self._pool.get_connection() as con:
            con.executemany(
                "INSERT INTO topics (id, payload) VALUES (?, ?) "
                "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload",
                rows,
            )
            con.commit()
        return len(rows)

    # ------------------------------------------------------------------
    def get_topic(self, topic_id: str) -> Optional[Topic]:
        with self._pool.get_connection() as con:
            row = con.execute("SELECT payload FROM topics WHERE id = ?", (topic_id,)).fetchone()
        if row is None:
            return None
        return self._decode_topic(row["payload"])

    # ------------------------------------------------------------------
    def list_topics(self) -> List[Topic]:
        with self._pool.get_connection() as con:
            rows = con.execute("SELECT payload FROM topics ORDER BY rowid").fetchall()
        topics = [self._decode_topic(row["payload"]) for row in rows]
        return [topic for topic in topics if topic is not None]

    # ------------------------------------------------------------------
    @staticmethod
    def _decode_topic(raw: str) -> Optional[Topic]:
        try:
            return Topic.from_dict(json.loads(raw))
        except (TypeError, ValueError):
            logger.warning("Skipping unreadable topic row", exc_info=True)
            return None

    # ------------------------------------------------------------------
    def close(self) -> None:
        self._pool.close_all()


__all__ = ["InMemoryStore", "SQLiteStore", "TutorStore"]
