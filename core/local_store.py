import asyncio
import logging
import sqlite3
from typing import List, Optional

from .errors import StorageError
from .guard import InitGuard
from .models import ConversationTurn

log = logging.getLogger(__name__)


class ConversationStore:
    """SQLite-backed conversation log and per-user trading state.

    The connection is opened lazily on first use and shared by every caller of
    this store. Concurrent first callers all wait for the same open.
    """

    def __init__(self, db_path: str = "memory.db") -> None:
        self.db_path = db_path
        self._guard = InitGuard(self._open, name=f"sqlite:{db_path}")

    async def _open(self) -> sqlite3.Connection:
        log.info("Opening database connection (%s)...", self.db_path)
        loop = asyncio.get_running_loop()
        try:
            conn = await loop.run_in_executor(None, self._connect)
        except sqlite3.Error as exc:
            log.error("Failed to open database %s: %s", self.db_path, exc)
            raise StorageError(f"failed to open {self.db_path}: {exc}") from exc
        log.info("Database connection opened.")
        return conn

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            self._init_db(conn)
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    @staticmethod
    def _init_db(conn: sqlite3.Connection) -> None:
        with conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS conversations (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  user_id TEXT NOT NULL,
                  message TEXT NOT NULL,
                  response TEXT NOT NULL,
                  timestamp REAL NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trading_state (
                  user_id TEXT PRIMARY KEY,
                  convinced INTEGER NOT NULL DEFAULT 0
                )
                """
            )

    async def connection(self) -> sqlite3.Connection:
        return await self._guard.get()

    @property
    def is_open(self) -> bool:
        return self._guard.ready

    async def append(self, turn: ConversationTurn) -> None:
        conn = await self.connection()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO conversations(user_id, message, response, timestamp) VALUES(?,?,?,?)",
                    (turn.user_id, turn.message, turn.response, turn.timestamp),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"failed to store turn for {turn.user_id}: {exc}") from exc

    async def record(self, user_id: str, message: str, response: str) -> ConversationTurn:
        turn = ConversationTurn(user_id=user_id, message=message, response=response)
        await self.append(turn)
        return turn

    async def read_history(self, user_id: str) -> List[ConversationTurn]:
        conn = await self.connection()
        try:
            rows = conn.execute(
                """
                SELECT user_id, message, response, timestamp
                FROM conversations
                WHERE user_id=?
                ORDER BY timestamp ASC, id ASC
                """,
                (user_id,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"failed to read history for {user_id}: {exc}") from exc
        return [
            ConversationTurn(
                user_id=row["user_id"],
                message=row["message"],
                response=row["response"],
                timestamp=float(row["timestamp"]),
            )
            for row in rows
        ]

    async def get_convinced(self, user_id: str) -> bool:
        conn = await self.connection()
        try:
            row: Optional[sqlite3.Row] = conn.execute(
                "SELECT convinced FROM trading_state WHERE user_id=?",
                (user_id,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"failed to read trading state for {user_id}: {exc}") from exc
        if not row:
            return False
        return bool(row["convinced"])

    async def set_convinced(self, user_id: str) -> None:
        conn = await self.connection()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO trading_state(user_id, convinced)
                    VALUES(?, 1)
                    ON CONFLICT(user_id)
                    DO UPDATE SET convinced=1
                    """,
                    (user_id,),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"failed to update trading state for {user_id}: {exc}") from exc
        log.info("User %s marked as convinced.", user_id)

    def close(self) -> None:
        conn = self._guard.reset()
        if conn is None:
            return
        log.info("Closing database connection...")
        try:
            conn.close()
        except sqlite3.Error as exc:
            log.warning("Error closing database: %s", exc)
            return
        log.info("Database connection closed.")
