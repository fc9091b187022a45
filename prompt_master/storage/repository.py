"""
Repository pattern for data access.

Relational backend for users, credit balances and prompt history, plus the
factory that selects a backend from configuration.
"""

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, List, Optional

from ..config.loader import AppConfig
from ..core.errors import (
    InsufficientBalanceError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .base import ACTIVE_WINDOW_DAYS, AdminAccount, Repository
from .db import get_connection
from .local import LocalRepository
from .models import PromptEntry, PromptType, Role, STARTING_CREDITS, SystemMetrics, User


logger = logging.getLogger(__name__)

_USER_COLUMNS = "id, name, email, credits, role, created_at"
_HISTORY_COLUMNS = "id, user_id, type, prompt, output, timestamp"


class SqliteRepository(Repository):
    """Repository backed by a SQLite database.

    A connection is opened per operation. Credit updates are a single
    conditional UPDATE so concurrent debits can never drive a balance
    below zero.
    """

    def __init__(self, db_path: str = "prompt_master.db"):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError() from e
        try:
            yield conn
            conn.commit()
        except (sqlite3.Error, OverflowError) as e:
            conn.rollback()
            logger.error("SQLite operation failed on %s: %s", self.db_path, e)
            raise PersistenceError() from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init(self, admin: Optional[AdminAccount] = None) -> None:
        """Create tables if they don't exist and seed the administrator.

        prompt_history.user_id deliberately has no foreign key: deleting a
        user leaves their history rows in place.
        """
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    credential TEXT NOT NULL,
                    credits INTEGER NOT NULL CHECK (credits >= 0),
                    role TEXT NOT NULL CHECK (role IN ('ADMIN', 'USER')),
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS prompt_history (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    output TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_prompt_history_user "
                "ON prompt_history (user_id, timestamp)"
            )

        if admin is None:
            return
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM users WHERE role = ? LIMIT 1", (Role.ADMIN.value,)
            ).fetchone()
        if row is None:
            self.create_user(
                admin.name, admin.email, admin.credential,
                role=Role.ADMIN, credits=admin.credits,
            )
            logger.info("Seeded administrator account %s", admin.email.lower())

    def get_users(self) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users ORDER BY created_at, rowid"
            ).fetchall()
        return [_row_to_user(row) for row in rows]

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            return self._fetch_user(conn, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?",
                (email.lower(),),
            ).fetchone()
        return _row_to_user(row) if row else None

    def create_user(
        self,
        name: str,
        email: str,
        credential: str,
        role: Role = Role.USER,
        credits: int = STARTING_CREDITS,
    ) -> User:
        user = User(
            id=str(uuid.uuid4()),
            name=name,
            email=email.lower(),
            credits=credits,
            role=role,
            created_at=datetime.now(),
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO users (id, name, email, credential, credits, role, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        user.id,
                        user.name,
                        user.email,
                        credential,
                        user.credits,
                        user.role.value,
                        user.created_at.isoformat(),
                    ),
                )
        except PersistenceError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise ValidationError({"email": "Email is already registered"}) from None
            raise
        return user

    def get_credential(self, user_id: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT credential FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        return row["credential"] if row else None

    def update_user_credits(self, user_id: str, delta: int) -> User:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET credits = credits + ? "
                "WHERE id = ? AND credits + ? >= 0",
                (delta, user_id, delta),
            )
            user = self._fetch_user(conn, user_id)
            if user is None:
                raise NotFoundError("User not found.")
            if cursor.rowcount == 0:
                raise InsufficientBalanceError(
                    f"Insufficient balance: current balance is {user.credits}."
                )
        return user

    def save_prompt_history(
        self, user_id: str, prompt_type: PromptType, prompt: str, output: str
    ) -> PromptEntry:
        entry = PromptEntry(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=prompt_type,
            prompt=prompt,
            output=output,
            timestamp=datetime.now(),
        )
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO prompt_history ({_HISTORY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    entry.id,
                    entry.user_id,
                    entry.type.value,
                    entry.prompt,
                    entry.output,
                    entry.timestamp.isoformat(),
                ),
            )
        return entry

    def get_user_history(self, user_id: str) -> List[PromptEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_HISTORY_COLUMNS} FROM prompt_history WHERE user_id = ? "
                "ORDER BY timestamp DESC, rowid DESC",
                (user_id,),
            ).fetchall()
        return [
            PromptEntry(
                id=row["id"],
                user_id=row["user_id"],
                type=PromptType(row["type"]),
                prompt=row["prompt"],
                output=row["output"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
            )
            for row in rows
        ]

    def update_user_profile(
        self,
        user_id: str,
        name: Optional[str] = None,
        credential: Optional[str] = None,
    ) -> User:
        assignments = []
        params: list = []
        if name is not None:
            assignments.append("name = ?")
            params.append(name)
        if credential is not None:
            assignments.append("credential = ?")
            params.append(credential)

        with self._connect() as conn:
            if assignments:
                conn.execute(
                    f"UPDATE users SET {', '.join(assignments)} WHERE id = ?",
                    (*params, user_id),
                )
            user = self._fetch_user(conn, user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    def delete_user(self, user_id: str) -> None:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        if cursor.rowcount == 0:
            raise NotFoundError("User not found.")

    def get_system_metrics(self) -> SystemMetrics:
        cutoff = (datetime.now() - timedelta(days=ACTIVE_WINDOW_DAYS)).isoformat()
        with self._connect() as conn:
            users_row = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(credits), 0) FROM users WHERE role != ?",
                (Role.ADMIN.value,),
            ).fetchone()
            prompts_row = conn.execute("SELECT COUNT(*) FROM prompt_history").fetchone()
            active_row = conn.execute(
                """
                SELECT COUNT(DISTINCT h.user_id)
                FROM prompt_history h JOIN users u ON u.id = h.user_id
                WHERE u.role != ? AND h.timestamp >= ?
                """,
                (Role.ADMIN.value, cutoff),
            ).fetchone()

        return SystemMetrics(
            total_users=users_row[0],
            total_credits=users_row[1],
            total_prompts=prompts_row[0],
            active_users=active_row[0],
        )

    @staticmethod
    def _fetch_user(conn: sqlite3.Connection, user_id: str) -> Optional[User]:
        row = conn.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        return _row_to_user(row) if row else None


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        credits=row["credits"],
        role=Role(row["role"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def open_repository(config: AppConfig) -> Repository:
    """Create the repository selected by ``config``.

    A ``database`` section selects SQLite; without one the local
    key-value store is used.
    """
    if config.database is not None:
        logger.info("Using SQLite backend at %s", config.database.path)
        return SqliteRepository(config.database.path)
    logger.info("Using local store in %s", config.local.data_dir)
    return LocalRepository(config.local.data_dir)
