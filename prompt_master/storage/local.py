"""
Local key-value fallback store.

Keeps users and history as two JSON documents in a data directory, for
running without a database. All read-modify-write cycles hold one lock.
"""

import json
import logging
import os
import tempfile
import threading
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.errors import (
    InsufficientBalanceError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .base import ACTIVE_WINDOW_DAYS, AdminAccount, Repository
from .models import PromptEntry, PromptType, Role, STARTING_CREDITS, SystemMetrics, User


logger = logging.getLogger(__name__)

USERS_KEY = "users"
HISTORY_KEY = "history"


class LocalRepository(Repository):
    """Repository backed by JSON files.

    ``users.json`` holds user records including their credential;
    ``history.json`` holds prompt entries, newest first.
    """

    def __init__(self, data_dir: str = ".prompt_master"):
        self.data_dir = Path(data_dir)
        self._lock = threading.RLock()

    # -- document access ---------------------------------------------------

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def _read(self, key: str) -> List[Dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return []
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read %s: %s", path, e)
            raise PersistenceError() from e
        if not isinstance(data, list):
            logger.error("Corrupt document %s: expected a list", path)
            raise PersistenceError()
        return data

    def _write(self, key: str, records: List[Dict[str, Any]]) -> None:
        path = self._path(key)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(records, f, indent=2)
                os.replace(tmp_path, path)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            logger.error("Failed to write %s: %s", path, e)
            raise PersistenceError() from e

    @staticmethod
    def _find(records: List[Dict[str, Any]], user_id: str) -> Optional[Dict[str, Any]]:
        for record in records:
            if record["id"] == user_id:
                return record
        return None

    # -- Repository --------------------------------------------------------

    def init(self, admin: Optional[AdminAccount] = None) -> None:
        with self._lock:
            users = self._read(USERS_KEY)
            if admin is not None and not any(u["role"] == Role.ADMIN.value for u in users):
                record = User(
                    id=str(uuid.uuid4()),
                    name=admin.name,
                    email=admin.email.lower(),
                    credits=admin.credits,
                    role=Role.ADMIN,
                    created_at=datetime.now(),
                ).to_dict()
                record["credential"] = admin.credential
                users.insert(0, record)
                self._write(USERS_KEY, users)
                logger.info("Seeded administrator account %s", record["email"])
            elif not self._path(USERS_KEY).exists():
                self._write(USERS_KEY, users)
            if not self._path(HISTORY_KEY).exists():
                self._write(HISTORY_KEY, [])

    def get_users(self) -> List[User]:
        with self._lock:
            return [User.from_dict(u) for u in self._read(USERS_KEY)]

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            record = self._find(self._read(USERS_KEY), user_id)
        return User.from_dict(record) if record else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        email = email.lower()
        with self._lock:
            for record in self._read(USERS_KEY):
                if record["email"].lower() == email:
                    return User.from_dict(record)
        return None

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
        with self._lock:
            users = self._read(USERS_KEY)
            if any(u["email"].lower() == user.email for u in users):
                raise ValidationError({"email": "Email is already registered"})
            record = user.to_dict()
            record["credential"] = credential
            users.append(record)
            self._write(USERS_KEY, users)
        return user

    def get_credential(self, user_id: str) -> Optional[str]:
        with self._lock:
            record = self._find(self._read(USERS_KEY), user_id)
        return record.get("credential") if record else None

    def update_user_credits(self, user_id: str, delta: int) -> User:
        with self._lock:
            users = self._read(USERS_KEY)
            record = self._find(users, user_id)
            if record is None:
                raise NotFoundError("User not found.")

            new_balance = record["credits"] + delta
            if new_balance < 0:
                raise InsufficientBalanceError(
                    f"Insufficient balance: current balance is {record['credits']}."
                )
            record["credits"] = new_balance
            self._write(USERS_KEY, users)
            return User.from_dict(record)

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
        with self._lock:
            history = self._read(HISTORY_KEY)
            history.insert(0, entry.to_dict())
            self._write(HISTORY_KEY, history)
        return entry

    def get_user_history(self, user_id: str) -> List[PromptEntry]:
        with self._lock:
            history = self._read(HISTORY_KEY)
        # Stored newest first already
        return [PromptEntry.from_dict(h) for h in history if h["user_id"] == user_id]

    def update_user_profile(
        self,
        user_id: str,
        name: Optional[str] = None,
        credential: Optional[str] = None,
    ) -> User:
        with self._lock:
            users = self._read(USERS_KEY)
            record = self._find(users, user_id)
            if record is None:
                raise NotFoundError("User not found.")
            if name is not None:
                record["name"] = name
            if credential is not None:
                record["credential"] = credential
            self._write(USERS_KEY, users)
            return User.from_dict(record)

    def delete_user(self, user_id: str) -> None:
        with self._lock:
            users = self._read(USERS_KEY)
            remaining = [u for u in users if u["id"] != user_id]
            if len(remaining) == len(users):
                raise NotFoundError("User not found.")
            self._write(USERS_KEY, remaining)

    def get_system_metrics(self) -> SystemMetrics:
        cutoff = datetime.now() - timedelta(days=ACTIVE_WINDOW_DAYS)
        with self._lock:
            users = self._read(USERS_KEY)
            history = self._read(HISTORY_KEY)

        real_users = {u["id"]: u for u in users if u["role"] != Role.ADMIN.value}
        active = {
            h["user_id"]
            for h in history
            if h["user_id"] in real_users and datetime.fromisoformat(h["timestamp"]) >= cutoff
        }
        return SystemMetrics(
            total_users=len(real_users),
            total_credits=sum(u["credits"] for u in real_users.values()),
            total_prompts=len(history),
            active_users=len(active),
        )
