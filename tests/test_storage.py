"""
Unit tests for storage layer.

The contract tests run against both backends; backend-specific behaviour
(schema, documents on disk) is tested separately.
"""

import json
import os
import tempfile
import threading
from datetime import datetime, timedelta

import pytest

from prompt_master.config.loader import AppConfig, DatabaseConfig, LocalStoreConfig
from prompt_master.core.errors import (
    InsufficientBalanceError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from prompt_master.storage.base import AdminAccount
from prompt_master.storage.db import get_connection
from prompt_master.storage.local import LocalRepository
from prompt_master.storage.models import PromptType, Role, STARTING_CREDITS
from prompt_master.storage.repository import SqliteRepository, open_repository


ADMIN = AdminAccount(name="Admin", email="Admin@Example.com", credential="salt$hash")


@pytest.fixture(params=["sqlite", "local"])
def repository(request, tmp_path):
    """An initialized repository of each backend type."""
    if request.param == "sqlite":
        repo = SqliteRepository(str(tmp_path / "test.db"))
    else:
        repo = LocalRepository(str(tmp_path / "data"))
    repo.init(ADMIN)
    return repo


class TestRepositoryContract:
    """Behaviour every backend must share."""

    def test_init_seeds_single_admin(self, repository):
        """Test init is idempotent and seeds exactly one admin."""
        repository.init(ADMIN)
        repository.init(ADMIN)

        admins = [u for u in repository.get_users() if u.role == Role.ADMIN]
        assert len(admins) == 1
        assert admins[0].email == "admin@example.com"
        assert admins[0].credits == 999_999

    def test_create_user_defaults(self, repository):
        """Test new users get the starting balance and USER role."""
        user = repository.create_user("Ann", "Ann@Example.com", "c1")

        assert user.credits == STARTING_CREDITS
        assert user.role == Role.USER
        assert user.email == "ann@example.com"
        assert repository.get_user(user.id) == user
        assert repository.get_credential(user.id) == "c1"

    def test_duplicate_email_rejected_case_insensitively(self, repository):
        """Test email uniqueness ignores case."""
        repository.create_user("Ann", "ann@example.com", "c1")

        with pytest.raises(ValidationError) as excinfo:
            repository.create_user("Other Ann", "ANN@example.com", "c2")
        assert "email" in excinfo.value.errors

    def test_get_user_by_email_is_case_insensitive(self, repository):
        """Test lookup by email ignores case."""
        user = repository.create_user("Ann", "ann@example.com", "c1")

        assert repository.get_user_by_email("ANN@Example.COM") == user
        assert repository.get_user_by_email("missing@example.com") is None

    def test_update_credits(self, repository):
        """Test positive and negative deltas are applied."""
        user = repository.create_user("Ann", "ann@example.com", "c1")

        assert repository.update_user_credits(user.id, 5).credits == 15
        assert repository.update_user_credits(user.id, -15).credits == 0
        assert repository.get_user(user.id).credits == 0

    def test_update_credits_never_negative(self, repository):
        """Test a delta that would go negative fails and changes nothing."""
        user = repository.create_user("Ann", "ann@example.com", "c1")

        with pytest.raises(InsufficientBalanceError):
            repository.update_user_credits(user.id, -15)

        assert repository.get_user(user.id).credits == 10

    def test_update_credits_unknown_user(self, repository):
        with pytest.raises(NotFoundError):
            repository.update_user_credits("123e4567-e89b-12d3-a456-426614174000", 1)

    def test_concurrent_debits_respect_floor(self, repository):
        """Test concurrent debits never drive the balance below zero."""
        user = repository.create_user("Ann", "ann@example.com", "c1")
        outcomes = []
        lock = threading.Lock()

        def debit():
            try:
                repository.update_user_credits(user.id, -1)
                result = True
            except InsufficientBalanceError:
                result = False
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=debit) for _ in range(15)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(True) == 10
        assert outcomes.count(False) == 5
        assert repository.get_user(user.id).credits == 0

    def test_history_newest_first(self, repository):
        """Test saving E1 then E2 yields [E2, E1]."""
        user = repository.create_user("Ann", "ann@example.com", "c1")
        other = repository.create_user("Bob", "bob@example.com", "c2")

        e1 = repository.save_prompt_history(user.id, PromptType.WEBSITE, "first prompt", "out 1")
        repository.save_prompt_history(other.id, PromptType.SAAS, "other prompt", "out x")
        e2 = repository.save_prompt_history(user.id, PromptType.SAAS, "second prompt", "out 2")

        assert repository.get_user_history(user.id) == [e2, e1]
        assert repository.get_user_history("nobody") == []

    def test_saved_entry_fields(self, repository):
        """Test ids and timestamps are assigned on save."""
        user = repository.create_user("Ann", "ann@example.com", "c1")

        entry = repository.save_prompt_history(user.id, PromptType.SAAS, "a prompt", "an output")

        assert entry.id
        assert entry.user_id == user.id
        assert entry.type == PromptType.SAAS
        assert isinstance(entry.timestamp, datetime)

    def test_update_profile_round_trip(self, repository):
        """Test updating the name leaves every other field unchanged."""
        user = repository.create_user("Ann", "ann@example.com", "c1")

        repository.update_user_profile(user.id, name="X")
        fetched = repository.get_user(user.id)

        assert fetched.name == "X"
        assert fetched.email == user.email
        assert fetched.credits == user.credits
        assert fetched.role == user.role
        assert fetched.created_at == user.created_at
        assert repository.get_credential(user.id) == "c1"

    def test_update_profile_credential(self, repository):
        user = repository.create_user("Ann", "ann@example.com", "c1")

        repository.update_user_profile(user.id, credential="c2")

        assert repository.get_credential(user.id) == "c2"
        assert repository.get_user(user.id).name == "Ann"

    def test_update_profile_unknown_user(self, repository):
        with pytest.raises(NotFoundError):
            repository.update_user_profile("123e4567-e89b-12d3-a456-426614174000", name="X")

    def test_delete_user_keeps_history(self, repository):
        """Test hard delete removes the user but not their history."""
        user = repository.create_user("Ann", "ann@example.com", "c1")
        repository.save_prompt_history(user.id, PromptType.SAAS, "a prompt", "an output")

        repository.delete_user(user.id)

        assert repository.get_user(user.id) is None
        assert repository.get_user_by_email("ann@example.com") is None
        assert len(repository.get_user_history(user.id)) == 1

    def test_delete_unknown_user(self, repository):
        with pytest.raises(NotFoundError):
            repository.delete_user("123e4567-e89b-12d3-a456-426614174000")

    def test_system_metrics(self, repository):
        """Test metrics exclude admins and count distinct active authors."""
        ann = repository.create_user("Ann", "ann@example.com", "c1")
        bob = repository.create_user("Bob", "bob@example.com", "c2", credits=5)
        admin = repository.get_user_by_email("admin@example.com")
        repository.save_prompt_history(ann.id, PromptType.SAAS, "p1", "o1")
        repository.save_prompt_history(ann.id, PromptType.SAAS, "p2", "o2")
        repository.save_prompt_history(admin.id, PromptType.SAAS, "p3", "o3")

        metrics = repository.get_system_metrics()

        assert metrics.total_users == 2
        assert metrics.total_credits == 15
        assert metrics.total_prompts == 3
        assert metrics.active_users == 1

        repository.delete_user(ann.id)
        metrics = repository.get_system_metrics()
        assert metrics.total_users == 1
        assert metrics.total_prompts == 3
        assert metrics.active_users == 0
        assert bob.id != ann.id


class TestSqliteRepository:
    """SQLite-specific behaviour."""

    def test_schema_creation(self):
        """Verify tables are created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            SqliteRepository(db_path).init()

            conn = get_connection(db_path)
            try:
                tables = {
                    row[0] for row in conn.execute(
                        "SELECT name FROM sqlite_master WHERE type='table'"
                    )
                }
                assert {"users", "prompt_history"} <= tables

                columns = [col[1] for col in conn.execute("PRAGMA table_info(users)")]
                assert columns == [
                    'id', 'name', 'email', 'credential', 'credits', 'role', 'created_at'
                ]
            finally:
                conn.close()

    def test_init_without_admin_seeds_nothing(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = SqliteRepository(os.path.join(temp_dir, "test.db"))
            repo.init()
            assert repo.get_users() == []

    def test_active_users_ignores_old_history(self):
        """Test authors outside the 30 day window are not active."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            repo = SqliteRepository(db_path)
            repo.init()
            user = repo.create_user("Ann", "ann@example.com", "c1")

            conn = get_connection(db_path)
            try:
                conn.execute(
                    "INSERT INTO prompt_history (id, user_id, type, prompt, output, timestamp) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    ("old", user.id, "SaaS", "p", "o",
                     (datetime.now() - timedelta(days=45)).isoformat()),
                )
                conn.commit()
            finally:
                conn.close()

            metrics = repo.get_system_metrics()
            assert metrics.total_prompts == 1
            assert metrics.active_users == 0

    def test_driver_errors_become_persistence_errors(self):
        """Test an unusable database path surfaces as PersistenceError."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = SqliteRepository(temp_dir)  # a directory, not a file
            with pytest.raises(PersistenceError):
                repo.get_users()

    def test_oversized_delta_becomes_persistence_error(self):
        """Test a delta beyond SQLite's integer range is wrapped and changes nothing."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = SqliteRepository(os.path.join(temp_dir, "test.db"))
            repo.init()
            user = repo.create_user("Ann", "ann@example.com", "c1")

            with pytest.raises(PersistenceError):
                repo.update_user_credits(user.id, 10**20)

            assert repo.get_user(user.id).credits == 10


class TestLocalRepository:
    """Local key-value store behaviour."""

    def test_documents_written_as_json_lists(self):
        """Test users and history are two JSON list documents."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = LocalRepository(temp_dir)
            repo.init(ADMIN)
            user = repo.create_user("Ann", "ann@example.com", "c1")
            repo.save_prompt_history(user.id, PromptType.WEBSITE, "p", "o")

            with open(os.path.join(temp_dir, "users.json"), encoding="utf-8") as f:
                users = json.load(f)
            with open(os.path.join(temp_dir, "history.json"), encoding="utf-8") as f:
                history = json.load(f)

            assert [u["email"] for u in users] == ["admin@example.com", "ann@example.com"]
            assert history[0]["type"] == "Site"
            assert history[0]["user_id"] == user.id

    def test_data_survives_new_instance(self):
        """Test a second repository on the same directory sees the data."""
        with tempfile.TemporaryDirectory() as temp_dir:
            LocalRepository(temp_dir).create_user("Ann", "ann@example.com", "c1")

            assert LocalRepository(temp_dir).get_user_by_email("ann@example.com") is not None

    def test_corrupt_document_raises_persistence_error(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            with open(os.path.join(temp_dir, "users.json"), "w", encoding="utf-8") as f:
                f.write("{not json")

            with pytest.raises(PersistenceError):
                LocalRepository(temp_dir).get_users()

    def test_missing_documents_read_as_empty(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = LocalRepository(os.path.join(temp_dir, "fresh"))
            assert repo.get_users() == []
            assert repo.get_user_history("anyone") == []


class TestOpenRepository:
    """Backend selection from configuration."""

    def test_database_section_selects_sqlite(self):
        repo = open_repository(AppConfig(database=DatabaseConfig(path="x.db")))
        assert isinstance(repo, SqliteRepository)
        assert repo.db_path == "x.db"

    def test_default_is_local(self):
        repo = open_repository(AppConfig(local=LocalStoreConfig(data_dir="store")))
        assert isinstance(repo, LocalRepository)
        assert str(repo.data_dir) == "store"
