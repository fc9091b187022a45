"""
Unit tests for service wiring and storage initialization.
"""

import os
import shutil
import tempfile
from unittest.mock import Mock, patch

from prompt_master.config.loader import AdminConfig, AppConfig, LocalStoreConfig, SessionConfig
from prompt_master.core.auth import verify_password
from prompt_master.core.container import build_services
from prompt_master.storage.models import Role


class TestInitStorage:
    """Test administrator seeding through build_services()."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = AppConfig(
            local=LocalStoreConfig(data_dir=os.path.join(self.temp_dir, "data")),
            session=SessionConfig(path=os.path.join(self.temp_dir, "session.json")),
            admin=AdminConfig(name="Root", email="Root@Example.com", password="Root12345"),
        )

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_seeds_admin_with_hashed_password(self):
        services = build_services(self.config, generator=Mock())

        services.init_storage()

        admin = services.repository.get_user_by_email("root@example.com")
        assert admin.role == Role.ADMIN
        assert admin.credits == 999_999
        assert verify_password("Root12345", services.repository.get_credential(admin.id))

    @patch('prompt_master.core.container.hash_password', return_value="salt$hash")
    def test_admin_password_hashed_only_when_seeding(self, mock_hash):
        """Test repeated initialization skips hashing once an admin exists."""
        build_services(self.config, generator=Mock()).init_storage()
        build_services(self.config, generator=Mock()).init_storage()
        build_services(self.config, generator=Mock()).init_storage()

        mock_hash.assert_called_once_with("Root12345")
        admins = [
            u for u in build_services(self.config, generator=Mock()).repository.get_users()
            if u.is_admin
        ]
        assert len(admins) == 1

    def test_start_and_close_manage_cleanup_thread(self):
        services = build_services(self.config, generator=Mock())

        services.start()
        assert services.rate_limiter._cleanup_thread is not None
        services.close()
        assert services.rate_limiter._cleanup_thread is None
