"""
Service wiring.

Builds every component from one AppConfig. Nothing is a module-level
singleton; each process (or test) constructs its own set.
"""

from dataclasses import dataclass
from typing import Optional

from ..config.loader import AppConfig
from ..sdk.openai_client import OpenAITextGenerator
from ..storage.base import AdminAccount, Repository
from ..storage.repository import open_repository
from ..storage.session import SessionStore
from .admin import AdminService
from .auth import AuthService, hash_password
from .generation import GenerationService, TextGenerator
from .rate_limiter import RateLimiter


@dataclass
class Services:
    config: AppConfig
    repository: Repository
    rate_limiter: RateLimiter
    auth: AuthService
    generation: GenerationService
    admin: AdminService

    def init_storage(self) -> None:
        """Prepare the backend and seed the configured administrator.

        The admin password is only hashed when no ADMIN account exists yet.
        """
        self.repository.init()
        if any(user.is_admin for user in self.repository.get_users()):
            return
        admin = self.config.admin
        self.repository.init(AdminAccount(
            name=admin.name,
            email=admin.email,
            credential=hash_password(admin.password),
        ))

    def start(self) -> None:
        self.rate_limiter.start_cleanup()

    def close(self) -> None:
        self.rate_limiter.stop_cleanup()


def build_services(
    config: AppConfig,
    repository: Optional[Repository] = None,
    generator: Optional[TextGenerator] = None,
) -> Services:
    """Construct the service graph for ``config``.

    Args:
        config: Application configuration
        repository: Override the configured backend
        generator: Override the OpenAI text generator

    Returns:
        Wired Services
    """
    repository = repository or open_repository(config)
    if generator is None:
        generator = OpenAITextGenerator(
            model=config.generation.model,
            temperature=config.generation.temperature,
            max_tokens=config.generation.max_tokens,
            timeout=config.generation.timeout_seconds,
        )
    rate_limiter = RateLimiter(
        window_ms=config.rate_limit.window_ms,
        max_requests=config.rate_limit.max_requests,
        cleanup_interval_ms=config.rate_limit.cleanup_interval_ms,
    )

    return Services(
        config=config,
        repository=repository,
        rate_limiter=rate_limiter,
        auth=AuthService(repository, SessionStore(config.session.path)),
        generation=GenerationService(repository, rate_limiter, generator),
        admin=AdminService(repository),
    )
