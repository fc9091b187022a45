"""
Repository contract shared by all persistence backends.

Callers depend only on this interface; the backend is chosen once at
startup by open_repository().
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from .models import PromptEntry, PromptType, Role, STARTING_CREDITS, SystemMetrics, User


# Users with a history entry inside this many days count as active
ACTIVE_WINDOW_DAYS = 30


@dataclass(frozen=True)
class AdminAccount:
    """Administrator seeded by init() when no ADMIN exists yet."""
    name: str
    email: str
    credential: str
    credits: int = 999_999


class Repository(ABC):
    """Storage for users, credit balances and prompt history.

    Every backend must honour the same guarantees:

    - emails are unique and matched case-insensitively
    - a credit balance never goes below zero, even under concurrent updates
    - history is append-only and read back newest first
    - backend failures surface as PersistenceError
    """

    @abstractmethod
    def init(self, admin: Optional[AdminAccount] = None) -> None:
        """Prepare storage. Idempotent; seeds ``admin`` if no ADMIN exists."""

    @abstractmethod
    def get_users(self) -> List[User]:
        ...

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    def create_user(
        self,
        name: str,
        email: str,
        credential: str,
        role: Role = Role.USER,
        credits: int = STARTING_CREDITS,
    ) -> User:
        """Create an account.

        Raises:
            ValidationError: If the email is already registered
        """

    @abstractmethod
    def get_credential(self, user_id: str) -> Optional[str]:
        ...

    @abstractmethod
    def update_user_credits(self, user_id: str, delta: int) -> User:
        """Apply ``delta`` to the balance atomically.

        Raises:
            NotFoundError: If the user does not exist
            InsufficientBalanceError: If the balance would go negative;
                the stored balance is left unchanged
        """

    @abstractmethod
    def save_prompt_history(
        self, user_id: str, prompt_type: PromptType, prompt: str, output: str
    ) -> PromptEntry:
        ...

    @abstractmethod
    def get_user_history(self, user_id: str) -> List[PromptEntry]:
        """Entries for ``user_id``, newest first."""

    @abstractmethod
    def update_user_profile(
        self,
        user_id: str,
        name: Optional[str] = None,
        credential: Optional[str] = None,
    ) -> User:
        ...

    @abstractmethod
    def delete_user(self, user_id: str) -> None:
        """Hard delete. History rows written by the user are kept."""

    @abstractmethod
    def get_system_metrics(self) -> SystemMetrics:
        ...
