"""
Administrator operations.

User management, credit top-up/removal and system metrics. Every call is
checked against the acting user's role.
"""

import logging
from typing import List

from ..storage.base import Repository
from ..storage.models import SystemMetrics, User
from .errors import AuthError, ValidationError
from .validation import CreditAdjustment, parse, validate_user_id


logger = logging.getLogger(__name__)


class AdminService:
    def __init__(self, repository: Repository):
        self.repository = repository

    def list_users(self, actor: User) -> List[User]:
        self._require_admin(actor)
        return self.repository.get_users()

    def add_credits(self, actor: User, user_id: str, amount: int) -> User:
        """Top up ``user_id`` by a positive ``amount``."""
        return self._adjust(actor, user_id, amount, "add")

    def remove_credits(self, actor: User, user_id: str, amount: int) -> User:
        """Remove a positive ``amount`` of credits from ``user_id``.

        Raises:
            InsufficientBalanceError: If the balance would go negative;
                the balance is left unchanged
        """
        return self._adjust(actor, user_id, amount, "remove")

    def delete_user(self, actor: User, user_id: str) -> None:
        """Permanently delete ``user_id``. History rows are kept."""
        self._require_admin(actor)
        user_id = validate_user_id(user_id)
        if user_id == actor.id:
            raise ValidationError({"user_id": "Administrators cannot delete their own account"})
        self.repository.delete_user(user_id)
        logger.info("Admin %s deleted user %s", actor.id, user_id)

    def get_metrics(self, actor: User) -> SystemMetrics:
        self._require_admin(actor)
        return self.repository.get_system_metrics()

    def _adjust(self, actor: User, user_id: str, amount: int, operation: str) -> User:
        self._require_admin(actor)
        adjustment = parse(CreditAdjustment, user_id=user_id, amount=amount)
        if adjustment.amount < 0:
            raise ValidationError({"amount": "Amount must be positive"})

        delta = adjustment.amount if operation == "add" else -adjustment.amount
        user = self.repository.update_user_credits(adjustment.user_id, delta)
        logger.info(
            "Admin %s changed credits of %s by %+d, balance %d",
            actor.id, user.id, delta, user.credits,
        )
        return user

    @staticmethod
    def _require_admin(actor: User) -> None:
        if not actor.is_admin:
            logger.warning("Non-admin %s attempted an admin operation", actor.id)
            raise AuthError("Administrator privileges required.")
