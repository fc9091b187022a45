"""
Error taxonomy.

Every error raised across a component boundary is one of these. Messages are
safe to show to end users; provider and driver details stay in the logs.
"""

from typing import Dict, Optional


class PromptMasterError(Exception):
    """Base class for all user-facing errors."""

    default_message = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(PromptMasterError):
    """Malformed input. Carries one message per offending field."""

    default_message = "Invalid input."

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None):
        self.errors = dict(errors)
        if message is None:
            message = "; ".join(f"{field}: {msg}" for field, msg in self.errors.items())
        super().__init__(message or self.default_message)


class AuthError(PromptMasterError):
    default_message = "Authentication required."


class RateLimitError(PromptMasterError):
    """Too many generation requests in the current window."""

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(
            f"Too many requests. Please try again in {retry_after} seconds."
        )


class InsufficientCreditsError(PromptMasterError):
    default_message = "You have no credits left. Ask an administrator for more."


class InsufficientBalanceError(PromptMasterError):
    default_message = "Insufficient balance for this adjustment."


class NotFoundError(PromptMasterError):
    default_message = "Record not found."


class GenerationServiceError(PromptMasterError):
    default_message = "The generation service is unavailable. Please try again shortly."


class EmptyGenerationError(GenerationServiceError):
    default_message = "The generation service returned an empty result. Please try again."


class PersistenceError(PromptMasterError):
    default_message = "Could not access stored data. Please try again."
