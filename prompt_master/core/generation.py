"""
Pay-per-use generation orchestration.

Each request runs VALIDATE -> RATE_CHECK -> DEBIT -> GENERATE ->
PERSIST_HISTORY -> RETURN. A failing step aborts the rest. The credit is
debited before the external call so an empty balance never reaches the
provider, and refunded if anything after the debit fails.
"""

import logging
from dataclasses import dataclass
from typing import Protocol, Union

from ..storage.base import Repository
from ..storage.models import PromptEntry, PromptType, User
from .errors import (
    EmptyGenerationError,
    GenerationServiceError,
    InsufficientBalanceError,
    InsufficientCreditsError,
    PersistenceError,
    RateLimitError,
)
from .rate_limiter import RateLimiter
from .validation import GenerationRequest, parse


logger = logging.getLogger(__name__)

GENERATION_COST = 1


class TextGenerator(Protocol):
    def generate(self, prompt_type: PromptType, description: str) -> str:
        ...


@dataclass(frozen=True)
class GenerationResult:
    """Stored history entry plus the user's balance after the debit."""
    entry: PromptEntry
    user: User

    @property
    def output(self) -> str:
        return self.entry.output


class GenerationService:
    """Runs one paid generation request end to end."""

    def __init__(self, repository: Repository, rate_limiter: RateLimiter, generator: TextGenerator):
        self.repository = repository
        self.rate_limiter = rate_limiter
        self.generator = generator

    def generate(
        self, user_id: str, prompt_type: Union[PromptType, str], description: str
    ) -> GenerationResult:
        """Generate a specification document for ``user_id``.

        Args:
            user_id: Account paying for the request
            prompt_type: PromptType or its value ("Site", "SaaS")
            description: What the system should do

        Returns:
            GenerationResult with the stored entry and updated user

        Raises:
            ValidationError: If any input is malformed
            RateLimitError: If the user exceeded the request window
            NotFoundError: If the user does not exist
            InsufficientCreditsError: If the balance is zero
            GenerationServiceError: If the provider failed or returned nothing
            PersistenceError: If storage failed
        """
        request = parse(
            GenerationRequest, user_id=user_id, type=prompt_type, description=description
        )

        if not self.rate_limiter.check_limit(request.user_id):
            retry_after = self.rate_limiter.get_reset_time(request.user_id)
            logger.warning(
                "Rate limit exceeded for %s, retry in %ss", request.user_id, retry_after
            )
            raise RateLimitError(retry_after)

        try:
            user = self.repository.update_user_credits(request.user_id, -GENERATION_COST)
        except InsufficientBalanceError:
            logger.info("Generation refused for %s: no credits", request.user_id)
            raise InsufficientCreditsError() from None
        logger.info(
            "Debited %d credit from %s, balance %d", GENERATION_COST, user.id, user.credits
        )

        try:
            output = self._call_generator(request)
            entry = self.repository.save_prompt_history(
                user.id, request.type, request.description, output
            )
        except (GenerationServiceError, PersistenceError):
            self._refund(user.id)
            raise

        logger.info("Generated %s prompt %s for %s", request.type.value, entry.id, user.id)
        return GenerationResult(entry=entry, user=user)

    def _call_generator(self, request: GenerationRequest) -> str:
        try:
            output = self.generator.generate(request.type, request.description)
        except Exception as e:
            logger.exception("Generation service failed for %s", request.user_id)
            raise GenerationServiceError() from e

        if not output or not output.strip():
            logger.warning("Generation service returned empty output for %s", request.user_id)
            raise EmptyGenerationError()
        return output

    def _refund(self, user_id: str) -> None:
        try:
            self.repository.update_user_credits(user_id, GENERATION_COST)
        except Exception:
            logger.exception("Refund of %d credit to %s failed", GENERATION_COST, user_id)
            return
        logger.info("Refunded %d credit to %s", GENERATION_COST, user_id)
