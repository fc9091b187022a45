"""
Authentication and session handling.

Credentials are stored as salted PBKDF2 hashes by whichever repository
backend is active; the signed-in identity is persisted in a SessionStore.
"""

import hashlib
import hmac
import logging
import secrets
from typing import Optional

from ..storage.base import Repository
from ..storage.models import User
from ..storage.session import SessionStore
from .errors import AuthError, NotFoundError
from .validation import ProfileUpdate, SignInRequest, SignUpRequest, parse


logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 100_000


def hash_password(password: str) -> str:
    """Hash a password as ``salt$hexdigest``."""
    salt = secrets.token_hex(16)
    pwd_hash = hashlib.pbkdf2_hmac('sha256', password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"{salt}${pwd_hash.hex()}"


def verify_password(password: str, hashed: str) -> bool:
    """Check ``password`` against a value produced by hash_password()."""
    salt, sep, expected = hashed.partition('$')
    if not sep:
        return False
    pwd_hash = hashlib.pbkdf2_hmac('sha256', password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return hmac.compare_digest(pwd_hash.hex(), expected)


class AuthService:
    """Sign-up, sign-in and current-identity lookup."""

    def __init__(self, repository: Repository, sessions: SessionStore):
        self.repository = repository
        self.sessions = sessions

    def sign_up(self, email: str, password: str, name: str) -> User:
        """Register a new USER account with the starting credit balance.

        Raises:
            ValidationError: If input is malformed or the email is taken
        """
        request = parse(SignUpRequest, email=email, password=password, name=name)
        user = self.repository.create_user(
            name=request.name,
            email=request.email,
            credential=hash_password(request.password),
        )
        logger.info("User signed up: %s", user.id)
        return user

    def sign_in(self, email: str, password: str) -> User:
        """Verify credentials and persist the session.

        Raises:
            ValidationError: If input is malformed
            AuthError: If the email is unknown or the password is wrong
        """
        request = parse(SignInRequest, email=email, password=password)
        user = self.repository.get_user_by_email(request.email)
        credential = self.repository.get_credential(user.id) if user else None

        if user is None or credential is None or not verify_password(request.password, credential):
            logger.warning("Failed sign-in attempt for %s", request.email)
            raise AuthError("Invalid email or password.")

        self.sessions.save(user)
        logger.info("User signed in: %s", user.id)
        return user

    def sign_out(self) -> None:
        self.sessions.clear()

    def get_current_user(self) -> Optional[User]:
        """Return the signed-in user, re-read from the repository.

        Stale sessions (deleted account or changed email) are cleared.
        """
        record = self.sessions.load()
        if record is None:
            return None

        user = self.repository.get_user(record["id"])
        if user is None or user.email != str(record["email"]).lower():
            logger.info("Discarding stale session for %s", record["id"])
            self.sessions.clear()
            return None

        # Keep the cached copy in step with the stored balance
        self.sessions.save(user)
        return user

    def require_user(self) -> User:
        user = self.get_current_user()
        if user is None:
            raise AuthError("You are not signed in.")
        return user

    def refresh_session(self, user: User) -> None:
        """Replace the cached session record if it belongs to ``user``."""
        record = self.sessions.load()
        if record is not None and record["id"] == user.id:
            self.sessions.save(user)

    def update_profile(
        self, user_id: str, name: Optional[str] = None, password: Optional[str] = None
    ) -> User:
        """Change the name and/or password of ``user_id``.

        Raises:
            ValidationError: If neither field is given or a value is invalid
            NotFoundError: If the user does not exist
        """
        update = parse(ProfileUpdate, name=name, password=password)
        credential = hash_password(update.password) if update.password is not None else None
        try:
            user = self.repository.update_user_profile(
                user_id, name=update.name, credential=credential
            )
        except NotFoundError:
            logger.warning("Profile update for unknown user %s", user_id)
            raise
        self.refresh_session(user)
        logger.info("Profile updated for %s", user_id)
        return user
