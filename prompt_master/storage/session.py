"""
Signed-in session persistence.

Stores the current user record under a well-known key so the identity
survives process restarts. Callers must re-validate it against the
repository on load.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .models import User


logger = logging.getLogger(__name__)

SESSION_KEY = "pm_session"


class SessionStore:
    """Single-document JSON session file."""

    def __init__(self, path: str = ".prompt_master/session.json"):
        self.path = Path(path)

    def save(self, user: User) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump({SESSION_KEY: user.to_dict()}, f, indent=2)

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored user record, or None if logged out.

        An unreadable session file is treated as logged out and removed.
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            record = data[SESSION_KEY]
            if not isinstance(record, dict) or "id" not in record or "email" not in record:
                raise ValueError("session record is incomplete")
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable session file %s: %s", self.path, e)
            self.clear()
            return None
        return record

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
