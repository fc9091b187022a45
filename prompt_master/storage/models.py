"""
Data models for storage layer.

Defines users, prompt history entries and aggregate metrics.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict


STARTING_CREDITS = 10


class Role(Enum):
    """Account roles. Fixed at creation time."""
    ADMIN = "ADMIN"
    USER = "USER"


class PromptType(Enum):
    """Categories of system a prompt can be generated for."""
    WEBSITE = "Site"
    SAAS = "SaaS"


@dataclass(frozen=True)
class User:
    """Account record as returned by every repository backend.

    The stored credential is deliberately not part of this record.
    """
    id: str
    name: str
    email: str
    credits: int
    role: Role
    created_at: datetime

    def __post_init__(self):
        if self.credits < 0:
            raise ValueError("credits cannot be negative")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["role"] = self.role.value
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            name=data["name"],
            email=data["email"],
            credits=int(data["credits"]),
            role=Role(data["role"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass(frozen=True)
class PromptEntry:
    """Immutable record of one successful generation.

    Append-only: entries are never updated or deleted once written.
    """
    id: str
    user_id: str
    type: PromptType
    prompt: str
    output: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptEntry":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            type=PromptType(data["type"]),
            prompt=data["prompt"],
            output=data["output"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass(frozen=True)
class SystemMetrics:
    """Aggregate counts for the admin dashboard. Admin accounts are excluded."""
    total_users: int
    total_credits: int
    total_prompts: int
    active_users: int
