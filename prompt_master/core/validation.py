"""
Input validation schemas.

Pure pydantic models for every value that crosses into the service layer.
Failures are reported as ValidationError with one message per field.
"""

import re
import uuid
from typing import Annotated, Any, Dict, Optional, Type, TypeVar

import pydantic
from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from ..storage.models import PromptType
from .errors import ValidationError


MIN_DESCRIPTION_LENGTH = 10
MAX_DESCRIPTION_LENGTH = 5000
MIN_PASSWORD_LENGTH = 8
MAX_CREDIT_ADJUSTMENT = 1_000_000

T = TypeVar("T", bound=BaseModel)


def _check_user_id(value: str) -> str:
    try:
        uuid.UUID(value)
    except ValueError:
        raise ValueError("Invalid user identifier")
    return value


def _check_password(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain an uppercase letter")
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain a lowercase letter")
    if not re.search(r"\d", value):
        raise ValueError("Password must contain a digit")
    return value


def _check_name(value: str) -> str:
    value = value.strip()
    if len(value) < 2:
        raise ValueError("Name must be at least 2 characters")
    if len(value) > 100:
        raise ValueError("Name must be at most 100 characters")
    return value


UserId = Annotated[str, AfterValidator(_check_user_id)]
Email = Annotated[EmailStr, AfterValidator(str.lower)]
Password = Annotated[str, AfterValidator(_check_password)]
Name = Annotated[str, AfterValidator(_check_name)]


class _Schema(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class SignUpRequest(_Schema):
    email: Email
    password: Password
    name: Name


class SignInRequest(_Schema):
    email: Email
    password: str = Field(min_length=1)


class ProfileUpdate(_Schema):
    """Partial profile update. At least one field must be given."""
    name: Optional[Name] = None
    password: Optional[Password] = None

    @model_validator(mode="after")
    def _require_a_field(self) -> "ProfileUpdate":
        if self.name is None and self.password is None:
            raise ValueError("At least one of name or password must be provided")
        return self


class CreditAdjustment(_Schema):
    """Signed, non-zero whole-credit delta for one user."""
    user_id: UserId
    amount: int = Field(strict=True, ge=-MAX_CREDIT_ADJUSTMENT, le=MAX_CREDIT_ADJUSTMENT)

    @field_validator("amount")
    @classmethod
    def _non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("Amount cannot be zero")
        return value


class GenerationRequest(_Schema):
    user_id: UserId
    type: PromptType
    description: str

    @field_validator("description")
    @classmethod
    def _description(cls, value: str) -> str:
        value = value.strip()
        if len(value) < MIN_DESCRIPTION_LENGTH:
            raise ValueError(
                f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters long"
            )
        if len(value) > MAX_DESCRIPTION_LENGTH:
            raise ValueError(
                f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters long"
            )
        return value


class _UserIdSchema(_Schema):
    user_id: UserId


class _EmailSchema(_Schema):
    email: Email


def parse(schema: Type[T], **data: Any) -> T:
    """Validate ``data`` against ``schema``.

    Raises:
        ValidationError: With a message per invalid field
    """
    try:
        return schema(**data)
    except pydantic.ValidationError as e:
        raise ValidationError(_field_errors(e)) from None


def validate_user_id(user_id: str) -> str:
    return parse(_UserIdSchema, user_id=user_id).user_id


def validate_email(email: str) -> str:
    """Return the canonical (lower-cased) form of a valid email address."""
    return parse(_EmailSchema, email=email).email


def _field_errors(error: pydantic.ValidationError) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"]) or "__root__"
        message = item["msg"]
        # pydantic prefixes messages raised from validators
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.setdefault(field, message)
    return errors
