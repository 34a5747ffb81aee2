from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, Field, field_validator

from magda.models.base import CamelModel, utcnow
from magda.utils.validation import is_valid_email, is_valid_name


class User(CamelModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    provider: str = "email"  # auth method: email, google, apple
    biometric_enabled: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class RegisterInput(CamelModel):
    first_name: str
    last_name: str
    email: str
    provider: str = "email"
    password: Optional[str] = Field(default=None, exclude=True, repr=False)

    @field_validator("first_name", "last_name")
    @classmethod
    def check_name(cls, v: str) -> str:
        if not is_valid_name(v):
            raise ValueError("Name must contain only letters, spaces, hyphens and apostrophes")
        return v.strip()

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        v = v.strip()
        if not is_valid_email(v):
            raise ValueError("Please enter a valid email address")
        return v.lower()


class UserUpdate(CamelModel):
    """Partial profile update; id and created_at are immutable."""

    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    biometric_enabled: Optional[bool] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def check_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_valid_name(v):
            raise ValueError("Name must contain only letters, spaces, hyphens and apostrophes")
        return v.strip() if v is not None else v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_valid_email(v.strip()):
            raise ValueError("Please enter a valid email address")
        return v.strip().lower() if v is not None else v
