from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from magda.models.base import CamelModel, utcnow
from magda.utils.validation import is_valid_name, parse_date_of_birth


class LinkedAccount(CamelModel):
    """A family member sub-profile owned by a primary user."""

    id: str
    first_name: str
    last_name: str = ""
    relationship: str = ""
    date_of_birth: Optional[str] = None
    created_by: str
    created_at: datetime = Field(default_factory=utcnow)


class LinkedAccountInput(CamelModel):
    id: Optional[str] = None
    first_name: str
    last_name: str = ""
    relationship: str = ""
    date_of_birth: Optional[str] = None

    @field_validator("first_name")
    @classmethod
    def check_first_name(cls, v: str) -> str:
        if not is_valid_name(v):
            raise ValueError("Name must contain only letters, spaces, hyphens and apostrophes")
        return v.strip()

    @field_validator("last_name")
    @classmethod
    def check_last_name(cls, v: str) -> str:
        if v and not is_valid_name(v):
            raise ValueError("Name must contain only letters, spaces, hyphens and apostrophes")
        return v.strip()

    @field_validator("date_of_birth")
    @classmethod
    def check_date_of_birth(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and parse_date_of_birth(v) is None:
            raise ValueError("Please enter a valid date")
        return v
