from datetime import datetime
from typing import Optional

from pydantic import field_validator

from magda.models.base import CamelModel
from magda.utils.validation import is_valid_phone


class Provider(CamelModel):
    id: str
    name: str
    specialty: str = ""
    facility: str = ""
    phone: str = ""
    address: str = ""
    notes: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProviderInput(CamelModel):
    """Upsert payload: with a known id the set fields are merged, otherwise a provider is created."""

    id: Optional[str] = None
    name: Optional[str] = None
    specialty: str = ""
    facility: str = ""
    phone: str = ""
    address: str = ""
    notes: str = ""

    @field_validator("name")
    @classmethod
    def check_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("This field is required")
        return v.strip() if v is not None else v

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: str) -> str:
        if v and not is_valid_phone(v.strip()):
            raise ValueError("Please enter a valid phone number")
        return v.strip()
