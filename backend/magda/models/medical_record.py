import datetime as dt
import enum
from typing import Optional

from pydantic import ConfigDict, Field, field_validator

from magda.models.base import CamelModel


class RecordType(str, enum.Enum):
    LAB = "lab"
    IMAGING = "imaging"
    VISIT = "visit"
    PRESCRIPTION = "prescription"
    IMMUNIZATION = "immunization"
    OTHER = "other"


class UploadType(str, enum.Enum):
    IMAGE = "image"
    DOCUMENT = "document"
    CAMERA = "camera"
    FHIR = "fhir"


class AccessEvent(CamelModel):
    timestamp: dt.datetime
    action: str  # "created", "accessed", "enriched"
    user_id: str


class HipaaInfo(CamelModel):
    last_accessed: Optional[dt.datetime] = None
    access_history: list[AccessEvent] = Field(default_factory=list)


class RecordMetadata(CamelModel):
    """AI analysis output; extra keys from the assistant are kept as-is."""

    model_config = ConfigDict(extra="allow")

    ai_analyzed: bool = False
    keywords: list[str] = Field(default_factory=list)
    summary: Optional[str] = None
    medications: list[str] = Field(default_factory=list)
    follow_up: Optional[str] = None
    processing_date: Optional[dt.datetime] = None
    note: Optional[str] = None


class RecordInput(CamelModel):
    title: str
    date: dt.date
    type: RecordType = RecordType.OTHER
    provider: str = ""
    description: str = ""
    upload_type: UploadType = UploadType.DOCUMENT
    fhir_id: Optional[str] = None
    metadata: Optional[RecordMetadata] = None

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("This field is required")
        return v.strip()


class MedicalRecord(RecordInput):
    id: str
    created_at: dt.datetime
    hipaa_info: HipaaInfo = Field(default_factory=HipaaInfo)
