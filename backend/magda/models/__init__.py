from magda.models.user import User, RegisterInput, UserUpdate
from magda.models.medical_record import (
    MedicalRecord,
    RecordInput,
    RecordMetadata,
    RecordType,
    UploadType,
    HipaaInfo,
    AccessEvent,
)
from magda.models.provider import Provider, ProviderInput
from magda.models.linked_account import LinkedAccount, LinkedAccountInput
from magda.models.user_settings import UserSettings, SettingsUpdate

__all__ = [
    "User",
    "RegisterInput",
    "UserUpdate",
    "MedicalRecord",
    "RecordInput",
    "RecordMetadata",
    "RecordType",
    "UploadType",
    "HipaaInfo",
    "AccessEvent",
    "Provider",
    "ProviderInput",
    "LinkedAccount",
    "LinkedAccountInput",
    "UserSettings",
    "SettingsUpdate",
]
