from typing import Literal, Optional

from pydantic import ConfigDict

from magda.models.base import CamelModel

FontSize = Literal["small", "medium", "large"]


class UserSettings(CamelModel):
    dark_mode: bool = False
    notifications: bool = True
    auto_lock: bool = True
    data_sharing: bool = False
    biometric_enabled: bool = False
    font_size: FontSize = "medium"
    high_contrast: bool = False


class SettingsUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")

    dark_mode: Optional[bool] = None
    notifications: Optional[bool] = None
    auto_lock: Optional[bool] = None
    data_sharing: Optional[bool] = None
    biometric_enabled: Optional[bool] = None
    font_size: Optional[FontSize] = None
    high_contrast: Optional[bool] = None
