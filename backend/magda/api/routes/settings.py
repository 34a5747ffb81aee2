"""
User settings API routes.

Endpoints:
    GET   /accounts/{id}/settings  - Current settings (defaults until first saved)
    PATCH /accounts/{id}/settings  - Merge a partial update
"""

from fastapi import APIRouter, Depends

from magda.api.deps import get_services, require_account
from magda.models.user_settings import SettingsUpdate, UserSettings
from magda.services.container import Services

router = APIRouter()


@router.get("/accounts/{account_id}/settings", response_model=UserSettings)
async def get_settings(
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    return await services.repository.get_settings(account_id)


@router.patch("/accounts/{account_id}/settings", response_model=UserSettings)
async def update_settings(
    payload: SettingsUpdate,
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    return await services.repository.update_settings(account_id, payload)
