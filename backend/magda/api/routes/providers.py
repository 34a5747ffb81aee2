"""
Healthcare Providers API routes.

Endpoints:
    GET    /accounts/{id}/providers                 - List providers
    POST   /accounts/{id}/providers                 - Create a provider (or merge when the id exists)
    PUT    /accounts/{id}/providers/{provider_id}   - Update a provider
    DELETE /accounts/{id}/providers/{provider_id}   - Delete a provider
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from magda.api.deps import get_services, require_account
from magda.models.provider import Provider, ProviderInput
from magda.services.container import Services

router = APIRouter()


class ProviderListResponse(BaseModel):
    providers: list[Provider]
    total: int


class DeleteResponse(BaseModel):
    deleted: bool


@router.get("/accounts/{account_id}/providers", response_model=ProviderListResponse)
async def list_providers(
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    providers = await services.repository.list_providers(account_id)
    return ProviderListResponse(providers=providers, total=len(providers))


@router.post("/accounts/{account_id}/providers", response_model=Provider, status_code=status.HTTP_201_CREATED)
async def create_provider(
    payload: ProviderInput,
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    return await services.repository.upsert_provider(account_id, payload)


@router.put("/accounts/{account_id}/providers/{provider_id}", response_model=Provider)
async def update_provider(
    provider_id: str,
    payload: ProviderInput,
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    if payload.id is not None and payload.id != provider_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provider id in body does not match the URL",
        )
    changes = payload.model_dump(exclude_unset=True)
    changes["id"] = provider_id
    return await services.repository.upsert_provider(account_id, changes)


@router.delete("/accounts/{account_id}/providers/{provider_id}", response_model=DeleteResponse)
async def delete_provider(
    provider_id: str,
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    return DeleteResponse(deleted=await services.repository.delete_provider(account_id, provider_id))
