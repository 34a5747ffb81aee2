"""
Linked (family) accounts API routes. Only the primary account may manage them.

Endpoints:
    GET    /accounts/{id}/linked-accounts               - List linked accounts
    POST   /accounts/{id}/linked-accounts               - Add a family member
    DELETE /accounts/{id}/linked-accounts/{linked_id}   - Remove a family member and all their data
"""

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from magda.api.deps import get_services, require_primary_account
from magda.models.linked_account import LinkedAccount, LinkedAccountInput
from magda.services.container import Services

router = APIRouter()


class LinkedAccountListResponse(BaseModel):
    accounts: list[LinkedAccount]
    total: int


class DeleteResponse(BaseModel):
    deleted: bool


@router.get("/accounts/{account_id}/linked-accounts", response_model=LinkedAccountListResponse)
async def list_linked_accounts(
    account_id: str = Depends(require_primary_account),
    services: Services = Depends(get_services),
):
    accounts = await services.repository.list_linked_accounts(account_id)
    return LinkedAccountListResponse(accounts=accounts, total=len(accounts))


@router.post(
    "/accounts/{account_id}/linked-accounts",
    response_model=LinkedAccount,
    status_code=status.HTTP_201_CREATED,
)
async def add_linked_account(
    payload: LinkedAccountInput,
    account_id: str = Depends(require_primary_account),
    services: Services = Depends(get_services),
):
    return await services.repository.add_linked_account(account_id, payload)


@router.delete("/accounts/{account_id}/linked-accounts/{linked_id}", response_model=DeleteResponse)
async def remove_linked_account(
    linked_id: str,
    account_id: str = Depends(require_primary_account),
    services: Services = Depends(get_services),
):
    return DeleteResponse(deleted=await services.repository.remove_linked_account(account_id, linked_id))
