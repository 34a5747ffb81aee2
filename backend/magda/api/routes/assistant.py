"""
Health assistant API routes. Read-only: nothing here modifies stored records.

Endpoints:
    POST /accounts/{id}/assistant/ask              - Ask a question about the account's records
    GET  /accounts/{id}/assistant/interactions     - Medication interaction check
    GET  /accounts/{id}/assistant/recommendations  - Preventive-care recommendations
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from magda.api.deps import get_services, require_account
from magda.services.container import Services

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class AskRequest(BaseModel):
    question: str = Field(min_length=1, max_length=2000)


class AskResponse(BaseModel):
    answer: str


class InteractionsResponse(BaseModel):
    medications: list[str]
    interactions: list[dict[str, Any]]
    source: str


class RecommendationsResponse(BaseModel):
    recommendations: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/accounts/{account_id}/assistant/ask", response_model=AskResponse)
async def ask_health_assistant(
    payload: AskRequest,
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    records = await services.repository.list_all(account_id)
    answer = await services.ai.ask_health_assistant(payload.question, records, account_id)
    return AskResponse(answer=answer)


@router.get("/accounts/{account_id}/assistant/interactions", response_model=InteractionsResponse)
async def medication_interactions(
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    records = await services.repository.list_all(account_id)
    return await services.ai.analyze_medication_interactions(records)


@router.get("/accounts/{account_id}/assistant/recommendations", response_model=RecommendationsResponse)
async def health_recommendations(
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    records = await services.repository.list_all(account_id)
    return RecommendationsResponse(recommendations=await services.ai.get_health_recommendations(records))
