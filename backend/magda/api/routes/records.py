"""
Medical Records API routes.

Endpoints:
    GET    /accounts/{id}/records               - All records, newest first
    GET    /accounts/{id}/records/recent        - The most recent records
    GET    /accounts/{id}/records/export-fhir   - All records as a FHIR Bundle
    POST   /accounts/{id}/records/import-fhir   - Import records from a FHIR server
    GET    /accounts/{id}/records/{record_id}   - One record (logged as an access)
    POST   /accounts/{id}/records               - Upload a record (AI-enriched when possible)
    DELETE /accounts/{id}/records/{record_id}   - Delete a record
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from magda.api.deps import get_services, require_account
from magda.models.base import CamelModel
from magda.models.medical_record import MedicalRecord, RecordInput
from magda.services import fhir_service
from magda.services.container import Services

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class RecordListResponse(BaseModel):
    records: list[MedicalRecord]
    total: int


class FHIRImportRequest(CamelModel):
    endpoint: str
    patient_id: Optional[str] = None
    auth_token: Optional[str] = None


class DeleteResponse(BaseModel):
    deleted: bool


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/accounts/{account_id}/records", response_model=RecordListResponse)
async def list_records(
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    records = await services.repository.list_all(account_id)
    return RecordListResponse(records=records, total=len(records))


@router.get("/accounts/{account_id}/records/recent", response_model=RecordListResponse)
async def list_recent_records(
    limit: Optional[int] = Query(None, ge=0),
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    records = await services.repository.list_recent(account_id, limit)
    return RecordListResponse(records=records, total=len(records))


@router.get("/accounts/{account_id}/records/export-fhir")
async def export_records_to_fhir(
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    records = await services.repository.list_all(account_id)
    return fhir_service.export_to_fhir(records)


@router.post("/accounts/{account_id}/records/import-fhir", response_model=RecordListResponse)
async def import_records_from_fhir(
    payload: FHIRImportRequest,
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    records = await fhir_service.import_from_endpoint(
        services.repository,
        account_id,
        payload.endpoint,
        patient_id=payload.patient_id,
        auth_token=payload.auth_token,
    )
    return RecordListResponse(records=records, total=len(records))


@router.get("/accounts/{account_id}/records/{record_id}", response_model=MedicalRecord)
async def get_record(
    record_id: str,
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    return await services.repository.get_record(account_id, record_id)


@router.post(
    "/accounts/{account_id}/records",
    response_model=MedicalRecord,
    status_code=status.HTTP_201_CREATED,
)
async def upload_record(
    payload: RecordInput,
    enrich: bool = True,
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    return await services.repository.upload(account_id, payload, enrich=enrich)


@router.delete("/accounts/{account_id}/records/{record_id}", response_model=DeleteResponse)
async def delete_record(
    record_id: str,
    account_id: str = Depends(require_account),
    services: Services = Depends(get_services),
):
    return DeleteResponse(deleted=await services.repository.delete_record(account_id, record_id))
