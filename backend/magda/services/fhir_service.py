"""
FHIR interoperability: a small async client for FHIR R4 servers plus the
mapping from FHIR resources to medical records.

Supported resource types map as follows:

    DiagnosticReport   -> lab record (code.text, effectiveDateTime, performer, conclusion)
    MedicationRequest  -> prescription record (medication text, authoredOn, requester, dosage)
    Immunization       -> immunization record (vaccineCode.text, occurrenceDateTime, location)

Everything else is skipped.  Imported records go through the normal
repository ``upload`` path so they are encrypted, audited and enriched like
any other upload.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from magda.exceptions import ImportFailure, ValidationError
from magda.models.medical_record import MedicalRecord, RecordInput, RecordType, UploadType

logger = logging.getLogger(__name__)

FHIR_CONTENT_TYPE = "application/fhir+json"
IMPORTED_RESOURCE_TYPES = ("DiagnosticReport", "MedicationRequest", "Immunization")


def check_endpoint(endpoint: Optional[str]) -> str:
    if not endpoint or not endpoint.startswith("http"):
        raise ValidationError("Please provide a valid FHIR endpoint URL")
    return endpoint.rstrip("/")


class FHIRClient:
    def __init__(
        self,
        endpoint: str,
        auth_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        headers = {"Content-Type": FHIR_CONTENT_TYPE, "Accept": FHIR_CONTENT_TYPE}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self._client = httpx.AsyncClient(
            base_url=check_endpoint(endpoint),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "FHIRClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            logger.error("FHIR %s %s failed: %s", method, path, exc)
            raise ImportFailure(f"FHIR request failed: {exc}") from exc
        except ValueError as exc:
            raise ImportFailure("FHIR server returned invalid JSON") from exc

    async def get_patient(self, patient_id: str) -> dict:
        return await self._request("GET", f"/Patient/{patient_id}")

    async def search_resources(self, resource_type: str, params: Optional[dict] = None) -> dict:
        return await self._request("GET", f"/{resource_type}", params=params or {})

    async def create_resource(self, resource_type: str, data: dict) -> dict:
        return await self._request("POST", f"/{resource_type}", json=data)

    async def update_resource(self, resource_type: str, resource_id: str, data: dict) -> dict:
        return await self._request("PUT", f"/{resource_type}/{resource_id}", json=data)


def _first(items: Any) -> dict:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def _display(ref: Any) -> str:
    return ref.get("display", "") if isinstance(ref, dict) else ""


def _concept_text(concept: Any) -> str:
    """``CodeableConcept.text``, falling back to the first coding's display."""
    if not isinstance(concept, dict):
        return ""
    return concept.get("text") or _first(concept.get("coding")).get("display", "")


def _date_part(value: Optional[str]) -> Optional[str]:
    # FHIR dateTime values may carry a time and offset; records keep the date
    return value[:10] if value else None


def fhir_resource_to_record(resource: dict) -> Optional[RecordInput]:
    """Map one FHIR resource to a record input, or None when unsupported."""
    resource_type = resource.get("resourceType")

    if resource_type == "DiagnosticReport":
        fields = {
            "title": _concept_text(resource.get("code")),
            "date": _date_part(resource.get("effectiveDateTime") or resource.get("issued")),
            "type": RecordType.LAB,
            "provider": _display(_first(resource.get("performer"))),
            "description": resource.get("conclusion") or "No conclusion provided",
        }
    elif resource_type == "MedicationRequest":
        fields = {
            "title": f"Prescription - {_concept_text(resource.get('medicationCodeableConcept'))}",
            "date": _date_part(resource.get("authoredOn")),
            "type": RecordType.PRESCRIPTION,
            "provider": _display(resource.get("requester")),
            "description": _first(resource.get("dosageInstruction")).get("text", ""),
        }
    elif resource_type == "Immunization":
        vaccine = _concept_text(resource.get("vaccineCode"))
        fields = {
            "title": vaccine,
            "date": _date_part(resource.get("occurrenceDateTime")),
            "type": RecordType.IMMUNIZATION,
            "provider": _display(resource.get("location")),
            "description": f"{vaccine} administered",
        }
    else:
        return None

    try:
        return RecordInput(**fields, upload_type=UploadType.FHIR, fhir_id=resource.get("id"))
    except PydanticValidationError as exc:
        logger.warning("Skipping %s %s: %s", resource_type, resource.get("id"), exc.errors(include_url=False))
        return None


def bundle_resources(bundle: dict) -> list[dict]:
    """Unwrap a searchset Bundle into its resources."""
    if bundle.get("resourceType") != "Bundle":
        return [bundle]
    return [entry["resource"] for entry in bundle.get("entry") or [] if isinstance(entry.get("resource"), dict)]


async def fetch_patient_resources(client: FHIRClient, patient_id: Optional[str] = None) -> list[dict]:
    resources: list[dict] = []
    for resource_type in IMPORTED_RESOURCE_TYPES:
        params = {"patient": patient_id} if patient_id else None
        bundle = await client.search_resources(resource_type, params)
        resources.extend(bundle_resources(bundle))
    return resources


async def import_from_fhir(repository, account_id: str, resources: Iterable[dict]) -> list[MedicalRecord]:
    """Upload every supported resource for *account_id*; returns the stored records."""
    imported = []
    for resource in resources:
        record_input = fhir_resource_to_record(resource)
        if record_input is None:
            continue
        imported.append(await repository.upload(account_id, record_input))
    logger.info("Imported %d FHIR resources for account %s", len(imported), account_id)
    return imported


async def import_from_endpoint(
    repository,
    account_id: str,
    endpoint: str,
    patient_id: Optional[str] = None,
    auth_token: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[MedicalRecord]:
    async with FHIRClient(endpoint, auth_token=auth_token, transport=transport) as client:
        resources = await fetch_patient_resources(client, patient_id)
    return await import_from_fhir(repository, account_id, resources)


def record_to_fhir_resource(record: MedicalRecord) -> dict:
    """Inverse of ``fhir_resource_to_record`` for the supported record types."""
    date = record.date.isoformat()
    if record.type == RecordType.PRESCRIPTION:
        title = record.title.removeprefix("Prescription - ")
        resource = {
            "resourceType": "MedicationRequest",
            "status": "active",
            "intent": "order",
            "medicationCodeableConcept": {"text": title},
            "authoredOn": date,
            "requester": {"display": record.provider},
            "dosageInstruction": [{"text": record.description}],
        }
    elif record.type == RecordType.IMMUNIZATION:
        resource = {
            "resourceType": "Immunization",
            "status": "completed",
            "vaccineCode": {"text": record.title},
            "occurrenceDateTime": date,
            "location": {"display": record.provider},
        }
    else:
        resource = {
            "resourceType": "DiagnosticReport",
            "status": "final",
            "code": {"text": record.title},
            "effectiveDateTime": date,
            "performer": [{"display": record.provider}],
            "conclusion": record.description,
        }
    resource["id"] = record.fhir_id or record.id
    return resource


def export_to_fhir(records: Iterable[MedicalRecord]) -> dict:
    """Package records as a FHIR collection Bundle."""
    entries = [{"resource": record_to_fhir_resource(r)} for r in records]
    return {"resourceType": "Bundle", "type": "collection", "total": len(entries), "entry": entries}
