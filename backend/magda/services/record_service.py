"""
Record repository - medical records, providers, linked (family) accounts and
settings, partitioned by account id.

In-memory state is authoritative for the running process; every mutated
collection is written through the cipher codec to the secure store and each
account's collections are loaded lazily on first access.  Mutations on one
account are serialized with a per-account lock; different accounts proceed
concurrently.  Mutations build the new collection first and only swap it in
after the encrypted write succeeds, so a storage failure leaves the
collection unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from magda.db.secure_store import BaseSecureStore
from magda.exceptions import DecryptionError, NotFound, ValidationError
from magda.models.base import new_id, utcnow, validate_input
from magda.models.linked_account import LinkedAccount, LinkedAccountInput
from magda.models.medical_record import MedicalRecord, RecordInput, RecordMetadata
from magda.models.provider import Provider, ProviderInput
from magda.models.user_settings import SettingsUpdate, UserSettings
from magda.security.cipher import CipherCodec
from magda.services.audit_service import ACCESSED, CREATED, DELETED, ENRICHED, AuditEvent, AuditTrail

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

RECORDS = "records"
PROVIDERS = "providers"
LINKED_ACCOUNTS = "linked_accounts"
SETTINGS = "settings"

DEFAULT_RECENT_LIMIT = 5
# Ids of primary (session) users; never valid for a linked account
PRIMARY_ID_PREFIX = "user-"
DEFAULT_ENRICHMENT_TIMEOUT = 15.0


def storage_key(kind: str, account_id: str) -> str:
    return f"magda_{kind}:{account_id}"


def _check_account_id(account_id: str) -> str:
    if not isinstance(account_id, str) or not account_id.strip():
        raise ValidationError("Account id is required")
    return account_id


def _unenriched(record: MedicalRecord, note: str) -> RecordMetadata:
    metadata = record.metadata.model_copy() if record.metadata else RecordMetadata()
    metadata.ai_analyzed = False
    metadata.note = note
    return metadata


class RecordRepository:
    def __init__(
        self,
        store: BaseSecureStore,
        codec: CipherCodec,
        *,
        audit: Optional[AuditTrail] = None,
        enricher=None,
        enrichment_timeout: float = DEFAULT_ENRICHMENT_TIMEOUT,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ):
        self._store = store
        self._codec = codec
        self._audit = audit or AuditTrail()
        self._enricher = enricher
        self._enrichment_timeout = enrichment_timeout
        self._recent_limit = recent_limit

        self._records: dict[str, list[MedicalRecord]] = {}
        self._providers: dict[str, list[Provider]] = {}
        self._linked_accounts: dict[str, list[LinkedAccount]] = {}
        self._settings: dict[str, UserSettings] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _cache(self, kind: str) -> dict:
        return {
            RECORDS: self._records,
            PROVIDERS: self._providers,
            LINKED_ACCOUNTS: self._linked_accounts,
            SETTINGS: self._settings,
        }[kind]

    async def _load_list(self, kind: str, account_id: str, model: Type[M]) -> list[M]:
        cache = self._cache(kind)
        if account_id in cache:
            return cache[account_id]

        blob = await self._store.get(storage_key(kind, account_id))
        items: list[M] = []
        if blob is not None:
            raw = await self._codec.decrypt_json(blob)
            try:
                items = [model.model_validate(item) for item in raw]
            except (PydanticValidationError, TypeError) as exc:
                logger.error("Stored %s for account %s are corrupt: %s", kind, account_id, exc)
                raise DecryptionError(f"Stored {kind} for account {account_id} are corrupt") from exc
        # A concurrent loader may have finished first; keep its list
        return cache.setdefault(account_id, items)

    async def _save_list(self, kind: str, account_id: str, items: list) -> None:
        blob = await self._codec.encrypt_json([item.to_storage() for item in items])
        await self._store.set(storage_key(kind, account_id), blob)
        self._cache(kind)[account_id] = items

    async def _load_settings(self, account_id: str) -> Optional[UserSettings]:
        if account_id in self._settings:
            return self._settings[account_id]
        blob = await self._store.get(storage_key(SETTINGS, account_id))
        if blob is None:
            return None
        raw = await self._codec.decrypt_json(blob)
        try:
            settings = UserSettings.model_validate(raw)
        except PydanticValidationError as exc:
            raise DecryptionError(f"Stored settings for account {account_id} are corrupt") from exc
        return self._settings.setdefault(account_id, settings)

    async def _purge(self, kind: str, account_id: str) -> None:
        await self._store.delete(storage_key(kind, account_id))
        self._cache(kind).pop(account_id, None)

    # ------------------------------------------------------------------
    # Medical records
    # ------------------------------------------------------------------

    async def list_all(self, account_id: str) -> list[MedicalRecord]:
        """All records for the account, newest ``date`` first."""
        _check_account_id(account_id)
        records = await self._load_list(RECORDS, account_id, MedicalRecord)
        ordered = sorted(records, key=lambda r: r.date, reverse=True)
        return [r.model_copy(deep=True) for r in ordered]

    async def list_recent(self, account_id: str, limit: Optional[int] = None) -> list[MedicalRecord]:
        limit = self._recent_limit if limit is None else limit
        if limit < 0:
            raise ValidationError("limit must not be negative")
        return (await self.list_all(account_id))[:limit]

    async def get_record(self, account_id: str, record_id: str) -> MedicalRecord:
        """Return one record and log the access in its history."""
        _check_account_id(account_id)
        async with self._locks[account_id]:
            records = await self._load_list(RECORDS, account_id, MedicalRecord)
            for index, existing in enumerate(records):
                if existing.id == record_id:
                    break
            else:
                raise NotFound(f"Record {record_id} not found")

            accessed = self._audit.record(
                existing.model_copy(deep=True),
                AuditEvent(account_id=account_id, record_id=record_id, action=ACCESSED),
            )
            await self._save_list(RECORDS, account_id, records[:index] + [accessed] + records[index + 1:])
            return accessed.model_copy(deep=True)

    async def upload(self, account_id: str, record_input: RecordInput | dict, *, enrich: bool = True) -> MedicalRecord:
        """Store a new record, enriching it with AI analysis when possible.

        Enrichment is best effort and bounded by ``enrichment_timeout``; on
        failure the record is stored with ``metadata.ai_analyzed = False``.
        If the caller is cancelled while enrichment is in flight, the base
        record is still saved before the cancellation propagates.
        """
        _check_account_id(account_id)
        data = validate_input(RecordInput, record_input)
        record = MedicalRecord(
            **data.model_dump(exclude={"metadata"}),
            metadata=data.metadata.model_copy() if data.metadata else None,
            id=new_id("record"),
            created_at=utcnow(),
        )

        if enrich:
            try:
                record.metadata = await self._enrich(record)
            except asyncio.CancelledError:
                record.metadata = _unenriched(record, "AI analysis abandoned before completion")
                await asyncio.shield(self._append_record(account_id, record))
                raise

        enriched = enrich and bool(record.metadata and record.metadata.ai_analyzed)
        return await self._append_record(account_id, record, enriched=enriched)

    async def _enrich(self, record: MedicalRecord) -> RecordMetadata:
        if self._enricher is None:
            return _unenriched(record, "AI analysis not configured")

        try:
            enriched = await asyncio.wait_for(
                self._enricher.process_uploaded_record(record.model_copy(deep=True)),
                timeout=self._enrichment_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("AI processing of %s timed out after %ss", record.id, self._enrichment_timeout)
            return _unenriched(record, "AI analysis timed out; stored without enhancement")
        except Exception as exc:
            logger.warning("AI processing of %s skipped: %s", record.id, exc)
            return _unenriched(record, "AI analysis failed; stored without enhancement")

        if enriched is None or enriched.metadata is None:
            return _unenriched(record, "AI analysis returned no result")
        logger.info("Record %s successfully enhanced with AI analysis", record.id)
        return enriched.metadata

    async def _append_record(self, account_id: str, record: MedicalRecord, enriched: bool = False) -> MedicalRecord:
        async with self._locks[account_id]:
            records = await self._load_list(RECORDS, account_id, MedicalRecord)
            self._audit.record(record, AuditEvent(account_id=account_id, record_id=record.id, action=CREATED))
            if enriched:
                self._audit.record(record, AuditEvent(account_id=account_id, record_id=record.id, action=ENRICHED))
            await self._save_list(RECORDS, account_id, records + [record])
        return record.model_copy(deep=True)

    async def delete_record(self, account_id: str, record_id: str) -> bool:
        """Remove a record; returns False (no error) when it does not exist."""
        _check_account_id(account_id)
        async with self._locks[account_id]:
            records = await self._load_list(RECORDS, account_id, MedicalRecord)
            remaining = [r for r in records if r.id != record_id]
            if len(remaining) == len(records):
                return False
            await self._save_list(RECORDS, account_id, remaining)
        self._audit.log_only(AuditEvent(account_id=account_id, record_id=record_id, action=DELETED))
        return True

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    async def list_providers(self, account_id: str) -> list[Provider]:
        _check_account_id(account_id)
        providers = await self._load_list(PROVIDERS, account_id, Provider)
        return [p.model_copy() for p in providers]

    async def upsert_provider(self, account_id: str, provider_input: ProviderInput | dict) -> Provider:
        """Merge into the provider with the same id, or create a new one."""
        _check_account_id(account_id)
        data = validate_input(ProviderInput, provider_input)
        changes = data.model_dump(exclude_unset=True, exclude={"id"})
        now = utcnow()

        async with self._locks[account_id]:
            providers = await self._load_list(PROVIDERS, account_id, Provider)
            index = next((i for i, p in enumerate(providers) if data.id and p.id == data.id), None)

            if index is not None:
                if "name" in changes and not changes["name"]:
                    raise ValidationError("Provider name is required")
                saved = providers[index].model_copy(update={**changes, "updated_at": now})
                updated = providers[:index] + [saved] + providers[index + 1:]
            else:
                if not data.name:
                    raise ValidationError("Provider name is required")
                saved = Provider(**changes, id=data.id or new_id("provider"), created_at=now)
                updated = providers + [saved]

            await self._save_list(PROVIDERS, account_id, updated)
        return saved.model_copy()

    async def delete_provider(self, account_id: str, provider_id: str) -> bool:
        _check_account_id(account_id)
        async with self._locks[account_id]:
            providers = await self._load_list(PROVIDERS, account_id, Provider)
            remaining = [p for p in providers if p.id != provider_id]
            if len(remaining) == len(providers):
                return False
            await self._save_list(PROVIDERS, account_id, remaining)
        return True

    # ------------------------------------------------------------------
    # Linked (family) accounts
    # ------------------------------------------------------------------

    async def list_linked_accounts(self, primary_id: str) -> list[LinkedAccount]:
        _check_account_id(primary_id)
        accounts = await self._load_list(LINKED_ACCOUNTS, primary_id, LinkedAccount)
        return [a.model_copy() for a in accounts]

    async def add_linked_account(self, primary_id: str, account_input: LinkedAccountInput | dict) -> LinkedAccount:
        _check_account_id(primary_id)
        data = validate_input(LinkedAccountInput, account_input)

        async with self._locks[primary_id]:
            accounts = await self._load_list(LINKED_ACCOUNTS, primary_id, LinkedAccount)
            account_id = data.id or new_id("family")
            if account_id == primary_id or any(a.id == account_id for a in accounts):
                raise ValidationError(f"Account {account_id} is already linked")
            if data.id is not None and await self._account_in_use(data.id):
                raise ValidationError(f"Account {account_id} already belongs to another user")

            account = LinkedAccount(
                **data.model_dump(exclude={"id"}),
                id=account_id,
                created_by=primary_id,
                created_at=utcnow(),
            )
            await self._save_list(LINKED_ACCOUNTS, primary_id, accounts + [account])
        return account.model_copy()

    async def _account_in_use(self, account_id: str) -> bool:
        """True when *account_id* is a primary user id or already holds data."""
        if account_id.startswith(PRIMARY_ID_PREFIX):
            return True
        for kind in (RECORDS, PROVIDERS, LINKED_ACCOUNTS, SETTINGS):
            if self._cache(kind).get(account_id):
                return True
            if await self._store.get(storage_key(kind, account_id)) is not None:
                return True
        return False

    async def remove_linked_account(self, primary_id: str, account_id: str) -> bool:
        """Unlink a family member and delete everything stored under its id."""
        _check_account_id(primary_id)
        async with self._locks[primary_id]:
            accounts = await self._load_list(LINKED_ACCOUNTS, primary_id, LinkedAccount)
            remaining = [a for a in accounts if a.id != account_id]
            if len(remaining) == len(accounts):
                return False

            # Child data goes first so a storage failure leaves the link retryable
            async with self._locks[account_id]:
                for kind in (RECORDS, PROVIDERS, SETTINGS):
                    await self._purge(kind, account_id)
            await self._save_list(LINKED_ACCOUNTS, primary_id, remaining)

        logger.info("Linked account %s removed from %s with its records", account_id, primary_id)
        return True

    async def owns_account(self, primary_id: str, account_id: str) -> bool:
        if account_id == primary_id:
            return True
        accounts = await self._load_list(LINKED_ACCOUNTS, primary_id, LinkedAccount)
        return any(a.id == account_id for a in accounts)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def get_settings(self, account_id: str) -> UserSettings:
        _check_account_id(account_id)
        settings = await self._load_settings(account_id)
        return settings.model_copy() if settings else UserSettings()

    async def update_settings(self, account_id: str, partial: SettingsUpdate | dict) -> UserSettings:
        """Merge *partial* into the stored settings; unspecified keys are kept."""
        _check_account_id(account_id)
        data = validate_input(SettingsUpdate, partial)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)

        async with self._locks[account_id]:
            current = await self._load_settings(account_id) or UserSettings()
            merged = current.model_copy(update=changes)
            blob = await self._codec.encrypt_json(merged.to_storage())
            await self._store.set(storage_key(SETTINGS, account_id), blob)
            self._settings[account_id] = merged
        return merged.model_copy()
