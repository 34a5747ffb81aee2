"""Wires the store, key manager, codec and services together once per process."""

import logging
from dataclasses import dataclass
from typing import Optional

from magda.config import Settings, get_settings
from magda.db.secure_store import BaseSecureStore, build_secure_store
from magda.security import CipherCodec, KeyManager
from magda.services.ai_service import AIService
from magda.services.audit_service import AuditTrail
from magda.services.record_service import RecordRepository
from magda.services.session_service import ApiCredentialStore, CredentialVerifier, SessionStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: BaseSecureStore
    key_manager: KeyManager
    codec: CipherCodec
    session: SessionStore
    credentials: ApiCredentialStore
    repository: RecordRepository
    ai: AIService

    async def startup(self) -> None:
        await self.credentials.seed_from_settings(self.settings)
        await self.session.restore()

    async def close(self) -> None:
        await self.store.close()


def build_services(
    settings: Optional[Settings] = None,
    store: Optional[BaseSecureStore] = None,
    verifier: Optional[CredentialVerifier] = None,
    ai: Optional[AIService] = None,
) -> Services:
    settings = settings or get_settings()
    store = store or build_secure_store(settings)
    key_manager = KeyManager(store)
    codec = CipherCodec(key_manager, settings.CIPHER_SCHEME)
    credentials = ApiCredentialStore(store, codec)
    ai = ai or AIService(credentials, settings)
    repository = RecordRepository(
        store,
        codec,
        audit=AuditTrail(),
        enricher=ai,
        enrichment_timeout=settings.AI_ENRICHMENT_TIMEOUT_SECONDS,
        recent_limit=settings.RECENT_RECORDS_LIMIT,
    )
    logger.info("Services ready (store=%s, cipher=%s)", type(store).__name__, settings.CIPHER_SCHEME)
    return Services(
        settings=settings,
        store=store,
        key_manager=key_manager,
        codec=codec,
        session=SessionStore(store, codec, verifier),
        credentials=credentials,
        repository=repository,
        ai=ai,
    )
