"""
Record repository tests.

- Uploads: ids, audit history, ordering, account partitioning, persistence
- AI enrichment: success, failure, timeout and cancellation all keep the record
- Providers: upsert create/merge, delete
- Linked accounts: add, duplicate or already-used ids, cascade on removal
- Settings: defaults and partial merge
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from magda.exceptions import DecryptionError, EnrichmentFailure, NotFound, StorageUnavailable, ValidationError
from magda.models.medical_record import RecordMetadata
from magda.security import CipherCodec, KeyManager
from magda.services.record_service import RecordRepository, storage_key

CBC = {"title": "CBC", "date": "2024-01-01", "type": "lab", "provider": "Dr. X", "description": "normal"}


def _record(title, date, **extra):
    return {"title": title, "date": date, "type": "visit", "provider": "Dr. Y", "description": "", **extra}


def _enriching(metadata=None, error=None, delay=0.0):
    """Fake AI collaborator that fills in metadata, raises, or stalls."""

    async def process_uploaded_record(record):
        if delay:
            await asyncio.sleep(delay)
        if error is not None:
            raise error
        record.metadata = metadata or RecordMetadata(ai_analyzed=True, keywords=["cbc"], summary="Blood count")
        return record

    enricher = AsyncMock()
    enricher.process_uploaded_record.side_effect = process_uploaded_record
    return enricher


class TestUpload:
    """Tests for RecordRepository.upload and the record read paths"""

    def test_example_scenario(self, repository):
        """Should create a record with id, createdAt and one created entry visible only to its owner"""

        async def scenario():
            record = await repository.upload("u1", CBC)
            return record, await repository.list_all("u1"), await repository.list_all("u2")

        record, mine, theirs = asyncio.run(scenario())

        assert record.id.startswith("record-")
        assert record.created_at is not None
        history = record.hipaa_info.access_history
        assert [(e.action, e.user_id) for e in history] == [("created", "u1")]
        assert [r.id for r in mine] == [record.id]
        assert theirs == []

    def test_list_all_newest_first_and_recent_limit(self, repository):
        """Should order by record date and cap recent records at five"""
        dates = ["2023-01-05", "2024-03-01", "2022-12-15", "2023-06-15", "2023-05-20", "2023-04-10"]

        async def scenario():
            for i, date in enumerate(dates):
                await repository.upload("u1", _record(f"r{i}", date), enrich=False)
            return await repository.list_all("u1"), await repository.list_recent("u1")

        everything, recent = asyncio.run(scenario())

        assert [r.date.isoformat() for r in everything] == sorted(dates, reverse=True)
        assert len(recent) == 5
        assert recent[0].date.isoformat() == "2024-03-01"

    def test_negative_recent_limit(self, repository):
        """Should reject a negative limit"""
        with pytest.raises(ValidationError):
            asyncio.run(repository.list_recent("u1", -1))

    def test_empty_account_returns_nothing(self, repository):
        """Should not invent demo data for a new account"""
        assert asyncio.run(repository.list_all("fresh")) == []

    def test_invalid_input_is_rejected_before_mutation(self, repository, store):
        """Should raise ValidationError and write nothing"""
        with pytest.raises(ValidationError):
            asyncio.run(repository.upload("u1", {"title": "  ", "date": "2024-01-01"}))
        with pytest.raises(ValidationError):
            asyncio.run(repository.upload("u1", {"title": "x", "date": "someday"}))
        assert asyncio.run(store.get(storage_key("records", "u1"))) is None

    def test_records_are_encrypted_and_survive_restart(self, repository, store):
        """Should persist encrypted and load lazily in a new repository"""
        asyncio.run(repository.upload("u1", CBC, enrich=False))

        blob = asyncio.run(store.get(storage_key("records", "u1")))
        assert "normal" not in blob

        reopened = RecordRepository(store, CipherCodec(KeyManager(store)))
        assert [r.title for r in asyncio.run(reopened.list_all("u1"))] == ["CBC"]

    def test_corrupt_collection_is_not_treated_as_empty(self, repository, store):
        """Should surface DecryptionError instead of returning no records"""
        asyncio.run(store.set(storage_key("records", "u1"), "00" * 16 + "beef" * 10))
        with pytest.raises(DecryptionError):
            asyncio.run(repository.list_all("u1"))

    def test_storage_failure_leaves_collection_unchanged(self, repository, store):
        """Should raise StorageUnavailable and keep the previous records"""

        async def scenario():
            await repository.upload("u1", CBC, enrich=False)
            store.fail_writes = True
            with pytest.raises(StorageUnavailable):
                await repository.upload("u1", _record("second", "2024-02-01"), enrich=False)
            store.fail_writes = False
            return await repository.list_all("u1")

        assert [r.title for r in asyncio.run(scenario())] == ["CBC"]

    def test_returned_records_are_copies(self, repository):
        """Should not let callers mutate stored state"""

        async def scenario():
            await repository.upload("u1", CBC, enrich=False)
            listed = await repository.list_all("u1")
            listed[0].title = "changed"
            return await repository.list_all("u1")

        assert asyncio.run(scenario())[0].title == "CBC"

    def test_concurrent_uploads_are_not_lost(self, repository):
        """Should serialize writes per account"""

        async def scenario():
            await asyncio.gather(
                *(repository.upload("u1", _record(f"r{i}", "2024-01-01"), enrich=False) for i in range(20)),
                *(repository.upload("u2", _record(f"s{i}", "2024-01-01"), enrich=False) for i in range(5)),
            )
            return await repository.list_all("u1"), await repository.list_all("u2")

        mine, theirs = asyncio.run(scenario())
        assert len(mine) == 20
        assert len(theirs) == 5


class TestGetAndDelete:
    """Tests for get_record and delete_record"""

    def test_get_record_logs_access(self, repository):
        """Should append an accessed event and persist it"""

        async def scenario():
            record = await repository.upload("u1", CBC, enrich=False)
            fetched = await repository.get_record("u1", record.id)
            return fetched, (await repository.list_all("u1"))[0]

        fetched, stored = asyncio.run(scenario())

        assert [e.action for e in fetched.hipaa_info.access_history] == ["created", "accessed"]
        assert stored.hipaa_info.last_accessed == fetched.hipaa_info.access_history[-1].timestamp
        assert len(stored.hipaa_info.access_history) == 2

    def test_get_missing_record(self, repository):
        """Should raise NotFound for an unknown id"""
        with pytest.raises(NotFound):
            asyncio.run(repository.get_record("u1", "record-missing"))

    def test_get_record_of_other_account(self, repository):
        """Should not find another account's record"""

        async def scenario():
            record = await repository.upload("u1", CBC, enrich=False)
            await repository.get_record("u2", record.id)

        with pytest.raises(NotFound):
            asyncio.run(scenario())

    def test_delete(self, repository):
        """Should remove the record and report a missing id as a no-op"""

        async def scenario():
            record = await repository.upload("u1", CBC, enrich=False)
            first = await repository.delete_record("u1", record.id)
            second = await repository.delete_record("u1", record.id)
            return first, second, await repository.list_all("u1")

        assert asyncio.run(scenario()) == (True, False, [])


class TestEnrichment:
    """Tests for AI enrichment during upload"""

    def test_successful_enrichment(self, store, codec):
        """Should store the assistant's metadata and log an enriched event"""
        repository = RecordRepository(store, codec, enricher=_enriching())

        record = asyncio.run(repository.upload("u1", CBC))

        assert record.metadata.ai_analyzed is True
        assert record.metadata.keywords == ["cbc"]
        assert [e.action for e in record.hipaa_info.access_history] == ["created", "enriched"]

    def test_enricher_cannot_change_core_fields(self, store, codec):
        """Should adopt only the metadata returned by the assistant"""

        async def rewrite(record):
            record.title = "hijacked"
            record.metadata = RecordMetadata(ai_analyzed=True)
            return record

        enricher = AsyncMock()
        enricher.process_uploaded_record.side_effect = rewrite
        repository = RecordRepository(store, codec, enricher=enricher)

        assert asyncio.run(repository.upload("u1", CBC)).title == "CBC"

    def test_failure_degrades_to_unenriched(self, store, codec):
        """Should persist the record with aiAnalyzed false when the assistant fails"""
        repository = RecordRepository(store, codec, enricher=_enriching(error=EnrichmentFailure("502")))

        async def scenario():
            await repository.upload("u1", CBC)
            return await repository.list_all("u1")

        (stored,) = asyncio.run(scenario())
        assert stored.metadata.ai_analyzed is False
        assert "failed" in stored.metadata.note

    def test_timeout_degrades_to_unenriched(self, store, codec):
        """Should give up on a slow assistant and still store the record"""
        repository = RecordRepository(store, codec, enricher=_enriching(delay=5), enrichment_timeout=0.05)

        async def scenario():
            await repository.upload("u1", CBC)
            return await repository.list_all("u1")

        (stored,) = asyncio.run(scenario())
        assert stored.metadata.ai_analyzed is False
        assert "timed out" in stored.metadata.note

    def test_cancelled_upload_still_saves_record(self, store, codec):
        """Should save the base record when the caller abandons enrichment"""
        repository = RecordRepository(store, codec, enricher=_enriching(delay=5), enrichment_timeout=10)

        async def scenario():
            task = asyncio.create_task(repository.upload("u1", CBC))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            # let the shielded save finish
            for _ in range(10):
                await asyncio.sleep(0)
            return await repository.list_all("u1")

        (stored,) = asyncio.run(scenario())
        assert stored.metadata.ai_analyzed is False

    def test_no_enricher_configured(self, repository):
        """Should mark records as not analyzed when no assistant is configured"""
        record = asyncio.run(repository.upload("u1", CBC))
        assert record.metadata.ai_analyzed is False


class TestProviders:
    """Tests for provider upsert and delete"""

    def test_create_generates_id(self, repository):
        """Should create a provider with a generated id"""
        provider = asyncio.run(repository.upsert_provider("u1", {"name": "Dr. Sarah Johnson"}))
        assert provider.id.startswith("provider-")
        assert provider.created_at is not None

    def test_merge_preserves_unspecified_fields(self, repository):
        """Should merge into the existing provider with the same id"""

        async def scenario():
            created = await repository.upsert_provider(
                "u1", {"name": "Dr. Chen", "specialty": "Cardiologist", "phone": "(555) 987-6543"}
            )
            updated = await repository.upsert_provider("u1", {"id": created.id, "notes": "Follow up in May"})
            return created, updated, await repository.list_providers("u1")

        created, updated, providers = asyncio.run(scenario())

        assert updated.id == created.id
        assert updated.specialty == "Cardiologist"
        assert updated.phone == "(555) 987-6543"
        assert updated.notes == "Follow up in May"
        assert updated.updated_at is not None
        assert len(providers) == 1

    def test_merge_rejects_null_name(self, repository, store, codec):
        """Should reject clearing the name of an existing provider and keep it readable"""

        async def scenario():
            created = await repository.upsert_provider("u1", {"name": "Dr. Chen"})
            with pytest.raises(ValidationError):
                await repository.upsert_provider("u1", {"id": created.id, "name": None})
            return await RecordRepository(store, codec).list_providers("u1")

        (provider,) = asyncio.run(scenario())
        assert provider.name == "Dr. Chen"

    def test_create_requires_name(self, repository):
        """Should reject a new provider without a name"""
        with pytest.raises(ValidationError):
            asyncio.run(repository.upsert_provider("u1", {"specialty": "Dermatology"}))

    def test_rejects_bad_phone(self, repository):
        """Should validate the phone format"""
        with pytest.raises(ValidationError):
            asyncio.run(repository.upsert_provider("u1", {"name": "Dr. Wong", "phone": "call me"}))

    def test_delete_provider(self, repository):
        """Should delete by id and no-op for unknown ids"""

        async def scenario():
            provider = await repository.upsert_provider("u1", {"name": "Dr. Wong"})
            return (
                await repository.delete_provider("u1", provider.id),
                await repository.delete_provider("u1", provider.id),
                await repository.list_providers("u1"),
            )

        assert asyncio.run(scenario()) == (True, False, [])


class TestLinkedAccounts:
    """Tests for family accounts"""

    def test_add_and_list(self, repository):
        """Should link a family member to the primary account"""

        async def scenario():
            account = await repository.add_linked_account(
                "u1", {"firstName": "Alex", "lastName": "Smith", "relationship": "Child", "dateOfBirth": "06/22/2012"}
            )
            return account, await repository.list_linked_accounts("u1")

        account, accounts = asyncio.run(scenario())

        assert account.id.startswith("family-")
        assert account.created_by == "u1"
        assert accounts == [account]
        assert asyncio.run(repository.owns_account("u1", account.id)) is True
        assert asyncio.run(repository.owns_account("u2", account.id)) is False

    def test_rejects_invalid_date_of_birth(self, repository):
        """Should reject dates in the future"""
        with pytest.raises(ValidationError):
            asyncio.run(repository.add_linked_account("u1", {"firstName": "Alex", "dateOfBirth": "01/01/2999"}))

    def test_rejects_duplicate_id(self, repository):
        """Should not link the same account twice"""

        async def scenario():
            await repository.add_linked_account("u1", {"id": "family-1", "firstName": "Jane"})
            await repository.add_linked_account("u1", {"id": "family-1", "firstName": "Jane"})

        with pytest.raises(ValidationError):
            asyncio.run(scenario())

    def test_rejects_another_users_id(self, repository):
        """Should not let a primary claim a user id and then purge its records"""

        async def scenario():
            await repository.upload("user-B", CBC, enrich=False)
            with pytest.raises(ValidationError):
                await repository.add_linked_account("user-A", {"id": "user-B", "firstName": "Bob"})
            removed = await repository.remove_linked_account("user-A", "user-B")
            return removed, await repository.owns_account("user-A", "user-B"), await repository.list_all("user-B")

        removed, owns, records = asyncio.run(scenario())

        assert removed is False
        assert owns is False
        assert len(records) == 1

    def test_rejects_id_with_stored_data(self, repository, store, codec):
        """Should not link a family id that already holds another primary's data"""

        async def scenario():
            child = await repository.add_linked_account("u2", {"firstName": "Jane"})
            await repository.upsert_provider(child.id, {"name": "Dr. Wong"})
            fresh = RecordRepository(store, codec)
            with pytest.raises(ValidationError):
                await fresh.add_linked_account("u1", {"id": child.id, "firstName": "Jane"})
            return child, await fresh.owns_account("u1", child.id), await fresh.list_providers(child.id)

        child, owns, providers = asyncio.run(scenario())

        assert owns is False
        assert [p.name for p in providers] == ["Dr. Wong"]

    def test_remove_cascades_to_child_data(self, repository, store):
        """Should delete the child's records, providers and settings"""

        async def scenario():
            child = await repository.add_linked_account("u1", {"firstName": "Jane"})
            await repository.upload(child.id, CBC, enrich=False)
            await repository.upsert_provider(child.id, {"name": "Dr. Wong"})
            await repository.update_settings(child.id, {"darkMode": True})
            await repository.upload("u1", CBC, enrich=False)

            removed = await repository.remove_linked_account("u1", child.id)
            return child, removed

        child, removed = asyncio.run(scenario())

        assert removed is True
        assert asyncio.run(repository.list_all(child.id)) == []
        assert asyncio.run(repository.list_providers(child.id)) == []
        assert asyncio.run(repository.get_settings(child.id)).dark_mode is False
        assert asyncio.run(repository.list_linked_accounts("u1")) == []
        assert len(asyncio.run(repository.list_all("u1"))) == 1
        for kind in ("records", "providers", "settings"):
            assert asyncio.run(store.get(storage_key(kind, child.id))) is None

    def test_remove_unknown_account(self, repository):
        """Should report False for an account that is not linked"""
        assert asyncio.run(repository.remove_linked_account("u1", "family-nope")) is False


class TestSettings:
    """Tests for per-account settings"""

    def test_defaults(self, repository):
        """Should return defaults before anything is saved"""
        settings = asyncio.run(repository.get_settings("u1"))
        assert settings.dark_mode is False
        assert settings.notifications is True
        assert settings.font_size == "medium"

    def test_partial_update_merges(self, repository):
        """Should change only the given keys"""

        async def scenario():
            await repository.update_settings("u1", {"fontSize": "large", "notifications": False})
            await repository.update_settings("u1", {"darkMode": True})
            return await repository.get_settings("u1")

        settings = asyncio.run(scenario())
        assert settings.dark_mode is True
        assert settings.font_size == "large"
        assert settings.notifications is False
        assert settings.auto_lock is True

    def test_unknown_key_is_rejected(self, repository):
        """Should refuse keys that are not settings"""
        with pytest.raises(ValidationError):
            asyncio.run(repository.update_settings("u1", {"theme": "solarized"}))

    def test_blank_account_id(self, repository):
        """Should require an account id"""
        with pytest.raises(ValidationError):
            asyncio.run(repository.get_settings(" "))
