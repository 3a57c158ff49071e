"""Tests for ReconciliationService: provider lookup, credentials, fetch windows, budget."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from src.hireos.candidates.schemas import CandidateRead
from src.hireos.config import Settings
from src.hireos.crm.schemas import ExternalContact, ProviderCredentials, SyncOptions
from src.hireos.crm.service import ReconciliationService, ReconciliationTimeoutError
from src.hireos.crm.sources.registry import SourceRegistry, UnknownProviderError


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.fixture
def service(store, source) -> ReconciliationService:
    return ReconciliationService(store, SourceRegistry([source]), _settings())


class TestCredentials:
    def test_dict_parsed_with_provider_model(self, service):
        creds = service.credentials("fake", {"fieldMappings": {"email": "Work Email"}})
        assert isinstance(creds, ProviderCredentials)
        assert creds.field_mappings == {"email": "Work Email"}

    def test_model_passes_through(self, service, credentials):
        assert service.credentials("fake", credentials) is credentials

    async def test_unknown_provider(self, service):
        with pytest.raises(UnknownProviderError):
            await service.preview("hubspot", {})


class TestRuns:
    async def test_preview_uses_configured_fetch_window(self, store, source):
        service = ReconciliationService(
            store, SourceRegistry([source]), _settings(AIRTABLE_FETCH_LIMIT=25)
        )
        result = await service.preview("fake", {})
        assert result.success is True
        # Unlisted providers fall back to the Airtable window
        assert source.fetch_limits == [25]

    async def test_execute_applies_options(self, service, store, source):
        source.contacts = [
            ExternalContact(id="rec1", fields={"Name": "New", "Email": "new@x.com"})
        ]
        result = await service.execute(
            "fake", {}, SyncOptions(selected_contact_ids=["rec1"], job_id=4)
        )
        assert result.created == 1
        assert store.created[0].job_id == 4

    async def test_name_fallback_setting(self, store, source):
        store.add(name="Jane Doe", email="jane@x.com")
        source.contacts = [
            ExternalContact(id="rec1", fields={"Name": "Jane Doe", "Email": "jane.doe@other.com"})
        ]

        with_fallback = ReconciliationService(store, SourceRegistry([source]), _settings())
        without = ReconciliationService(
            store, SourceRegistry([source]), _settings(SYNC_NAME_FALLBACK=False)
        )

        assert (await with_fallback.preview("fake", {})).matched == 1
        assert (await without.preview("fake", {})).matched == 0

    async def test_push_candidate(self, service, source):
        candidate = CandidateRead(
            id=3,
            name="Jane Doe",
            email="jane@x.com",
            updated_at=datetime(2026, 2, 1, tzinfo=timezone.utc),
        )
        record = await service.push_candidate("fake", {}, candidate, job_title="Designer")

        assert record["id"] == "ext-1"
        data, updated_at = source.writes[0]
        assert data["Job Title"] == "Designer"
        assert updated_at == candidate.updated_at


class TestRunBudget:
    async def test_timeout_raises(self, store, source):
        async def slow_fetch(limit, credentials):
            await asyncio.sleep(5)
            return []

        source.fetch_contacts = slow_fetch
        service = ReconciliationService(
            store, SourceRegistry([source]), _settings(SYNC_RUN_TIMEOUT_SECONDS=0.05)
        )

        with pytest.raises(ReconciliationTimeoutError) as exc_info:
            await service.preview("fake", {})
        assert exc_info.value.provider_id == "fake"
        assert isinstance(exc_info.value, TimeoutError)

    async def test_explicit_timeout_overrides_setting(self, store, source):
        async def slow_fetch(limit, credentials):
            await asyncio.sleep(5)
            return []

        source.fetch_contacts = slow_fetch
        service = ReconciliationService(store, SourceRegistry([source]), _settings())

        with pytest.raises(ReconciliationTimeoutError):
            await service.execute("fake", {}, timeout=0.05)

    async def test_no_budget_by_default(self, service):
        result = await service.preview("fake", {})
        assert result.success is True
