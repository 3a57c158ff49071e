"""Tests for ReconciliationPlanner preview/execute/assignment runs.

Uses the in-memory CandidateStore and FakeContactSource from conftest --
no database or provider calls.
"""

from __future__ import annotations

from src.hireos.crm.change_detection import ChangeDetector
from src.hireos.crm.matching import Matcher
from src.hireos.crm.planner import ReconciliationPlanner
from src.hireos.crm.schemas import (
    ExternalContact,
    JobAssignment,
    SyncAction,
    SyncOptions,
)
from src.hireos.crm.sources.base import ContactSourceRequestError


# ── Helpers ────────────────────────────────────────────────────────────────


def _contact(contact_id: str, **fields) -> ExternalContact:
    return ExternalContact(id=contact_id, fields=fields)


def _actions(result) -> list[tuple[str, SyncAction, str]]:
    return [(d.contact_id, d.action, d.reason) for d in result.details]


class _Unprintable:
    """Field value whose string conversion fails."""

    def __str__(self) -> str:
        raise ValueError("unreadable")


# ── Scenarios ──────────────────────────────────────────────────────────────


class TestScenarios:
    async def test_phone_added_to_matched_candidate(self, store, source, credentials):
        store.add(name="Jane Doe", email="jane@x.com")
        source.contacts = [_contact("c1", Name="Jane Doe", Email="jane@x.com", Phone="555-1")]

        result = await ReconciliationPlanner(store).execute(source, credentials)

        assert result.success is True
        assert result.matched == 1
        assert result.updated == 1
        assert _actions(result) == [("c1", SyncAction.UPDATED, "updated: phone")]
        assert store.candidates[1].phone == "555-1"

    async def test_empty_selection_creates_nothing(self, store, source, credentials):
        source.contacts = [_contact("c1", Name="New Person", Email="new@x.com")]

        result = await ReconciliationPlanner(store).execute(
            source, credentials, SyncOptions(selected_contact_ids=[])
        )

        assert result.created == 0
        assert result.skipped == 1
        assert _actions(result) == [("c1", SyncAction.SKIPPED, "not selected for import")]
        assert store.created == []

    async def test_unchanged_match_is_skipped(self, store, source, credentials):
        store.add(name="A", email="a@x.com")
        source.contacts = [_contact("c1", Name="A", Email="a@x.com")]

        result = await ReconciliationPlanner(store).execute(source, credentials)

        assert result.updated == 0
        assert result.matched == 1
        assert _actions(result) == [("c1", SyncAction.SKIPPED, "no changes detected")]
        assert result.details[0].candidate_name == "A"

    async def test_no_name_or_email_in_both_modes(self, store, source, credentials):
        store.add(name="A", email="a@x.com")
        source.contacts = [_contact("c1", Name="", Email="  ", Phone="555")]
        planner = ReconciliationPlanner(store)

        for result in (
            await planner.preview(source, credentials),
            await planner.execute(source, credentials),
        ):
            assert _actions(result) == [("c1", SyncAction.SKIPPED, "no name or email")]
            assert result.details[0].external_name == "Unknown"
            assert result.matched == 0


# ── Execute ────────────────────────────────────────────────────────────────


class TestExecute:
    async def test_creates_all_eligible_when_selection_omitted(self, store, source, credentials):
        source.contacts = [
            _contact("c1", Name="New One", Email="one@x.com", Skills="go, rust", **{"Experience Years": "4"}),
            _contact("c2", Name="New Two", Email="two@x.com"),
        ]

        result = await ReconciliationPlanner(store).execute(source, credentials)

        assert result.created == 2
        assert [d.reason for d in result.details] == ["created new candidate"] * 2
        first = store.created[0]
        assert first.name == "New One"
        assert first.skills == ["go", "rust"]
        assert first.experience_years == 4
        assert first.status == "new"

    async def test_selected_ids_filter_creation(self, store, source, credentials):
        source.contacts = [
            _contact("c1", Name="One", Email="one@x.com"),
            _contact("c2", Name="Two", Email="two@x.com"),
        ]

        result = await ReconciliationPlanner(store).execute(
            source, credentials, SyncOptions(selected_contact_ids=["c2"])
        )

        assert _actions(result) == [
            ("c1", SyncAction.SKIPPED, "not selected for import"),
            ("c2", SyncAction.CREATED, "created new candidate"),
        ]
        assert [c.email for c in store.created] == ["two@x.com"]

    async def test_skip_new_candidates_defers(self, store, source, credentials):
        source.contacts = [_contact("c1", Name="One", Email="one@x.com")]

        result = await ReconciliationPlanner(store).execute(
            source, credentials, SyncOptions(skip_new_candidates=True)
        )

        assert _actions(result) == [
            ("c1", SyncAction.SKIPPED, "deferred — handled separately with job assignment")
        ]
        assert store.created == []

    async def test_name_only_contact_cannot_be_created(self, store, source, credentials):
        source.contacts = [_contact("c1", Name="No Email")]

        result = await ReconciliationPlanner(store).execute(source, credentials)

        assert _actions(result) == [("c1", SyncAction.SKIPPED, "no email — cannot create")]

    async def test_duplicate_email_within_run_is_not_created_twice(self, store, source, credentials):
        # Both share an email; the second sees the first via the re-read
        source.contacts = [
            _contact("c1", Name="Sam Lee", Email="sam@x.com"),
            _contact("c2", Name="Samuel Lee", Email="SAM@x.com"),
        ]

        result = await ReconciliationPlanner(store).execute(source, credentials)

        assert result.created == 1
        assert result.details[1].action == SyncAction.SKIPPED
        assert result.details[1].reason == "duplicate email, candidate 1 already exists"
        assert len(store.created) == 1

    async def test_default_job_is_first_active_job(self, store, source, credentials):
        store.add_job(10, "Closed Role", status="closed")
        store.add_job(11, "Backend Engineer")
        store.add_job(12, "Designer")
        source.contacts = [_contact("c1", Name="One", Email="one@x.com")]

        await ReconciliationPlanner(store).execute(source, credentials)

        assert store.created[0].job_id == 11

    async def test_explicit_job_overrides_default(self, store, source, credentials):
        store.add_job(11, "Backend Engineer")
        source.contacts = [_contact("c1", Name="One", Email="one@x.com")]

        await ReconciliationPlanner(store).execute(source, credentials, SyncOptions(job_id=42))

        assert store.created[0].job_id == 42

    async def test_default_job_assignment_can_be_disabled(self, store, source, credentials):
        store.add_job(11, "Backend Engineer")
        source.contacts = [_contact("c1", Name="One", Email="one@x.com")]

        await ReconciliationPlanner(store).execute(
            source, credentials, SyncOptions(assign_default_job=False)
        )

        assert store.created[0].job_id is None

    async def test_update_failure_is_per_contact(self, store, source, credentials):
        store.add(name="Jane Doe", email="jane@x.com")
        store.add(name="John Roe", email="john@x.com")
        store.fail_update_ids.add(1)
        source.contacts = [
            _contact("c1", Name="Jane Doe", Email="jane@x.com", Phone="1"),
            _contact("c2", Name="John Roe", Email="john@x.com", Phone="2"),
        ]

        result = await ReconciliationPlanner(store).execute(source, credentials)

        assert result.success is True
        assert result.details[0].action == SyncAction.ERROR
        assert result.details[0].reason == "Update failed: write refused"
        assert result.details[1].action == SyncAction.UPDATED
        assert result.errors == ["Failed to update candidate 1: write refused"]
        assert result.matched == 2
        assert result.updated == 1

    async def test_create_failure_is_per_contact(self, store, source, credentials):
        store.fail_create_emails.add("bad@x.com")
        source.contacts = [
            _contact("c1", Name="Bad", Email="bad@x.com"),
            _contact("c2", Name="Good", Email="good@x.com"),
        ]

        result = await ReconciliationPlanner(store).execute(source, credentials)

        assert [d.action for d in result.details] == [SyncAction.ERROR, SyncAction.CREATED]
        assert len(result.errors) == 1
        assert result.created == 1

    async def test_unexpected_error_while_matching_is_contained(self, store, source, credentials):
        class ExplodingMatcher(Matcher):
            def match_fields(self, name, email, candidates, contact_id=None):
                if contact_id == "c1":
                    raise ValueError("boom")
                return super().match_fields(name, email, candidates, contact_id)

        source.contacts = [
            _contact("c1", Name="One", Email="one@x.com"),
            _contact("c2", Name="Two", Email="two@x.com"),
        ]

        result = await ReconciliationPlanner(store, matcher=ExplodingMatcher()).execute(
            source, credentials
        )

        assert result.success is True
        assert result.details[0].action == SyncAction.ERROR
        assert result.details[0].reason == "Processing failed: boom"
        assert result.details[1].action == SyncAction.CREATED
        assert len(result.details) == 2

    async def test_failure_after_match_still_counts_as_matched(self, store, source, credentials):
        class ExplodingDetector(ChangeDetector):
            def diff(self, contact, candidate, mapper):
                raise ValueError("bad comparison")

        store.add(name="One", email="one@x.com")
        source.contacts = [_contact("c1", Name="One", Email="one@x.com")]

        result = await ReconciliationPlanner(store, detector=ExplodingDetector()).execute(
            source, credentials
        )

        detail = result.details[0]
        assert detail.action == SyncAction.ERROR
        assert detail.reason == "Processing failed: bad comparison"
        assert detail.candidate_name == "One"
        assert result.matched == 1
        assert result.errors == ["Failed to process contact c1: bad comparison"]

    async def test_unreadable_field_value_is_contained(self, store, source, credentials):
        source.contacts = [
            _contact("c1", Name=_Unprintable(), Email="one@x.com"),
            _contact("c2", Name="Two", Email="two@x.com"),
        ]

        result = await ReconciliationPlanner(store).execute(source, credentials)

        assert _actions(result)[0] == ("c1", SyncAction.ERROR, "Processing failed: unreadable")
        assert result.details[0].external_name == "Unknown"
        assert result.details[1].action == SyncAction.CREATED
        assert result.matched == 0

    async def test_custom_field_mapping(self, store, source):
        from src.hireos.crm.schemas import ProviderCredentials

        store.add(name="Jane Doe", email="jane@x.com")
        source.contacts = [
            _contact("c1", **{"Full Name": "Jane Doe", "Contact Email": "jane@x.com", "City": "Denver"})
        ]
        mapped = ProviderCredentials(
            field_mappings={"name": "Full Name", "email": "Contact Email", "location": "City"}
        )

        result = await ReconciliationPlanner(store).execute(source, mapped)

        assert _actions(result) == [("c1", SyncAction.UPDATED, "updated: location")]
        assert store.candidates[1].location == "Denver"

    async def test_candidates_read_once_per_run_plus_create_rechecks(self, store, source, credentials):
        store.add(name="Jane Doe", email="jane@x.com")
        source.contacts = [
            _contact("c1", Name="Jane Doe", Email="jane@x.com", Phone="1"),
            _contact("c2", Name="New", Email="new@x.com"),
        ]

        await ReconciliationPlanner(store).execute(source, credentials)

        # One bulk read, one duplicate re-check before the single create
        assert store.list_calls == 2


# ── Run-level ──────────────────────────────────────────────────────────────


class TestRunLevel:
    async def test_fetch_failure_fails_run_with_zero_counts(self, store, source, credentials):
        source.fetch_error = ContactSourceRequestError(
            provider="fake", status_code=500, message="upstream down"
        )

        result = await ReconciliationPlanner(store).execute(source, credentials)

        assert result.success is False
        assert result.details == []
        assert result.total_external_contacts == 0
        assert result.matched == result.updated == result.created == result.skipped == 0
        assert result.errors == ["Sync failed: fake API error (500): upstream down"]

    async def test_candidate_read_failure_fails_run(self, store, source, credentials):
        store.fail_list = RuntimeError("db offline")
        source.contacts = [_contact("c1", Name="One", Email="one@x.com")]

        result = await ReconciliationPlanner(store).preview(source, credentials)

        assert result.success is False
        assert result.errors == ["Sync failed: db offline"]

    async def test_limit_is_passed_to_source(self, store, source, credentials):
        await ReconciliationPlanner(store).preview(source, credentials, limit=25)
        assert source.fetch_limits == [25]

    async def test_every_contact_yields_one_detail_in_order(self, store, source, credentials):
        store.add(name="Matched", email="m@x.com")
        source.contacts = [
            _contact("c1", Name="Matched", Email="m@x.com"),
            _contact("c2"),
            _contact("c3", Name="Fresh", Email="f@x.com"),
            _contact("c4", Name="Name Only"),
        ]

        result = await ReconciliationPlanner(store).execute(source, credentials)

        assert [d.contact_id for d in result.details] == ["c1", "c2", "c3", "c4"]
        assert result.total_external_contacts == 4
        assert result.total_candidates == 1
        assert result.matched == result.updated + 1  # c1 skipped among matched
        unmatched_skipped = 2  # c2 and c4
        assert result.created + unmatched_skipped == result.total_external_contacts - result.matched


# ── Preview ────────────────────────────────────────────────────────────────


class TestPreview:
    async def test_preview_writes_nothing(self, store, source, credentials):
        store.add(name="Jane Doe", email="jane@x.com")
        store.add_job(1, "Backend Engineer")
        source.contacts = [
            _contact("c1", Name="Jane Doe", Email="jane@x.com", Phone="555"),
            _contact("c2", Name="New", Email="new@x.com"),
        ]
        before = dict(store.candidates)

        result = await ReconciliationPlanner(store).preview(source, credentials)

        assert store.candidates == before
        assert store.created == [] and store.updates == []
        assert source.writes == []
        assert _actions(result) == [
            ("c1", SyncAction.UPDATED, "would update: phone"),
            ("c2", SyncAction.CREATED, "would create new candidate"),
        ]

    async def test_preview_counts_match_execute(self, store, source, credentials):
        store.add(name="Jane Doe", email="jane@x.com")
        store.add(name="Same", email="same@x.com")
        source.contacts = [
            _contact("c1", Name="Jane Doe", Email="jane@x.com", Location="Austin"),
            _contact("c2", Name="Same", Email="same@x.com"),
            _contact("c3", Name="New", Email="new@x.com"),
            _contact("c4", Name="Nameless Email-less"),
        ]
        planner = ReconciliationPlanner(store)

        preview = await planner.preview(source, credentials)
        executed = await planner.execute(source, credentials)

        for attr in ("matched", "updated", "created", "skipped"):
            assert getattr(preview, attr) == getattr(executed, attr), attr
        assert [d.action for d in preview.details] == [d.action for d in executed.details]


# ── Idempotence ────────────────────────────────────────────────────────────


class TestIdempotence:
    async def test_second_execute_changes_nothing(self, store, source, credentials):
        store.add(name="Jane Doe", email="jane@x.com")
        source.contacts = [
            _contact("c1", Name="Jane Doe", Email="jane@x.com", Phone="555", Skills="b, a"),
            _contact("c2", Name="New Person", Email="new@x.com", Location="Austin"),
        ]
        planner = ReconciliationPlanner(store)

        first = await planner.execute(source, credentials)
        second = await planner.execute(source, credentials)

        assert first.updated == 1 and first.created == 1
        assert second.updated == 0
        assert second.created == 0
        assert second.matched == 2
        assert all(d.reason == "no changes detected" for d in second.details)


# ── Job Assignments ────────────────────────────────────────────────────────


class TestCreateWithJobAssignments:
    async def test_creates_each_assignment_with_its_job(self, store, source, credentials):
        source.contacts = [
            _contact("c1", Name="One", Email="one@x.com"),
            _contact("c2", Name="Two", Email="two@x.com"),
        ]

        result = await ReconciliationPlanner(store).create_with_job_assignments(
            source,
            credentials,
            [JobAssignment(contact_id="c1", job_id=5), JobAssignment(contact_id="c2")],
        )

        assert result.success is True
        assert result.created == 2
        assert [c.job_id for c in store.created] == [5, None]
        assert [d.reason for d in result.details] == ["created with job 5", "created with job none"]

    async def test_unknown_contact_and_missing_email_and_duplicates(self, store, source, credentials):
        store.add(name="Existing", email="dupe@x.com")
        source.contacts = [
            _contact("c1", Name="No Email"),
            _contact("c2", Name="Dupe", Email="dupe@x.com"),
            _contact("c3", Name="Fresh", Email="fresh@x.com"),
        ]

        result = await ReconciliationPlanner(store).create_with_job_assignments(
            source,
            credentials,
            [
                JobAssignment(contact_id="missing", job_id=1),
                JobAssignment(contact_id="c1", job_id=1),
                JobAssignment(contact_id="c2", job_id=1),
                JobAssignment(contact_id="c3", job_id=1),
                JobAssignment(contact_id="c3", job_id=2),
            ],
        )

        assert [d.reason for d in result.details] == [
            "contact not found",
            "no email — cannot create",
            "duplicate email, candidate 1 already exists",
            "created with job 1",
            "duplicate email, candidate 2 already exists",
        ]
        assert result.total_external_contacts == 5
        assert len(store.created) == 1

    async def test_unreadable_contact_does_not_abort_run(self, store, source, credentials):
        source.contacts = [
            _contact("c1", Name="One", Email=_Unprintable()),
            _contact("c2", Name="Two", Email="two@x.com"),
        ]

        result = await ReconciliationPlanner(store).create_with_job_assignments(
            source,
            credentials,
            [JobAssignment(contact_id="c1", job_id=1), JobAssignment(contact_id="c2", job_id=1)],
        )

        assert result.success is True
        assert _actions(result) == [
            ("c1", SyncAction.ERROR, "Processing failed: unreadable"),
            ("c2", SyncAction.CREATED, "created with job 1"),
        ]
        assert result.errors == ["Failed to process contact c1: unreadable"]

    async def test_fetch_failure(self, store, source, credentials):
        source.fetch_error = RuntimeError("timeout")

        result = await ReconciliationPlanner(store).create_with_job_assignments(
            source, credentials, [JobAssignment(contact_id="c1")]
        )

        assert result.success is False
        assert result.errors == ["Sync failed: timeout"]


# ── Outbound Push ──────────────────────────────────────────────────────────


class TestPushCandidate:
    async def test_push_uses_mapping_and_updated_at(self, store, source):
        from src.hireos.crm.schemas import ProviderCredentials

        candidate = store.add(name="Jane Doe", email="jane@x.com", status="hired", skills=["go"])
        credentials = ProviderCredentials(field_mappings={"email": "Work Email"})

        record = await ReconciliationPlanner(store).push_candidate(
            source, candidate, credentials, job_title="SRE"
        )

        data, updated_at = source.writes[0]
        assert data == {
            "Name": "Jane Doe",
            "Work Email": "jane@x.com",
            "Skills": "go",
            "Status": "Hired",
            "Job Title": "SRE",
        }
        assert updated_at == candidate.updated_at
        assert record["id"] == "ext-1"
