"""Reconciliation planner -- decides and applies per-contact outcomes.

One run reads the external contacts and the internal candidate set once,
then walks the contacts in source order. Each contact produces exactly
one ContactDecision, folded into a fresh SyncResult. Preview and execute
share the same decision tree; only execute writes.

Failures never escape a run: a failed bulk read becomes a failed
SyncResult, and a failure on one contact becomes that contact's
``error`` detail while the run continues.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.hireos.candidates.schemas import CandidateCreate, CandidateRead
from src.hireos.crm.change_detection import ChangeDetector, coerce_int, parse_skills
from src.hireos.crm.field_mapping import FieldMapper
from src.hireos.crm.matching import Matcher, normalize_email
from src.hireos.crm.schemas import (
    CandidateField,
    ContactDecision,
    ExternalContact,
    JobAssignment,
    ProviderCredentials,
    SyncAction,
    SyncDetail,
    SyncOptions,
    SyncResult,
)
from src.hireos.crm.sources.base import ContactSource
from src.hireos.crm.store import CandidateStore

logger = structlog.get_logger(__name__)

DEFAULT_FETCH_LIMIT = 300

REASON_NO_NAME_OR_EMAIL = "no name or email"
REASON_DEFERRED = "deferred — handled separately with job assignment"
REASON_NO_EMAIL = "no email — cannot create"
REASON_NOT_SELECTED = "not selected for import"
REASON_NO_CHANGES = "no changes detected"
REASON_CONTACT_NOT_FOUND = "contact not found"


def _duplicate_reason(candidate: CandidateRead) -> str:
    return f"duplicate email, candidate {candidate.id} already exists"


def _find_by_email(candidates: Sequence[CandidateRead], email: str) -> CandidateRead | None:
    wanted = normalize_email(email)
    for candidate in candidates:
        if candidate.email and normalize_email(candidate.email) == wanted:
            return candidate
    return None


@dataclass
class _Run:
    """Per-run state shared by every contact decision."""

    provider_id: str
    mapper: FieldMapper
    candidates: list[CandidateRead]
    options: SyncOptions
    dry_run: bool
    default_job_id: int | None = None
    default_job_loaded: bool = False
    log: Any = field(default=None)


class ReconciliationPlanner:
    """Reconciles one ContactSource against the internal candidate store.

    Args:
        store: Internal candidate persistence.
        matcher: Contact -> candidate matcher. Defaults to email-then-name.
        detector: Change detector for matched pairs.
    """

    def __init__(
        self,
        store: CandidateStore,
        matcher: Matcher | None = None,
        detector: ChangeDetector | None = None,
    ) -> None:
        self._store = store
        self._matcher = matcher or Matcher()
        self._detector = detector or ChangeDetector()

    # ── Public operations ───────────────────────────────────────────────

    async def preview(
        self,
        source: ContactSource,
        credentials: ProviderCredentials,
        *,
        limit: int = DEFAULT_FETCH_LIMIT,
    ) -> SyncResult:
        """Dry run: compute the full plan without writing anything."""
        return await self._run(source, credentials, limit, SyncOptions(), dry_run=True)

    async def execute(
        self,
        source: ContactSource,
        credentials: ProviderCredentials,
        options: SyncOptions | None = None,
        *,
        limit: int = DEFAULT_FETCH_LIMIT,
    ) -> SyncResult:
        """Apply the plan: update changed candidates and create eligible new ones."""
        return await self._run(source, credentials, limit, options or SyncOptions(), dry_run=False)

    async def create_with_job_assignments(
        self,
        source: ContactSource,
        credentials: ProviderCredentials,
        assignments: list[JobAssignment],
        *,
        limit: int = DEFAULT_FETCH_LIMIT,
    ) -> SyncResult:
        """Second pass of a two-phase import: create each listed contact with its job.

        Args:
            source: ContactSource the contacts were previewed from.
            credentials: Provider credentials and field mapping.
            assignments: ``{contact_id, job_id}`` pairs to create.
            limit: Contact window re-fetched to resolve contact ids.

        Returns:
            SyncResult with one detail per assignment.
        """
        log = logger.bind(provider=source.provider_id, mode="assign")
        log.info("reconcile.run_started", assignments=len(assignments))

        try:
            contacts = await source.fetch_contacts(limit, credentials)
            candidates = await self._store.list_candidates()
        except Exception as exc:
            log.error("reconcile.run_failed", error=str(exc))
            return SyncResult.failed(f"Sync failed: {exc}")

        by_id = {contact.id: contact for contact in contacts}
        mapper = FieldMapper(credentials.field_mappings, source.default_field_names)
        known = list(candidates)

        result = SyncResult(
            total_external_contacts=len(assignments),
            total_candidates=len(candidates),
        )
        for assignment in assignments:
            contact = by_id.get(assignment.contact_id)
            if contact is None:
                decision = ContactDecision(
                    detail=SyncDetail(
                        contact_id=assignment.contact_id,
                        external_name="Unknown",
                        action=SyncAction.SKIPPED,
                        reason=REASON_CONTACT_NOT_FOUND,
                    )
                )
            else:
                decision = await self._create_assigned(contact, assignment, mapper, known, log)
            result = result.record(decision)

        result = result.model_copy(update={"success": True})
        log.info(
            "reconcile.run_completed",
            created=result.created,
            skipped=result.skipped,
            errors=len(result.errors),
        )
        return result

    async def push_candidate(
        self,
        source: ContactSource,
        candidate: CandidateRead,
        credentials: ProviderCredentials,
        job_title: str | None = None,
    ) -> dict[str, Any]:
        """Write one internal candidate to the provider (outbound sync).

        The provider matches by email to choose create vs. update. Errors
        propagate to the caller.
        """
        mapper = FieldMapper(credentials.field_mappings, source.default_field_names)
        fields = mapper.to_provider_fields(candidate, job_title=job_title)
        record = await source.create_or_update_contact(
            fields, credentials, updated_at=candidate.updated_at
        )
        logger.info(
            "reconcile.candidate_pushed",
            provider=source.provider_id,
            candidate_id=candidate.id,
            fields=list(fields),
        )
        return record

    # ── Run loop ────────────────────────────────────────────────────────

    async def _run(
        self,
        source: ContactSource,
        credentials: ProviderCredentials,
        limit: int,
        options: SyncOptions,
        *,
        dry_run: bool,
    ) -> SyncResult:
        log = logger.bind(provider=source.provider_id, mode="preview" if dry_run else "execute")
        log.info("reconcile.run_started", limit=limit)

        try:
            contacts = await source.fetch_contacts(limit, credentials)
            candidates = await self._store.list_candidates()
        except Exception as exc:
            log.error("reconcile.run_failed", error=str(exc))
            return SyncResult.failed(f"Sync failed: {exc}")

        run = _Run(
            provider_id=source.provider_id,
            mapper=FieldMapper(credentials.field_mappings, source.default_field_names),
            candidates=candidates,
            options=options,
            dry_run=dry_run,
            log=log,
        )

        result = SyncResult(
            total_external_contacts=len(contacts),
            total_candidates=len(candidates),
        )
        for contact in contacts:
            result = result.record(await self._decide(contact, run))

        result = result.model_copy(update={"success": True})
        log.info(
            "reconcile.run_completed",
            contacts=result.total_external_contacts,
            matched=result.matched,
            updated=result.updated,
            created=result.created,
            skipped=result.skipped,
            errors=len(result.errors),
        )
        return result

    async def _decide(self, contact: ExternalContact, run: _Run) -> ContactDecision:
        external_name = "Unknown"
        candidate: CandidateRead | None = None

        try:
            name = run.mapper.text_value(contact, CandidateField.NAME)
            email = run.mapper.text_value(contact, CandidateField.EMAIL)
            external_name = name or email or "Unknown"

            if not name and not email:
                return _skipped(contact.id, external_name, REASON_NO_NAME_OR_EMAIL)

            candidate = self._matcher.match_fields(
                name, email, run.candidates, contact_id=contact.id
            )
            if candidate is None:
                return await self._decide_unmatched(contact, name, email, external_name, run)
            return await self._decide_matched(contact, candidate, external_name, run)
        except Exception as exc:
            run.log.error("reconcile.contact_failed", contact_id=contact.id, error=str(exc))
            return _processing_failed(contact.id, external_name, exc, candidate)

    async def _decide_matched(
        self,
        contact: ExternalContact,
        candidate: CandidateRead,
        external_name: str,
        run: _Run,
    ) -> ContactDecision:
        update = self._detector.diff(contact, candidate, run.mapper)
        changed = update.changed_fields()

        if not changed:
            return _skipped(contact.id, external_name, REASON_NO_CHANGES, candidate, matched=True)

        if run.dry_run:
            return ContactDecision(
                detail=SyncDetail(
                    contact_id=contact.id,
                    external_name=external_name,
                    candidate_name=candidate.name,
                    action=SyncAction.UPDATED,
                    reason=f"would update: {', '.join(changed)}",
                ),
                matched=True,
            )

        try:
            await self._store.update_candidate(candidate.id, update)
        except Exception as exc:
            run.log.error(
                "reconcile.update_failed",
                contact_id=contact.id,
                candidate_id=candidate.id,
                error=str(exc),
            )
            return ContactDecision(
                detail=SyncDetail(
                    contact_id=contact.id,
                    external_name=external_name,
                    candidate_name=candidate.name,
                    action=SyncAction.ERROR,
                    reason=f"Update failed: {exc}",
                ),
                matched=True,
                error=f"Failed to update candidate {candidate.id}: {exc}",
            )

        run.log.info(
            "reconcile.candidate_updated",
            contact_id=contact.id,
            candidate_id=candidate.id,
            fields=changed,
        )
        return ContactDecision(
            detail=SyncDetail(
                contact_id=contact.id,
                external_name=external_name,
                candidate_name=candidate.name,
                action=SyncAction.UPDATED,
                reason=f"updated: {', '.join(changed)}",
            ),
            matched=True,
        )

    async def _decide_unmatched(
        self,
        contact: ExternalContact,
        name: str | None,
        email: str | None,
        external_name: str,
        run: _Run,
    ) -> ContactDecision:
        options = run.options

        if options.skip_new_candidates:
            return _skipped(contact.id, external_name, REASON_DEFERRED)
        if not email:
            return _skipped(contact.id, external_name, REASON_NO_EMAIL)

        if run.dry_run:
            return ContactDecision(
                detail=SyncDetail(
                    contact_id=contact.id,
                    external_name=external_name,
                    action=SyncAction.CREATED,
                    reason="would create new candidate",
                )
            )

        if options.selected_contact_ids is not None and contact.id not in options.selected_contact_ids:
            return _skipped(contact.id, external_name, REASON_NOT_SELECTED)

        # Re-read so candidates created earlier in this run are seen
        duplicate = _find_by_email(await self._store.list_candidates(), email)
        if duplicate is not None:
            return _skipped(contact.id, external_name, _duplicate_reason(duplicate), duplicate)

        job_id = await self._job_for_new_candidate(run)
        data = self._candidate_create(contact, run.mapper, name, email, job_id)
        try:
            created = await self._store.create_candidate(data)
        except Exception as exc:
            run.log.error("reconcile.create_failed", contact_id=contact.id, error=str(exc))
            return ContactDecision(
                detail=SyncDetail(
                    contact_id=contact.id,
                    external_name=external_name,
                    action=SyncAction.ERROR,
                    reason=f"Create failed: {exc}",
                ),
                error=f"Failed to create candidate from {run.provider_id} contact {contact.id}: {exc}",
            )

        run.log.info(
            "reconcile.candidate_created",
            contact_id=contact.id,
            candidate_id=created.id,
            job_id=job_id,
        )
        return ContactDecision(
            detail=SyncDetail(
                contact_id=contact.id,
                external_name=external_name,
                candidate_name=created.name,
                action=SyncAction.CREATED,
                reason="created new candidate",
            )
        )

    async def _create_assigned(
        self,
        contact: ExternalContact,
        assignment: JobAssignment,
        mapper: FieldMapper,
        known: list[CandidateRead],
        log: Any,
    ) -> ContactDecision:
        external_name = "Unknown"
        try:
            name = mapper.text_value(contact, CandidateField.NAME)
            email = mapper.text_value(contact, CandidateField.EMAIL)
            external_name = name or email or "Unknown"

            if not email:
                return _skipped(contact.id, external_name, REASON_NO_EMAIL)

            duplicate = _find_by_email(known, email)
            if duplicate is not None:
                return _skipped(contact.id, external_name, _duplicate_reason(duplicate), duplicate)

            data = self._candidate_create(contact, mapper, name, email, assignment.job_id)
        except Exception as exc:
            log.error("reconcile.contact_failed", contact_id=contact.id, error=str(exc))
            return _processing_failed(contact.id, external_name, exc)

        try:
            created = await self._store.create_candidate(data)
        except Exception as exc:
            log.error("reconcile.create_failed", contact_id=contact.id, error=str(exc))
            return ContactDecision(
                detail=SyncDetail(
                    contact_id=contact.id,
                    external_name=external_name,
                    action=SyncAction.ERROR,
                    reason=f"Create failed: {exc}",
                ),
                error=f"Failed to create candidate {contact.id}: {exc}",
            )

        known.append(created)
        log.info(
            "reconcile.candidate_created",
            contact_id=contact.id,
            candidate_id=created.id,
            job_id=assignment.job_id,
        )
        return ContactDecision(
            detail=SyncDetail(
                contact_id=contact.id,
                external_name=external_name,
                candidate_name=created.name,
                action=SyncAction.CREATED,
                reason=f"created with job {assignment.job_id if assignment.job_id is not None else 'none'}",
            )
        )

    # ── Helpers ─────────────────────────────────────────────────────────

    async def _job_for_new_candidate(self, run: _Run) -> int | None:
        """Explicit job from options, else the first active job (looked up once per run)."""
        if run.options.job_id is not None:
            return run.options.job_id
        if not run.options.assign_default_job:
            return None
        if not run.default_job_loaded:
            jobs = await self._store.list_jobs(status="active")
            run.default_job_id = jobs[0].id if jobs else None
            run.default_job_loaded = True
        return run.default_job_id

    @staticmethod
    def _candidate_create(
        contact: ExternalContact,
        mapper: FieldMapper,
        name: str | None,
        email: str,
        job_id: int | None,
    ) -> CandidateCreate:
        skills = parse_skills(mapper.field_value(contact, CandidateField.SKILLS))
        return CandidateCreate(
            name=name or email,
            email=email,
            phone=mapper.text_value(contact, CandidateField.PHONE),
            location=mapper.text_value(contact, CandidateField.LOCATION),
            expected_salary=mapper.text_value(contact, CandidateField.EXPECTED_SALARY),
            experience_years=coerce_int(mapper.field_value(contact, CandidateField.EXPERIENCE_YEARS)),
            skills=skills or None,
            job_id=job_id,
        )


def _processing_failed(
    contact_id: str,
    external_name: str,
    exc: Exception,
    candidate: CandidateRead | None = None,
) -> ContactDecision:
    """Error decision for an unexpected failure; a contact that already matched stays matched."""
    return ContactDecision(
        detail=SyncDetail(
            contact_id=contact_id,
            external_name=external_name,
            candidate_name=candidate.name if candidate is not None else "N/A",
            action=SyncAction.ERROR,
            reason=f"Processing failed: {exc}",
        ),
        matched=candidate is not None,
        error=f"Failed to process contact {contact_id}: {exc}",
    )


def _skipped(
    contact_id: str,
    external_name: str,
    reason: str,
    candidate: CandidateRead | None = None,
    *,
    matched: bool = False,
) -> ContactDecision:
    return ContactDecision(
        detail=SyncDetail(
            contact_id=contact_id,
            external_name=external_name,
            candidate_name=candidate.name if candidate is not None else "N/A",
            action=SyncAction.SKIPPED,
            reason=reason,
        ),
        matched=matched,
    )
