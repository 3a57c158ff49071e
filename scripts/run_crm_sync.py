#!/usr/bin/env python3
"""Run a candidate/CRM reconciliation from the shell.

Usage:
    uv run python scripts/run_crm_sync.py preview --provider airtable
    uv run python scripts/run_crm_sync.py execute --provider ghl --select recA recB
    uv run python scripts/run_crm_sync.py execute --provider google-sheets --skip-new
    uv run python scripts/run_crm_sync.py create --provider airtable --assign recA:3 recB:
    uv run python scripts/run_crm_sync.py preview --provider airtable --credentials creds.json --json

Credentials come from the stored platform integration unless
--credentials points at a JSON file with the same blob. OAuth tokens
refreshed during the run are written back to the same place.

Reads DATABASE_URL and provider settings from environment or .env file.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

# Ensure project root is on sys.path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

import structlog  # noqa: E402

logger = structlog.get_logger(__name__)


def parse_assignment(value: str) -> dict:
    """Parse ``contact_id:job_id`` (empty job id means no job)."""
    contact_id, sep, job_id = value.rpartition(":")
    if not sep or not contact_id:
        raise argparse.ArgumentTypeError(f"expected contact_id:job_id, got {value!r}")
    return {"contact_id": contact_id, "job_id": int(job_id) if job_id else None}


class IntegrationNotConnectedError(RuntimeError):
    """The provider has no connected integration to read credentials from."""


async def load_credentials(args: argparse.Namespace, integrations) -> dict:
    """Raw credential blob from --credentials or the stored integration."""
    if args.credentials:
        with open(args.credentials) as f:
            return json.load(f)

    integration = await integrations.get_integration(args.provider)
    if integration is None or not integration.is_connected:
        raise IntegrationNotConnectedError(f"{args.provider} integration not connected")
    return integration.credentials


async def save_rotated_tokens(
    args: argparse.Namespace, integrations, credentials, stored: dict
) -> None:
    """Write tokens the adapter refreshed back to wherever they were loaded from."""
    from src.hireos.crm.service import rotated_tokens

    rotated = rotated_tokens(credentials, stored)
    if not rotated:
        return
    updated = {**stored, **rotated}
    if args.credentials:
        with open(args.credentials, "w") as f:
            json.dump(updated, f, indent=2)
    else:
        await integrations.save_credentials(args.provider, updated)
    logger.info("crm_sync.tokens_persisted", provider=args.provider, keys=sorted(rotated))


async def run_sync(args: argparse.Namespace, service, integrations):
    """Run the requested mode and return its SyncResult.

    Rotated OAuth tokens are saved even when the run fails or times out.

    Raises:
        IntegrationNotConnectedError: No credentials stored for the provider.
        UnknownProviderError: No adapter registered for the provider.
        pydantic.ValidationError: The credential blob is incomplete.
        ReconciliationTimeoutError: The run exceeded its budget.
    """
    from src.hireos.crm.schemas import JobAssignment, SyncOptions

    stored = await load_credentials(args, integrations)
    credentials = service.credentials(args.provider, stored)
    logger.info("crm_sync.cli_started", provider=args.provider, mode=args.mode)

    try:
        if args.mode == "preview":
            return await service.preview(args.provider, credentials, timeout=args.timeout)
        if args.mode == "execute":
            options = SyncOptions(
                selected_contact_ids=args.select,
                skip_new_candidates=args.skip_new,
                job_id=args.job_id,
            )
            return await service.execute(
                args.provider, credentials, options, timeout=args.timeout
            )
        assignments = [JobAssignment(**a) for a in args.assign]
        return await service.create_candidates(
            args.provider, credentials, assignments, timeout=args.timeout
        )
    finally:
        await save_rotated_tokens(args, integrations, credentials, stored)


def print_result(result) -> None:
    status = "ok" if result.success else "FAILED"
    print(
        f"\nReconciliation {status}: {result.total_external_contacts} contact(s), "
        f"{result.total_candidates} candidate(s)"
    )
    print(
        f"  matched={result.matched} updated={result.updated} "
        f"created={result.created} skipped={result.skipped}"
    )
    for detail in result.details:
        print(
            f"  {detail.action.value:8s} {detail.contact_id:20s} "
            f"{detail.external_name[:30]:30s} {detail.reason}"
        )
    for error in result.errors:
        print(f"  ERROR: {error}")


async def main_async(args: argparse.Namespace) -> int:
    from pydantic import ValidationError

    from src.hireos.candidates.repository import CandidateRepository
    from src.hireos.config import get_settings
    from src.hireos.core.database import close_db, get_session
    from src.hireos.core.logging import configure_structlog
    from src.hireos.crm.service import ReconciliationService, ReconciliationTimeoutError
    from src.hireos.crm.sources.registry import UnknownProviderError, build_registry
    from src.hireos.crm.store import RepositoryCandidateStore
    from src.hireos.integrations.repository import IntegrationRepository

    configure_structlog()
    settings = get_settings()
    service = ReconciliationService(
        store=RepositoryCandidateStore(CandidateRepository(session_factory=get_session)),
        registry=build_registry(settings),
        settings=settings,
    )
    integrations = IntegrationRepository(session_factory=get_session)

    try:
        result = await run_sync(args, service, integrations)
    except ValidationError as exc:
        print(f"Error: {args.provider} credentials incomplete: {exc.error_count()} invalid field(s)")
        return 1
    except (IntegrationNotConnectedError, UnknownProviderError, ReconciliationTimeoutError) as exc:
        print(f"Error: {exc}")
        return 1
    finally:
        await close_db()

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        print_result(result)
    return 0 if result.success else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile candidates with an external CRM")
    subparsers = parser.add_subparsers(dest="mode", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--provider", required=True, help="airtable, google-sheets or ghl")
    common.add_argument("--credentials", help="JSON file with the credential blob")
    common.add_argument("--timeout", type=float, default=None, help="Run budget in seconds")
    common.add_argument("--json", action="store_true", help="Print the full result as JSON")

    subparsers.add_parser("preview", parents=[common], help="Dry run, no writes")

    execute = subparsers.add_parser("execute", parents=[common], help="Apply the plan")
    execute.add_argument(
        "--select",
        nargs="*",
        default=None,
        help="Only create these contact ids (pass with no ids to create none)",
    )
    execute.add_argument("--skip-new", action="store_true", help="Defer all new candidates")
    execute.add_argument("--job-id", type=int, default=None, help="Job for new candidates")

    create = subparsers.add_parser("create", parents=[common], help="Create deferred contacts")
    create.add_argument(
        "--assign",
        nargs="+",
        type=parse_assignment,
        required=True,
        help="contact_id:job_id pairs",
    )

    args = parser.parse_args()
    sys.exit(asyncio.run(main_async(args)))


if __name__ == "__main__":
    main()
