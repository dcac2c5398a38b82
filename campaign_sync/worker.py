"""One-shot runner for scheduled reconcile and sync-recovery invocations.

An external scheduler (cron, a workflow runner) calls this once per tick; it
posts a single request to the API with the module's machine credentials and
prints the JSON report. There is no loop here.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import httpx
from opentelemetry import trace

from campaign_sync.core.config import WorkerSettings, get_worker_settings
from campaign_sync.core.telemetry import configure_logging, setup_worker_telemetry, shutdown_worker_telemetry
from campaign_sync.services.api_client import CampaignSyncApiClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="campaign_sync.worker",
        description="Run one reconcile or sync-recovery pass against the campaign-sync API.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    reconcile = commands.add_parser("reconcile", help="Link unassigned campaigns to engagements.")
    reconcile.add_argument("--workspace-id", required=True, help="Workspace to reconcile")
    reconcile.add_argument("--dry-run", action="store_true", help="Report matches without writing links")
    reconcile.add_argument(
        "--import-snapshots",
        action="store_true",
        help="Pull campaign snapshots from NocoDB before matching",
    )

    recover = commands.add_parser("recover", help="Detect and recover stuck platform syncs.")
    recover.add_argument("--action", choices=["auto", "detect", "resume", "reset"], default="auto")
    recover.add_argument("--platform", default=None, help="Restrict to one platform")
    recover.add_argument("--workspace-id", default=None, help="Restrict to one workspace")
    recover.add_argument(
        "--force-resume",
        action="store_true",
        help="Resume jobs past the hard ceiling instead of resetting them",
    )
    return parser


async def run_command(
    args: argparse.Namespace,
    settings: WorkerSettings,
    *,
    client: CampaignSyncApiClient | None = None,
) -> dict[str, Any]:
    client = client or CampaignSyncApiClient(
        base_url=settings.api_base_url,
        module_id=settings.module_id,
        api_key=settings.api_key,
        timeout_seconds=settings.request_timeout_seconds,
    )
    with tracer.start_as_current_span(f"worker.{args.command}") as span:
        if args.command == "reconcile":
            span.set_attribute("workspace.id", args.workspace_id)
            report = await client.reconcile(
                args.workspace_id,
                dry_run=args.dry_run,
                import_snapshots=args.import_snapshots,
            )
            logger.info(
                "reconcile finished workspace_id=%s linked=%s unlinked=%s",
                args.workspace_id,
                report.get("campaigns_linked"),
                report.get("campaigns_unlinked"),
            )
            return report

        span.set_attribute("recovery.action", args.action)
        report = await client.recover(
            action=args.action,
            platform=args.platform,
            workspace_id=args.workspace_id,
            force_resume=args.force_resume,
        )
        logger.info(
            "sync recovery finished action=%s stuck=%s results=%s",
            args.action,
            report.get("stuck_count"),
            len(report.get("results") or []),
        )
        return report


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_worker_settings()
    configure_logging()
    telemetry_runtime = setup_worker_telemetry(settings)
    try:
        report = asyncio.run(run_command(args, settings))
    except httpx.HTTPStatusError as exc:
        logger.error(
            "%s request failed status=%s body=%s",
            args.command,
            exc.response.status_code,
            exc.response.text[:500],
        )
        return 1
    except httpx.HTTPError as exc:
        logger.error("%s request failed: %s", args.command, exc)
        return 1
    finally:
        shutdown_worker_telemetry(telemetry_runtime)

    print(json.dumps(report, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
