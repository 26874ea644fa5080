#!/usr/bin/env python3
"""Automated Scheduler for Stremio addon sync.

Long-running process that syncs every active group at a fixed interval.

Architecture:
    - Simple asyncio loop waiting on a shutdown event (no external scheduler)
    - Graceful shutdown on SIGTERM/SIGINT
    - Configurable via environment variables (see syncio.config)
    - Groups are synced one after another; members of a group in parallel

Environment Variables:
    SYNC_INTERVAL_MINUTES: Minutes between sync runs (default: 60, 0 runs once)
    SYNC_ON_STARTUP: Run a sync immediately on startup (default: true)
    SYNC_CONCURRENCY: Users synced in parallel within a group (default: 5)
    DATABASE_URL: PostgreSQL DSN (required)

Destructive plans (every addon removed) are never applied unattended:
those users are reported as skipped.

Example:
    SYNC_INTERVAL_MINUTES=30 python -m src.syncio.scheduler
"""
import asyncio
import logging
import os
import signal
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import asyncpg

from .api.client import StremioClient
from .api.exceptions import SyncioError
from .api.manifests import ManifestFetcher
from .config import SyncSettings
from .sync.adapters import PostgresGroupRepository, PostgresUserRepository, StremioCollectionAdapter
from .sync.domain.ports import IGroupRepository
from .sync.use_cases import DesiredStateResolver, SyncExecutor, SyncGroupUseCase, SyncUserUseCase

logger = logging.getLogger(__name__)


# ============================================
# Sync Logic
# ============================================

async def run_sync(group_repo: IGroupRepository, sync_group: SyncGroupUseCase) -> dict[str, Any]:
    """Run a single sync cycle over every active group.

    A failing group is recorded and does not stop the others.

    Returns:
        Dict with per-group results and an overall ``success`` flag
    """
    start_time = datetime.now(timezone.utc)
    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "groups": {},
        "success": False,
        "error": None,
    }

    try:
        group_ids = await group_repo.list_active_group_ids()
        logger.info(f"Syncing {len(group_ids)} active group(s)")

        failed_groups = []
        for group_id in group_ids:
            try:
                result = await sync_group.execute(group_id)
            except SyncioError as e:
                logger.error(f"Group {group_id} sync failed: {e}")
                results["groups"][group_id] = {"success": False, "error": e.to_dict()}
                failed_groups.append(group_id)
                continue

            results["groups"][group_id] = {
                "success": result.success,
                "succeeded": result.succeeded,
                "failed": result.failed,
                "skipped": dict(result.skipped),
            }
            if not result.success:
                failed_groups.append(group_id)

        if failed_groups:
            logger.warning(f"Sync cycle completed with failures in: {', '.join(failed_groups)}")
        results["success"] = not failed_groups

    except Exception as e:
        logger.error(f"Sync cycle failed: {type(e).__name__}: {e}", exc_info=True)
        results["error"] = str(e)
        results["error_type"] = type(e).__name__

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()
    return results


class HealthState:
    """Counters describing the scheduler's recent runs."""

    def __init__(self):
        self.last_sync_at: Optional[datetime] = None
        self.last_sync_success: bool = False
        self.total_syncs: int = 0
        self.failed_syncs: int = 0
        self.started_at: datetime = datetime.now(timezone.utc)

    def record(self, results: dict[str, Any]) -> None:
        self.total_syncs += 1
        self.last_sync_at = datetime.now(timezone.utc)
        self.last_sync_success = bool(results["success"])
        if not results["success"]:
            self.failed_syncs += 1


# ============================================
# Main Scheduler Loop
# ============================================

async def scheduler_loop(
    group_repo: IGroupRepository,
    sync_group: SyncGroupUseCase,
    interval_minutes: int,
    shutdown_event: asyncio.Event,
    health_state: Optional[HealthState] = None,
    sync_on_startup: bool = True,
):
    """Main scheduling loop.

    Args:
        group_repo: Source of active group ids
        sync_group: Group sync use case
        interval_minutes: Minutes between runs; 0 runs once and returns
        shutdown_event: Event to signal shutdown
        health_state: Shared health counters
        sync_on_startup: Run once before the first wait
    """
    health_state = health_state or HealthState()
    interval_seconds = interval_minutes * 60

    if sync_on_startup or interval_seconds <= 0:
        logger.info("Running initial sync on startup...")
        results = await run_sync(group_repo, sync_group)
        health_state.record(results)
        logger.info(f"Initial sync complete: success={results['success']}")

    if interval_seconds <= 0:
        return

    while not shutdown_event.is_set():
        next_run = datetime.now(timezone.utc) + timedelta(seconds=interval_seconds)
        logger.info(f"Next sync at {next_run.isoformat()} (in {interval_minutes} minutes)")
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval_seconds)
            break
        except asyncio.TimeoutError:
            pass

        results = await run_sync(group_repo, sync_group)
        health_state.record(results)
        logger.info(
            f"Sync complete: success={results['success']}, "
            f"duration={results.get('duration_seconds', 0):.1f}s"
        )

    logger.info("Shutdown requested, exiting loop")


# ============================================
# Main Entry Point
# ============================================

async def main():
    """Main entry point for the scheduler."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    settings = SyncSettings()
    logger.info(f"Config: {settings}")
    sync_on_startup = os.getenv("SYNC_ON_STARTUP", "true").lower() == "true"

    pool = await asyncpg.create_pool(
        settings.require_database_url(),
        min_size=2,
        max_size=10,
        command_timeout=60,
    )
    logger.info("Connected to PostgreSQL")

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    try:
        async with StremioClient(base_url=settings.stremio_api_url) as client, ManifestFetcher() as fetcher:
            collection_api = StremioCollectionAdapter(client)
            group_repo = PostgresGroupRepository(pool, manifest_fetcher=fetcher)
            user_repo = PostgresUserRepository(pool)
            sync_user = SyncUserUseCase(
                user_repo=user_repo,
                collection_api=collection_api,
                resolver=DesiredStateResolver(group_repo, user_repo, unsafe_mode=settings.unsafe_mode),
                executor=SyncExecutor(
                    collection_api,
                    max_retries=settings.max_retries,
                    initial_backoff=settings.initial_backoff,
                    attempt_timeout=settings.attempt_timeout,
                ),
            )
            sync_group = SyncGroupUseCase(sync_user, user_repo, group_repo, max_concurrent=settings.concurrency)

            await scheduler_loop(
                group_repo,
                sync_group,
                settings.interval_minutes,
                shutdown_event,
                sync_on_startup=sync_on_startup,
            )
    finally:
        await pool.close()
        logger.info("Database pool closed")


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
