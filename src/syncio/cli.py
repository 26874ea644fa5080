#!/usr/bin/env python3
"""Syncio command-line interface.

Plans and runs addon syncs against the database and the Stremio API, and
links Stremio accounts through the device login.

Environment Variables Required:
    - DATABASE_URL: PostgreSQL connection string
    - STREMIO_API_URL / STREMIO_LINK_URL: optional API overrides

Example Usage:
    $ syncio plan USER_ID                  # Show what a sync would change
    $ syncio sync USER_ID                  # Sync one user
    $ syncio sync USER_ID --drop URL       # Sync and exclude an addon from now on
    $ syncio sync-group GROUP_ID           # Sync every active member of a group
    $ syncio link --user USER_ID           # Link a Stremio account to a user
"""
import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import asyncpg

from .api.client import StremioClient
from .api.exceptions import ConfigurationError, SyncioError
from .api.link import StremioLinkClient
from .api.manifests import ManifestFetcher
from .auth import DeviceAuthFlow, FlowState, StremioDeviceLinkAdapter, StremioIdentityAdapter
from .config import SyncSettings
from .sync.adapters import PostgresGroupRepository, PostgresUserRepository, StremioCollectionAdapter
from .sync.use_cases import DesiredStateResolver, SyncExecutor, SyncGroupUseCase, SyncUserUseCase

logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _banner(title: str) -> None:
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


@asynccontextmanager
async def sync_services(settings: SyncSettings):
    """Open the pool and clients and yield (user_repo, sync_user, sync_group, client)."""
    pool = await asyncpg.create_pool(settings.require_database_url(), min_size=1, max_size=5)
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
            yield user_repo, sync_user, sync_group, client
    finally:
        await pool.close()


async def run_plan(args: argparse.Namespace, settings: SyncSettings) -> int:
    async with sync_services(settings) as (_, sync_user, _, _):
        plan = await sync_user.plan(args.user_id, drop_addons=args.drop or ())
    _banner(f"PLAN FOR {args.user_id}: {plan.outcome.value.upper()}")
    _print_json(plan.to_dict())
    if plan.requires_confirmation:
        print("\nThis plan removes every addon. Re-run `sync` with --confirm to apply it.")
    return 0


async def run_user_sync(args: argparse.Namespace, settings: SyncSettings) -> int:
    async with sync_services(settings) as (_, sync_user, _, _):
        outcome = await sync_user.execute(args.user_id, confirm=args.confirm, drop_addons=args.drop or ())
    _banner(f"SYNC {args.user_id}: {outcome.status.value.upper()}")
    _print_json(outcome.to_dict())
    if outcome.blocked_addon:
        print(f"\nBlocked by {outcome.blocked_addon}; re-run with --drop {outcome.blocked_addon} to exclude it.")
    return 0 if outcome.succeeded else 1


async def run_group_sync(args: argparse.Namespace, settings: SyncSettings) -> int:
    async with sync_services(settings) as (_, _, sync_group, _):
        result = await sync_group.execute(args.group_id, confirm=args.confirm)
    _banner(f"GROUP {args.group_id}: {result.succeeded} succeeded, {result.failed} failed")
    _print_json(result.to_dict())
    return 0 if result.success else 1


async def run_link(args: argparse.Namespace, settings: SyncSettings) -> int:
    async with sync_services(settings) as (user_repo, _, _, client):
        async with StremioLinkClient(settings.stremio_link_url, settings.stremio_link_host) as link_client:

            async def store_credential(auth_key: str) -> None:
                if args.user:
                    await user_repo.set_auth_key(args.user, auth_key)
                    print(f"Stremio account linked to user {args.user}")
                else:
                    print(f"authKey: {auth_key}")

            flow = DeviceAuthFlow(
                StremioDeviceLinkAdapter(link_client),
                on_credential=store_credential,
                on_link_ready=lambda session: print(f"Open {session.link} and approve the login"),
                on_expired=lambda reason, message: print(f"Expired: {message}"),
                on_error=lambda reason, message: print(f"Failed ({reason}): {message}"),
                identity_api=StremioIdentityAdapter(client),
                expected_email=args.email,
                poll_interval=settings.poll_interval,
                ttl=settings.device_code_ttl,
            )
            await flow.start()
            try:
                state = await flow.wait()
            except asyncio.CancelledError:
                flow.cancel()
                raise

    return 0 if state == FlowState.COMPLETED else 1


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(
        prog="syncio",
        description="Sync Stremio addon collections to their group's addon list",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    plan_cmd = commands.add_parser("plan", help="Show what a sync would change")
    plan_cmd.add_argument("user_id")
    plan_cmd.add_argument("--drop", action="append", metavar="ADDON", help="Addon id or URL to drop")
    plan_cmd.set_defaults(handler=run_plan)

    sync_cmd = commands.add_parser("sync", help="Sync one user")
    sync_cmd.add_argument("user_id")
    sync_cmd.add_argument("--confirm", action="store_true", help="Allow removing every addon")
    sync_cmd.add_argument(
        "--drop",
        action="append",
        metavar="ADDON",
        help="Addon id or URL to remove now and exclude from now on (repeatable)",
    )
    sync_cmd.set_defaults(handler=run_user_sync)

    group_cmd = commands.add_parser("sync-group", help="Sync every active member of a group")
    group_cmd.add_argument("group_id")
    group_cmd.add_argument("--confirm", action="store_true", help="Allow removing every addon")
    group_cmd.set_defaults(handler=run_group_sync)

    link_cmd = commands.add_parser("link", help="Link a Stremio account with the device login")
    link_cmd.add_argument("--user", metavar="USER_ID", help="Store the credential on this user")
    link_cmd.add_argument("--email", help="Require the approving account to have this e-mail")
    link_cmd.set_defaults(handler=run_link)

    args = parser.parse_args()

    try:
        settings = SyncSettings()
    except ConfigurationError as e:
        print(f"[Main] Configuration error: {e}")
        sys.exit(2)

    start_time = datetime.now(timezone.utc)
    try:
        exit_code = asyncio.run(args.handler(args, settings))
    except SyncioError as e:
        print(f"[Main] {e}")
        exit_code = 1
    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    print(f"\n[Main] Completed in {duration:.1f} seconds")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
