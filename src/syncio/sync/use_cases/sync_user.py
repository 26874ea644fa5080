"""Sync User / Sync Group Use Cases - The end-to-end sync workflow.

Workflow for one user:
1. Load the user (credential, group) via IUserRepository
2. Read the live collection via IAddonCollectionAPI (fresh every time)
3. Resolve the desired addons (DesiredStateResolver)
4. Diff desired vs actual (Reconciler)
5. Apply the plan (SyncExecutor)
6. Persist addons the operator dropped as exclusions (explicit hand-off)

A group sync runs the user workflow for every active member with bounded
concurrency and collects one outcome per user.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from ...api.exceptions import (
    AuthExpiredError,
    ConfirmationRequiredError,
    NotFoundError,
    SyncioError,
)
from ...api.resilience import process_concurrent
from ..domain.entities import (
    RemoteSnapshot,
    SyncOutcome,
    SyncPlan,
    SyncStatus,
    UserRecord,
    UserSyncState,
)
from ..domain.ports import IAddonCollectionAPI, IGroupRepository, IUserRepository
from ..domain.reconciler import Reconciler
from .execute_sync import SyncExecutor
from .resolve_desired import DesiredStateResolver

logger = logging.getLogger(__name__)


@dataclass
class GroupSyncResult:
    """Outcome of syncing every member of a group."""

    group_id: str
    outcomes: list[SyncOutcome] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status == SyncStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status != SyncStatus.SUCCEEDED)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "success": self.success,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": dict(self.skipped),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class UserSyncStatus:
    """Whether one account matches its desired state."""

    user_id: str
    state: UserSyncState
    plan: Optional[SyncPlan] = None
    error: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "state": self.state.value,
            "plan": self.plan.to_dict() if self.plan else None,
            "error": self.error,
        }


@dataclass
class GroupSyncStatus:
    """A group is synced only when every active member is."""

    group_id: str
    users: list[UserSyncStatus] = field(default_factory=list)

    @property
    def state(self) -> UserSyncState:
        if all(u.state == UserSyncState.SYNCED for u in self.users):
            return UserSyncState.SYNCED
        return UserSyncState.UNSYNCED

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "state": self.state.value,
            "users": [u.to_dict() for u in self.users],
        }


class SyncUserUseCase:
    """Plans and executes the sync of one user's account.

    Example:
        use_case = SyncUserUseCase(
            user_repo=PostgresUserRepository(pool),
            collection_api=StremioCollectionAdapter(client),
            resolver=DesiredStateResolver(group_repo, user_repo),
            executor=SyncExecutor(collection_api),
        )
        plan = await use_case.plan("user-1")
        outcome = await use_case.execute("user-1", confirm=plan.requires_confirmation)
    """

    def __init__(
        self,
        user_repo: IUserRepository,
        collection_api: IAddonCollectionAPI,
        resolver: DesiredStateResolver,
        executor: SyncExecutor,
        reconciler: Optional[Reconciler] = None,
    ):
        self.user_repo = user_repo
        self.collection_api = collection_api
        self.resolver = resolver
        self.executor = executor
        self.reconciler = reconciler or Reconciler()

    async def _load_user(self, user_id: str) -> UserRecord:
        user = await self.user_repo.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        if not user.is_connected:
            raise AuthExpiredError(
                f"User '{user_id}' has no Stremio account connected",
                details={"user_id": user_id},
            )
        if not user.group_id:
            raise NotFoundError("Group", details={"user_id": user_id})
        return user

    async def _plan_for(self, user: UserRecord, dropped: list[str]) -> SyncPlan:
        actual = await self.executor.call_remote(self.collection_api.fetch_collection, user.auth_key)
        snapshot = RemoteSnapshot(user_id=user.id, addons=tuple(actual))

        desired = await self.resolver.resolve(
            user.group_id,
            user.id,
            known_addons=snapshot.addons,
            dropped=dropped,
        )
        overrides = await self.resolver.overrides_for(user.id, dropped)
        everything = list(snapshot.addons) + desired
        return self.reconciler.plan(
            user.id,
            desired,
            list(snapshot.addons),
            protected=overrides.protected_keys(everything),
            excluded=overrides.excluded_keys(everything),
        )

    async def plan(self, user_id: str, drop_addons: Iterable[str] = ()) -> SyncPlan:
        """Compute what a sync would do without applying it.

        Raises:
            NotFoundError: Unknown user, or user without a group
            AuthExpiredError: User has no credential, or it is invalid
        """
        user = await self._load_user(user_id)
        return await self._plan_for(user, list(drop_addons))

    async def execute(
        self,
        user_id: str,
        confirm: bool = False,
        drop_addons: Iterable[str] = (),
    ) -> SyncOutcome:
        """Sync one user's account to its desired state.

        Args:
            user_id: User to sync
            confirm: Allow a plan that would remove every addon
            drop_addons: Addon ids/URLs to remove now and exclude from now on

        Raises:
            NotFoundError, AuthExpiredError: Bad user state
            AlreadySyncingError: A sync for this user is running
            ConfirmationRequiredError: Plan is destructive and not confirmed
        """
        dropped = list(drop_addons)
        user = await self._load_user(user_id)
        logger.info(f"Syncing user {user_id} (group {user.group_id})")

        plan = await self._plan_for(user, dropped)
        outcome = await self.executor.execute(
            user.id,
            plan,
            user.auth_key,
            confirmed=confirm,
            dropped=dropped,
        )

        if outcome.succeeded and outcome.exclusions_to_persist:
            await self.user_repo.add_excluded_addons(user.id, outcome.exclusions_to_persist)
            logger.info(f"Recorded {len(outcome.exclusions_to_persist)} exclusion(s) for user {user_id}")

        return outcome


class SyncGroupUseCase:
    """Syncs every active member of a group."""

    def __init__(
        self,
        sync_user: SyncUserUseCase,
        user_repo: IUserRepository,
        group_repo: IGroupRepository,
        max_concurrent: int = 5,
    ):
        self.sync_user = sync_user
        self.user_repo = user_repo
        self.group_repo = group_repo
        self.max_concurrent = max_concurrent

    async def execute(self, group_id: str, confirm: bool = False) -> GroupSyncResult:
        """Sync all active members of a group.

        Destructive plans are skipped (not failed) unless ``confirm`` is set.

        Raises:
            NotFoundError: If the group does not exist
        """
        if await self.group_repo.get_desired_set(group_id) is None:
            raise NotFoundError("Group", group_id)

        result = GroupSyncResult(group_id=group_id)
        members = [u for u in await self.user_repo.list_group_members(group_id) if u.is_active]
        logger.info(f"Syncing group {group_id}: {len(members)} active member(s)")

        async def sync_member(user: UserRecord) -> Optional[SyncOutcome]:
            try:
                return await self.sync_user.execute(user.id, confirm=confirm)
            except ConfirmationRequiredError:
                result.skipped[user.id] = "confirmation_required"
            except SyncioError as e:
                logger.warning(f"Sync of user {user.id} in group {group_id} failed: {e}")
                return SyncOutcome.failed(user.id, e)
            return None

        outcomes = await process_concurrent(members, sync_member, max_concurrent=self.max_concurrent)
        result.outcomes = [o for o in outcomes if o is not None]
        result.completed_at = datetime.now(timezone.utc)

        logger.info(
            f"Group {group_id} sync complete: {result.succeeded} succeeded, "
            f"{result.failed} failed, {len(result.skipped)} skipped"
        )
        return result


class GetSyncStatusUseCase:
    """Reports whether users and groups match their desired state."""

    def __init__(self, sync_user: SyncUserUseCase, user_repo: IUserRepository, group_repo: IGroupRepository):
        self.sync_user = sync_user
        self.user_repo = user_repo
        self.group_repo = group_repo

    async def user_status(self, user_id: str) -> UserSyncStatus:
        """Status of one user.

        Raises:
            NotFoundError: If the user does not exist
        """
        user = await self.user_repo.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return await self._status_for(user)

    async def _status_for(self, user: UserRecord) -> UserSyncStatus:
        if not user.is_connected:
            return UserSyncStatus(user_id=user.id, state=UserSyncState.CONNECT)
        try:
            plan = await self.sync_user.plan(user.id)
        except AuthExpiredError as e:
            return UserSyncStatus(user_id=user.id, state=UserSyncState.CONNECT, error=e.to_dict())
        except SyncioError as e:
            return UserSyncStatus(user_id=user.id, state=UserSyncState.ERROR, error=e.to_dict())

        state = UserSyncState.SYNCED if plan.is_noop else UserSyncState.UNSYNCED
        return UserSyncStatus(user_id=user.id, state=state, plan=plan)

    async def group_status(self, group_id: str) -> GroupSyncStatus:
        """Status of every active member of a group.

        Raises:
            NotFoundError: If the group does not exist
        """
        if await self.group_repo.get_desired_set(group_id) is None:
            raise NotFoundError("Group", group_id)
        members = [u for u in await self.user_repo.list_group_members(group_id) if u.is_active]
        statuses = await process_concurrent(members, self._status_for, max_concurrent=5)
        return GroupSyncStatus(group_id=group_id, users=list(statuses))
