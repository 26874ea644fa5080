"""Sync Executor - Applies a reconciliation plan to a Stremio account.

The remote API only offers "replace the whole collection", so any plan
with changes is applied as exactly one replace call carrying the plan's
target collection.

Guarantees:
- At most one execution per user at a time; a concurrent call for the
  same user fails immediately with AlreadySyncingError
- Transient failures (network, timeout, 5xx) are retried with exponential
  backoff; every attempt has its own timeout
- Anything else fails on the first attempt
- A rejected addon is named in the outcome (status ``partial``) so the
  operator can exclude it and retry
- Destructive plans (REMOVE_ALL) require ``confirmed=True``
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from ...api.exceptions import (
    AlreadySyncingError,
    ConfirmationRequiredError,
    SyncioError,
    TimeoutError,
    TransientRemoteError,
    ValidationError,
)
from ...api.resilience import RetryPolicy, retry_async, with_timeout
from ..domain.entities import SyncOutcome, SyncPlan, SyncStatus
from ..domain.ports import IAddonCollectionAPI

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncExecutor:
    """Applies SyncPlans with per-user mutual exclusion and retry.

    Example:
        executor = SyncExecutor(StremioCollectionAdapter(client))
        outcome = await executor.execute(user.id, plan, user.auth_key)
        if outcome.status == SyncStatus.PARTIAL:
            print(f"Blocked by {outcome.blocked_addon}")
    """

    def __init__(
        self,
        collection_api: IAddonCollectionAPI,
        max_retries: int = 3,
        initial_backoff: float = 0.5,
        backoff_factor: float = 2.0,
        attempt_timeout: float = 10.0,
    ):
        """Initialize the executor.

        Args:
            collection_api: Port for replacing the remote collection
            max_retries: Retries after the first attempt for transient errors
            initial_backoff: Seconds before the first retry
            backoff_factor: Delay multiplier between retries
            attempt_timeout: Seconds allowed for a single remote call
        """
        self.collection_api = collection_api
        self.retry_policy = RetryPolicy(
            max_retries=max_retries,
            initial_backoff=initial_backoff,
            backoff_factor=backoff_factor,
        )
        self.attempt_timeout = attempt_timeout
        self._locks: dict[str, asyncio.Lock] = {}

    def is_syncing(self, user_id: str) -> bool:
        """True while an execution for ``user_id`` is in flight."""
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    async def call_remote(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run one remote call under the per-attempt timeout and retry budget."""
        return await retry_async(
            self._attempt,
            func,
            *args,
            policy=self.retry_policy,
            retry_on=(TransientRemoteError,),
            **kwargs,
        )

    async def _attempt(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        try:
            return await with_timeout(func, self.attempt_timeout, *args, **kwargs)
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Remote call timed out after {self.attempt_timeout}s",
                timeout_seconds=self.attempt_timeout,
                cause=e,
            ) from e

    async def execute(
        self,
        user_id: str,
        plan: SyncPlan,
        auth_key: str,
        confirmed: bool = False,
        dropped: Iterable[str] = (),
    ) -> SyncOutcome:
        """Apply a plan to the user's account.

        Args:
            user_id: User the plan belongs to
            plan: Reconciler output
            auth_key: The user's Stremio credential
            confirmed: Caller confirmed a destructive plan
            dropped: Addons the operator chose to drop in this sync; echoed
                back as ``exclusions_to_persist`` on success

        Returns:
            SyncOutcome with status succeeded, partial or failed

        Raises:
            AlreadySyncingError: Another execution for this user is running
            ConfirmationRequiredError: Destructive plan without confirmation
        """
        if plan.requires_confirmation and not confirmed:
            raise ConfirmationRequiredError(user_id)

        lock = self._locks.setdefault(user_id, asyncio.Lock())
        if lock.locked():
            raise AlreadySyncingError(user_id)

        try:
            async with lock:
                return await self._apply(user_id, plan, auth_key, list(dropped))
        finally:
            if not lock.locked() and self._locks.get(user_id) is lock:
                del self._locks[user_id]

    async def _apply(
        self,
        user_id: str,
        plan: SyncPlan,
        auth_key: str,
        dropped: list[str],
    ) -> SyncOutcome:
        started_at = datetime.now(timezone.utc)

        if plan.is_noop:
            logger.info(f"User {user_id} already in sync, nothing to apply")
            return SyncOutcome(
                user_id=user_id,
                status=SyncStatus.SUCCEEDED,
                no_op=True,
                exclusions_to_persist=dropped,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
            )

        attempts = 0

        async def replace() -> None:
            nonlocal attempts
            attempts += 1
            await self.collection_api.replace_collection(auth_key, list(plan.target))

        logger.info(
            f"Applying plan for user {user_id}: +{len(plan.added)} "
            f"-{len(plan.removed)} ~{len(plan.patched)} reorder={plan.reordered}"
        )

        try:
            await self.call_remote(replace)

        except ValidationError as e:
            status = SyncStatus.PARTIAL if e.addon else SyncStatus.FAILED
            logger.warning(f"Stremio rejected the collection for user {user_id}: {e}")
            return SyncOutcome(
                user_id=user_id,
                status=status,
                error=e.to_dict(),
                blocked_addon=e.addon,
                attempts=attempts,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
            )

        except SyncioError as e:
            logger.error(f"Sync failed for user {user_id} after {attempts} attempt(s): {e}")
            return SyncOutcome(
                user_id=user_id,
                status=SyncStatus.FAILED,
                error=e.to_dict(),
                attempts=attempts,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
            )

        completed_at = datetime.now(timezone.utc)
        logger.info(
            f"Sync for user {user_id} succeeded in "
            f"{(completed_at - started_at).total_seconds():.2f}s ({attempts} attempt(s))"
        )
        return SyncOutcome(
            user_id=user_id,
            status=SyncStatus.SUCCEEDED,
            added=plan.added,
            removed=plan.removed,
            patched=plan.patched,
            reordered=plan.reordered,
            attempts=attempts,
            exclusions_to_persist=dropped,
            started_at=started_at,
            completed_at=completed_at,
        )
