#!/usr/bin/env python3
"""Tests for the sync scheduler.

Tests cover:
    - One sync cycle over all active groups
    - Group failures isolated from each other
    - Loop timing and shutdown
    - Health counters
"""
import asyncio
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.syncio.api.exceptions import NotFoundError
from src.syncio.scheduler import HealthState, run_sync, scheduler_loop
from src.syncio.sync.domain.entities import SyncOutcome, SyncStatus
from src.syncio.sync.use_cases.sync_user import GroupSyncResult


def group_result(group_id: str, failed: int = 0, skipped=None) -> GroupSyncResult:
    outcomes = [SyncOutcome(user_id="ok", status=SyncStatus.SUCCEEDED)]
    outcomes += [SyncOutcome(user_id=f"bad{i}", status=SyncStatus.FAILED) for i in range(failed)]
    return GroupSyncResult(group_id=group_id, outcomes=outcomes, skipped=skipped or {})


@pytest.fixture
def group_repo():
    repo = MagicMock()
    repo.list_active_group_ids = AsyncMock(return_value=["family", "friends"])
    return repo


@pytest.fixture
def sync_group():
    use_case = MagicMock()
    use_case.execute = AsyncMock(side_effect=lambda group_id: group_result(group_id))
    return use_case


# ============================================
# run_sync Tests
# ============================================

class TestRunSync:
    """One sync cycle."""

    @pytest.mark.asyncio
    async def test_syncs_every_active_group(self, group_repo, sync_group):
        results = await run_sync(group_repo, sync_group)

        assert results["success"] is True
        assert set(results["groups"]) == {"family", "friends"}
        assert results["groups"]["family"]["succeeded"] == 1
        assert "duration_seconds" in results
        assert [c.args[0] for c in sync_group.execute.call_args_list] == ["family", "friends"]

    @pytest.mark.asyncio
    async def test_group_error_does_not_stop_others(self, group_repo, sync_group):
        async def execute(group_id):
            if group_id == "family":
                raise NotFoundError("Group", group_id)
            return group_result(group_id)

        sync_group.execute = AsyncMock(side_effect=execute)

        results = await run_sync(group_repo, sync_group)

        assert results["success"] is False
        assert results["groups"]["family"]["error"]["code"] == "NOT_FOUND"
        assert results["groups"]["friends"]["success"] is True

    @pytest.mark.asyncio
    async def test_member_failures_fail_the_cycle(self, group_repo, sync_group):
        sync_group.execute = AsyncMock(
            side_effect=lambda group_id: group_result(group_id, failed=1, skipped={"eve": "confirmation_required"})
        )

        results = await run_sync(group_repo, sync_group)

        assert results["success"] is False
        assert results["groups"]["family"]["failed"] == 1
        assert results["groups"]["family"]["skipped"] == {"eve": "confirmation_required"}

    @pytest.mark.asyncio
    async def test_unexpected_error_is_captured(self, group_repo, sync_group):
        group_repo.list_active_group_ids = AsyncMock(side_effect=OSError("db gone"))

        results = await run_sync(group_repo, sync_group)

        assert results["success"] is False
        assert results["error_type"] == "OSError"
        sync_group.execute.assert_not_called()


# ============================================
# Loop Tests
# ============================================

class TestSchedulerLoop:
    """Timing and shutdown."""

    @pytest.mark.asyncio
    async def test_zero_interval_runs_once(self, group_repo, sync_group):
        health = HealthState()

        await scheduler_loop(group_repo, sync_group, 0, asyncio.Event(), health, sync_on_startup=False)

        assert health.total_syncs == 1
        assert health.last_sync_success is True

    @pytest.mark.asyncio
    async def test_shutdown_before_first_interval(self, group_repo, sync_group):
        health = HealthState()
        shutdown = asyncio.Event()
        shutdown.set()

        await scheduler_loop(group_repo, sync_group, 60, shutdown, health)

        assert health.total_syncs == 1

    @pytest.mark.asyncio
    async def test_runs_after_each_interval(self, group_repo, sync_group):
        health = HealthState()
        shutdown = asyncio.Event()
        waits = []

        async def fake_wait_for(awaitable, timeout):
            awaitable.close()
            waits.append(timeout)
            if len(waits) < 3:
                raise asyncio.TimeoutError()
            shutdown.set()

        with patch("src.syncio.scheduler.asyncio.wait_for", side_effect=fake_wait_for):
            await scheduler_loop(group_repo, sync_group, 5, shutdown, health, sync_on_startup=False)

        assert waits == [300, 300, 300]
        assert health.total_syncs == 2


class TestHealthState:
    def test_record_counts_failures(self):
        health = HealthState()

        health.record({"success": True})
        health.record({"success": False})

        assert health.total_syncs == 2
        assert health.failed_syncs == 1
        assert health.last_sync_success is False
        assert health.last_sync_at is not None
