"""Use cases layer - Business logic orchestration for sync operations.

This layer contains use case classes that orchestrate the sync workflow:
- Resolve the desired addons (DesiredStateResolver)
- Read the live collection (via IAddonCollectionAPI port)
- Diff and apply (Reconciler + SyncExecutor)
- Report status and sync whole groups

Use cases depend only on ports, not concrete implementations.
"""

from .execute_sync import SyncExecutor
from .resolve_desired import DesiredStateResolver, resolve_desired_addons
from .sync_user import (
    GetSyncStatusUseCase,
    GroupSyncResult,
    GroupSyncStatus,
    SyncGroupUseCase,
    SyncUserUseCase,
    UserSyncStatus,
)

__all__ = [
    "DesiredStateResolver",
    "resolve_desired_addons",
    "SyncExecutor",
    "SyncUserUseCase",
    "SyncGroupUseCase",
    "GetSyncStatusUseCase",
    "GroupSyncResult",
    "GroupSyncStatus",
    "UserSyncStatus",
]
