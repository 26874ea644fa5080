"""Sync module - Clean Architecture implementation of Stremio addon sync.

Architecture:
    domain/     - Entities, manifest normalization, Reconciler, port interfaces
    use_cases/  - Desired state resolution, execution and group/status workflows
    adapters/   - Infrastructure implementations (PostgreSQL, Stremio API)
    api/        - FastAPI routers
"""

from .domain import (
    AddonDescriptor,
    IAddonCollectionAPI,
    IGroupRepository,
    IUserRepository,
    Reconciler,
    SyncOperation,
    SyncOutcome,
    SyncPlan,
    UserOverrides,
)
from .use_cases import DesiredStateResolver, SyncExecutor

__all__ = [
    # Entities
    "AddonDescriptor",
    "UserOverrides",
    "SyncOperation",
    "SyncPlan",
    "SyncOutcome",
    # Ports
    "IGroupRepository",
    "IUserRepository",
    "IAddonCollectionAPI",
    # Engine
    "Reconciler",
    "DesiredStateResolver",
    "SyncExecutor",
]
