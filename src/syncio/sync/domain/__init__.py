"""Domain layer for addon synchronization.

Pure business logic with no infrastructure dependencies: entities,
manifest normalization, the Reconciler and the port interfaces.
"""

from .entities import (
    DEFAULT_PROTECTED_URLS,
    AddonDescriptor,
    CatalogRef,
    DiffOutcome,
    GroupDesiredSet,
    OperationKind,
    RemoteSnapshot,
    SyncOperation,
    SyncOutcome,
    SyncPlan,
    SyncStatus,
    UserOverrides,
    UserRecord,
    UserSyncState,
    canonical_url_key,
    normalize_manifest_url,
)
from .manifest import build_descriptor, filter_manifest
from .ports import IAddonCollectionAPI, IGroupRepository, IUserRepository
from .reconciler import Reconciler

__all__ = [
    # Entities
    "AddonDescriptor",
    "CatalogRef",
    "GroupDesiredSet",
    "UserOverrides",
    "UserRecord",
    "RemoteSnapshot",
    "OperationKind",
    "SyncOperation",
    "SyncPlan",
    "DiffOutcome",
    "SyncOutcome",
    "SyncStatus",
    "UserSyncState",
    "DEFAULT_PROTECTED_URLS",
    "canonical_url_key",
    "normalize_manifest_url",
    # Manifest normalization
    "build_descriptor",
    "filter_manifest",
    # Reconciliation
    "Reconciler",
    # Ports
    "IGroupRepository",
    "IUserRepository",
    "IAddonCollectionAPI",
]
