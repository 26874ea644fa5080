"""Pydantic schemas for sync and device-auth API requests/responses."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class OperationKindDTO(str, Enum):
    """Reconciliation operation kinds."""

    KEEP = "keep"
    PATCH = "patch"
    ADD = "add"
    REMOVE = "remove"
    REORDER = "reorder"
    REMOVE_ALL = "remove_all"


class CatalogDTO(BaseModel):
    type: str
    id: str
    search: bool = False


class AddonDTO(BaseModel):
    """Addon as seen by the reconciler."""

    manifest_url: str
    name: str
    version: Optional[str] = None
    resources: list[str] = Field(default_factory=list)
    catalogs: list[CatalogDTO] = Field(default_factory=list)
    icon_url: Optional[str] = None
    addon_id: Optional[str] = None


class OperationDTO(BaseModel):
    """One reconciliation step."""

    kind: OperationKindDTO
    addon: Optional[AddonDTO] = None
    previous: Optional[AddonDTO] = None
    target: list[str] = Field(default_factory=list)


class SyncPlanResponse(BaseModel):
    """What a sync would do, without applying it."""

    user_id: str
    outcome: str  # no_op | safe | destructive
    requires_confirmation: bool = False
    operations: list[OperationDTO] = Field(default_factory=list)
    target: list[str] = Field(default_factory=list)
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    patched: list[str] = Field(default_factory=list)
    reordered: bool = False


class SyncUserRequest(BaseModel):
    """Request body for syncing one user."""

    confirm: bool = Field(default=False, description="Allow a plan that removes every addon")
    drop_addons: list[str] = Field(
        default_factory=list,
        description="Addon ids or manifest URLs to remove now and exclude from now on",
    )


class SyncOutcomeResponse(BaseModel):
    """Result of syncing one user."""

    user_id: str
    status: str  # succeeded | partial | failed
    no_op: bool = False
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    patched: list[str] = Field(default_factory=list)
    reordered: bool = False
    error: Optional[dict[str, Any]] = None
    blocked_addon: Optional[str] = None
    attempts: int = 0
    exclusions_to_persist: list[str] = Field(default_factory=list)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class SyncGroupRequest(BaseModel):
    confirm: bool = False


class GroupSyncResponse(BaseModel):
    """Result of syncing every active member of a group."""

    group_id: str
    success: bool
    succeeded: int = 0
    failed: int = 0
    skipped: dict[str, str] = Field(default_factory=dict)
    outcomes: list[SyncOutcomeResponse] = Field(default_factory=list)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class UserStatusDTO(BaseModel):
    user_id: str
    state: str  # synced | unsynced | connect | error
    error: Optional[dict[str, Any]] = None


class GroupStatusResponse(BaseModel):
    group_id: str
    state: str
    users: list[UserStatusDTO] = Field(default_factory=list)


class DeviceAuthRequest(BaseModel):
    """Start a device login.

    With ``user_id`` the credential is stored on that user once approved.
    With ``expected_email`` the approving account must match.
    """

    user_id: Optional[str] = None
    expected_email: Optional[str] = None


class DeviceAuthResponse(BaseModel):
    """State of a device login."""

    flow_id: str
    state: str
    link: Optional[str] = None
    code: Optional[str] = None
    expires_in: Optional[float] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    polls: int = 0


class SessionResponse(BaseModel):
    """A live login session. The credential itself is never returned."""

    subject: str
    credential_id: str
    issued_at: float
    expires_at: Optional[float] = None
