"""Domain entities for addon synchronization.

These are pure data structures with no external dependencies.
They represent the core business concepts of the sync engine:

    - AddonDescriptor: one addon as it appears (or should appear) on an account
    - GroupDesiredSet / UserOverrides: the declarative desired state
    - RemoteSnapshot: the live collection read before each reconciliation
    - SyncOperation / SyncPlan: the Reconciler's output
    - SyncOutcome: what one execution did

Identity:
    Addons are identified by their manifest URL. Comparison uses a canonical
    key: surrounding whitespace and a leading ``@`` are stripped,
    ``stremio://`` becomes ``https://`` and the result is lowercased. The
    original spelling is kept for display and for pushing to the remote.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

# Stremio system addons protected unless unsafe mode is enabled
DEFAULT_PROTECTED_URLS = (
    "https://v3-cinemeta.strem.io/manifest.json",
    "http://127.0.0.1:11470/local-addon/manifest.json",
)


def normalize_manifest_url(url: str) -> str:
    """Normalize the scheme of a manifest URL without changing its case."""
    url = (url or "").strip().lstrip("@")
    if url[:10].lower() == "stremio://":
        url = "https://" + url[10:]
    return url


def canonical_url_key(url: str) -> str:
    """Comparison key for a manifest URL."""
    return normalize_manifest_url(url).lower()


def _name_key(name: Any) -> str:
    return name.strip().lower() if isinstance(name, str) else ""


# ============================================
# Addons
# ============================================

@dataclass(frozen=True)
class CatalogRef:
    """A catalog exposed by an addon.

    Attributes:
        type: Content type ("movie", "series", ...)
        id: Catalog id, unique per type within one manifest
        search_enabled: Whether the catalog answers search queries
    """

    type: str
    id: str
    search_enabled: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.id)


@dataclass(frozen=True)
class AddonDescriptor:
    """One addon, normalized for comparison.

    ``resources`` and ``catalogs`` are the capability subset the addon is
    (or should be) installed with; two descriptors with the same key but
    different capabilities describe a configuration change of one addon.

    Attributes:
        manifest_url: Manifest URL as stored
        name: Display name
        version: Manifest version
        resources: Ordered capability tags (stream, meta, catalog, search...)
        catalogs: Ordered catalog refs
        icon_url: Logo URL
        addon_id: Library record id, when the addon comes from the library
        manifest: Manifest document to push (already filtered to the selection)
        raw_entry: Collection entry that could not be read; written back as is
    """

    manifest_url: str
    name: str
    version: Optional[str] = None
    resources: tuple[str, ...] = ()
    catalogs: tuple[CatalogRef, ...] = ()
    icon_url: Optional[str] = None
    addon_id: Optional[str] = None
    manifest: dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)
    raw_entry: Any = field(default=None, compare=False, hash=False, repr=False)

    @property
    def is_opaque(self) -> bool:
        return self.raw_entry is not None

    @property
    def key(self) -> str:
        """Canonical identity used for matching."""
        return canonical_url_key(self.manifest_url)

    def same_config(self, other: "AddonDescriptor") -> bool:
        """True if installing ``other`` in place of self would change nothing."""
        return (
            self.name == other.name
            and self.version == other.version
            and self.resources == other.resources
            and self.catalogs == other.catalogs
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "manifest_url": self.manifest_url,
            "name": self.name,
            "version": self.version,
            "resources": list(self.resources),
            "catalogs": [
                {"type": c.type, "id": c.id, "search": c.search_enabled}
                for c in self.catalogs
            ],
            "icon_url": self.icon_url,
            "addon_id": self.addon_id,
        }


# ============================================
# Desired State
# ============================================

@dataclass(frozen=True)
class GroupDesiredSet:
    """A group's ordered addon membership.

    ``ordered_addon_ids`` only contains enabled memberships of active
    addons, sorted by stored position.
    """

    group_id: str
    ordered_addon_ids: tuple[str, ...] = ()
    name: Optional[str] = None
    is_active: bool = True


@dataclass(frozen=True)
class UserOverrides:
    """Per-user protection and exclusion sets.

    Entries may be library addon ids, manifest URLs or addon names (names
    match case-insensitively, as older accounts stored them). When the same
    addon is both protected and excluded, exclusion wins.

    Descriptors read from an account carry no library id. Use
    ``with_library`` to add the manifest URLs of id entries so those
    descriptors match too.
    """

    user_id: str
    protected_addon_ids: frozenset[str] = frozenset()
    excluded_addon_ids: frozenset[str] = frozenset()

    @staticmethod
    def _matches(ids: frozenset[str], addon: AddonDescriptor) -> bool:
        if addon.addon_id and addon.addon_id in ids:
            return True
        if addon.key in {canonical_url_key(i) for i in ids}:
            return True
        names = {_name_key(addon.name), _name_key(addon.manifest.get("name"))} - {""}
        return bool(names & {_name_key(i) for i in ids})

    def is_excluded(self, addon: AddonDescriptor) -> bool:
        return self._matches(self.excluded_addon_ids, addon)

    def is_protected(self, addon: AddonDescriptor) -> bool:
        return self._matches(self.protected_addon_ids, addon) and not self.is_excluded(addon)

    def protected_keys(self, addons: Iterable[AddonDescriptor]) -> frozenset[str]:
        """Canonical keys of the given addons that are protected."""
        return frozenset(a.key for a in addons if self.is_protected(a))

    def excluded_keys(self, addons: Iterable[AddonDescriptor]) -> frozenset[str]:
        """Canonical keys of the given addons that are excluded."""
        return frozenset(a.key for a in addons if self.is_excluded(a))

    def with_protected(self, extra: Iterable[str]) -> "UserOverrides":
        return UserOverrides(
            user_id=self.user_id,
            protected_addon_ids=self.protected_addon_ids | frozenset(extra),
            excluded_addon_ids=self.excluded_addon_ids,
        )

    def with_excluded(self, extra: Iterable[str]) -> "UserOverrides":
        return UserOverrides(
            user_id=self.user_id,
            protected_addon_ids=self.protected_addon_ids,
            excluded_addon_ids=self.excluded_addon_ids | frozenset(extra),
        )

    def with_library(self, library: Mapping[str, AddonDescriptor]) -> "UserOverrides":
        """Add the manifest URL of every library addon named by id."""
        def urls(ids: frozenset[str]) -> frozenset[str]:
            return frozenset(library[i].manifest_url for i in ids if i in library)

        return UserOverrides(
            user_id=self.user_id,
            protected_addon_ids=self.protected_addon_ids | urls(self.protected_addon_ids),
            excluded_addon_ids=self.excluded_addon_ids | urls(self.excluded_addon_ids),
        )


@dataclass(frozen=True)
class UserRecord:
    """The parts of a user the sync engine needs."""

    id: str
    email: Optional[str] = None
    username: Optional[str] = None
    is_active: bool = True
    auth_key: Optional[str] = field(default=None, repr=False)
    group_id: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return bool(self.auth_key)


@dataclass(frozen=True)
class RemoteSnapshot:
    """The live collection of one account. Read fresh for every sync."""

    user_id: str
    addons: tuple[AddonDescriptor, ...] = ()
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================
# Reconciliation Output
# ============================================

class OperationKind(str, Enum):
    """Kinds of reconciliation operations."""

    KEEP = "keep"
    PATCH = "patch"
    ADD = "add"
    REMOVE = "remove"
    REORDER = "reorder"
    REMOVE_ALL = "remove_all"


class DiffOutcome(str, Enum):
    """Classification of a plan."""

    NO_OP = "no_op"
    SAFE = "safe"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class SyncOperation:
    """One reconciliation step.

    Attributes:
        kind: Operation kind
        addon: Subject addon (desired version for KEEP/PATCH/ADD, remote
            version for REMOVE)
        previous: Remote version being replaced by a PATCH
        target: Full target collection carried by a REORDER
    """

    kind: OperationKind
    addon: Optional[AddonDescriptor] = None
    previous: Optional[AddonDescriptor] = None
    target: tuple[AddonDescriptor, ...] = ()

    @classmethod
    def keep(cls, addon: AddonDescriptor) -> "SyncOperation":
        return cls(OperationKind.KEEP, addon)

    @classmethod
    def patch(cls, addon: AddonDescriptor, previous: AddonDescriptor) -> "SyncOperation":
        return cls(OperationKind.PATCH, addon, previous=previous)

    @classmethod
    def add(cls, addon: AddonDescriptor) -> "SyncOperation":
        return cls(OperationKind.ADD, addon)

    @classmethod
    def remove(cls, addon: AddonDescriptor) -> "SyncOperation":
        return cls(OperationKind.REMOVE, addon)

    @classmethod
    def reorder(cls, target: Iterable[AddonDescriptor]) -> "SyncOperation":
        return cls(OperationKind.REORDER, target=tuple(target))

    @classmethod
    def remove_all(cls) -> "SyncOperation":
        return cls(OperationKind.REMOVE_ALL)

    @property
    def is_change(self) -> bool:
        return self.kind != OperationKind.KEEP

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value}
        if self.addon:
            data["addon"] = self.addon.to_dict()
        if self.previous:
            data["previous"] = self.previous.to_dict()
        if self.kind == OperationKind.REORDER:
            data["target"] = [a.manifest_url for a in self.target]
        return data


@dataclass
class SyncPlan:
    """Reconciler output for one user.

    ``target`` is the exact collection the remote must hold afterwards;
    executing a plan always means "replace the collection with target".
    """

    user_id: str
    operations: list[SyncOperation] = field(default_factory=list)
    target: list[AddonDescriptor] = field(default_factory=list)
    actual: list[AddonDescriptor] = field(default_factory=list)

    def _of_kind(self, kind: OperationKind) -> list[AddonDescriptor]:
        return [op.addon for op in self.operations if op.kind == kind and op.addon]

    @property
    def added(self) -> list[AddonDescriptor]:
        return self._of_kind(OperationKind.ADD)

    @property
    def removed(self) -> list[AddonDescriptor]:
        if self.requires_confirmation:
            return list(self.actual)
        return self._of_kind(OperationKind.REMOVE)

    @property
    def patched(self) -> list[AddonDescriptor]:
        return self._of_kind(OperationKind.PATCH)

    @property
    def reordered(self) -> bool:
        return any(op.kind == OperationKind.REORDER for op in self.operations)

    @property
    def requires_confirmation(self) -> bool:
        return any(op.kind == OperationKind.REMOVE_ALL for op in self.operations)

    @property
    def is_noop(self) -> bool:
        return not any(op.is_change for op in self.operations)

    @property
    def outcome(self) -> DiffOutcome:
        if self.requires_confirmation:
            return DiffOutcome.DESTRUCTIVE
        if self.is_noop:
            return DiffOutcome.NO_OP
        return DiffOutcome.SAFE

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "outcome": self.outcome.value,
            "operations": [op.to_dict() for op in self.operations],
            "target": [a.manifest_url for a in self.target],
            "added": [a.manifest_url for a in self.added],
            "removed": [a.manifest_url for a in self.removed],
            "patched": [a.manifest_url for a in self.patched],
            "reordered": self.reordered,
        }


# ============================================
# Execution Results
# ============================================

class SyncStatus(str, Enum):
    """Terminal status of one execution."""

    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


class UserSyncState(str, Enum):
    """Whether an account currently matches its desired state."""

    SYNCED = "synced"
    UNSYNCED = "unsynced"
    CONNECT = "connect"   # no Stremio credential on file
    ERROR = "error"


@dataclass
class SyncOutcome:
    """Result of one SyncExecutor.execute() call.

    ``exclusions_to_persist`` lists addons the operator dropped during this
    sync; the caller records them as excluded so the next resolve does not
    add them back. It is only populated on success.
    """

    user_id: str
    status: SyncStatus
    added: list[AddonDescriptor] = field(default_factory=list)
    removed: list[AddonDescriptor] = field(default_factory=list)
    patched: list[AddonDescriptor] = field(default_factory=list)
    reordered: bool = False
    no_op: bool = False
    error: Optional[dict[str, Any]] = None
    blocked_addon: Optional[str] = None
    attempts: int = 0
    exclusions_to_persist: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SyncStatus.SUCCEEDED

    @classmethod
    def failed(cls, user_id: str, error: Exception) -> "SyncOutcome":
        """Build a FAILED outcome for an error raised before execution."""
        to_dict = getattr(error, "to_dict", None)
        detail = to_dict() if callable(to_dict) else {"error_type": type(error).__name__, "message": str(error)}
        return cls(
            user_id=user_id,
            status=SyncStatus.FAILED,
            error=detail,
            completed_at=datetime.now(timezone.utc),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "status": self.status.value,
            "no_op": self.no_op,
            "added": [a.manifest_url for a in self.added],
            "removed": [a.manifest_url for a in self.removed],
            "patched": [a.manifest_url for a in self.patched],
            "reordered": self.reordered,
            "error": self.error,
            "blocked_addon": self.blocked_addon,
            "attempts": self.attempts,
            "exclusions_to_persist": list(self.exclusions_to_persist),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
