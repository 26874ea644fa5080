"""Port interfaces for sync operations.

Ports define the contracts between the domain/use cases and the infrastructure.
These are abstract base classes that adapters must implement.

Following the Hexagonal Architecture (Ports and Adapters) pattern:
- Ports are interfaces defined in the domain layer
- Adapters implement these ports in the adapters layer
- Use cases depend only on ports, not concrete implementations
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from .entities import AddonDescriptor, GroupDesiredSet, UserOverrides, UserRecord


class IGroupRepository(ABC):
    """Port for reading group membership and the addon library."""

    @abstractmethod
    async def get_desired_set(self, group_id: str) -> Optional[GroupDesiredSet]:
        """Load a group's ordered, enabled addon membership.

        Args:
            group_id: Group identifier

        Returns:
            GroupDesiredSet, or None if the group does not exist
        """
        ...

    @abstractmethod
    async def get_addons(self, addon_ids: Iterable[str]) -> dict[str, AddonDescriptor]:
        """Load library addons as normalized descriptors.

        Args:
            addon_ids: Library addon ids

        Returns:
            Mapping of addon id to descriptor; unknown or inactive ids are absent
        """
        ...

    @abstractmethod
    async def list_active_group_ids(self) -> list[str]:
        """List ids of all active groups."""
        ...


class IUserRepository(ABC):
    """Port for reading users and writing back sync results."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        """Load a user with its credential and group.

        Returns:
            UserRecord, or None if the user does not exist
        """
        ...

    @abstractmethod
    async def list_group_members(self, group_id: str) -> list[UserRecord]:
        """List the users that belong to a group."""
        ...

    @abstractmethod
    async def get_overrides(self, user_id: str) -> UserOverrides:
        """Load a user's protected/excluded addon sets (empty if none)."""
        ...

    @abstractmethod
    async def add_excluded_addons(self, user_id: str, addon_ids: Iterable[str]) -> None:
        """Record addons the operator intentionally removed for this user.

        Args:
            user_id: User identifier
            addon_ids: Addon ids or manifest URLs to add to the excluded set
        """
        ...

    @abstractmethod
    async def set_auth_key(self, user_id: str, auth_key: str) -> None:
        """Store a freshly linked Stremio credential for a user."""
        ...


class IAddonCollectionAPI(ABC):
    """Port for reading and replacing a Stremio account's addon collection."""

    @abstractmethod
    async def fetch_collection(self, auth_key: str) -> list[AddonDescriptor]:
        """Read the account's collection in its current order."""
        ...

    @abstractmethod
    async def replace_collection(self, auth_key: str, addons: list[AddonDescriptor]) -> None:
        """Replace the whole collection with ``addons``, in order.

        Raises:
            TransientRemoteError: Network failure, timeout or 5xx
            ValidationError: The remote rejected the collection
            AuthExpiredError: The credential is no longer valid
        """
        ...
