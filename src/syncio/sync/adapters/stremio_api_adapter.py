"""Stremio API adapter for reading and replacing addon collections.

This adapter implements IAddonCollectionAPI and wraps the existing
StremioClient, translating raw collection entries to AddonDescriptors.
"""

import logging
from typing import TYPE_CHECKING, Optional

from ..domain.entities import AddonDescriptor
from ..domain.ports import IAddonCollectionAPI
from .collection_mapper import CollectionEntryMapper

if TYPE_CHECKING:
    from ...api.client import StremioClient

logger = logging.getLogger(__name__)


class StremioCollectionAdapter(IAddonCollectionAPI):
    """Stremio API adapter for addon collection operations.

    Entries without a manifest cannot be compared. They are read as opaque
    descriptors, so a sync either reports them as removed or writes them
    back unchanged.
    """

    def __init__(
        self,
        client: "StremioClient",
        mapper: Optional[CollectionEntryMapper] = None,
    ):
        """Initialize the API adapter.

        Args:
            client: Open StremioClient instance
            mapper: Entry mapper override
        """
        self.client = client
        self.mapper = mapper or CollectionEntryMapper()

    async def fetch_collection(self, auth_key: str) -> list[AddonDescriptor]:
        entries = await self.client.addon_collection_get(auth_key)

        addons = []
        for entry in entries:
            if not isinstance(entry, dict) or not isinstance(entry.get("manifest"), dict):
                logger.warning(f"Collection entry without manifest: {entry!r:.120}")
                addons.append(self.mapper.to_opaque_descriptor(entry))
                continue
            addons.append(self.mapper.to_descriptor(entry))
        return addons

    async def replace_collection(self, auth_key: str, addons: list[AddonDescriptor]) -> None:
        entries = [self.mapper.to_entry(a) for a in addons]
        await self.client.addon_collection_set(auth_key, entries)
