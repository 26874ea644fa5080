"""Mappers between Stremio/database formats and AddonDescriptors.

Two shapes come in:
- Stremio collection entries: ``{transportUrl, transportName, manifest}``
- ``addons`` table rows, where manifest, resources and catalogs are JSON text

and one goes out: collection entries for ``addonCollectionSet``.
"""

import json
import logging
from typing import Any, Callable, Optional

from ..domain.entities import AddonDescriptor, normalize_manifest_url
from ..domain.manifest import build_descriptor

logger = logging.getLogger(__name__)

TRANSPORT_NAME = "http"
UNREADABLE_NAME = "Unreadable addon"


def _load_json(value: Any, default: Any = None) -> Any:
    """Decode a JSON text column; pass through already-decoded values."""
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring unreadable JSON column value")
        return default


class CollectionEntryMapper:
    """Maps Stremio collection entries to descriptors and back."""

    def to_descriptor(self, entry: dict[str, Any]) -> AddonDescriptor:
        """Transform a collection entry into a descriptor.

        The descriptor reflects exactly what is installed: no selection is
        applied, so resources and catalogs come straight from the manifest.
        """
        manifest = entry.get("manifest") or {}
        url = entry.get("transportUrl") or manifest.get("transportUrl") or ""
        return build_descriptor(url, manifest)

    def to_opaque_descriptor(self, entry: Any) -> AddonDescriptor:
        """Wrap an entry without a readable manifest.

        The descriptor has no capabilities, so it never matches a desired
        addon's config. It is written back verbatim if it stays.
        """
        url = entry.get("transportUrl") if isinstance(entry, dict) else None
        url = url if isinstance(url, str) else ""
        return AddonDescriptor(
            manifest_url=url,
            name=url or UNREADABLE_NAME,
            raw_entry=entry,
        )

    def to_entry(self, addon: AddonDescriptor) -> Any:
        """Transform a descriptor into a collection entry for addonCollectionSet."""
        if addon.is_opaque:
            return addon.raw_entry
        return {
            "transportUrl": normalize_manifest_url(addon.manifest_url),
            "transportName": TRANSPORT_NAME,
            "manifest": addon.manifest,
        }


class AddonRecordMapper:
    """Maps ``addons`` table rows to descriptors.

    ``resources`` and ``catalogs`` columns hold the selection the operator
    made for the addon; a NULL column means "everything the manifest offers".
    """

    def __init__(self, decrypt: Optional[Callable[[str], str]] = None):
        """Initialize the mapper.

        Args:
            decrypt: Optional function applied to stored manifest text
                (deployments that encrypt manifests at rest)
        """
        self.decrypt = decrypt

    def manifest_of(self, row: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Decode the stored manifest of a row, or None if unusable."""
        raw = row.get("manifest") or row.get("originalManifest")
        if raw and self.decrypt and isinstance(raw, str):
            raw = self.decrypt(raw)
        manifest = _load_json(raw)
        return manifest if isinstance(manifest, dict) else None

    def to_descriptor(
        self,
        row: dict[str, Any],
        manifest: Optional[dict[str, Any]] = None,
    ) -> AddonDescriptor:
        """Transform an addon row into a descriptor.

        Args:
            row: Row with id, name, manifestUrl, manifest, resources, catalogs, iconUrl
            manifest: Manifest to use instead of the stored one

        Raises:
            ValueError: If no manifest is available for the row
        """
        manifest = manifest or self.manifest_of(row)
        if manifest is None:
            raise ValueError(f"Addon {row.get('id')} has no stored manifest")

        return build_descriptor(
            row["manifestUrl"],
            manifest,
            resources=_load_json(row.get("resources")),
            catalogs=_load_json(row.get("catalogs")),
            name=row.get("name"),
            addon_id=row.get("id"),
            icon_url=row.get("iconUrl"),
        )
