"""Manifest normalization.

Builds AddonDescriptors from raw Stremio manifests. Pure functions only:
no I/O, no framework state, so the same rules apply to library addons,
remote collection entries and anything the API layer receives.

Search handling:
    Stremio has no "search" resource; search is a catalog capability
    declared by an ``extra`` entry named ``search``. For selection purposes
    it is modeled as a synthetic ``search`` resource:

    - a catalog whose extras are only ``search`` is a *standalone* search
      catalog; it exists only while search is selected
    - a catalog with ``search`` plus other extras has *embedded* search;
      deselecting search strips the extra but keeps the catalog
    - the descriptor lists ``search`` as a resource iff at least one kept
      catalog still answers search
"""
import copy
from typing import Any, Iterable, Optional, Union

from .entities import AddonDescriptor, CatalogRef, normalize_manifest_url

SEARCH = "search"
CATALOG = "catalog"

CatalogSelection = Union[str, tuple, dict, CatalogRef]


def resource_name(resource: Any) -> Optional[str]:
    """Name of a manifest resource entry (plain string or object form)."""
    if isinstance(resource, str):
        return resource
    if isinstance(resource, dict):
        return resource.get("name") or resource.get("type")
    return None


def _extra_names(catalog: dict) -> list[str]:
    names = [e.get("name") for e in catalog.get("extra") or [] if isinstance(e, dict)]
    names.extend(e for e in catalog.get("extraSupported") or [] if isinstance(e, str))
    return [n for n in names if n]


def catalog_has_search(catalog: dict) -> bool:
    return SEARCH in _extra_names(catalog)


def is_standalone_search(catalog: dict) -> bool:
    """True for a catalog that exists only to answer search."""
    names = set(_extra_names(catalog))
    return SEARCH in names and names == {SEARCH}


def available_resources(manifest: dict) -> list[str]:
    """All resource names of a manifest, with the synthetic ``search`` appended."""
    names: list[str] = []
    for resource in manifest.get("resources") or []:
        name = resource_name(resource)
        if name and name not in names:
            names.append(name)
    if SEARCH not in names and any(catalog_has_search(c) for c in _catalogs(manifest)):
        names.append(SEARCH)
    return names


def _catalogs(manifest: dict) -> list[dict]:
    return [c for c in manifest.get("catalogs") or [] if isinstance(c, dict)]


def _catalog_key(catalog: dict) -> tuple[str, str]:
    return (catalog.get("type") or "unknown", catalog.get("id") or catalog.get("name") or "")


def _selection_map(selected: Iterable[CatalogSelection]) -> dict[tuple[str, str], Optional[bool]]:
    """Map (type, id) -> requested search flag (None = unspecified).

    A bare string selects every catalog with that id regardless of type.
    """
    result: dict[tuple[str, str], Optional[bool]] = {}
    for item in selected:
        if isinstance(item, CatalogRef):
            result[item.key] = item.search_enabled
        elif isinstance(item, dict):
            key = (item.get("type") or "*", item.get("id") or item.get("name") or "")
            result[key] = item.get("search")
        elif isinstance(item, (tuple, list)) and len(item) >= 2:
            result[(item[0], item[1])] = item[2] if len(item) > 2 else None
        elif isinstance(item, str):
            result[("*", item)] = None
    return result


def _lookup(selection: dict[tuple[str, str], Optional[bool]], key: tuple[str, str]):
    if key in selection:
        return True, selection[key]
    wildcard = ("*", key[1])
    if wildcard in selection:
        return True, selection[wildcard]
    return False, None


def _strip_search(catalog: dict) -> dict:
    catalog = dict(catalog)
    if "extra" in catalog:
        catalog["extra"] = [e for e in catalog["extra"] if not (isinstance(e, dict) and e.get("name") == SEARCH)]
    if "extraSupported" in catalog:
        catalog["extraSupported"] = [e for e in catalog["extraSupported"] if e != SEARCH]
    return catalog


def filter_manifest(
    manifest: dict[str, Any],
    resources: Optional[Iterable[str]] = None,
    catalogs: Optional[Iterable[CatalogSelection]] = None,
) -> dict[str, Any]:
    """Restrict a manifest to the selected resources and catalogs.

    ``None`` means "everything". The input is not modified.
    """
    filtered = copy.deepcopy(manifest)
    wanted = set(resources) if resources is not None else set(available_resources(manifest))
    search_on = SEARCH in wanted

    if isinstance(filtered.get("resources"), list):
        filtered["resources"] = [r for r in filtered["resources"] if resource_name(r) in wanted]

    selection = _selection_map(catalogs) if catalogs is not None else None
    kept: list[dict] = []
    for catalog in _catalogs(filtered):
        requested_search: Optional[bool] = None
        if selection is not None:
            selected, requested_search = _lookup(selection, _catalog_key(catalog))
            if not selected:
                continue

        has_search = catalog_has_search(catalog)
        keep_search = has_search and search_on and requested_search is not False

        if is_standalone_search(catalog):
            if keep_search:
                kept.append(catalog)
            continue
        if CATALOG not in wanted and not keep_search:
            continue
        kept.append(catalog if keep_search or not has_search else _strip_search(catalog))

    filtered["catalogs"] = kept
    if CATALOG not in wanted and "addonCatalogs" in filtered:
        filtered["addonCatalogs"] = []
    return filtered


def build_descriptor(
    manifest_url: str,
    manifest: dict[str, Any],
    resources: Optional[Iterable[str]] = None,
    catalogs: Optional[Iterable[CatalogSelection]] = None,
    name: Optional[str] = None,
    addon_id: Optional[str] = None,
    icon_url: Optional[str] = None,
) -> AddonDescriptor:
    """Build a normalized AddonDescriptor from a manifest and a selection.

    Args:
        manifest_url: Manifest URL as stored
        manifest: Full manifest document
        resources: Selected resource names (None = all)
        catalogs: Selected catalogs (None = all)
        name: Display name override (library records may rename addons)
        addon_id: Library record id
        icon_url: Logo override

    Returns:
        Descriptor whose ``manifest`` is the filtered document to push
    """
    manifest = manifest or {}
    filtered = filter_manifest(manifest, resources, catalogs)
    if name:
        filtered["name"] = name

    catalog_refs = tuple(
        CatalogRef(
            type=_catalog_key(c)[0],
            id=_catalog_key(c)[1],
            search_enabled=catalog_has_search(c),
        )
        for c in filtered["catalogs"]
    )
    resource_names = available_resources({"resources": filtered.get("resources") or []})
    if any(c.search_enabled for c in catalog_refs) and SEARCH not in resource_names:
        resource_names.append(SEARCH)

    return AddonDescriptor(
        manifest_url=normalize_manifest_url(manifest_url),
        name=filtered.get("name") or manifest.get("id") or manifest_url,
        version=filtered.get("version"),
        resources=tuple(resource_names),
        catalogs=catalog_refs,
        icon_url=icon_url or filtered.get("logo") or filtered.get("icon"),
        addon_id=addon_id,
        manifest=filtered,
    )
