"""Resolve Desired State - What an account should look like.

Combines a group's ordered addon membership with per-user overrides:

1. Base list = the group's enabled addons in stored order
2. Drop addons the user has excluded
3. Re-insert protected addons the group does not carry, at the position
   they last held on the account, or at the end if never seen there

The combination rule lives in the pure function ``resolve_desired_addons``;
``DesiredStateResolver`` only loads its inputs through the repository ports.
"""

import logging
from typing import Iterable, Mapping, Optional, Sequence

from ...api.exceptions import NotFoundError
from ..domain.entities import DEFAULT_PROTECTED_URLS, AddonDescriptor, UserOverrides
from ..domain.ports import IGroupRepository, IUserRepository

logger = logging.getLogger(__name__)


def resolve_desired_addons(
    group_addons: Sequence[AddonDescriptor],
    overrides: Optional[UserOverrides] = None,
    known_addons: Sequence[AddonDescriptor] = (),
    library: Optional[Mapping[str, AddonDescriptor]] = None,
) -> list[AddonDescriptor]:
    """Combine group membership and user overrides into an ordered list.

    Args:
        group_addons: The group's addons in stored order
        overrides: User overrides; None for the group-level view
        known_addons: Last known account collection, used to place
            protected addons where they were
        library: Library descriptors by addon id, used for protected
            addons that are not on the account

    Returns:
        Ordered desired addons with unique keys
    """
    result: list[AddonDescriptor] = []
    keys: set[str] = set()
    for addon in group_addons:
        if addon.key in keys:
            continue
        if overrides and overrides.is_excluded(addon):
            continue
        keys.add(addon.key)
        result.append(addon)

    if overrides is None:
        return result

    for position, addon in enumerate(known_addons):
        if addon.key in keys or not overrides.is_protected(addon):
            continue
        keys.add(addon.key)
        result.insert(min(position, len(result)), addon)

    for addon_id in sorted(overrides.protected_addon_ids):
        addon = (library or {}).get(addon_id)
        if addon is None or addon.key in keys or not overrides.is_protected(addon):
            continue
        keys.add(addon.key)
        result.append(addon)

    return result


class DesiredStateResolver:
    """Loads group and override records and resolves the desired addon list.

    Example:
        resolver = DesiredStateResolver(group_repo, user_repo)
        desired = await resolver.resolve("group-1")
        desired_for_user = await resolver.resolve("group-1", "user-1", known_addons=remote)
    """

    def __init__(
        self,
        group_repo: IGroupRepository,
        user_repo: IUserRepository,
        unsafe_mode: bool = False,
    ):
        """Initialize the resolver.

        Args:
            group_repo: Port for group membership and the addon library
            user_repo: Port for user overrides
            unsafe_mode: Do not protect the Stremio system addons by default
        """
        self.group_repo = group_repo
        self.user_repo = user_repo
        self.unsafe_mode = unsafe_mode

    async def overrides_for(
        self,
        user_id: str,
        dropped: Iterable[str] = (),
        library: Optional[Mapping[str, AddonDescriptor]] = None,
    ) -> UserOverrides:
        """Effective overrides for a user.

        Adds the default protected system addons (unless unsafe mode) and
        treats ``dropped`` as excluded for this resolution. Entries naming a
        library addon by id also match that addon's manifest URL, so they
        apply to descriptors read from the account.

        Args:
            user_id: User whose overrides to load
            dropped: Addons excluded for this resolution
            library: Already loaded library descriptors by id; missing ids
                are looked up through the group repository
        """
        overrides = await self.user_repo.get_overrides(user_id)
        if not self.unsafe_mode:
            overrides = overrides.with_protected(DEFAULT_PROTECTED_URLS)
        dropped = list(dropped)
        if dropped:
            overrides = overrides.with_excluded(dropped)

        library = dict(library or {})
        named = overrides.protected_addon_ids | overrides.excluded_addon_ids
        unknown = sorted(i for i in named if i not in library and "://" not in i)
        if unknown:
            library.update(await self.group_repo.get_addons(unknown))
        return overrides.with_library(library)

    async def resolve(
        self,
        group_id: str,
        user_id: Optional[str] = None,
        known_addons: Sequence[AddonDescriptor] = (),
        dropped: Iterable[str] = (),
    ) -> list[AddonDescriptor]:
        """Resolve the ordered desired addons of a group, optionally for one user.

        Raises:
            NotFoundError: If the group does not exist
        """
        desired_set = await self.group_repo.get_desired_set(group_id)
        if desired_set is None:
            raise NotFoundError("Group", group_id)

        library = await self.group_repo.get_addons(desired_set.ordered_addon_ids)
        group_addons = [library[i] for i in desired_set.ordered_addon_ids if i in library]
        missing = len(desired_set.ordered_addon_ids) - len(group_addons)
        if missing:
            logger.warning(f"Group {group_id}: {missing} addon(s) missing from the library, skipped")

        if user_id is None:
            return resolve_desired_addons(group_addons)

        overrides = await self.overrides_for(user_id, dropped, library=library)
        protected_ids = [i for i in overrides.protected_addon_ids if i not in library]
        if protected_ids:
            library = {**library, **await self.group_repo.get_addons(protected_ids)}

        desired = resolve_desired_addons(group_addons, overrides, known_addons, library)
        logger.debug(f"Resolved {len(desired)} desired addon(s) for user {user_id} in group {group_id}")
        return desired
