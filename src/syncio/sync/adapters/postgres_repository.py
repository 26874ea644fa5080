"""PostgreSQL repository adapters for groups, users and the addon library.

These adapters implement IGroupRepository and IUserRepository over the
Syncio schema. Column names are camelCase and must be quoted.

Tables used:
    users        (id, username, email, "isActive", "stremioAuthKey",
                  "excludedAddons", "protectedAddons")
    groups       (id, name, "isActive", "userIds")
    addons       (id, name, "manifestUrl", manifest, "originalManifest",
                  version, "isActive", "iconUrl", resources, catalogs)
    group_addons (id, "groupId", "addonId", "isEnabled", position)

``userIds``, ``excludedAddons``, ``protectedAddons``, ``resources`` and
``catalogs`` are JSON stored as TEXT.
"""

import json
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional

from ...api.exceptions import SyncioError
from ..domain.entities import AddonDescriptor, GroupDesiredSet, UserOverrides, UserRecord
from ..domain.ports import IGroupRepository, IUserRepository
from .collection_mapper import AddonRecordMapper, _load_json

if TYPE_CHECKING:
    import asyncpg

    from ...api.manifests import ManifestFetcher

logger = logging.getLogger(__name__)

_USER_COLUMNS = 'id, username, email, "isActive", "stremioAuthKey"'


def _id_list(value: Any) -> list[str]:
    """Decode a JSON id array column into a list of strings."""
    items = _load_json(value, default=[])
    if not isinstance(items, list):
        return []
    return [str(i) for i in items if i]


class PostgresGroupRepository(IGroupRepository):
    """PostgreSQL implementation of IGroupRepository.

    Library addons whose manifest was never stored are fetched from their
    manifest URL when a ManifestFetcher is provided, otherwise skipped.
    """

    def __init__(
        self,
        pool: "asyncpg.Pool",
        mapper: Optional[AddonRecordMapper] = None,
        manifest_fetcher: Optional["ManifestFetcher"] = None,
    ):
        """Initialize the repository.

        Args:
            pool: asyncpg connection pool for database operations
            mapper: Addon row mapper (carries the manifest decrypt function)
            manifest_fetcher: Open ManifestFetcher used for rows without a manifest
        """
        self.pool = pool
        self.mapper = mapper or AddonRecordMapper()
        self.manifest_fetcher = manifest_fetcher

    async def get_desired_set(self, group_id: str) -> Optional[GroupDesiredSet]:
        async with self.pool.acquire() as conn:
            group = await conn.fetchrow(
                'SELECT id, name, "isActive" FROM groups WHERE id = $1',
                group_id,
            )
            if group is None:
                return None

            rows = await conn.fetch(
                """
                SELECT ga."addonId"
                FROM group_addons ga
                JOIN addons a ON a.id = ga."addonId"
                WHERE ga."groupId" = $1
                  AND ga."isEnabled" = TRUE
                  AND a."isActive" = TRUE
                ORDER BY ga.position ASC NULLS LAST, ga.id ASC
                """,
                group_id,
            )

        return GroupDesiredSet(
            group_id=group["id"],
            ordered_addon_ids=tuple(r["addonId"] for r in rows),
            name=group["name"],
            is_active=bool(group["isActive"]),
        )

    async def get_addons(self, addon_ids: Iterable[str]) -> dict[str, AddonDescriptor]:
        ids = list(dict.fromkeys(addon_ids))
        if not ids:
            return {}

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, name, "manifestUrl", manifest, "originalManifest",
                       "iconUrl", resources, catalogs
                FROM addons
                WHERE id = ANY($1::text[]) AND "isActive" = TRUE
                """,
                ids,
            )

        addons: dict[str, AddonDescriptor] = {}
        for row in rows:
            record = dict(row)
            descriptor = await self._to_descriptor(record)
            if descriptor is not None:
                addons[record["id"]] = descriptor
        return addons

    async def _to_descriptor(self, record: dict[str, Any]) -> Optional[AddonDescriptor]:
        manifest = self.mapper.manifest_of(record)
        if manifest is None and self.manifest_fetcher is not None:
            logger.info(f"Addon {record['id']} has no stored manifest, fetching {record['manifestUrl']}")
            try:
                manifest = await self.manifest_fetcher.fetch(record["manifestUrl"])
            except SyncioError as e:
                logger.warning(f"Skipping addon {record['id']}: manifest fetch failed: {e}")
                return None

        try:
            return self.mapper.to_descriptor(record, manifest)
        except ValueError as e:
            logger.warning(f"Skipping addon {record['id']}: {e}")
            return None

    async def list_active_group_ids(self) -> list[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch('SELECT id FROM groups WHERE "isActive" = TRUE ORDER BY name, id')
        return [r["id"] for r in rows]


class PostgresUserRepository(IUserRepository):
    """PostgreSQL implementation of IUserRepository.

    Group membership is stored on the group (``groups."userIds"``). A user in
    several groups resolves to the first active one by name.
    """

    def __init__(
        self,
        pool: "asyncpg.Pool",
        encrypt: Optional[Callable[[str], str]] = None,
        decrypt: Optional[Callable[[str], str]] = None,
    ):
        """Initialize the repository.

        Args:
            pool: asyncpg connection pool for database operations
            encrypt: Optional function applied to credentials before storing
            decrypt: Optional function applied to stored credentials
        """
        self.pool = pool
        self.encrypt = encrypt
        self.decrypt = decrypt

    def _to_user(self, row: Any, group_id: Optional[str]) -> UserRecord:
        auth_key = row["stremioAuthKey"]
        if auth_key and self.decrypt:
            auth_key = self.decrypt(auth_key)
        return UserRecord(
            id=row["id"],
            email=row["email"],
            username=row["username"],
            is_active=bool(row["isActive"]),
            auth_key=auth_key or None,
            group_id=group_id,
        )

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1", user_id)
            if row is None:
                return None

            group_id = await conn.fetchval(
                """
                SELECT id FROM groups
                WHERE "userIds" IS NOT NULL AND "userIds"::jsonb ? $1
                ORDER BY "isActive" DESC, name ASC
                LIMIT 1
                """,
                user_id,
            )

        return self._to_user(row, group_id)

    async def list_group_members(self, group_id: str) -> list[UserRecord]:
        async with self.pool.acquire() as conn:
            user_ids = _id_list(
                await conn.fetchval('SELECT "userIds" FROM groups WHERE id = $1', group_id)
            )
            if not user_ids:
                return []
            rows = await conn.fetch(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = ANY($1::text[])",
                user_ids,
            )

        by_id = {r["id"]: r for r in rows}
        return [self._to_user(by_id[i], group_id) for i in user_ids if i in by_id]

    async def get_overrides(self, user_id: str) -> UserOverrides:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'SELECT "protectedAddons", "excludedAddons" FROM users WHERE id = $1',
                user_id,
            )

        if row is None:
            return UserOverrides(user_id=user_id)
        return UserOverrides(
            user_id=user_id,
            protected_addon_ids=frozenset(_id_list(row["protectedAddons"])),
            excluded_addon_ids=frozenset(_id_list(row["excludedAddons"])),
        )

    async def add_excluded_addons(self, user_id: str, addon_ids: Iterable[str]) -> None:
        new_ids = [i for i in addon_ids if i]
        if not new_ids:
            return

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                current = await conn.fetchval(
                    'SELECT "excludedAddons" FROM users WHERE id = $1 FOR UPDATE',
                    user_id,
                )
                merged = list(dict.fromkeys(_id_list(current) + new_ids))
                await conn.execute(
                    'UPDATE users SET "excludedAddons" = $2 WHERE id = $1',
                    user_id,
                    json.dumps(merged),
                )

        logger.debug(f"User {user_id} excluded addons now: {merged}")

    async def set_auth_key(self, user_id: str, auth_key: str) -> None:
        stored = self.encrypt(auth_key) if self.encrypt else auth_key
        async with self.pool.acquire() as conn:
            await conn.execute(
                'UPDATE users SET "stremioAuthKey" = $2 WHERE id = $1',
                user_id,
                stored,
            )
        logger.info(f"Stored Stremio credential for user {user_id}")
