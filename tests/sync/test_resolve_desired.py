"""Tests for desired-state resolution.

resolve_desired_addons is tested directly; DesiredStateResolver with
mock repository ports.
"""
import sys
from typing import Iterable, Optional

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.syncio.api.exceptions import NotFoundError
from src.syncio.sync.domain.entities import (
    DEFAULT_PROTECTED_URLS,
    AddonDescriptor,
    GroupDesiredSet,
    UserOverrides,
    UserRecord,
)
from src.syncio.sync.domain.ports import IGroupRepository, IUserRepository
from src.syncio.sync.use_cases.resolve_desired import DesiredStateResolver, resolve_desired_addons


def addon(name: str, addon_id: Optional[str] = None) -> AddonDescriptor:
    return AddonDescriptor(
        manifest_url=f"https://{name.lower()}.example.com/manifest.json",
        name=name,
        version="1.0.0",
        addon_id=addon_id,
    )


A, B, C, P = addon("A", "a"), addon("B", "b"), addon("C", "c"), addon("P", "p")


def names(addons):
    return [a.name for a in addons]


class MockGroupRepository(IGroupRepository):
    """Mock implementation of IGroupRepository for testing."""

    def __init__(self, groups: dict[str, GroupDesiredSet], library: dict[str, AddonDescriptor]):
        self.groups = groups
        self.library = library
        self.requested: list[list[str]] = []

    async def get_desired_set(self, group_id: str) -> Optional[GroupDesiredSet]:
        return self.groups.get(group_id)

    async def get_addons(self, addon_ids: Iterable[str]) -> dict[str, AddonDescriptor]:
        ids = list(addon_ids)
        self.requested.append(ids)
        return {i: self.library[i] for i in ids if i in self.library}

    async def list_active_group_ids(self) -> list[str]:
        return list(self.groups)


class MockUserRepository(IUserRepository):
    """Mock implementation of IUserRepository for testing."""

    def __init__(self, overrides: Optional[dict[str, UserOverrides]] = None):
        self.overrides = overrides or {}

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        return None

    async def list_group_members(self, group_id: str) -> list[UserRecord]:
        return []

    async def get_overrides(self, user_id: str) -> UserOverrides:
        return self.overrides.get(user_id, UserOverrides(user_id))

    async def add_excluded_addons(self, user_id: str, addon_ids: Iterable[str]) -> None:
        pass

    async def set_auth_key(self, user_id: str, auth_key: str) -> None:
        pass


class TestResolveDesiredAddons:
    """The pure combination rule."""

    def test_group_order_without_overrides(self):
        assert names(resolve_desired_addons([B, A, C])) == ["B", "A", "C"]

    def test_duplicates_collapse(self):
        assert names(resolve_desired_addons([A, B, A])) == ["A", "B"]

    def test_excluded_addons_removed(self):
        overrides = UserOverrides("u1", excluded_addon_ids=frozenset({"b"}))
        assert names(resolve_desired_addons([A, B, C], overrides)) == ["A", "C"]

    def test_protected_addon_keeps_last_position(self):
        overrides = UserOverrides("u1", protected_addon_ids=frozenset({P.manifest_url}))
        result = resolve_desired_addons([A, B, C], overrides, known_addons=[A, P, B])
        assert names(result) == ["A", "P", "B", "C"]

    def test_protected_addon_past_the_end_is_appended(self):
        overrides = UserOverrides("u1", protected_addon_ids=frozenset({P.manifest_url}))
        D = addon("D")
        result = resolve_desired_addons([A], overrides, known_addons=[B, C, D, P])
        assert names(result) == ["A", "P"]
        assert D not in result

    def test_protected_library_addon_not_on_account_goes_last(self):
        overrides = UserOverrides("u1", protected_addon_ids=frozenset({"p"}))
        result = resolve_desired_addons([A, B], overrides, known_addons=[], library={"p": P})
        assert names(result) == ["A", "B", "P"]

    def test_excluded_beats_protected(self):
        overrides = UserOverrides(
            "u1",
            protected_addon_ids=frozenset({"p"}),
            excluded_addon_ids=frozenset({"p"}),
        )
        result = resolve_desired_addons([A, P], overrides, known_addons=[P], library={"p": P})
        assert names(result) == ["A"]

    def test_protected_addon_already_in_group_not_duplicated(self):
        overrides = UserOverrides("u1", protected_addon_ids=frozenset({"a"}))
        result = resolve_desired_addons([A, B], overrides, known_addons=[B, A], library={"a": A})
        assert names(result) == ["A", "B"]


class TestDesiredStateResolver:
    """Loading inputs through the ports."""

    @pytest.fixture
    def group_repo(self):
        return MockGroupRepository(
            groups={"g1": GroupDesiredSet("g1", ordered_addon_ids=("a", "missing", "b", "c"))},
            library={"a": A, "b": B, "c": C, "p": P},
        )

    @pytest.mark.asyncio
    async def test_unknown_group_raises_not_found(self, group_repo):
        resolver = DesiredStateResolver(group_repo, MockUserRepository())

        with pytest.raises(NotFoundError) as exc_info:
            await resolver.resolve("nope")
        assert exc_info.value.resource_type == "Group"

    @pytest.mark.asyncio
    async def test_group_level_view_skips_missing_addons(self, group_repo):
        resolver = DesiredStateResolver(group_repo, MockUserRepository())
        assert names(await resolver.resolve("g1")) == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_user_view_applies_overrides(self, group_repo):
        user_repo = MockUserRepository({
            "u1": UserOverrides(
                "u1",
                protected_addon_ids=frozenset({"p"}),
                excluded_addon_ids=frozenset({"b"}),
            )
        })
        resolver = DesiredStateResolver(group_repo, user_repo)

        result = await resolver.resolve("g1", "u1")

        assert names(result) == ["A", "C", "P"]
        assert any("p" in ids for ids in group_repo.requested)

    @pytest.mark.asyncio
    async def test_dropped_addons_are_excluded(self, group_repo):
        resolver = DesiredStateResolver(group_repo, MockUserRepository())
        result = await resolver.resolve("g1", "u1", dropped=[C.manifest_url])
        assert names(result) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_system_addons_protected_by_default(self, group_repo):
        resolver = DesiredStateResolver(group_repo, MockUserRepository())
        overrides = await resolver.overrides_for("u1")
        assert set(DEFAULT_PROTECTED_URLS) <= overrides.protected_addon_ids

    @pytest.mark.asyncio
    async def test_unsafe_mode_drops_default_protection(self, group_repo):
        resolver = DesiredStateResolver(group_repo, MockUserRepository(), unsafe_mode=True)
        overrides = await resolver.overrides_for("u1")
        assert overrides.protected_addon_ids == frozenset()

    @pytest.mark.asyncio
    async def test_protected_id_matches_account_copy_without_id(self, group_repo):
        user_repo = MockUserRepository({"u1": UserOverrides("u1", protected_addon_ids=frozenset({"p"}))})
        resolver = DesiredStateResolver(group_repo, user_repo)
        account_copy = addon("P")

        result = await resolver.resolve("g1", "u1", known_addons=[A, account_copy, B])

        assert names(result) == ["A", "P", "B", "C"]
        assert result[1] is account_copy

    @pytest.mark.asyncio
    async def test_overrides_expand_library_ids_to_urls(self, group_repo):
        user_repo = MockUserRepository({"u1": UserOverrides("u1", excluded_addon_ids=frozenset({"c"}))})
        resolver = DesiredStateResolver(group_repo, user_repo, unsafe_mode=True)

        overrides = await resolver.overrides_for("u1")

        assert overrides.excluded_addon_ids == {"c", C.manifest_url}
        assert overrides.is_excluded(addon("C"))
