"""Tests for the Reconciler.

The Reconciler is pure, so every test builds descriptors in memory and
checks the exact operation list (golden output).
"""
import sys

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.syncio.sync.domain.entities import (
    AddonDescriptor,
    CatalogRef,
    DiffOutcome,
    OperationKind,
)
from src.syncio.sync.domain.reconciler import Reconciler


def addon(name: str, version: str = "1.0.0", resources=("stream",), catalogs=()) -> AddonDescriptor:
    return AddonDescriptor(
        manifest_url=f"https://{name.lower()}.example.com/manifest.json",
        name=name,
        version=version,
        resources=tuple(resources),
        catalogs=tuple(catalogs),
    )


A, B, C, P, X = (addon(n) for n in ("A", "B", "C", "P", "X"))


def kinds(operations):
    return [(op.kind, op.addon.name if op.addon else None) for op in operations]


@pytest.fixture
def reconciler():
    return Reconciler()


class TestScenarios:
    """The reference scenarios for group and user state."""

    def test_add_and_reorder_without_removal(self, reconciler):
        """desired [A, B, C], actual [B, A] -> add C, one reorder to [A, B, C]."""
        ops = reconciler.diff([A, B, C], [B, A])

        assert kinds(ops) == [
            (OperationKind.KEEP, "A"),
            (OperationKind.KEEP, "B"),
            (OperationKind.ADD, "C"),
            (OperationKind.REORDER, None),
        ]
        assert [a.name for a in ops[-1].target] == ["A", "B", "C"]
        assert not any(op.kind == OperationKind.REMOVE for op in ops)

    def test_empty_desired_is_remove_all(self, reconciler):
        plan = reconciler.plan("u1", [], [X])

        assert [op.kind for op in plan.operations] == [OperationKind.REMOVE_ALL]
        assert plan.requires_confirmation
        assert plan.outcome == DiffOutcome.DESTRUCTIVE
        assert plan.target == []
        assert plan.removed == [X]

    def test_protected_only_account_is_noop(self, reconciler):
        plan = reconciler.plan("u1", [], [P], protected={P.key})

        assert plan.operations == []
        assert plan.is_noop
        assert plan.outcome == DiffOutcome.NO_OP
        assert plan.target == [P]


class TestDiff:
    """Operation kinds and ordering."""

    def test_identical_lists_only_keep(self, reconciler):
        ops = reconciler.diff([A, B], [A, B])
        assert [op.kind for op in ops] == [OperationKind.KEEP, OperationKind.KEEP]

    def test_empty_everywhere_is_noop(self, reconciler):
        assert reconciler.diff([], []) == []

    def test_removed_addon_not_in_desired(self, reconciler):
        ops = reconciler.diff([A], [A, X])
        assert kinds(ops) == [(OperationKind.KEEP, "A"), (OperationKind.REMOVE, "X")]

    def test_removals_follow_remote_order(self, reconciler):
        ops = reconciler.diff([A], [C, A, B])
        removed = [op.addon.name for op in ops if op.kind == OperationKind.REMOVE]
        assert removed == ["C", "B"]

    def test_add_appended_at_end_needs_no_reorder(self, reconciler):
        ops = reconciler.diff([A, B, C], [A, B])
        assert [op.kind for op in ops] == [
            OperationKind.KEEP,
            OperationKind.KEEP,
            OperationKind.ADD,
        ]

    def test_add_in_the_middle_reorders(self, reconciler):
        ops = reconciler.diff([A, C, B], [A, B])
        assert ops[-1].kind == OperationKind.REORDER
        assert [a.name for a in ops[-1].target] == ["A", "C", "B"]

    def test_at_most_one_reorder(self, reconciler):
        ops = reconciler.diff([C, B, A], [A, B, C, X])
        assert sum(1 for op in ops if op.kind == OperationKind.REORDER) == 1

    def test_changed_version_is_patch(self, reconciler):
        newer = addon("A", version="2.0.0")
        ops = reconciler.diff([newer], [A])

        assert [op.kind for op in ops] == [OperationKind.PATCH]
        assert ops[0].addon.version == "2.0.0"
        assert ops[0].previous.version == "1.0.0"

    def test_changed_catalog_selection_is_patch(self, reconciler):
        remote = addon("A", resources=("catalog",), catalogs=[CatalogRef("movie", "top")])
        wanted = addon(
            "A",
            resources=("catalog",),
            catalogs=[CatalogRef("movie", "top"), CatalogRef("series", "top")],
        )
        ops = reconciler.diff([wanted], [remote])
        assert [op.kind for op in ops] == [OperationKind.PATCH]

    def test_url_match_is_case_and_scheme_insensitive(self, reconciler):
        remote = AddonDescriptor(manifest_url="stremio://A.example.com/manifest.json", name="A", version="1.0.0",
                                 resources=("stream",))
        ops = reconciler.diff([A], [remote])
        assert [op.kind for op in ops] == [OperationKind.KEEP]

    def test_duplicate_remote_entries_force_reorder(self, reconciler):
        plan = reconciler.plan("u1", [A, B], [A, B, A])

        assert plan.reordered
        assert [a.name for a in plan.target] == ["A", "B"]

    def test_duplicate_desired_entries_collapse(self, reconciler):
        ops = reconciler.diff([A, A, B], [A, B])
        assert [op.kind for op in ops] == [OperationKind.KEEP, OperationKind.KEEP]

    def test_deterministic(self, reconciler):
        first = reconciler.diff([C, A, B], [B, X, A])
        second = reconciler.diff([C, A, B], [B, X, A])
        assert first == second


class TestProtectionAndExclusion:
    """Protected addons are never removed; excluded addons never added."""

    def test_protected_leftover_is_not_removed(self, reconciler):
        plan = reconciler.plan("u1", [A], [P, A], protected={P.key})

        assert not any(op.kind == OperationKind.REMOVE for op in plan.operations)
        assert P in plan.target

    def test_protected_leftover_moves_behind_on_reorder(self, reconciler):
        plan = reconciler.plan("u1", [A, B], [P, B, A], protected={P.key})

        assert plan.reordered
        assert [a.name for a in plan.target] == ["A", "B", "P"]

    def test_protected_leftover_keeps_place_without_reorder(self, reconciler):
        plan = reconciler.plan("u1", [A, B], [A, P, B], protected={P.key})

        assert not plan.reordered
        assert [a.name for a in plan.target] == ["A", "P", "B"]

    def test_excluded_addon_is_never_added(self, reconciler):
        ops = reconciler.diff([A, X], [A], excluded={X.key})
        assert not any(op.kind == OperationKind.ADD for op in ops)

    def test_excluded_remote_addon_is_removed(self, reconciler):
        ops = reconciler.diff([A], [A, X], excluded={X.key})
        assert (OperationKind.REMOVE, "X") in kinds(ops)

    def test_exclusion_wins_over_protection(self, reconciler):
        plan = reconciler.plan("u1", [A], [A, X], protected={X.key}, excluded={X.key})

        assert (OperationKind.REMOVE, "X") in kinds(plan.operations)
        assert X not in plan.target

    def test_no_remove_all_when_a_protected_addon_remains(self, reconciler):
        plan = reconciler.plan("u1", [], [P, X], protected={P.key})

        assert not plan.requires_confirmation
        assert kinds(plan.operations) == [(OperationKind.REMOVE, "X")]
        assert plan.target == [P]


class TestPlan:
    """SyncPlan properties and idempotence."""

    def test_plan_summary(self, reconciler):
        plan = reconciler.plan("u1", [A, C], [X, A])

        assert [a.name for a in plan.added] == ["C"]
        assert [a.name for a in plan.removed] == ["X"]
        assert plan.patched == []
        assert plan.outcome == DiffOutcome.SAFE

    def test_applying_target_converges(self, reconciler):
        """Diffing the target against itself yields no changes."""
        cases = [
            ([A, B, C], [B, A], set()),
            ([C, A], [A, X, P], {P.key}),
            ([addon("A", version="3")], [A, B], set()),
            ([B, A], [A, B, A], set()),
        ]
        for desired, actual, protected in cases:
            first = reconciler.plan("u1", desired, actual, protected=protected)
            second = reconciler.plan("u1", desired, first.target, protected=protected)
            assert second.is_noop, (desired, actual)

    def test_desired_order_is_preserved_in_target(self, reconciler):
        plan = reconciler.plan("u1", [C, B, A], [A, B, C, P], protected={P.key})
        names = [a.name for a in plan.target if a.name != "P"]
        assert names == ["C", "B", "A"]

    def test_to_dict(self, reconciler):
        data = reconciler.plan("u1", [A, B, C], [B, A]).to_dict()

        assert data["user_id"] == "u1"
        assert data["outcome"] == "safe"
        assert data["added"] == [C.manifest_url]
        assert data["reordered"] is True
        assert data["operations"][-1]["kind"] == "reorder"
        assert data["operations"][-1]["target"] == [A.manifest_url, B.manifest_url, C.manifest_url]
