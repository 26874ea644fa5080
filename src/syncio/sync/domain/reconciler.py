"""Desired-vs-actual addon reconciliation.

The Reconciler turns a desired ordered addon list and the live remote
collection into an ordered operation list. It is deterministic and has no
side effects: the same inputs always produce the same operations.

Algorithm:
    1. Index ``actual`` by canonical manifest URL.
    2. Walk ``desired`` in order: KEEP (same config), PATCH (same URL,
       different resources/catalogs/version) or ADD (absent remotely).
    3. Every remote addon missing from ``desired`` becomes REMOVE, unless it
       is protected; protected leftovers are kept silently and moved behind
       the desired addons.
    4. If the desired order differs from the order a plain in-place update
       of ``actual`` would give (ignoring protected leftovers), a single
       trailing REORDER carries the full target collection.

    An empty desired list that would leave the account empty is reported
    as the single destructive marker REMOVE_ALL so callers can ask for
    confirmation first.
"""
import logging
from typing import Iterable, Sequence

from .entities import AddonDescriptor, SyncOperation, SyncPlan

logger = logging.getLogger(__name__)


class Reconciler:
    """Computes the operations that turn an account's collection into the desired one."""

    def diff(
        self,
        desired: Sequence[AddonDescriptor],
        actual: Sequence[AddonDescriptor],
        protected: Iterable[str] = frozenset(),
        excluded: Iterable[str] = frozenset(),
    ) -> list[SyncOperation]:
        """Compute the ordered operation list.

        Args:
            desired: Desired addons in target order
            actual: Remote collection in current order
            protected: Canonical keys never to remove
            excluded: Canonical keys never to add (wins over ``protected``)

        Returns:
            Operations: KEEP/PATCH/ADD in desired order, then REMOVE in remote
            order, then at most one REORDER; or ``[REMOVE_ALL]``
        """
        operations, _ = self._reconcile(desired, actual, protected, excluded)
        return operations

    def plan(
        self,
        user_id: str,
        desired: Sequence[AddonDescriptor],
        actual: Sequence[AddonDescriptor],
        protected: Iterable[str] = frozenset(),
        excluded: Iterable[str] = frozenset(),
    ) -> SyncPlan:
        """Compute operations plus the exact collection to write."""
        operations, target = self._reconcile(desired, actual, protected, excluded)
        plan = SyncPlan(user_id=user_id, operations=operations, target=target, actual=list(actual))
        logger.debug(
            f"Plan for user {user_id}: {plan.outcome.value}, "
            f"+{len(plan.added)} -{len(plan.removed)} ~{len(plan.patched)} "
            f"reorder={plan.reordered}"
        )
        return plan

    def _reconcile(
        self,
        desired: Sequence[AddonDescriptor],
        actual: Sequence[AddonDescriptor],
        protected: Iterable[str],
        excluded: Iterable[str],
    ) -> tuple[list[SyncOperation], list[AddonDescriptor]]:
        excluded_keys = frozenset(excluded)
        protected_keys = frozenset(protected) - excluded_keys

        wanted: list[AddonDescriptor] = []
        wanted_keys: set[str] = set()
        for addon in desired:
            if addon.key in excluded_keys or addon.key in wanted_keys:
                continue
            wanted_keys.add(addon.key)
            wanted.append(addon)

        current: list[AddonDescriptor] = []
        by_key: dict[str, AddonDescriptor] = {}
        for addon in actual:
            if addon.key not in by_key:
                by_key[addon.key] = addon
                current.append(addon)
        has_duplicates = len(current) != len(actual)

        operations: list[SyncOperation] = []
        added: list[AddonDescriptor] = []
        for addon in wanted:
            remote = by_key.get(addon.key)
            if remote is None:
                operations.append(SyncOperation.add(addon))
                added.append(addon)
            elif remote.same_config(addon):
                operations.append(SyncOperation.keep(addon))
            else:
                operations.append(SyncOperation.patch(addon, previous=remote))

        kept_protected: list[AddonDescriptor] = []
        removals: list[SyncOperation] = []
        for remote in current:
            if remote.key in wanted_keys:
                continue
            if remote.key in protected_keys:
                kept_protected.append(remote)
            else:
                removals.append(SyncOperation.remove(remote))

        if not wanted and current and not kept_protected:
            return [SyncOperation.remove_all()], []

        operations.extend(removals)

        # What a plain in-place update of the remote list would produce
        desired_version = {a.key: a for a in wanted}
        in_place = [
            desired_version.get(remote.key, remote)
            for remote in current
            if remote.key in wanted_keys or remote.key in protected_keys
        ] + added

        kept_keys = {a.key for a in kept_protected}
        in_place_order = [a.key for a in in_place if a.key not in kept_keys]
        wanted_order = [a.key for a in wanted]

        if in_place_order != wanted_order or has_duplicates:
            target = wanted + kept_protected
            operations.append(SyncOperation.reorder(target))
            return operations, target

        return operations, in_place
