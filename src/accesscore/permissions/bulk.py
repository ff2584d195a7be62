"""Bulk edits: select/deselect-all, single toggles, roles and copy.

All edits go through the session's ``GrantState`` so that what is toggled
here is exactly what ``EffectResolver`` later reads.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from ..exceptions import LoadFailure, SaveFailure, reraise_as
from .catalog import SystemCatalog
from .constants import Effect, ToggleScope
from .diff import DiffEngine, build_item
from .grants import GrantState
from .models import ApplyRoleResult, SaveItem
from .tree import ScopeTreeCache

if TYPE_CHECKING:
    from ..interfaces import PermissionAuthority

logger = logging.getLogger(__name__)


def _editing_mode(mode: "Effect | str") -> Effect:
    effect = Effect.parse(mode)
    if effect is Effect.NONE:
        raise ValueError("Editing mode must be ALLOW or DENY")
    return effect


class BulkEditor:
    """Edit operations for one editing session.

    ``mode`` is the effect a check applies (ALLOW or DENY). Checking a box
    that already holds ``mode`` clears it, like a checkbox.
    """

    def __init__(self, diff: DiffEngine, tree: ScopeTreeCache) -> None:
        self.diff = diff
        self.tree = tree

    @property
    def catalog(self) -> SystemCatalog:
        return self.diff.catalog

    @property
    def authority(self) -> "PermissionAuthority":
        return self.diff.authority

    @property
    def grants(self) -> GrantState:
        # DiffEngine swaps the state object on every reload.
        return self.diff.grants

    # ── Select / deselect all ────────────────────────

    def target_actions(self, scope: "ToggleScope | str", section_id: Optional[str] = None) -> list[str]:
        scope = ToggleScope(scope)
        if scope is ToggleScope.SECTION:
            if section_id is None:
                raise ValueError("section_id is required for a section toggle")
            return self.catalog.section_action_ids(section_id)
        return self.catalog.action_ids()

    def is_all_selected(self, action_ids: list[str], mode: "Effect | str") -> bool:
        """True iff every action (or every loaded leaf of a scoped action) holds ``mode``.

        Scoped actions with no loaded leaves are skipped. False when nothing in
        range can be touched at all.
        """
        mode = _editing_mode(mode)
        touchable = False
        for action_id in action_ids:
            if self.catalog.is_scoped(action_id):
                leaves = self.tree.leaf_nodes(action_id)
                if not leaves:
                    continue
                touchable = True
                if any(self.grants.node_state(action_id, leaf.id) is not mode for leaf in leaves):
                    return False
            else:
                touchable = True
                if self.grants.effect_of(action_id) is not mode:
                    return False
        return touchable

    def toggle_all(
        self,
        scope: "ToggleScope | str",
        mode: "Effect | str",
        section_id: Optional[str] = None,
    ) -> bool:
        """Select or clear every action of the system or of one section.

        If everything in range already holds ``mode`` the range is cleared
        entirely; otherwise unscoped actions are set to ``mode`` and every
        loaded leaf of each scoped action is set to ``mode``. Unloaded
        subtrees are not touched.

        Returns True if the range was selected, False if it was cleared.
        """
        mode = _editing_mode(mode)
        action_ids = self.target_actions(scope, section_id)

        if self.is_all_selected(action_ids, mode):
            for action_id in action_ids:
                self.grants.clear_action(action_id)
            logger.debug("Cleared %d actions", len(action_ids))
            return False

        for action_id in action_ids:
            if self.catalog.is_scoped(action_id):
                for leaf in self.tree.leaf_nodes(action_id):
                    self.grants.set_node_effect(action_id, leaf.id, mode)
            else:
                self.grants.set_action_effect(action_id, mode)
        logger.debug("Set %d actions to %s", len(action_ids), mode.value)
        return True

    # ── Single toggles ───────────────────────────────

    def toggle_action(self, action_id: str, mode: "Effect | str", checked: bool = True) -> Effect:
        """Toggle an unscoped action. Returns its new effect."""
        mode = _editing_mode(mode)
        if self.catalog.is_scoped(action_id):
            raise ValueError(f"Action '{action_id}' is scoped; toggle its scope values instead")
        current = self.grants.effect_of(action_id)
        effect = mode if checked and current is not mode else Effect.NONE
        self.grants.set_action_effect(action_id, effect)
        return effect

    def toggle_node(self, action_id: str, value_id: str, mode: "Effect | str", checked: bool = True) -> Effect:
        """Toggle one scope value of a scoped action. Returns its new effect."""
        mode = _editing_mode(mode)
        if not self.catalog.is_scoped(action_id):
            raise ValueError(f"Action '{action_id}' has no scope levels")
        current = self.grants.node_state(action_id, value_id)
        effect = mode if checked and current is not mode else Effect.NONE
        self.grants.set_node_effect(action_id, value_id, effect)
        return effect

    # ── Roles ────────────────────────────────────────

    async def apply_role(self, user_id: str, role_id: str, system_id: str) -> ApplyRoleResult:
        """Apply a role template on the authority, then re-read if it targets this session's user."""
        with self.diff.write_guard():
            result = await self._apply_role(user_id, role_id, system_id)
            logger.info(
                "Applied role %s to user %s: %d permissions", role_id, user_id, result.permissions_applied
            )
            if user_id == self.diff.user_id:
                await self.diff.reconcile()
        return result

    @reraise_as(SaveFailure, "apply role")
    async def _apply_role(self, user_id: str, role_id: str, system_id: str) -> ApplyRoleResult:
        return await self.authority.apply_role(user_id, role_id, system_id, self.diff.tenant_id)

    # ── Copy ─────────────────────────────────────────

    async def copy_permissions(self, source_user_id: str, target_user_id: str, system_id: str) -> list[SaveItem]:
        """Replace the target user's grants in ``system_id`` with the source user's.

        Actions the target holds but the source does not are sent as deleted.
        Returns the items sent.
        """
        with self.diff.write_guard():
            catalog = await self._catalog_for(system_id)
            source, target = await self._read_pair(catalog, source_user_id, target_user_id)

            items: list[SaveItem] = []
            for action_id in catalog.action_ids():
                if source.has_grants(action_id):
                    items.append(build_item(catalog, target_user_id, action_id, source, target.has_grants(action_id)))
                elif target.has_grants(action_id):
                    items.append(build_item(catalog, target_user_id, action_id, source, True))

            if items:
                await self._send(items)
            logger.info("Copied %d actions from user %s to user %s", len(items), source_user_id, target_user_id)

            if target_user_id == self.diff.user_id and catalog.system_id == self.catalog.system_id:
                await self.diff.reconcile()
        return items

    @reraise_as(LoadFailure, "load system for copy")
    async def _catalog_for(self, system_id: str) -> SystemCatalog:
        if str(system_id) == self.catalog.system_id:
            return self.catalog
        system = await self.authority.fetch_system_tree(system_id, self.catalog.lang)
        return SystemCatalog(system, self.catalog.lang)

    @reraise_as(LoadFailure, "load users for copy")
    async def _read_pair(
        self, catalog: SystemCatalog, source_user_id: str, target_user_id: str
    ) -> tuple[GrantState, GrantState]:
        action_ids = catalog.action_ids()
        source_states, target_states = await asyncio.gather(
            self.authority.fetch_user_states(source_user_id, action_ids, self.diff.tenant_id),
            self.authority.fetch_user_states(target_user_id, action_ids, self.diff.tenant_id),
        )
        return GrantState.from_states(source_states), GrantState.from_states(target_states)

    @reraise_as(SaveFailure, "copy permissions")
    async def _send(self, items: list[SaveItem]) -> None:
        await self.authority.bulk_save(items, self.diff.tenant_id)


__all__ = ["BulkEditor"]
