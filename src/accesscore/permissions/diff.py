"""Baseline diffing and the bulk-save write path.

The baseline is the normalized snapshot of the last authoritative state.
Only actions whose snapshot entry differs from it produce save items, so a
session without edits saves nothing.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterable, Iterator, Optional

from ..exceptions import LoadFailure, ReconciliationFailure, SaveFailure, SaveInProgressError, reraise_as
from .catalog import SystemCatalog
from .constants import Effect
from .grants import GrantSnapshot, GrantState
from .models import ActionLevelItem, ActionState, SaveItem, SaveNode, ScopeLevelItem

if TYPE_CHECKING:
    from ..interfaces import PermissionAuthority

logger = logging.getLogger(__name__)


def build_item(
    catalog: SystemCatalog,
    user_id: str,
    action_id: str,
    grants: GrantState,
    had_grants: bool,
) -> SaveItem:
    """Save item that replaces the stored state of one action with ``grants``.

    Scoped actions send their ALLOW and DENY values against the deepest
    level's table. ``deleted`` is set when the action had grants before and
    has none now.
    """
    level = catalog.last_level(action_id)
    if level is None:
        effect = grants.effect_of(action_id)
        return ActionLevelItem(
            user_id=user_id,
            system_section_action_id=action_id,
            action_effect=effect,
            deleted=had_grants and effect is Effect.NONE,
        )

    nodes = [
        SaveNode(code_table_id=level.scope_table_id, code_table_value_id=value_id, effect=Effect.ALLOW)
        for value_id in sorted(grants.allowed_values(action_id))
    ] + [
        SaveNode(code_table_id=level.scope_table_id, code_table_value_id=value_id, effect=Effect.DENY)
        for value_id in sorted(grants.denied_values(action_id))
    ]
    return ScopeLevelItem(
        user_id=user_id,
        system_section_action_id=action_id,
        action_effect=Effect.NONE,
        nodes=nodes,
        deleted=had_grants and not nodes,
    )


class DiffEngine:
    """Tracks one user's grants against their last authoritative baseline.

    Writes (save, role application, copy) are single-flight: the guard is
    taken before the first await, so a second write started while one is in
    flight fails with ``SaveInProgressError`` without touching the authority.
    """

    def __init__(
        self,
        authority: "PermissionAuthority",
        catalog: SystemCatalog,
        user_id: str,
        tenant_id: Optional[str] = None,
    ) -> None:
        self.authority = authority
        self.catalog = catalog
        self.user_id = user_id
        self.tenant_id = tenant_id
        self.grants = GrantState()
        self.baseline = GrantSnapshot()
        self.needs_reload = False
        self._writing = False

    # ── Baseline ─────────────────────────────────────

    def load(self, states: Iterable[ActionState]) -> None:
        """Replace grants and baseline with authoritative states."""
        self.grants = GrantState.from_states(states)
        self.baseline = self.grants.snapshot()
        self.needs_reload = False

    def is_dirty(self) -> bool:
        return self.grants.snapshot() != self.baseline

    def changed_actions(self) -> list[str]:
        """Action ids whose current entry differs from the baseline."""
        current = self.grants.snapshot()
        candidates = current.granted_actions() | self.baseline.granted_actions()
        return sorted(a for a in candidates if current.entry(a) != self.baseline.entry(a))

    def build_save_items(self) -> list[SaveItem]:
        """One item per changed action, in action id order."""
        before = self.baseline.granted_actions()
        items: list[SaveItem] = []
        for action_id in self.changed_actions():
            if not self.catalog.has_action(action_id):
                logger.warning("Skipping grants for action %s outside system %s", action_id, self.catalog.system_id)
                continue
            items.append(build_item(self.catalog, self.user_id, action_id, self.grants, action_id in before))
        return items

    # ── Writes ───────────────────────────────────────

    @property
    def writing(self) -> bool:
        return self._writing

    @contextmanager
    def write_guard(self) -> Iterator[None]:
        """Hold the single-flight write slot for the duration of the block."""
        if self._writing:
            raise SaveInProgressError()
        self._writing = True
        try:
            yield
        finally:
            self._writing = False

    async def save(self) -> list[SaveItem]:
        """Send the changed actions, then re-read the authoritative state.

        Returns the items sent (empty when nothing changed). On
        ``SaveFailure`` local edits are kept and remain dirty.
        """
        with self.write_guard():
            items = self.build_save_items()
            if not items:
                logger.debug("Nothing to save for user %s", self.user_id)
                return []
            await self._send(items)
            logger.info("Saved %d permission items for user %s", len(items), self.user_id)
            await self.reconcile()
        return items

    @reraise_as(SaveFailure, "bulk save")
    async def _send(self, items: list[SaveItem]) -> None:
        await self.authority.bulk_save(items, self.tenant_id)

    async def reconcile(self) -> None:
        """Replace local state with a fresh read from the authority.

        Raises ``ReconciliationFailure`` and flags ``needs_reload`` if the
        read fails; local state is left as it was.
        """
        try:
            states = await self.authority.fetch_user_states(self.user_id, self.catalog.action_ids(), self.tenant_id)
        except Exception as e:
            self.needs_reload = True
            logger.error("Reconciliation for user %s failed: %s", self.user_id, e)
            raise ReconciliationFailure(cause=type(e).__name__) from e
        self.load(states)

    @reraise_as(LoadFailure, "load grant states")
    async def fetch(self) -> None:
        """Initial read of the user's grants."""
        states = await self.authority.fetch_user_states(self.user_id, self.catalog.action_ids(), self.tenant_id)
        self.load(states)


__all__ = ["DiffEngine", "build_item"]
