"""Permission checks over a loaded grant state.

Provides runtime functions used throughout a consuming application to ask
"may this user do X". Every check is a pure function of the declarative
tree (via :class:`PermissionIndex`) and a :class:`GrantState`; none
performs I/O.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .constants import CRUD_SYNONYMS, Capability, Effect
from .grants import GrantState
from .index import PermissionIndex
from .models import (
    AccessibleSection,
    Action,
    ActionDetails,
    PermissionTree,
    Section,
    SectionPermissions,
    SystemAccessSummary,
)

logger = logging.getLogger(__name__)


class EffectResolver:
    """Resolve ALLOW / DENY / NONE for actions and scope values.

    Example::

        resolver = EffectResolver.from_payload(await client.fetch_my_permissions())
        resolver.has_permission("List", "Code Table")              # action-level
        resolver.has_permission("List", "Branches", branch_id)     # one scope value
        resolver.get_section_permissions("Code Table").can_create
    """

    def __init__(
        self,
        index: PermissionIndex,
        grants: Optional[GrantState] = None,
        scope_tables: Optional[dict[str, str]] = None,
    ) -> None:
        self.index = index
        self.grants = grants or GrantState()
        # scope value id -> code table name, when the source payload carries it
        self.scope_tables = scope_tables or {}

    @classmethod
    def from_tree(cls, tree: PermissionTree) -> "EffectResolver":
        scope_tables = {
            scope.scope_value_id: scope.table_name
            for system in tree.systems
            for section in system.sections
            for action in section.actions
            for scope in action.scopes
            if scope.table_name
        }
        return cls(PermissionIndex(tree.to_systems()), GrantState.from_permission_tree(tree), scope_tables)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "EffectResolver":
        return cls.from_tree(PermissionTree.model_validate(payload or {}))

    def is_action_allowed(self, action: Action) -> bool:
        return self.grants.is_action_allowed(action.id)

    # ── Checks ───────────────────────────────────────

    def has_permission(
        self,
        action_code: str,
        section_name: Optional[str] = None,
        scope_value_id: Optional[str] = None,
    ) -> bool:
        """Check an action by code, optionally for one scope value.

        - Unknown action → False.
        - Action-level DENY → False.
        - Action-level ALLOW without a scope value → True.
        - With a scope value: True only if that exact value is ALLOW.
        - Without a scope value on a scoped grant: True if any value is ALLOW.
        """
        ref = self.index.find_action(action_code, section_name)
        if ref is None:
            logger.debug("Permission check for unknown action '%s' (section=%s)", action_code, section_name)
            return False

        action_id = ref.action.id
        effect = self.grants.effect_of(action_id)
        if effect is Effect.DENY:
            return False
        if effect is Effect.ALLOW and scope_value_id is None:
            return True

        has_scopes = self.grants.has_scope_grants(action_id)
        if scope_value_id is not None:
            if not has_scopes:
                return False
            return self.grants.node_state(action_id, scope_value_id) is Effect.ALLOW

        return bool(self.grants.allow.get(action_id))

    def has_section_access(self, section_name: str, system_name: Optional[str] = None) -> bool:
        """True iff at least one action in the section passes the ALLOW test."""
        ref = self.index.find_section(section_name, system_name)
        if ref is None:
            return False
        return any(self.is_action_allowed(a) for a in ref.section.actions)

    def get_section_permissions(self, section_name: str, system_name: Optional[str] = None) -> SectionPermissions:
        """Normalize a section's action codes to create/list/update/delete."""
        ref = self.index.find_section(section_name, system_name)
        if ref is None:
            return SectionPermissions()
        return self._section_permissions(ref.section)

    def _section_permissions(self, section: Section) -> SectionPermissions:
        actions = list(section.actions)
        allowed = [a for a in actions if self.is_action_allowed(a)]

        def can(capability: str) -> bool:
            pattern = CRUD_SYNONYMS[capability]
            return any(pattern.match(a.code or "") for a in allowed)

        return SectionPermissions(
            can_create=can(Capability.CREATE),
            can_list=can(Capability.LIST),
            can_update=can(Capability.UPDATE),
            can_delete=can(Capability.DELETE),
            actions=allowed,
            all_actions=actions,
        )

    def get_accessible_sections(self) -> list[AccessibleSection]:
        """Every (system, section) pair with at least one allowed action."""
        sections: list[AccessibleSection] = []
        for system in self.index.systems:
            for section in system.sections:
                if not any(self.is_action_allowed(a) for a in section.actions):
                    continue
                sections.append(
                    AccessibleSection(
                        system_id=system.id,
                        system_name=system.name,
                        section_id=section.id,
                        section_name=section.name,
                        permissions=self._section_permissions(section),
                    )
                )
        return sections

    # ── Reporting helpers ────────────────────────────

    def get_accessible_systems(self) -> list[SystemAccessSummary]:
        """Per-system totals, restricted to systems with at least one allowed action."""
        summaries = []
        for system in self.index.systems:
            actions = [a for s in system.sections for a in s.actions]
            allowed = sum(1 for a in actions if self.is_action_allowed(a))
            if not allowed:
                continue
            summaries.append(
                SystemAccessSummary(
                    system_id=system.id,
                    system_name=system.name,
                    total_sections=len(system.sections),
                    total_actions=len(actions),
                    allowed_actions=allowed,
                )
            )
        return summaries

    def get_action_details(self, action_id: str) -> Optional[ActionDetails]:
        ref = self.index.find_action_by_id(action_id)
        if ref is None:
            return None
        return ActionDetails(
            system_id=ref.system.id,
            system_name=ref.system.name,
            section_id=ref.section.id,
            section_name=ref.section.name,
            action_id=ref.action.id,
            action_name=ref.action.name,
            action_code=ref.action.code,
            effect=self.grants.effect_of(ref.action.id),
            allowed_scope_ids=sorted(self.grants.allowed_values(ref.action.id)),
            denied_scope_ids=sorted(self.grants.denied_values(ref.action.id)),
        )

    def get_scope_value_ids(self, section_id: Optional[str] = None, table_name: Optional[str] = None) -> list[str]:
        """All ALLOW scope value ids, optionally narrowed to one section or one code table."""
        values: set[str] = set()
        for system in self.index.systems:
            for section in system.sections:
                if section_id and section.id != section_id:
                    continue
                for action in section.actions:
                    values.update(self.grants.allowed_values(action.id))
        if table_name:
            values = {v for v in values if self.scope_tables.get(v) == table_name}
        return sorted(values)

    def build_scoped_filter(self, column_name: str, section_id: Optional[str] = None) -> list[dict[str, Any]]:
        """Fixed list-request filter restricting rows to the user's allowed scope values."""
        values = self.get_scope_value_ids(section_id)
        if not values:
            return []
        return [{"key": column_name, "operator": "IN", "value": values, "dataType": "UUID"}]


__all__ = ["EffectResolver"]
