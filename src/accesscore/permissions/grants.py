"""Grant state and its normalized snapshot.

``GrantState`` is the mutable, in-memory grant data for one user:

- action-level effects for actions without scope levels
- per-action sets of ALLOW and DENY scope value ids for scoped actions

``GrantSnapshot`` is the normalized, hashable form used as the baseline.
Two states are equal iff their snapshots are equal; insertion order and
empty containers never matter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .constants import Effect
from .models import ActionState, PermissionTree

_Entries = tuple[tuple[str, tuple[str, ...]], ...]


@dataclass(frozen=True)
class GrantSnapshot:
    """Normalized grant state: sorted tuples, no NONE effects, no empty sets."""

    action_effects: tuple[tuple[str, Effect], ...] = ()
    allow: _Entries = ()
    deny: _Entries = ()

    def granted_actions(self) -> frozenset[str]:
        """Action ids with any non-NONE state."""
        return frozenset(
            [a for a, _ in self.action_effects] + [a for a, _ in self.allow] + [a for a, _ in self.deny]
        )

    def entry(self, action_id: str) -> tuple[Optional[Effect], tuple[str, ...], tuple[str, ...]]:
        """Everything the snapshot records for one action."""
        return (
            dict(self.action_effects).get(action_id),
            dict(self.allow).get(action_id, ()),
            dict(self.deny).get(action_id, ()),
        )

    def as_dict(self) -> dict:
        """Readable form for logs: sorted, comma-joined ids per action."""
        return {
            "A": {a: ",".join(ids) for a, ids in self.allow},
            "D": {a: ",".join(ids) for a, ids in self.deny},
            "AE": {a: e.value for a, e in self.action_effects},
        }


@dataclass
class GrantState:
    """Mutable grant state for one user across the actions of a system."""

    action_effects: dict[str, Effect] = field(default_factory=dict)
    allow: dict[str, set[str]] = field(default_factory=dict)
    deny: dict[str, set[str]] = field(default_factory=dict)

    # ── Construction ─────────────────────────────────

    @classmethod
    def from_states(cls, states: Iterable[ActionState]) -> "GrantState":
        """Build from the authority's per-action state records."""
        grants = cls()
        for state in states:
            action_id = state.system_section_action_id
            for value_id, effect in state.node_states.items():
                if effect is Effect.NONE:
                    continue
                target = grants.deny if effect is Effect.DENY else grants.allow
                target.setdefault(action_id, set()).add(str(value_id))
            if state.action_effect is not Effect.NONE:
                grants.action_effects[action_id] = state.action_effect
        return grants

    @classmethod
    def from_permission_tree(cls, tree: PermissionTree) -> "GrantState":
        """Build from the signed-in user's own permissions tree."""
        grants = cls()
        for system in tree.systems:
            for section in system.sections:
                for action in section.actions:
                    if action.effect is not Effect.NONE:
                        grants.action_effects[action.id] = action.effect
                    for scope in action.scopes:
                        if scope.effect is Effect.ALLOW:
                            grants.allow.setdefault(action.id, set()).add(scope.scope_value_id)
                        elif scope.effect is Effect.DENY:
                            grants.deny.setdefault(action.id, set()).add(scope.scope_value_id)
        return grants

    def copy(self) -> "GrantState":
        return GrantState(
            action_effects=dict(self.action_effects),
            allow={k: set(v) for k, v in self.allow.items()},
            deny={k: set(v) for k, v in self.deny.items()},
        )

    # ── Reads ────────────────────────────────────────

    def effect_of(self, action_id: str) -> Effect:
        return self.action_effects.get(action_id, Effect.NONE)

    def node_state(self, action_id: str, value_id: str) -> Effect:
        value_id = str(value_id)
        if value_id in self.allow.get(action_id, ()):
            return Effect.ALLOW
        if value_id in self.deny.get(action_id, ()):
            return Effect.DENY
        return Effect.NONE

    def allowed_values(self, action_id: str) -> set[str]:
        return set(self.allow.get(action_id, ()))

    def denied_values(self, action_id: str) -> set[str]:
        return set(self.deny.get(action_id, ()))

    def has_scope_grants(self, action_id: str) -> bool:
        return bool(self.allow.get(action_id) or self.deny.get(action_id))

    def has_grants(self, action_id: str) -> bool:
        return self.effect_of(action_id) is not Effect.NONE or self.has_scope_grants(action_id)

    def is_action_allowed(self, action_id: str) -> bool:
        """The ALLOW test shared by every check.

        DENY at action level blocks; ALLOW at action level passes; otherwise
        the action passes iff some scope value is ALLOW.
        """
        effect = self.effect_of(action_id)
        if effect is Effect.DENY:
            return False
        if effect is Effect.ALLOW:
            return True
        return bool(self.allow.get(action_id))

    # ── Writes ───────────────────────────────────────

    def set_action_effect(self, action_id: str, effect: Effect) -> None:
        if effect is Effect.NONE:
            self.action_effects.pop(action_id, None)
        else:
            self.action_effects[action_id] = effect

    def set_node_effect(self, action_id: str, value_id: str, effect: Effect) -> None:
        """Set one scope value. A value holds at most one effect."""
        value_id = str(value_id)
        self._discard(self.allow, action_id, value_id)
        self._discard(self.deny, action_id, value_id)
        if effect is Effect.ALLOW:
            self.allow.setdefault(action_id, set()).add(value_id)
        elif effect is Effect.DENY:
            self.deny.setdefault(action_id, set()).add(value_id)

    def clear_action(self, action_id: str) -> None:
        self.action_effects.pop(action_id, None)
        self.allow.pop(action_id, None)
        self.deny.pop(action_id, None)

    def clear(self) -> None:
        self.action_effects.clear()
        self.allow.clear()
        self.deny.clear()

    @staticmethod
    def _discard(sets: dict[str, set[str]], action_id: str, value_id: str) -> None:
        values = sets.get(action_id)
        if values is None:
            return
        values.discard(value_id)
        if not values:
            del sets[action_id]

    # ── Normalization ────────────────────────────────

    def snapshot(self) -> GrantSnapshot:
        def norm(sets: dict[str, set[str]]) -> _Entries:
            return tuple(sorted((a, tuple(sorted(ids))) for a, ids in sets.items() if ids))

        return GrantSnapshot(
            action_effects=tuple(
                sorted((a, e) for a, e in self.action_effects.items() if e is not Effect.NONE)
            ),
            allow=norm(self.allow),
            deny=norm(self.deny),
        )


__all__ = ["GrantSnapshot", "GrantState"]
