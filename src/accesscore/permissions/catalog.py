"""Declarative tree of one system, as seen by an editing session."""

from __future__ import annotations

from typing import Iterator, Optional

from .models import Action, Level, Section, System


class SystemCatalog:
    """Read-only view of a system's sections, actions and scope levels.

    Loaded once per (system, language) selection and immutable afterwards.
    """

    def __init__(self, system: System, lang: str = "en") -> None:
        self.system = system
        self.lang = lang
        self._sections: dict[str, Section] = {s.id: s for s in system.sections}
        self._actions: dict[str, Action] = {}
        self._section_of: dict[str, str] = {}
        for section in system.sections:
            for action in section.actions:
                self._actions[action.id] = action
                self._section_of[action.id] = section.id

    @property
    def system_id(self) -> str:
        return self.system.id

    @property
    def sections(self) -> list[Section]:
        return list(self.system.sections)

    def actions(self) -> Iterator[Action]:
        for section in self.system.sections:
            yield from section.actions

    def action_ids(self) -> list[str]:
        return list(self._actions)

    def action(self, action_id: str) -> Action:
        try:
            return self._actions[action_id]
        except KeyError:
            raise KeyError(f"Unknown action '{action_id}' in system '{self.system.name}'") from None

    def has_action(self, action_id: str) -> bool:
        return action_id in self._actions

    def section(self, section_id: str) -> Optional[Section]:
        return self._sections.get(section_id)

    def section_of(self, action_id: str) -> Optional[str]:
        return self._section_of.get(action_id)

    def section_action_ids(self, section_id: str) -> list[str]:
        section = self._sections.get(section_id)
        return [a.id for a in section.actions] if section else []

    def levels(self, action_id: str) -> list[Level]:
        action = self._actions.get(action_id)
        return list(action.levels) if action else []

    def is_scoped(self, action_id: str) -> bool:
        return bool(self.levels(action_id))

    def last_index(self, action_id: str) -> int:
        """Index of the deepest level, or -1 for unscoped actions."""
        return len(self.levels(action_id)) - 1

    def last_level(self, action_id: str) -> Optional[Level]:
        levels = self.levels(action_id)
        return levels[-1] if levels else None

    def __len__(self) -> int:
        return len(self._actions)


__all__ = ["SystemCatalog"]
