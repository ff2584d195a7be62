"""Constant-time lookup tables over the system/section/action tree.

Lookups are case-insensitive. Qualified keys (``"system:section"``,
``"section:code"``) are the reliable path; bare section names and bare
action codes are a convenience that resolves to the last registered match
when names collide across systems or sections.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from .models import Action, Section, System

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SectionRef:
    system: System
    section: Section


@dataclass(frozen=True)
class ActionRef:
    system: System
    section: Section
    action: Action


def _key(*parts: str) -> str:
    return ":".join(parts).lower()


class PermissionIndex:
    """Lookup maps by system name, section name, action code and action id.

    Example::

        index = PermissionIndex(systems)
        ref = index.find_action("CRE", section_name="Code Table")
        ref.action.id
    """

    def __init__(self, systems: Optional[Iterable[System]] = None) -> None:
        self._systems: list[System] = []
        self.by_system_name: dict[str, System] = {}
        self.by_section_name: dict[str, SectionRef] = {}
        self.by_action_code: dict[str, ActionRef] = {}
        self.by_action_id: dict[str, ActionRef] = {}
        self.rebuild(systems or ())

    def rebuild(self, systems: Iterable[System]) -> None:
        """Rebuild every map from scratch. O(n) in the number of actions."""
        self._systems = list(systems)
        self.by_system_name = {}
        self.by_section_name = {}
        self.by_action_code = {}
        self.by_action_id = {}

        collisions = 0
        for system in self._systems:
            self.by_system_name[system.name.lower()] = system
            for section in system.sections:
                section_ref = SectionRef(system, section)
                self.by_section_name[_key(system.name, section.name)] = section_ref
                bare_section = _key(section.name)
                if bare_section in self.by_section_name:
                    collisions += 1
                self.by_section_name[bare_section] = section_ref

                for action in section.actions:
                    action_ref = ActionRef(system, section, action)
                    self.by_action_code[_key(section.name, action.code)] = action_ref
                    bare_code = _key(action.code)
                    if bare_code in self.by_action_code:
                        collisions += 1
                    self.by_action_code[bare_code] = action_ref
                    self.by_action_id[action.id] = action_ref

        if collisions:
            logger.debug("Permission index built with %d bare-name collisions (last registered wins)", collisions)

    @property
    def systems(self) -> list[System]:
        return list(self._systems)

    def find_system(self, name: str) -> Optional[System]:
        return self.by_system_name.get(name.lower())

    def find_section(self, section_name: str, system_name: Optional[str] = None) -> Optional[SectionRef]:
        key = _key(system_name, section_name) if system_name else _key(section_name)
        return self.by_section_name.get(key)

    def find_action(self, action_code: str, section_name: Optional[str] = None) -> Optional[ActionRef]:
        key = _key(section_name, action_code) if section_name else _key(action_code)
        return self.by_action_code.get(key)

    def find_action_by_id(self, action_id: str) -> Optional[ActionRef]:
        return self.by_action_id.get(str(action_id))

    def __len__(self) -> int:
        return len(self.by_action_id)


__all__ = ["ActionRef", "PermissionIndex", "SectionRef"]
