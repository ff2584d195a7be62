"""Effect values, save modes and CRUD synonyms for the permission engine.

Provides:
- ``Effect``: grant outcome for an action or scope node.
- ``SaveMode``: bulk save protocol modes.
- ``ToggleScope``: granularity of select/deselect-all.
- ``CRUD_SYNONYMS``: backend action codes mapped to canonical capabilities.
"""

from __future__ import annotations

import re
from enum import Enum


class Effect(str, Enum):
    """Grant outcome. ``NONE`` means no explicit grant and resolves to denied."""

    ALLOW = "ALLOW"
    DENY = "DENY"
    NONE = "NONE"

    @classmethod
    def parse(cls, value: "str | Effect | None") -> "Effect":
        """Coerce a wire value to an Effect. Missing or blank values are ``NONE``."""
        if isinstance(value, Effect):
            return value
        if not value:
            return cls.NONE
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown effect: {value!r}. Must be one of {[e.value for e in cls]}")


class SaveMode(str, Enum):
    """Bulk save protocol. Only REPLACE is used by the engine."""

    REPLACE = "REPLACE"
    MERGE = "MERGE"


class ToggleScope(str, Enum):
    """Granularity for select/deselect-all."""

    SYSTEM = "system"
    SECTION = "section"


class Capability:
    """Canonical CRUD capabilities."""

    CREATE = "create"
    LIST = "list"
    UPDATE = "update"
    DELETE = "delete"

    ALL = ("create", "list", "update", "delete")


# Backend action codes vary per section ("CRE", "List", "Del"...), matched case-insensitively.
CRUD_SYNONYMS: dict[str, re.Pattern[str]] = {
    Capability.CREATE: re.compile(r"^(create|cre|add|new)$", re.IGNORECASE),
    Capability.LIST: re.compile(r"^(list|view|read|get)$", re.IGNORECASE),
    Capability.UPDATE: re.compile(r"^(update|up|edit|modify)$", re.IGNORECASE),
    Capability.DELETE: re.compile(r"^(delete|del|remove)$", re.IGNORECASE),
}

# Path segment separator for serialized scope paths.
PATH_SEPARATOR = "|"

# Level names containing this marker are served by the branches-by-organization lookup.
BRANCH_LEVEL_MARKER = "branch"


def capability_for_code(code: str) -> str | None:
    """Return the canonical capability an action code maps to, if any."""
    for capability, pattern in CRUD_SYNONYMS.items():
        if pattern.match(code or ""):
            return capability
    return None


__all__ = [
    "BRANCH_LEVEL_MARKER",
    "CRUD_SYNONYMS",
    "PATH_SEPARATOR",
    "Capability",
    "Effect",
    "SaveMode",
    "ToggleScope",
    "capability_for_code",
]
