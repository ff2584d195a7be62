"""Hierarchical permission engine.

Defines:
- PermissionIndex: name/code/id lookups over the system tree
- EffectResolver: pure ALLOW/DENY checks over grant state
- ScopeTreeCache / NodePathRegistry: lazily loaded scope hierarchies
- DiffEngine: baseline diffing and the bulk-save write path
- BulkEditor: select-all, toggles, role application and copy
- PermissionEditor: the (user, system) editing session state machine
"""

from .bulk import BulkEditor
from .catalog import SystemCatalog
from .constants import CRUD_SYNONYMS, Capability, Effect, SaveMode, ToggleScope, capability_for_code
from .diff import DiffEngine, build_item
from .grants import GrantSnapshot, GrantState
from .index import ActionRef, PermissionIndex, SectionRef
from .models import (
    AccessibleSection,
    Action,
    ActionDetails,
    ActionLevelItem,
    ActionState,
    ApplyRoleResult,
    DirectoryUser,
    Level,
    PermissionTree,
    SaveItem,
    SaveNode,
    ScopeLevelItem,
    ScopeNode,
    ScopeOption,
    Section,
    SectionPermissions,
    System,
    SystemAccessSummary,
    SystemRole,
)
from .resolver import EffectResolver
from .session import EditingSession, PermissionEditor, SessionKey, SessionState
from .tree import NodePathRegistry, ScopeTreeCache, path_key

__all__ = [
    "CRUD_SYNONYMS",
    "AccessibleSection",
    "Action",
    "ActionDetails",
    "ActionLevelItem",
    "ActionRef",
    "ActionState",
    "ApplyRoleResult",
    "BulkEditor",
    "Capability",
    "DiffEngine",
    "DirectoryUser",
    "EditingSession",
    "Effect",
    "EffectResolver",
    "GrantSnapshot",
    "GrantState",
    "Level",
    "NodePathRegistry",
    "PermissionEditor",
    "PermissionIndex",
    "PermissionTree",
    "SaveItem",
    "SaveMode",
    "SaveNode",
    "ScopeLevelItem",
    "ScopeNode",
    "ScopeOption",
    "ScopeTreeCache",
    "Section",
    "SectionPermissions",
    "SectionRef",
    "SessionKey",
    "SessionState",
    "System",
    "SystemAccessSummary",
    "SystemCatalog",
    "SystemRole",
    "ToggleScope",
    "build_item",
    "capability_for_code",
    "path_key",
]
