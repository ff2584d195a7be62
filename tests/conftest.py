"""Shared fixtures: a small system tree and an in-memory authority."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence

import pytest

from accesscore import AuthorityError, PermissionAuthority
from accesscore.permissions import (
    ActionState,
    ApplyRoleResult,
    DirectoryUser,
    GrantState,
    SaveItem,
    ScopeOption,
    System,
    SystemCatalog,
    SystemRole,
)

SYSTEM_ID = "sys-1"
USER_ID = "u-1"

# Portal
#   Code Table: List, CRE, Del, Update (unscoped)
#   Branches:   View (Organization > Branch), Export (Organization > Branch)
PORTAL_TREE: dict[str, Any] = {
    "name": "Portal",
    "sections": [
        {
            "id": "sec-ct",
            "name": "Code Table",
            "actions": [
                {"id": "a-list", "name": "List", "code": "List"},
                {"id": "a-cre", "name": "Create", "code": "CRE"},
                {"id": "a-del", "name": "Delete", "code": "Del"},
                {"id": "a-up", "name": "Update", "code": "Update"},
            ],
        },
        {
            "id": "sec-br",
            "name": "Branches",
            "actions": [
                {
                    "id": "a-view",
                    "name": "View",
                    "code": "View",
                    "levels": [
                        {"scopeTableId": "t-org", "name": "Organization"},
                        {"scopeTableId": "t-branch", "name": "Branch"},
                    ],
                    "scopes": [
                        {
                            "id": "org-1",
                            "name": "Org One",
                            "levelIndex": 0,
                            "children": [
                                {"id": "b-1", "name": "Beta", "levelIndex": 1},
                                {"id": "b-2", "name": "alpha", "levelIndex": 1},
                                {"id": "b-1", "name": "Beta (dup)", "levelIndex": 1},
                            ],
                        },
                        {"id": "org-2", "name": "Org Two", "levelIndex": 0},
                    ],
                },
                {
                    "id": "a-export",
                    "name": "Export",
                    "code": "Export",
                    "levels": [
                        {"scopeTableId": "t-org", "name": "Organization"},
                        {"scopeTableId": "t-branch", "name": "Branch"},
                    ],
                    "scopes": [{"id": "org-1", "name": "Org One", "levelIndex": 0}],
                },
            ],
        },
    ],
}


def make_system(payload: Optional[dict[str, Any]] = None, system_id: str = SYSTEM_ID) -> System:
    payload = payload or PORTAL_TREE
    return System.model_validate({"id": system_id, **payload})


def state(action_id: str, effect: str = "NONE", nodes: Optional[dict[str, str]] = None) -> dict[str, Any]:
    return {"systemSectionActionId": action_id, "actionEffect": effect, "nodeStates": nodes or {}}


class FakeAuthority(PermissionAuthority):
    """In-memory authority. ``bulk_save`` applies items like the real service."""

    def __init__(self) -> None:
        self.trees: dict[str, dict[str, Any]] = {SYSTEM_ID: PORTAL_TREE}
        self.states: dict[str, dict[str, dict[str, Any]]] = {}
        self.children: dict[tuple[str, tuple[str, ...]], list[dict[str, Any]]] = {
            ("a-view", ("org-2",)): [
                {"id": "b-3", "name": "Gamma"},
                {"id": "b-1", "name": "Beta"},
                {"id": "b-3", "name": "Gamma again"},
            ],
            ("a-export", ("org-1",)): [{"id": "b-1", "name": "Beta"}, {"id": "b-2", "name": "alpha"}],
        }
        self.roles: dict[str, dict[str, list[dict[str, Any]]]] = {}
        self.users = [{"id": USER_ID, "name": "Ada"}, {"id": "u-2", "name": "Grace"}]
        self.calls: list[tuple[str, tuple]] = []
        self.saved: list[list[SaveItem]] = []
        self.fail: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}

    def set_states(self, user_id: str, *records: dict[str, Any]) -> None:
        self.states[user_id] = {r["systemSectionActionId"]: r for r in records}

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    async def _enter(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.fail:
            raise AuthorityError(f"{name} unavailable", status_code=503)

    async def list_systems(self) -> list[System]:
        await self._enter("list_systems")
        return [make_system(tree, system_id) for system_id, tree in self.trees.items()]

    async def fetch_system_tree(self, system_id: str, lang: str) -> System:
        await self._enter("fetch_system_tree", system_id, lang)
        return make_system(self.trees[system_id], system_id)

    async def fetch_scope_children(
        self,
        action_id: str,
        level_index: int,
        scope_table_id: str,
        parent_path_ids: Sequence[str],
        lang: str,
        level_name: Optional[str] = None,
    ) -> list[ScopeOption]:
        await self._enter("fetch_scope_children", action_id, tuple(parent_path_ids))
        raw = self.children.get((action_id, tuple(parent_path_ids)), [])
        return [ScopeOption.model_validate(x) for x in raw]

    async def fetch_user_states(
        self,
        user_id: str,
        action_ids: Sequence[str],
        tenant_id: Optional[str] = None,
    ) -> list[ActionState]:
        await self._enter("fetch_user_states", user_id, tenant_id)
        records = self.states.get(user_id, {})
        return [ActionState.model_validate(records[a]) for a in action_ids if a in records]

    async def bulk_save(self, items: Sequence[SaveItem], tenant_id: Optional[str] = None) -> None:
        await self._enter("bulk_save", tenant_id)
        self.saved.append(list(items))
        for item in items:
            records = self.states.setdefault(item.user_id, {})
            if item.deleted:
                records.pop(item.system_section_action_id, None)
                continue
            records[item.system_section_action_id] = state(
                item.system_section_action_id,
                item.action_effect.value,
                {n.code_table_value_id: n.effect.value for n in item.nodes},
            )

    async def list_system_roles(self, system_id: str) -> list[SystemRole]:
        await self._enter("list_system_roles", system_id)
        return [SystemRole(id=role_id, name=role_id.title()) for role_id in self.roles]

    async def apply_role(
        self,
        user_id: str,
        system_role_id: str,
        system_id: str,
        tenant_id: Optional[str] = None,
    ) -> ApplyRoleResult:
        await self._enter("apply_role", user_id, system_role_id, system_id)
        template = self.roles[system_role_id]
        self.set_states(user_id, *template["states"])
        return ApplyRoleResult(permissions_applied=len(template["states"]))

    async def list_users(self) -> list[DirectoryUser]:
        await self._enter("list_users")
        return [DirectoryUser.model_validate(u) for u in self.users]


@pytest.fixture
def system() -> System:
    return make_system()


@pytest.fixture
def catalog(system: System) -> SystemCatalog:
    return SystemCatalog(system, "en")


@pytest.fixture
def authority() -> FakeAuthority:
    return FakeAuthority()


@pytest.fixture
def empty_grants() -> GrantState:
    return GrantState()
