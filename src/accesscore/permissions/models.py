"""Pydantic models for the permission engine.

The authority speaks camelCase JSON with loosely typed ids (UUID strings,
sometimes integers). Everything is validated here, at the boundary, so the
rest of the engine works with typed values only.
"""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .constants import Effect

StrId = Annotated[str, BeforeValidator(lambda v: v if v is None else str(v))]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ── Declarative tree ────────────────────────────────


class Level(_WireModel):
    """One rung of an action's scope hierarchy."""

    scope_table_id: StrId = Field(
        validation_alias=AliasChoices("scopeTableId", "codeTableId", "scope_table_id"),
    )
    name: str = ""
    depth_index: int = Field(default=0, validation_alias=AliasChoices("depthIndex", "depth_index"))


class ScopeTreeNode(_WireModel):
    """Nested scope node as returned inside the system tree payload."""

    id: StrId
    name: str = "(Unnamed)"
    level_index: int = Field(default=0, validation_alias=AliasChoices("levelIndex", "level_index"))
    children: list[ScopeTreeNode] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, v: Optional[str]) -> str:
        return v or "(Unnamed)"


class Action(_WireModel):
    """A permissible operation within a section."""

    id: StrId = Field(validation_alias=AliasChoices("systemSectionActionId", "id"))
    name: str = ""
    code: str = ""
    section_id: Optional[StrId] = Field(
        default=None,
        validation_alias=AliasChoices("sectionId", "systemSectionId", "section_id"),
    )
    levels: list[Level] = Field(default_factory=list)
    scopes: list[ScopeTreeNode] = Field(default_factory=list)

    @model_validator(mode="after")
    def _number_levels(self) -> "Action":
        for index, level in enumerate(self.levels):
            level.depth_index = index
        return self

    @property
    def is_scoped(self) -> bool:
        return bool(self.levels)

    @property
    def last_level(self) -> Optional[Level]:
        return self.levels[-1] if self.levels else None


class Section(_WireModel):
    """A functional grouping of actions within a system."""

    id: StrId = Field(validation_alias=AliasChoices("systemSectionId", "id"))
    name: str = ""
    system_id: Optional[StrId] = Field(
        default=None,
        validation_alias=AliasChoices("systemId", "system_id"),
    )
    actions: list[Action] = Field(default_factory=list)

    @model_validator(mode="after")
    def _link_actions(self) -> "Section":
        for action in self.actions:
            if action.section_id is None:
                action.section_id = self.id
        return self


class System(_WireModel):
    """A top-level application boundary."""

    id: StrId = Field(validation_alias=AliasChoices("systemId", "id"))
    name: str = ""
    sections: list[Section] = Field(default_factory=list)

    @model_validator(mode="after")
    def _link_sections(self) -> "System":
        for section in self.sections:
            if section.system_id is None:
                section.system_id = self.id
        return self


class ScopeNode(BaseModel):
    """A concrete value at one level of one action's hierarchy.

    Identity is ``(action, path)``: the same id may appear under several parents.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    level_index: int
    parent_path_ids: tuple[str, ...] = ()
    has_children: bool = False

    @property
    def path(self) -> tuple[str, ...]:
        return (*self.parent_path_ids, self.id)


class ScopeOption(_WireModel):
    """Candidate value returned by the scope-children lookups."""

    id: StrId = Field(validation_alias=AliasChoices("id", "value", "codeTableValueId"))
    name: str = Field(default="(Unnamed)", validation_alias=AliasChoices("name", "label"))

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, v: Optional[str]) -> str:
        return v or "(Unnamed)"


# ── User grant state (read / write) ─────────────────


def _parse_effect(value: object) -> Effect:
    return Effect.parse(value)  # type: ignore[arg-type]


EffectField = Annotated[Effect, BeforeValidator(_parse_effect)]


class ActionState(_WireModel):
    """Authoritative per-action state for one user."""

    system_section_action_id: StrId = Field(alias="systemSectionActionId")
    action_effect: EffectField = Field(default=Effect.NONE, alias="actionEffect")
    node_states: dict[str, EffectField] = Field(default_factory=dict, alias="nodeStates")

    @field_validator("node_states", mode="before")
    @classmethod
    def _stringify_keys(cls, v: Optional[dict]) -> dict:
        return {str(k): val for k, val in (v or {}).items()}


class SaveNode(_WireModel):
    code_table_id: StrId = Field(alias="codeTableId")
    code_table_value_id: StrId = Field(alias="codeTableValueId")
    effect: EffectField


class _SaveItemBase(_WireModel):
    user_id: StrId = Field(alias="userId")
    system_section_action_id: StrId = Field(alias="systemSectionActionId")
    action_effect: EffectField = Field(default=Effect.NONE, alias="actionEffect")
    nodes: list[SaveNode] = Field(default_factory=list)
    deleted: bool = False

    def to_payload(self) -> dict:
        """Wire form: camelCase keys, enum values, no variant tag."""
        return self.model_dump(by_alias=True, mode="json", exclude={"kind"})


class ActionLevelItem(_SaveItemBase):
    """Save item for an action without scope levels."""

    kind: Literal["action"] = "action"


class ScopeLevelItem(_SaveItemBase):
    """Save item for an action scoped to a hierarchy of values."""

    kind: Literal["scope"] = "scope"


SaveItem = Annotated[Union[ActionLevelItem, ScopeLevelItem], Field(discriminator="kind")]


class SystemRole(_WireModel):
    id: StrId = Field(validation_alias=AliasChoices("systemRoleId", "id"))
    name: str = Field(default="", validation_alias=AliasChoices("name", "label"))


class DirectoryUser(_WireModel):
    id: StrId = Field(validation_alias=AliasChoices("userId", "id"))
    name: str = Field(default="", validation_alias=AliasChoices("fullName", "name", "username"))
    email: Optional[str] = None


class ApplyRoleResult(_WireModel):
    permissions_applied: int = Field(default=0, alias="permissionsApplied")


# ── Own-permissions tree (/auth/me/permissions) ─────


class GrantedScope(_WireModel):
    scope_value_id: StrId = Field(alias="scopeValueId")
    effect: EffectField = Effect.NONE
    table_name: Optional[str] = Field(default=None, alias="tableName")


class GrantedAction(_WireModel):
    id: StrId = Field(validation_alias=AliasChoices("systemSectionActionId", "id"))
    name: str = ""
    code: str = ""
    effect: EffectField = Effect.NONE
    scopes: list[GrantedScope] = Field(default_factory=list)


class GrantedSection(_WireModel):
    id: StrId = Field(validation_alias=AliasChoices("systemSectionId", "sectionId", "id"))
    name: str = ""
    actions: list[GrantedAction] = Field(default_factory=list)


class GrantedSystem(_WireModel):
    id: StrId = Field(validation_alias=AliasChoices("systemId", "id"))
    name: str = ""
    sections: list[GrantedSection] = Field(default_factory=list)


class PermissionTree(_WireModel):
    """The signed-in user's own permissions, as consumed by check helpers."""

    systems: list[GrantedSystem] = Field(default_factory=list)

    def to_systems(self) -> list[System]:
        """Declarative view of the tree (grants stripped)."""
        return [
            System(
                id=system.id,
                name=system.name,
                sections=[
                    Section(
                        id=section.id,
                        name=section.name,
                        actions=[Action(id=a.id, name=a.name, code=a.code) for a in section.actions],
                    )
                    for section in system.sections
                ],
            )
            for system in self.systems
        ]


# ── Check results ───────────────────────────────────


class SectionPermissions(BaseModel):
    can_create: bool = False
    can_list: bool = False
    can_update: bool = False
    can_delete: bool = False
    actions: list[Action] = Field(default_factory=list)
    all_actions: list[Action] = Field(default_factory=list)


class AccessibleSection(BaseModel):
    system_id: str
    system_name: str
    section_id: str
    section_name: str
    permissions: SectionPermissions


class SystemAccessSummary(BaseModel):
    system_id: str
    system_name: str
    total_sections: int
    total_actions: int
    allowed_actions: int

    @property
    def has_full_access(self) -> bool:
        return self.total_actions > 0 and self.allowed_actions == self.total_actions

    @property
    def has_partial_access(self) -> bool:
        return 0 < self.allowed_actions < self.total_actions


class ActionDetails(BaseModel):
    system_id: str
    system_name: str
    section_id: str
    section_name: str
    action_id: str
    action_name: str
    action_code: str
    effect: Effect
    allowed_scope_ids: list[str] = Field(default_factory=list)
    denied_scope_ids: list[str] = Field(default_factory=list)

    @property
    def has_scopes(self) -> bool:
        return bool(self.allowed_scope_ids or self.denied_scope_ids)


__all__ = [
    "AccessibleSection",
    "Action",
    "ActionDetails",
    "ActionLevelItem",
    "ActionState",
    "ApplyRoleResult",
    "DirectoryUser",
    "GrantedAction",
    "GrantedScope",
    "GrantedSection",
    "GrantedSystem",
    "Level",
    "PermissionTree",
    "SaveItem",
    "SaveNode",
    "ScopeLevelItem",
    "ScopeNode",
    "ScopeOption",
    "ScopeTreeNode",
    "Section",
    "SectionPermissions",
    "System",
    "SystemAccessSummary",
    "SystemRole",
]
