from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from .permissions.models import (
    ActionState,
    ApplyRoleResult,
    DirectoryUser,
    SaveItem,
    ScopeOption,
    System,
    SystemRole,
)


class PermissionAuthority(ABC):
    """Remote authority the engine reads grant data from and writes edits to.

    Implementations raise :class:`accesscore.exceptions.AuthorityError` on
    transport or HTTP failures; the engine maps those to operation failures.
    """

    @abstractmethod
    async def list_systems(self) -> List[System]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_system_tree(self, system_id: str, lang: str) -> System:
        raise NotImplementedError

    @abstractmethod
    async def fetch_scope_children(
        self,
        action_id: str,
        level_index: int,
        scope_table_id: str,
        parent_path_ids: Sequence[str],
        lang: str,
        level_name: Optional[str] = None,
    ) -> List[ScopeOption]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_user_states(
        self,
        user_id: str,
        action_ids: Sequence[str],
        tenant_id: Optional[str] = None,
    ) -> List[ActionState]:
        raise NotImplementedError

    @abstractmethod
    async def bulk_save(self, items: Sequence[SaveItem], tenant_id: Optional[str] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_system_roles(self, system_id: str) -> List[SystemRole]:
        raise NotImplementedError

    @abstractmethod
    async def apply_role(
        self,
        user_id: str,
        system_role_id: str,
        system_id: str,
        tenant_id: Optional[str] = None,
    ) -> ApplyRoleResult:
        raise NotImplementedError

    @abstractmethod
    async def list_users(self) -> List[DirectoryUser]:
        raise NotImplementedError

    async def fetch_my_permissions(self, force: bool = False) -> Dict[str, Any]:
        """Own-permissions tree of the signed-in user.

        Editing-only authorities may keep this default, an empty tree.
        """
        return {"systems": []}


__all__ = ["PermissionAuthority"]
