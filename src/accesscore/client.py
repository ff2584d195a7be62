"""REST client for the remote authorization authority.

Implements :class:`accesscore.interfaces.PermissionAuthority` over httpx.
Every transport or HTTP failure surfaces as :class:`AuthorityError`; the
engine decides which operation failure it becomes.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import httpx

from .config import AccessConfig, load_access_config_from_env
from .exceptions import AuthorityError
from .interfaces import PermissionAuthority
from .logging import safe_log_value
from .permissions.constants import BRANCH_LEVEL_MARKER, SaveMode
from .permissions.models import (
    ActionState,
    ApplyRoleResult,
    DirectoryUser,
    SaveItem,
    ScopeOption,
    System,
    SystemRole,
)

logger = logging.getLogger(__name__)

SYSTEMS_DROPDOWN = "/access/api/dropdowns/systems"
SYSTEMS_PAGED = "/access/api/systems"
SYSTEM_TREE = "/access/api/system-trees/{system_id}"
SCOPE_VALUES = "/access/api/cascade-dropdowns/access.code-table-values-by-table"
ORGANIZATION_BRANCHES = "/access/api/cascade-dropdowns/access.organization-branches-by-organization"
USER_STATES = "/access/api/user-permissions/states"
BULK_SAVE = "/access/api/user-permissions/bulk"
SYSTEM_ROLES = "/access/api/system-roles/dropdown/by-system/{system_id}"
APPLY_ROLE = "/access/api/user-system-roles/apply-role"
USERS = "/auth/api/users"
MY_PERMISSIONS = "/auth/me/permissions"


def _content(data: Any) -> list:
    """Unwrap Spring-style pages (``{"content": [...]}``) and bare lists."""
    if isinstance(data, dict):
        data = data.get("content", [])
    return data if isinstance(data, list) else []


class AccessAuthorityClient(PermissionAuthority):
    """Async client for the access-management REST API.

    Example::

        async with AccessAuthorityClient(AccessConfig(base_url="https://portal")) as client:
            systems = await client.list_systems()
            tree = await client.fetch_system_tree(systems[0].id, "en")
    """

    def __init__(
        self,
        config: Optional[AccessConfig] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or load_access_config_from_env()
        headers = {
            "Accept": "application/json",
            "Accept-Language": self.config.default_lang,
        }
        if self.config.bearer_token:
            headers["Authorization"] = f"Bearer {self.config.bearer_token}"
        self._client = client or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout_seconds,
            headers=headers,
            transport=transport,
        )
        self._permissions_etag: Optional[str] = None
        self._permissions_cache: Optional[dict[str, Any]] = None

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "AccessAuthorityClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ── Transport ────────────────────────────────────

    def _tenant_headers(self, tenant_id: Optional[str]) -> dict[str, str]:
        tenant = tenant_id or self.config.tenant_id
        return {"X-Tenant-Id": tenant} if tenant else {}

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise AuthorityError(f"{method} {url} failed: {e}", url=url) from e

        if response.status_code >= 400:
            raise AuthorityError(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
                url=url,
                body=safe_log_value(response.text),
            )
        return response

    async def _get_json(self, url: str, **kwargs: Any) -> Any:
        response = await self._request("GET", url, **kwargs)
        return response.json() if response.content else None

    # ── Declarative tree ─────────────────────────────

    async def list_systems(self) -> list[System]:
        try:
            data = await self._get_json(SYSTEMS_DROPDOWN)
            if isinstance(data, list):
                return [System.model_validate(x) for x in data]
        except AuthorityError as e:
            logger.debug("Systems dropdown unavailable (%s), falling back to paged listing", e.message)

        data = await self._get_json(SYSTEMS_PAGED, params={"page": 0, "size": self.config.page_size})
        return [System.model_validate(x) for x in _content(data)]

    async def fetch_system_tree(self, system_id: str, lang: str) -> System:
        data = await self._get_json(SYSTEM_TREE.format(system_id=system_id), params={"lang": lang}) or {}
        return System.model_validate(
            {
                "id": system_id,
                "name": data.get("name") or data.get("systemName") or "",
                "sections": data.get("sections") or [],
            }
        )

    async def fetch_scope_children(
        self,
        action_id: str,
        level_index: int,
        scope_table_id: str,
        parent_path_ids: Sequence[str],
        lang: str,
        level_name: Optional[str] = None,
    ) -> list[ScopeOption]:
        parents = [str(p) for p in parent_path_ids]
        is_branch_level = BRANCH_LEVEL_MARKER in (level_name or "").lower()

        if is_branch_level and len(parents) == 1:
            data = await self._get_json(
                ORGANIZATION_BRANCHES,
                params={"organizationId": parents[0], "lang": lang},
            )
        else:
            params: list[tuple[str, Any]] = [
                ("codeTableId", scope_table_id),
                ("tableId", scope_table_id),
                ("lang", lang),
                ("depth", str(level_index)),
            ]
            params.extend((f"p{i}", parent) for i, parent in enumerate(parents))
            if parents:
                params.append(("parentId", parents[-1]))
            data = await self._get_json(SCOPE_VALUES, params=params)

        return [ScopeOption.model_validate(x) for x in data] if isinstance(data, list) else []

    # ── Grant state ──────────────────────────────────

    async def fetch_user_states(
        self,
        user_id: str,
        action_ids: Sequence[str],
        tenant_id: Optional[str] = None,
    ) -> list[ActionState]:
        data = await self._get_json(
            USER_STATES,
            params={"userId": user_id, "actionIds": [str(a) for a in action_ids]},
            headers=self._tenant_headers(tenant_id),
        )
        return [ActionState.model_validate(g) for g in data or []]

    async def bulk_save(self, items: Sequence[SaveItem], tenant_id: Optional[str] = None) -> None:
        payload = {"items": [item.to_payload() for item in items]}
        logger.debug("Bulk save of %d items: %s", len(items), safe_log_value(payload))
        await self._request(
            "POST",
            BULK_SAVE,
            params={"mode": SaveMode.REPLACE.value},
            json=payload,
            headers=self._tenant_headers(tenant_id),
        )

    # ── Roles and users ──────────────────────────────

    async def list_system_roles(self, system_id: str) -> list[SystemRole]:
        data = await self._get_json(SYSTEM_ROLES.format(system_id=system_id))
        return [SystemRole.model_validate(x) for x in _content(data)]

    async def apply_role(
        self,
        user_id: str,
        system_role_id: str,
        system_id: str,
        tenant_id: Optional[str] = None,
    ) -> ApplyRoleResult:
        tenant = tenant_id or self.config.tenant_id
        response = await self._request(
            "POST",
            APPLY_ROLE,
            json={
                "userId": user_id,
                "systemRoleId": system_role_id,
                "tenantId": tenant,
                "systemId": system_id,
            },
            headers=self._tenant_headers(tenant),
        )
        data = response.json() if response.content else {}
        return ApplyRoleResult.model_validate(data or {})

    async def list_users(self) -> list[DirectoryUser]:
        data = await self._get_json(USERS, params={"page": 0, "size": self.config.page_size})
        return [DirectoryUser.model_validate(x) for x in _content(data)]

    # ── Own permissions ──────────────────────────────

    async def fetch_my_permissions(self, force: bool = False) -> dict[str, Any]:
        """Signed-in user's permissions tree, revalidated with ETag.

        A 304 answer returns the cached copy (or an empty tree if none).
        """
        headers = {}
        if self._permissions_etag and not force:
            headers["If-None-Match"] = self._permissions_etag

        response = await self._request(
            "GET",
            MY_PERMISSIONS,
            params={"force": str(force).lower()},
            headers=headers,
        )
        if response.status_code == 304:
            return self._permissions_cache or {"systems": []}

        data = response.json() if response.content else {"systems": []}
        etag = response.headers.get("etag")
        if etag:
            self._permissions_etag = etag
        self._permissions_cache = data
        return data


__all__ = ["AccessAuthorityClient"]
