"""Editing sessions for one (user, system) selection.

``PermissionEditor`` is the entry point used by UI and service layers. Each
``open`` builds a fresh :class:`EditingSession` owning its own catalog,
scope cache and diff engine. Switching selection discards the old session;
responses that arrive for a superseded session are dropped.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from ..config import AccessConfig
from ..exceptions import LoadFailure, SessionNotLoadedError, reraise_as
from ..logging import SessionLoggerAdapter, get_session_logger
from .bulk import BulkEditor
from .catalog import SystemCatalog
from .constants import Effect, ToggleScope
from .diff import DiffEngine
from .index import PermissionIndex
from .models import ApplyRoleResult, DirectoryUser, SaveItem, ScopeNode, System, SystemRole
from .resolver import EffectResolver
from .tree import ScopeTreeCache

if TYPE_CHECKING:
    from ..interfaces import PermissionAuthority

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    CLEAN = "clean"
    DIRTY = "dirty"
    SAVING = "saving"


@dataclass(frozen=True)
class SessionKey:
    """Identity of one load. A new key is minted on every ``open``."""

    user_id: str
    system_id: str
    tenant_id: Optional[str]
    lang: str
    generation: int

    def __str__(self) -> str:
        return f"{self.user_id}/{self.system_id}#{self.generation}"


@dataclass
class EditingSession:
    """Everything owned by one loaded selection. Discarded as a whole."""

    key: SessionKey
    catalog: SystemCatalog
    tree: ScopeTreeCache
    diff: DiffEngine
    bulk: BulkEditor
    log: SessionLoggerAdapter

    def resolver(self) -> EffectResolver:
        """Checks over the session's current (possibly unsaved) grants."""
        return EffectResolver(PermissionIndex([self.catalog.system]), self.diff.grants)


class PermissionEditor:
    """State machine for editing one user's permissions in one system.

    ``UNLOADED → LOADING → CLEAN ⇄ DIRTY → SAVING → CLEAN``

    Example::

        editor = PermissionEditor(client)
        await editor.open(user_id, system_id)
        editor.toggle_all(ToggleScope.SECTION, Effect.ALLOW, section_id=section_id)
        await editor.save()
    """

    def __init__(self, authority: "PermissionAuthority", config: Optional[AccessConfig] = None) -> None:
        self.authority = authority
        self.config = config or AccessConfig()
        self._session: Optional[EditingSession] = None
        self._pending: Optional[SessionKey] = None
        self._generation = itertools.count(1)

    # ── State ────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        if self._pending is not None:
            return SessionState.LOADING
        if self._session is None:
            return SessionState.UNLOADED
        if self._session.diff.writing:
            return SessionState.SAVING
        return SessionState.DIRTY if self._session.diff.is_dirty() else SessionState.CLEAN

    @property
    def session(self) -> EditingSession:
        if self._session is None:
            raise SessionNotLoadedError()
        return self._session

    @property
    def needs_reload(self) -> bool:
        return self._session is not None and self._session.diff.needs_reload

    def is_current(self, session: EditingSession) -> bool:
        return self._session is session

    # ── Loading ──────────────────────────────────────

    async def open(
        self,
        user_id: str,
        system_id: str,
        tenant_id: Optional[str] = None,
        lang: Optional[str] = None,
    ) -> Optional[EditingSession]:
        """Load the system tree and the user's grants into a new session.

        Returns None if another ``open`` superseded this one while it was
        loading. On ``LoadFailure`` the previous session stays active.
        """
        key = SessionKey(
            user_id=str(user_id),
            system_id=str(system_id),
            tenant_id=tenant_id or self.config.tenant_id,
            lang=lang or self.config.default_lang,
            generation=next(self._generation),
        )
        self._pending = key
        try:
            session = await self._build(key)
        except LoadFailure:
            if self._pending == key:
                self._pending = None
            raise

        if self._pending != key:
            session.log.info("Dropping superseded load")
            return None

        self._pending = None
        self._session = session
        session.log.info("Loaded %d actions", len(session.catalog))
        return session

    @reraise_as(LoadFailure, "load permissions")
    async def _build(self, key: SessionKey) -> EditingSession:
        system = await self.authority.fetch_system_tree(key.system_id, key.lang)
        catalog = SystemCatalog(system, key.lang)
        tree = ScopeTreeCache(self.authority, catalog)
        tree.seed()
        diff = DiffEngine(self.authority, catalog, key.user_id, key.tenant_id)
        await diff.fetch()
        return EditingSession(
            key=key,
            catalog=catalog,
            tree=tree,
            diff=diff,
            bulk=BulkEditor(diff, tree),
            log=get_session_logger(__name__, session_key=str(key), user_id=key.user_id),
        )

    async def reload(self) -> Optional[EditingSession]:
        """Re-open the current selection, discarding unsaved edits."""
        key = self.session.key
        return await self.open(key.user_id, key.system_id, key.tenant_id, key.lang)

    def close(self) -> None:
        """Abandon the current selection. Late responses for it are ignored."""
        if self._session is not None:
            logger.debug("Closing session %s", self._session.key)
        self._session = None
        self._pending = None

    # ── Scope tree ───────────────────────────────────

    async def expand(self, action_id: str, node: ScopeNode) -> list[ScopeNode]:
        session = self.session
        nodes = await session.tree.expand(action_id, node)
        if not self.is_current(session):
            session.log.debug("Dropping expand result for superseded session")
            return []
        return nodes

    def collapse(self, action_id: str, node: ScopeNode) -> None:
        self.session.tree.collapse(action_id, node)

    def reveal_granted(self, action_id: str) -> None:
        """Open every loaded branch leading to a granted value of ``action_id``."""
        session = self.session
        grants = session.diff.grants
        session.tree.reveal(action_id, grants.allowed_values(action_id) | grants.denied_values(action_id))

    # ── Edits ────────────────────────────────────────

    def toggle_all(
        self,
        scope: "ToggleScope | str",
        mode: "Effect | str",
        section_id: Optional[str] = None,
    ) -> bool:
        return self.session.bulk.toggle_all(scope, mode, section_id)

    def toggle_action(self, action_id: str, mode: "Effect | str", checked: bool = True) -> Effect:
        return self.session.bulk.toggle_action(action_id, mode, checked)

    def toggle_node(self, action_id: str, value_id: str, mode: "Effect | str", checked: bool = True) -> Effect:
        return self.session.bulk.toggle_node(action_id, value_id, mode, checked)

    def is_dirty(self) -> bool:
        return self._session is not None and self._session.diff.is_dirty()

    def build_save_items(self) -> list[SaveItem]:
        return self.session.diff.build_save_items()

    def resolver(self) -> EffectResolver:
        return self.session.resolver()

    # ── Writes ───────────────────────────────────────

    async def save(self) -> list[SaveItem]:
        session = self.session
        items = await session.diff.save()
        if not self.is_current(session):
            session.log.info("Save completed for superseded session")
        return items

    async def apply_role(self, role_id: str, user_id: Optional[str] = None) -> ApplyRoleResult:
        """Apply a role to ``user_id`` (default: the session's user) in the session's system."""
        session = self.session
        return await session.bulk.apply_role(user_id or session.key.user_id, role_id, session.key.system_id)

    async def copy_permissions(
        self,
        source_user_id: str,
        target_user_id: Optional[str] = None,
        system_id: Optional[str] = None,
    ) -> list[SaveItem]:
        """Copy ``source_user_id``'s grants onto the target (default: the session's user)."""
        session = self.session
        return await session.bulk.copy_permissions(
            source_user_id,
            target_user_id or session.key.user_id,
            system_id or session.key.system_id,
        )

    # ── Directory lookups ────────────────────────────

    @reraise_as(LoadFailure, "list systems")
    async def list_systems(self) -> list[System]:
        return await self.authority.list_systems()

    @reraise_as(LoadFailure, "list roles")
    async def list_roles(self, system_id: Optional[str] = None) -> list[SystemRole]:
        if system_id is None:
            system_id = self.session.key.system_id
        return await self.authority.list_system_roles(system_id)

    @reraise_as(LoadFailure, "list users")
    async def list_users(self) -> list[DirectoryUser]:
        return await self.authority.list_users()


__all__ = ["EditingSession", "PermissionEditor", "SessionKey", "SessionState"]
