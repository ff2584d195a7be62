"""Lazy scope tree cache and node path registry.

Scope hierarchies (e.g. organization → branch) can be deep and wide, so
only the first levels arrive with the system tree; deeper branches are
fetched one level at a time as they are expanded.

Provides:
- ``NodePathRegistry``: every path through which a node id was observed.
- ``ScopeTreeCache``: per-action branch cache keyed by serialized parent
  path, with coalesced fetches and a visible-expansion set.

Both are owned by one editing session and discarded with it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from ..exceptions import ExpandFailure, reraise_as
from .catalog import SystemCatalog
from .constants import PATH_SEPARATOR
from .models import ScopeNode, ScopeTreeNode

if TYPE_CHECKING:
    from ..interfaces import PermissionAuthority

logger = logging.getLogger(__name__)

Path = tuple[str, ...]


def path_key(path: Sequence[str]) -> str:
    """Serialize a path; the root is the empty string."""
    return PATH_SEPARATOR.join(path)


class NodePathRegistry:
    """Records every full path by which a node id has been reached, per action.

    Grows monotonically: a node seen under a second parent keeps both paths.
    """

    def __init__(self) -> None:
        self._paths: dict[str, dict[str, list[Path]]] = {}

    def record(self, action_id: str, node_id: str, path: Sequence[str]) -> bool:
        """Append ``path`` for ``node_id``. Returns False if it was already known."""
        known = self._paths.setdefault(action_id, {}).setdefault(node_id, [])
        path = tuple(path)
        if path in known:
            return False
        known.append(path)
        return True

    def paths(self, action_id: str, node_id: str) -> list[Path]:
        return list(self._paths.get(action_id, {}).get(node_id, ()))

    def branches_to_expand(self, action_id: str, node_ids: Iterable[str]) -> set[Path]:
        """Every ancestor branch that must be open to show all of ``node_ids``."""
        branches: set[Path] = set()
        for node_id in node_ids:
            for path in self.paths(action_id, str(node_id)):
                for depth in range(1, len(path)):
                    branches.add(path[:depth])
        return branches

    def __len__(self) -> int:
        return sum(len(paths) for nodes in self._paths.values() for paths in nodes.values())


@dataclass
class _Branch:
    nodes: list[ScopeNode] = field(default_factory=list)
    loaded: bool = True


def _unique_sorted(nodes: list[ScopeNode]) -> list[ScopeNode]:
    seen: set[str] = set()
    unique = []
    for node in nodes:
        if node.id in seen:
            continue
        seen.add(node.id)
        unique.append(node)
    return sorted(unique, key=lambda n: n.name.casefold())


class ScopeTreeCache:
    """Per-action cache of scope branches with lazy, coalesced loading.

    Example::

        cache = ScopeTreeCache(authority, catalog)
        cache.seed()
        for org in cache.root_nodes(action_id):
            branches = await cache.expand(action_id, org)
    """

    def __init__(
        self,
        authority: "PermissionAuthority",
        catalog: SystemCatalog,
        registry: Optional[NodePathRegistry] = None,
    ) -> None:
        self.authority = authority
        self.catalog = catalog
        self.registry = registry or NodePathRegistry()
        self.expanded: set[tuple[str, str]] = set()
        self._branches: dict[str, dict[str, _Branch]] = {}
        self._inflight: dict[tuple[str, str], asyncio.Future[list[ScopeNode]]] = {}

    # ── Seeding from the system tree ─────────────────

    def seed(self) -> None:
        """Cache the nested scopes delivered with the system tree."""
        for action in self.catalog.actions():
            if action.levels:
                self._flatten(action.id, action.scopes, (), len(action.levels))

    def _flatten(self, action_id: str, nodes: list[ScopeTreeNode], parent: Path, level_count: int) -> None:
        materialized = _unique_sorted(
            [
                ScopeNode(
                    id=n.id,
                    name=n.name,
                    level_index=n.level_index,
                    parent_path_ids=parent,
                    has_children=bool(n.children) or n.level_index < level_count - 1,
                )
                for n in nodes
            ]
        )
        self._store(action_id, parent, materialized)
        seen: set[str] = set()
        for n in nodes:
            if n.children and n.id not in seen:
                seen.add(n.id)
                self._flatten(action_id, n.children, (*parent, n.id), level_count)

    def _store(self, action_id: str, parent: Path, nodes: list[ScopeNode]) -> None:
        self._branches.setdefault(action_id, {})[path_key(parent)] = _Branch(nodes=nodes)
        for node in nodes:
            self.registry.record(action_id, node.id, node.path)

    # ── Reads ────────────────────────────────────────

    def is_loaded(self, action_id: str, path: Sequence[str] = ()) -> bool:
        branch = self._branches.get(action_id, {}).get(path_key(path))
        return branch is not None and branch.loaded

    def children(self, action_id: str, path: Sequence[str] = ()) -> list[ScopeNode]:
        branch = self._branches.get(action_id, {}).get(path_key(path))
        return list(branch.nodes) if branch else []

    def root_nodes(self, action_id: str) -> list[ScopeNode]:
        return self.children(action_id, ())

    def leaf_nodes(self, action_id: str) -> list[ScopeNode]:
        """Every loaded node at the action's deepest level, one per id."""
        last = self.catalog.last_index(action_id)
        if last < 0:
            return []
        leaves: dict[str, ScopeNode] = {}
        for branch in self._branches.get(action_id, {}).values():
            for node in branch.nodes:
                if node.level_index == last and node.id not in leaves:
                    leaves[node.id] = node
        return list(leaves.values())

    def is_expanded(self, action_id: str, path: Sequence[str]) -> bool:
        return (action_id, path_key(path)) in self.expanded

    def is_pending(self, action_id: str, path: Sequence[str]) -> bool:
        return (action_id, path_key(path)) in self._inflight

    # ── Expansion ────────────────────────────────────

    async def expand(self, action_id: str, node: ScopeNode) -> list[ScopeNode]:
        """Open ``node`` and return its children, fetching them at most once.

        No-op for nodes at or past the last level. Concurrent calls for the
        same branch share a single fetch. On failure the branch stays
        collapsed and uncached, and ``ExpandFailure`` is raised.
        """
        if not node.has_children or node.level_index >= self.catalog.last_index(action_id):
            return []

        key = (action_id, path_key(node.path))
        if self.is_loaded(action_id, node.path):
            self.expanded.add(key)
            return self.children(action_id, node.path)

        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(self._fetch_children(action_id, node))
            self._inflight[key] = future
            future.add_done_callback(lambda f, k=key: self._forget(k, f))
        else:
            logger.debug("Coalescing expand for action %s path '%s'", action_id, key[1])

        nodes = await asyncio.shield(future)
        self.expanded.add(key)
        return list(nodes)

    def _forget(self, key: tuple[str, str], future: "asyncio.Future[list[ScopeNode]]") -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]

    @reraise_as(ExpandFailure, "expand scope branch")
    async def _fetch_children(self, action_id: str, node: ScopeNode) -> list[ScopeNode]:
        levels = self.catalog.levels(action_id)
        child_index = node.level_index + 1
        level = levels[child_index]
        options = await self.authority.fetch_scope_children(
            action_id,
            child_index,
            level.scope_table_id,
            list(node.path),
            self.catalog.lang,
            level.name,
        )
        nodes = _unique_sorted(
            [
                ScopeNode(
                    id=o.id,
                    name=o.name,
                    level_index=child_index,
                    parent_path_ids=node.path,
                    has_children=child_index < len(levels) - 1,
                )
                for o in options
            ]
        )
        self._store(action_id, node.path, nodes)
        logger.debug("Loaded %d scope values for action %s under '%s'", len(nodes), action_id, path_key(node.path))
        return nodes

    def collapse(self, action_id: str, node: ScopeNode) -> None:
        """Hide a branch. Cached children are kept for the rest of the session."""
        self.expanded.discard((action_id, path_key(node.path)))

    def reveal(self, action_id: str, node_ids: Iterable[str]) -> set[Path]:
        """Open every loaded ancestor branch of ``node_ids``. Returns the branches opened."""
        opened = set()
        for branch in self.registry.branches_to_expand(action_id, node_ids):
            if self.is_loaded(action_id, branch):
                self.expanded.add((action_id, path_key(branch)))
                opened.add(branch)
        return opened


__all__ = ["NodePathRegistry", "ScopeTreeCache", "path_key"]
