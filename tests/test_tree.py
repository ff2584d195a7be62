"""Tests for ScopeTreeCache and NodePathRegistry."""

from __future__ import annotations

import asyncio

import pytest

from accesscore import ExpandFailure
from accesscore.permissions import NodePathRegistry, ScopeNode, ScopeTreeCache, SystemCatalog, path_key
from conftest import FakeAuthority


@pytest.fixture
def cache(authority: FakeAuthority, catalog: SystemCatalog) -> ScopeTreeCache:
    cache = ScopeTreeCache(authority, catalog)
    cache.seed()
    return cache


def _node(cache: ScopeTreeCache, action_id: str, node_id: str) -> ScopeNode:
    return next(n for n in cache.root_nodes(action_id) if n.id == node_id)


class TestNodePathRegistry:
    """Tests for path recording."""

    def test_paths_accumulate(self) -> None:
        """Test that a node reached through two parents keeps both paths."""
        registry = NodePathRegistry()
        assert registry.record("a", "b-1", ("org-1", "b-1")) is True
        assert registry.record("a", "b-1", ("org-2", "b-1")) is True
        assert registry.record("a", "b-1", ("org-1", "b-1")) is False

        assert registry.paths("a", "b-1") == [("org-1", "b-1"), ("org-2", "b-1")]
        assert len(registry) == 2

    def test_branches_to_expand(self) -> None:
        """Test that every proper ancestor of every path is returned."""
        registry = NodePathRegistry()
        registry.record("a", "x", ("r", "m", "x"))
        registry.record("a", "x", ("s", "x"))
        assert registry.branches_to_expand("a", ["x"]) == {("r",), ("r", "m"), ("s",)}
        assert registry.branches_to_expand("other", ["x"]) == set()

    def test_path_key(self) -> None:
        """Test path serialization."""
        assert path_key(()) == ""
        assert path_key(("org-1", "b-1")) == "org-1|b-1"


class TestSeed:
    """Tests for materializing the scopes delivered with the system tree."""

    def test_roots_sorted(self, cache: ScopeTreeCache) -> None:
        """Test that root nodes are sorted by name and can expand."""
        roots = cache.root_nodes("a-view")
        assert [n.id for n in roots] == ["org-1", "org-2"]
        assert all(n.has_children for n in roots)

    def test_children_deduped_and_sorted(self, cache: ScopeTreeCache) -> None:
        """Test that duplicate ids keep their first occurrence and sort case-insensitively."""
        children = cache.children("a-view", ("org-1",))
        assert [(n.id, n.name) for n in children] == [("b-2", "alpha"), ("b-1", "Beta")]
        assert not any(n.has_children for n in children)
        assert children[0].path == ("org-1", "b-2")

    def test_seeded_paths_registered(self, cache: ScopeTreeCache) -> None:
        """Test that seeded nodes are recorded in the registry."""
        assert cache.registry.paths("a-view", "b-1") == [("org-1", "b-1")]

    def test_unscoped_actions_skipped(self, cache: ScopeTreeCache) -> None:
        """Test that actions without levels have no tree."""
        assert cache.root_nodes("a-list") == []
        assert cache.leaf_nodes("a-list") == []

    def test_leaf_nodes(self, cache: ScopeTreeCache) -> None:
        """Test that leaves are the loaded last-level nodes."""
        assert {n.id for n in cache.leaf_nodes("a-view")} == {"b-1", "b-2"}
        assert cache.leaf_nodes("a-export") == []


class TestExpand:
    """Tests for lazy branch loading."""

    @pytest.mark.asyncio
    async def test_expand_fetches_once(self, cache: ScopeTreeCache, authority: FakeAuthority) -> None:
        """Test that an unloaded branch is fetched, deduped, sorted and then cached."""
        org2 = _node(cache, "a-view", "org-2")

        children = await cache.expand("a-view", org2)
        assert [(n.id, n.name) for n in children] == [("b-1", "Beta"), ("b-3", "Gamma")]
        assert cache.is_expanded("a-view", org2.path)

        again = await cache.expand("a-view", org2)
        assert again == children
        assert authority.count("fetch_scope_children") == 1

    @pytest.mark.asyncio
    async def test_seeded_branch_not_fetched(self, cache: ScopeTreeCache, authority: FakeAuthority) -> None:
        """Test that branches delivered with the tree need no fetch."""
        children = await cache.expand("a-view", _node(cache, "a-view", "org-1"))
        assert len(children) == 2
        assert authority.count("fetch_scope_children") == 0

    @pytest.mark.asyncio
    async def test_leaf_expand_is_noop(self, cache: ScopeTreeCache, authority: FakeAuthority) -> None:
        """Test that nodes at the last level never expand."""
        leaf = cache.children("a-view", ("org-1",))[0]
        assert await cache.expand("a-view", leaf) == []
        assert authority.calls == []

    @pytest.mark.asyncio
    async def test_node_under_two_parents(self, cache: ScopeTreeCache) -> None:
        """Test that a node reachable under two branches keeps both paths."""
        await cache.expand("a-view", _node(cache, "a-view", "org-2"))

        assert cache.registry.paths("a-view", "b-1") == [("org-1", "b-1"), ("org-2", "b-1")]
        assert cache.registry.branches_to_expand("a-view", ["b-1"]) == {("org-1",), ("org-2",)}

        opened = cache.reveal("a-view", ["b-1"])
        assert opened == {("org-1",), ("org-2",)}
        assert cache.is_expanded("a-view", ("org-1",))
        assert cache.is_expanded("a-view", ("org-2",))

    @pytest.mark.asyncio
    async def test_concurrent_expands_coalesced(self, cache: ScopeTreeCache, authority: FakeAuthority) -> None:
        """Test that simultaneous expands of the same branch share one fetch."""
        gate = asyncio.Event()
        authority.gates["fetch_scope_children"] = gate
        org2 = _node(cache, "a-view", "org-2")

        first = asyncio.ensure_future(cache.expand("a-view", org2))
        second = asyncio.ensure_future(cache.expand("a-view", org2))
        await asyncio.sleep(0)
        assert cache.is_pending("a-view", org2.path)

        gate.set()
        one, two = await asyncio.gather(first, second)

        assert one == two
        assert [n.id for n in one] == ["b-1", "b-3"]
        assert authority.count("fetch_scope_children") == 1
        assert not cache.is_pending("a-view", org2.path)

    @pytest.mark.asyncio
    async def test_distinct_actions_fetch_separately(self, cache: ScopeTreeCache, authority: FakeAuthority) -> None:
        """Test that the same parent id under different actions is a different key."""
        await asyncio.gather(
            cache.expand("a-view", _node(cache, "a-view", "org-2")),
            cache.expand("a-export", _node(cache, "a-export", "org-1")),
        )
        assert authority.count("fetch_scope_children") == 2
        assert {n.id for n in cache.leaf_nodes("a-export")} == {"b-1", "b-2"}

    @pytest.mark.asyncio
    async def test_expand_failure(self, cache: ScopeTreeCache, authority: FakeAuthority) -> None:
        """Test that a failed fetch leaves the branch collapsed and retryable."""
        authority.fail.add("fetch_scope_children")
        org2 = _node(cache, "a-view", "org-2")

        with pytest.raises(ExpandFailure):
            await cache.expand("a-view", org2)

        assert not cache.is_loaded("a-view", org2.path)
        assert not cache.is_expanded("a-view", org2.path)
        assert not cache.is_pending("a-view", org2.path)

        authority.fail.clear()
        assert len(await cache.expand("a-view", org2)) == 2
        assert authority.count("fetch_scope_children") == 2

    @pytest.mark.asyncio
    async def test_collapse_keeps_cache(self, cache: ScopeTreeCache, authority: FakeAuthority) -> None:
        """Test that collapsing hides a branch without evicting it."""
        org2 = _node(cache, "a-view", "org-2")
        await cache.expand("a-view", org2)

        cache.collapse("a-view", org2)
        assert not cache.is_expanded("a-view", org2.path)
        assert cache.is_loaded("a-view", org2.path)

        await cache.expand("a-view", org2)
        assert authority.count("fetch_scope_children") == 1
