"""Tests for GrantState normalization and DiffEngine."""

from __future__ import annotations

import asyncio

import pytest

from accesscore import ReconciliationFailure, SaveFailure, SaveInProgressError
from accesscore.permissions import (
    ActionLevelItem,
    ActionState,
    DiffEngine,
    Effect,
    GrantState,
    ScopeLevelItem,
    SystemCatalog,
)
from conftest import USER_ID, FakeAuthority, state


def _states(*records: dict) -> list[ActionState]:
    return [ActionState.model_validate(r) for r in records]


@pytest.fixture
def engine(authority: FakeAuthority, catalog: SystemCatalog) -> DiffEngine:
    engine = DiffEngine(authority, catalog, USER_ID, tenant_id="t-1")
    engine.load(
        _states(
            state("a-cre", "ALLOW"),
            state("a-view", nodes={"b-1": "ALLOW", "b-2": "DENY"}),
        )
    )
    return engine


class TestGrantState:
    """Tests for grant state construction and normalization."""

    def test_from_states(self) -> None:
        """Test parsing of action effects and node states."""
        grants = GrantState.from_states(
            _states(state("a-list", "allow"), state("a-view", nodes={"1": "ALLOW", "2": "DENY"}))
        )
        assert grants.effect_of("a-list") is Effect.ALLOW
        assert grants.node_state("a-view", "1") is Effect.ALLOW
        assert grants.node_state("a-view", "2") is Effect.DENY
        assert grants.node_state("a-view", "3") is Effect.NONE

    def test_none_effect_is_not_stored(self) -> None:
        """Test that NONE never reaches the normalized form."""
        grants = GrantState.from_states(_states(state("a-list", "NONE")))
        assert grants.snapshot() == GrantState().snapshot()
        assert not grants.has_grants("a-list")

    def test_none_node_state_is_not_stored(self) -> None:
        """Test that a node reported as NONE holds no grant."""
        grants = GrantState.from_states(_states(state("a-view", nodes={"v1": "NONE"})))
        assert grants.node_state("a-view", "v1") is Effect.NONE
        assert not grants.has_scope_grants("a-view")
        assert grants.snapshot() == GrantState().snapshot()

    def test_snapshot_ignores_insertion_order(self) -> None:
        """Test structural equality of snapshots."""
        one = GrantState()
        one.set_node_effect("a-view", "b", Effect.ALLOW)
        one.set_node_effect("a-view", "a", Effect.ALLOW)
        two = GrantState()
        two.set_node_effect("a-view", "a", Effect.ALLOW)
        two.set_node_effect("a-view", "b", Effect.ALLOW)
        assert one.snapshot() == two.snapshot()
        assert one.snapshot().as_dict()["A"] == {"a-view": "a,b"}

    def test_node_holds_one_effect(self) -> None:
        """Test that switching a value's effect moves it between sets."""
        grants = GrantState()
        grants.set_node_effect("a-view", "x", Effect.ALLOW)
        grants.set_node_effect("a-view", "x", Effect.DENY)
        assert grants.allowed_values("a-view") == set()
        assert grants.denied_values("a-view") == {"x"}

        grants.set_node_effect("a-view", "x", Effect.NONE)
        assert "a-view" not in grants.deny
        assert not grants.has_scope_grants("a-view")

    def test_copy_is_independent(self) -> None:
        """Test that copies do not share sets."""
        grants = GrantState(allow={"a-view": {"x"}})
        clone = grants.copy()
        clone.set_node_effect("a-view", "y", Effect.ALLOW)
        assert grants.allowed_values("a-view") == {"x"}


class TestDiffEngine:
    """Tests for dirty tracking and save item construction."""

    def test_clean_after_load(self, engine: DiffEngine) -> None:
        """Test that a freshly loaded state is clean and saves nothing."""
        assert engine.is_dirty() is False
        assert engine.build_save_items() == []

    def test_toggle_back_restores_clean(self, engine: DiffEngine) -> None:
        """Test that setting a leaf then clearing it returns to clean."""
        engine.grants.set_node_effect("a-view", "b-3", Effect.ALLOW)
        assert engine.is_dirty() is True
        assert len(engine.build_save_items()) == 1

        engine.grants.set_node_effect("a-view", "b-3", Effect.NONE)
        assert engine.is_dirty() is False
        assert engine.build_save_items() == []

    def test_cleared_scoped_action_marked_deleted(self, engine: DiffEngine) -> None:
        """Test that a scoped action cleared to empty is sent as deleted."""
        engine.grants.clear_action("a-view")
        items = engine.build_save_items()

        assert len(items) == 1
        item = items[0]
        assert isinstance(item, ScopeLevelItem)
        assert item.system_section_action_id == "a-view"
        assert item.deleted is True
        assert item.nodes == []

    def test_never_granted_action_absent(self, engine: DiffEngine) -> None:
        """Test that actions without prior or current grants never appear."""
        engine.grants.set_action_effect("a-del", Effect.NONE)
        assert engine.build_save_items() == []

    def test_scoped_item_uses_last_level_table(self, engine: DiffEngine) -> None:
        """Test node tagging with the deepest level's table id."""
        engine.grants.set_node_effect("a-view", "b-3", Effect.DENY)
        item = engine.build_save_items()[0]

        assert item.deleted is False
        assert item.action_effect is Effect.NONE
        assert [(n.code_table_id, n.code_table_value_id, n.effect) for n in item.nodes] == [
            ("t-branch", "b-1", Effect.ALLOW),
            ("t-branch", "b-2", Effect.DENY),
            ("t-branch", "b-3", Effect.DENY),
        ]

    def test_action_level_item(self, engine: DiffEngine) -> None:
        """Test unscoped items carry the current effect."""
        engine.grants.set_action_effect("a-cre", Effect.DENY)
        engine.grants.set_action_effect("a-list", Effect.ALLOW)
        items = {i.system_section_action_id: i for i in engine.build_save_items()}

        assert set(items) == {"a-cre", "a-list"}
        assert isinstance(items["a-cre"], ActionLevelItem)
        assert items["a-cre"].action_effect is Effect.DENY
        assert items["a-cre"].deleted is False
        assert items["a-list"].action_effect is Effect.ALLOW

    def test_payload_shape(self, engine: DiffEngine) -> None:
        """Test the wire form of a save item."""
        engine.grants.clear_action("a-cre")
        payload = engine.build_save_items()[0].to_payload()
        assert payload == {
            "userId": USER_ID,
            "systemSectionActionId": "a-cre",
            "actionEffect": "NONE",
            "nodes": [],
            "deleted": True,
        }


class TestDiffEngineSave:
    """Tests for the save and reconcile path."""

    @pytest.mark.asyncio
    async def test_save_reconciles(self, engine: DiffEngine, authority: FakeAuthority) -> None:
        """Test that save sends items then replaces the baseline from the authority."""
        engine.grants.set_action_effect("a-list", Effect.ALLOW)
        items = await engine.save()

        assert [i.system_section_action_id for i in items] == ["a-list"]
        assert authority.calls[0] == ("bulk_save", ("t-1",))
        assert authority.count("fetch_user_states") == 1
        assert engine.is_dirty() is False
        assert engine.grants.effect_of("a-list") is Effect.ALLOW

    @pytest.mark.asyncio
    async def test_save_without_changes(self, engine: DiffEngine, authority: FakeAuthority) -> None:
        """Test that a clean save does not reach the authority."""
        assert await engine.save() == []
        assert authority.calls == []

    @pytest.mark.asyncio
    async def test_save_failure_keeps_edits(self, engine: DiffEngine, authority: FakeAuthority) -> None:
        """Test that a rejected save leaves local edits dirty."""
        authority.fail.add("bulk_save")
        engine.grants.set_action_effect("a-list", Effect.ALLOW)

        with pytest.raises(SaveFailure) as exc_info:
            await engine.save()

        assert exc_info.value.retryable is True
        assert engine.is_dirty() is True
        assert engine.grants.effect_of("a-list") is Effect.ALLOW
        assert engine.writing is False

    @pytest.mark.asyncio
    async def test_reconciliation_failure(self, engine: DiffEngine, authority: FakeAuthority) -> None:
        """Test that a failed re-read flags the session for reload."""
        authority.fail.add("fetch_user_states")
        engine.grants.set_action_effect("a-list", Effect.ALLOW)
        baseline = engine.baseline

        with pytest.raises(ReconciliationFailure):
            await engine.save()

        assert engine.needs_reload is True
        assert engine.baseline == baseline
        assert authority.count("bulk_save") == 1

    @pytest.mark.asyncio
    async def test_second_save_rejected(self, engine: DiffEngine, authority: FakeAuthority) -> None:
        """Test that a save started while one is in flight is rejected."""
        gate = asyncio.Event()
        authority.gates["bulk_save"] = gate
        engine.grants.set_action_effect("a-list", Effect.ALLOW)

        first = asyncio.ensure_future(engine.save())
        await asyncio.sleep(0)
        assert engine.writing is True

        with pytest.raises(SaveInProgressError):
            await engine.save()

        gate.set()
        await first
        assert authority.count("bulk_save") == 1
        assert engine.writing is False

    @pytest.mark.asyncio
    async def test_end_to_end_list_action(self, authority: FakeAuthority, catalog: SystemCatalog) -> None:
        """Test toggling List on, saving, then clearing it."""
        engine = DiffEngine(authority, catalog, USER_ID)
        await engine.fetch()
        assert engine.grants.effect_of("a-list") is Effect.NONE

        engine.grants.set_action_effect("a-list", Effect.ALLOW)
        assert engine.is_dirty() is True
        await engine.save()
        assert authority.states[USER_ID]["a-list"]["actionEffect"] == "ALLOW"
        assert engine.is_dirty() is False

        engine.grants.set_action_effect("a-list", Effect.NONE)
        assert engine.is_dirty() is True
        items = engine.build_save_items()
        assert len(items) == 1
        assert items[0].system_section_action_id == "a-list"
        assert items[0].action_effect is Effect.NONE
        assert items[0].deleted is True
