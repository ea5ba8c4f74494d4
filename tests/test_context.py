"""Tests for quest_manager.context: load/save, revisions, export/import."""

import asyncio

import pytest

from quest_manager import __version__
from quest_manager.collaborators import StaticIdentity
from quest_manager.config import Settings
from quest_manager.context import QuestContext
from quest_manager.errors import StaleSnapshot, StorageError, ValidationFailed
from quest_manager.models import Quest
from quest_manager.storage import MemoryStorage


def _ctx(store: MemoryStorage, user: str = "gm", **settings) -> QuestContext:
    ctx = QuestContext(store, StaticIdentity(user, ["gm"]), Settings(**settings))
    ctx.load()
    return ctx


def _add(ctx: QuestContext, title: str) -> Quest:
    quest = Quest.from_partial({"title": title}, ctx.user_id)
    ctx.graph.add_quest(quest)
    return quest


class TestLoadSave:
    def test_empty_store_loads_empty(self) -> None:
        ctx = _ctx(MemoryStorage())
        assert ctx.loaded is True
        assert len(ctx.graph) == 0
        assert ctx.base_revision == 0

    def test_save_bumps_revision(self) -> None:
        store = MemoryStorage()
        ctx = _ctx(store)
        _add(ctx, "A")
        ctx.save()
        ctx.save()
        assert store.load("questTree")["metadata"]["revision"] == 2
        assert ctx.base_revision == 2
        assert ctx.graph.revision == 2
        assert store.load("permissions")["defaultPermissions"]["view"] is True

    def test_reload_is_idempotent(self) -> None:
        store = MemoryStorage()
        writer = _ctx(store)
        _add(writer, "A")
        writer.save()

        reader = _ctx(store, user="alice")
        reader.load()
        once = reader.graph.to_snapshot()
        reader.load()
        assert reader.graph.to_snapshot() == once

    def test_stale_save_rejected(self) -> None:
        store = MemoryStorage()
        first = _ctx(store)
        second = _ctx(store)
        _add(first, "A")
        first.save()
        _add(second, "B")
        with pytest.raises(StaleSnapshot) as exc:
            second.save()
        assert exc.value.expected == 0
        assert exc.value.stored == 1
        assert [q["title"] for q in store.load("questTree")["quests"].values()] == ["A"]

    def test_unreadable_store_starts_empty(self) -> None:
        class BrokenStore(MemoryStorage):
            def load(self, key):
                raise StorageError("disk on fire")

        ctx = _ctx(BrokenStore())
        assert ctx.loaded is True
        assert len(ctx.graph) == 0

    def test_install_bypasses_store(self) -> None:
        source = _ctx(MemoryStorage())
        _add(source, "A")
        source.save()

        store = MemoryStorage()
        target = _ctx(store, user="alice")
        target.install(source.graph.to_snapshot(), source.permissions.to_snapshot())
        assert len(target.graph) == 1
        assert target.base_revision == 1
        assert store.load("questTree") is None


class TestExportImport:
    def test_export_shape(self) -> None:
        ctx = _ctx(MemoryStorage())
        _add(ctx, "A")
        data = ctx.export_data()
        assert set(data) == {"questTree", "permissions", "exportedAt", "schemaVersion", "moduleVersion"}
        assert data["moduleVersion"] == __version__

    def test_import_of_export_restores_payload(self) -> None:
        source = _ctx(MemoryStorage())
        a = _add(source, "A")
        b = Quest.from_partial({"title": "B", "parent_id": a.id}, "gm")
        source.graph.add_quest(b)
        source.permissions.set_user_permission("alice", "edit", True)
        exported = source.export_data()

        target = _ctx(MemoryStorage())
        target.replace_state(exported)
        assert target.graph.to_snapshot() == exported["questTree"]
        assert target.permissions.to_snapshot() == exported["permissions"]

    @pytest.mark.parametrize("payload", [{}, {"questTree": {}}, {"permissions": {}}, []])
    def test_import_rejects_bad_shape(self, payload) -> None:
        with pytest.raises(ValidationFailed):
            _ctx(MemoryStorage()).replace_state(payload)

    def test_import_rejects_invalid_quests(self) -> None:
        data = {"questTree": {"quests": {"a": {"title": 5}}}, "permissions": {}}
        with pytest.raises(ValidationFailed):
            _ctx(MemoryStorage()).replace_state(data)

    def test_reset_empties_state(self) -> None:
        ctx = _ctx(MemoryStorage())
        _add(ctx, "A")
        ctx.permissions.set_user_permission("alice", "add", True)
        ctx.reset()
        assert len(ctx.graph) == 0
        assert ctx.permissions.user_permissions == {}


class TestListeners:
    def test_listener_called_and_removed(self) -> None:
        ctx = _ctx(MemoryStorage())
        events = []
        remove = ctx.add_listener(lambda event, payload: events.append((event, payload)))
        ctx.notify_changed("questCreated", {"questId": "a"})
        remove()
        ctx.notify_changed("questDeleted", {"questId": "a"})
        assert events == [("questCreated", {"questId": "a"})]


class TestAutosave:
    async def test_disabled_interval_returns_immediately(self) -> None:
        ctx = _ctx(MemoryStorage(), save_interval=0)
        await asyncio.wait_for(ctx.autosave_forever(), timeout=1)

    async def test_saves_dirty_state(self, monkeypatch) -> None:
        store = MemoryStorage()
        ctx = _ctx(store, save_interval=1)
        _add(ctx, "A")
        ctx.dirty = True

        real_sleep = asyncio.sleep
        calls = 0

        async def fast_sleep(seconds):
            nonlocal calls
            calls += 1
            if calls > 1:
                raise asyncio.CancelledError
            await real_sleep(0)

        monkeypatch.setattr("quest_manager.context.asyncio.sleep", fast_sleep)
        with pytest.raises(asyncio.CancelledError):
            await ctx.autosave_forever()
        assert ctx.dirty is False
        assert len(store.load("questTree")["quests"]) == 1
