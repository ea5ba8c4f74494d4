"""Tests for quest_manager.graph: forest invariant, mirrors, snapshots."""

import pytest

from quest_manager.errors import CircularDependency, NotFound
from quest_manager.graph import QuestGraph
from quest_manager.models import Quest


def _add(graph: QuestGraph, title: str, **fields) -> Quest:
    quest = Quest.from_partial({"title": title, **fields}, "gm")
    graph.add_quest(quest)
    return quest


@pytest.fixture
def chain() -> tuple[QuestGraph, Quest, Quest, Quest]:
    """A -> B -> C (C's parent is B, B's parent is A)."""
    graph = QuestGraph()
    a = _add(graph, "A")
    b = _add(graph, "B", parent_id=a.id)
    c = _add(graph, "C", parent_id=b.id)
    return graph, a, b, c


# ---------------------------------------------------------------------------
# Insertion and lookup
# ---------------------------------------------------------------------------

class TestAddQuest:
    def test_root_quest_listed_once(self) -> None:
        graph = QuestGraph()
        quest = _add(graph, "A")
        graph.add_quest(quest)
        assert graph.root_quest_ids == [quest.id]

    def test_child_mirrored_on_parent(self, chain) -> None:
        graph, a, b, _ = chain
        assert a.children_ids == [b.id]
        assert graph.get_root_quests() == [a]

    def test_blocking_pair_mirrored(self) -> None:
        graph = QuestGraph()
        a = _add(graph, "A")
        b = _add(graph, "B", blocked_by_ids=[a.id])
        assert a.blocks_ids == [b.id]
        assert graph.integrity_errors() == []

    def test_related_not_mirrored(self) -> None:
        graph = QuestGraph()
        a = _add(graph, "A")
        _add(graph, "B", related_ids=[a.id])
        assert a.related_ids == []

    def test_metadata_counts_quests(self, chain) -> None:
        graph, *_ = chain
        assert graph.metadata.quest_count == 3
        assert len(graph) == 3


class TestLookup:
    def test_get_quest_absent_returns_none(self) -> None:
        assert QuestGraph().get_quest("missing") is None
        assert QuestGraph().get_quest(None) is None

    def test_require_raises_not_found(self) -> None:
        with pytest.raises(NotFound):
            QuestGraph().require("missing")

    def test_children_sorted_by_sort_order(self) -> None:
        graph = QuestGraph()
        parent = _add(graph, "P")
        late = _add(graph, "late", parent_id=parent.id, sort_order=5)
        early = _add(graph, "early", parent_id=parent.id, sort_order=1)
        assert graph.get_children(parent.id) == [early, late]

    def test_dangling_ids_dropped(self) -> None:
        graph = QuestGraph()
        quest = _add(graph, "A")
        graph.root_quest_ids.append("ghost")
        assert graph.get_root_quests() == [quest]

    def test_get_children_of_missing_parent(self) -> None:
        assert QuestGraph().get_children("missing") == []

    def test_descendant_ids(self, chain) -> None:
        graph, a, b, c = chain
        assert graph.descendant_ids(a.id) == [b.id, c.id]
        assert graph.descendant_ids(c.id) == []


# ---------------------------------------------------------------------------
# Cycle detection
# ---------------------------------------------------------------------------

class TestCircularDependency:
    def test_self_parenting_is_circular(self, chain) -> None:
        graph, a, *_ = chain
        assert graph.would_create_circular_dependency(a.id, a.id) is True

    def test_descendant_as_parent_is_circular(self, chain) -> None:
        graph, a, _, c = chain
        assert graph.would_create_circular_dependency(a.id, c.id) is True

    def test_unrelated_parent_is_fine(self, chain) -> None:
        graph, a, *_ = chain
        d = _add(graph, "D")
        assert graph.would_create_circular_dependency(a.id, d.id) is False

    def test_ancestor_as_parent_is_fine(self, chain) -> None:
        graph, a, _, c = chain
        assert graph.would_create_circular_dependency(c.id, a.id) is False

    def test_existing_cycle_terminates(self) -> None:
        x = Quest(id="x", title="X", created_by="gm", parent_id="y")
        y = Quest(id="y", title="Y", created_by="gm", parent_id="x")
        graph = QuestGraph(quests={"x": x, "y": y})
        assert graph.would_create_circular_dependency("z", "x") is True

    def test_commit_rejects_cycle_without_mutation(self, chain) -> None:
        graph, a, _, c = chain
        staged = a.model_copy(deep=True)
        staged.parent_id = c.id
        with pytest.raises(CircularDependency):
            graph.commit(staged)
        assert graph.get_quest(a.id).parent_id is None
        assert graph.root_quest_ids == [a.id]


# ---------------------------------------------------------------------------
# Re-parenting and ordering
# ---------------------------------------------------------------------------

class TestReparent:
    def test_set_parent_moves_child_between_parents(self, chain) -> None:
        graph, a, b, c = chain
        graph.set_parent(c.id, a.id)
        assert graph.get_quest(b.id).children_ids == []
        assert graph.get_quest(a.id).children_ids == [b.id, c.id]
        assert graph.integrity_errors() == []

    def test_set_parent_none_promotes_to_root(self, chain) -> None:
        graph, a, b, _ = chain
        graph.set_parent(b.id, None)
        assert graph.root_quest_ids == [a.id, b.id]
        assert graph.get_quest(a.id).children_ids == []

    def test_set_parent_to_missing_quest(self, chain) -> None:
        graph, a, *_ = chain
        with pytest.raises(NotFound):
            graph.set_parent(a.id, "ghost")

    def test_commit_rewires_blocking_pairs(self) -> None:
        graph = QuestGraph()
        a = _add(graph, "A")
        b = _add(graph, "B")
        c = _add(graph, "C", blocked_by_ids=[a.id])
        staged = c.model_copy(deep=True)
        staged.blocked_by_ids = [b.id]
        graph.commit(staged)
        assert graph.get_quest(a.id).blocks_ids == []
        assert graph.get_quest(b.id).blocks_ids == [c.id]
        assert graph.integrity_errors() == []

    def test_place_beside_renumbers_siblings(self) -> None:
        graph = QuestGraph()
        a = _add(graph, "A", sort_order=0)
        b = _add(graph, "B", sort_order=1)
        c = _add(graph, "C", sort_order=2)
        siblings = graph.place_beside(c.id, a.id, "before")
        assert [q.title for q in siblings] == ["C", "A", "B"]
        assert [q.title for q in graph.get_root_quests()] == ["C", "A", "B"]

    def test_place_beside_adopts_target_parent(self, chain) -> None:
        graph, a, b, c = chain
        d = _add(graph, "D")
        graph.place_beside(d.id, b.id, "after")
        assert graph.get_quest(d.id).parent_id == a.id
        assert [q.title for q in graph.get_children(a.id)] == ["B", "D"]
        assert d.id not in graph.root_quest_ids


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------

class TestDeleteQuest:
    def test_scrubs_every_reference(self) -> None:
        graph = QuestGraph()
        a = _add(graph, "A")
        b = _add(graph, "B", blocked_by_ids=[a.id], related_ids=[a.id])
        c = _add(graph, "C", parent_id=a.id)
        graph.delete_quest(a.id)

        assert a.id not in graph
        assert a.id not in graph.root_quest_ids
        for quest in graph:
            for ids in (quest.children_ids, quest.blocked_by_ids, quest.blocks_ids, quest.related_ids):
                assert a.id not in ids
        assert graph.get_quest(b.id).blocked_by_ids == []
        assert graph.get_quest(c.id).parent_id is None

    def test_orphans_promoted_to_roots(self, chain) -> None:
        graph, a, b, c = chain
        removed = graph.delete_quest(a.id)
        assert removed == [a.id]
        assert graph.root_quest_ids == [b.id]
        assert graph.get_quest(c.id).parent_id == b.id
        assert graph.integrity_errors() == []

    def test_cascade_removes_descendants(self, chain) -> None:
        graph, a, b, c = chain
        removed = graph.delete_quest(a.id, cascade=True)
        assert removed == [a.id, b.id, c.id]
        assert len(graph) == 0
        assert graph.root_quest_ids == []

    def test_delete_missing_is_noop(self) -> None:
        assert QuestGraph().delete_quest("ghost") == []


# ---------------------------------------------------------------------------
# Relation queries
# ---------------------------------------------------------------------------

class TestRelationQueries:
    def test_unlocked_when_all_blockers_completed(self) -> None:
        graph = QuestGraph()
        a = _add(graph, "A", status="completed")
        b = _add(graph, "B")
        c = _add(graph, "C", blocked_by_ids=[a.id, b.id])
        assert graph.unlocked_by(a.id) == []
        b.status = "completed"
        assert graph.unlocked_by(b.id) == [c]

    def test_by_status_has_every_bucket(self) -> None:
        graph = QuestGraph()
        _add(graph, "A", status="active")
        buckets = graph.by_status()
        assert set(buckets) == {"known", "active", "completed"}
        assert [q.title for q in buckets["active"]] == ["A"]
        assert buckets["known"] == []

    def test_integrity_errors_report_broken_mirror(self, chain) -> None:
        graph, a, b, _ = chain
        a.children_ids = []
        assert graph.integrity_errors() == [f"{a.id} does not list child {b.id}"]


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

class TestSnapshot:
    def test_round_trip(self) -> None:
        graph = QuestGraph()
        a = _add(graph, "A")
        b = _add(graph, "B", parent_id=a.id, related_ids=[a.id])
        _add(graph, "C", blocked_by_ids=[b.id])
        snapshot = graph.to_snapshot()
        assert QuestGraph.from_snapshot(snapshot).to_snapshot() == snapshot

    def test_snapshot_shape(self, chain) -> None:
        graph, a, *_ = chain
        snapshot = graph.to_snapshot()
        assert snapshot["schemaVersion"] == 1
        assert snapshot["rootQuestIds"] == [a.id]
        assert snapshot["metadata"]["questCount"] == 3
        assert set(snapshot["quests"]) == {q.id for q in graph}

    def test_empty_snapshot_tolerated(self) -> None:
        graph = QuestGraph.from_snapshot(None)
        assert len(graph) == 0
        assert QuestGraph.from_snapshot({}).root_quest_ids == []

    def test_partial_snapshot_fills_ids_and_defaults(self) -> None:
        graph = QuestGraph.from_snapshot({"quests": {"q1": {"title": "Only a title"}}})
        quest = graph.get_quest("q1")
        assert quest.id == "q1"
        assert quest.status == "known"
        assert graph.metadata.revision == 0
