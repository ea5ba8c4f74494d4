"""The quest graph: sole authority over the forest invariant.

Parent/child edges form a forest (no cycles, at most one parent per quest).
``children_ids`` mirrors the children's ``parent_id`` and the root list holds
every quest without a parent. Blocking edges are kept paired:
``A.blocks_ids`` contains B exactly when ``B.blocked_by_ids`` contains A.
``related_ids`` is stored as given.

The whole graph serialises to one versioned document:

    {
      "schemaVersion": 1,
      "quests": {"<id>": {...quest record...}},
      "rootQuestIds": ["<id>", ...],
      "metadata": {"lastModified": ..., "questCount": 3, "version": "0.1.0", "revision": 7}
    }
"""

from __future__ import annotations

import logging
from typing import Any, Iterator, Literal

from pydantic import Field, field_validator

from quest_manager.errors import CircularDependency, NotFound
from quest_manager.models import CamelModel, Quest, QuestStatus, utc_now

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DATA_VERSION = "0.1.0"

Position = Literal["before", "after"]


class GraphMetadata(CamelModel):
    last_modified: str = Field(default_factory=utc_now)
    quest_count: int = 0
    version: str = DATA_VERSION
    revision: int = 0


class GraphSnapshot(CamelModel):
    """Serialised form of the graph; every field is optional on input."""

    schema_version: int = SCHEMA_VERSION
    quests: dict[str, Quest] = Field(default_factory=dict)
    root_quest_ids: list[str] = Field(default_factory=list)
    metadata: GraphMetadata = Field(default_factory=GraphMetadata)

    @field_validator("quests", mode="before")
    @classmethod
    def fill_ids_from_keys(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        filled = {}
        for quest_id, record in value.items():
            if isinstance(record, dict) and not record.get("id"):
                record = {**record, "id": quest_id}
            filled[quest_id] = record
        return filled


class QuestGraph:
    def __init__(
        self,
        quests: dict[str, Quest] | None = None,
        root_quest_ids: list[str] | None = None,
        metadata: GraphMetadata | None = None,
        schema_version: int = SCHEMA_VERSION,
    ) -> None:
        self.schema_version = schema_version
        self._quests: dict[str, Quest] = dict(quests or {})
        self.root_quest_ids: list[str] = list(root_quest_ids or [])
        self.metadata = metadata or GraphMetadata(quest_count=len(self._quests))

    def __len__(self) -> int:
        return len(self._quests)

    def __contains__(self, quest_id: object) -> bool:
        return quest_id in self._quests

    def __iter__(self) -> Iterator[Quest]:
        return iter(self._quests.values())

    @property
    def revision(self) -> int:
        return self.metadata.revision

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_quest(self, quest_id: str | None) -> Quest | None:
        if quest_id is None:
            return None
        return self._quests.get(quest_id)

    def require(self, quest_id: str) -> Quest:
        quest = self._quests.get(quest_id)
        if quest is None:
            raise NotFound(quest_id)
        return quest

    def get_root_quests(self) -> list[Quest]:
        return self._resolve_sorted(self.root_quest_ids)

    def get_children(self, parent_id: str) -> list[Quest]:
        parent = self.get_quest(parent_id)
        if parent is None:
            return []
        return self._resolve_sorted(parent.children_ids)

    def _resolve_sorted(self, ids: list[str]) -> list[Quest]:
        quests = [self._quests[i] for i in ids if i in self._quests]
        return sorted(quests, key=lambda q: q.sort_order)

    def siblings_of(self, quest: Quest) -> list[Quest]:
        if quest.parent_id is None:
            return self.get_root_quests()
        return self.get_children(quest.parent_id)

    def descendant_ids(self, quest_id: str) -> list[str]:
        """Every quest below ``quest_id``, depth first."""
        result: list[str] = []
        visited = {quest_id}
        stack = list(reversed(self._children_of(quest_id)))
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            result.append(current)
            stack.extend(reversed(self._children_of(current)))
        return result

    def _children_of(self, quest_id: str) -> list[str]:
        quest = self._quests.get(quest_id)
        return list(quest.children_ids) if quest else []

    # ------------------------------------------------------------------
    # Forest invariant
    # ------------------------------------------------------------------

    def would_create_circular_dependency(
        self, quest_id: str, potential_parent_id: str
    ) -> bool:
        """True if making ``potential_parent_id`` the parent of ``quest_id`` closes a cycle.

        Walks the ancestor chain from the candidate parent. Re-visiting a node
        means the stored graph already holds a cycle, which also counts.
        """
        if quest_id == potential_parent_id:
            return True
        visited: set[str] = set()
        current: str | None = potential_parent_id
        while current:
            if current in visited or current == quest_id:
                return True
            visited.add(current)
            node = self._quests.get(current)
            current = node.parent_id if node else None
        return False

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_quest(self, quest: Quest) -> None:
        """Insert a quest and mirror its parent and blocking edges."""
        self._quests[quest.id] = quest
        self._attach(quest)
        self._sync_blocking(quest, previous_blocks=[], previous_blocked_by=[])
        self.update_metadata()

    def commit(self, staged: Quest) -> Quest:
        """Replace a live quest with a validated staged copy of it.

        Parent and blocking changes between the live and staged versions are
        mirrored onto the other quests.
        """
        live = self.require(staged.id)
        if staged.parent_id and self.would_create_circular_dependency(staged.id, staged.parent_id):
            raise CircularDependency(staged.id, staged.parent_id)
        self._quests[staged.id] = staged
        if staged.parent_id != live.parent_id:
            self._detach(staged.id, live.parent_id)
            self._attach(staged)
        self._sync_blocking(
            staged,
            previous_blocks=live.blocks_ids,
            previous_blocked_by=live.blocked_by_ids,
        )
        self.update_metadata()
        return staged

    def set_parent(self, quest_id: str, parent_id: str | None) -> Quest:
        quest = self.require(quest_id)
        if parent_id is not None:
            self.require(parent_id)
        staged = quest.model_copy(deep=True)
        staged.parent_id = parent_id
        return self.commit(staged)

    def place_beside(self, quest_id: str, target_id: str, position: Position) -> list[Quest]:
        """Move a quest next to ``target_id`` and renumber the sibling sort order."""
        target = self.require(target_id)
        quest = self.require(quest_id)
        if quest_id == target_id:
            return self.siblings_of(quest)
        if quest.parent_id != target.parent_id:
            quest = self.set_parent(quest_id, target.parent_id)
        siblings = [q for q in self.siblings_of(target) if q.id != quest_id]
        index = next(i for i, q in enumerate(siblings) if q.id == target_id)
        siblings.insert(index if position == "before" else index + 1, quest)
        for order, sibling in enumerate(siblings):
            sibling.sort_order = order
        self.update_metadata()
        return siblings

    def delete_quest(self, quest_id: str, *, cascade: bool = False) -> list[str]:
        """Remove a quest and scrub every reference to it.

        Children are promoted to roots, or deleted along with their parent when
        ``cascade`` is set. Returns the removed ids (empty if absent).
        """
        if quest_id not in self._quests:
            return []
        doomed = [quest_id] + (self.descendant_ids(quest_id) if cascade else [])
        doomed_set = set(doomed)
        for removed in doomed:
            del self._quests[removed]
        self.root_quest_ids = [r for r in self.root_quest_ids if r not in doomed_set]

        for other in self._quests.values():
            other.children_ids = [i for i in other.children_ids if i not in doomed_set]
            other.blocked_by_ids = [i for i in other.blocked_by_ids if i not in doomed_set]
            other.blocks_ids = [i for i in other.blocks_ids if i not in doomed_set]
            other.related_ids = [i for i in other.related_ids if i not in doomed_set]
            if other.parent_id in doomed_set:
                other.parent_id = None
                if other.id not in self.root_quest_ids:
                    self.root_quest_ids.append(other.id)

        self.update_metadata()
        logger.debug("deleted quests %s", doomed)
        return doomed

    def update_metadata(self) -> None:
        self.metadata.last_modified = utc_now()
        self.metadata.quest_count = len(self._quests)

    def _attach(self, quest: Quest) -> None:
        if quest.parent_id is None:
            if quest.id not in self.root_quest_ids:
                self.root_quest_ids.append(quest.id)
            return
        parent = self._quests.get(quest.parent_id)
        if parent is not None and quest.id not in parent.children_ids:
            parent.children_ids.append(quest.id)

    def _detach(self, quest_id: str, parent_id: str | None) -> None:
        if parent_id is None:
            self.root_quest_ids = [r for r in self.root_quest_ids if r != quest_id]
            return
        parent = self._quests.get(parent_id)
        if parent is not None:
            parent.children_ids = [c for c in parent.children_ids if c != quest_id]

    def _sync_blocking(
        self,
        quest: Quest,
        previous_blocks: list[str],
        previous_blocked_by: list[str],
    ) -> None:
        for other_id in set(previous_blocks) - set(quest.blocks_ids):
            other = self._quests.get(other_id)
            if other is not None:
                other.blocked_by_ids = [i for i in other.blocked_by_ids if i != quest.id]
        for other_id in quest.blocks_ids:
            other = self._quests.get(other_id)
            if other is not None and quest.id not in other.blocked_by_ids:
                other.blocked_by_ids.append(quest.id)

        for other_id in set(previous_blocked_by) - set(quest.blocked_by_ids):
            other = self._quests.get(other_id)
            if other is not None:
                other.blocks_ids = [i for i in other.blocks_ids if i != quest.id]
        for other_id in quest.blocked_by_ids:
            other = self._quests.get(other_id)
            if other is not None and quest.id not in other.blocks_ids:
                other.blocks_ids.append(quest.id)

    # ------------------------------------------------------------------
    # Queries over relations
    # ------------------------------------------------------------------

    def unlocked_by(self, completed_id: str) -> list[Quest]:
        """Quests blocked by ``completed_id`` whose blockers are now all completed."""
        unlocked = []
        for quest in self._quests.values():
            if completed_id not in quest.blocked_by_ids:
                continue
            blockers = [self._quests.get(b) for b in quest.blocked_by_ids]
            if all(b is not None and b.status == QuestStatus.COMPLETED.value for b in blockers):
                unlocked.append(quest)
        return unlocked

    def by_status(self) -> dict[str, list[Quest]]:
        buckets: dict[str, list[Quest]] = {s.value: [] for s in QuestStatus}
        for quest in self._quests.values():
            if quest.status in buckets:
                buckets[quest.status].append(quest)
        return buckets

    def integrity_errors(self) -> list[str]:
        """Diagnostics for forest, mirror and blocking-pair violations."""
        errors: list[str] = []
        for quest in self._quests.values():
            if quest.parent_id is None:
                if quest.id not in self.root_quest_ids:
                    errors.append(f"{quest.id} has no parent but is not a root")
            else:
                parent = self._quests.get(quest.parent_id)
                if parent is None:
                    errors.append(f"{quest.id} points to missing parent {quest.parent_id}")
                elif quest.id not in parent.children_ids:
                    errors.append(f"{parent.id} does not list child {quest.id}")
                if self.would_create_circular_dependency(quest.id, quest.parent_id):
                    errors.append(f"{quest.id} is part of a parent cycle")
            for child_id in quest.children_ids:
                child = self._quests.get(child_id)
                if child is None or child.parent_id != quest.id:
                    errors.append(f"{quest.id} lists {child_id} as child but is not its parent")
            for other_id in quest.blocks_ids:
                other = self._quests.get(other_id)
                if other is None or quest.id not in other.blocked_by_ids:
                    errors.append(f"{quest.id} blocks {other_id} without the inverse edge")
            for other_id in quest.blocked_by_ids:
                other = self._quests.get(other_id)
                if other is None or quest.id not in other.blocks_ids:
                    errors.append(f"{quest.id} is blocked by {other_id} without the inverse edge")
        for root_id in self.root_quest_ids:
            root = self._quests.get(root_id)
            if root is not None and root.parent_id is not None:
                errors.append(f"root {root_id} has a parent")
        return errors

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_snapshot(self) -> dict[str, Any]:
        snapshot = GraphSnapshot(
            schema_version=self.schema_version,
            quests=self._quests,
            root_quest_ids=self.root_quest_ids,
            metadata=self.metadata,
        )
        return snapshot.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_snapshot(cls, data: dict[str, Any] | None) -> QuestGraph:
        snapshot = GraphSnapshot.model_validate(data or {})
        return cls(
            quests=snapshot.quests,
            root_quest_ids=snapshot.root_quest_ids,
            metadata=snapshot.metadata,
            schema_version=snapshot.schema_version,
        )
