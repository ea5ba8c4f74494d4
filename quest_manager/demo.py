"""Create demo quests for development/testing."""

from quest_manager.graph import QuestGraph
from quest_manager.models import Quest, RewardItem
from quest_manager.permissions import PermissionPolicy
from quest_manager.storage import PERMISSIONS_KEY, QUEST_TREE_KEY, BlobStore

DEMO_QUESTS = [
    {
        "key": "hollow",
        "title": "The Dragon of Dragon's Hollow",
        "description": "A young dragon terrorises the village in the mountain pass. "
        "The elder wants it gone, but the villagers whisper that it was provoked.",
        "location": "Dragon's Hollow",
        "npcs": ["Elder Maren", "Tobin the Smith"],
        "status": "active",
        "rewards": "500 gold and the gratitude of the village",
        "reward_items": [
            {"item_ref": "item-dragonscale-shield", "display_name": "Dragonscale Shield"},
            {"item_ref": "item-gold-pouch", "display_name": "Pouch of Gold", "quantity": 5},
        ],
    },
    {
        "key": "tracks",
        "parent": "hollow",
        "title": "Follow the Scorched Tracks",
        "description": "Burnt trees lead up the northern slope.",
        "status": "completed",
        "completed_by": "actor-gareth",
    },
    {
        "key": "egg",
        "parent": "hollow",
        "title": "Find the Stolen Egg",
        "description": "Someone took the dragon's egg. Find out who, and why.",
        "status": "active",
        "blocked_by": ["tracks"],
    },
    {
        "key": "bargain",
        "parent": "hollow",
        "title": "Strike a Bargain",
        "description": "Return the egg and negotiate peace with the dragon.",
        "blocked_by": ["egg"],
    },
    {
        "key": "caravan",
        "title": "The Lost Caravan",
        "description": "A merchant caravan vanished on the road between two cities. "
        "Find the survivors and recover the cargo.",
        "location": "King's Road",
        "npcs": ["Merchant Ysolde"],
        "related": ["egg"],
    },
]


def create_demo_data(store: BlobStore, gm_user_id: str = "gm") -> QuestGraph:
    """Replace the stored quest tree and permissions with demo data."""
    graph = QuestGraph()
    ids: dict[str, str] = {}

    for entry in DEMO_QUESTS:
        quest = Quest.from_partial({
            "title": entry["title"],
            "description": entry.get("description", ""),
            "location": entry.get("location", ""),
            "npcs": entry.get("npcs", []),
            "status": entry.get("status", "known"),
            "rewards": entry.get("rewards", ""),
            "completed_by": entry.get("completed_by"),
            "reward_items": [RewardItem.model_validate(r) for r in entry.get("reward_items", [])],
            "parent_id": ids.get(entry.get("parent", "")),
            "blocked_by_ids": [ids[k] for k in entry.get("blocked_by", [])],
            "related_ids": [ids[k] for k in entry.get("related", [])],
        }, gm_user_id)
        quest.sort_order = len(graph.siblings_of(quest))
        graph.add_quest(quest)
        ids[entry["key"]] = quest.id

    permissions = PermissionPolicy()
    permissions.apply_preset("player")

    store.save(QUEST_TREE_KEY, graph.to_snapshot())
    store.save(PERMISSIONS_KEY, permissions.to_snapshot())
    return graph
