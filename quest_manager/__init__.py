"""Quest manager: hierarchical quests, per-user permissions and multi-client sync."""

__version__ = "0.1.0"
