"""Quest manager settings (saving, notifications, relation limits, sync)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from quest_manager.models import MAX_CHILDREN, MAX_RELATIONS

OrphanPolicy = Literal["promote", "cascade", "reject"]

CONFIG_FILENAME = "config.json"


class Settings(BaseModel):
    auto_save: bool = True
    save_interval: int = Field(default=5, ge=0, le=60)  # minutes, 0 = off
    enable_notifications: bool = True
    max_relations: int = Field(default=MAX_RELATIONS, ge=0)
    max_children: int = Field(default=MAX_CHILDREN, ge=0)
    orphan_policy: OrphanPolicy = "promote"
    sync_request_delay: float = Field(default=2.0, ge=0)  # seconds


def config_path(data_dir: Path) -> Path:
    return data_dir / CONFIG_FILENAME


def get_settings(data_dir: Path) -> Settings:
    """Read settings, returning defaults merged with stored values."""
    path = config_path(data_dir)
    stored: dict[str, Any] = {}
    if path.is_file():
        stored = json.loads(path.read_text())
    known = {k: v for k, v in stored.items() if k in Settings.model_fields}
    return Settings.model_validate(known)


def update_settings(data_dir: Path, fields: dict[str, Any]) -> Settings:
    """Merge fields into settings and persist. Returns the full settings."""
    current = get_settings(data_dir).model_dump()
    current.update({k: v for k, v in fields.items() if k in Settings.model_fields})
    settings = Settings.model_validate(current)
    data_dir.mkdir(parents=True, exist_ok=True)
    config_path(data_dir).write_text(settings.model_dump_json(indent=2))
    return settings
