"""Pydantic request/response models for API endpoints."""

from typing import Literal

from pydantic import BaseModel


class StatusBody(BaseModel):
    status: str


class CompleteBody(BaseModel):
    actor_ref: str


class MoveBody(BaseModel):
    parent_id: str | None = None
    target_id: str | None = None
    position: Literal["before", "after"] = "before"


class PresetBody(BaseModel):
    preset: str
    target: str = "default"


class SettingsBody(BaseModel):
    auto_save: bool | None = None
    save_interval: int | None = None
    enable_notifications: bool | None = None
    max_relations: int | None = None
    max_children: int | None = None
    orphan_policy: Literal["promote", "cascade", "reject"] | None = None
    sync_request_delay: float | None = None
