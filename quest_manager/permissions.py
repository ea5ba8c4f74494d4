"""Per-user capability checks.

Resolution is a strict three-tier override:

  1. a GM holds every capability, whatever is stored for them;
  2. an explicitly set per-user flag wins;
  3. otherwise the default flag applies (False when unset).

The policy is pure data. Persisting it and telling other clients about a
change is the caller's job (QuestOperations + SyncProtocol).
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from quest_manager.models import CamelModel, Capability

ALL_CAPABILITIES = tuple(c.value for c in Capability)

PRESETS: dict[str, dict[str, bool]] = {
    "view-only": {"view": True, "add": False, "edit": False, "changeStatus": False, "delete": False},
    "player": {"view": True, "add": False, "edit": False, "changeStatus": True, "delete": False},
    "contributor": {"view": True, "add": True, "edit": False, "changeStatus": True, "delete": False},
    "editor": {"view": True, "add": True, "edit": True, "changeStatus": True, "delete": False},
    "full": {"view": True, "add": True, "edit": True, "changeStatus": True, "delete": True},
}

DEFAULT_TARGET = "default"


def _default_permissions() -> dict[str, bool]:
    return dict(PRESETS["view-only"])


def capability_name(capability: Capability | str) -> str:
    """Normalise a capability to its wire name; raises ValueError if unknown."""
    return Capability(capability).value


class PermissionPolicy(CamelModel):
    default_permissions: dict[str, bool] = Field(default_factory=_default_permissions)
    user_permissions: dict[str, dict[str, bool]] = Field(default_factory=dict)

    def has_permission(
        self, user_id: str, capability: Capability | str, *, is_gm: bool = False
    ) -> bool:
        if is_gm:
            return True
        name = capability_name(capability)
        override = self.user_permissions.get(user_id, {})
        if name in override:
            return override[name]
        return self.default_permissions.get(name, False)

    def effective_permissions(self, user_id: str, *, is_gm: bool = False) -> dict[str, bool]:
        return {c: self.has_permission(user_id, c, is_gm=is_gm) for c in ALL_CAPABILITIES}

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def set_user_permission(self, user_id: str, capability: Capability | str, value: bool) -> None:
        self.user_permissions.setdefault(user_id, {})[capability_name(capability)] = value

    def set_all_user_permissions(self, user_id: str, full_set: dict[str, bool]) -> None:
        """Replace every override of ``user_id`` with ``full_set``."""
        self.user_permissions[user_id] = {
            capability_name(c): bool(v) for c, v in full_set.items()
        }

    def remove_user_permission(self, user_id: str, capability: Capability | str) -> None:
        """Drop one override so the default applies again."""
        override = self.user_permissions.get(user_id)
        if override is None:
            return
        override.pop(capability_name(capability), None)
        if not override:
            del self.user_permissions[user_id]

    def reset_user(self, user_id: str) -> bool:
        return self.user_permissions.pop(user_id, None) is not None

    def set_default_permission(self, capability: Capability | str, value: bool) -> None:
        self.default_permissions[capability_name(capability)] = value

    def apply_preset(self, preset: str, target: str = DEFAULT_TARGET) -> None:
        """Apply a named preset to the defaults or to a single user."""
        if preset not in PRESETS:
            raise ValueError(f"Unknown permission preset: {preset}")
        if target == DEFAULT_TARGET:
            self.default_permissions.update(PRESETS[preset])
        else:
            self.set_all_user_permissions(target, PRESETS[preset])

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_snapshot(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_snapshot(cls, data: dict[str, Any] | None) -> PermissionPolicy:
        return cls.model_validate(data or {})
