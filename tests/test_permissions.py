"""Tests for quest_manager.permissions: three-tier resolution, presets."""

import pytest

from quest_manager.models import Capability
from quest_manager.permissions import ALL_CAPABILITIES, PRESETS, PermissionPolicy


class TestHasPermission:
    def test_defaults_are_view_only(self) -> None:
        policy = PermissionPolicy()
        assert policy.has_permission("alice", "view") is True
        assert policy.has_permission("alice", Capability.EDIT) is False

    def test_override_beats_default(self) -> None:
        policy = PermissionPolicy()
        policy.set_default_permission("edit", True)
        policy.set_user_permission("alice", "edit", False)
        assert policy.has_permission("alice", "edit") is False

    def test_removing_override_reverts_to_default(self) -> None:
        policy = PermissionPolicy()
        policy.set_default_permission("edit", True)
        policy.set_user_permission("alice", "edit", False)
        policy.remove_user_permission("alice", "edit")
        assert policy.has_permission("alice", "edit") is True
        assert "alice" not in policy.user_permissions

    def test_gm_bypasses_overrides(self) -> None:
        policy = PermissionPolicy()
        for capability in ALL_CAPABILITIES:
            policy.set_user_permission("gm", capability, False)
        for capability in ALL_CAPABILITIES:
            assert policy.has_permission("gm", capability, is_gm=True) is True

    def test_unset_default_is_false(self) -> None:
        policy = PermissionPolicy(default_permissions={})
        assert policy.has_permission("alice", "view") is False

    def test_override_only_affects_that_user(self) -> None:
        policy = PermissionPolicy()
        policy.set_user_permission("alice", "add", True)
        assert policy.has_permission("alice", "add") is True
        assert policy.has_permission("bob", "add") is False

    def test_unknown_capability_rejected(self) -> None:
        with pytest.raises(ValueError):
            PermissionPolicy().has_permission("alice", "fly")


class TestMutators:
    def test_set_all_replaces_overrides(self) -> None:
        policy = PermissionPolicy()
        policy.set_user_permission("alice", "delete", True)
        policy.set_all_user_permissions("alice", {"view": True, "add": True})
        assert policy.user_permissions["alice"] == {"view": True, "add": True}

    def test_reset_user(self) -> None:
        policy = PermissionPolicy()
        policy.set_user_permission("alice", "add", True)
        assert policy.reset_user("alice") is True
        assert policy.reset_user("alice") is False
        assert policy.has_permission("alice", "add") is False

    def test_remove_missing_override_is_noop(self) -> None:
        policy = PermissionPolicy()
        policy.remove_user_permission("nobody", "view")
        assert policy.user_permissions == {}

    def test_effective_permissions(self) -> None:
        policy = PermissionPolicy()
        policy.set_user_permission("alice", "changeStatus", True)
        assert policy.effective_permissions("alice") == {
            "view": True, "add": False, "edit": False, "changeStatus": True, "delete": False,
        }


class TestPresets:
    def test_preset_on_defaults(self) -> None:
        policy = PermissionPolicy()
        policy.apply_preset("editor")
        assert policy.default_permissions == PRESETS["editor"]

    def test_preset_on_user(self) -> None:
        policy = PermissionPolicy()
        policy.apply_preset("full", "alice")
        assert policy.effective_permissions("alice") == PRESETS["full"]
        assert policy.effective_permissions("bob") == PRESETS["view-only"]

    def test_unknown_preset(self) -> None:
        with pytest.raises(ValueError, match="Unknown permission preset"):
            PermissionPolicy().apply_preset("god-mode")


class TestSnapshot:
    def test_round_trip(self) -> None:
        policy = PermissionPolicy()
        policy.set_user_permission("alice", "edit", True)
        snapshot = policy.to_snapshot()
        assert set(snapshot) == {"defaultPermissions", "userPermissions"}
        assert PermissionPolicy.from_snapshot(snapshot) == policy

    def test_missing_snapshot_gives_defaults(self) -> None:
        assert PermissionPolicy.from_snapshot(None) == PermissionPolicy()
