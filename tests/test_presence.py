"""Tests for PresenceRegistry, SpamGuard and ModerationPolicy."""

import pytest

from realmrelay.devices import Device
from realmrelay.moderation import (
    ALLOW,
    BANNED_DEVICE,
    BLOCKED_NAME,
    ModerationLists,
    ModerationPolicy,
)
from realmrelay.presence import JoinOutcome, PresenceRegistry
from realmrelay.spam import SpamGuard


class TestPresenceRegistry:
    """Test join/leave bookkeeping."""

    def test_first_join_created(self):
        registry = PresenceRegistry()
        outcome = registry.on_join("u1", "Steve", Device.ANDROID, 0.0)
        assert outcome == JoinOutcome.CREATED
        assert "u1" in registry
        assert len(registry) == 1

    def test_repeated_join_is_duplicate(self):
        registry = PresenceRegistry()
        outcomes = [
            registry.on_join("u1", "Steve", Device.ANDROID, float(t)) for t in range(4)
        ]
        assert outcomes[0] == JoinOutcome.CREATED
        assert outcomes[1:] == [JoinOutcome.DUPLICATE_IGNORED] * 3
        assert len(registry) == 1

    def test_duplicate_does_not_refresh_session(self):
        registry = PresenceRegistry()
        registry.on_join("u1", "Steve", Device.ANDROID, 0.0)
        registry.on_join("u1", "Alex", Device.XBOX, 50.0)
        session = registry.get("u1")
        assert session.display_name == "Steve"
        assert session.device == Device.ANDROID
        assert session.joined_at == 0.0

    def test_leave_returns_session(self):
        registry = PresenceRegistry()
        registry.on_join("u1", "Steve", Device.IOS, 0.0)
        session = registry.on_leave("u1")
        assert session.display_name == "Steve"
        assert "u1" not in registry

    def test_leave_untracked_is_noop(self):
        registry = PresenceRegistry()
        assert registry.on_leave("ghost") is None
        assert registry.on_leave("ghost") is None

    def test_rapid_rejoin(self):
        registry = PresenceRegistry(rapid_threshold=9.0)
        registry.on_join("P1", "Steve", Device.ANDROID, 0.0)
        registry.on_leave("P1")
        assert registry.on_join("P1", "Steve", Device.ANDROID, 3.0) == JoinOutcome.RAPID_REJOIN
        assert "P1" in registry

    def test_rejoin_compares_previous_join_not_leave(self):
        registry = PresenceRegistry(rapid_threshold=9.0)
        registry.on_join("P1", "Steve", Device.ANDROID, 0.0)
        registry.on_leave("P1")
        # Left at ~8s, rejoined at 10s: 10s since previous join
        assert registry.on_join("P1", "Steve", Device.ANDROID, 10.0) == JoinOutcome.CREATED

    def test_rejoin_refreshes_device_and_timestamp(self):
        registry = PresenceRegistry(rapid_threshold=1.0)
        registry.on_join("u1", "Steve", Device.ANDROID, 0.0)
        registry.on_leave("u1")
        registry.on_join("u1", "Steve", Device.XBOX, 30.0)
        assert registry.get("u1").device == Device.XBOX
        assert registry.get("u1").joined_at == 30.0

    def test_list_in_join_order(self):
        registry = PresenceRegistry()
        registry.on_join("a", "A", Device.IOS, 0.0)
        registry.on_join("b", "B", Device.IOS, 1.0)
        registry.on_join("c", "C", Device.IOS, 2.0)
        assert [s.id for s in registry.list()] == ["a", "b", "c"]
        assert registry.most_recent().id == "c"

    def test_most_recent_empty(self):
        assert PresenceRegistry().most_recent() is None

    def test_reset_all_forgets_join_times(self):
        registry = PresenceRegistry(rapid_threshold=9.0)
        registry.on_join("u1", "Steve", Device.IOS, 0.0)
        registry.reset_all()
        assert len(registry) == 0
        assert registry.on_join("u1", "Steve", Device.IOS, 1.0) == JoinOutcome.CREATED


class TestSpamGuard:
    """Test flag-once suppression."""

    def test_flag_once(self):
        guard = SpamGuard()
        results = [guard.flag_once("u1") for _ in range(5)]
        assert results == [True, False, False, False, False]

    def test_clear_allows_new_flag(self):
        guard = SpamGuard()
        assert guard.flag_once("u1") is True
        guard.clear("u1")
        assert guard.flag_once("u1") is True
        assert guard.flag_once("u1") is False

    def test_flags_are_per_participant(self):
        guard = SpamGuard()
        assert guard.flag_once("u1") is True
        assert guard.flag_once("u2") is True
        assert guard.is_flagged("u1")

    def test_clear_all(self):
        guard = SpamGuard()
        guard.flag_once("u1")
        guard.flag_once("u2")
        guard.clear_all()
        assert len(guard) == 0

    def test_clear_unknown_is_noop(self):
        SpamGuard().clear("nobody")


class TestModerationPolicy:
    """Test allow/kick decisions."""

    @pytest.fixture
    def policy(self):
        return ModerationPolicy(
            ModerationLists.from_dict(
                {
                    "allow_list": ["Admin"],
                    "banned_devices": ["Windows x64"],
                    "block_list": ["Griefer"],
                }
            )
        )

    def test_allow(self, policy):
        assert policy.decide(Device.ANDROID, "Steve") == ALLOW
        assert not policy.decide(Device.ANDROID, "Steve").kick

    def test_banned_device(self, policy):
        decision = policy.decide(Device.WINDOWS_X64, "Steve")
        assert decision.kick
        assert decision.reason == BANNED_DEVICE

    def test_blocked_name(self, policy):
        assert policy.decide(Device.ANDROID, "Griefer").reason == BLOCKED_NAME

    def test_banned_device_checked_first(self, policy):
        assert policy.decide(Device.WINDOWS_X64, "Griefer").reason == BANNED_DEVICE

    def test_is_exempt(self, policy):
        assert policy.is_exempt("Admin")
        assert not policy.is_exempt("Steve")

    def test_lists_are_snapshots(self, policy):
        updated = policy.lists.with_entry("block", "Steve", True)
        assert "Steve" in updated.block_list
        assert "Steve" not in policy.lists.block_list

    def test_with_entry_remove(self, policy):
        updated = policy.lists.with_entry("device", "Windows x64", False)
        assert updated.banned_devices == frozenset()

    def test_with_entry_unknown_list(self, policy):
        with pytest.raises(KeyError):
            policy.lists.with_entry("nonsense", "x", True)

    def test_to_dict_round_trip(self, policy):
        assert ModerationLists.from_dict(policy.lists.to_dict()) == policy.lists
