"""
Tests for the presence tracker.
"""
import random

from partysync.presence import PresenceTracker


class TestSnapshots:
    """Presence snapshots replace the online set."""

    def test_local_user_listed_before_first_snapshot(self):
        tracker = PresenceTracker("alice", local_watch_hours=1.5)
        assert tracker.names == ["alice"]
        assert tracker.get("alice").watch_hours == 1.5

    def test_full_replace_drops_absent_participants(self):
        tracker = PresenceTracker("alice")
        tracker.apply_snapshot(["alice", "bob", "carol"])
        tracker.apply_snapshot(["carol", "alice"])
        assert tracker.names == ["carol", "alice"]
        assert tracker.get("bob") is None

    def test_duplicates_are_collapsed(self):
        tracker = PresenceTracker("alice")
        tracker.apply_snapshot(["bob", "alice", "bob"])
        assert tracker.names == ["bob", "alice"]

    def test_new_participants_start_at_zero_and_local_at_own_value(self):
        tracker = PresenceTracker("alice", local_watch_hours=2.0)
        tracker.apply_snapshot([])
        tracker.apply_snapshot(["bob", "alice"])
        assert tracker.get("bob").watch_hours == 0.0
        assert tracker.get("alice").watch_hours == 2.0

    def test_host_is_first_in_snapshot(self):
        tracker = PresenceTracker("alice")
        tracker.apply_snapshot(["bob", "alice"])
        assert tracker.host == "bob"
        tracker.apply_snapshot([])
        assert tracker.host is None

    def test_known_watch_hours_survive_snapshots(self):
        tracker = PresenceTracker("alice")
        tracker.apply_snapshot(["alice", "bob"])
        tracker.apply_watch_hours("bob", 4.25)
        tracker.apply_snapshot(["bob", "alice", "dave"])
        assert tracker.get("bob").watch_hours == 4.25

    def test_hours_never_reset_while_online(self):
        rng = random.Random(7)
        names = ["alice", "bob", "carol", "dave", "erin"]
        tracker = PresenceTracker("alice")
        known = {}
        for _ in range(200):
            snapshot = rng.sample(names, rng.randint(0, len(names)))
            before = {p.display_name: p.watch_hours for p in tracker.participants}
            tracker.apply_snapshot(snapshot)
            for name in snapshot:
                if name in before:
                    assert tracker.get(name).watch_hours == before[name]
            if snapshot and rng.random() < 0.5:
                who = rng.choice(snapshot)
                if who != "alice":
                    known[who] = rng.uniform(0, 10)
                    tracker.apply_watch_hours(who, known[who])


class TestWatchHours:
    """Per-participant watch-time updates."""

    def test_update_for_unknown_sender_is_a_noop(self):
        tracker = PresenceTracker("alice")
        assert tracker.apply_watch_hours("zoe", 3.0) is False
        tracker.apply_snapshot(["alice", "zoe"])
        assert tracker.get("zoe").watch_hours == 0.0

    def test_negative_values_are_rejected(self):
        tracker = PresenceTracker("alice")
        tracker.apply_snapshot(["bob"])
        tracker.apply_watch_hours("bob", 1.0)
        assert tracker.apply_watch_hours("bob", -2.0) is False
        assert tracker.get("bob").watch_hours == 1.0

    def test_local_hours_follow_counter(self):
        tracker = PresenceTracker("alice")
        tracker.apply_snapshot(["bob"])
        tracker.note_local_watch_hours(0.5)
        assert tracker.get("alice").watch_hours == 0.5
        tracker.apply_snapshot(["bob"])
        tracker.apply_snapshot(["alice", "bob"])
        assert tracker.get("alice").watch_hours == 0.5

    def test_label_renders_hours(self):
        tracker = PresenceTracker("alice", local_watch_hours=1.26)
        assert tracker.participants[0].label() == "alice (1.3h)"
