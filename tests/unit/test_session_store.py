"""
Tests for SessionStore.
"""

import threading
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from scribe.session_store import EvictionPolicy, IdleTimeoutPolicy, SessionStore


class TestAppendAndRead:
    """Sessions are created lazily and only ever appended to."""

    def test_unknown_session_reads_empty(self, store):
        assert store.read("nope") == ()
        assert store.read(None) == ()
        assert store.read("") == ()

    def test_first_append_creates_session(self, store):
        assert "s1" not in store
        count = store.append("s1", "hello")
        assert count == 1
        assert "s1" in store
        assert store.read("s1") == ("hello",)

    def test_entries_keep_arrival_order(self, store):
        for text in ["one", "two", "three"]:
            store.append("s1", text)
        assert store.read("s1") == ("one", "two", "three")

    def test_prefix_is_stable(self, store):
        """An earlier read is always a prefix of a later one."""
        store.append("s1", "a")
        before = store.read("s1")
        store.append("s1", "b")
        after = store.read("s1")
        assert after[:len(before)] == before

    def test_read_returns_snapshot(self, store):
        store.append("s1", "a")
        snapshot = store.read("s1")
        store.append("s1", "b")
        assert snapshot == ("a",)

    def test_sessions_are_isolated(self, store):
        store.append("s1", "mine")
        store.append("s2", "yours")
        assert store.read("s1") == ("mine",)
        assert store.read("s2") == ("yours",)
        assert sorted(store.session_ids()) == ["s1", "s2"]
        assert len(store) == 2

    def test_empty_text_is_an_entry(self, store):
        store.append("s1", "")
        assert store.read("s1") == ("",)

    def test_concurrent_appends_lose_nothing(self, store):
        def worker(n):
            for i in range(100):
                store.append("shared", f"{n}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        entries = store.read("shared")
        assert len(entries) == 800
        # Each writer's own entries stay in order
        for n in range(8):
            mine = [e for e in entries if e.startswith(f"{n}-")]
            assert mine == [f"{n}-{i}" for i in range(100)]


class TestEviction:
    """Eviction is an explicit policy; the default keeps everything."""

    def test_default_policy_keeps_everything(self):
        clock = [0.0]
        store = SessionStore(clock=lambda: clock[0])
        store.append("s1", "a")
        clock[0] = 10 ** 9
        assert store.evict() == []
        assert store.read("s1") == ("a",)

    def test_idle_timeout_drops_stale_sessions(self):
        clock = [0.0]
        store = SessionStore(eviction_policy=IdleTimeoutPolicy(60), clock=lambda: clock[0])
        store.append("old", "a")
        clock[0] = 30.0
        store.append("fresh", "b")

        clock[0] = 75.0
        assert store.evict() == ["old"]
        assert "old" not in store
        assert store.read("fresh") == ("b",)

    def test_append_never_evicts_its_own_session(self):
        clock = [0.0]
        store = SessionStore(eviction_policy=IdleTimeoutPolicy(10), clock=lambda: clock[0])
        store.append("s1", "a")
        clock[0] = 100.0
        store.append("s2", "b")  # evicts s1 on the way
        assert "s1" not in store
        assert store.read("s2") == ("b",)

    def test_custom_policy(self, store):
        class DropEverything(EvictionPolicy):
            def select(self, sessions, now):
                return list(sessions)

        store.eviction_policy = DropEverything()
        store.append("s1", "a")  # kept: it is the session being written
        assert store.evict() == ["s1"]
        assert len(store) == 0

    def test_idle_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            IdleTimeoutPolicy(0)
