"""
Session Router Tests
"""
import threading
from datetime import datetime

import pytest

from chat_relay.core.exceptions import UnknownSession
from chat_relay.orchestration.session_router import SessionRouter


class TestJoinAndLeave:
    """Participant bookkeeping"""

    def test_join_creates_session(self, router, connected):
        connected("A")

        router.join("s1", "A")

        assert router.has_session("s1")
        assert router.participants_of("s1") == {"A"}
        assert router.session_of("A") == "s1"

    def test_join_is_idempotent(self, router, connected):
        connected("A")

        router.join("s1", "A")
        router.join("s1", "A")

        assert router.participants_of("s1") == {"A"}
        assert len(router) == 1

    def test_joining_new_session_leaves_previous(self, router, connected):
        connected("A", "B")
        router.join("s1", "A")
        router.join("s1", "B")

        router.join("s2", "A")

        assert "A" not in router.participants_of("s1")
        assert router.participants_of("s1") == {"B"}
        assert router.participants_of("s2") == {"A"}

    def test_last_participant_leaving_destroys_session(self, router, connected):
        connected("A")
        router.join("s1", "A")

        router.join("s2", "A")

        assert not router.has_session("s1")
        assert router.session_ids() == ["s2"]

    def test_leave_removes_from_all_sessions(self, router, connected):
        connected("A", "B")
        router.join("s1", "A")
        router.join("s1", "B")

        router.leave("A")

        assert router.participants_of("s1") == {"B"}
        assert router.session_of("A") is None

    def test_leave_unknown_connection_is_noop(self, router):
        router.leave("ghost")

        assert len(router) == 0

    def test_unknown_session_has_no_participants(self, router):
        assert router.participants_of("nope") == frozenset()

    def test_participants_snapshot_is_immutable(self, router, connected):
        connected("A", "B")
        router.join("s1", "A")
        snapshot = router.participants_of("s1")

        router.join("s1", "B")

        assert snapshot == {"A"}
        assert router.participants_of("s1") == {"A", "B"}


class TestRegistryIntegration:
    """Disconnects are pruned through the registry listener"""

    def test_unregister_prunes_membership(self, registry, router, connected):
        connected("A", "B")
        router.join("s1", "A")
        router.join("s1", "B")

        registry.unregister("A")

        assert router.participants_of("s1") == {"B"}
        assert router.session_of("A") is None

    def test_inactive_connections_filtered_from_snapshot(self, registry):
        # Router built without the listener still hides dead connections
        router = SessionRouter()
        router.registry = registry
        registry.register("A")
        registry.register("B")
        router.join("s1", "A")
        router.join("s1", "B")

        registry.unregister("B")

        assert router.participants_of("s1") == {"A"}

    def test_router_without_registry(self):
        router = SessionRouter()

        router.join("s1", "A")

        assert router.participants_of("s1") == {"A"}


class TestStamp:
    """Per-session id and timestamp allocation"""

    def test_stamp_unknown_session_raises(self, router):
        with pytest.raises(UnknownSession):
            router.stamp("nope")

    def test_ids_strictly_increase_and_timestamps_never_decrease(self, router, connected):
        connected("A")
        router.join("s1", "A")

        stamps = [router.stamp("s1") for _ in range(50)]

        ids = [int(message_id) for message_id, _ in stamps]
        timestamps = [timestamp for _, timestamp in stamps]
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)
        assert all(isinstance(t, datetime) for t in timestamps)
        assert all(a <= b for a, b in zip(timestamps, timestamps[1:]))

    def test_requested_id_kept_once_then_reassigned(self, router, connected):
        connected("A")
        router.join("s1", "A")

        first, _ = router.stamp("s1", requested_id="abc")
        second, _ = router.stamp("s1", requested_id="abc")

        assert first == "abc"
        assert second != "abc"
        assert second.isdigit()

    def test_generated_ids_skip_requested_ones(self, router, connected):
        connected("A")
        router.join("s1", "A")

        generated, _ = router.stamp("s1")
        taken = str(int(generated) + 1)
        router.stamp("s1", requested_id=taken)
        following, _ = router.stamp("s1")

        assert following != taken
        assert int(following) > int(generated)


class TestConcurrency:
    """Concurrent join/leave must not lose updates"""

    def test_concurrent_joins_all_recorded(self, registry, router):
        connection_ids = [f"c{i}" for i in range(200)]
        for connection_id in connection_ids:
            registry.register(connection_id)

        threads = [
            threading.Thread(target=router.join, args=("s1", connection_id))
            for connection_id in connection_ids
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert router.participants_of("s1") == set(connection_ids)

    def test_concurrent_leaves_empty_the_session(self, registry, router):
        connection_ids = [f"c{i}" for i in range(200)]
        for connection_id in connection_ids:
            registry.register(connection_id)
            router.join("s1", connection_id)

        threads = [
            threading.Thread(target=registry.unregister, args=(connection_id,))
            for connection_id in connection_ids
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert router.participants_of("s1") == frozenset()
        assert not router.has_session("s1")
