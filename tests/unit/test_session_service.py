"""
Unit Tests for SessionService and SessionHandle

Covers identity binding, re-entrancy within one execution context, commit
and close semantics, and probabilistic sweeping.
"""

import asyncio
import json
import threading
from unittest.mock import Mock, patch

import pytest

from api_sessions.config import SessionConfig
from api_sessions.exceptions import SessionClosedError
from api_sessions.file_session_store import FileSessionStore
from api_sessions.memory_session_store import MemorySessionStore
from api_sessions.session_service import (
    SessionHandle,
    SessionService,
    SessionState,
    deserialize_session,
    serialize_session,
)


class TestSerialization:
    def test_serialize_is_compact_json(self):
        assert serialize_session({"cart": 1}) == b'{"cart":1}'

    def test_deserialize(self):
        assert deserialize_session(b'{"cart":1}') == {"cart": 1}

    @pytest.mark.parametrize("content", [b"", b"not json", b"[1, 2]", b"\xff\xfe", b"42"])
    def test_unreadable_content_is_a_fresh_session(self, content):
        assert deserialize_session(content) == {}


class TestSessionHandle:
    """Test suite for SessionHandle."""

    @pytest.fixture
    def store(self, session_config):
        return FileSessionStore("1.2.3.4", session_config)

    def test_bind_loads_existing_content(self, store):
        store.write(b'{"user":"ana"}')
        handle = SessionHandle(store)
        assert handle.state is SessionState.UNBOUND

        handle.bind()

        assert handle.state is SessionState.BOUND
        assert handle["user"] == "ana"
        assert handle.key == "1.2.3.4"

    def test_unbound_handle_rejects_access(self, store):
        handle = SessionHandle(store)
        with pytest.raises(SessionClosedError):
            handle["anything"]

    def test_mapping_interface(self, store):
        handle = SessionHandle(store).bind()
        handle["a"] = 1
        handle.set("b", [1, 2])
        assert handle.get("a") == 1
        assert handle.get("missing", "default") == "default"
        assert "b" in handle
        assert len(handle) == 2
        assert sorted(handle) == ["a", "b"]
        del handle["a"]
        assert handle.to_dict() == {"b": [1, 2]}

    def test_set_rejects_values_that_cannot_be_stored(self, store):
        handle = SessionHandle(store).bind()
        with pytest.raises(TypeError, match="not JSON-serializable"):
            handle["tags"] = {1, 2}
        assert "tags" not in handle

    def test_changes_are_not_written_until_commit(self, store):
        handle = SessionHandle(store).bind()
        handle["cart"] = 1
        assert not store.exists()

        assert handle.commit() is True

        assert store.read() == b'{"cart":1}'

    def test_write_through_commits_each_change(self, store):
        handle = SessionHandle(store, write_through=True).bind()
        handle["cart"] = 1
        assert store.read() == b'{"cart":1}'
        del handle["cart"]
        assert store.read() == b"{}"

    def test_to_dict_is_a_copy(self, store):
        handle = SessionHandle(store).bind()
        snapshot = handle.to_dict()
        snapshot["x"] = 1
        assert "x" not in handle

    def test_close_commits_and_releases(self, store):
        released = Mock()
        handle = SessionHandle(store, on_release=released).bind()
        handle["cart"] = 2

        assert handle.close() is True

        assert handle.state is SessionState.CLOSED
        assert store.read() == b'{"cart":2}'
        released.assert_called_once_with(handle)
        with pytest.raises(SessionClosedError):
            handle["cart"]

    def test_close_twice_is_noop(self, store):
        released = Mock()
        handle = SessionHandle(store, on_release=released).bind()
        handle.close()
        assert handle.close() is True
        released.assert_called_once()

    def test_closed_handle_cannot_be_rebound(self, store):
        handle = SessionHandle(store).bind()
        handle.close()
        with pytest.raises(SessionClosedError):
            handle.bind()

    def test_close_reports_write_failure(self, store):
        handle = SessionHandle(store).bind()
        with patch.object(store, "write", return_value=False):
            assert handle.close() is False
        assert handle.state is SessionState.CLOSED

    def test_destroy(self, store):
        store.write(b'{"cart":1}')
        handle = SessionHandle(store).bind()

        assert handle.destroy() is True

        assert handle.state is SessionState.CLOSED
        assert not store.exists()

    def test_destroy_without_record_reports_failure(self, store):
        handle = SessionHandle(store).bind()
        assert handle.destroy() is False
        assert handle.state is SessionState.CLOSED

    def test_context_manager(self, store):
        with SessionHandle(store) as handle:
            handle["visits"] = 1
        assert handle.state is SessionState.CLOSED
        assert json.loads(store.read()) == {"visits": 1}


class TestSessionService:
    """Test suite for SessionService."""

    def test_start_resolves_identity(self, service, forwarded_environ):
        session = service.start(forwarded_environ, "checkout")
        assert session.key == "checkout_203.0.113.5"
        assert session.state is SessionState.BOUND
        assert session.store.path == service.config.session_dir / "checkout_203.0.113.5"

    def test_start_without_environ_uses_fallback(self, service):
        assert service.start().key == "0.0.0.0"

    def test_start_is_reentrant(self, service, forwarded_environ):
        first = service.start(forwarded_environ)
        first["cart"] = 1

        with patch.object(service.resolver, "resolve") as resolve:
            second = service.start({"REMOTE_ADDR": "9.9.9.9"})

        assert second is first
        assert second["cart"] == 1
        resolve.assert_not_called()

    def test_discriminators_bind_separately(self, service, forwarded_environ):
        plain = service.start(forwarded_environ)
        scoped = service.start(forwarded_environ, "api")
        assert plain is not scoped
        assert service.current() is plain
        assert service.current("api") is scoped
        assert service.current("other") is None

    def test_start_after_close_rebinds(self, service, forwarded_environ):
        first = service.start(forwarded_environ)
        first["cart"] = 3
        first.close()
        assert service.current() is None

        second = service.start(forwarded_environ)

        assert second is not first
        assert second["cart"] == 3

    def test_destroy_unbinds(self, service, forwarded_environ):
        session = service.start(forwarded_environ)
        session["cart"] = 1
        session.commit()

        assert session.destroy() is True
        assert service.current() is None
        assert service.start(forwarded_environ).to_dict() == {}

    def test_scope_commits_and_closes(self, service, forwarded_environ):
        with service.scope():
            session = service.start(forwarded_environ, "checkout")
            session["cart"] = 1

        assert session.state is SessionState.CLOSED
        assert service.current("checkout") is None
        stored = FileSessionStore("checkout_203.0.113.5", service.config).read()
        assert stored == b'{"cart":1}'

    def test_scope_closes_on_error(self, service, forwarded_environ):
        with pytest.raises(ValueError):
            with service.scope():
                session = service.start(forwarded_environ)
                session["partial"] = True
                raise ValueError("handler failed")
        assert session.state is SessionState.CLOSED

    def test_scope_closes_every_handle_when_one_fails(self, service):
        outer = service.start({"REMOTE_ADDR": "9.9.9.9"})
        with service.scope():
            broken = service.start({"REMOTE_ADDR": "1.1.1.1"}, "a")
            healthy = service.start({"REMOTE_ADDR": "1.1.1.1"}, "b")
            broken["items"] = []
            # Nested mutation bypasses the check in __setitem__
            broken["items"].append({1, 2})
            healthy["y"] = 1

        assert service.current() is outer
        assert healthy.state is SessionState.CLOSED
        assert FileSessionStore("b_1.1.1.1", service.config).read() == b'{"y":1}'

    def test_scope_does_not_leak_into_outer_context(self, service, forwarded_environ):
        outer = service.start(forwarded_environ)
        with service.scope():
            inner = service.start(forwarded_environ)
            assert inner is not outer
        assert service.current() is outer
        assert outer.state is SessionState.BOUND

    def test_threads_have_separate_bindings(self, service, forwarded_environ):
        main_handle = service.start(forwarded_environ)
        seen = {}

        def worker():
            seen["current"] = service.current()
            seen["started"] = service.start(forwarded_environ)

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert seen["current"] is None
        assert seen["started"] is not main_handle

    def test_async_tasks_have_separate_scopes(self, service):
        async def request(address):
            with service.scope():
                session = service.start({"REMOTE_ADDR": address})
                await asyncio.sleep(0)
                assert service.current() is session
                return session.key

        async def main():
            return await asyncio.gather(request("1.1.1.1"), request("2.2.2.2"))

        assert asyncio.run(main()) == ["1.1.1.1", "2.2.2.2"]

    def test_child_task_bindings_stay_in_child(self, service):
        async def child():
            return service.start({"REMOTE_ADDR": "2.2.2.2"}, "x")

        async def main():
            parent = service.start({"REMOTE_ADDR": "2.2.2.2"})
            child_handle = await asyncio.create_task(child())
            return parent, child_handle, service.current("x"), service.current()

        parent, child_handle, seen_x, seen_plain = asyncio.run(main())
        assert child_handle.key == "x_2.2.2.2"
        assert seen_x is None
        assert seen_plain is parent

    def test_sibling_tasks_do_not_share_bindings(self, service):
        async def request(address):
            session = service.start({"REMOTE_ADDR": address})
            await asyncio.sleep(0)
            return service.current() is session, session.key

        async def main():
            return await asyncio.gather(request("1.1.1.1"), request("2.2.2.2"))

        assert asyncio.run(main()) == [(True, "1.1.1.1"), (True, "2.2.2.2")]

    def test_memory_store_factory(self, session_config):
        cache = MemorySessionStore.create_cache(session_config)
        service = SessionService(
            session_config, store_factory=lambda key: MemorySessionStore(key, cache)
        )
        with service.scope():
            service.start({"REMOTE_ADDR": "1.2.3.4"})["cart"] = 5
        assert MemorySessionStore("1.2.3.4", cache).read() == b'{"cart":5}'

    def test_start_runs_sweep_by_probability(self, session_config):
        sweeper = Mock()
        session_config.gc_probability = 0.5
        service = SessionService(session_config, sweeper=sweeper)

        with patch("api_sessions.session_service.random.random", return_value=0.4):
            service.start({"REMOTE_ADDR": "1.1.1.1"})
        sweeper.sweep.assert_called_once_with(session_config.lifetime_seconds)

        with patch("api_sessions.session_service.random.random", return_value=0.6):
            service.start({"REMOTE_ADDR": "1.1.1.1"}, "other")
        sweeper.sweep.assert_called_once()

    def test_zero_probability_never_sweeps(self, service):
        with patch.object(service.sweeper, "sweep") as sweep:
            with patch("api_sessions.session_service.random.random", return_value=0.0):
                service.start()
        sweep.assert_not_called()

    def test_reentrant_start_does_not_sweep(self, session_config):
        sweeper = Mock()
        session_config.gc_probability = 1.0
        service = SessionService(session_config, sweeper=sweeper)
        service.start()
        service.start()
        assert sweeper.sweep.call_count == 1

    def test_write_through_config(self, temp_dir):
        config = SessionConfig(temp_dir=temp_dir, gc_probability=0.0, write_through=True)
        service = SessionService(config)
        session = service.start({"REMOTE_ADDR": "1.2.3.4"})
        session["cart"] = 1
        assert FileSessionStore("1.2.3.4", config).read() == b'{"cart":1}'
