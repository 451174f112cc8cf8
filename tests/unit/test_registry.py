"""
Tests for the raw connection registry.
"""

from pyreload.server.registry import ConnectionRegistry, connection_identity


class FakeTransport:
    """Minimal transport exposing peername and abort()."""

    def __init__(self, host: str = "127.0.0.1", port: int = 50000, peername=None):
        self.peername = peername if peername is not None else (host, port)
        self.aborted = False

    def get_extra_info(self, name, default=None):
        return self.peername if name == "peername" else default

    def abort(self):
        self.aborted = True


class TestConnectionIdentity:
    def test_ipv4(self):
        assert connection_identity(FakeTransport("10.0.0.1", 4242)) == "10.0.0.1:4242"

    def test_ipv6(self):
        transport = FakeTransport(peername=("::1", 4242, 0, 0))
        assert connection_identity(transport) == "::1:4242"

    def test_no_address_pair(self):
        transport = FakeTransport(peername="/tmp/reload.sock")
        assert connection_identity(transport).startswith("/tmp/reload.sock:")


class TestConnectionRegistry:
    """Tests for ConnectionRegistry."""

    def test_track_and_untrack(self):
        registry = ConnectionRegistry()
        transport = FakeTransport(port=50001)

        key = registry.track(transport)

        assert key == "127.0.0.1:50001"
        assert key in registry
        assert len(registry) == 1

        registry.untrack(key)

        assert key not in registry
        assert len(registry) == 0

    def test_untrack_unknown_key(self):
        """Removing a missing record is a no-op."""
        registry = ConnectionRegistry()

        registry.untrack("127.0.0.1:1")

        assert len(registry) == 0

    def test_same_identity_overwrites(self):
        """Last writer wins for a reused address:port."""
        registry = ConnectionRegistry()
        first = FakeTransport(port=50002)
        second = FakeTransport(port=50002)

        registry.track(first)
        registry.track(second)
        registry.terminate_all()

        assert len(registry) == 0
        assert second.aborted is True
        assert first.aborted is False

    def test_terminate_all(self):
        """Every tracked transport is aborted and the registry emptied."""
        registry = ConnectionRegistry()
        transports = [FakeTransport(port=51000 + i) for i in range(4)]
        for transport in transports:
            registry.track(transport)

        terminated = registry.terminate_all()

        assert terminated == 4
        assert all(t.aborted for t in transports)
        assert len(registry) == 0
        assert registry.keys() == []

    def test_terminate_all_empty(self):
        assert ConnectionRegistry().terminate_all() == 0

    def test_keys_is_a_snapshot(self):
        registry = ConnectionRegistry()
        registry.track(FakeTransport(port=52000))

        keys = registry.keys()
        keys.clear()

        assert len(registry) == 1
