"""Tests for binding and connection admission (no real forking)."""

from __future__ import annotations

import socket
from types import SimpleNamespace
from typing import Iterator
from unittest.mock import MagicMock, patch

import pytest

from shellrelay.config.settings import ServerConfig
from shellrelay.domain.models import UNKNOWN_HOST, UNKNOWN_SERVICE, describe_peer
from shellrelay.server.admission import CommandServer, ServerStartupError, WorkerSpawnError
from shellrelay.server.tracker import ActiveConnectionTracker


@pytest.fixture
def server() -> Iterator[CommandServer]:
    srv = CommandServer(ServerConfig(host="127.0.0.1", port=0), fork=MagicMock(return_value=4242))
    yield srv
    if srv.endpoint is not None:
        srv.endpoint.close()


class TestBind:
    def test_binds_ephemeral_port(self, server: CommandServer) -> None:
        endpoint = server.bind()
        assert endpoint.port > 0
        assert endpoint.host == "127.0.0.1"
        assert endpoint.sock.getsockname()[1] == endpoint.port

    def test_port_in_use_fails(self, server: CommandServer) -> None:
        taken = server.bind().port
        other = CommandServer(ServerConfig(host="127.0.0.1", port=taken))
        with pytest.raises(ServerStartupError, match="Could not bind"):
            other.bind()

    def test_resolution_failure(self) -> None:
        srv = CommandServer(ServerConfig(host="no-such-host.invalid"))
        with patch(
            "shellrelay.server.admission.socket.getaddrinfo",
            side_effect=socket.gaierror("Name or service not known"),
        ):
            with pytest.raises(ServerStartupError, match="getaddrinfo"):
                srv.bind()


class TestAdmit:
    def _connect(self, server: CommandServer) -> socket.socket:
        endpoint = server.bind()
        client = socket.create_connection(("127.0.0.1", endpoint.port), timeout=5.0)
        return client

    def test_spawn_increments_active_count(self, server: CommandServer) -> None:
        client = self._connect(server)
        try:
            server._admit(server.endpoint.sock)
            assert server.tracker.active == 1
            server._fork.assert_called_once_with()
        finally:
            client.close()

    def test_parent_releases_session_socket(self, server: CommandServer) -> None:
        client = self._connect(server)
        try:
            server._admit(server.endpoint.sock)
            # Parent closed its copy and no worker exists, so the peer sees EOF
            client.settimeout(5.0)
            assert client.recv(16) == b""
        finally:
            client.close()

    def test_fork_failure_is_fatal(self) -> None:
        server = CommandServer(
            ServerConfig(host="127.0.0.1", port=0),
            fork=MagicMock(side_effect=OSError("Resource temporarily unavailable")),
        )
        client = self._connect(server)
        try:
            with pytest.raises(WorkerSpawnError, match="Could not fork"):
                server._admit(server.endpoint.sock)
            assert server.tracker.active == 0
        finally:
            client.close()
            server.endpoint.close()

    def test_accept_failure_is_not_fatal(self, server: CommandServer) -> None:
        listener = MagicMock(spec=socket.socket)
        listener.accept.side_effect = ConnectionAbortedError("aborted")
        server._admit(listener)
        assert server.tracker.active == 0
        server._fork.assert_not_called()


class LoopStopped(Exception):
    pass


class ScriptedWaitPid:
    """Replays ``waitpid`` results, then reports that no children remain."""

    def __init__(self, results: list[tuple[int, int]]) -> None:
        self._results = list(results)

    def __call__(self, pid: int, options: int) -> tuple[int, int]:
        if not self._results:
            raise ChildProcessError("no children")
        return self._results.pop(0)


class ScriptedWait:
    """Stands in for ``CommandServer._wait`` with a fixed list of event batches."""

    def __init__(self, batches: list[list[str]]) -> None:
        self._batches = list(batches)
        self.calls = 0

    def __call__(self, selector: object) -> list:
        self.calls += 1
        if not self._batches:
            raise LoopStopped()
        return [(SimpleNamespace(data=name), 0) for name in self._batches.pop(0)]


class TestServe:
    def _prepare(
        self, server: CommandServer, waitpid_results: list[tuple[int, int]], batches: list[list[str]]
    ) -> ScriptedWait:
        server._tracker = ActiveConnectionTracker(waitpid=ScriptedWaitPid(waitpid_results))
        wait = ScriptedWait(batches)
        server._wait = wait
        server.bind()
        return wait

    def test_admission_after_last_exit_keeps_serving(self, server: CommandServer) -> None:
        # The last worker exits and a new connection arrives in the same wait
        wait = self._prepare(server, [(100, 0), (0, 0), (4242, 0)], [["wakeup", "listener"], []])
        server.tracker.add(100)
        client = socket.create_connection(("127.0.0.1", server.endpoint.port), timeout=5.0)
        try:
            assert server.serve() == 0
        finally:
            client.close()

        assert wait.calls == 2
        assert server.tracker.active == 0
        server._fork.assert_called_once_with()

    def test_timeout_without_intent_keeps_waiting(self, server: CommandServer) -> None:
        wait = self._prepare(server, [], [[], [], []])
        with pytest.raises(LoopStopped):
            server.serve()

        assert wait.calls == 4
        assert server.endpoint is None

    def test_timeout_reaps_and_exits_at_zero(self, server: CommandServer) -> None:
        wait = self._prepare(server, [(100, 0)], [[]])
        server.tracker.add(100)

        assert server.serve() == 0
        assert wait.calls == 1
        assert server.tracker.active == 0

    def test_exits_once_wakeup_reaps_last_worker(self, server: CommandServer) -> None:
        wait = self._prepare(server, [(0, 0), (0, 0), (100, 0)], [[], [], ["wakeup"]])
        server.tracker.add(100)

        assert server.serve() == 0
        assert wait.calls == 3
        assert server.tracker.active == 0


class TestDescribePeer:
    def test_lookup_failure_uses_placeholders(self) -> None:
        with patch(
            "shellrelay.domain.models.socket.getnameinfo",
            side_effect=socket.gaierror("Temporary failure in name resolution"),
        ):
            assert describe_peer(("10.0.0.1", 5555)) == (UNKNOWN_HOST, UNKNOWN_SERVICE)

    def test_loopback_resolves(self) -> None:
        host, service = describe_peer(("127.0.0.1", 5555))
        assert host and host != UNKNOWN_HOST
        assert service and service != UNKNOWN_SERVICE
