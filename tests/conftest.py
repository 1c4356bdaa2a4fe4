"""Shared test fixtures for the shellrelay test suite.

Provides connected socket pairs for exercising the worker and client
without real networking, and helpers for running the server and client
as subprocesses in integration tests.
"""

from __future__ import annotations

import os
import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Callable, Iterator

import pytest

from shellrelay.domain.models import ConnectionSession

SRC_DIR = Path(__file__).resolve().parent.parent / "src"


# ---------------------------------------------------------------------------
# Socket Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def socket_pair() -> Iterator[tuple[socket.socket, socket.socket]]:
    """A connected (server side, client side) stream socket pair."""
    server_side, client_side = socket.socketpair()
    yield server_side, client_side
    for sock in (server_side, client_side):
        sock.close()


@pytest.fixture
def session(socket_pair: tuple[socket.socket, socket.socket]) -> ConnectionSession:
    """A ConnectionSession wrapping the server side of ``socket_pair``."""
    return ConnectionSession(sock=socket_pair[0], host="testhost", service="5555")


@pytest.fixture
def peer(socket_pair: tuple[socket.socket, socket.socket]) -> socket.socket:
    """The client side of ``socket_pair``."""
    return socket_pair[1]


def recv_all(sock: socket.socket, timeout: float = 5.0) -> bytes:
    """Read from ``sock`` until the other side closes it."""
    sock.settimeout(timeout)
    data = bytearray()
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            return bytes(data)
        data += chunk


@pytest.fixture
def read_until_closed() -> Callable[[socket.socket], bytes]:
    return recv_all


# ---------------------------------------------------------------------------
# Subprocess Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def free_port() -> int:
    """A TCP port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _subprocess_env() -> dict[str, str]:
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(
        p for p in (str(SRC_DIR), env.get("PYTHONPATH", "")) if p
    )
    env.pop("SHELLRELAY_SERVER__PORT", None)
    env.pop("SHELLRELAY_CLIENT__PORT", None)
    return env


def cli_command(*args: str) -> list[str]:
    return [sys.executable, "-m", "shellrelay.cli", *args]


@pytest.fixture
def start_server(tmp_path: Path) -> Iterator[Callable[..., subprocess.Popen]]:
    """Launch ``shellrelay server -v`` and wait until it reports listening on stdout."""
    procs: list[subprocess.Popen] = []

    def _start(port: int, timeout: float = 15.0) -> subprocess.Popen:
        proc = subprocess.Popen(
            cli_command("server", "-p", str(port), "-v"),
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            env=_subprocess_env(),
            cwd=tmp_path,
        )
        procs.append(proc)
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            line = proc.stdout.readline()
            if not line:
                pytest.fail(f"server exited early with status {proc.wait()}")
            if "Listening on port" in line:
                return proc
        pytest.fail("server did not start listening in time")

    yield _start

    for proc in procs:
        if proc.poll() is None:
            proc.kill()
        proc.wait()
        proc.stdout.close()


@pytest.fixture
def run_cli(tmp_path: Path) -> Callable[..., subprocess.CompletedProcess]:
    """Run ``shellrelay <args>`` to completion."""

    def _run(*args: str, stdin: str | None = None, timeout: float = 15.0) -> subprocess.CompletedProcess:
        return subprocess.run(
            cli_command(*args),
            input=stdin if stdin is not None else "",
            capture_output=True,
            text=True,
            env=_subprocess_env(),
            cwd=tmp_path,
            timeout=timeout,
        )

    return _run


@pytest.fixture
def run_client(run_cli: Callable[..., subprocess.CompletedProcess]) -> Callable[..., subprocess.CompletedProcess]:
    """Run ``shellrelay client`` to completion."""

    def _run(*args: str, **kwargs) -> subprocess.CompletedProcess:
        return run_cli("client", *args, **kwargs)

    return _run
