"""Connection admission loop for the shellrelay server.

Owns the listening socket, forks one worker process per accepted
connection, and decides when the server stops.

Signal discipline: SIGCHLD is blocked for the whole life of the loop
except while it is waiting in ``select()``. The interpreter posts every
delivered signal number to a wakeup socket (``signal.set_wakeup_fd``),
which is registered in the same selector as the listening socket, so a
worker exit wakes the loop like any other event. The loop is the only
consumer of that channel and the only code that touches the tracker.
"""

from __future__ import annotations

import logging
import os
import selectors
import signal
import socket
from typing import Callable

from shellrelay.config.settings import ServerConfig
from shellrelay.domain.models import ConnectionSession, ListeningEndpoint, describe_peer
from shellrelay.server.executor import run_command
from shellrelay.server.tracker import ActiveConnectionTracker
from shellrelay.server.worker import CommandRunner, run_worker_process

logger = logging.getLogger(__name__)

_SIGCHLD = {signal.SIGCHLD}


class ServerStartupError(Exception):
    """Raised when the listening socket cannot be set up."""


class WorkerSpawnError(Exception):
    """Raised when a worker process cannot be forked."""


def _ignore_signal(signum: int, frame: object) -> None:
    """SIGCHLD handler. The wakeup socket carries the notification."""


class CommandServer:
    """Accepts connections and supervises their worker processes.

    Usage::

        server = CommandServer(ServerConfig(port=8888))
        server.bind()
        exit_code = server.serve()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        runner: CommandRunner = run_command,
        fork: Callable[[], int] = os.fork,
    ) -> None:
        self._config = config or ServerConfig()
        self._runner = runner
        self._fork = fork
        self._tracker = ActiveConnectionTracker()
        self._endpoint: ListeningEndpoint | None = None
        self._wakeup_r: socket.socket | None = None
        self._wakeup_w: socket.socket | None = None
        self._previous_handler: Callable | int = signal.SIG_DFL
        self._previous_wakeup_fd = -1

    @property
    def tracker(self) -> ActiveConnectionTracker:
        return self._tracker

    @property
    def endpoint(self) -> ListeningEndpoint | None:
        return self._endpoint

    def bind(self) -> ListeningEndpoint:
        """Resolve, bind and listen on the configured port."""
        config = self._config
        logger.info("Attempting to start service at port %d", config.port)
        try:
            candidates = socket.getaddrinfo(
                config.host or None,
                config.port,
                socket.AF_INET,
                socket.SOCK_STREAM,
                0,
                socket.AI_PASSIVE,
            )
        except socket.gaierror as e:
            raise ServerStartupError(f"Error in getaddrinfo(): {e}") from e

        last_error: OSError | None = None
        for family, socktype, proto, _, address in candidates:
            try:
                sock = socket.socket(family, socktype, proto)
            except OSError as e:
                last_error = e
                continue
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind(address)
                sock.listen(config.backlog)
            except OSError as e:
                last_error = e
                sock.close()
                continue
            host, port = sock.getsockname()[:2]
            self._endpoint = ListeningEndpoint(sock=sock, host=host, port=port)
            logger.info("Service started. Listening on port %d", port)
            return self._endpoint

        raise ServerStartupError(f"Could not bind to port {config.port}: {last_error}")

    def serve(self) -> int:
        """Run the admission loop until every admitted connection has ended.

        Returns:
            The process exit status (0).

        Raises:
            WorkerSpawnError: If a worker could not be forked.
        """
        if self._endpoint is None:
            self.bind()
        endpoint = self._endpoint

        self._install_signal_channel()
        selector = selectors.DefaultSelector()
        selector.register(endpoint.sock, selectors.EVENT_READ, "listener")
        selector.register(self._wakeup_r, selectors.EVENT_READ, "wakeup")

        try:
            while True:
                events = self._wait(selector)
                if not events:
                    # Covers a last worker exiting between two waits
                    self._tracker.reap()
                    if self._tracker.shutdown_requested:
                        break
                    continue

                for key, _ in events:
                    if key.data == "wakeup":
                        self._drain_wakeup()
                        self._tracker.reap()
                    else:
                        self._admit(endpoint.sock)

                if self._tracker.shutdown_requested and self._tracker.active == 0:
                    break
        finally:
            selector.close()
            self._shutdown()
        return 0

    def _wait(self, selector: selectors.BaseSelector) -> list:
        """Wait for events with SIGCHLD unblocked for the duration only."""
        signal.pthread_sigmask(signal.SIG_UNBLOCK, _SIGCHLD)
        try:
            return selector.select(timeout=self._config.poll_timeout)
        finally:
            signal.pthread_sigmask(signal.SIG_BLOCK, _SIGCHLD)

    def _admit(self, listener: socket.socket) -> None:
        try:
            conn, address = listener.accept()
        except OSError as e:
            logger.warning("accept() failed: %s", e)
            return

        host, service = describe_peer(address)
        logger.info("Received connection from %s:%s", host, service)
        session = ConnectionSession(sock=conn, host=host, service=service)

        try:
            pid = self._fork()
        except OSError as e:
            conn.close()
            raise WorkerSpawnError(f"Could not fork process: {e}") from e

        if pid == 0:
            run_worker_process(
                session,
                inherited=(listener, self._wakeup_r, self._wakeup_w),
                runner=self._runner,
                buffer_size=self._config.buffer_size,
                poll_timeout=self._config.poll_timeout,
            )

        # The session belongs to the worker now
        conn.close()
        logger.info("Active connections: %d", self._tracker.add(pid))

    def _install_signal_channel(self) -> None:
        self._wakeup_r, self._wakeup_w = socket.socketpair()
        self._wakeup_r.setblocking(False)
        self._wakeup_w.setblocking(False)
        signal.pthread_sigmask(signal.SIG_BLOCK, _SIGCHLD)
        self._previous_handler = signal.signal(signal.SIGCHLD, _ignore_signal) or signal.SIG_DFL
        self._previous_wakeup_fd = signal.set_wakeup_fd(
            self._wakeup_w.fileno(), warn_on_full_buffer=False
        )

    def _drain_wakeup(self) -> None:
        try:
            while self._wakeup_r.recv(4096):
                pass
        except BlockingIOError:
            pass

    def _shutdown(self) -> None:
        # Mop up any exited workers so none are left as zombies
        self._tracker.reap()
        logger.info("Shutting down server.")

        signal.set_wakeup_fd(self._previous_wakeup_fd)
        signal.signal(signal.SIGCHLD, self._previous_handler)
        signal.pthread_sigmask(signal.SIG_UNBLOCK, _SIGCHLD)
        for sock in (self._wakeup_r, self._wakeup_w):
            if sock is not None:
                sock.close()
        self._wakeup_r = self._wakeup_w = None

        if self._endpoint is not None:
            self._endpoint.close()
            self._endpoint = None


def run_server(config: ServerConfig, runner: CommandRunner = run_command) -> int:
    """Bind and serve; returns the process exit status."""
    server = CommandServer(config, runner=runner)
    server.bind()
    return server.serve()
