"""Connection worker: serves one client session end to end.

A worker runs inside its own forked process. It waits for a request,
runs it through the shell, writes the framed output back, and repeats
until the peer closes the connection or an I/O error occurs. Whatever
the reason the loop ends, the session socket is shut down and closed
exactly once, and the process exits. The exit itself is what the
admission loop observes (as SIGCHLD) to update its connection count.
"""

from __future__ import annotations

import logging
import os
import select
import signal
import socket
import sys
from typing import Callable, Iterable

from shellrelay.domain.models import ConnectionSession
from shellrelay.protocol.framing import DEFAULT_REQUEST_BUFFER, decode_request, encode_message
from shellrelay.server.executor import CommandExecutionError, run_command

logger = logging.getLogger(__name__)

DEFAULT_POLL_TIMEOUT = 3.0

# Peer half-close; only reported separately on Linux
POLLRDHUP = getattr(select, "POLLRDHUP", 0)

CommandRunner = Callable[[str], bytes]


class ConnectionWorker:
    """Runs the request/response loop for a single session.

    Usage::

        worker = ConnectionWorker(session)
        worker.serve()  # returns once the session is closed
    """

    def __init__(
        self,
        session: ConnectionSession,
        runner: CommandRunner = run_command,
        buffer_size: int = DEFAULT_REQUEST_BUFFER,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
    ) -> None:
        self._session = session
        self._runner = runner
        self._buffer_size = buffer_size
        self._poll_timeout_ms = int(poll_timeout * 1000)
        self._requests_served = 0
        self._closed = False

    @property
    def requests_served(self) -> int:
        return self._requests_served

    @property
    def is_closed(self) -> bool:
        return self._closed

    def serve(self) -> None:
        """Serve requests until the peer goes away, then tear down."""
        try:
            self._loop()
        finally:
            self._teardown()

    def _loop(self) -> None:
        sock = self._session.sock
        poller = select.poll()
        poller.register(sock.fileno(), select.POLLIN | select.POLLHUP | POLLRDHUP)

        while True:
            try:
                events = poller.poll(self._poll_timeout_ms)
            except OSError as e:
                logger.error("poll() failed for %s: %s", self._session.peer, e)
                return
            if not events:
                continue  # nothing happened before the timeout

            mask = events[0][1]
            if mask & select.POLLIN:
                if not self._handle_readable():
                    return
            elif mask & (select.POLLHUP | POLLRDHUP | select.POLLERR | select.POLLNVAL):
                logger.debug("Peer %s hung up", self._session.peer)
                return

    def _handle_readable(self) -> bool:
        """Read, execute and answer one request. Returns False to stop."""
        sock = self._session.sock
        try:
            data = sock.recv(self._buffer_size)
        except OSError as e:
            logger.error("recv() from %s failed: %s", self._session.peer, e)
            return False
        if not data:
            logger.debug("Peer %s closed the connection", self._session.peer)
            return False

        command = decode_request(data)
        logger.info("Read from client was: %s", command)

        try:
            output = self._runner(command)
        except CommandExecutionError as e:
            logger.error("%s", e)
            return False

        try:
            sock.sendall(encode_message(output))
        except OSError as e:
            logger.error("send() to %s failed: %s", self._session.peer, e)
            return False

        self._requests_served += 1
        return True

    def _teardown(self) -> None:
        if self._closed:
            return
        logger.info("Terminating connection from %s", self._session.peer)
        sock = self._session.sock
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already disconnected by the peer
            pass
        sock.close()
        self._closed = True


def run_worker_process(
    session: ConnectionSession,
    inherited: Iterable[socket.socket] = (),
    runner: CommandRunner = run_command,
    buffer_size: int = DEFAULT_REQUEST_BUFFER,
    poll_timeout: float = DEFAULT_POLL_TIMEOUT,
) -> None:
    """Entry point of a freshly forked worker process. Never returns.

    Args:
        session: The session this process now owns.
        inherited: Parent-only sockets (listener, wakeup channel) to close.
    """
    # Undo the admission loop's signal setup inherited through fork()
    signal.set_wakeup_fd(-1)
    signal.signal(signal.SIGCHLD, signal.SIG_DFL)
    signal.pthread_sigmask(signal.SIG_UNBLOCK, {signal.SIGCHLD})
    for sock in inherited:
        sock.close()

    status = 0
    try:
        ConnectionWorker(
            session,
            runner=runner,
            buffer_size=buffer_size,
            poll_timeout=poll_timeout,
        ).serve()
    except Exception:
        logger.exception("Worker for %s crashed", session.peer)
        status = 1
    finally:
        sys.stdout.flush()
        sys.stderr.flush()
        os._exit(status)
