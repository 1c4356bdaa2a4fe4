"""Active-connection accounting for the admission loop.

Every accepted connection is served by a forked worker process. The
tracker remembers which worker pids are still alive and flags the server
for shutdown once the last one has gone.

Worker termination reaches the parent as SIGCHLD. Signals of the same
kind coalesce, so the tracker never counts signals; it reaps children
with a non-blocking ``waitpid`` loop and decrements once per reaped
worker. The count can therefore neither drift nor go negative.
"""

from __future__ import annotations

import logging
import os
from typing import Callable

logger = logging.getLogger(__name__)

WaitPid = Callable[[int, int], tuple[int, int]]


class ActiveConnectionTracker:
    """Counts live connection workers and records the shutdown intent."""

    def __init__(self, waitpid: WaitPid = os.waitpid) -> None:
        self._waitpid = waitpid
        self._workers: set[int] = set()
        self._shutdown_requested = False

    @property
    def active(self) -> int:
        return len(self._workers)

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def add(self, pid: int) -> int:
        """Record a freshly spawned worker and return the new count.

        A new worker withdraws any pending shutdown intent; the server only
        stops at a count of zero.
        """
        self._workers.add(pid)
        self._shutdown_requested = False
        return self.active

    def worker_exited(self, pid: int) -> None:
        """Record the termination of one worker.

        Sets the shutdown intent when the count drops to zero. Pids that
        were never registered (or were already removed) are ignored.
        """
        if pid not in self._workers:
            logger.debug("Ignoring exit of untracked process %d", pid)
            return
        self._workers.discard(pid)
        logger.info("Active connections: %d", self.active)
        if not self._workers:
            self._shutdown_requested = True

    def reap(self) -> int:
        """Collect every terminated child without blocking.

        Returns:
            The number of children reaped.
        """
        reaped = 0
        while True:
            try:
                pid, status = self._waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                break
            if pid == 0:
                break
            reaped += 1
            logger.debug("Reaped worker %d (status %d)", pid, status)
            self.worker_exited(pid)
        return reaped
