"""Command server for shellrelay.

Accepts TCP connections, forks a worker process per connection to run
the client's shell commands, and exits once all connections are gone.

Public API:
    CommandServer -- Admission loop owning the listening socket
    ConnectionWorker -- Request/response loop for one session
    ActiveConnectionTracker -- Live-worker accounting
"""

from shellrelay.server.admission import (
    CommandServer,
    ServerStartupError,
    WorkerSpawnError,
    run_server,
)
from shellrelay.server.executor import CommandExecutionError, run_command
from shellrelay.server.tracker import ActiveConnectionTracker
from shellrelay.server.worker import ConnectionWorker

__all__ = [
    "ActiveConnectionTracker",
    "CommandExecutionError",
    "CommandServer",
    "ConnectionWorker",
    "ServerStartupError",
    "WorkerSpawnError",
    "run_command",
    "run_server",
]
