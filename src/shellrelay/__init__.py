"""shellrelay -- Minimal remote shell command relay over TCP.

A server forks one worker process per accepted connection; each worker
reads NUL-terminated commands, runs them in the system shell, and sends
the captured output back terminated by the same sentinel byte. The server
shuts itself down once every connection it admitted has ended.
"""

__version__ = "0.1.0"
