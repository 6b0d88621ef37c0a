"""Daemon housekeeping: PID files, the start lock, socket probing and driver tracking."""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

_PROBE_TIMEOUT = 1.0
_INITIAL_INTERVAL = 0.05
_MAX_INTERVAL = 0.5


class DriverTracker:
    """Counts connected driver proxies and signals shutdown after the last one leaves.

    When the count drops to zero a grace timer starts; a new connection
    cancels it. Once the grace period expires :meth:`wait` returns ``True``.
    """

    def __init__(self, grace: float, logger: Optional[logging.Logger] = None) -> None:
        self.grace = grace
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._count = 0
        self._timer: Optional[threading.Timer] = None
        self._done = threading.Event()

    @property
    def count(self) -> int:
        """Number of currently open driver connections."""
        with self._lock:
            return self._count

    def driver_connected(self) -> None:
        """Record a new driver connection and cancel any pending grace period."""
        with self._lock:
            self._count += 1
            self._logger.info("Daemon: driver connection opened (count=%d)", self._count)
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
                self._logger.info("Daemon: grace period cancelled")

    def driver_disconnected(self) -> None:
        """Record a closed driver connection; start the grace period if none remain."""
        with self._lock:
            self._count -= 1
            self._logger.info("Daemon: driver connection closed (count=%d)", self._count)
            if self._count <= 0 and self._timer is None:
                timer = threading.Timer(self.grace, self._expire)
                timer.daemon = True
                self._timer = timer
                timer.start()
                self._logger.info("Daemon: grace period started (%ss)", self.grace)

    def _expire(self) -> None:
        self._logger.info("Daemon: grace period expired, signaling shutdown")
        self._done.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until shutdown is signalled or ``timeout`` passes; return whether it was."""
        return self._done.wait(timeout)


def write_pid_file(path: "str | os.PathLike[str]") -> None:
    """Write this process's PID to ``path``, creating parent directories."""
    path = os.fspath(path)
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, mode=0o755, exist_ok=True)
    with open(path, "w", encoding="ascii") as fh:
        fh.write(str(os.getpid()))


def remove_pid_file(path: "str | os.PathLike[str]") -> None:
    """Remove the PID file if it exists."""
    try:
        os.remove(path)
    except OSError:
        pass


def read_pid_file(path: "str | os.PathLike[str]") -> int:
    """Return the PID stored in ``path``; raises ``OSError`` or ``ValueError``."""
    with open(path, encoding="ascii") as fh:
        return int(fh.read().strip())


def is_pid_alive(pid: int) -> bool:
    """Whether a process with ``pid`` exists and can be signalled."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True


def remove_stale_socket(path: "str | os.PathLike[str]") -> None:
    """Remove a leftover socket file; a missing one is fine."""
    if not os.path.lexists(path):
        return
    os.remove(path)


def is_daemon_running(socket_path: "str | os.PathLike[str]") -> bool:
    """Whether something accepts connections on the unix socket."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(_PROBE_TIMEOUT)
    try:
        sock.connect(os.fspath(socket_path))
    except OSError:
        return False
    finally:
        sock.close()
    return True


def wait_for_socket(socket_path: "str | os.PathLike[str]", timeout: float) -> None:
    """Poll with backoff until the daemon socket answers; raise ``TimeoutError`` otherwise."""
    deadline = time.monotonic() + timeout
    interval = _INITIAL_INTERVAL
    while time.monotonic() < deadline:
        if is_daemon_running(socket_path):
            return
        time.sleep(interval)
        if interval < _MAX_INTERVAL:
            interval *= 2
    raise TimeoutError(f"daemon did not start within {timeout}s")


@contextmanager
def daemon_lock(path: "str | os.PathLike[str]") -> Iterator[str]:
    """Hold an exclusive lock file while starting the daemon.

    Raises ``FileExistsError`` if another process holds it. The file holds the
    owner's PID and is removed on exit.
    """
    path = os.fspath(path)
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, mode=0o755, exist_ok=True)
    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    try:
        os.write(fd, str(os.getpid()).encode("ascii"))
        yield path
    finally:
        os.close(fd)
        try:
            os.remove(path)
        except OSError:
            pass