"""Pushing pair-update notifications when the signal file changes."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from stringwork.models import StateRepository

DEFAULT_DEBOUNCE = 0.2
DEFAULT_POLL_INTERVAL = 10.0
PAIR_UPDATE_METHOD = "notifications/pair_update"

_WAIT_SLICE = 0.05


@dataclass(frozen=True)
class PairUpdateParams:
    """Payload of a pair update notification."""

    unread_messages: int
    pending_tasks: int
    summary: str


class SpawnChecker(Protocol):
    """Wakes agents that have unread content; called when the signal changes."""

    def check(self) -> None:
        """Look for agents to start."""


class _SignalHandler(FileSystemEventHandler):
    def __init__(self, signal_name: str, callback: Callable[[], None]) -> None:
        super().__init__()
        self._signal_name = signal_name
        self._callback = callback

    def _handle(self, path: Any, is_directory: bool) -> None:
        if is_directory:
            return
        if os.path.basename(os.fsdecode(path)) == self._signal_name:
            self._callback()

    def on_created(self, event: Any) -> None:
        self._handle(event.src_path, event.is_directory)

    def on_modified(self, event: Any) -> None:
        self._handle(event.src_path, event.is_directory)

    def on_moved(self, event: Any) -> None:
        self._handle(event.dest_path, event.is_directory)


class Notifier:
    """Watches the signal file and notifies the connected agent of unread content.

    A file watcher reacts to changes quickly; a poll loop is the fallback.
    Each signal revision is acted on at most once.
    """

    def __init__(
        self,
        signal_path: "str | os.PathLike[str]",
        repo: StateRepository,
        get_agent: Callable[[], str],
        push_func: Callable[[str, PairUpdateParams], Any],
        logger: Optional[logging.Logger] = None,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        debounce: float = DEFAULT_DEBOUNCE,
        spawn_checker: Optional[SpawnChecker] = None,
    ) -> None:
        self.signal_path = os.fspath(signal_path)
        self.repo = repo
        self.get_agent = get_agent
        self.push_func = push_func
        self.poll_interval = poll_interval
        self.debounce = debounce
        self.spawn_checker = spawn_checker
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._push_lock = threading.Lock()
        self._last_pushed_rev = ""
        self._debounce_timer: Optional[threading.Timer] = None
        self._stop = threading.Event()
        self._done = threading.Event()
        self._started = False

    def start(self, cancel_event: threading.Event) -> None:
        """Watch and poll until ``cancel_event`` is set or :meth:`stop` is called."""
        with self._lock:
            self._started = True
        try:
            observer = self._start_observer()
            try:
                self._poll_loop(cancel_event)
            finally:
                if observer is not None:
                    observer.stop()
                    observer.join()
        finally:
            self._done.set()

    def stop(self) -> None:
        """Stop the notifier and wait for :meth:`start` to return."""
        self._stop.set()
        with self._lock:
            timer, self._debounce_timer = self._debounce_timer, None
            started = self._started
        if timer is not None:
            timer.cancel()
        if started:
            self._done.wait()

    def check_once(self) -> None:
        """Run one check-and-push cycle."""
        self._check_and_push()

    def trigger(self) -> None:
        """Schedule a check that ignores the last acted-on revision."""
        with self._lock:
            self._last_pushed_rev = ""
        self._trigger_debounced()

    def _start_observer(self) -> Optional[Any]:
        watch_dir = os.path.dirname(self.signal_path) or "."
        handler = _SignalHandler(os.path.basename(self.signal_path), self._on_signal_event)
        observer = Observer()
        try:
            observer.schedule(handler, watch_dir, recursive=False)
            observer.start()
        except (OSError, RuntimeError) as exc:
            self._logger.info("Notifier: watch of %s failed (%s), using poll-only", watch_dir, exc)
            return None
        return observer

    def _on_signal_event(self) -> None:
        if not self._stop.is_set():
            self._trigger_debounced()

    def _trigger_debounced(self) -> None:
        with self._lock:
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
            timer = threading.Timer(self.debounce, self._check_and_push)
            timer.daemon = True
            self._debounce_timer = timer
            timer.start()

    def _should_stop(self, cancel_event: threading.Event, seconds: float) -> bool:
        deadline = time.monotonic() + seconds
        while True:
            if cancel_event.is_set() or self._stop.is_set():
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._stop.wait(min(remaining, _WAIT_SLICE))

    def _poll_loop(self, cancel_event: threading.Event) -> None:
        while not self._should_stop(cancel_event, self.poll_interval):
            self._check_and_push()

    def _read_signal_revision(self) -> str:
        try:
            with open(self.signal_path, encoding="utf-8") as fh:
                return fh.read()
        except OSError:
            return ""

    def _mark_pushed(self, rev: str) -> None:
        with self._lock:
            self._last_pushed_rev = rev

    def _check_and_push(self) -> None:
        with self._push_lock:
            rev = self._read_signal_revision()
            if not rev:
                return
            with self._lock:
                if rev == self._last_pushed_rev:
                    return

            if self.spawn_checker is not None:
                self.spawn_checker.check()

            agent = self.get_agent()
            if not agent:
                self._mark_pushed(rev)
                return

            try:
                state = self.repo.load()
            except Exception as exc:
                self._logger.debug("Notifier: state load failed: %s", exc)
                return

            unread = sum(
                1
                for m in state.messages or []
                if m.recipient in (agent, "all") and not m.read
            )
            pending = sum(
                1
                for t in state.tasks or []
                if t.assigned_to in (agent, "any") and t.status == "pending"
            )
            if unread == 0 and pending == 0:
                self._mark_pushed(rev)
                return

            params = PairUpdateParams(
                unread_messages=unread,
                pending_tasks=pending,
                summary=_build_summary(unread, pending),
            )
            try:
                self.push_func(PAIR_UPDATE_METHOD, params)
            except Exception as exc:
                self._logger.warning("Notifier: push failed: %s", exc)
                return
            self._mark_pushed(rev)


def _build_summary(unread: int, pending: int) -> str:
    if unread > 0 and pending > 0:
        return f"{unread} new message(s), {pending} pending task(s)"
    if unread > 0:
        return f"{unread} new message(s)"
    return f"{pending} pending task(s)"