"""Running use cases against the persisted collaboration state."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol, TypeVar

from stringwork.helpers import ensure_agent_instances
from stringwork.models import CollabState, Policy, StateRepository
from stringwork.pruning import ensure_state_maps
from stringwork.signal_file import touch_notify_signal

T = TypeVar("T")


class Triggerable(Protocol):
    """Something poked after every state write, such as the notifier."""

    def trigger(self) -> None:
        """React to a state change."""


class StateLoadError(RuntimeError):
    """The persisted state could not be loaded for a write."""


class CollabService:
    """Serialises loads, mutations and saves of the collaboration state."""

    def __init__(
        self,
        repo: StateRepository,
        policy: Policy,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repo = repo
        self._policy = policy
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self.notifier: Optional[Triggerable] = None

    @property
    def policy(self) -> Policy:
        """The policy this service was built with."""
        return self._policy

    def _prepare(self, state: CollabState) -> None:
        ensure_state_maps(state)
        ensure_agent_instances(state, self._policy.orchestration)

    def run(self, fn: Callable[[CollabState], T]) -> T:
        """Load the state, apply ``fn`` to it, save it and signal the change.

        A failed load raises :class:`StateLoadError`; the state is never replaced
        by an empty one for a write. An exception from ``fn`` propagates and
        nothing is saved. Returns what ``fn`` returned.
        """
        with self._lock:
            try:
                state = self._repo.load()
            except Exception as exc:
                raise StateLoadError(f"state load: {exc}") from exc
            self._prepare(state)
            result = fn(state)
            self._repo.save(state)
            try:
                touch_notify_signal(self._policy.signal_file_path)
            except OSError as exc:
                self._logger.debug("Could not touch signal file: %s", exc)
            notifier = self.notifier
        if notifier is not None:
            notifier.trigger()
        return result

    def query(self, fn: Callable[[CollabState], T]) -> T:
        """Load the state and apply ``fn`` without saving; returns what ``fn`` returned.

        If loading fails an empty state is used, since nothing is written back.
        """
        with self._lock:
            try:
                state = self._repo.load()
            except Exception as exc:
                self._logger.warning(
                    "Warning: state load failed in query: %s (using empty state)", exc
                )
                state = CollabState()
            self._prepare(state)
            return fn(state)