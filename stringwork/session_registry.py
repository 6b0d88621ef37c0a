"""Tracking of connected client sessions and the agents bound to them."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Optional


class SessionRegistry:
    """Thread-safe map between session IDs and agent names, with activity times."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, str] = {}
        self._agents: dict[str, str] = {}
        self._last_activity: dict[str, datetime] = {}
        self._dashboard_url = ""

    def set_agent(self, session_id: str, agent: str) -> None:
        """Bind ``session_id`` to ``agent``, dropping any older session of that agent."""
        with self._lock:
            old = self._agents.get(agent)
            if old is not None and old != session_id:
                self._sessions.pop(old, None)
                self._last_activity.pop(old, None)
            self._sessions[session_id] = agent
            self._agents[agent] = session_id
            self._last_activity[session_id] = datetime.now(timezone.utc)

    def get_agent(self, session_id: str) -> Optional[str]:
        """Agent bound to ``session_id``, or ``None``."""
        with self._lock:
            return self._sessions.get(session_id)

    def get_session_for_agent(self, agent: str) -> Optional[str]:
        """Session bound to ``agent``, or ``None``."""
        with self._lock:
            return self._agents.get(agent)

    def has_active_session(self, agent: str) -> bool:
        """Whether ``agent`` has a connected session."""
        with self._lock:
            return agent in self._agents

    def connected_agents(self) -> list[str]:
        """Names of all agents with a session."""
        with self._lock:
            return list(self._agents)

    def touch_session(self, session_id: str) -> None:
        """Record activity now for a known session."""
        with self._lock:
            if session_id in self._sessions:
                self._last_activity[session_id] = datetime.now(timezone.utc)

    def last_activity_for_agent(self, agent: str) -> Optional[datetime]:
        """Last activity time of ``agent``'s session, or ``None`` if it has none."""
        with self._lock:
            session_id = self._agents.get(agent)
            if session_id is None:
                return None
            return self._last_activity.get(session_id)

    def remove_session(self, session_id: str) -> None:
        """Forget ``session_id`` and the agent binding that points to it."""
        with self._lock:
            agent = self._sessions.pop(session_id, None)
            if agent is not None:
                self._agents.pop(agent, None)
            self._last_activity.pop(session_id, None)

    def agent_count(self) -> int:
        """Number of connected agents."""
        with self._lock:
            return len(self._agents)

    @property
    def dashboard_url(self) -> str:
        """Dashboard URL, empty until the HTTP listener is bound."""
        with self._lock:
            return self._dashboard_url

    @dashboard_url.setter
    def dashboard_url(self, url: str) -> None:
        with self._lock:
            self._dashboard_url = url

    def backdate_activity(self, session_id: str, when: datetime) -> None:
        """Set a known session's last activity to ``when``."""
        with self._lock:
            if session_id in self._sessions:
                self._last_activity[session_id] = when