"""Domain records for the collaboration state and the ports the application relies on."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol


class Role(str, Enum):
    """Role an agent instance plays in a session."""

    DRIVER = "driver"
    WORKER = "worker"


@dataclass
class Message:
    """A message between agents."""

    id: int = 0
    sender: str = ""
    recipient: str = ""
    content: str = ""
    timestamp: Optional[datetime] = None
    read: bool = False


@dataclass
class Task:
    """A unit of work that can be assigned to an agent."""

    id: int = 0
    title: str = ""
    description: str = ""
    assigned_to: str = ""
    status: str = ""
    created_by: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    result_summary: str = ""
    capabilities: list[str] = field(default_factory=list)
    worker_type: str = ""
    expected_duration_sec: int = 0
    progress_description: str = ""
    progress_percent: int = 0
    last_progress_at: Optional[datetime] = None


@dataclass
class AgentInstance:
    """A running (or expected) agent: the driver or one worker instance."""

    instance_id: str = ""
    agent_type: str = ""
    role: Optional[Role] = None
    capabilities: list[str] = field(default_factory=list)
    max_tasks: int = 0
    status: str = ""
    current_tasks: list[int] = field(default_factory=list)
    last_heartbeat: Optional[datetime] = None
    progress: str = ""
    progress_step: int = 0
    progress_total_steps: int = 0
    progress_updated_at: Optional[datetime] = None


@dataclass
class RegisteredAgent:
    """An agent that registered itself dynamically."""

    name: str = ""
    capabilities: list[str] = field(default_factory=list)
    registered_at: Optional[datetime] = None


@dataclass
class ProjectInfo:
    """What is known about the workspace project."""

    path: str = ""
    name: str = ""
    is_git_repo: bool = False
    git_branch: str = ""
    git_remote: str = ""
    last_updated: Optional[datetime] = None


@dataclass
class CollabState:
    """The full persisted collaboration state.

    Collections may be ``None`` when loaded from older data; see
    :func:`stringwork.pruning.ensure_state_maps`.
    """

    messages: Optional[list[Message]] = field(default_factory=list)
    tasks: Optional[list[Task]] = field(default_factory=list)
    presence: Optional[dict[str, Any]] = field(default_factory=dict)
    session_notes: Optional[list[Any]] = field(default_factory=list)
    plans: Optional[dict[str, Any]] = field(default_factory=dict)
    agent_contexts: Optional[dict[str, Any]] = field(default_factory=dict)
    file_locks: Optional[dict[str, Any]] = field(default_factory=dict)
    registered_agents: Optional[dict[str, RegisteredAgent]] = field(default_factory=dict)
    agent_instances: Optional[dict[str, Optional[AgentInstance]]] = field(default_factory=dict)
    work_contexts: Optional[dict[str, Any]] = field(default_factory=dict)
    next_msg_id: int = 1
    next_task_id: int = 1
    next_note_id: int = 1
    driver_id: str = ""
    active_plan_id: str = ""
    project_info: Optional[ProjectInfo] = None


@dataclass
class WorkerConfig:
    """Configuration of one worker type."""

    type: str = ""
    instances: int = 0
    max_concurrent_tasks: int = 0
    capabilities: list[str] = field(default_factory=list)


@dataclass
class OrchestrationConfig:
    """Driver and worker layout used to seed agent instances."""

    driver: str = ""
    workers: list[WorkerConfig] = field(default_factory=list)
    assignment_strategy: str = ""


class StateRepository(Protocol):
    """Loads and saves the full collaboration state."""

    def load(self) -> CollabState:
        """Return the current persisted state."""

    def save(self, state: CollabState) -> None:
        """Persist ``state``, replacing what was stored."""


class Policy(Protocol):
    """Configuration the application reads at run time."""

    message_retention_max: int
    message_retention_days: int
    presence_ttl_seconds: int
    state_file: str
    signal_file_path: str
    workspace_root: str
    orchestration: Optional[OrchestrationConfig]

    def is_tool_enabled(self, name: str) -> bool:
        """Return whether the named tool may be used."""

    def validate_path(self, path: str) -> str:
        """Return the absolute form of ``path`` or raise if it is not allowed."""