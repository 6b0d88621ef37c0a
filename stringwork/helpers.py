"""Agent validation, instance seeding and small text utilities."""

from __future__ import annotations

import os
import subprocess
from datetime import datetime, timezone
from typing import Iterable, Optional

from stringwork.models import (
    AgentInstance,
    CollabState,
    OrchestrationConfig,
    ProjectInfo,
    Role,
)

_DRIVER_CAPABILITIES = ("orchestrate", "code-edit", "code-review", "search", "terminal")


class AgentValidationError(ValueError):
    """Raised when an agent identifier is missing or not known."""


def truncate(s: str, max_len: int) -> str:
    """Cut ``s`` to ``max_len`` characters, appending ``...`` when shortened."""
    if len(s) <= max_len:
        return s
    return s[:max_len] + "..."


def _known_instance(agent: str, state: Optional[CollabState]) -> bool:
    if state is None or not state.agent_instances:
        return False
    if agent in state.agent_instances:
        return True
    return any(
        inst is not None and inst.agent_type == agent
        for inst in state.agent_instances.values()
    )


def validate_agent(
    agent: str,
    state: Optional[CollabState],
    allow_any: bool,
    allow_all: bool,
    *args: str,
) -> str:
    """Return ``agent`` if it is allowed, else raise :class:`AgentValidationError`.

    Known agents are the instance IDs and agent types in ``state`` plus any
    extra names given positionally after ``allow_all``.
    """
    if not agent:
        raise AgentValidationError("agent identifier is required")
    if allow_all and agent == "all":
        return agent
    if allow_any and agent == "any":
        return agent
    if _known_instance(agent, state) or agent in args:
        return agent
    raise AgentValidationError(f"unknown agent {agent!r}")


def registered_agent_names(state: Optional[CollabState]) -> list[str]:
    """Names of all dynamically registered agents."""
    if state is None or not state.registered_agents:
        return []
    return list(state.registered_agents)


def is_builtin_agent(agent: str, state: Optional[CollabState]) -> bool:
    """Whether ``agent`` is a known instance ID or agent type in ``state``."""
    return _known_instance(agent, state)


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


def get_builtin_agents(state: Optional[CollabState]) -> list[str]:
    """Unique agent types present in ``state``'s agent instances."""
    if state is None or not state.agent_instances:
        return []
    return _unique(inst.agent_type for inst in state.agent_instances.values() if inst is not None)


def orchestration_agent_types(orch: Optional[OrchestrationConfig]) -> list[str]:
    """Driver plus unique worker types from ``orch``; ``["cursor"]`` when there is none."""
    if orch is None:
        return ["cursor"]
    return _unique([orch.driver, *(w.type for w in orch.workers)])


def ensure_agent_instances(state: Optional[CollabState], orch: Optional[OrchestrationConfig]) -> None:
    """Seed agent instances from ``orch`` unless ``state`` already has some."""
    if state is None or state.agent_instances:
        return
    if orch is None:
        return
    if state.agent_instances is None:
        state.agent_instances = {}
    now = datetime.now(timezone.utc)
    state.driver_id = orch.driver
    state.agent_instances[orch.driver] = AgentInstance(
        instance_id=orch.driver,
        agent_type=orch.driver,
        role=Role.DRIVER,
        capabilities=list(_DRIVER_CAPABILITIES),
        max_tasks=0,
        status="idle",
        last_heartbeat=now,
    )
    for worker in orch.workers:
        count = worker.instances if worker.instances > 0 else 1
        max_tasks = worker.max_concurrent_tasks if worker.max_concurrent_tasks > 0 else 1
        for number in range(1, count + 1):
            instance_id = f"{worker.type}-{number}" if count > 1 else worker.type
            state.agent_instances[instance_id] = AgentInstance(
                instance_id=instance_id,
                agent_type=worker.type,
                role=Role.WORKER,
                capabilities=list(worker.capabilities),
                max_tasks=max_tasks,
                status="offline",
                current_tasks=[],
                last_heartbeat=now,
            )


def refresh_heartbeats_on_startup(state: Optional[CollabState]) -> None:
    """Reset heartbeats to now and mark workers offline with no current tasks."""
    if state is None or not state.agent_instances:
        return
    now = datetime.now(timezone.utc)
    for inst in state.agent_instances.values():
        if inst is None:
            continue
        inst.last_heartbeat = now
        if inst.role == Role.WORKER:
            inst.status = "offline"
            inst.current_tasks = []


def join_strings(strs: Iterable[str], sep: str) -> str:
    """Join ``strs`` with ``sep``."""
    return sep.join(strs)


_APPLESCRIPT_ESCAPES = str.maketrans({"\\": "\\\\", '"': '\\"', "\n": "\\n"})


def escape_applescript(s: str) -> str:
    """Escape backslashes, double quotes and newlines for an AppleScript string."""
    return s.translate(_APPLESCRIPT_ESCAPES)


def _run_git(directory: str, *args: str) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=directory,
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return result.stdout


def detect_project_info(workspace_path: "str | os.PathLike[str]") -> ProjectInfo:
    """Describe the project at ``workspace_path``, including git branch and origin if any."""
    path = os.fspath(workspace_path)
    info = ProjectInfo(
        path=path,
        name=os.path.basename(os.path.normpath(path)),
        last_updated=datetime.now(timezone.utc),
    )
    if os.path.isdir(os.path.join(path, ".git")):
        info.is_git_repo = True
        branch = _run_git(path, "rev-parse", "--abbrev-ref", "HEAD")
        if branch is not None:
            info.git_branch = branch.strip()
        remote = _run_git(path, "config", "--get", "remote.origin.url")
        if remote is not None:
            info.git_remote = remote.strip()
    return info