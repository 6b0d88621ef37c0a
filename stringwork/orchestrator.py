"""Choosing which worker instance gets a new task."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional, Sequence

from stringwork.models import AgentInstance, CollabState, Role, Task

Strategy = Callable[[Task, CollabState], Optional[AgentInstance]]


def _load(inst: AgentInstance) -> int:
    return len(inst.current_tasks or [])


def _available_workers(
    state: CollabState, required_caps: Sequence[str]
) -> Iterator[AgentInstance]:
    for inst in (state.agent_instances or {}).values():
        if inst is None or inst.role != Role.WORKER:
            continue
        if required_caps and not set(required_caps).issubset(inst.capabilities or []):
            continue
        if _load(inst) >= inst.max_tasks:
            continue
        yield inst


def _least_loaded(candidates: Iterator[AgentInstance]) -> Optional[AgentInstance]:
    best: Optional[AgentInstance] = None
    for inst in candidates:
        if best is None or _load(inst) < _load(best):
            best = inst
    return best


def capability_match_strategy(task: Task, state: CollabState) -> Optional[AgentInstance]:
    """Least loaded worker that has every required capability and the requested worker type."""
    candidates = (
        inst
        for inst in _available_workers(state, task.capabilities)
        if not task.worker_type or inst.agent_type == task.worker_type
    )
    return _least_loaded(candidates)


def least_loaded_strategy(task: Task, state: CollabState) -> Optional[AgentInstance]:
    """Worker with the fewest current tasks among those with the required capabilities."""
    return _least_loaded(_available_workers(state, task.capabilities))


def round_robin_strategy(task: Task, state: CollabState) -> Optional[AgentInstance]:
    """Without a rotating index this selects the least loaded worker."""
    return _least_loaded(_available_workers(state, task.capabilities))


_STRATEGIES: dict[str, Strategy] = {
    "least_loaded": least_loaded_strategy,
    "round_robin": round_robin_strategy,
}


class TaskOrchestrator:
    """Assigns tasks to workers using a named strategy.

    Known names are ``least_loaded`` and ``round_robin``; anything else selects
    capability matching.
    """

    def __init__(self, svc: Any, strategy_name: str) -> None:
        self.svc = svc
        self.strategy: Strategy = _STRATEGIES.get(strategy_name, capability_match_strategy)

    def assign_task(self, task: Task, state: CollabState) -> Optional[str]:
        """Assign ``task`` within the live ``state``; return the instance ID or ``None``."""
        if not state.driver_id:
            return None
        inst = self.strategy(task, state)
        if inst is None:
            return None
        task.assigned_to = inst.instance_id
        inst.current_tasks = [*(inst.current_tasks or []), task.id]
        inst.status = "busy"
        inst.last_heartbeat = datetime.now(timezone.utc)
        return inst.instance_id