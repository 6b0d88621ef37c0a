"""Periodic liveness checks: stale agents, stuck tasks, stale sessions and progress alerts."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from stringwork.models import AgentInstance, CollabState, Message, Role
from stringwork.service import CollabService, Triggerable
from stringwork.session_registry import SessionRegistry

DEFAULT_INTERVAL = 60.0
DEFAULT_HEARTBEAT_STALE_THRESHOLD = timedelta(minutes=5)
DEFAULT_TASK_STUCK_THRESHOLD = timedelta(minutes=10)
DEFAULT_SESSION_STALE_THRESHOLD = timedelta(minutes=5)
DEFAULT_PROGRESS_WARNING_THRESHOLD = timedelta(minutes=3)
DEFAULT_PROGRESS_CRITICAL_THRESHOLD = timedelta(minutes=5)

_WAIT_SLICE = 0.05
_WARNING = "warning"
_CRITICAL = "critical"
_SLA_EXCEEDED = "sla_exceeded"


def _since(now: datetime, when: Optional[datetime]) -> timedelta:
    """Time elapsed since ``when``; an unset time counts as infinitely long ago."""
    if when is None:
        return timedelta.max
    return now - when


def _round_seconds(td: timedelta) -> int:
    micros = td // timedelta(microseconds=1)
    sign = -1 if micros < 0 else 1
    seconds, rest = divmod(abs(micros), 1_000_000)
    if rest >= 500_000:
        seconds += 1
    return sign * seconds


def _format_duration(td: timedelta) -> str:
    """Render a duration rounded to whole seconds, e.g. ``4m0s`` or ``1h2m3s``."""
    seconds = _round_seconds(td)
    if seconds == 0:
        return "0s"
    sign = "-" if seconds < 0 else ""
    hours, rest = divmod(abs(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{sign}{minutes}m{secs}s"
    return f"{sign}{secs}s"


def find_instance_for_agent(state: CollabState, agent: str) -> Optional[AgentInstance]:
    """Instance whose ID is ``agent``, else the first whose agent type is ``agent``."""
    instances = state.agent_instances or {}
    if agent in instances:
        return instances[agent]
    return next(
        (inst for inst in instances.values() if inst is not None and inst.agent_type == agent),
        None,
    )


def join_parts(parts: Sequence[str]) -> str:
    """Join with ", " and put " and " before the last part."""
    if not parts:
        return ""
    if len(parts) == 1:
        return parts[0]
    return ", ".join(parts[:-1]) + " and " + parts[-1]


def _remove_task_from_instance(state: CollabState, task_id: int, agent: str) -> None:
    instances = state.agent_instances or {}

    def strip(inst: AgentInstance) -> None:
        inst.current_tasks = [tid for tid in inst.current_tasks or [] if tid != task_id]
        if not inst.current_tasks and inst.status == "busy":
            inst.status = "idle"

    direct = instances.get(agent)
    if direct is not None:
        strip(direct)
        return
    for inst in instances.values():
        if inst is not None and task_id in (inst.current_tasks or []):
            strip(inst)
            return


class Watchdog:
    """Monitors agent liveness and recovers from stuck states.

    Each cycle prunes stale sessions from the registry, marks dead workers
    offline, resets their in-progress tasks to pending and sends the driver
    progress, SLA and recovery messages.
    """

    def __init__(
        self,
        svc: CollabService,
        registry: SessionRegistry,
        logger: Optional[logging.Logger] = None,
        *,
        interval: float = DEFAULT_INTERVAL,
        heartbeat_stale_threshold: timedelta = DEFAULT_HEARTBEAT_STALE_THRESHOLD,
        task_stuck_threshold: timedelta = DEFAULT_TASK_STUCK_THRESHOLD,
        session_stale_threshold: timedelta = DEFAULT_SESSION_STALE_THRESHOLD,
        progress_warning_threshold: timedelta = DEFAULT_PROGRESS_WARNING_THRESHOLD,
        progress_critical_threshold: timedelta = DEFAULT_PROGRESS_CRITICAL_THRESHOLD,
        notifier: Optional[Triggerable] = None,
    ) -> None:
        self.svc = svc
        self.registry = registry
        self.interval = interval
        self.heartbeat_stale_threshold = heartbeat_stale_threshold
        self.task_stuck_threshold = task_stuck_threshold
        self.session_stale_threshold = session_stale_threshold
        self.progress_warning_threshold = progress_warning_threshold
        self.progress_critical_threshold = progress_critical_threshold
        self.notifier = notifier
        self._logger = logger or logging.getLogger(__name__)
        self._alerted_tasks: dict[int, str] = {}
        self._check_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop = threading.Event()
        self._done = threading.Event()
        self._started = False

    def start(self, cancel_event: threading.Event) -> None:
        """Run checks every interval until ``cancel_event`` is set or :meth:`stop` is called."""
        with self._state_lock:
            self._started = True
        self._logger.info(
            "Watchdog: started (interval=%s, heartbeat_stale=%s, task_stuck=%s, session_stale=%s)",
            _format_duration(timedelta(seconds=self.interval)),
            _format_duration(self.heartbeat_stale_threshold),
            _format_duration(self.task_stuck_threshold),
            _format_duration(self.session_stale_threshold),
        )
        try:
            while True:
                reason = self._wait_interval(cancel_event)
                if reason is not None:
                    self._logger.info("Watchdog: stopped%s", reason)
                    return
                self.check_once()
        finally:
            self._done.set()

    def stop(self) -> None:
        """Signal the loop to stop and wait for :meth:`start` to return."""
        self._stop.set()
        with self._state_lock:
            started = self._started
        if started:
            self._done.wait()

    def check_once(self) -> None:
        """Run one watchdog cycle."""
        with self._check_lock:
            self._check()

    def _wait_interval(self, cancel_event: threading.Event) -> Optional[str]:
        deadline = time.monotonic() + self.interval
        while True:
            if cancel_event.is_set():
                return " (context cancelled)"
            if self._stop.is_set():
                return ""
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            self._stop.wait(min(remaining, _WAIT_SLICE))

    def _is_agent_alive(
        self,
        agent: str,
        inst: Optional[AgentInstance],
        now: datetime,
        threshold: timedelta,
    ) -> bool:
        last = self.registry.last_activity_for_agent(agent)
        if last is not None and now - last <= threshold:
            return True
        if inst is not None and inst.instance_id != agent:
            last = self.registry.last_activity_for_agent(inst.instance_id)
            if last is not None and now - last <= threshold:
                return True
        if (
            self.registry.has_active_session(agent)
            and self.registry.last_activity_for_agent(agent) is None
        ):
            return True
        if inst is not None and inst.last_heartbeat is not None:
            if now - inst.last_heartbeat <= threshold:
                return True
        return False

    def _check(self) -> None:
        pruned_sessions = self._prune_stale_sessions()
        try:
            recovered_tasks, recovered_agents = self.svc.run(self._recover)
        except Exception as exc:
            self._logger.error("Watchdog: state mutation error: %s", exc)
            return

        anything = recovered_tasks > 0 or recovered_agents > 0 or pruned_sessions > 0
        if anything and self.notifier is not None:
            self.notifier.trigger()
        if anything:
            self._logger.info(
                "Watchdog: cycle complete — recovered %d task(s), %d agent(s), pruned %d session(s)",
                recovered_tasks,
                recovered_agents,
                pruned_sessions,
            )

    @staticmethod
    def _send_system(state: CollabState, to: str, content: str, now: datetime) -> None:
        state.messages.append(
            Message(
                id=state.next_msg_id,
                sender="system",
                recipient=to,
                content=content,
                timestamp=now,
            )
        )
        state.next_msg_id += 1

    def _recover(self, state: CollabState) -> tuple[int, int]:
        now = datetime.now(timezone.utc)
        instances = state.agent_instances or {}

        dead: set[str] = set()
        for instance_id, inst in instances.items():
            if inst is None or inst.role == Role.DRIVER or inst.last_heartbeat is None:
                continue
            if not self._is_agent_alive(instance_id, inst, now, self.heartbeat_stale_threshold):
                dead.add(instance_id)
                dead.add(inst.agent_type)

        recovered_tasks = 0
        for task in state.tasks:
            if task.status != "in_progress":
                continue
            agent_dead = task.assigned_to in dead
            task_stuck = _since(now, task.updated_at) > self.task_stuck_threshold
            if not agent_dead and not task_stuck:
                continue
            if not agent_dead:
                assignee = find_instance_for_agent(state, task.assigned_to)
                if self._is_agent_alive(
                    task.assigned_to, assignee, now, self.heartbeat_stale_threshold
                ):
                    continue
                reason = (
                    f"no progress for {_format_duration(self.task_stuck_threshold)} "
                    "and agent unresponsive"
                )
            else:
                reason = "agent heartbeat stale"

            self._logger.warning(
                "Watchdog: recovering stuck task #%d (%s) assigned to %s — %s",
                task.id,
                task.title,
                task.assigned_to,
                reason,
            )
            old_assignee = task.assigned_to
            task.status = "pending"
            task.updated_at = now
            if not task.result_summary:
                task.result_summary = f"Watchdog: reset to pending — {reason}"
            _remove_task_from_instance(state, task.id, old_assignee)
            recovered_tasks += 1

        recovered_agents = 0
        for instance_id, inst in instances.items():
            if inst is None or inst.role == Role.DRIVER or instance_id not in dead:
                continue
            if inst.status == "offline" and not inst.current_tasks:
                continue
            self._logger.warning(
                "Watchdog: marking agent %s as offline (last heartbeat: %s ago)",
                instance_id,
                _format_duration(_since(now, inst.last_heartbeat)),
            )
            inst.status = "offline"
            inst.current_tasks = []
            recovered_agents += 1

        driver = state.driver_id or "cursor"
        for task in state.tasks:
            if task.status != "in_progress":
                self._alerted_tasks.pop(task.id, None)
                continue
            self._check_progress(state, task, driver, now)

        if recovered_tasks > 0 or recovered_agents > 0:
            parts = []
            if recovered_tasks > 0:
                parts.append(f"{recovered_tasks} stuck task(s) reset to pending")
            if recovered_agents > 0:
                parts.append(f"{recovered_agents} stale agent(s) marked offline")
            content = (
                f"🔧 **Watchdog recovery**: {join_parts(parts)}. "
                "Check task list for tasks needing re-assignment."
            )
            self._send_system(state, driver, content, now)

        return recovered_tasks, recovered_agents

    def _check_progress(self, state: CollabState, task, driver: str, now: datetime) -> None:
        last_activity = task.last_progress_at or task.updated_at
        since_progress = _since(now, last_activity)

        if task.expected_duration_sec > 0:
            expected = timedelta(seconds=task.expected_duration_sec)
            since_start = _since(now, task.updated_at)
            if since_start > expected and self._alerted_tasks.get(task.id) != _SLA_EXCEEDED:
                self._alerted_tasks[task.id] = _SLA_EXCEEDED
                over_by = since_start - expected
                content = (
                    f"⏱️ **SLA exceeded**: Task #{task.id} ({task.title}) assigned to "
                    f"{task.assigned_to} has been running for {_format_duration(since_start)} "
                    f"(expected: {_format_duration(expected)}, over by {_format_duration(over_by)}). "
                    "Consider checking on the worker or cancelling."
                )
                self._send_system(state, driver, content, now)
                self._logger.warning(
                    "Watchdog: SLA exceeded for task #%d (%s over)",
                    task.id,
                    _format_duration(over_by),
                )

        level = self._alerted_tasks.get(task.id, "")
        if (
            since_progress > self.progress_critical_threshold
            and level not in (_CRITICAL, _SLA_EXCEEDED)
        ):
            self._alerted_tasks[task.id] = _CRITICAL
            content = (
                f"🔴 **Critical**: Worker {task.assigned_to} has not reported progress on task "
                f"#{task.id} ({task.title}) for {_format_duration(since_progress)}. "
                "The worker may be stuck. Consider cancelling with "
                f"`cancel_agent agent='{task.assigned_to}'`."
            )
            self._send_system(state, driver, content, now)
            self._logger.warning(
                "Watchdog: CRITICAL — no progress on task #%d for %s",
                task.id,
                _format_duration(since_progress),
            )
        elif since_progress > self.progress_warning_threshold and level == "":
            self._alerted_tasks[task.id] = _WARNING
            content = (
                f"⚠️ **Warning**: Worker {task.assigned_to} has not reported progress on task "
                f"#{task.id} ({task.title}) for {_format_duration(since_progress)}. "
                "The worker may be working on a long step, or could be stuck."
            )
            self._send_system(state, driver, content, now)
            self._logger.warning(
                "Watchdog: WARNING — no progress on task #%d for %s",
                task.id,
                _format_duration(since_progress),
            )

    def _prune_stale_sessions(self) -> int:
        now = datetime.now(timezone.utc)
        agents = self.registry.connected_agents()
        if not agents:
            return 0

        def find_dead(state: CollabState) -> list[str]:
            dead = []
            for agent in agents:
                if state.driver_id == agent:
                    continue
                inst = find_instance_for_agent(state, agent)
                if inst is not None and inst.role == Role.DRIVER:
                    continue
                if self._is_agent_alive(agent, inst, now, self.session_stale_threshold):
                    continue
                dead.append(agent)
            return dead

        pruned = 0
        for agent in dict.fromkeys(self.svc.query(find_dead)):
            session_id = self.registry.get_session_for_agent(agent)
            if not session_id:
                continue
            self._logger.info(
                "Watchdog: pruning stale session for agent %s (session=%s)", agent, session_id
            )
            self.registry.remove_session(session_id)
            pruned += 1
        return pruned