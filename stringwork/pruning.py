"""Message retention and backfilling of missing state collections."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from stringwork.models import CollabState


def prune_messages(state: Optional[CollabState], max_count: int, max_age_days: int) -> int:
    """Drop messages older than ``max_age_days`` and beyond ``max_count``; return how many."""
    if state is None or not state.messages:
        return 0
    pruned = 0
    if max_age_days > 0:
        cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)
        kept = [m for m in state.messages if m.timestamp is not None and m.timestamp > cutoff]
        pruned += len(state.messages) - len(kept)
        state.messages = kept
    if max_count > 0 and len(state.messages) > max_count:
        excess = len(state.messages) - max_count
        state.messages = state.messages[excess:]
        pruned += excess
    return pruned


def ensure_state_maps(state: Optional[CollabState]) -> None:
    """Fill in missing collections and zero ID counters on ``state``."""
    if state is None:
        return
    for name in (
        "presence",
        "plans",
        "agent_contexts",
        "file_locks",
        "registered_agents",
        "agent_instances",
        "work_contexts",
    ):
        if getattr(state, name) is None:
            setattr(state, name, {})
    for name in ("session_notes", "messages", "tasks"):
        if getattr(state, name) is None:
            setattr(state, name, [])
    for name in ("next_msg_id", "next_task_id", "next_note_id"):
        if getattr(state, name) == 0:
            setattr(state, name, 1)