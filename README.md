# stringwork

`stringwork` is a library for coordinating a *driver* agent that hands work to
one or more *worker* agents. It keeps a shared collaboration state (messages,
tasks, agent instances) and provides the pieces that act on it.

## Modules

- `stringwork.models`: the `CollabState` record with `Message`, `Task`,
  `AgentInstance`, `RegisteredAgent` and `ProjectInfo`; the `Role` enum
  (`DRIVER`, `WORKER`); `WorkerConfig` and `OrchestrationConfig`; and the
  `StateRepository` (`load`, `save`) and `Policy` protocols you implement to
  supply storage and configuration.
- `stringwork.pruning`: `prune_messages(state, max_count, max_age_days)` drops
  messages older than the age limit and beyond the count limit (oldest first)
  and returns how many went; `ensure_state_maps(state)` replaces missing
  collections with empty ones and zero ID counters with 1.
- `stringwork.helpers`: `validate_agent` (raises `AgentValidationError`),
  `registered_agent_names`, `is_builtin_agent`, `get_builtin_agents`,
  `orchestration_agent_types`, `ensure_agent_instances` (seeds the driver and
  worker instances from an `OrchestrationConfig`), `refresh_heartbeats_on_startup`,
  `truncate`, `join_strings`, `escape_applescript` and `detect_project_info`
  (reads the git branch and origin URL by running `git` when the workspace has
  a `.git` directory).
- `stringwork.signal_file`: `touch_notify_signal(path)` writes a nanosecond
  timestamp to a file, creating parent directories; an empty path does nothing.
- `stringwork.session_registry`: `SessionRegistry`, a thread-safe map between
  session IDs and agent names with last-activity times and a `dashboard_url`
  property.
- `stringwork.service`: `CollabService.run(fn)` loads the state, fills in
  missing collections and agent instances, applies `fn`, saves, touches the
  policy's signal file and calls `trigger()` on its `notifier` if one is set.
  A failed load raises `StateLoadError` instead of writing an empty state.
  `CollabService.query(fn)` reads without saving and falls back to an empty
  state if loading fails. Both return what `fn` returned.
- `stringwork.orchestrator`: `capability_match_strategy`,
  `least_loaded_strategy`, `round_robin_strategy` (the last behaves as least
  loaded) and `TaskOrchestrator`, which picks a strategy by name
  (`least_loaded`, `round_robin`, anything else means capability matching) and
  `assign_task(task, state)` returns the chosen instance ID or `None`.
- `stringwork.notifier`: `Notifier` watches the signal file with `watchdog`
  (falling back to polling alone if the directory cannot be watched) and calls
  your push function with `"notifications/pair_update"` and a
  `PairUpdateParams` when the connected agent has unread messages or pending
  tasks. An optional `SpawnChecker` is called on every new revision.
- `stringwork.liveness`: `Watchdog`, plus `find_instance_for_agent` and
  `join_parts`.
- `stringwork.daemon`: `write_pid_file`, `read_pid_file`, `remove_pid_file`,
  `is_pid_alive`, `remove_stale_socket`, `is_daemon_running`,
  `wait_for_socket` (raises `TimeoutError`), the `daemon_lock` context manager
  (raises `FileExistsError` if the lock file is already there) and
  `DriverTracker`.
- `stringwork.proxy`: `ProxyBridge` and `run_proxy`, which relay
  line-delimited JSON-RPC from standard input to `POST /mcp` on a unix socket
  and write replies (plain JSON or `data:` lines of an event stream) to
  standard output, one per line. After the first reply carrying an
  `Mcp-Session-Id` header a background `GET` stream relays server
  notifications; at end of input a `DELETE` closes the session.

## Examples

Sessions:

```python
from stringwork.session_registry import SessionRegistry

registry = SessionRegistry()
registry.set_agent("session-1", "claude-code")
registry.touch_session("session-1")

assert registry.has_active_session("claude-code")
assert registry.get_session_for_agent("claude-code") == "session-1"

registry.remove_session("session-1")
assert registry.agent_count() == 0
```

State and helpers:

```python
from stringwork.models import AgentInstance, CollabState, Role
from stringwork.helpers import truncate, validate_agent
from stringwork.pruning import prune_messages

state = CollabState()
state.agent_instances["claude-code"] = AgentInstance(
    instance_id="claude-code", agent_type="claude-code", role=Role.WORKER,
)

validate_agent("claude-code", state, False, False)   # returns "claude-code"
validate_agent("any", state, True, False)             # "any" allowed here

print(truncate("hello world", 5))                     # hello...
removed = prune_messages(state, 1000, 30)             # 0: there are no messages
```

An empty or unknown agent name raises `AgentValidationError`.

Driver tracking in a daemon:

```python
from stringwork.daemon import DriverTracker

tracker = DriverTracker(grace=30.0)
tracker.driver_connected()
tracker.driver_disconnected()   # count is 0: the 30 s grace timer starts
tracker.wait(timeout=1.0)       # False; True once the grace period has run out
```

## Watchdog behaviour

`Watchdog(svc, registry, logger, *, interval, heartbeat_stale_threshold,
task_stuck_threshold, session_stale_threshold, progress_warning_threshold,
progress_critical_threshold, notifier)` runs `check_once()` every `interval`
seconds from `start(cancel_event)` until the event is set or `stop()` is
called. Each cycle:

- removes registry sessions of non-driver agents that show no sign of life;
- marks worker instances with stale heartbeats offline and clears their tasks;
- resets `in_progress` tasks to `pending` when their worker is dead, or when
  the task has not been updated within the stuck threshold and its assignee is
  not alive;
- sends the driver (or `cursor` when no driver is set) a warning, a critical
  alert or an SLA-exceeded message for in-progress tasks, each at most once
  per level; a task that leaves `in_progress` has its alerts forgotten;
- posts a recovery summary to the driver and triggers the notifier when
  anything was recovered or pruned.

An agent counts as alive if its session had activity within the threshold, if
it has a session with no activity recorded, or if its stored heartbeat is
within the threshold. Driver instances are never marked offline and driver
sessions are never pruned.

## What the package does not do

There is no command-line program and no server. The package does not provide
a storage back end for `StateRepository`, a configuration loader for `Policy`,
an HTTP or JSON-RPC server for the daemon to listen with, the tools agents
call, or a dashboard. `stringwork.daemon` has the housekeeping pieces for a
daemon but does not start one; `stringwork.proxy` is only the client side of
the socket.

## Requirements

Python 3.10 or later on a POSIX system (unix sockets). File watching uses the
`watchdog` library.

## Running the tests

Install the `test` extra and run `pytest` from the project directory.