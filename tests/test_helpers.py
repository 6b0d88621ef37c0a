import subprocess
from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest

from stringwork.helpers import (
    AgentValidationError,
    detect_project_info,
    ensure_agent_instances,
    escape_applescript,
    get_builtin_agents,
    is_builtin_agent,
    join_strings,
    orchestration_agent_types,
    refresh_heartbeats_on_startup,
    registered_agent_names,
    truncate,
    validate_agent,
)
from stringwork.models import (
    AgentInstance,
    CollabState,
    OrchestrationConfig,
    RegisteredAgent,
    Role,
    WorkerConfig,
)


@pytest.mark.parametrize(
    "text,max_len,expected",
    [
        ("hello", 10, "hello"),
        ("hello", 5, "hello"),
        ("hello world", 5, "hello..."),
        ("", 5, ""),
        ("你好世界", 2, "你好..."),
        ("こんにちは世界", 3, "こんに..."),
        ("hello 👋 world", 8, "hello 👋 ..."),
    ],
)
def test_truncate(text, max_len, expected):
    assert truncate(text, max_len) == expected


def _state_with_agents():
    state = CollabState()
    state.agent_instances = {
        "cursor": AgentInstance(agent_type="cursor"),
        "claude-code": AgentInstance(agent_type="claude-code"),
        "codex": AgentInstance(agent_type="codex"),
    }
    return state


@pytest.mark.parametrize(
    "agent,use_state,allow_any,allow_all,extra",
    [
        ("cursor", True, False, False, ()),
        ("claude-code", True, False, False, ()),
        ("codex", True, False, False, ()),
        ("any", False, True, False, ()),
        ("all", False, False, True, ()),
        ("custom-agent", False, False, False, ("custom-agent",)),
    ],
)
def test_validate_agent_valid(agent, use_state, allow_any, allow_all, extra):
    state = _state_with_agents() if use_state else None
    assert validate_agent(agent, state, allow_any, allow_all, *extra) == agent


@pytest.mark.parametrize(
    "agent,use_state,allow_any,allow_all,extra",
    [
        ("", False, False, False, ()),
        ("unknown", True, False, False, ()),
        ("cursor", False, False, False, ()),
        ("any", False, False, False, ()),
        ("all", False, False, False, ()),
        ("other", False, False, False, ("custom-agent",)),
    ],
)
def test_validate_agent_invalid(agent, use_state, allow_any, allow_all, extra):
    state = _state_with_agents() if use_state else None
    with pytest.raises(AgentValidationError):
        validate_agent(agent, state, allow_any, allow_all, *extra)


def test_validate_agent_matches_agent_type():
    state = CollabState()
    state.agent_instances = {"claude-code-1": AgentInstance(agent_type="claude-code")}
    assert validate_agent("claude-code", state, False, False) == "claude-code"


def test_is_builtin_agent():
    state = _state_with_agents()
    assert is_builtin_agent("cursor", state)
    assert is_builtin_agent("claude-code", state)
    assert not is_builtin_agent("unknown", state)
    assert not is_builtin_agent("cursor", None)


def test_get_builtin_agents():
    assert get_builtin_agents(None) == []
    agents = get_builtin_agents(_state_with_agents())
    assert len(agents) == 3
    assert set(agents) == {"cursor", "claude-code", "codex"}


def test_join_strings():
    assert join_strings([], ", ") == ""
    assert join_strings(["a"], ", ") == "a"
    assert join_strings(["a", "b", "c"], ", ") == "a, b, c"
    assert join_strings(["a", "b"], "-") == "a-b"


def test_detect_project_info_non_git_dir(tmp_path):
    info = detect_project_info(tmp_path)
    assert info.path == str(tmp_path)
    assert info.name == tmp_path.name
    assert info.is_git_repo is False
    assert info.git_branch == ""


def test_detect_project_info_git_dir(tmp_path):
    (tmp_path / ".git").mkdir()
    calls = []

    def fake_run(args, **kwargs):
        calls.append((args, kwargs.get("cwd")))
        if args[1] == "rev-parse":
            out = "main\n"
        else:
            out = "https://example.com/repo.git\n"
        return subprocess.CompletedProcess(args, 0, stdout=out, stderr="")

    with mock.patch("subprocess.run", side_effect=fake_run):
        info = detect_project_info(tmp_path)

    assert info.is_git_repo is True
    assert info.git_branch == "main"
    assert info.git_remote == "https://example.com/repo.git"
    assert calls[0] == (["git", "rev-parse", "--abbrev-ref", "HEAD"], str(tmp_path))


def test_detect_project_info_git_failure(tmp_path):
    (tmp_path / ".git").mkdir()
    error = subprocess.CalledProcessError(1, ["git"])
    with mock.patch("subprocess.run", side_effect=error):
        info = detect_project_info(tmp_path)
    assert info.is_git_repo is True
    assert info.git_branch == ""
    assert info.git_remote == ""


def test_registered_agent_names_nil():
    assert registered_agent_names(None) == []


def test_registered_agent_names_empty():
    assert registered_agent_names(CollabState()) == []


def test_registered_agent_names_with_agents():
    state = CollabState()
    state.registered_agents["bot-a"] = RegisteredAgent(name="bot-a")
    state.registered_agents["bot-b"] = RegisteredAgent(name="bot-b")
    names = registered_agent_names(state)
    assert len(names) == 2
    assert set(names) == {"bot-a", "bot-b"}


@pytest.mark.parametrize(
    "text,expected",
    [
        ("hello", "hello"),
        ('say "hello"', 'say \\"hello\\"'),
        ("path\\to", "path\\\\to"),
        ("line1\nline2", "line1\\nline2"),
        ('say "hello\nworld"', 'say \\"hello\\nworld\\"'),
    ],
)
def test_escape_applescript(text, expected):
    assert escape_applescript(text) == expected


def test_orchestration_agent_types():
    assert orchestration_agent_types(None) == ["cursor"]
    orch = OrchestrationConfig(
        driver="cursor",
        workers=[WorkerConfig(type="claude-code"), WorkerConfig(type="codex"), WorkerConfig(type="codex")],
    )
    assert sorted(orchestration_agent_types(orch)) == ["claude-code", "codex", "cursor"]


def test_ensure_agent_instances_seeds_from_orchestration():
    state = CollabState()
    orch = OrchestrationConfig(
        driver="cursor",
        workers=[
            WorkerConfig(type="claude-code", instances=2, max_concurrent_tasks=3, capabilities=["code-edit"]),
            WorkerConfig(type="codex", instances=0),
        ],
    )
    ensure_agent_instances(state, orch)
    assert state.driver_id == "cursor"
    assert set(state.agent_instances) == {"cursor", "claude-code-1", "claude-code-2", "codex"}
    driver = state.agent_instances["cursor"]
    assert driver.role is Role.DRIVER
    assert driver.status == "idle"
    assert "orchestrate" in driver.capabilities
    worker = state.agent_instances["claude-code-2"]
    assert worker.role is Role.WORKER
    assert worker.agent_type == "claude-code"
    assert worker.max_tasks == 3
    assert worker.status == "offline"
    assert worker.capabilities == ["code-edit"]
    assert state.agent_instances["codex"].max_tasks == 1


def test_ensure_agent_instances_is_idempotent():
    state = _state_with_agents()
    orch = OrchestrationConfig(driver="other", workers=[WorkerConfig(type="x")])
    ensure_agent_instances(state, orch)
    assert set(state.agent_instances) == {"cursor", "claude-code", "codex"}
    assert state.driver_id == ""


def test_ensure_agent_instances_without_orchestration():
    state = CollabState()
    ensure_agent_instances(state, None)
    assert state.agent_instances == {}


def test_refresh_heartbeats_on_startup():
    state = CollabState()
    stale = datetime.now(timezone.utc) - timedelta(hours=1)
    state.agent_instances["cursor"] = AgentInstance(
        instance_id="cursor", agent_type="cursor", role=Role.DRIVER, status="idle", last_heartbeat=stale
    )
    state.agent_instances["claude-code"] = AgentInstance(
        instance_id="claude-code", agent_type="claude-code", role=Role.WORKER,
        status="busy", current_tasks=[1], last_heartbeat=stale,
    )

    refresh_heartbeats_on_startup(state)

    now = datetime.now(timezone.utc)
    for inst in state.agent_instances.values():
        assert now - inst.last_heartbeat <= timedelta(seconds=1)
    assert state.agent_instances["claude-code"].status == "offline"
    assert state.agent_instances["claude-code"].current_tasks == []
    assert state.agent_instances["cursor"].status == "idle"