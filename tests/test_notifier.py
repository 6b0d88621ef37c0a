import threading
import time

import pytest

from stringwork.models import CollabState, Message, Task
from stringwork.notifier import Notifier, PairUpdateParams
from stringwork.signal_file import touch_notify_signal


class MemoryRepo:
    def __init__(self, state=None):
        self.state = state
        self.lock = threading.Lock()

    def load(self):
        with self.lock:
            return self.state if self.state is not None else CollabState()

    def save(self, state):
        with self.lock:
            self.state = state


class Recorder:
    def __init__(self, failures=0):
        self.calls = []
        self.failures = failures

    def __call__(self, method, params):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("channel full")
        self.calls.append((method, params))


class SpawnCounter:
    def __init__(self):
        self.count = 0

    def check(self):
        self.count += 1


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def signal_path(tmp_path):
    path = tmp_path / ".stringwork-notify"
    touch_notify_signal(path)
    return path


def state_with(messages=(), tasks=()):
    state = CollabState()
    state.messages.extend(messages)
    state.tasks.extend(tasks)
    return state


def test_no_push_when_agent_empty(signal_path):
    repo = MemoryRepo(state_with([Message(id=1, recipient="cursor")]))
    push = Recorder()
    Notifier(signal_path, repo, lambda: "", push).check_once()
    assert push.calls == []


def test_push_when_unread(signal_path):
    repo = MemoryRepo(state_with([Message(id=1, sender="claude-code", recipient="cursor", content="hi")]))
    push = Recorder()
    Notifier(signal_path, repo, lambda: "cursor", push).check_once()
    assert push.calls == [
        ("notifications/pair_update", PairUpdateParams(1, 0, "1 new message(s)")),
    ]


def test_no_push_when_no_unread(signal_path):
    repo = MemoryRepo(state_with([Message(id=1, recipient="cursor", read=True)]))
    push = Recorder()
    Notifier(signal_path, repo, lambda: "cursor", push).check_once()
    assert push.calls == []


def test_push_when_pending_tasks(signal_path):
    repo = MemoryRepo(state_with(tasks=[Task(id=1, title="Do it", assigned_to="cursor", status="pending")]))
    push = Recorder()
    Notifier(signal_path, repo, lambda: "cursor", push).check_once()
    params = push.calls[0][1]
    assert params.pending_tasks == 1
    assert params.summary == "1 pending task(s)"


def test_summary_with_messages_and_tasks(signal_path):
    repo = MemoryRepo(
        state_with(
            [Message(id=1, recipient="all")],
            [Task(id=1, assigned_to="any", status="pending"), Task(id=2, assigned_to="cursor", status="completed")],
        )
    )
    push = Recorder()
    Notifier(signal_path, repo, lambda: "cursor", push).check_once()
    assert push.calls[0][1] == PairUpdateParams(1, 1, "1 new message(s), 1 pending task(s)")


def test_same_revision_pushed_once(signal_path):
    repo = MemoryRepo(state_with([Message(id=1, recipient="cursor")]))
    push = Recorder()
    notifier = Notifier(signal_path, repo, lambda: "cursor", push)
    notifier.check_once()
    notifier.check_once()
    assert len(push.calls) == 1


def test_new_revision_pushes_again(signal_path):
    repo = MemoryRepo(state_with([Message(id=1, recipient="cursor")]))
    push = Recorder()
    notifier = Notifier(signal_path, repo, lambda: "cursor", push)
    notifier.check_once()
    signal_path.write_text("next-revision")
    notifier.check_once()
    assert len(push.calls) == 2


def test_no_push_when_signal_file_missing(tmp_path):
    repo = MemoryRepo(state_with([Message(id=1, recipient="cursor")]))
    push = Recorder()
    Notifier(tmp_path / ".stringwork-notify", repo, lambda: "cursor", push).check_once()
    assert push.calls == []


def test_spawn_checker_runs_once_per_revision(signal_path):
    spawner = SpawnCounter()
    notifier = Notifier(signal_path, MemoryRepo(), lambda: "", Recorder(), spawn_checker=spawner)
    notifier.check_once()
    notifier.check_once()
    assert spawner.count == 1


def test_failed_push_is_retried(signal_path):
    repo = MemoryRepo(state_with([Message(id=1, recipient="cursor")]))
    push = Recorder(failures=1)
    notifier = Notifier(signal_path, repo, lambda: "cursor", push)
    notifier.check_once()
    assert push.calls == []
    notifier.check_once()
    assert len(push.calls) == 1


def test_trigger_bypasses_revision_dedup(signal_path):
    repo = MemoryRepo(state_with([Message(id=1, recipient="cursor")]))
    push = Recorder()
    notifier = Notifier(signal_path, repo, lambda: "cursor", push, debounce=0.01)
    notifier.check_once()
    assert len(push.calls) == 1
    notifier.trigger()
    wait_for(lambda: len(push.calls) >= 2)
    expected = ("notifications/pair_update", PairUpdateParams(1, 0, "1 new message(s)"))
    assert push.calls == [expected, expected]


def test_start_stop_graceful(signal_path):
    signal_path.write_text("1")
    notifier = Notifier(signal_path, MemoryRepo(), lambda: "cursor", Recorder(), poll_interval=0.01)
    cancel = threading.Event()
    thread = threading.Thread(target=notifier.start, args=(cancel,))
    thread.start()
    time.sleep(0.025)
    cancel.set()
    notifier.stop()
    thread.join(timeout=1.0)
    assert not thread.is_alive()


def test_running_notifier_pushes_on_signal_change(signal_path):
    repo = MemoryRepo(state_with([Message(id=1, recipient="cursor")]))
    push = Recorder()
    notifier = Notifier(signal_path, repo, lambda: "cursor", push, poll_interval=0.05, debounce=0.01)
    notifier.check_once()
    cancel = threading.Event()
    thread = threading.Thread(target=notifier.start, args=(cancel,))
    thread.start()
    try:
        signal_path.write_text("changed-revision")
        wait_for(lambda: len(push.calls) >= 2)
        assert len(push.calls) == 2
        assert push.calls[1][1] == PairUpdateParams(1, 0, "1 new message(s)")
    finally:
        cancel.set()
        notifier.stop()
        thread.join(timeout=1.0)
    assert not thread.is_alive()