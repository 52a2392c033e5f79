import os
import queue
import time

import pytest

from poltergeist.client import (
    FileChange,
    SubscriptionConfig,
    UnifiedClient,
    extract_patterns_from_expression,
)
from poltergeist.protocol import EventType, WatchmanError, WatchmanResponse
from poltergeist.targets import WatchmanConfig


def _unavailable():
    raise WatchmanError("watchman unavailable")


class FakeConnection:
    def __init__(self, fail_version=False):
        self.fail_version = fail_version
        self.commands = []
        self.closed = False
        self.incoming = queue.Queue()

    def version(self):
        if self.fail_version:
            raise WatchmanError("watchman error: no version")
        return "2024.1.1"

    def watch_project(self, path):
        self.commands.append(("watch-project", path))
        return WatchmanResponse(watch="/project", relative_root="sub")

    def clock(self, root):
        self.commands.append(("clock", root))
        return "c:1:2"

    def subscribe(self, root, name, query):
        self.commands.append(("subscribe", root, name, query))
        return WatchmanResponse()

    def unsubscribe(self, root, name):
        self.commands.append(("unsubscribe", root, name))

    def receive(self):
        item = self.incoming.get()
        if item is None:
            raise EOFError("EOF")
        return WatchmanResponse.from_dict(item)

    def close(self):
        self.closed = True
        self.incoming.put(None)


@pytest.fixture
def fallback_client():
    client = UnifiedClient(
        config=WatchmanConfig(settling_delay=50), connection_factory=_unavailable
    )
    yield client
    client.disconnect()


@pytest.fixture
def fake():
    return FakeConnection()


@pytest.fixture
def watchman_client(fake):
    client = UnifiedClient(
        config=WatchmanConfig(settling_delay=10), connection_factory=lambda: fake
    )
    yield client
    client.disconnect()


def _drain(events, seconds):
    collected = []
    deadline = time.monotonic() + seconds
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return collected
        try:
            collected.append(events.get(timeout=remaining))
        except queue.Empty:
            return collected


@pytest.mark.parametrize(
    "expr, expected",
    [
        ([], ["**"]),
        (None, ["**"]),
        (["allof", ["match", "*.go"]], ["*.go"]),
        (["anyof", ["match", "*.go"], ["match", "src/**", "wholename"]], ["*.go", "src/**"]),
        (["allof", ["anyof", ["match", "*.c"]], ["not", ["match", "*.h"]]], ["*.c"]),
        (["not", ["match", "*.h"]], ["**"]),
        (["match"], ["**"]),
    ],
)
def test_extract_patterns_from_expression(expr, expected):
    assert extract_patterns_from_expression(expr) == expected


def test_fallback_version_and_connection(fallback_client):
    assert fallback_client.version() == "fsnotify"
    assert fallback_client.is_connected() is True
    assert fallback_client.uses_watchman is False
    assert fallback_client.connect() is None


def test_unsubscribe_unknown_raises(fallback_client):
    with pytest.raises(KeyError):
        fallback_client.unsubscribe("missing")


def test_subscribe_then_unsubscribe(fallback_client, tmp_path):
    config = SubscriptionConfig(expression=["allof", ["match", "*.go"]])
    fallback_client.subscribe(str(tmp_path), "test-sub", config, lambda changes: None, [])
    fallback_client.unsubscribe("test-sub")
    with pytest.raises(KeyError):
        fallback_client.unsubscribe("test-sub")


def test_fallback_watch_reports_change(fallback_client, tmp_path):
    root = str(tmp_path.resolve())
    for name in ("main.go", "test.go", "doc.md"):
        (tmp_path / name).write_text("test")

    events = queue.Queue()
    fallback_client.watch(root, ["*.go"], events)
    assert root in fallback_client.watched_paths()
    time.sleep(0.2)

    (tmp_path / "main.go").write_text("modified")
    event = events.get(timeout=5)
    assert event.path == os.path.join(root, "main.go")
    assert event.type is EventType.CREATED


def test_fallback_watch_reports_delete(fallback_client, tmp_path):
    root = str(tmp_path.resolve())
    target = tmp_path / "delete.go"
    target.write_text("delete me")

    events = queue.Queue()
    fallback_client.watch(root, ["*.go"], events)
    time.sleep(0.2)

    target.unlink()
    event = events.get(timeout=5)
    assert event.path == os.path.join(root, "delete.go")
    assert event.type is EventType.DELETED


def test_fallback_watch_filters_patterns(fallback_client, tmp_path):
    root = str(tmp_path.resolve())
    events = queue.Queue()
    fallback_client.watch(root, ["*.go"], events)
    time.sleep(0.2)

    (tmp_path / "test.go").write_text("go")
    (tmp_path / "test.js").write_text("js")
    (tmp_path / "test.py").write_text("py")

    collected = _drain(events, 1.5)
    assert len(collected) >= 1
    assert all(event.path.endswith(".go") for event in collected)


def test_settling_reduces_events(tmp_path):
    client = UnifiedClient(
        config=WatchmanConfig(settling_delay=300), connection_factory=_unavailable
    )
    try:
        root = str(tmp_path.resolve())
        events = queue.Queue()
        client.watch(root, ["*.go"], events)
        time.sleep(0.2)

        target = tmp_path / "test.go"
        for letter in "abcde":
            target.write_text(letter)
            time.sleep(0.05)

        collected = _drain(events, 2.0)
        assert 1 <= len(collected) < 5
    finally:
        client.disconnect()


def test_watchman_version_used(watchman_client):
    assert watchman_client.uses_watchman is True
    assert watchman_client.version() == "2024.1.1"
    assert watchman_client.is_connected() is True


def test_watchman_version_failure_falls_back():
    conn = FakeConnection(fail_version=True)
    client = UnifiedClient(connection_factory=lambda: conn)
    try:
        assert conn.closed is True
        assert client.uses_watchman is False
        assert client.version() == "fsnotify"
    finally:
        client.disconnect()


def test_watchman_watch_project_sets_root(watchman_client, fake):
    watchman_client.watch_project("/project/sub")
    assert fake.commands[0] == ("watch-project", "/project/sub")
    assert watchman_client.project_root == os.path.join("/project", "sub")


def test_watchman_subscribe_builds_default_query(watchman_client, fake):
    watchman_client.subscribe("/project", "all", SubscriptionConfig(), None, [])
    _, root, name, query = fake.commands[-1]
    assert (root, name) == ("/project", "all")
    assert query.expression == ["match", "**", "wholename"]
    assert query.since == "c:1:2"
    assert query.empty is True
    assert query.fields == ["name", "size", "mtime_ms", "exists", "type", "new"]
    assert watchman_client.watched_paths() == ["/project"]


def test_watchman_subscription_delivers_changes(watchman_client, fake):
    received = queue.Queue()
    config = SubscriptionConfig(expression=["anyof", ["match", "*.go"]])
    watchman_client.subscribe("/project", "sub", config, received.put, [])
    fake.incoming.put(
        {
            "subscription": "sub",
            "root": "/project",
            "files": [{"name": "main.go", "exists": True, "type": "f"}],
        }
    )
    changes = received.get(timeout=5)
    assert changes == [FileChange(name=os.path.join("/project", "main.go"), exists=True, type="f")]


def test_watchman_watch_puts_events(watchman_client, fake):
    events = queue.Queue()
    name = watchman_client.watch("/project/sub", ["*.go", "src/**/*.c"], events)
    _, _, sub_name, query = fake.commands[-1]
    assert sub_name == name
    assert query.expression == [
        "anyof",
        ["match", "*.go"],
        ["match", "src/**/*.c", "wholename"],
    ]
    fake.incoming.put(
        {
            "subscription": name,
            "root": "/project/sub",
            "files": [{"name": "gone.go", "exists": False, "type": "f"}],
        }
    )
    event = events.get(timeout=5)
    assert event.path == os.path.join("/project/sub", "gone.go")
    assert event.type is EventType.DELETED


def test_watchman_unsubscribe_sends_command(watchman_client, fake):
    watchman_client.subscribe("/project", "s1", SubscriptionConfig(), None, [])
    watchman_client.unsubscribe("s1")
    assert fake.commands[-1] == ("unsubscribe", "/project", "s1")
    assert watchman_client.watched_paths() == []


def test_disconnect_closes_watchman_connection(fake):
    client = UnifiedClient(connection_factory=lambda: fake)
    client.disconnect()
    assert fake.closed is True