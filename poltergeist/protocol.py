"""Client side of the Watchman JSON protocol and the file events it produces."""

from __future__ import annotations

import enum
import json
import os
import socket
import subprocess
import sys
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

_UNIX_SOCK_TEMPLATE = "{state_dir}/{user}-state/sock"
_WINDOWS_PIPE_TEMPLATE = "\\\\.\\pipe\\watchman-{user}"
_DEFAULT_STATE_DIR = "/usr/local/var/run/watchman"

Expression = Any


class WatchmanError(Exception):
    """Raised when Watchman cannot be reached or reports an error."""

    def __init__(self, message: str, response: WatchmanResponse | None = None) -> None:
        super().__init__(message)
        self.response = response


class EventType(enum.IntEnum):
    """Kind of change seen on a file."""

    CREATED = 0
    MODIFIED = 1
    DELETED = 2
    RENAMED = 3


@dataclass
class FileEvent:
    """A change to one file or directory."""

    path: str
    type: EventType = EventType.MODIFIED
    is_dir: bool = False
    size: int = 0
    mode: int = 0
    mod_time: datetime | None = None


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    return 0


@dataclass
class WatchmanFile:
    """File information reported by Watchman."""

    name: str
    size: int = 0
    mode: int = 0
    uid: int = 0
    gid: int = 0
    mtime_ms: int = 0
    ctime_ms: int = 0
    exists: bool = False
    type: str = ""
    new: bool = False

    @classmethod
    def _from_dict(cls, data: Mapping[str, Any]) -> WatchmanFile:
        return cls(
            name=_str(data.get("name")),
            size=_int(data.get("size")),
            mode=_int(data.get("mode")),
            uid=_int(data.get("uid")),
            gid=_int(data.get("gid")),
            mtime_ms=_int(data.get("mtime_ms")),
            ctime_ms=_int(data.get("ctime_ms")),
            exists=bool(data.get("exists", False)),
            type=_str(data.get("type")),
            new=bool(data.get("new", False)),
        )


def _parse_files(raw: Any) -> list[WatchmanFile]:
    if not isinstance(raw, list):
        return []
    if all(isinstance(item, Mapping) for item in raw):
        return [WatchmanFile._from_dict(item) for item in raw]
    if all(isinstance(item, str) for item in raw):
        return [WatchmanFile(name=item) for item in raw]
    return []


@dataclass
class WatchmanResponse:
    """A decoded message from Watchman."""

    version: str = ""
    error: str = ""
    warning: str = ""
    clock: str = ""
    is_fresh_instance: bool = False
    files: list[WatchmanFile] = field(default_factory=list)
    root: str = ""
    subscription: str = ""
    unilateral: bool = False
    log: str = ""
    watch: str = ""
    relative_root: str = ""
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WatchmanResponse:
        """Decode a response object; files may be objects or bare names."""
        if not isinstance(data, Mapping):
            raise WatchmanError("invalid watchman response: expected an object")
        return cls(
            version=_str(data.get("version")),
            error=_str(data.get("error")),
            warning=_str(data.get("warning")),
            clock=_str(data.get("clock")),
            is_fresh_instance=bool(data.get("is_fresh_instance", False)),
            files=_parse_files(data.get("files")),
            root=_str(data.get("root")),
            subscription=_str(data.get("subscription")),
            unilateral=bool(data.get("unilateral", False)),
            log=_str(data.get("log")),
            watch=_str(data.get("watch")),
            relative_root=_str(data.get("relative_path")),
            raw=dict(data),
        )


def _put(result: dict[str, Any], key: str, value: Any) -> None:
    if value is None or value is False or value == "" or value == []:
        return
    result[key] = value


@dataclass
class Query:
    """A one-time Watchman query."""

    expression: Expression = None
    fields: list[str] = field(default_factory=list)
    since: str = ""
    suffix: list[str] = field(default_factory=list)
    relative_root: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the wire form, leaving out empty settings."""
        result: dict[str, Any] = {}
        if self.expression is not None:
            result["expression"] = self.expression
        _put(result, "fields", list(self.fields))
        _put(result, "since", self.since)
        _put(result, "suffix", list(self.suffix))
        _put(result, "relative_root", self.relative_root)
        return result


@dataclass
class SubscriptionQuery:
    """Settings of a Watchman subscription."""

    expression: Expression = None
    fields: list[str] = field(default_factory=list)
    since: str = ""
    defer_vcs: bool = False
    drop: list[str] = field(default_factory=list)
    relative_root: str = ""
    empty: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return the wire form, leaving out empty settings."""
        result: dict[str, Any] = {}
        if self.expression is not None:
            result["expression"] = self.expression
        _put(result, "fields", list(self.fields))
        _put(result, "since", self.since)
        _put(result, "defer_vcs", self.defer_vcs)
        _put(result, "drop", list(self.drop))
        _put(result, "relative_root", self.relative_root)
        _put(result, "empty_on_fresh_instance", self.empty)
        return result


def match_expression(pattern: str, wholename: bool = False) -> list[Any]:
    """Match files by glob, against the whole relative path if wholename."""
    if wholename:
        return ["match", pattern, "wholename"]
    return ["match", pattern]


def type_expression(file_type: str) -> list[Any]:
    """Match files of one type ('f', 'd', 'l', ...)."""
    return ["type", file_type]


def all_of_expression(*args: Expression) -> list[Any]:
    """Match files that satisfy every expression."""
    return ["allof", *args]


def any_of_expression(*args: Expression) -> list[Any]:
    """Match files that satisfy at least one expression."""
    return ["anyof", *args]


def not_expression(expr: Expression) -> list[Any]:
    """Negate an expression."""
    return ["not", expr]


def since_expression(clock: str) -> list[Any]:
    """Match files changed since a clock value."""
    return ["since", clock]


def find_watchman_socket() -> str:
    """Ask Watchman for its socket, falling back to the usual locations."""
    try:
        completed = subprocess.run(
            ["watchman", "get-sockname"],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except (OSError, subprocess.SubprocessError):
        pass
    else:
        try:
            result = json.loads(completed.stdout)
        except ValueError:
            result = None
        if isinstance(result, Mapping):
            sockname = _str(result.get("sockname"))
            if sockname:
                return sockname

    if sys.platform == "win32":
        return _WINDOWS_PIPE_TEMPLATE.format(user=os.environ.get("USERNAME", ""))

    state_dir = os.environ.get("WATCHMAN_STATE_DIR", "")
    if not state_dir:
        state_dir = _DEFAULT_STATE_DIR
        if not os.path.exists(state_dir):
            state_dir = os.path.join(tempfile.gettempdir(), ".watchman")

    user = os.environ.get("USER", "") or os.environ.get("USERNAME", "")
    return _UNIX_SOCK_TEMPLATE.format(state_dir=state_dir, user=user)


def _join(root: str, name: str) -> str:
    if not root and not name:
        return ""
    if not root:
        return os.path.normpath(name)
    if not name:
        return os.path.normpath(root)
    return os.path.normpath(f"{root.rstrip(os.sep)}{os.sep}{name.lstrip(os.sep)}")


def convert_watchman_file(root: str, wf: WatchmanFile) -> FileEvent:
    """Turn a file reported by Watchman into a FileEvent under root."""
    if not wf.exists:
        kind = EventType.DELETED
    elif wf.new:
        kind = EventType.CREATED
    else:
        kind = EventType.MODIFIED
    return FileEvent(
        path=_join(root, wf.name),
        type=kind,
        is_dir=wf.type == "d",
        size=wf.size,
        mode=wf.mode,
        mod_time=datetime.fromtimestamp(wf.mtime_ms / 1000, tz=timezone.utc),
    )


def _encode(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"cannot encode {type(value).__name__} for watchman")


class WatchmanConnection:
    """A line-delimited JSON connection to a Watchman server."""

    def __init__(self, sock: socket.socket, sock_path: str = "") -> None:
        self.sock_path = sock_path
        self._sock = sock
        self._reader = sock.makefile("rb")
        self._writer = sock.makefile("wb")

    @classmethod
    def connect(cls) -> WatchmanConnection:
        """Open a connection to the local Watchman server."""
        sock_path = find_watchman_socket()
        family = getattr(socket, "AF_UNIX", None)
        if family is None:
            raise WatchmanError("failed to connect to watchman: unix sockets unsupported")
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.connect(sock_path)
        except OSError as exc:
            sock.close()
            raise WatchmanError(f"failed to connect to watchman: {exc}") from exc
        return cls(sock, sock_path)

    def close(self) -> None:
        """Close the connection."""
        for stream in (self._reader, self._writer):
            try:
                stream.close()
            except OSError:
                pass
        self._sock.close()

    def __enter__(self) -> WatchmanConnection:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def send(self, command: Sequence[Any]) -> None:
        """Write one command as a JSON line."""
        payload = json.dumps(
            list(command), separators=(",", ":"), ensure_ascii=False, default=_encode
        )
        self._writer.write(payload.encode("utf-8") + b"\n")
        self._writer.flush()

    def receive(self) -> WatchmanResponse:
        """Read one response; raise EOFError when the server has gone."""
        line = self._reader.readline()
        if not line.endswith(b"\n"):
            raise EOFError("EOF")
        try:
            data = json.loads(line)
        except ValueError as exc:
            raise WatchmanError(f"invalid watchman response: {exc}") from exc
        response = WatchmanResponse.from_dict(data)
        if response.error:
            raise WatchmanError(f"watchman error: {response.error}", response=response)
        return response

    def send_receive(self, command: Sequence[Any]) -> WatchmanResponse:
        """Send a command and wait for its response."""
        self.send(command)
        return self.receive()

    def watch_project(self, path: str) -> WatchmanResponse:
        return self.send_receive(["watch-project", path])

    def subscribe(self, root: str, name: str, query: SubscriptionQuery) -> WatchmanResponse:
        return self.send_receive(["subscribe", root, name, query.to_dict()])

    def unsubscribe(self, root: str, name: str) -> None:
        self.send_receive(["unsubscribe", root, name])

    def query(self, root: str, query: Query) -> WatchmanResponse:
        return self.send_receive(["query", root, query.to_dict()])

    def clock(self, root: str) -> str:
        return self.send_receive(["clock", root]).clock

    def version(self) -> str:
        return self.send_receive(["version"]).version

    def trigger(self, root: str, name: str, query: Query, command: Sequence[str]) -> None:
        self.send_receive(
            [
                "trigger",
                root,
                {"command": list(command), "expression": query.expression, "name": name},
            ]
        )

    def trigger_del(self, root: str, name: str) -> None:
        self.send_receive(["trigger-del", root, name])

    def trigger_list(self, root: str) -> WatchmanResponse:
        return self.send_receive(["trigger-list", root])

    def set_config(self, root: str, config: Mapping[str, Any]) -> None:
        self.send_receive(["set-config", root, dict(config)])

    def shutdown(self) -> None:
        self.send_receive(["shutdown-server"])