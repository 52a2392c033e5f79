"""Builders that run a target's build command and record the outcome."""

from __future__ import annotations

import contextlib
import logging
import os
import subprocess
import threading
import time
from collections.abc import Iterable, Iterator
from typing import IO, Any

from poltergeist.targets import (
    AppBundleTarget,
    BaseTarget,
    DockerTarget,
    ExecutableTarget,
    LibraryTarget,
    TestTarget,
)

_SHELL_OPERATORS = ("&&", "||", "|", ";")


class BuildError(Exception):
    """Raised when a target is misconfigured or its build fails."""


def _command_argv(command: str) -> list[str]:
    """Split a command into arguments, using the shell for compound commands."""
    if any(op in command for op in _SHELL_OPERATORS):
        return ["sh", "-c", command]
    parts = command.split()
    return parts or ["sh", "-c", command]


class BaseBuilder:
    """Runs a target's build command in the project root and keeps build statistics."""

    def __init__(
        self,
        target: BaseTarget,
        project_root: str | os.PathLike[str],
        logger: logging.Logger | None = None,
        state_manager: Any = None,
    ) -> None:
        self.target = target
        self.project_root = os.fspath(project_root)
        base_logger = logger or logging.getLogger(__name__)
        self.logger = base_logger.getChild(target.name or "target")
        self.state_manager = state_manager

        self._lock = threading.Lock()
        self._last_build_time = 0.0
        self._total_builds = 0
        self._success_builds = 0

    def validate(self) -> None:
        """Raise BuildError if the target cannot be built."""
        if not os.path.exists(self.project_root):
            raise BuildError(f"project root does not exist: {self.project_root}")
        if not self.target.watch_paths:
            raise BuildError(f"no watch paths defined for target {self.target.name}")
        if not self.target.build_command:
            raise BuildError(f"no build command defined for target {self.target.name}")

    def build(self, changed_files: Iterable[str] | None = None) -> None:
        """Run the build command; raise BuildError if it fails."""
        changed = list(changed_files or [])
        start = time.monotonic()
        try:
            self._run_build(changed, start)
        finally:
            with self._lock:
                self._last_build_time = time.monotonic() - start
                self._total_builds += 1

    def clean(self) -> None:
        """Remove build products; the default does nothing."""

    @property
    def last_build_time(self) -> float:
        """Duration of the last build in seconds."""
        with self._lock:
            return self._last_build_time

    @property
    def success_rate(self) -> float:
        """Fraction of builds that succeeded; 1.0 before any build."""
        with self._lock:
            if self._total_builds == 0:
                return 1.0
            return self._success_builds / self._total_builds

    def _run_build(self, changed: list[str], start: float) -> None:
        with contextlib.ExitStack() as stack:
            log_file = self._open_log_file()
            if log_file is not None:
                stack.enter_context(log_file)

            def write(message: str) -> None:
                if log_file is not None:
                    log_file.write(message)
                    log_file.flush()

            timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
            write(f"\n=== Build Started at {timestamp} ===\n")

            self.logger.info("Building with %d changed files", len(changed))
            if changed:
                write(f"Changed files: [{' '.join(changed)}]\n")

            command = self.target.build_command
            write(f"Executing: {command}\n")

            env = None
            if self.target.environment:
                env = {**os.environ, **self.target.environment}

            error: str | None
            try:
                completed = subprocess.run(
                    _command_argv(command),
                    cwd=self.project_root,
                    env=env,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    check=False,
                )
            except OSError as exc:
                output = ""
                error = str(exc)
            else:
                output = completed.stdout.decode("utf-8", errors="replace")
                error = (
                    f"exit status {completed.returncode}" if completed.returncode else None
                )

            write(output)
            duration = time.monotonic() - start

            if error is not None:
                self.logger.error("Build failed: %s\n%s", error, output)
                write(f"\n=== Build FAILED after {duration:.3f}s ===\n")
                write(f"Error: {error}\n")
                raise BuildError(f"build failed: {error}\n{output}")

            with self._lock:
                self._success_builds += 1

            self.logger.info("Build completed in %.3fs", duration)
            if output:
                self.logger.debug("Build output: %s", output)
            write(f"\n=== Build SUCCEEDED after {duration:.3f}s ===\n")

    @contextlib.contextmanager
    def _command_override(self, command: str) -> Iterator[None]:
        """Temporarily replace the target's build command."""
        original = self.target.build_command
        self.target.build_command = command
        try:
            yield
        finally:
            self.target.build_command = original

    def _resolve_path(self, path: str) -> str:
        if os.path.isabs(path):
            return path
        return os.path.join(self.project_root, path)

    def _file_exists(self, path: str) -> bool:
        return os.path.exists(self._resolve_path(path))

    def _open_log_file(self) -> IO[str] | None:
        log_dir = os.path.join(self.project_root, ".poltergeist", "logs")
        try:
            os.makedirs(log_dir, exist_ok=True)
            return open(
                os.path.join(log_dir, f"{self.target.name}.log"), "a", encoding="utf-8"
            )
        except OSError as exc:
            self.logger.warning("Failed to create log file: %s", exc)
            return None


class ExecutableBuilder(BaseBuilder):
    """Builds a target that produces an executable file."""

    def __init__(self, target, project_root, logger=None, state_manager=None) -> None:
        super().__init__(target, project_root, logger, state_manager)
        self.output_path = target.output_path if isinstance(target, ExecutableTarget) else ""

    def validate(self) -> None:
        super().validate()
        if not self.output_path:
            raise BuildError(
                f"output path not specified for executable target {self.target.name}"
            )

    def build(self, changed_files: Iterable[str] | None = None) -> None:
        output_path = self._resolve_path(self.output_path)
        if self._file_exists(output_path):
            try:
                os.remove(output_path)
            except OSError as exc:
                self.logger.warning("Failed to remove old executable: %s", exc)

        super().build(changed_files)

        if not self._file_exists(output_path):
            raise BuildError(f"build succeeded but output not found: {output_path}")

        try:
            os.chmod(output_path, 0o755)
        except OSError as exc:
            self.logger.warning("Failed to make output executable: %s", exc)


class AppBundleBuilder(BaseBuilder):
    """Builds an app bundle, optionally restarting the app around the build."""

    def __init__(self, target, project_root, logger=None, state_manager=None) -> None:
        super().__init__(target, project_root, logger, state_manager)
        self.bundle_id = ""
        self.platform = None
        self.auto_relaunch = False
        self.launch_command = ""
        if isinstance(target, AppBundleTarget):
            self.bundle_id = target.bundle_id
            self.platform = target.platform
            self.auto_relaunch = bool(target.auto_relaunch)
            self.launch_command = target.launch_command

    def build(self, changed_files: Iterable[str] | None = None) -> None:
        if self.auto_relaunch:
            self._kill_running_app()

        super().build(changed_files)

        if self.auto_relaunch and self.launch_command:
            try:
                self._launch_app()
            except OSError as exc:
                self.logger.warning("Failed to relaunch app: %s", exc)

    def _kill_running_app(self) -> None:
        if not self.bundle_id:
            return
        quiet = {"stdout": subprocess.DEVNULL, "stderr": subprocess.DEVNULL}
        try:
            killed = subprocess.run(["pkill", "-f", self.bundle_id], check=False, **quiet)
            if killed.returncode == 0:
                return
        except OSError:
            pass
        with contextlib.suppress(OSError):
            subprocess.run(["killall", "-9", self.bundle_id], check=False, **quiet)

    def _launch_app(self) -> None:
        process = subprocess.Popen(_command_argv(self.launch_command))
        threading.Thread(target=process.wait, daemon=True).start()
        self.logger.info("App relaunched successfully")


class LibraryBuilder(BaseBuilder):
    """Builds a static or dynamic library."""

    def __init__(self, target, project_root, logger=None, state_manager=None) -> None:
        super().__init__(target, project_root, logger, state_manager)
        self.output_path = ""
        self.library_type = None
        if isinstance(target, LibraryTarget):
            self.output_path = target.output_path
            self.library_type = target.library_type


class DockerBuilder(BaseBuilder):
    """Builds a Docker image with its configured tags."""

    def __init__(self, target, project_root, logger=None, state_manager=None) -> None:
        super().__init__(target, project_root, logger, state_manager)
        self.image_name = ""
        self.dockerfile = "Dockerfile"
        self.context = "."
        self.tags: list[str] = []
        if isinstance(target, DockerTarget):
            self.image_name = target.image_name
            self.dockerfile = target.dockerfile or self.dockerfile
            self.context = target.context or self.context
            self.tags = list(target.tags)

    def build(self, changed_files: Iterable[str] | None = None) -> None:
        parts = [f"docker build -f {self.dockerfile} -t {self.image_name}"]
        parts.extend(f"-t {self.image_name}:{tag}" for tag in self.tags)
        parts.append(self.context)
        with self._command_override(" ".join(parts)):
            super().build(changed_files)


class TestBuilder(BaseBuilder):
    """Runs a target's test command in place of its build command."""

    __test__ = False

    def __init__(self, target, project_root, logger=None, state_manager=None) -> None:
        super().__init__(target, project_root, logger, state_manager)
        self.test_command = ""
        self.coverage_file = ""
        if isinstance(target, TestTarget):
            self.test_command = target.test_command
            self.coverage_file = target.coverage_file

    def build(self, changed_files: Iterable[str] | None = None) -> None:
        command = self.test_command or self.target.build_command
        with self._command_override(command):
            super().build(changed_files)

        if self.coverage_file and self._file_exists(self.coverage_file):
            self.logger.info("Coverage report generated: %s", self.coverage_file)