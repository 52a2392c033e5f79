"""Watch-pattern normalisation and exclusion rules for a project."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from poltergeist.targets import PoltergeistConfig

_DEFAULT_EXCLUSIONS = (
    "node_modules",
    ".git",
    "vendor",
    "build",
    "dist",
    "target",
    ".next",
    ".nuxt",
    ".cache",
    "coverage",
    ".vscode",
    ".idea",
    "*.log",
    "tmp",
    "temp",
)


@dataclass
class ExclusionExpression:
    """A group of patterns of one kind to leave out of watching."""

    type: str
    patterns: list[str] = field(default_factory=list)


def _join(*parts: str) -> str:
    kept = [part for part in parts if part]
    if not kept:
        return ""
    return os.path.normpath(os.path.join(*kept))


class ConfigManager:
    """Builds watch settings for the project rooted at project_root."""

    def __init__(
        self,
        project_root: str | os.PathLike[str],
        logger: logging.Logger | None = None,
    ) -> None:
        self.project_root = os.fspath(project_root)
        self.logger = logger or logging.getLogger(__name__)

    def create_exclusion_expressions(
        self, config: PoltergeistConfig
    ) -> list[ExclusionExpression]:
        """Return the configured directory exclusions followed by the defaults."""
        watchman = config.watchman
        exclusions = [
            ExclusionExpression("dirname", [directory])
            for directory in (watchman.exclude_dirs if watchman else [])
        ]
        if watchman is None or watchman.use_default_exclusions:
            exclusions.extend(
                ExclusionExpression("dirname", [pattern])
                for pattern in _DEFAULT_EXCLUSIONS
            )
        return exclusions

    def normalize_watch_pattern(self, pattern: str) -> str:
        """Turn a path or glob into a glob anchored at the project root."""
        pattern = pattern.strip()

        if not os.path.isabs(pattern) and "*" not in pattern:
            pattern = _join(self.project_root, pattern)

        if pattern.startswith("**"):
            return pattern

        if "*" not in pattern:
            pattern = _join(pattern, "**", "*")

        return pattern

    def validate_watch_pattern(self, pattern: str) -> None:
        """Raise ValueError if the pattern cannot be watched."""
        if not pattern:
            raise ValueError("empty watch pattern")