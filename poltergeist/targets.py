"""Build target definitions and project configuration records."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields
from typing import Any


class _StrEnum(str, enum.Enum):
    def __str__(self) -> str:
        return self.value


class TargetType(_StrEnum):
    """Kind of build target."""

    EXECUTABLE = "executable"
    APP_BUNDLE = "app-bundle"
    LIBRARY = "library"
    FRAMEWORK = "framework"
    TEST = "test"
    DOCKER = "docker"
    CUSTOM = "custom"
    CMAKE_EXECUTABLE = "cmake-executable"
    CMAKE_LIBRARY = "cmake-library"
    CMAKE_CUSTOM = "cmake-custom"


class CMakeBuildType(_StrEnum):
    """CMake build configuration."""

    DEBUG = "Debug"
    RELEASE = "Release"
    REL_WITH_DEB_INFO = "RelWithDebInfo"
    MIN_SIZE_REL = "MinSizeRel"


class LibraryType(_StrEnum):
    """Linkage of a library target."""

    STATIC = "static"
    DYNAMIC = "dynamic"


class Platform(_StrEnum):
    """Platform an app bundle or framework is built for."""

    MACOS = "macos"
    IOS = "ios"
    TVOS = "tvos"
    WATCHOS = "watchos"


class ProjectType(_StrEnum):
    """Overall kind of project."""

    SWIFT = "swift"
    NODE = "node"
    RUST = "rust"
    PYTHON = "python"
    CMAKE = "cmake"
    MIXED = "mixed"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _to_json(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_json(item) for key, item in value.items()}
    return value


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


@dataclass
class BaseTarget:
    """Fields shared by every build target."""

    name: str = ""
    type: TargetType | None = None
    build_command: str = ""
    watch_paths: list[str] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)
    max_retries: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping with camelCase keys, leaving out empty values."""
        result: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if _is_empty(value):
                continue
            result[_camel(f.name)] = _to_json(value)
        return result


@dataclass
class ExecutableTarget(BaseTarget):
    type: TargetType | None = TargetType.EXECUTABLE
    output_path: str = ""


@dataclass
class AppBundleTarget(BaseTarget):
    type: TargetType | None = TargetType.APP_BUNDLE
    bundle_id: str = ""
    platform: Platform | None = None
    auto_relaunch: bool | None = None
    launch_command: str = ""


@dataclass
class LibraryTarget(BaseTarget):
    type: TargetType | None = TargetType.LIBRARY
    output_path: str = ""
    library_type: LibraryType | None = None


@dataclass
class FrameworkTarget(BaseTarget):
    type: TargetType | None = TargetType.FRAMEWORK
    output_path: str = ""
    platform: Platform | None = None


@dataclass
class TestTarget(BaseTarget):
    __test__ = False

    type: TargetType | None = TargetType.TEST
    test_command: str = ""
    coverage_file: str = ""


@dataclass
class DockerTarget(BaseTarget):
    type: TargetType | None = TargetType.DOCKER
    image_name: str = ""
    dockerfile: str = ""
    context: str = ""
    tags: list[str] = field(default_factory=list)


@dataclass
class CustomTarget(BaseTarget):
    type: TargetType | None = TargetType.CUSTOM
    config: dict[str, Any] = field(default_factory=dict)


@dataclass
class CMakeExecutableTarget(BaseTarget):
    type: TargetType | None = TargetType.CMAKE_EXECUTABLE
    target_name: str = ""
    generator: str = ""
    build_type: CMakeBuildType | None = None
    cmake_args: list[str] = field(default_factory=list)
    output_path: str = ""
    parallel: bool | None = None


@dataclass
class CMakeLibraryTarget(BaseTarget):
    type: TargetType | None = TargetType.CMAKE_LIBRARY
    target_name: str = ""
    generator: str = ""
    build_type: CMakeBuildType | None = None
    cmake_args: list[str] = field(default_factory=list)
    library_type: LibraryType | None = None
    output_path: str = ""
    parallel: bool | None = None


@dataclass
class CMakeCustomTarget(BaseTarget):
    type: TargetType | None = TargetType.CMAKE_CUSTOM
    target_name: str = ""
    generator: str = ""
    build_type: CMakeBuildType | None = None
    cmake_args: list[str] = field(default_factory=list)
    parallel: bool | None = None


@dataclass
class WatchmanConfig:
    """File-watching settings; settling_delay is in milliseconds."""

    use_default_exclusions: bool = False
    exclude_dirs: list[str] = field(default_factory=list)
    settling_delay: int = 0
    max_file_events: int = 0


@dataclass
class PoltergeistConfig:
    """Project configuration: targets are kept as JSON-ready mappings."""

    version: str = ""
    project_type: ProjectType | None = None
    targets: list[dict[str, Any]] = field(default_factory=list)
    watchman: WatchmanConfig | None = None