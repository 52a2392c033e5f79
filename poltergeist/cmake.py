"""Discovery of targets in CMake projects."""

from __future__ import annotations

import os
import re
import stat
from dataclasses import dataclass, field
from typing import Iterator

from poltergeist.targets import (
    CMakeBuildType,
    CMakeCustomTarget,
    CMakeExecutableTarget,
    CMakeLibraryTarget,
    LibraryType,
    PoltergeistConfig,
    ProjectType,
)

CMAKE_LISTS = "CMakeLists.txt"

_PROJECT_RE = re.compile(r"^\s*project\s*\(\s*([^)\s]+)", re.ASCII)
_VERSION_RE = re.compile(r"VERSION\s+([0-9.]+)", re.ASCII)
_TARGET_RE = re.compile(
    r"^\s*(add_executable|add_library)\s*\(\s*([^)\s]+)"
    r"(?:\s+(STATIC|SHARED|MODULE|INTERFACE|OBJECT))?",
    re.ASCII,
)
_TEST_RE = re.compile(r"^\s*add_test\s*\(\s*([^)\s]+)", re.ASCII)

_LIBRARY_KINDS = {
    "SHARED": "SHARED_LIBRARY",
    "MODULE": "MODULE_LIBRARY",
    "INTERFACE": "INTERFACE_LIBRARY",
    "OBJECT": "OBJECT_LIBRARY",
}

_VALID_GENERATORS = ("Unix Makefiles", "Ninja", "Xcode", "Visual Studio")


class AnalysisError(Exception):
    """Raised when a CMake project cannot be analysed or validated."""


@dataclass
class CMakeTarget:
    name: str
    type: str
    sources: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    properties: dict[str, str] = field(default_factory=dict)
    directory: str = ""


@dataclass
class CMakeProject:
    name: str = ""
    version: str = ""
    targets: list[CMakeTarget] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    build_dir: str = ""
    generator: str = ""
    variables: dict[str, str] = field(default_factory=dict)


@dataclass
class AnalysisOptions:
    include_tests: bool = False
    analyze_deps: bool = False
    build_dir: str = ""
    generator: str = ""
    recursive_search: bool = False


def default_analysis_options() -> AnalysisOptions:
    """Options used when none are given."""
    return AnalysisOptions(
        include_tests=True,
        analyze_deps=True,
        build_dir="build",
        generator="",
        recursive_search=True,
    )


def _lines(path: str) -> Iterator[str]:
    with open(path, encoding="utf-8", errors="replace") as handle:
        for raw in handle:
            line = raw.strip()
            if not line.startswith("#"):
                yield line


def _walk(path: str, name: str, found: list[str]) -> None:
    info = os.lstat(path)
    if name == CMAKE_LISTS:
        found.append(path)
    if not stat.S_ISDIR(info.st_mode):
        return
    if name == "build" or name.startswith("."):
        return
    with os.scandir(path) as it:
        entries = sorted(it, key=lambda entry: entry.name)
    for entry in entries:
        _walk(entry.path, entry.name, found)


class CMakeAnalyzer:
    """Reads CMakeLists.txt files under a project root."""

    def __init__(self, project_root: str | os.PathLike[str]) -> None:
        self.project_root = os.fspath(project_root)

    def analyze_project(self, options: AnalysisOptions | None = None) -> CMakeProject:
        """Analyse the project and return its name, version and targets."""
        if options is None:
            options = default_analysis_options()

        project = CMakeProject()
        try:
            cmake_files = self._find_cmake_files(options.recursive_search)
        except OSError as exc:
            raise AnalysisError(f"failed to find CMake files: {exc}") from exc

        if not cmake_files:
            raise AnalysisError("no CMakeLists.txt files found in project")

        main_file = os.path.join(self.project_root, CMAKE_LISTS)
        try:
            self._analyze_main_file(main_file, project)
        except OSError as exc:
            raise AnalysisError(f"failed to analyze main CMakeLists.txt: {exc}") from exc

        for cmake_file in cmake_files:
            try:
                project.targets.extend(self._analyze_file(cmake_file, options))
            except OSError:
                continue

        project.build_dir = options.build_dir
        project.generator = options.generator
        return project

    def find_targets(self, options: AnalysisOptions | None = None) -> list[CMakeTarget]:
        """Return the targets found in the project."""
        return self.analyze_project(options).targets

    def validate_target(self, target: CMakeExecutableTarget) -> None:
        """Raise AnalysisError if the target cannot be built in this project."""
        if not target.target_name:
            raise AnalysisError("target name is required")

        if not os.path.exists(os.path.join(self.project_root, CMAKE_LISTS)):
            raise AnalysisError("CMakeLists.txt not found in project root")

        if target.generator and not any(
            valid in target.generator for valid in _VALID_GENERATORS
        ):
            raise AnalysisError(
                f"invalid generator: unsupported generator: {target.generator}"
            )

    def get_recommended_config(self) -> PoltergeistConfig:
        """Build a configuration with one target per discovered CMake target."""
        project = self.analyze_project(default_analysis_options())
        config = PoltergeistConfig(version="1.0", project_type=ProjectType.CMAKE)

        for cmake_target in project.targets:
            build_command = f"cmake --build build --target {cmake_target.name}"
            if cmake_target.type == "EXECUTABLE":
                target = CMakeExecutableTarget(
                    name=cmake_target.name,
                    watch_paths=["src/**/*.cpp", "src/**/*.h", CMAKE_LISTS],
                    build_command=build_command,
                    target_name=cmake_target.name,
                    build_type=CMakeBuildType.DEBUG,
                )
            elif cmake_target.type in ("STATIC_LIBRARY", "SHARED_LIBRARY"):
                library_type = (
                    LibraryType.DYNAMIC
                    if cmake_target.type == "SHARED_LIBRARY"
                    else LibraryType.STATIC
                )
                target = CMakeLibraryTarget(
                    name=cmake_target.name,
                    watch_paths=["src/**/*.cpp", "src/**/*.h", CMAKE_LISTS],
                    build_command=build_command,
                    target_name=cmake_target.name,
                    library_type=library_type,
                    build_type=CMakeBuildType.DEBUG,
                )
            else:
                target = CMakeCustomTarget(
                    name=cmake_target.name,
                    watch_paths=["**/*.cmake", CMAKE_LISTS],
                    build_command=build_command,
                    target_name=cmake_target.name,
                    build_type=CMakeBuildType.DEBUG,
                )
            config.targets.append(target.to_dict())

        return config

    def get_build_commands(
        self, target: CMakeTarget, build_type: CMakeBuildType | str
    ) -> list[str]:
        """Return the configure and build commands for a target."""
        kind = build_type.value if isinstance(build_type, CMakeBuildType) else build_type
        return [
            f"cmake -B build -DCMAKE_BUILD_TYPE={kind}",
            f"cmake --build build --target {target.name}",
        ]

    def _find_cmake_files(self, recursive: bool) -> list[str]:
        if not recursive:
            candidate = os.path.join(self.project_root, CMAKE_LISTS)
            return [candidate] if os.path.exists(candidate) else []
        found: list[str] = []
        root_name = os.path.basename(os.path.normpath(self.project_root))
        _walk(self.project_root, root_name, found)
        return found

    def _analyze_main_file(self, path: str, project: CMakeProject) -> None:
        for line in _lines(path):
            match = _PROJECT_RE.search(line)
            if match:
                project.name = match.group(1)
                version = _VERSION_RE.search(line)
                if version:
                    project.version = version.group(1)

    def _analyze_file(self, path: str, options: AnalysisOptions) -> list[CMakeTarget]:
        directory = os.path.relpath(os.path.dirname(path), self.project_root)
        found: list[CMakeTarget] = []

        for line in _lines(path):
            match = _TARGET_RE.search(line)
            if match:
                command, name, kind = match.group(1), match.group(2), match.group(3)
                target_type = "EXECUTABLE"
                if command.upper() == "ADD_LIBRARY":
                    target_type = _LIBRARY_KINDS.get((kind or "").upper(), "STATIC_LIBRARY")
                found.append(CMakeTarget(name=name, type=target_type, directory=directory))

            if options.include_tests:
                test_match = _TEST_RE.search(line)
                if test_match:
                    found.append(
                        CMakeTarget(name=test_match.group(1), type="TEST", directory=directory)
                    )

        return found