"""Selection of the builder that matches a target, plus the CMake-aware builders."""

from __future__ import annotations

import logging
import os
from typing import Any

from poltergeist.builders import (
    AppBundleBuilder,
    BaseBuilder,
    DockerBuilder,
    ExecutableBuilder,
    LibraryBuilder,
    TestBuilder,
)
from poltergeist.targets import (
    BaseTarget,
    CMakeBuildType,
    CMakeCustomTarget,
    CMakeExecutableTarget,
    CMakeLibraryTarget,
    CustomTarget,
    FrameworkTarget,
    TargetType,
)

_CMakeTarget = CMakeExecutableTarget | CMakeLibraryTarget | CMakeCustomTarget


class FrameworkBuilder(BaseBuilder):
    """Builds a framework target."""

    def __init__(self, target, project_root, logger=None, state_manager=None) -> None:
        super().__init__(target, project_root, logger, state_manager)
        self.output_path = ""
        self.platform = None
        if isinstance(target, FrameworkTarget):
            self.output_path = target.output_path
            self.platform = target.platform


class CustomBuilder(BaseBuilder):
    """Builds a target described by free-form configuration."""

    def __init__(self, target, project_root, logger=None, state_manager=None) -> None:
        super().__init__(target, project_root, logger, state_manager)
        self.config: dict[str, Any] = {}
        if isinstance(target, CustomTarget):
            self.config = dict(target.config)


class CMakeBuilder(BaseBuilder):
    """Common CMake settings and the configure step."""

    def __init__(self, target, project_root, logger=None, state_manager=None) -> None:
        super().__init__(target, project_root, logger, state_manager)
        self.generator = "Unix Makefiles"
        self.build_type: CMakeBuildType | str = CMakeBuildType.DEBUG
        self.cmake_args: list[str] = []
        self.target_name = ""
        self.parallel = True

    def _apply_cmake_fields(self, target: _CMakeTarget) -> None:
        if target.generator:
            self.generator = target.generator
        if target.build_type:
            self.build_type = target.build_type
        self.cmake_args = list(target.cmake_args)
        self.target_name = target.target_name
        if target.parallel is not None:
            self.parallel = target.parallel

    def configure(self) -> None:
        """Run the CMake configure step into the build directory."""
        os.makedirs(self._resolve_path("build"), exist_ok=True)

        command = (
            f'cmake -S . -B build -G "{self.generator}" '
            f"-DCMAKE_BUILD_TYPE={self.build_type}"
        )
        for arg in self.cmake_args:
            command += " " + arg

        with self._command_override(command):
            BaseBuilder.build(self)


class CMakeExecutableBuilder(CMakeBuilder):
    """Builds an executable defined in a CMake project."""

    def __init__(self, target, project_root, logger=None, state_manager=None) -> None:
        super().__init__(target, project_root, logger, state_manager)
        self.output_path = ""
        if isinstance(target, CMakeExecutableTarget):
            self._apply_cmake_fields(target)
            self.output_path = target.output_path


class CMakeLibraryBuilder(CMakeBuilder):
    """Builds a library defined in a CMake project."""

    def __init__(self, target, project_root, logger=None, state_manager=None) -> None:
        super().__init__(target, project_root, logger, state_manager)
        self.library_type = None
        self.output_path = ""
        if isinstance(target, CMakeLibraryTarget):
            self._apply_cmake_fields(target)
            self.library_type = target.library_type
            self.output_path = target.output_path


class CMakeCustomBuilder(CMakeBuilder):
    """Builds a custom target defined in a CMake project."""

    def __init__(self, target, project_root, logger=None, state_manager=None) -> None:
        super().__init__(target, project_root, logger, state_manager)
        if isinstance(target, CMakeCustomTarget):
            self._apply_cmake_fields(target)


_BUILDERS: dict[TargetType, type[BaseBuilder]] = {
    TargetType.EXECUTABLE: ExecutableBuilder,
    TargetType.APP_BUNDLE: AppBundleBuilder,
    TargetType.LIBRARY: LibraryBuilder,
    TargetType.FRAMEWORK: FrameworkBuilder,
    TargetType.TEST: TestBuilder,
    TargetType.DOCKER: DockerBuilder,
    TargetType.CMAKE_EXECUTABLE: CMakeExecutableBuilder,
    TargetType.CMAKE_LIBRARY: CMakeLibraryBuilder,
    TargetType.CMAKE_CUSTOM: CMakeCustomBuilder,
    TargetType.CUSTOM: CustomBuilder,
}


def create_builder(
    target: BaseTarget,
    project_root: str | os.PathLike[str],
    logger: logging.Logger | None = None,
    state_manager: Any = None,
) -> BaseBuilder:
    """Return the builder suited to the target's type, or a plain BaseBuilder."""
    builder_class = _BUILDERS.get(target.type, BaseBuilder)
    return builder_class(target, project_root, logger, state_manager)