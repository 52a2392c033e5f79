# poltergeist

This package provides library pieces for a build system. Such a system watches
a project and rebuilds targets when their files change. The package covers
CMake project analysis, a target model, builders that run build commands, and
file watching through Watchman or native filesystem notifications.

## Modules

- `poltergeist.targets` holds the dataclasses for targets:
  - `ExecutableTarget`, `AppBundleTarget`, `LibraryTarget`,
    `FrameworkTarget`, `TestTarget`, `DockerTarget` and `CustomTarget`.
  - `CMakeExecutableTarget`, `CMakeLibraryTarget` and `CMakeCustomTarget`.
  - The enums `TargetType`, `CMakeBuildType`, `LibraryType`, `Platform`
    and `ProjectType`.
  - `WatchmanConfig` and `PoltergeistConfig`.

  `BaseTarget.to_dict()` returns a JSON-ready mapping. Its keys are in
  camelCase and empty values are left out.
- `poltergeist.cmake` provides `CMakeAnalyzer`, which reads
  `CMakeLists.txt` files.
  - `analyze_project` finds the project name and version. It also finds
    `add_executable`, `add_library` and (optionally) `add_test` targets.
  - `find_targets` returns just those targets.
  - `validate_target` checks a `CMakeExecutableTarget`.
  - `get_recommended_config` builds a `PoltergeistConfig` with one target
    per discovered CMake target.
  - `get_build_commands` returns the configure and build command lines.
  - `default_analysis_options()` returns the options used when none are given.
- `poltergeist.builders` has `BaseBuilder`, which runs a target's build
  command in the project root.
  - Commands that contain `&&`, `||`, `|` or `;` go through `sh -c`.
  - Output is appended to `.poltergeist/logs/<target name>.log`.
  - The `last_build_time` property gives the duration in seconds.
  - The `success_rate` property is 1.0 before any build.

  The specialised builders are:
  - `ExecutableBuilder` removes the old output and checks that a new one
    was made.
  - `AppBundleBuilder` can stop and relaunch an app around the build.
  - `LibraryBuilder` builds library targets.
  - `DockerBuilder` composes a `docker build` command with the target's tags.
  - `TestBuilder` runs the test command in place of the build command.
- `poltergeist.factory` provides `create_builder(target, project_root,
  logger, state_manager)`. It picks the builder for the target's type and
  falls back to `BaseBuilder`.
  - It also defines `FrameworkBuilder`, `CustomBuilder` and the CMake
    builders `CMakeExecutableBuilder`, `CMakeLibraryBuilder` and
    `CMakeCustomBuilder`.
  - `CMakeBuilder.configure()` runs
    `cmake -S . -B build -G "<generator>" -DCMAKE_BUILD_TYPE=<type>`.
- `poltergeist.watch_config` provides `ConfigManager`:
  - `create_exclusion_expressions` builds directory exclusions from a
    `PoltergeistConfig`.
  - `normalize_watch_pattern` anchors paths at the project root.
  - `validate_watch_pattern` rejects empty patterns.
- `poltergeist.protocol` is a client for the Watchman JSON protocol.
  - `WatchmanConnection` sends commands such as watch-project, subscribe,
    query, clock, version and trigger.
  - The expression helpers are `match_expression`, `any_of_expression`,
    `all_of_expression`, `not_expression` and the like.
  - `find_watchman_socket()` locates the Watchman socket.
  - `convert_watchman_file()` turns a reported file into a `FileEvent`.
- `poltergeist.fallback` is for when Watchman is not available.
  - `FileSystemWatcher` watches directories through watchdog. It skips
    excluded and commonly ignored directories. It reports a change to a
    path once the path has been quiet for a settling delay, which is
    0.1 s by default.
  - `FallbackWatcher` puts matching `FileEvent`s into a queue.
- `poltergeist.client` provides `UnifiedClient`. It connects to Watchman if
  a server is running and otherwise uses `FileSystemWatcher`.
  - `subscribe` and `unsubscribe` manage subscriptions that call a callback
    with `FileChange` lists.
  - `watch` feeds `FileEvent`s into a queue and returns the subscription
    name.
  - `create_client()` uses a 1000 ms settling delay and the default
    exclusions.

## Installation

```
pip install .
```

To install with the test dependencies:

```
pip install ".[test]"
```

## Examples

Analyse a CMake project:

```python
from poltergeist.cmake import CMakeAnalyzer, default_analysis_options

analyzer = CMakeAnalyzer("/path/to/project")
project = analyzer.analyze_project(default_analysis_options())
print(project.name, project.version)
for target in project.targets:
    print(target.name, target.type)
```

Build a target:

```python
from poltergeist.factory import create_builder
from poltergeist.targets import ExecutableTarget

target = ExecutableTarget(
    name="app",
    build_command="make app",
    watch_paths=["src/**/*.c"],
    output_path="app",
)
builder = create_builder(target, "/path/to/project", None, None)
builder.validate()
builder.build(["src/main.c"])
print(builder.success_rate, builder.last_build_time)
```

Watch a directory with the fallback watcher:

```python
import queue
from poltergeist.fallback import FallbackWatcher

events = queue.Queue()
with FallbackWatcher() as watcher:
    watcher.watch("/path/to/project", ["*.go"], events)
    print(events.get())
```

## Errors

Failures are raised as exceptions:

- `AnalysisError` comes from CMake analysis.
- `BuildError` comes from misconfigured targets and failed builds.
- `WatchmanError` comes from Watchman and the client.
- `KeyError` is raised when unsubscribing an unknown subscription.
- `ValueError` is raised for an empty watch pattern.

## What this package does not do

There is no command-line program, and no daemon that ties watching to
building. Callers connect watcher events to `builder.build` themselves.
Configuration files are not read from disk. Builders accept a
`state_manager` argument but do not use it, so no build state is recorded
beyond the log files. The CMake builders' `build` runs the target's own
build command. Calling `configure()` is a separate step.

## Running the tests

```
pytest
```