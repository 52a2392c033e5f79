import json

from poltergeist.targets import (
    AppBundleTarget,
    BaseTarget,
    CMakeBuildType,
    CMakeExecutableTarget,
    CMakeLibraryTarget,
    ExecutableTarget,
    LibraryType,
    PoltergeistConfig,
    TargetType,
)


def test_to_dict_carries_name_and_type():
    target = ExecutableTarget(
        name="app", build_command="make", watch_paths=["*.c"], output_path="bin/app"
    )
    data = target.to_dict()
    assert data["name"] == "app"
    assert data["type"] == TargetType.EXECUTABLE.value
    assert "bin/app" in data.values()
    assert ["*.c"] in data.values()


def test_to_dict_omits_empty_values():
    data = BaseTarget(name="only-name").to_dict()
    assert data == {"name": "only-name"}


def test_to_dict_is_json_round_trippable():
    target = CMakeLibraryTarget(
        name="lib",
        target_name="lib",
        build_type=CMakeBuildType.RELEASE,
        library_type=LibraryType.DYNAMIC,
        cmake_args=["-DFOO=1"],
        environment={"CC": "clang"},
    )
    data = target.to_dict()
    assert json.loads(json.dumps(data)) == data
    assert "Release" in data.values()
    assert {"CC": "clang"} in data.values()


def test_subclass_default_types():
    assert CMakeExecutableTarget().to_dict()["type"] == "cmake-executable"
    assert CMakeLibraryTarget().to_dict()["type"] == "cmake-library"
    assert CMakeExecutableTarget().type is TargetType.CMAKE_EXECUTABLE


def test_false_flag_is_kept_but_none_is_dropped():
    kept = AppBundleTarget(name="App", auto_relaunch=False).to_dict()
    dropped = AppBundleTarget(name="App").to_dict()
    assert False in kept.values()
    assert len(kept) == len(dropped) + 1


def test_enum_values_serialise_as_plain_strings():
    target = CMakeExecutableTarget(name="app", build_type=CMakeBuildType.DEBUG)
    data = target.to_dict()
    assert data["type"] == "cmake-executable"
    assert "Debug" in data.values()
    assert str(target.build_type) == "Debug"
    assert f"{CMakeLibraryTarget().type}" == "cmake-library"


def test_config_targets_are_independent():
    first = PoltergeistConfig()
    second = PoltergeistConfig()
    first.targets.append({"name": "a"})
    assert second.targets == []
    assert first.watchman is None