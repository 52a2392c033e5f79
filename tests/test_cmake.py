import pytest

from poltergeist.cmake import (
    AnalysisError,
    AnalysisOptions,
    CMakeAnalyzer,
    CMakeTarget,
    default_analysis_options,
)
from poltergeist.targets import CMakeBuildType, CMakeExecutableTarget, ProjectType


def write(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


def test_basic_project(tmp_path):
    write(
        tmp_path / "CMakeLists.txt",
        "cmake_minimum_required(VERSION 3.10)\n"
        "project(TestProject VERSION 1.0.0)\n\n"
        "add_executable(myapp main.cpp)\n"
        "add_library(mylib STATIC lib.cpp)",
    )
    project = CMakeAnalyzer(tmp_path).analyze_project(None)
    assert project.name == "TestProject"
    assert project.version == "1.0.0"
    assert len(project.targets) == 2
    types = {t.name: t.type for t in project.targets}
    assert types == {"myapp": "EXECUTABLE", "mylib": "STATIC_LIBRARY"}


def test_with_tests(tmp_path):
    write(
        tmp_path / "CMakeLists.txt",
        "cmake_minimum_required(VERSION 3.10)\n"
        "project(TestProject)\n\n"
        "add_executable(myapp main.cpp)\n\n"
        "enable_testing()\n"
        "add_test(NAME unit_tests COMMAND ./test_runner)\n"
        "add_test(NAME integration_tests COMMAND ./integration_runner)",
    )
    project = CMakeAnalyzer(tmp_path).analyze_project(AnalysisOptions(include_tests=True))
    assert len(project.targets) == 3
    assert sum(1 for t in project.targets if t.type == "TEST") == 2


def test_no_tests(tmp_path):
    write(
        tmp_path / "CMakeLists.txt",
        "cmake_minimum_required(VERSION 3.10)\n"
        "project(TestProject)\n\n"
        "add_executable(myapp main.cpp)\n\n"
        "enable_testing()\n"
        "add_test(NAME unit_tests COMMAND ./test_runner)",
    )
    project = CMakeAnalyzer(tmp_path).analyze_project(AnalysisOptions(include_tests=False))
    assert len(project.targets) == 1
    assert project.targets[0].type == "EXECUTABLE"


def test_recursive_search(tmp_path):
    write(
        tmp_path / "CMakeLists.txt",
        "cmake_minimum_required(VERSION 3.10)\n"
        "project(MainProject)\n"
        "add_subdirectory(subproject)\n"
        "add_executable(main main.cpp)",
    )
    write(tmp_path / "subproject" / "CMakeLists.txt", "add_library(sublib STATIC sublib.cpp)")
    project = CMakeAnalyzer(tmp_path).analyze_project(AnalysisOptions(recursive_search=True))
    assert len(project.targets) == 2
    by_name = {t.name: t for t in project.targets}
    assert set(by_name) == {"main", "sublib"}
    assert by_name["sublib"].directory == "subproject"


def test_non_recursive(tmp_path):
    write(
        tmp_path / "CMakeLists.txt",
        "cmake_minimum_required(VERSION 3.10)\n"
        "project(MainProject)\n"
        "add_executable(main main.cpp)",
    )
    write(tmp_path / "subproject" / "CMakeLists.txt", "add_library(sublib STATIC sublib.cpp)")
    project = CMakeAnalyzer(tmp_path).analyze_project(AnalysisOptions(recursive_search=False))
    assert len(project.targets) == 1
    assert project.targets[0].name == "main"


def test_no_cmake_files(tmp_path):
    with pytest.raises(AnalysisError, match="no CMakeLists.txt files found"):
        CMakeAnalyzer(tmp_path).analyze_project(None)


def test_build_directory_is_skipped(tmp_path):
    write(tmp_path / "CMakeLists.txt", "project(P)\nadd_executable(main main.cpp)")
    write(tmp_path / "build" / "CMakeLists.txt", "add_executable(generated x.cpp)")
    write(tmp_path / ".hidden" / "CMakeLists.txt", "add_executable(hidden x.cpp)")
    names = [t.name for t in CMakeAnalyzer(tmp_path).find_targets(None)]
    assert names == ["main"]


def test_find_targets(tmp_path):
    write(
        tmp_path / "CMakeLists.txt",
        "cmake_minimum_required(VERSION 3.10)\n"
        "project(TestProject)\n\n"
        "add_executable(app1 main1.cpp)\n"
        "add_executable(app2 main2.cpp)\n"
        "add_library(lib1 SHARED lib1.cpp)",
    )
    targets = CMakeAnalyzer(tmp_path).find_targets(None)
    assert len(targets) == 3
    assert {t.name for t in targets} == {"app1", "app2", "lib1"}


def test_validate_target_valid_then_invalid_generator(tmp_path):
    write(
        tmp_path / "CMakeLists.txt",
        "cmake_minimum_required(VERSION 3.10)\n"
        "project(TestProject)\n"
        "add_executable(test_target main.cpp)",
    )
    analyzer = CMakeAnalyzer(tmp_path)
    target = CMakeExecutableTarget(
        name="valid-target", target_name="test_target", generator="Unix Makefiles"
    )
    assert analyzer.validate_target(target) is None
    target.generator = "Invalid Generator"
    with pytest.raises(AnalysisError, match="invalid generator"):
        analyzer.validate_target(target)


@pytest.mark.parametrize(
    "target, expected",
    [
        (
            CMakeExecutableTarget(name="invalid-target", target_name=""),
            "target name is required",
        ),
        (
            CMakeExecutableTarget(
                name="invalid-generator",
                target_name="test_target",
                generator="Invalid Generator",
            ),
            "invalid generator",
        ),
    ],
)
def test_validate_target_errors(tmp_path, target, expected):
    write(tmp_path / "CMakeLists.txt", "project(TestProject)\nadd_executable(test_target main.cpp)")
    with pytest.raises(AnalysisError, match=expected):
        CMakeAnalyzer(tmp_path).validate_target(target)


def test_validate_target_no_cmake_file(tmp_path):
    target = CMakeExecutableTarget(name="test-target", target_name="test_target")
    with pytest.raises(AnalysisError, match="CMakeLists.txt not found"):
        CMakeAnalyzer(tmp_path).validate_target(target)


def test_get_recommended_config(tmp_path):
    write(
        tmp_path / "CMakeLists.txt",
        "cmake_minimum_required(VERSION 3.10)\n"
        "project(TestProject)\n\n"
        "add_executable(myapp main.cpp)\n"
        "add_library(mylib STATIC lib.cpp)\n"
        "add_library(mysharedlib SHARED shared.cpp)",
    )
    config = CMakeAnalyzer(tmp_path).get_recommended_config()
    assert config.version == "1.0"
    assert config.project_type == ProjectType.CMAKE
    assert len(config.targets) == 3
    types = {t["name"]: t["type"] for t in config.targets}
    assert types == {
        "myapp": "cmake-executable",
        "mylib": "cmake-library",
        "mysharedlib": "cmake-library",
    }
    myapp = next(t for t in config.targets if t["name"] == "myapp")
    assert "cmake --build build --target myapp" in myapp.values()


def test_get_build_commands(tmp_path):
    analyzer = CMakeAnalyzer(tmp_path)
    target = CMakeTarget(name="test_target", type="EXECUTABLE")
    assert analyzer.get_build_commands(target, CMakeBuildType.DEBUG) == [
        "cmake -B build -DCMAKE_BUILD_TYPE=Debug",
        "cmake --build build --target test_target",
    ]


def test_get_build_commands_release(tmp_path):
    analyzer = CMakeAnalyzer(tmp_path)
    target = CMakeTarget(name="release_target", type="EXECUTABLE")
    commands = analyzer.get_build_commands(target, CMakeBuildType.RELEASE)
    assert "-DCMAKE_BUILD_TYPE=Release" in commands[0]


def test_complex_project(tmp_path):
    for name in ("src", "tests", "lib", "external"):
        (tmp_path / name).mkdir()
    write(
        tmp_path / "CMakeLists.txt",
        "cmake_minimum_required(VERSION 3.15)\n"
        "project(ComplexProject VERSION 2.1.0 LANGUAGES CXX)\n\n"
        "set(CMAKE_CXX_STANDARD 17)\n\n"
        "# Main executable\n"
        "add_executable(myapp\n    src/main.cpp\n    src/utils.cpp\n)\n\n"
        "# Static library\n"
        "add_library(core STATIC\n    lib/core.cpp\n    lib/helpers.cpp\n)\n\n"
        "# Shared library\n"
        "add_library(plugin SHARED\n    lib/plugin.cpp\n)\n\n"
        "target_link_libraries(myapp core)\n\n"
        'option(BUILD_TESTS "Build tests" ON)\n'
        "if(BUILD_TESTS)\n    enable_testing()\n    add_subdirectory(tests)\nendif()",
    )
    write(
        tmp_path / "tests" / "CMakeLists.txt",
        "add_executable(unit_tests\n    test_main.cpp\n    test_core.cpp\n)\n\n"
        "target_link_libraries(unit_tests core)\n\n"
        "add_test(NAME UnitTests COMMAND unit_tests)",
    )
    options = AnalysisOptions(
        include_tests=True, recursive_search=True, build_dir="cmake-build", generator="Ninja"
    )
    project = CMakeAnalyzer(tmp_path).analyze_project(options)
    assert project.name == "ComplexProject"
    assert project.version == "2.1.0"
    assert project.build_dir == "cmake-build"
    assert project.generator == "Ninja"
    assert len(project.targets) == 5
    counts = {}
    for target in project.targets:
        counts[target.type] = counts.get(target.type, 0) + 1
    assert counts == {
        "EXECUTABLE": 2,
        "STATIC_LIBRARY": 1,
        "SHARED_LIBRARY": 1,
        "TEST": 1,
    }


@pytest.mark.parametrize(
    "content, expected_count",
    [
        ("# Empty file\n\t\t\t# Just comments", 0),
        ("cmake_minimum_required(VERSION 3.10)\nproject(EmptyProject)\n# No targets defined", 0),
        (
            "cmake_minimum_required(VERSION 3.10)\nproject(MalformedProject)\n"
            "add_executable(\n# Incomplete target definition",
            0,
        ),
        (
            "cmake_minimum_required(VERSION 3.10)\nproject(ComplexNames)\n"
            "add_executable(my-app-v2.1 main.cpp)\n"
            "add_library(lib_core_utils STATIC utils.cpp)",
            2,
        ),
    ],
)
def test_edge_cases(tmp_path, content, expected_count):
    write(tmp_path / "CMakeLists.txt", content)
    project = CMakeAnalyzer(tmp_path).analyze_project(None)
    assert len(project.targets) == expected_count


def test_default_analysis_options():
    options = default_analysis_options()
    assert options.include_tests is True
    assert options.analyze_deps is True
    assert options.build_dir == "build"
    assert options.generator == ""
    assert options.recursive_search is True