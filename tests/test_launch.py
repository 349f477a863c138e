import pathlib
import sys
from typing import List

import pytest

from qmlauncher.environment import LaunchEnvironment
from qmlauncher.errors import LaunchError
from qmlauncher.launch import ProcessHandle, launch, log_runner, mask_arguments, quiet_runner


def python_environment(game_dir: pathlib.Path, code: str) -> LaunchEnvironment:
    """An environment whose "JVM" is the running Python interpreter."""
    return LaunchEnvironment(
        java_path=pathlib.Path(sys.executable),
        jvm_args=[],
        main_class="-c",
        game_args=[code],
        game_dir=game_dir,
    )


def test_mask_arguments_hides_credentials() -> None:
    args = ["--username", "Steve", "--accessToken", "secret", "--uuid", "1234", "--version", "1.21.5"]

    assert mask_arguments(args) == ["--username", "Steve", "--accessToken", "***", "--uuid", "***",
                                    "--version", "1.21.5"]


def test_launch_hands_command_to_runner(tmp_path: pathlib.Path) -> None:
    handles: List[ProcessHandle] = []
    environment = LaunchEnvironment(
        java_path=pathlib.Path("/opt/java/bin/java"),
        jvm_args=["-Xmx2048M", "-cp", "a.jar"],
        main_class="net.minecraft.client.main.Main",
        game_args=["--username", "Steve"],
        game_dir=tmp_path / "game",
    )

    launch(environment, handles.append)

    assert handles[0].args == ["/opt/java/bin/java", "-Xmx2048M", "-cp", "a.jar",
                               "net.minecraft.client.main.Main", "--username", "Steve"]
    assert handles[0].cwd == tmp_path / "game"
    assert "PATH" in handles[0].env
    assert (tmp_path / "game").is_dir()


def test_runner_os_error_becomes_launch_error(tmp_path: pathlib.Path) -> None:
    def failing(handle: ProcessHandle) -> None:
        raise FileNotFoundError(handle.args[0])

    with pytest.raises(LaunchError):
        launch(python_environment(tmp_path, "pass"), failing)


def test_quiet_runner_reports_exit_code(tmp_path: pathlib.Path) -> None:
    launch(python_environment(tmp_path, "pass"), quiet_runner)

    with pytest.raises(LaunchError, match="code 3"):
        launch(python_environment(tmp_path, "raise SystemExit(3)"), quiet_runner)


def test_log_runner_appends_output(tmp_path: pathlib.Path) -> None:
    log_path = tmp_path / "logs" / "game.log"
    code = "import sys; print('out'); print('err', file=sys.stderr)"

    launch(python_environment(tmp_path, code), log_runner(log_path))
    launch(python_environment(tmp_path, code), log_runner(log_path))

    lines = log_path.read_text().split()
    assert lines.count("out") == 2
    assert lines.count("err") == 2
