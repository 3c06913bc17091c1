"""Tests for the docker compose runner."""
import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from traefiker.compose_runner import (
    ComposeCommandError,
    ComposeRunner,
    DockerNotFoundError,
)


@pytest.fixture
def runner(tmp_path):
    return ComposeRunner(tmp_path / "docker-compose.yml", timeout=30)


def _completed(stdout: str = "") -> MagicMock:
    result = MagicMock(spec=subprocess.CompletedProcess)
    result.stdout = stdout
    result.returncode = 0
    return result


@patch("traefiker.compose_runner.subprocess.run")
def test_deploy_runs_pull_up_and_prune(mock_run, runner, tmp_path):
    mock_run.return_value = _completed()
    compose_file = str(tmp_path / "docker-compose.yml")

    runner.deploy()

    commands = [c.args[0] for c in mock_run.call_args_list]
    assert commands == [
        ["docker", "compose", "-f", compose_file, "pull"],
        ["docker", "compose", "-f", compose_file, "up", "-d", "--remove-orphans"],
        ["docker", "system", "prune", "-f"],
    ]
    assert mock_run.call_args_list[0].kwargs["cwd"] == tmp_path
    assert mock_run.call_args_list[0].kwargs["timeout"] == 30


@patch("traefiker.compose_runner.subprocess.run")
def test_service_commands(mock_run, runner, tmp_path):
    mock_run.return_value = _completed()
    prefix = ["docker", "compose", "-f", str(tmp_path / "docker-compose.yml")]

    runner.up("web")
    runner.stop("web")
    runner.remove("web")

    commands = [c.args[0] for c in mock_run.call_args_list]
    assert commands == [
        prefix + ["up", "-d", "web"],
        prefix + ["stop", "web"],
        prefix + ["rm", "-s", "-f", "web"],
    ]


@patch("traefiker.compose_runner.subprocess.run", side_effect=FileNotFoundError)
def test_missing_docker(mock_run, runner):
    with pytest.raises(DockerNotFoundError):
        runner.stop("web")


@patch("traefiker.compose_runner.subprocess.run")
def test_command_failure(mock_run, runner):
    mock_run.side_effect = subprocess.CalledProcessError(
        1, ["docker"], output="", stderr="no such service: web\n"
    )

    with pytest.raises(ComposeCommandError, match="no such service: web"):
        runner.stop("web")


@patch("traefiker.compose_runner.subprocess.run")
def test_command_timeout(mock_run, runner):
    mock_run.side_effect = subprocess.TimeoutExpired(["docker"], 30)

    with pytest.raises(ComposeCommandError, match="timed out"):
        runner.deploy()


@patch("traefiker.compose_runner.subprocess.run")
def test_status_from_json_lines(mock_run, runner):
    lines = [
        {"Service": "web", "State": "running"},
        {"Service": "db", "State": "exited", "ExitCode": 0},
        {"Service": "worker", "State": "exited", "ExitCode": 137},
        {"Service": "cache", "State": "created"},
    ]
    mock_run.return_value = _completed("\n".join(json.dumps(line) for line in lines))

    assert runner.status() == {
        "web": "running",
        "db": "stopped",
        "worker": "error",
        "cache": "stopped",
    }


@patch("traefiker.compose_runner.subprocess.run")
def test_status_from_json_array(mock_run, runner):
    entries = [
        {"Service": "web", "State": "exited", "ExitCode": 0},
        {"Service": "web", "State": "running"},
    ]
    mock_run.return_value = _completed(json.dumps(entries))

    assert runner.status() == {"web": "running"}


@patch("traefiker.compose_runner.subprocess.run")
def test_status_no_containers(mock_run, runner):
    mock_run.return_value = _completed("")

    assert runner.status() == {}
