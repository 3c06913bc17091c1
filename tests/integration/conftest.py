"""Fixtures specifically for integration tests."""

import shutil
import subprocess

import pytest


@pytest.fixture
def integration_compose_file(tmp_path):
    """
    Returns the path of an empty compose file in a fresh project directory.
    Tears the compose project down afterwards.
    """
    compose_file = tmp_path / "docker-compose.yml"
    compose_file.write_text("services: {}\n")
    yield compose_file

    if shutil.which("docker"):
        subprocess.run(
            ["docker", "compose", "-f", str(compose_file), "down", "--remove-orphans"],
            cwd=tmp_path,
            capture_output=True,
            text=True,
            timeout=120,
        )
