"""
End-to-end integration tests for Traefiker.
These tests drive a real docker engine through the CLI.
"""

import os

import pytest
from typer.testing import CliRunner

from traefiker import cli
from traefiker.cli import app

runner = CliRunner()


@pytest.mark.skipif(
    not os.getenv("TRAEFIKER_INTEGRATION_TEST"),
    reason="Only runs with a docker engine available",
)
class TestFullLifecycle:
    """Tests the flow from creation to removal of a service."""

    def test_end_to_end_service_flow(self, integration_compose_file, monkeypatch):
        """
        Flow: Create -> Start -> Status -> Stop -> Delete
        """
        for name in ("store", "manager"):
            monkeypatch.setattr(f"traefiker.cli.{name}", getattr(cli, name))
        # The implicit project network needs no top-level declaration
        monkeypatch.setattr(
            "traefiker.cli.settings", cli.settings.model_copy(update={"networks": ["default"]})
        )
        base = ["--compose-file", str(integration_compose_file)]

        # 1. Create the service in the compose file
        result = runner.invoke(
            app, base + ["create", "whoami", "-i", "traefik/whoami", "-H", "whoami.localhost/api"]
        )
        assert result.exit_code == 0, result.stdout
        assert "PathPrefix(`/api`)" in integration_compose_file.read_text()

        # 2. Start its container
        result = runner.invoke(app, base + ["start", "whoami"])
        assert result.exit_code == 0, result.stdout

        # 3. Status reports it running
        result = runner.invoke(app, base + ["status"])
        assert result.exit_code == 0
        assert "Running" in result.stdout

        # 4. Stop it
        result = runner.invoke(app, base + ["stop", "whoami"])
        assert result.exit_code == 0, result.stdout
        assert "stopped successfully" in result.stdout

        # 5. Delete it along with its container
        result = runner.invoke(app, base + ["delete", "whoami", "--yes", "--remove-container"])
        assert result.exit_code == 0, result.stdout
        assert "whoami" not in integration_compose_file.read_text()
