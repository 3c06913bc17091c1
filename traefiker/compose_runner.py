"""Runs ``docker compose`` against the deployment file."""
import json
import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Literal

ServiceState = Literal["running", "stopped", "error"]


# --- Custom Exceptions ---

class ComposeRunnerError(Exception):
    """Base exception for docker compose errors."""
    pass


class DockerNotFoundError(ComposeRunnerError):
    """Raised when the docker binary cannot be found."""
    pass


class ComposeCommandError(ComposeRunnerError):
    """Raised when a docker command fails or times out."""
    pass


def _parse_ps_output(output: str) -> List[Dict]:
    """Parse ``docker compose ps --format json`` (a JSON array or one object per line)."""
    output = output.strip()
    if not output:
        return []
    if output.startswith("["):
        return json.loads(output)

    entries = []
    for line in output.split("\n"):
        if not line.strip():
            continue
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return entries


def _container_state(info: Dict) -> ServiceState:
    state = str(info.get("State", "")).lower()
    if state in ["running", "up"]:
        return "running"
    if state == "dead" or (state == "exited" and info.get("ExitCode", 0) not in (0, None)):
        return "error"
    return "stopped"


class ComposeRunner:
    """Container-engine operations for the services of one compose file."""

    def __init__(self, compose_file: Path, timeout: int = 600):
        self._compose_file = Path(compose_file)
        self._timeout = timeout

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        command = ["docker", *args]
        logging.debug(f"Running {' '.join(command)}")
        try:
            return subprocess.run(
                command,
                cwd=self._compose_file.parent,
                capture_output=True,
                text=True,
                check=True,
                timeout=self._timeout,
            )
        except FileNotFoundError:
            raise DockerNotFoundError("docker binary not found.")
        except subprocess.CalledProcessError as e:
            error_message = e.stderr or e.stdout or ""
            raise ComposeCommandError(
                f"'{' '.join(command)}' failed: {error_message.strip()}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ComposeCommandError(
                f"'{' '.join(command)}' timed out after {self._timeout} seconds"
            ) from e

    def _compose(self, *args: str) -> subprocess.CompletedProcess:
        return self._run(["compose", "-f", str(self._compose_file), *args])

    def deploy(self):
        """Pull images, bring every service up and prune leftovers."""
        self._compose("pull")
        self._compose("up", "-d", "--remove-orphans")
        self._run(["system", "prune", "-f"])
        logging.info(f"Deployed {self._compose_file}")

    def up(self, name: str):
        self._compose("up", "-d", name)

    def stop(self, name: str):
        self._compose("stop", name)

    def remove(self, name: str):
        self._compose("rm", "-s", "-f", name)

    def status(self) -> Dict[str, ServiceState]:
        """Map each service with a container to running, stopped or error."""
        result = self._compose("ps", "--all", "--format", "json")
        try:
            entries = _parse_ps_output(result.stdout)
        except json.JSONDecodeError as e:
            raise ComposeCommandError(f"Unreadable 'docker compose ps' output: {e}") from e

        states: Dict[str, ServiceState] = {}
        for info in entries:
            name = info.get("Service")
            if not name:
                continue
            state = _container_state(info)
            # A service counts as running if any of its containers runs
            if states.get(name) != "running":
                states[name] = state
        return states
