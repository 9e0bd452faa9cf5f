"""Tests for the docker compose adapter."""

import subprocess
from pathlib import Path

import pytest

from tier_sync.config import ContainerConfig
from tier_sync.errors import ContainerError
from tier_sync.metadata import DockerComposeManager


class RecordingRunner:
    """subprocess.run replacement that records commands."""

    def __init__(self, stdout="", error=None):
        self.calls = []
        self.stdout = stdout
        self.error = error

    def __call__(self, command, **kwargs):
        self.calls.append((command, kwargs))
        if self.error is not None:
            raise self.error
        return subprocess.CompletedProcess(command, 0, stdout=self.stdout, stderr="")


@pytest.fixture
def config():
    return ContainerConfig(compose_dir=Path("/srv/operator-graphql-api"), service="operator-graphql-server")


class TestDockerComposeManager:
    """Tests for DockerComposeManager."""

    def test_rebuild(self, config):
        runner = RecordingRunner()
        DockerComposeManager(config, runner=runner).rebuild()

        assert [c[0] for c in runner.calls] == [
            ["docker", "compose", "down", "-v", "--remove-orphans"],
            ["docker", "compose", "up", "-d"],
        ]
        assert runner.calls[0][1]["cwd"] == "/srv/operator-graphql-api"
        assert runner.calls[0][1]["check"] is True

    def test_command_failure(self, config):
        error = subprocess.CalledProcessError(1, ["docker"], stderr="no such service")
        with pytest.raises(ContainerError, match="no such service"):
            DockerComposeManager(config, runner=RecordingRunner(error=error)).rebuild()

    def test_timeout(self, config):
        error = subprocess.TimeoutExpired(["docker"], 300)
        with pytest.raises(ContainerError, match="timed out"):
            DockerComposeManager(config, runner=RecordingRunner(error=error)).rebuild()

    def test_docker_missing(self, config):
        with pytest.raises(ContainerError):
            DockerComposeManager(config, runner=RecordingRunner(error=FileNotFoundError("docker"))).rebuild()
