"""
Docker compose lifecycle adapter for development tiers.

Production tiers are never rebuilt through this module; the orchestrator
only calls it for the development environment.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Callable, Optional

from tier_sync.config import ContainerConfig
from tier_sync.errors import ContainerError

logger = logging.getLogger(__name__)


class DockerComposeManager:
    """Rebuilds the compose project backing one tier."""

    def __init__(
        self,
        config: ContainerConfig,
        runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
    ):
        self.config = config
        self._run = runner or subprocess.run

    def _compose(self, *args: str) -> subprocess.CompletedProcess:
        command = ["docker", "compose", *args]
        logger.debug(f"Running {' '.join(command)} in {self.config.compose_dir}")
        try:
            return self._run(
                command,
                cwd=str(self.config.compose_dir),
                check=True,
                capture_output=True,
                text=True,
                timeout=self.config.timeout,
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise ContainerError(f"{' '.join(command)} failed: {stderr or e}") from e
        except subprocess.TimeoutExpired as e:
            raise ContainerError(f"{' '.join(command)} timed out after {self.config.timeout}s") from e
        except FileNotFoundError as e:
            raise ContainerError(f"Cannot run docker in {self.config.compose_dir}: {e}") from e

    def rebuild(self) -> None:
        """Stop the stack, drop its volumes (metadata included) and start it again."""
        logger.info(f"Rebuilding containers in {self.config.compose_dir}")
        self._compose("down", "-v", "--remove-orphans")
        self._compose("up", "-d")
        logger.info("Containers started")

