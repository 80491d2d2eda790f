"""Registry client: catalog listing and image copy.

The engine only needs two capabilities from a registry client, described
by the RegistryClient protocol. CraneClient provides them by running the
crane CLI (https://github.com/google/go-containerregistry). Credentials
are not taken from the user's docker login: for each call a temporary
DOCKER_CONFIG is written with whatever the authenticator returns for the
registries involved.
"""

import base64
import json
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol

from registry_mirror.errors import RegistryClientError
from registry_mirror.models.reference import DEFAULT_REGISTRY, ImageReference, RegistryHost, Resource
from registry_mirror.services.credentials import Authenticator

logger = logging.getLogger(__name__)

# docker config key crane's keychain uses for the default registry
_DOCKER_HUB_CONFIG_KEY = "https://index.docker.io/v1/"


class RegistryClient(Protocol):
    def catalog(self, registry: str, authenticator: Authenticator) -> list[str]: ...

    def copy(
        self,
        source: ImageReference,
        destination: ImageReference,
        authenticator: Authenticator,
    ) -> None: ...


class CraneClient:
    """RegistryClient backed by the crane CLI."""

    def __init__(self, binary: str = "crane", timeout: float = 3600):
        self.binary = binary
        self.timeout = timeout

    def catalog(self, registry: str, authenticator: Authenticator) -> list[str]:
        """List repository names in a registry (``crane catalog``)."""
        output = self._run(["catalog", registry], [RegistryHost(registry)], authenticator)
        return [line.strip() for line in output.splitlines() if line.strip()]

    def copy(
        self,
        source: ImageReference,
        destination: ImageReference,
        authenticator: Authenticator,
    ) -> None:
        """Copy an image between registries (``crane copy``).

        Source and destination are authenticated independently.
        """
        self._run(["copy", str(source), str(destination)], [source, destination], authenticator)

    def _run(self, args: list[str], resources: list[Resource], authenticator: Authenticator) -> str:
        with tempfile.TemporaryDirectory() as tmpdir:
            _write_docker_config(Path(tmpdir), resources, authenticator)
            env = {**os.environ, "DOCKER_CONFIG": tmpdir}
            cmd = [self.binary, *args]
            logger.debug(f"running {' '.join(cmd)}")
            try:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                    env=env,
                )
            except FileNotFoundError:
                raise RegistryClientError(
                    f"{self.binary} CLI not found. Install crane: "
                    "https://github.com/google/go-containerregistry/tree/main/cmd/crane"
                )
            except OSError as e:
                raise RegistryClientError(f"unable to run {self.binary}: {e}") from e
            except subprocess.TimeoutExpired:
                raise RegistryClientError(f"crane {args[0]} timed out after {self.timeout}s")

        if result.returncode != 0:
            raise RegistryClientError(f"crane {args[0]} failed: {result.stderr.strip()}")
        return result.stdout


def _write_docker_config(dest: Path, resources: list[Resource], authenticator: Authenticator) -> None:
    """Write a docker config.json with credentials for each resource's registry."""
    auths: dict[str, dict[str, str]] = {}
    for resource in resources:
        hostname = resource.registry_hostname()
        credentials = authenticator(resource)
        if credentials.anonymous:
            continue
        key = _DOCKER_HUB_CONFIG_KEY if hostname == DEFAULT_REGISTRY else hostname
        token = base64.b64encode(
            f"{credentials.username}:{credentials.password}".encode("utf-8")
        ).decode("ascii")
        auths[key] = {"auth": token}

    with open(dest / "config.json", "w", encoding="utf-8") as f:
        json.dump({"auths": auths}, f)
