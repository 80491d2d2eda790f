"""Expand mirror rules into concrete images.

A rule names a source registry (or Docker Hub namespace) and a
destination registry. Every repository found at the source becomes one
Image, keeping its relative path and tag:

    rule:  from quay.io, to myhost.example, namespace mirrored
    found: quay.io/foo/bar:v1
    image: quay.io/foo/bar:v1 → myhost.example/mirrored/foo/bar:v1

Discovery is best-effort. A rule that fails is logged and yields no
images; a repository name that does not parse is skipped on its own.
"""

import logging
from typing import Iterable

from pydantic import ValidationError

from registry_mirror.errors import DiscoveryError, RegistryClientError, ReferenceParseError
from registry_mirror.models.config import DOCKER_HUB, Image, MirrorRule
from registry_mirror.models.reference import ImageReference, parse_reference
from registry_mirror.services.credentials import CredentialResolver
from registry_mirror.services.dockerhub import DockerHubClient
from registry_mirror.services.registry_client import RegistryClient

logger = logging.getLogger(__name__)


def parse_references(candidates: Iterable[str]) -> tuple[list[ImageReference], int]:
    """Parse candidate strings, skipping the ones that are not references.

    Returns (references, skipped_count).
    """
    references: list[ImageReference] = []
    skipped = 0
    for candidate in candidates:
        try:
            references.append(parse_reference(candidate))
        except ReferenceParseError as e:
            skipped += 1
            logger.debug(f"skipping repository '{candidate}': {e}")
    if skipped:
        logger.warning(f"skipped {skipped} unparseable repository name(s)")
    return references, skipped


def destination_for(source: ImageReference, rule: MirrorRule) -> str:
    """Destination reference string for a discovered source reference."""
    path = source.repository
    if rule.namespace:
        path = f"{rule.namespace}/{path}"
    separator = "@" if source.is_digest else ":"
    return f"{rule.destination}/{path}{separator}{source.identifier}"


class RepositoryDiscoverer:
    def __init__(
        self,
        registry_client: RegistryClient,
        credentials: CredentialResolver,
        hub_client: DockerHubClient | None = None,
    ):
        self.registry_client = registry_client
        self.credentials = credentials
        self.hub_client = hub_client or DockerHubClient()

    def discover_all(self, rules: Iterable[MirrorRule]) -> list[Image]:
        """Expand every rule; failures of one rule do not affect the others."""
        images: list[Image] = []
        for rule in rules:
            try:
                discovered = self.discover(rule)
            except DiscoveryError as e:
                logger.error(f"error discovering repositories for '{rule.source}': {e}")
                continue
            logger.info(f"discovered {len(discovered)} image(s) in '{rule.source}'")
            images.extend(discovered)
        return images

    def discover(self, rule: MirrorRule) -> list[Image]:
        """Expand one rule into images. Raises DiscoveryError on failure."""
        references = self.repositories(rule.source)
        try:
            return [
                Image(source=str(ref), destination=destination_for(ref, rule))
                for ref in references
            ]
        except ValidationError as e:
            raise DiscoveryError(f"invalid destination for '{rule.destination}': {e}") from e

    def repositories(self, source: str) -> list[ImageReference]:
        """Pick the listing strategy for a rule's source."""
        host, _, namespace = source.partition("/")

        if source == DOCKER_HUB:
            username = self.credentials.username_for(DOCKER_HUB)
            if not username:
                raise DiscoveryError(
                    f"'{DOCKER_HUB}' without a namespace needs a username in registries"
                )
            return self.docker_hub_repositories(username)
        if host == DOCKER_HUB and namespace:
            return self.docker_hub_repositories(namespace)
        if not source.startswith(DOCKER_HUB):
            return self.catalog_repositories(host, namespace)
        raise DiscoveryError(f"invalid mirror source '{source}'")

    def catalog_repositories(self, registry: str, namespace: str = "") -> list[ImageReference]:
        try:
            names = self.registry_client.catalog(registry, self.credentials)
        except RegistryClientError as e:
            raise DiscoveryError(str(e)) from e
        if namespace:
            names = [name for name in names if name.startswith(f"{namespace}/")]
        references, _ = parse_references(f"{registry}/{name}" for name in names)
        return references

    def docker_hub_repositories(self, namespace: str) -> list[ImageReference]:
        username, password = self.credentials.resolve(DOCKER_HUB)
        token = self.hub_client.login(username, password)
        repos = self.hub_client.list_repositories(namespace, token)
        references, _ = parse_references(f"{repo.namespace}/{repo.name}" for repo in repos)
        return references
