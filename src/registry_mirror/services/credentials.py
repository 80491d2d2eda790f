"""Per-registry credential lookup.

The resolver is handed explicitly to every discovery and copy call and
doubles as the registry client's authenticator. It never fails: a
registry without stored credentials gets an empty pair, and a bad
password only shows up later, when the registry rejects the pull or push.
"""

import logging
from typing import Callable, NamedTuple

from registry_mirror.models.config import DOCKER_HUB, Registry
from registry_mirror.models.reference import DEFAULT_REGISTRY, Resource

logger = logging.getLogger(__name__)


class Credentials(NamedTuple):
    username: str
    password: str

    @property
    def anonymous(self) -> bool:
        return not self.username and not self.password


ANONYMOUS = Credentials("", "")

Authenticator = Callable[[Resource], Credentials]


class CredentialResolver:
    def __init__(self, registries: dict[str, Registry] | None = None):
        self._registries = dict(registries or {})

    def resolve(self, hostname: str) -> Credentials:
        """Return the stored (username, password) for a registry host.

        References without an explicit host resolve to the default
        registry sentinel, which is looked up under "hub.docker.com".
        """
        key = DOCKER_HUB if hostname == DEFAULT_REGISTRY else hostname
        entry = self._registries.get(key)
        if entry is None:
            logger.debug(f"no credentials for '{hostname}', using anonymous access")
            return ANONYMOUS
        return Credentials(entry.username, entry.password)

    def authenticate(self, resource: Resource) -> Credentials:
        return self.resolve(resource.registry_hostname())

    __call__ = authenticate

    def username_for(self, hostname: str) -> str:
        return self.resolve(hostname).username
