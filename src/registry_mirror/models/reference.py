"""Разбор ссылок на Docker-образы.

Ссылка - это строка вида REGISTRY_HOST[:PORT]/PATH[:TAG|@DIGEST].
Пользователь никогда не создаёт ImageReference напрямую, только через
parse_reference().

Примеры:
    "quay.io/foo/bar:v1"              → ("quay.io", "foo/bar", "v1")
    "localhost:5000/app"              → ("localhost:5000", "app", "latest")
    "ubuntu:22.04"                    → ("index.docker.io", "library/ubuntu", "22.04")
    "lib/app"                         → ("index.docker.io", "lib/app", "latest")
"""

import re
from dataclasses import dataclass
from typing import Protocol

from registry_mirror.errors import ReferenceParseError

# Sentinel registry for references without an explicit host.
DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

_DOCKER_IO_ALIASES = {"docker.io", DEFAULT_REGISTRY}
_PATH_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST = re.compile(r"^sha256:[a-f0-9]{64}$")
_REGISTRY = re.compile(r"^[a-zA-Z0-9.-]+(?::[0-9]+)?$")


class Resource(Protocol):
    """Anything an authenticator can be asked about."""

    def registry_hostname(self) -> str: ...


@dataclass(frozen=True)
class RegistryHost:
    """A bare registry, used when there is no image to point at (catalog listing)."""

    hostname: str

    def registry_hostname(self) -> str:
        return self.hostname


@dataclass(frozen=True)
class ImageReference:
    """Разобранная ссылка: (registry, repository, tag-or-digest)."""

    registry: str
    repository: str
    identifier: str

    @property
    def name(self) -> str:
        return f"{self.registry}/{self.repository}"

    @property
    def is_digest(self) -> bool:
        return self.identifier.startswith("sha256:")

    def registry_hostname(self) -> str:
        return self.registry

    def __str__(self) -> str:
        separator = "@" if self.is_digest else ":"
        return f"{self.name}{separator}{self.identifier}"


def parse_reference(reference: str) -> ImageReference:
    """Разобрать строку в ImageReference.

    Бросает ReferenceParseError, если строка не является корректной ссылкой.
    """
    if not reference or reference != reference.strip():
        raise ReferenceParseError(f"invalid reference '{reference}'")

    remainder, identifier = _split_identifier(reference)
    registry, repository = _split_registry(remainder)

    if not repository:
        raise ReferenceParseError(f"missing repository in '{reference}'")
    for component in repository.split("/"):
        if not _PATH_COMPONENT.match(component):
            raise ReferenceParseError(
                f"invalid repository component '{component}' in '{reference}'"
            )

    return ImageReference(registry=registry, repository=repository, identifier=identifier)


def _split_identifier(reference: str) -> tuple[str, str]:
    if "@" in reference:
        remainder, digest = reference.rsplit("@", 1)
        if not _DIGEST.match(digest):
            raise ReferenceParseError(f"invalid digest '{digest}' in '{reference}'")
        return remainder, digest

    # A colon after the last slash separates the tag; earlier colons are ports.
    last_slash = reference.rfind("/")
    colon = reference.rfind(":")
    if colon > last_slash:
        remainder, tag = reference[:colon], reference[colon + 1:]
        if not _TAG.match(tag):
            raise ReferenceParseError(f"invalid tag '{tag}' in '{reference}'")
        return remainder, tag
    return reference, DEFAULT_TAG


def _split_registry(remainder: str) -> tuple[str, str]:
    parts = remainder.split("/", 1)
    first = parts[0]
    if len(parts) == 2 and ("." in first or ":" in first or first == "localhost"):
        if not _REGISTRY.match(first):
            raise ReferenceParseError(f"invalid registry '{first}'")
        registry, repository = first, parts[1]
        if registry in _DOCKER_IO_ALIASES:
            registry = DEFAULT_REGISTRY
    else:
        registry, repository = DEFAULT_REGISTRY, remainder

    # Official images on the default registry live under library/
    if registry == DEFAULT_REGISTRY and repository and "/" not in repository:
        repository = f"library/{repository}"
    return registry, repository
