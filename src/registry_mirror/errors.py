"""Exceptions raised by the mirroring engine and its collaborators."""


class MirrorError(Exception):
    """Base class for all registry-mirror errors."""


class ReferenceParseError(MirrorError, ValueError):
    """A string could not be interpreted as an image reference."""


class RateExpressionError(MirrorError, ValueError):
    """Malformed rate-limit or duration expression."""


class DiscoveryError(MirrorError):
    """Expanding a mirror rule into images failed."""


class RegistryClientError(MirrorError):
    """The registry client could not list or copy."""


class AdmissionCancelled(MirrorError):
    """The rate controller was aborted while waiting for a slot."""


class NoImagesError(MirrorError):
    """Nothing to mirror: no explicit images and no discovered ones."""
