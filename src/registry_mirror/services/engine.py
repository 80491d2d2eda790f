"""Mirroring loop.

One pass copies every image once, strictly in order, each copy admitted
by the rate controller. A failed copy is counted and the pass moves on;
a cancelled admission aborts the pass.

Mirror rules are expanded again at the start of every pass, so
repositories published between passes are picked up. With a repeat
interval below one minute the engine makes exactly one pass.
"""

import logging
import threading
from dataclasses import dataclass

from registry_mirror.errors import MirrorError, NoImagesError
from registry_mirror.models.config import Image, MirrorConfig
from registry_mirror.models.reference import parse_reference
from registry_mirror.services.credentials import CredentialResolver
from registry_mirror.services.discovery import RepositoryDiscoverer
from registry_mirror.services.rate import RateController
from registry_mirror.services.registry_client import RegistryClient

logger = logging.getLogger(__name__)

MIN_INTERVAL = 60.0


@dataclass
class RunCounters:
    total: int = 0
    succeeded: int = 0
    failed: int = 0


class MirrorEngine:
    def __init__(
        self,
        config: MirrorConfig,
        registry_client: RegistryClient,
        credentials: CredentialResolver,
        discoverer: RepositoryDiscoverer,
        rate_controller: RateController | None = None,
        interval: float = 0.0,
    ):
        self.config = config
        self.registry_client = registry_client
        self.credentials = credentials
        self.discoverer = discoverer
        self.rate_controller = rate_controller or RateController()
        self.interval = interval

    @property
    def repeating(self) -> bool:
        return self.interval >= MIN_INTERVAL

    def collect_images(self) -> list[Image]:
        """Explicit images followed by everything the mirror rules expand to."""
        images = list(self.config.images)
        images.extend(self.discoverer.discover_all(self.config.mirrors))
        return images

    def run(self, stop: threading.Event | None = None) -> list[RunCounters]:
        """Run one pass, or repeat passes until ``stop`` is set.

        Raises NoImagesError if the first pass has nothing to copy, and
        AdmissionCancelled if ``stop`` interrupts a rate controller wait.
        """
        stop = stop or threading.Event()
        results: list[RunCounters] = []

        images = self.collect_images()
        if not images:
            raise NoImagesError("No images to mirror, exiting.")

        while True:
            results.append(self.mirror(images, stop))
            if not self.repeating:
                return results
            if stop.wait(self.interval):
                logger.info("stop requested, exiting")
                return results
            images = self.collect_images()
            if not images:
                logger.warning("no images to mirror in this pass")

    def mirror(self, images: list[Image], stop: threading.Event | None = None) -> RunCounters:
        """Copy each image once and tally the outcomes."""
        counters = RunCounters()
        logger.info(f"Starting to mirror {len(images)} images")
        for image in images:
            self.rate_controller.admit(stop)
            counters.total += 1
            try:
                self.copy(image)
            except MirrorError as e:
                counters.failed += 1
                logger.error(f"mirror {image.source} to {image.destination} failed: {e}")
            else:
                counters.succeeded += 1
                logger.info(f"mirror {image.source} to {image.destination} success")
        logger.info(
            f"Finished mirroring, {counters.succeeded} succeeded, {counters.failed} failed"
        )
        return counters

    def copy(self, image: Image) -> None:
        source = parse_reference(image.source)
        destination = parse_reference(image.destination)
        self.registry_client.copy(source, destination, self.credentials)
