"""Тесты для MirrorEngine: подсчёт результатов, ограничение скорости, повторы."""

import threading
from unittest.mock import MagicMock, patch

import pytest

from registry_mirror.errors import AdmissionCancelled, NoImagesError, RegistryClientError
from registry_mirror.models.config import Image, MirrorConfig, MirrorRule, Registry
from registry_mirror.services.credentials import CredentialResolver
from registry_mirror.services.discovery import RepositoryDiscoverer
from registry_mirror.services.engine import MIN_INTERVAL, MirrorEngine, RunCounters
from registry_mirror.services.rate import RateController
from registry_mirror.services.registry_client import CraneClient


class FakeRegistryClient:
    """Копирование «понарошку»: запоминает вызовы, падает на заданных номерах."""

    def __init__(self, fail_on=(), catalogs=None):
        self.fail_on = set(fail_on)
        self.catalogs = catalogs or {}
        self.copies = []

    def catalog(self, registry, authenticator):
        return list(self.catalogs.get(registry, []))

    def copy(self, source, destination, authenticator):
        self.copies.append((str(source), str(destination), authenticator))
        if len(self.copies) in self.fail_on:
            raise RegistryClientError(f"crane copy failed: {source}")


def _images(count):
    return [
        Image(source=f"quay.io/org/app{i}:v1", destination=f"myhost.example/org/app{i}:v1")
        for i in range(1, count + 1)
    ]


def _engine(config, client, **kwargs):
    credentials = CredentialResolver(config.registries)
    discoverer = RepositoryDiscoverer(client, credentials, hub_client=MagicMock())
    return MirrorEngine(
        config=config,
        registry_client=client,
        credentials=credentials,
        discoverer=discoverer,
        **kwargs,
    )


class TestMirrorPass:
    def test_failures_counted_and_pass_continues(self):
        client = FakeRegistryClient(fail_on={2, 4})
        engine = _engine(MirrorConfig(images=_images(5)), client)

        counters = engine.mirror(engine.collect_images())

        assert counters == RunCounters(total=5, succeeded=3, failed=2)
        assert len(client.copies) == 5

    def test_total_is_sum(self):
        client = FakeRegistryClient(fail_on={1})
        engine = _engine(MirrorConfig(images=_images(3)), client)
        counters = engine.mirror(engine.collect_images())
        assert counters.total == counters.succeeded + counters.failed

    def test_copies_in_order_with_resolver(self):
        client = FakeRegistryClient()
        config = MirrorConfig(
            images=_images(2),
            registries={"quay.io": Registry(username="u", password="p")},
        )
        engine = _engine(config, client)

        engine.mirror(engine.collect_images())

        assert [c[0] for c in client.copies] == ["quay.io/org/app1:v1", "quay.io/org/app2:v1"]
        assert all(c[2] is engine.credentials for c in client.copies)

    def test_bare_reference_expanded_before_copy(self):
        client = FakeRegistryClient()
        config = MirrorConfig(images=[Image(source="alpine:3.19", destination="localhost:5000/alpine:3.19")])
        engine = _engine(config, client)

        engine.mirror(engine.collect_images())

        assert client.copies[0][0] == "index.docker.io/library/alpine:3.19"

    def test_crane_that_cannot_start_counts_as_failures(self):
        """crane без прав на запуск: каждый образ считается неудачным, проход не прерывается."""
        client = CraneClient("/opt/bin/crane")
        engine = _engine(MirrorConfig(images=_images(2)), client)

        with patch(
            "registry_mirror.services.registry_client.subprocess.run",
            side_effect=PermissionError(13, "Permission denied"),
        ):
            counters = engine.mirror(engine.collect_images())

        assert counters == RunCounters(total=2, succeeded=0, failed=2)

    def test_each_copy_admitted(self):
        limiter = MagicMock()
        engine = _engine(MirrorConfig(images=_images(3)), FakeRegistryClient(), rate_controller=limiter)
        stop = threading.Event()

        engine.mirror(engine.collect_images(), stop)

        assert limiter.admit.call_count == 3
        limiter.admit.assert_called_with(stop)

    def test_cancellation_aborts_pass(self):
        limiter = MagicMock()
        limiter.admit.side_effect = [None, AdmissionCancelled("aborted")]
        client = FakeRegistryClient()
        engine = _engine(MirrorConfig(images=_images(3)), client, rate_controller=limiter)

        with pytest.raises(AdmissionCancelled):
            engine.mirror(engine.collect_images())
        assert len(client.copies) == 1

    def test_rate_limited_pass(self):
        """2/1s на 10 образах - не меньше 4.5 секунд виртуального времени."""
        now = [0.0]

        def sleep(seconds):
            now[0] += seconds

        limiter = RateController.from_expression("2/1s", clock=lambda: now[0], sleep=sleep)
        engine = _engine(MirrorConfig(images=_images(10)), FakeRegistryClient(), rate_controller=limiter)

        counters = engine.mirror(engine.collect_images())

        assert counters.succeeded == 10
        assert now[0] >= 4.5 - 1e-9


class TestCollectImages:
    def test_explicit_then_discovered(self):
        client = FakeRegistryClient(catalogs={"ghcr.io": ["org/tool"]})
        config = MirrorConfig(
            images=_images(1),
            mirrors=[MirrorRule(source="ghcr.io", destination="myhost.example", namespace="gh")],
        )
        engine = _engine(config, client)

        images = engine.collect_images()

        assert [i.source for i in images] == ["quay.io/org/app1:v1", "ghcr.io/org/tool:latest"]
        assert images[1].destination == "myhost.example/gh/org/tool:latest"


class TestRun:
    def test_empty_list_fails_fast(self):
        client = FakeRegistryClient()
        config = MirrorConfig(mirrors=[MirrorRule(source="ghcr.io", destination="myhost.example")])
        engine = _engine(config, client)

        with pytest.raises(NoImagesError):
            engine.run()
        assert client.copies == []

    def test_short_interval_runs_once(self):
        client = FakeRegistryClient()
        engine = _engine(MirrorConfig(images=_images(2)), client, interval=MIN_INTERVAL - 1)

        results = engine.run()

        assert len(results) == 1
        assert not engine.repeating
        assert len(client.copies) == 2

    def test_repeats_until_stopped(self):
        client = FakeRegistryClient()
        engine = _engine(MirrorConfig(images=_images(2)), client, interval=MIN_INTERVAL)
        stop = MagicMock()
        # first inter-pass wait returns (timeout), second reports stop
        stop.wait.side_effect = [False, True]
        stop.is_set.return_value = False

        results = engine.run(stop)

        assert len(results) == 2
        assert len(client.copies) == 4
        stop.wait.assert_called_with(MIN_INTERVAL)

    def test_rules_reexpanded_every_pass(self):
        client = FakeRegistryClient(catalogs={"ghcr.io": ["org/a"]})
        config = MirrorConfig(mirrors=[MirrorRule(source="ghcr.io", destination="myhost.example")])
        engine = _engine(config, client, interval=MIN_INTERVAL)
        stop = MagicMock()
        stop.is_set.return_value = False

        def publish_new_repo(timeout):
            client.catalogs["ghcr.io"].append("org/b")
            return stop.wait.call_count > 1

        stop.wait.side_effect = publish_new_repo

        results = engine.run(stop)

        assert [r.total for r in results] == [1, 2]

    def test_stop_during_admission_is_fatal(self):
        engine = _engine(
            MirrorConfig(images=_images(2)),
            FakeRegistryClient(),
            rate_controller=RateController.from_expression("1/1h"),
        )
        stop = threading.Event()
        timer = threading.Timer(0.05, stop.set)
        timer.start()
        try:
            with pytest.raises(AdmissionCancelled):
                engine.run(stop)
        finally:
            timer.cancel()
