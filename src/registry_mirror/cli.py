import logging
import signal
import threading
from contextlib import contextmanager
from pathlib import Path

import click
import yaml
from pydantic import ValidationError

from registry_mirror.errors import AdmissionCancelled, NoImagesError, RateExpressionError
from registry_mirror.logging_config import setup_logging
from registry_mirror.services.config_loader import load_mirror_config
from registry_mirror.services.credentials import CredentialResolver
from registry_mirror.services.discovery import RepositoryDiscoverer
from registry_mirror.services.engine import MirrorEngine
from registry_mirror.services.rate import RateController, parse_duration, parse_rate
from registry_mirror.services.registry_client import CraneClient

logger = logging.getLogger(__name__)


class AliasedGroup(click.Group):
    _aliases = {"r": "run", "d": "discover", "v": "validate"}

    def get_command(self, ctx, cmd_name):
        return super().get_command(ctx, self._aliases.get(cmd_name, cmd_name))


class DurationType(click.ParamType):
    """Go-style duration ("30s", "1h30m") converted to seconds."""

    name = "duration"

    def convert(self, value, param, ctx):
        if isinstance(value, (int, float)):
            return float(value)
        try:
            return parse_duration(value)
        except RateExpressionError as e:
            self.fail(str(e), param, ctx)


class RateType(click.ParamType):
    """Rate expression "<count>/<duration>", empty for unlimited."""

    name = "rate"

    def convert(self, value, param, ctx):
        try:
            parse_rate(value)
        except RateExpressionError as e:
            self.fail(str(e), param, ctx)
        return value


def _config_option(f):
    return click.option(
        "--config", "-c",
        default="/config.yml",
        show_default=True,
        envvar="CONFIG",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        help="Path to YAML mirror config file",
    )(f)


def _logging_options(f):
    f = click.option("--log-format", default="text", envvar="LOG_FORMAT",
                     type=click.Choice(["text", "json"], case_sensitive=False),
                     help="Log output format")(f)
    f = click.option("--log-level", default="INFO", envvar="LOG_LEVEL",
                     type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
                     help="Log level")(f)
    return f


def _crane_option(f):
    return click.option("--crane", "crane_bin", default="crane", envvar="CRANE_BIN",
                        help="crane executable used to list and copy images")(f)


@click.group(cls=AliasedGroup)
def cli():
    """Mirror container images between registries."""
    pass


@cli.command("run")
@_config_option
@click.option("--duration", "-d", default="0s", envvar="DURATION", type=DurationType(),
              help="Time between passes; below 1m the mirror runs once")
@click.option("--rate-limit", "-l", default="", envvar="RATE_LIMIT", type=RateType(),
              help="Maximum copy rate, e.g. 100/1m (empty for unlimited)")
@_crane_option
@_logging_options
def run(config, duration, rate_limit, crane_bin, log_level, log_format):
    """Copy every configured and discovered image, optionally on a schedule."""
    setup_logging(log_level, log_format)
    mirror_config = _load_config(config)

    credentials = CredentialResolver(mirror_config.registries)
    client = CraneClient(crane_bin)
    engine = MirrorEngine(
        config=mirror_config,
        registry_client=client,
        credentials=credentials,
        discoverer=RepositoryDiscoverer(client, credentials),
        rate_controller=RateController.from_expression(rate_limit),
        interval=duration,
    )

    stop = threading.Event()
    with _stop_on_signals(stop):
        try:
            engine.run(stop)
        except NoImagesError as e:
            raise click.ClickException(str(e))
        except AdmissionCancelled as e:
            raise click.ClickException(f"Rate limiter error: {e}")


@cli.command("discover")
@_config_option
@_crane_option
@_logging_options
def discover(config, crane_bin, log_level, log_format):
    """Print the images a run would copy, without copying them."""
    setup_logging(log_level, log_format)
    mirror_config = _load_config(config)

    credentials = CredentialResolver(mirror_config.registries)
    discoverer = RepositoryDiscoverer(CraneClient(crane_bin), credentials)
    images = list(mirror_config.images)
    images.extend(discoverer.discover_all(mirror_config.mirrors))

    if not images:
        raise click.ClickException("No images to mirror.")
    for image in images:
        click.echo(f"{image.source} -> {image.destination}")


@cli.command("validate")
@_config_option
def validate(config):
    """Validate a mirror config file."""
    mirror_config = _load_config(config)
    click.echo(
        f"Config is valid: {len(mirror_config.images)} images, "
        f"{len(mirror_config.registries)} registries, "
        f"{len(mirror_config.mirrors)} mirror rules"
    )


def _load_config(config_path: Path):
    try:
        return load_mirror_config(config_path)
    except OSError as e:
        raise click.ClickException(f"Unable to read config file {config_path}: {e}")
    except yaml.YAMLError as e:
        raise click.ClickException(f"Invalid YAML in config file {config_path}: {e}")
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise click.ClickException(f"Config validation error in {config_path}: {errors}")


@contextmanager
def _stop_on_signals(stop: threading.Event):
    """Set ``stop`` on SIGINT/SIGTERM while the block runs."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):
        logger.info(f"received signal {signum}, stopping")
        stop.set()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            if handler is not None:
                signal.signal(sig, handler)
