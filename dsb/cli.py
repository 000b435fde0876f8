from __future__ import annotations

import argparse
import dataclasses
import sys

import structlog

from . import __version__
from .docker_ops import DockerInspector
from .errors import RuntimeUnavailable, StartupFailure
from .logs import configure_logging
from .notify import NullNotifier, SystemdNotifier
from .reconciler import Reconciler
from .registry import RedisRegistry
from .scheduler import Daemon
from .settings import ADDRESS_MODES, LOG_FORMATS, Settings, load_settings


log = structlog.get_logger(__name__)

EXIT_STARTUP = 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="dsb",
        description="Publish domain declarations of running docker containers to redis.",
        epilog=(
            "Containers declare domains with labels 'dsb.domain.<N>' or the DSB_DOMAINS "
            "environment variable, e.g. 'app.example.org:http=8080:https=8443'. "
            "Every option also has a DSB_* environment variable."
        ),
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--refresh", type=int, dest="refresh_interval_s", help="Seconds between refresh cycles")
    p.add_argument("--lease-multiplier", type=float, help="Registry TTL as a multiple of the refresh interval")
    p.add_argument("--redis-url", help="Redis URL, e.g. redis://localhost:6379/0")
    p.add_argument("--key-prefix", help="Redis key prefix, followed by the domain")
    p.add_argument("--docker-url", help="Docker daemon URL")
    p.add_argument("--label-prefix", help="Container label prefix for domain declarations")
    p.add_argument("--envvar", help="Container environment variable with domain declarations")
    p.add_argument("--address-mode", choices=ADDRESS_MODES, help="Publish host port bindings or network host names")
    p.add_argument("--advertise-host", help="Host address used for bindings on 0.0.0.0")
    p.add_argument("--node-id", help="Identifier of this host in published records")
    p.add_argument("--systemd", action="store_true", default=None, help="Send service manager notifications (READY, WATCHDOG)")
    p.add_argument("--enumerate", action="store_true", default=None, help="Seed published state from redis on startup")
    p.add_argument("-n", "--dry-run", action="store_true", default=None, help="Log intended changes without writing")
    p.add_argument("--once", action="store_true", default=None, help="Run a single cycle and exit")
    p.add_argument("--no-timestamp", action="store_false", dest="log_timestamps", default=None, help="Leave timestamps out of log lines")
    p.add_argument("--log-format", choices=LOG_FORMATS, help="Log line format")
    verbosity = p.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", action="store_const", const="DEBUG", dest="log_level", help="Debug output")
    verbosity.add_argument("--quiet", action="store_const", const="WARNING", dest="log_level", help="Warnings and errors only")
    return p


def settings_from_args(args: argparse.Namespace, base: Settings) -> Settings:
    """Apply command line overrides on top of environment settings."""
    fields = {f.name for f in dataclasses.fields(Settings)}
    overrides = {k: v for k, v in vars(args).items() if k in fields and v is not None}
    settings = dataclasses.replace(base, **overrides)
    if settings.dry_run and settings.log_level == "WARNING":
        # dry run output is logged at info level
        settings = dataclasses.replace(settings, log_level="INFO")
    return settings


def build_daemon(settings: Settings) -> Daemon:
    inspector = DockerInspector.from_url(settings.docker_url)
    registry = RedisRegistry.from_url(settings.redis_url, key_prefix=settings.key_prefix, node=settings.node_id)
    reconciler = Reconciler(inspector, registry, settings)
    notifier = SystemdNotifier() if settings.systemd else NullNotifier()
    return Daemon(settings, reconciler, notifier)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args, load_settings())

    try:
        settings.validate()
    except ValueError as e:
        print(f"dsb: invalid configuration: {e}", file=sys.stderr)
        return EXIT_STARTUP

    configure_logging(settings.log_level, timestamps=settings.log_timestamps, fmt=settings.log_format)

    try:
        daemon = build_daemon(settings)
        daemon.install_signal_handlers()
        return daemon.run()
    except (RuntimeUnavailable, StartupFailure) as e:
        log.error("startup_failed", error=str(e))
        return EXIT_STARTUP


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
