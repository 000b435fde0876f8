from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

import docker
import requests
import structlog
from docker.errors import DockerException

from .errors import RuntimeUnavailable
from .models import ContainerObservation, PortBinding


log = structlog.get_logger(__name__)

# Connection problems surface from requests/urllib3 rather than docker.errors.
TRANSPORT_ERRORS = (DockerException, requests.exceptions.RequestException)

# RFC3339Nano as docker prints it: trailing zeros of the fraction are trimmed.
CREATED_RE = re.compile(r"^(?P<base>\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d)(?:\.(?P<frac>\d+))?(?P<tz>Z|[+-]\d\d:\d\d)?$")
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _parse_env(raw: list[str] | None) -> dict[str, str]:
    env: dict[str, str] = {}
    for item in raw or []:
        key, sep, value = item.partition("=")
        if sep:
            env[key] = value
    return env


def _parse_ports(raw: dict[str, Any] | None) -> dict[int, list[PortBinding]]:
    """NetworkSettings.Ports -> {container tcp port: [host bindings]}.

    Exposed but unpublished ports come back with ``None`` bindings and are
    kept with an empty list.
    """
    ports: dict[int, list[PortBinding]] = {}
    for key, bindings in (raw or {}).items():
        port, _, proto = key.partition("/")
        if proto not in ("", "tcp") or not port.isdigit():
            continue
        out: list[PortBinding] = []
        for b in bindings or []:
            host_port = str(b.get("HostPort") or "")
            if host_port.isdigit():
                out.append(PortBinding(host_ip=b.get("HostIp") or "", host_port=int(host_port)))
        ports[int(port)] = out
    return ports


def parse_created(raw: str) -> datetime:
    """Docker creation timestamp as an aware datetime, truncated to microseconds.

    Unparseable values sort before everything else.
    """
    m = CREATED_RE.match(raw or "")
    if not m:
        return _EPOCH
    frac = (m.group("frac") or "")[:6].ljust(6, "0")
    tz = m.group("tz") or "Z"
    if tz == "Z":
        tz = "+00:00"
    return datetime.fromisoformat(f"{m.group('base')}.{frac}{tz}")


def observation_from_attrs(attrs: dict[str, Any]) -> ContainerObservation:
    """Build an observation from a container's inspect payload."""
    config = attrs.get("Config") or {}
    state = attrs.get("State") or {}
    health = state.get("Health") or {}
    return ContainerObservation(
        id=attrs["Id"],
        name=(attrs.get("Name") or "").lstrip("/") or attrs["Id"][:12],
        hostname=config.get("Hostname") or "",
        labels=dict(config.get("Labels") or {}),
        env=_parse_env(config.get("Env")),
        ports=_parse_ports((attrs.get("NetworkSettings") or {}).get("Ports")),
        status=state.get("Status") or "unknown",
        health=health.get("Status"),
        created=attrs.get("Created") or "",
    )


class DockerInspector:
    """Read-only view of the containers running on this host."""

    def __init__(self, client: docker.DockerClient):
        self.client = client

    @classmethod
    def from_url(cls, base_url: str, timeout_s: int = 10) -> "DockerInspector":
        try:
            client = docker.DockerClient(base_url=base_url, timeout=timeout_s)
        except TRANSPORT_ERRORS as e:
            raise RuntimeUnavailable(f"Cannot create docker client for {base_url}: {e}") from e
        return cls(client)

    def ping(self) -> None:
        try:
            self.client.ping()
        except TRANSPORT_ERRORS as e:
            raise RuntimeUnavailable(f"Docker daemon not reachable: {type(e).__name__}: {e}") from e

    def list_running(self) -> list[ContainerObservation]:
        """All running containers, oldest first.

        Any transport error propagates as RuntimeUnavailable; a partial
        listing is never returned.
        """
        try:
            containers = self.client.containers.list(filters={"status": "running"}, ignore_removed=True)
            observations = [observation_from_attrs(c.attrs) for c in containers]
        except TRANSPORT_ERRORS as e:
            raise RuntimeUnavailable(f"Listing containers failed: {type(e).__name__}: {e}") from e
        observations.sort(key=lambda o: (parse_created(o.created), o.id))
        log.debug("containers_listed", count=len(observations))
        return observations
