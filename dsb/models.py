from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field, model_validator


@dataclass(frozen=True)
class PortBinding:
    host_ip: str
    host_port: int


@dataclass(frozen=True)
class ContainerObservation:
    """One running container as seen by a single refresh cycle."""

    id: str
    name: str
    hostname: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    ports: dict[int, list[PortBinding]] = field(default_factory=dict)  # container tcp port -> host bindings
    status: str = "running"
    health: str | None = None  # starting|healthy|unhealthy
    created: str = ""

    @property
    def routable(self) -> bool:
        return self.status == "running" and self.health != "unhealthy"


class DomainRecord(BaseModel):
    """Registry value for one published domain."""

    model_config = ConfigDict(frozen=True)

    domain: str = Field(..., description="Lower-case host name, optionally with a leading '*.' wildcard")
    http: str | None = Field(None, description="Backend locator (host:port) for plain HTTP")
    https: str | None = Field(None, description="Backend locator (host:port) for TLS")
    container_id: str
    container_name: str
    node: str = Field(..., description="Identifier of the host that published the record")

    @model_validator(mode="after")
    def _needs_a_target(self) -> "DomainRecord":
        if self.http is None and self.https is None:
            raise ValueError("a domain record needs at least one of http/https")
        return self

    def describe(self) -> str:
        targets = [f"{scheme}={t}" for scheme, t in (("http", self.http), ("https", self.https)) if t]
        return f"{self.domain} -> {' '.join(targets)} ({self.container_name})"


@dataclass(frozen=True)
class PublishedEntry:
    record: DomainRecord
    published_at: float  # time.monotonic() of the last confirmed write


@dataclass
class CycleReport:
    published: int = 0
    renewed: int = 0
    unpublished: int = 0
    parse_problems: int = 0
    publish_failures: int = 0
    unpublish_failures: int = 0
    collisions: int = 0
    aborted: bool = False

    @property
    def failures(self) -> int:
        return self.publish_failures + self.unpublish_failures + (1 if self.aborted else 0)

    @property
    def ok(self) -> bool:
        return self.failures == 0
