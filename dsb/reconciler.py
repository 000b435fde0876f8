from __future__ import annotations

import time
from typing import Callable, Iterable

import structlog

from .docker_ops import DockerInspector
from .domain_spec import parse_container
from .errors import RegistryUnavailable, RuntimeUnavailable
from .models import ContainerObservation, CycleReport, DomainRecord, PublishedEntry
from .registry import RedisRegistry
from .settings import Settings


log = structlog.get_logger(__name__)


class Reconciler:
    """Brings the registry in line with the containers running on this host.

    ``published`` mirrors what the registry confirmed. It only changes after a
    successful write or delete, so anything that failed is simply computed
    again (and retried) on the next cycle.
    """

    def __init__(
        self,
        inspector: DockerInspector,
        registry: RedisRegistry,
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.inspector = inspector
        self.registry = registry
        self.settings = settings
        self.clock = clock
        self.published: dict[str, PublishedEntry] = {}

    def seed(self, entries: Iterable[tuple[str, DomainRecord]]) -> None:
        """Start from what the registry already holds instead of from nothing."""
        now = self.clock()
        self.published = {domain: PublishedEntry(record, now) for domain, record in entries}
        log.info("published_state_seeded", domains=len(self.published))

    def desired_state(self, observations: list[ContainerObservation], report: CycleReport) -> dict[str, DomainRecord]:
        """One record per domain.

        When several containers declare the same domain the one with the
        highest priority label wins; on equal priority the container listed
        first wins.
        """
        best: dict[str, tuple[int, DomainRecord]] = {}
        for obs in observations:
            if not obs.routable:
                log.debug("container_skipped", container=obs.name, status=obs.status, health=obs.health)
                continue
            result = parse_container(obs, self.settings)
            for problem in result.problems:
                report.parse_problems += 1
                log.warning(
                    "invalid_domain_spec",
                    container=problem.container,
                    key=problem.key,
                    value=problem.value,
                    reason=problem.reason,
                )
            for record in result.records:
                current = best.get(record.domain)
                if current is None:
                    best[record.domain] = (result.priority, record)
                    continue
                report.collisions += 1
                if result.priority > current[0]:
                    winner, loser = record, current[1]
                    best[record.domain] = (result.priority, record)
                else:
                    winner, loser = current[1], record
                log.warning(
                    "domain_collision",
                    domain=record.domain,
                    winner=winner.container_name,
                    ignored=loser.container_name,
                )
        return {domain: record for domain, (_, record) in best.items()}

    def refresh(self) -> CycleReport:
        """Run one observe -> diff -> apply cycle."""
        report = CycleReport()
        try:
            observations = self.inspector.list_running()
        except RuntimeUnavailable as e:
            # Not the same as "no containers": leave the registry alone.
            report.aborted = True
            log.error("runtime_unavailable", error=str(e), published=len(self.published))
            return report

        desired = self.desired_state(observations, report)
        lease = self.settings.lease_seconds

        for domain in sorted(desired):
            record = desired[domain]
            previous = self.published.get(domain)
            changed = previous is None or previous.record != record
            if self.settings.dry_run:
                log.info("dry_run_publish", domain=domain, record=record.describe(), changed=changed)
                continue
            try:
                self.registry.publish(record, lease)
            except RegistryUnavailable as e:
                report.publish_failures += 1
                log.warning("publish_failed", domain=domain, error=str(e))
                continue
            self.published[domain] = PublishedEntry(record, self.clock())
            if changed:
                report.published += 1
                log.info("domain_published", domain=domain, record=record.describe(), lease_s=lease)
            else:
                report.renewed += 1

        for domain in sorted(set(self.published) - set(desired)):
            if self.settings.dry_run:
                log.info("dry_run_unpublish", domain=domain)
                continue
            try:
                self.registry.unpublish(domain)
            except RegistryUnavailable as e:
                report.unpublish_failures += 1
                log.warning("unpublish_failed", domain=domain, error=str(e))
                continue
            del self.published[domain]
            report.unpublished += 1
            log.info("domain_unpublished", domain=domain)

        level = log.info if (report.published or report.unpublished or not report.ok) else log.debug
        level(
            "cycle_complete",
            published=report.published,
            renewed=report.renewed,
            unpublished=report.unpublished,
            parse_problems=report.parse_problems,
            failures=report.failures,
        )
        return report
