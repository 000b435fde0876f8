from __future__ import annotations

import redis
import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from .errors import RegistryUnavailable, StartupFailure
from .models import DomainRecord


log = structlog.get_logger(__name__)


class RedisRegistry:
    """Published domain records, one key per domain: ``<key_prefix><domain>``.

    Values are DomainRecord JSON and always carry a TTL.
    """

    def __init__(self, client: redis.Redis, key_prefix: str, node: str):
        self.client = client
        self.key_prefix = key_prefix
        self.node = node

    @classmethod
    def from_url(cls, url: str, key_prefix: str, node: str, timeout_s: float = 5.0) -> "RedisRegistry":
        try:
            client = redis.Redis.from_url(
                url,
                socket_timeout=timeout_s,
                socket_connect_timeout=timeout_s,
                decode_responses=True,
            )
        except ValueError as e:
            raise StartupFailure(f"Invalid redis url {url!r}: {e}") from e
        return cls(client, key_prefix=key_prefix, node=node)

    def key(self, domain: str) -> str:
        return f"{self.key_prefix}{domain}"

    def ping(self) -> None:
        try:
            self.client.ping()
        except RedisError as e:
            raise RegistryUnavailable(f"Redis not reachable: {type(e).__name__}: {e}") from e

    def publish(self, record: DomainRecord, lease_seconds: int) -> None:
        """Upsert the record and (re)start its lease."""
        if lease_seconds < 1:
            raise ValueError("lease must be at least one second.")
        try:
            self.client.set(self.key(record.domain), record.model_dump_json(), ex=lease_seconds)
        except RedisError as e:
            raise RegistryUnavailable(f"publish failed: {type(e).__name__}: {e}", domain=record.domain) from e

    def unpublish(self, domain: str) -> None:
        """Delete the record. Deleting a missing key is fine."""
        try:
            self.client.delete(self.key(domain))
        except RedisError as e:
            raise RegistryUnavailable(f"unpublish failed: {type(e).__name__}: {e}", domain=domain) from e

    def enumerate_published(self) -> list[tuple[str, DomainRecord]]:
        """Records under the key prefix that were published by this node."""
        out: list[tuple[str, DomainRecord]] = []
        try:
            for key in self.client.scan_iter(match=f"{self.key_prefix}*"):
                key = key.decode() if isinstance(key, bytes) else key
                raw = self.client.get(key)
                if raw is None:
                    # expired between SCAN and GET
                    continue
                domain = key[len(self.key_prefix):]
                try:
                    record = DomainRecord.model_validate_json(raw)
                except ValidationError:
                    log.warning("registry_value_unreadable", key=key)
                    continue
                if record.domain != domain:
                    log.warning("registry_key_mismatch", key=key, domain=record.domain)
                    continue
                if record.node != self.node:
                    log.debug("registry_record_foreign", key=key, node=record.node)
                    continue
                out.append((domain, record))
        except RedisError as e:
            raise RegistryUnavailable(f"enumerate failed: {type(e).__name__}: {e}") from e
        out.sort(key=lambda kv: kv[0])
        return out
