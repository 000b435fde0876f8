import json

import pytest

from dsb.errors import RegistryUnavailable, StartupFailure
from dsb.models import DomainRecord
from dsb.registry import RedisRegistry


def _record(domain="svc.example.com", http="docker-host:32768", node="node-a", container="a"):
    return DomainRecord(domain=domain, http=http, container_id=container, container_name=container, node=node)


@pytest.fixture
def registry(fake_redis):
    return RedisRegistry(fake_redis, key_prefix="/dsb/domains/", node="node-a")


def test_publish_writes_json_with_ttl(registry, fake_redis):
    registry.publish(_record(), lease_seconds=60)
    raw = fake_redis.get("/dsb/domains/svc.example.com")
    assert json.loads(raw)["http"] == "docker-host:32768"
    assert fake_redis.ttl("/dsb/domains/svc.example.com") == 60


def test_publish_twice_renews_lease_without_changing_value(registry, fake_redis):
    registry.publish(_record(), lease_seconds=60)
    first = fake_redis.get("/dsb/domains/svc.example.com")
    fake_redis.advance(30)
    registry.publish(_record(), lease_seconds=60)
    assert fake_redis.get("/dsb/domains/svc.example.com") == first
    assert fake_redis.ttl("/dsb/domains/svc.example.com") == 60
    assert len(fake_redis.data) == 1


def test_publish_rejects_missing_lease(registry):
    with pytest.raises(ValueError):
        registry.publish(_record(), lease_seconds=0)


def test_unpublish_absent_key_is_success(registry, fake_redis):
    registry.unpublish("never.example.com")
    registry.publish(_record(), lease_seconds=60)
    registry.unpublish("svc.example.com")
    assert fake_redis.get("/dsb/domains/svc.example.com") is None


def test_errors_become_registry_unavailable(registry, fake_redis):
    fake_redis.down = True
    with pytest.raises(RegistryUnavailable) as exc:
        registry.publish(_record(), lease_seconds=60)
    assert exc.value.domain == "svc.example.com"
    with pytest.raises(RegistryUnavailable):
        registry.unpublish("svc.example.com")
    with pytest.raises(RegistryUnavailable):
        registry.enumerate_published()
    with pytest.raises(RegistryUnavailable):
        registry.ping()


def test_enumerate_published_returns_own_valid_records(registry, fake_redis):
    registry.publish(_record("b.example.com"), lease_seconds=60)
    registry.publish(_record("a.example.com"), lease_seconds=60)
    fake_redis.set("/dsb/domains/foreign.example.com", _record("foreign.example.com", node="node-b").model_dump_json(), ex=60)
    fake_redis.set("/dsb/domains/garbage.example.com", "not json", ex=60)
    fake_redis.set("/dsb/domains/moved.example.com", _record("other.example.com").model_dump_json(), ex=60)
    fake_redis.set("/elsewhere/a.example.com", _record("a.example.com").model_dump_json(), ex=60)

    published = registry.enumerate_published()
    assert [domain for domain, _ in published] == ["a.example.com", "b.example.com"]
    assert all(record.node == "node-a" for _, record in published)


def test_enumerate_published_skips_expired(registry, fake_redis):
    registry.publish(_record(), lease_seconds=60)
    fake_redis.advance(61)
    assert registry.enumerate_published() == []


def test_from_url_rejects_unparseable_url():
    with pytest.raises(StartupFailure):
        RedisRegistry.from_url("redis://cache:notaport/0", key_prefix="/dsb/domains/", node="node-a")
