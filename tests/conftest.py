import fnmatch
import os as _os
import sys

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

# Ensure project root is importable when the package is not installed.
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from dsb.errors import RuntimeUnavailable  # noqa: E402
from dsb.models import ContainerObservation, PortBinding  # noqa: E402
from dsb.settings import Settings  # noqa: E402


class FakeRedis:
    """The handful of redis commands the registry uses, with a manual clock for TTLs."""

    def __init__(self):
        self.now = 0.0
        self.data = {}  # key -> (value, expires_at)
        self.down = False
        self.calls = []

    def _check(self, op):
        self.calls.append(op)
        if self.down:
            raise RedisConnectionError("connection refused")

    def _alive(self, key):
        item = self.data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= self.now:
            del self.data[key]
            return None
        return value

    def ping(self):
        self._check("ping")
        return True

    def set(self, key, value, ex=None):
        self._check("set")
        self.data[key] = (value, self.now + ex if ex else None)
        return True

    def get(self, key):
        self._check("get")
        return self._alive(key)

    def delete(self, key):
        self._check("delete")
        return 1 if self.data.pop(key, None) is not None else 0

    def ttl(self, key):
        if self._alive(key) is None:
            return -2
        expires_at = self.data[key][1]
        return -1 if expires_at is None else int(expires_at - self.now)

    def scan_iter(self, match="*"):
        self._check("scan")
        for key in sorted(self.data):
            if fnmatch.fnmatchcase(key, match) and self._alive(key) is not None:
                yield key

    def advance(self, seconds):
        self.now += seconds


class FakeInspector:
    def __init__(self, observations=None):
        self.observations = list(observations or [])
        self.error = None
        self.calls = 0

    def ping(self):
        if self.error is not None:
            raise self.error

    def list_running(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.observations)

    def fail(self, message="docker daemon unreachable"):
        self.error = RuntimeUnavailable(message)


class FakeNotifier:
    def __init__(self, watchdog=None, fail_on=None):
        self.messages = []
        self.watchdog = watchdog
        self.fail_on = fail_on

    def notify(self, state):
        if self.fail_on and self.fail_on in state:
            raise OSError("notify socket gone")
        self.messages.append(dict(state))
        return True

    def watchdog_interval(self):
        return self.watchdog

    def sent(self, key):
        return [m for m in self.messages if key in m]


def make_container(
    cid="c1",
    name=None,
    labels=None,
    env=None,
    ports=None,
    status="running",
    health=None,
    hostname="",
):
    """Observation with ports given as {container_port: host_port or None}."""
    bindings = {}
    for port, host_port in (ports or {}).items():
        bindings[port] = [] if host_port is None else [PortBinding("0.0.0.0", host_port)]
    return ContainerObservation(
        id=cid,
        name=name or cid,
        hostname=hostname,
        labels=dict(labels or {}),
        env=dict(env or {}),
        ports=bindings,
        status=status,
        health=health,
    )


@pytest.fixture
def settings():
    return Settings(
        refresh_interval_s=20,
        lease_multiplier=3.0,
        advertise_host="docker-host",
        node_id="node-a",
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def inspector():
    return FakeInspector()
