from __future__ import annotations


class DsbError(Exception):
    pass


class RuntimeUnavailable(DsbError):
    """The container runtime could not be queried.

    Never to be confused with "no containers running".
    """


class RegistryUnavailable(DsbError):
    def __init__(self, message: str, domain: str | None = None):
        super().__init__(message)
        self.domain = domain


class InvalidSpec(DsbError):
    """A single domain declaration on a container is malformed."""

    def __init__(self, container: str, key: str, value: str, reason: str):
        super().__init__(f"{container}: {key}={value!r}: {reason}")
        self.container = container
        self.key = key
        self.value = value
        self.reason = reason


class StartupFailure(DsbError):
    pass
