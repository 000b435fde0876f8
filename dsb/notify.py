from __future__ import annotations

import os
import socket
from typing import Mapping

import structlog


log = structlog.get_logger(__name__)


def watchdog_interval(env: Mapping[str, str] | None = None) -> float | None:
    """Watchdog timeout in seconds requested by the service manager, if any.

    Mirrors sd_watchdog_enabled(): WATCHDOG_USEC gives the timeout and, when
    WATCHDOG_PID is set, it has to name this process.
    """
    env = os.environ if env is None else env
    raw = env.get("WATCHDOG_USEC")
    if not raw:
        return None
    pid = env.get("WATCHDOG_PID")
    if pid and pid.strip() != str(os.getpid()):
        return None
    try:
        usec = int(raw)
    except ValueError:
        log.warning("watchdog_usec_invalid", value=raw)
        return None
    return usec / 1_000_000 if usec > 0 else None


class NullNotifier:
    """Used when service manager notifications are disabled."""

    def notify(self, state: Mapping[str, str]) -> bool:
        return False

    def watchdog_interval(self) -> float | None:
        return None


class SystemdNotifier:
    """sd_notify(3) over the datagram socket named by $NOTIFY_SOCKET."""

    def __init__(self, address: str | None = None, env: Mapping[str, str] | None = None):
        self.env = os.environ if env is None else env
        self.address = address if address is not None else self.env.get("NOTIFY_SOCKET")

    def _sockaddr(self) -> str:
        # Abstract namespace sockets are written with a leading '@'.
        if self.address and self.address.startswith("@"):
            return "\0" + self.address[1:]
        return self.address or ""

    def notify(self, state: Mapping[str, str]) -> bool:
        """Send ``KEY=VALUE`` lines. Returns False when there is nobody to tell.

        Raises OSError when the socket exists but the send fails.
        """
        if not self.address:
            log.debug("notify_socket_unset", state=dict(state))
            return False
        payload = "\n".join(f"{k}={v}" for k, v in state.items()).encode()
        with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
            sock.connect(self._sockaddr())
            sock.sendall(payload)
        return True

    def watchdog_interval(self) -> float | None:
        return watchdog_interval(self.env)
