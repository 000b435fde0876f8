from __future__ import annotations

import signal
import threading
import time
from enum import Enum
from typing import Callable, Mapping

import structlog

from .errors import RegistryUnavailable, RuntimeUnavailable, StartupFailure
from .models import CycleReport
from .notify import NullNotifier, SystemdNotifier
from .reconciler import Reconciler
from .settings import Settings


log = structlog.get_logger(__name__)

# Ping at 45% of the watchdog timeout so there are always two chances per period.
WATCHDOG_FRACTION = 0.45


class State(str, Enum):
    IDLE = "idle"
    RUNNING_CYCLE = "running-cycle"
    SHUTTING_DOWN = "shutting-down"
    STOPPED = "stopped"


class Daemon:
    """Owns everything process-wide: timing, signals, service manager pings.

    Cycles run one after the other on the calling thread. A stop request
    never interrupts a cycle; it is looked at between cycles only. Watchdog
    pings are only sent while idle, so a hung cycle leads to a missed
    watchdog and a restart by the service manager.
    """

    def __init__(
        self,
        settings: Settings,
        reconciler: Reconciler,
        notifier: SystemdNotifier | NullNotifier,
        stop_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.reconciler = reconciler
        self.notifier = notifier
        self.stop_event = stop_event or threading.Event()
        self.clock = clock
        self.state = State.IDLE
        self.cycles = 0
        self.last_report: CycleReport | None = None

        watchdog = notifier.watchdog_interval() if settings.systemd else None
        self.ping_every: float | None = watchdog * WATCHDOG_FRACTION if watchdog else None
        self.next_ping: float | None = None

    # -- signals -----------------------------------------------------------

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._on_signal)
        signal.signal(signal.SIGINT, self._on_signal)

    def _on_signal(self, signum: int, frame: object) -> None:
        log.info("termination_requested", signal=signal.Signals(signum).name, state=self.state.value)
        self.stop_event.set()

    def request_stop(self) -> None:
        self.stop_event.set()

    # -- service manager ---------------------------------------------------

    def _notify(self, state: Mapping[str, str]) -> None:
        try:
            self.notifier.notify(state)
        except OSError as e:
            log.warning("notify_failed", state=dict(state), error=str(e))

    def ping(self, status: str = "Waiting") -> None:
        """Tell the service manager we are alive. Only ever done while idle."""
        if self.state is not State.IDLE:
            return
        self._notify({"STATUS": status, "WATCHDOG": "1"})
        if self.ping_every is not None:
            self.next_ping = self.clock() + self.ping_every

    # -- lifecycle ---------------------------------------------------------

    def startup(self) -> CycleReport | None:
        """Check collaborators, optionally seed state, then signal READY.

        Returns the report of the initial cycle when enumerate mode ran one.
        """
        try:
            self.reconciler.inspector.ping()
            self.reconciler.registry.ping()
        except (RuntimeUnavailable, RegistryUnavailable) as e:
            raise StartupFailure(str(e)) from e

        report = None
        if self.settings.enumerate:
            try:
                entries = self.reconciler.registry.enumerate_published()
            except RegistryUnavailable as e:
                raise StartupFailure(f"Cannot read published records: {e}") from e
            self.reconciler.seed(entries)
            report = self.run_cycle()

        if self.settings.systemd:
            try:
                self.notifier.notify({"READY": "1", "STATUS": "Ready"})
            except OSError as e:
                raise StartupFailure(f"Cannot notify service manager: {e}") from e
        log.info(
            "daemon_ready",
            refresh_s=self.settings.refresh_interval_s,
            lease_s=self.settings.lease_seconds,
            watchdog_ping_s=self.ping_every,
            dry_run=self.settings.dry_run,
        )
        return report

    def run_cycle(self) -> CycleReport:
        self._notify({"STATUS": "Refreshing"})
        self.state = State.RUNNING_CYCLE
        try:
            report = self.reconciler.refresh()
        except Exception:
            log.exception("cycle_failed")
            report = CycleReport(aborted=True)
        finally:
            self.state = State.SHUTTING_DOWN if self.stop_event.is_set() else State.IDLE
        self.cycles += 1
        self.last_report = report
        return report

    def wait(self) -> bool:
        """Stay idle until the next refresh is due.

        Returns True to run another cycle, False when a stop was requested.
        Watchdog pings due in the meantime are sent from here.
        """
        deadline = self.clock() + self.settings.refresh_interval_s
        while True:
            if self.stop_event.is_set():
                return False
            now = self.clock()
            if now >= deadline:
                return True
            timeout = deadline - now
            if self.next_ping is not None:
                timeout = min(timeout, max(0.0, self.next_ping - now))
            if self.stop_event.wait(timeout):
                return False
            if self.next_ping is not None and self.clock() >= self.next_ping:
                log.debug("watchdog_ping")
                self.ping("Waiting")

    def shutdown(self) -> None:
        """Registry entries are left to expire through their lease."""
        self.state = State.SHUTTING_DOWN
        if self.settings.systemd:
            self._notify({"STOPPING": "1", "STATUS": "Stopping"})
        log.info("daemon_stopped", cycles=self.cycles, published=len(self.reconciler.published))
        self.state = State.STOPPED

    def run(self) -> int:
        """Main loop. Returns the process exit code."""
        report = self.startup()
        while not self.stop_event.is_set():
            if report is None:
                report = self.run_cycle()
            self.ping("Waiting")
            if self.settings.once or not self.wait():
                break
            report = None
        self.shutdown()
        if self.settings.once and report is not None and not report.ok:
            return 1
        return 0
