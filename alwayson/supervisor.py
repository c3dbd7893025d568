"""
Runtime supervisor: keeps one conductor runtime alive and correctly configured.

States:

  Launching ──> Running(mode) ──> Restarting ──> Running(mode')
                     │
                     └──> ShuttingDown ──> Stopped

Every poll_interval seconds run_once() probes the relay and restarts the
runtime when either
  - reachability flipped since the last observation (mode follows it,
    unless LAN-only is pinned), or
  - the runtime has been up longer than restart_after.
Both in the same cycle cost a single restart using the reachability-driven
mode. A restart shuts the old runtime down before the new one is launched
against the same storage directory, and the new mode is committed only once
the launch succeeded. Failures during a restart are fatal: there is no
handle left to fall back to.

Thread-safety: the current runtime and network config are replaced or
stopped only while holding _lock, so a termination request can never run
concurrently with a restart. request_stop() only sets an Event and is safe
from signal handlers.
"""
import logging
import threading
import time
from pathlib import Path

from alwayson.errors import LaunchError, ShutdownError
from alwayson.models import LAN, WAN, NetworkMode, SupervisorSettings
from alwayson.probe import probe_relay

log = logging.getLogger("alwayson.supervisor")

LAUNCHING     = "Launching"
RUNNING       = "Running"
RESTARTING    = "Restarting"
SHUTTING_DOWN = "ShuttingDown"
STOPPED       = "Stopped"


class Supervisor:
    # Extra time granted to a shutdown call on top of its own budget before
    # the worker thread is abandoned.
    shutdown_grace: float = 2.0

    def __init__(self, storage_dir, settings: SupervisorSettings, launcher,
                 prober=probe_relay, clock=time.monotonic,
                 stop_event: threading.Event | None = None):
        self.storage_dir = Path(storage_dir)
        self.settings = settings
        self._launcher = launcher
        self._prober = prober
        self._clock = clock
        self._stop = stop_event or threading.Event()
        self._lock = threading.Lock()

        self.network = settings.initial_network_config()
        self.state = LAUNCHING
        self.runtime = None
        self.launched_at: float | None = None
        # Starting in WAN mode assumes the relay is reachable; the first
        # probe that disagrees triggers the switch.
        self.last_reachable: bool = self.network.is_wan
        self.restarts = 0
        self.last_restart_reason = ""

    @property
    def mode(self) -> NetworkMode:
        return self.network.mode

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    # ── Lifecycle ─────────────────────────────────────────────

    def start(self):
        """Launch the initial runtime. Raises LaunchError (fatal)."""
        with self._lock:
            self.state = LAUNCHING
            try:
                self.runtime = self._launch(self.network)
            except LaunchError:
                self.state = STOPPED
                raise
            self.launched_at = self._clock()
            self.state = RUNNING
        log.info("Runtime running in %s mode (storage %s)", self.mode, self.storage_dir)
        return self.runtime

    def run(self) -> bool:
        """
        Blocking monitor loop. Returns the result of the final stop().
        LaunchError / ShutdownError from a restart propagate to the caller.
        """
        if self.state == LAUNCHING:
            self.start()
        while not self._stop.is_set():
            self.run_once()
            if self._stop.wait(self.settings.poll_interval):
                break
        return self.stop()

    def request_stop(self):
        self._stop.set()

    def stop(self) -> bool:
        """
        Shut the current runtime down within shutdown_timeout.

        Never raises and never blocks past the budget: a late or failing
        shutdown is logged and False is returned so the process can still
        exit.
        """
        self._stop.set()
        with self._lock:
            if self.state == STOPPED:
                return True
            self.state = SHUTTING_DOWN
            runtime, self.runtime = self.runtime, None
            ok = True
            if runtime is not None:
                log.info("Shutting down runtime (budget %gs)", self.settings.shutdown_timeout)
                try:
                    self._shutdown_within(runtime, self.settings.shutdown_timeout)
                except ShutdownError as exc:
                    log.error("Runtime shutdown failed, exiting anyway: %s", exc)
                    ok = False
            self.state = STOPPED
        log.info("Supervisor stopped")
        return ok

    # ── Monitoring ────────────────────────────────────────────

    def run_once(self) -> bool:
        """One polling cycle. Returns True if the runtime was restarted."""
        if self.state != RUNNING or self._stop.is_set():
            return False

        reachable = self._probe()
        target = self.mode
        reasons = []
        if reachable != self.last_reachable:
            log.info("Relay %s is now %s", self.network.signal_url,
                     "reachable" if reachable else "unreachable")
            self.last_reachable = reachable
            if self.settings.lan_only:
                log.info("LAN-only mode is pinned; not switching to %s",
                         WAN if reachable else LAN)
            else:
                target = WAN if reachable else LAN
                if target != self.mode:
                    reasons.append(f"relay {'reachable' if reachable else 'unreachable'}")

        uptime = self._clock() - self.launched_at
        if uptime > self.settings.restart_after:
            reasons.append(f"scheduled after {uptime:.0f}s")

        if not reasons or self._stop.is_set():
            return False
        return self._restart(target, "; ".join(reasons))

    def _probe(self) -> bool:
        try:
            return bool(self._prober(self.network.signal_url, self.settings.probe_timeout))
        except Exception as exc:
            log.warning("Probe of %s raised, treating as unreachable: %s",
                        self.network.signal_url, exc)
            return False

    def _restart(self, mode: NetworkMode, reason: str) -> bool:
        from alwayson.notifications import add_notification

        new_network = self.network.for_mode(mode)
        with self._lock:
            if self.state != RUNNING:
                return False
            self.state = RESTARTING
            log.info("Restarting runtime (%s): %s -> %s", reason, self.mode, mode)
            old, self.runtime = self.runtime, None
            try:
                self._shutdown_within(old, self.settings.shutdown_timeout)
                self.runtime = self._launch(new_network)
            except (ShutdownError, LaunchError):
                self.state = STOPPED
                raise
            self.network = new_network
            self.launched_at = self._clock()
            self.restarts += 1
            self.last_restart_reason = reason
            self.state = RUNNING
        log.info("Runtime relaunched in %s mode (restart #%d)", self.mode, self.restarts)
        add_notification("info", f"Runtime restarted in {mode} mode", reason)
        return True

    # ── Helpers ───────────────────────────────────────────────

    def _launch(self, network):
        try:
            return self._launcher(self.storage_dir, network)
        except Exception as exc:
            raise LaunchError(
                f"launch in {network.mode} mode against {self.storage_dir} failed: {exc}") from exc

    def _shutdown_within(self, runtime, budget: float):
        """Run runtime.shutdown(budget) in a worker; raise ShutdownError if late or failed."""
        errors: list[Exception] = []

        def _shutdown():
            try:
                runtime.shutdown(budget)
            except Exception as exc:
                errors.append(exc)

        worker = threading.Thread(target=_shutdown, daemon=True, name="runtime-shutdown")
        worker.start()
        worker.join(budget + self.shutdown_grace)
        if worker.is_alive():
            raise ShutdownError(f"runtime did not shut down within {budget:g}s")
        if errors:
            raise ShutdownError(f"runtime shutdown failed: {errors[0]}") from errors[0]

    def snapshot(self) -> dict:
        uptime = None
        if self.launched_at is not None and self.state == RUNNING:
            uptime = round(self._clock() - self.launched_at, 1)
        return {
            "state": self.state,
            "mode": self.mode,
            "lan_only_pinned": self.settings.lan_only,
            "relay_reachable": self.last_reachable,
            "uptime_seconds": uptime,
            "restarts": self.restarts,
            "last_restart_reason": self.last_restart_reason,
            "storage_dir": str(self.storage_dir),
            "network": self.network.to_dict(),
            "settings": self.settings.to_dict(),
        }
