"""
always-online-node entrypoint.

Parses the CLI (with environment-variable defaults), prepares the storage
directory and logging, launches the conductor, installs the desired bundles
once and then hands control to the supervisor loop until SIGINT/SIGTERM.

Exit codes: 0 graceful stop, 1 fatal launch/restart failure or a shutdown
that overran its budget, 2 bad storage path.
"""
import argparse
import logging
import os
import signal
import sys
from pathlib import Path

from alwayson import state
from alwayson.errors import AdminError, LaunchError, ShutdownError
from alwayson.installer import reconcile
from alwayson.log_buffer import LOG_FORMAT, install_log_handler
from alwayson.models import AppDescriptor, SupervisorSettings
from alwayson.probe import probe_relay
from alwayson.supervisor import Supervisor

log = logging.getLogger("alwayson.node")

DEFAULT_SIGNAL_URL    = "wss://sbd.holo.host"
DEFAULT_BOOTSTRAP_URL = "https://bootstrap-0.infra.holochain.org"
DEFAULT_ICE_SERVERS   = (
    "stun:stun-0.main.infra.holo.host:443",
    "stun:stun-1.main.infra.holo.host:443",
)

EXIT_OK    = 0
EXIT_FATAL = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    env = os.environ.get
    p = argparse.ArgumentParser(
        prog="always-online-node",
        description="Keep a peer-to-peer node online with a fixed set of apps installed.",
    )
    p.add_argument("bundles", nargs="*", type=Path,
                   help="DNA or app bundles to keep installed")
    p.add_argument("--data-dir", "--holochain-dir", dest="data_dir", type=Path,
                   default=env("AON_DATA_DIR") or None,
                   required=not env("AON_DATA_DIR"),
                   help="directory holding all conductor data (created if absent)")
    p.add_argument("--lan-only", action="store_true",
                   help="never use the relay/bootstrap services, even when reachable")
    p.add_argument("--signal-url", default=env("AON_SIGNAL_URL", DEFAULT_SIGNAL_URL))
    p.add_argument("--bootstrap-url", default=env("AON_BOOTSTRAP_URL", DEFAULT_BOOTSTRAP_URL))
    p.add_argument("--ice-server", dest="ice_servers", action="append", default=None,
                   help="STUN url (repeatable; replaces the defaults)")
    p.add_argument("--poll-interval", type=float, default=30.0,
                   help="seconds between relay probes")
    p.add_argument("--restart-after", type=float, default=30 * 60.0,
                   help="seconds after which the conductor is restarted regardless")
    p.add_argument("--shutdown-timeout", type=float, default=10.0)
    p.add_argument("--probe-timeout", type=float, default=5.0)
    p.add_argument("--conductor-bin", default=env("AON_CONDUCTOR_BIN", "holochain"))
    p.add_argument("--admin-port", type=int, default=int(env("AON_ADMIN_PORT", "4444")))
    p.add_argument("--status-port", type=int, default=None,
                   help="serve /status, /logs and /notifications on this localhost port")
    p.add_argument("--log-level", default=env("AON_LOG_LEVEL", "INFO"),
                   choices=("DEBUG", "INFO", "WARNING", "ERROR"), type=str.upper)
    return p


def settings_from_args(args: argparse.Namespace) -> SupervisorSettings:
    return SupervisorSettings(
        signal_url=args.signal_url,
        bootstrap_url=args.bootstrap_url,
        ice_servers=tuple(args.ice_servers or DEFAULT_ICE_SERVERS),
        lan_only=args.lan_only,
        poll_interval=args.poll_interval,
        restart_after=args.restart_after,
        shutdown_timeout=args.shutdown_timeout,
        probe_timeout=args.probe_timeout,
        log_level=args.log_level,
    )


def prepare_storage_dir(path) -> Path:
    """Create the storage directory if absent. Raises NotADirectoryError for a non-directory."""
    path = Path(path).expanduser()
    if path.exists() and not path.is_dir():
        raise NotADirectoryError(f"{path} exists and is not a directory")
    path.mkdir(parents=True, exist_ok=True)
    return path


def log_file_for(storage_dir: Path) -> Path:
    """The log file sits next to the storage directory, not inside it."""
    return storage_dir.with_name(storage_dir.name + ".log")


def setup_logging(level_name: str, log_file: Path | None = None) -> logging.Handler | None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
    install_log_handler()
    if log_file is None:
        return None
    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    return handler


def install_signal_handlers(supervisor: Supervisor) -> dict:
    """Route SIGINT/SIGTERM to supervisor.request_stop(); returns the previous handlers."""
    def _on_signal(signum, _frame):
        log.info("Received %s, shutting down", signal.Signals(signum).name)
        supervisor.request_stop()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _on_signal)
    return previous


def main(argv=None, launcher=None, prober=probe_relay) -> int:
    args = build_parser().parse_args(argv)

    try:
        storage_dir = prepare_storage_dir(args.data_dir)
    except OSError as exc:
        logging.basicConfig(format=LOG_FORMAT)
        log.error("Invalid data directory: %s", exc)
        return EXIT_USAGE

    file_handler = setup_logging(args.log_level, log_file_for(storage_dir))
    try:
        return _run(args, storage_dir, launcher, prober)
    finally:
        if file_handler is not None:
            logging.getLogger().removeHandler(file_handler)
            file_handler.close()


def _run(args, storage_dir: Path, launcher, prober) -> int:
    settings = settings_from_args(args)
    if launcher is None:
        from alwayson.runtime.conductor import ConductorLauncher
        launcher = ConductorLauncher(args.conductor_bin, args.admin_port)

    supervisor = Supervisor(storage_dir, settings, launcher, prober=prober)
    state.supervisor = supervisor
    log.info("Starting %s (%s mode, %d bundle(s), data in %s)", state.NODE_NAME,
             supervisor.mode, len(args.bundles), storage_dir)

    if args.status_port:
        from alwayson import status_server
        status_server.start(args.status_port)

    previous = install_signal_handlers(supervisor)
    try:
        try:
            supervisor.start()
        except LaunchError as exc:
            log.error("Startup failed: %s", exc)
            return EXIT_FATAL

        desired = [AppDescriptor(p) for p in args.bundles]
        try:
            state.last_reconcile = reconcile(desired, None, supervisor.runtime)
        except AdminError as exc:
            log.error("Could not list installed apps, nothing installed this run: %s", exc)

        try:
            clean = supervisor.run()
        except (LaunchError, ShutdownError) as exc:
            log.error("Fatal runtime failure: %s", exc)
            return EXIT_FATAL
        return EXIT_OK if clean else EXIT_FATAL
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


if __name__ == "__main__":
    sys.exit(main())
