"""
Conductor runtime backed by a child process.

launch() writes conductor-config.yaml into the storage directory, starts the
conductor binary against it and waits until its admin interface accepts a
WebSocket connection. The storage directory is shared by successive
runtimes; the supervisor guarantees the previous process has exited before
the next one is launched.
"""
import logging
import subprocess
import threading
import time
from pathlib import Path

import websocket  # websocket-client
import yaml

from alwayson.errors import LaunchError, ShutdownError
from alwayson.models import NetworkConfig
from alwayson.runtime.admin import AdminChannel, AppChannel, WsRpcClient
from alwayson.runtime.base import Runtime

log = logging.getLogger("alwayson.runtime.conductor")

CONFIG_FILE = "conductor-config.yaml"

_LAUNCH_TIMEOUT = 30      # seconds for the admin port to come up
_READY_POLL     = 0.3     # seconds between admin port attempts


def network_section(network: NetworkConfig) -> dict:
    """Conductor "network" block for a NetworkConfig."""
    if network.is_wan:
        return {
            "bootstrap_url": network.bootstrap_url,
            "signal_url": network.signal_url,
            "webrtc_config": {
                "iceServers": [{"urls": [u]} for u in network.ice_servers],
            },
        }
    # LAN-only: no relay, no bootstrap service, peers found by mDNS
    return {"mdns_discovery": True, "disable_bootstrap": True}


def render_config(storage_dir: Path, network: NetworkConfig, admin_port: int) -> dict:
    return {
        "data_root_path": str(storage_dir),
        "keystore": {"type": "lair_server_in_proc"},
        "admin_interfaces": [{
            "driver": {"type": "websocket", "port": admin_port, "allowed_origins": "*"},
        }],
        "network": network_section(network),
    }


def _pump_output(stream, name: str):
    out_log = logging.getLogger("alwayson.runtime.conductor.out")
    for line in iter(stream.readline, ""):
        out_log.debug("[%s] %s", name, line.rstrip())
    stream.close()


class ConductorRuntime(Runtime):
    """Runtime handle for one conductor process."""

    def __init__(self, process: subprocess.Popen, admin_url: str,
                 network: NetworkConfig, storage_dir: Path):
        self.process = process
        self.admin_url = admin_url
        self.network = network
        self.storage_dir = storage_dir
        self._admin_rpc = WsRpcClient(admin_url)
        self._app_rpc: WsRpcClient | None = None
        self._lock = threading.Lock()

    def admin(self) -> AdminChannel:
        return AdminChannel(self._admin_rpc)

    def app_channel(self, app_id: str) -> AppChannel:
        # One app interface serves every installed app; attach it once.
        with self._lock:
            if self._app_rpc is None:
                port = self.admin().attach_app_interface()
                self._app_rpc = WsRpcClient(f"ws://127.0.0.1:{port}")
                log.info("Attached app interface on port %d", port)
            return AppChannel(self._app_rpc, app_id)

    def shutdown(self, timeout: float) -> None:
        self._admin_rpc.close()
        if self._app_rpc is not None:
            self._app_rpc.close()
        if self.process.poll() is not None:
            log.info("Conductor (pid %d) already exited with %s",
                     self.process.pid, self.process.returncode)
            return
        self.process.terminate()
        try:
            code = self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            self.process.kill()
            try:
                self.process.wait(timeout=1)
            except subprocess.TimeoutExpired:
                pass
            raise ShutdownError(
                f"conductor (pid {self.process.pid}) did not exit within {timeout:g}s") from exc
        log.info("Conductor (pid %d) exited with %s", self.process.pid, code)


class ConductorLauncher:
    """
    Callable launcher: launcher(storage_dir, network) -> ConductorRuntime.

    Binary path, admin port and launch timeout are fixed at construction so
    the supervisor can relaunch with nothing but a new NetworkConfig.
    """

    def __init__(self, binary: str = "holochain", admin_port: int = 4444,
                 launch_timeout: float = _LAUNCH_TIMEOUT):
        self.binary = binary
        self.admin_port = admin_port
        self.launch_timeout = launch_timeout

    def __call__(self, storage_dir, network: NetworkConfig) -> ConductorRuntime:
        storage_dir = Path(storage_dir)
        config_path = storage_dir / CONFIG_FILE
        try:
            with open(config_path, "w") as f:
                yaml.safe_dump(render_config(storage_dir, network, self.admin_port),
                               f, sort_keys=False)
        except OSError as exc:
            raise LaunchError(f"cannot write {config_path}: {exc}") from exc

        cmd = [self.binary, "--config-path", str(config_path)]
        try:
            process = subprocess.Popen(
                cmd, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT, text=True,
            )
        except OSError as exc:
            raise LaunchError(f"cannot start {self.binary}: {exc}") from exc
        threading.Thread(target=_pump_output, args=(process.stdout, self.binary),
                         daemon=True).start()
        log.info("Started conductor pid %d in %s mode", process.pid, network.mode)

        admin_url = f"ws://127.0.0.1:{self.admin_port}"
        try:
            self._wait_ready(process, admin_url)
        except LaunchError:
            if process.poll() is None:
                process.kill()
                process.wait()
            raise
        return ConductorRuntime(process, admin_url, network, storage_dir)

    def _wait_ready(self, process: subprocess.Popen, admin_url: str):
        deadline = time.monotonic() + self.launch_timeout
        last_exc = None
        while time.monotonic() < deadline:
            if process.poll() is not None:
                raise LaunchError(
                    f"conductor exited with {process.returncode} before its admin port opened")
            try:
                ws = websocket.create_connection(admin_url, timeout=1)
            except Exception as exc:
                last_exc = exc
                time.sleep(_READY_POLL)
                continue
            ws.close()
            return
        raise LaunchError(
            f"admin interface {admin_url} not ready after {self.launch_timeout:g}s: {last_exc}")
