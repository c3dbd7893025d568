"""
Request/reply WebSocket client for the conductor's admin and app interfaces.

Message framing (JSON):

  Request  {"id": "<uuid4-hex>", "type": "<method>", "payload": {...}}
  Reply    {"id": "<same>",       "type": "reply",    "ok": true|false,
            "payload": {...},     "error": "<str>"}    # error only when ok=false
  Push     {"type": "<event>",   "payload": {...}}     # no id, ignored here

Admin types:
  list_apps               list installed apps with their cells
  install_app             install a bundle under a given app id
  enable_app              enable an installed app
  get_dna_definition      zomes and exported functions of a DNA
  attach_app_interface    open an app interface, returns its port

App types:
  call_zome               invoke "<zome>/<fn>" on a cell
"""
import base64
import json
import logging
import threading
import uuid

import websocket  # websocket-client

from alwayson.bundle import encode_bundle
from alwayson.errors import AdminError, InstallError, InvokeError
from alwayson.models import Bundle, InstalledApp
from alwayson.runtime.base import AdminInterface, AppInterface

log = logging.getLogger("alwayson.runtime.admin")

_CONNECT_TIMEOUT = 5      # seconds for WS handshake
_CALL_TIMEOUT    = 30     # seconds to wait for a reply


class WsRpcClient:
    """
    Synchronous request/reply client over one WebSocket.

    Connects lazily and reconnects on the next call after a failure.
    Thread-safety: one call at a time, guarded by _lock.
    """

    def __init__(self, url: str, timeout: float = _CALL_TIMEOUT,
                 connect=websocket.create_connection):
        self.url = url
        self.timeout = timeout
        self._connect = connect
        self._ws = None
        self._lock = threading.Lock()

    def call(self, msg_type: str, payload: dict, timeout: float | None = None) -> dict:
        """
        Send a request and block until the matching reply arrives.
        Returns the reply payload, or raises AdminError on error/timeout.
        """
        req_id = uuid.uuid4().hex
        with self._lock:
            ws = self._ensure_connected()
            try:
                ws.settimeout(timeout or self.timeout)
                ws.send(json.dumps({"id": req_id, "type": msg_type, "payload": payload}))
                reply = self._wait_reply(ws, req_id, msg_type)
            except AdminError:
                self._drop()
                raise
            except Exception as exc:
                self._drop()
                raise AdminError(f"{msg_type} on {self.url} failed: {exc}") from exc
        if not reply.get("ok"):
            raise AdminError(f"{msg_type}: {reply.get('error', 'conductor error')}")
        return reply.get("payload") or {}

    def close(self):
        with self._lock:
            self._drop()

    def _ensure_connected(self):
        if self._ws is None:
            try:
                self._ws = self._connect(self.url, timeout=_CONNECT_TIMEOUT)
            except Exception as exc:
                raise AdminError(f"cannot connect to {self.url}: {exc}") from exc
        return self._ws

    def _wait_reply(self, ws, req_id: str, msg_type: str) -> dict:
        while True:
            raw = ws.recv()
            if raw == "" or raw is None:
                # websocket-client returns "" on clean close
                raise AdminError(f"{self.url} closed while waiting for {msg_type}")
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                log.warning("Bad JSON from %s", self.url)
                continue
            if msg.get("id") == req_id:
                return msg
            log.debug("Ignoring %s frame from %s", msg.get("type", "?"), self.url)

    def _drop(self):
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                ws.close()
            except Exception as exc:
                log.debug("Closing %s failed: %s", self.url, exc)


class AdminChannel(AdminInterface):
    def __init__(self, rpc: WsRpcClient):
        self.rpc = rpc

    def list_installed_apps(self) -> list[InstalledApp]:
        payload = self.rpc.call("list_apps", {})
        return [InstalledApp.from_dict(a) for a in payload.get("apps", [])]

    def install_app(self, app_id: str, bundle: Bundle) -> InstalledApp:
        encoded = base64.b64encode(encode_bundle(bundle)).decode("ascii")
        try:
            self.rpc.call("install_app", {"installed_app_id": app_id, "bundle": encoded})
            payload = self.rpc.call("enable_app", {"installed_app_id": app_id})
        except AdminError as exc:
            raise InstallError(app_id, str(exc)) from exc
        info = InstalledApp.from_dict(payload.get("app") or {"installed_app_id": app_id})
        log.info("Installed app %s (%d cell(s))", app_id, len(info.cells))
        return info

    def get_dna_definition(self, dna_hash: str) -> dict:
        payload = self.rpc.call("get_dna_definition", {"dna_hash": dna_hash})
        if not isinstance(payload, dict) or not isinstance(payload.get("zomes", []), list):
            raise AdminError(f"malformed definition for dna {dna_hash}: {payload!r}")
        return payload

    def attach_app_interface(self) -> int:
        payload = self.rpc.call("attach_app_interface", {"port": 0})
        try:
            return int(payload["port"])
        except (KeyError, TypeError, ValueError) as exc:
            raise AdminError(f"malformed attach_app_interface reply: {payload!r}") from exc


class AppChannel(AppInterface):
    def __init__(self, rpc: WsRpcClient, app_id: str):
        self.rpc = rpc
        self.app_id = app_id

    def invoke(self, cell_id: str, entry_point: str, payload=None):
        zome_name, _, fn_name = entry_point.partition("/")
        if not fn_name:
            raise InvokeError(f"entry point {entry_point!r} is not <zome>/<fn>")
        try:
            reply = self.rpc.call("call_zome", {
                "installed_app_id": self.app_id,
                "cell_id": cell_id,
                "zome_name": zome_name,
                "fn_name": fn_name,
                "payload": payload,
            })
        except AdminError as exc:
            raise InvokeError(f"{entry_point} on cell {cell_id}: {exc}") from exc
        return reply.get("result")
