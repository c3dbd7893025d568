from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Literal

NetworkMode = Literal["wan", "lan"]

WAN: NetworkMode = "wan"
LAN: NetworkMode = "lan"


@dataclass(frozen=True)
class NetworkConfig:
    """
    Network configuration handed to the conductor at launch.

    Immutable: a mode change always builds a new instance via for_mode().
    The endpoint URLs are kept in LAN mode too so that switching back to WAN
    does not need the caller to resupply them.

      signal_url   : relay/signal endpoint used for WAN connectivity
      bootstrap_url: rendezvous service where peers publish their addresses
      ice_servers  : STUN/TURN urls handed to the WebRTC transport
      mode         : "wan" (relay + bootstrap) or "lan" (local discovery only)
    """
    signal_url: str
    bootstrap_url: str
    ice_servers: tuple[str, ...] = ()
    mode: NetworkMode = WAN

    @classmethod
    def wan(cls, signal_url: str, bootstrap_url: str,
            ice_servers=()) -> "NetworkConfig":
        return cls(signal_url, bootstrap_url, tuple(ice_servers), WAN)

    @classmethod
    def lan(cls, signal_url: str, bootstrap_url: str,
            ice_servers=()) -> "NetworkConfig":
        return cls(signal_url, bootstrap_url, tuple(ice_servers), LAN)

    @property
    def is_wan(self) -> bool:
        return self.mode == WAN

    def for_mode(self, mode: NetworkMode) -> "NetworkConfig":
        if mode not in (WAN, LAN):
            raise ValueError(f"unknown network mode: {mode!r}")
        return replace(self, mode=mode)

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "signal_url": self.signal_url,
            "bootstrap_url": self.bootstrap_url,
            "ice_servers": list(self.ice_servers),
        }


@dataclass
class Bundle:
    """In-memory bundle: a manifest dict plus named binary resources."""
    manifest: dict
    resources: dict[str, bytes] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return str(self.manifest.get("name", "")) if isinstance(self.manifest, dict) else ""

    @property
    def is_dna(self) -> bool:
        """DNA bundles describe zomes; app bundles describe roles."""
        return isinstance(self.manifest, dict) and "integrity" in self.manifest


@dataclass
class AppDescriptor:
    """
    One application the node must keep installed.

    Only the source path is known up front; bundle and app_id are filled in
    by load(), which the installer calls lazily so that a bad bundle fails
    on its own without blocking the others.
    """
    source: Path
    app_id: str = ""
    bundle: Bundle | None = None

    def __post_init__(self):
        self.source = Path(self.source)

    def load(self) -> "AppDescriptor":
        from alwayson.bundle import read_bundle, derive_app_id, wrap_dna_in_app

        parsed = read_bundle(self.source)
        # The id is derived from what the operator shipped, before wrapping,
        # so the same DNA file always maps to the same installed app.
        self.app_id = derive_app_id(parsed)
        self.bundle = wrap_dna_in_app(parsed) if parsed.is_dna else parsed
        return self


@dataclass
class CellInfo:
    cell_id: str
    dna_hash: str
    role_name: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "CellInfo":
        return cls(
            cell_id=str(d["cell_id"]),
            dna_hash=str(d.get("dna_hash", "")),
            role_name=str(d.get("role_name", "")),
        )

    def to_dict(self) -> dict:
        return {"cell_id": self.cell_id, "dna_hash": self.dna_hash, "role_name": self.role_name}


@dataclass
class InstalledApp:
    """An app as reported by the runtime's admin interface. The runtime is authoritative."""
    app_id: str
    cells: list[CellInfo] = field(default_factory=list)
    status: str = "enabled"

    @classmethod
    def from_dict(cls, d: dict) -> "InstalledApp":
        cells_raw = d.get("cells")
        return cls(
            app_id=str(d.get("installed_app_id") or d.get("app_id", "")),
            cells=[CellInfo.from_dict(c) for c in cells_raw if c.get("cell_id")]
                  if cells_raw and isinstance(cells_raw, list) else [],
            status=str(d.get("status", "enabled")),
        )

    def to_dict(self) -> dict:
        return {
            "app_id": self.app_id,
            "cells": [c.to_dict() for c in self.cells],
            "status": self.status,
        }


@dataclass
class SupervisorSettings:
    """
    Tunables for the runtime supervisor.

    Network:
      lan_only      : pin LAN-only mode; reachability flips are observed
                      but never switch to WAN
      signal_url    : relay/signal endpoint, also the one that is probed
      bootstrap_url : rendezvous endpoint
      ice_servers   : STUN urls for the WebRTC transport

    Cadence (seconds):
      poll_interval   : time between reachability probes
      restart_after   : scheduled restart ceiling since the last (re)launch
      shutdown_timeout: budget for stopping the runtime
      probe_timeout   : budget for one reachability probe
    """
    signal_url: str
    bootstrap_url: str
    ice_servers: tuple[str, ...] = ()
    lan_only: bool = False

    poll_interval: float = 30.0
    restart_after: float = 30 * 60.0
    shutdown_timeout: float = 10.0
    probe_timeout: float = 5.0

    # Diagnostics
    log_level: str = "INFO"

    def initial_network_config(self) -> NetworkConfig:
        factory = NetworkConfig.lan if self.lan_only else NetworkConfig.wan
        return factory(self.signal_url, self.bootstrap_url, self.ice_servers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal_url": self.signal_url,
            "bootstrap_url": self.bootstrap_url,
            "ice_servers": list(self.ice_servers),
            "lan_only": self.lan_only,
            "poll_interval": self.poll_interval,
            "restart_after": self.restart_after,
            "shutdown_timeout": self.shutdown_timeout,
            "probe_timeout": self.probe_timeout,
            "log_level": self.log_level,
        }
