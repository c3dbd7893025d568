"""
Exception types raised by the node supervisor and its collaborators.

Fatal classes (LaunchError, ShutdownError) end the process when they escape
the supervisor loop. The per-application classes are collected by the
installer and never abort a reconciliation run.
"""


class NodeError(Exception):
    """Base class for every error raised by alwayson."""


# ── Runtime lifecycle (fatal) ─────────────────────────────────

class LaunchError(NodeError):
    """The conductor runtime could not be started."""


class ShutdownError(NodeError):
    """The conductor runtime failed to stop, or did not stop within budget."""


class AdminError(NodeError):
    """The admin or app interface returned an error or did not answer."""


# ── Per-application (non-fatal to the run) ────────────────────

class BundleReadError(NodeError):
    """A bundle file is missing or cannot be parsed."""


class EncodingError(NodeError):
    """A bundle cannot be canonically encoded (malformed manifest)."""


class InstallError(NodeError):
    """The runtime rejected an install request."""

    def __init__(self, app_id: str, message: str):
        super().__init__(f"install of {app_id} failed: {message}")
        self.app_id = app_id


class InvokeError(NodeError):
    """A call to an entry point on a provisioned cell failed."""


class InitError(NodeError):
    """Initialization of one cell failed after the app was installed."""

    def __init__(self, app_id: str, cell_id: str, message: str):
        super().__init__(f"init of cell {cell_id} in app {app_id} failed: {message}")
        self.app_id = app_id
        self.cell_id = cell_id
