"""
Contract between the supervisor and a peer-to-peer runtime.

The supervisor and installer only ever talk to these three interfaces, so a
runtime backed by a child conductor process (runtime/conductor.py) and the
in-memory fakes used in tests are interchangeable.
"""
from alwayson.models import Bundle, InstalledApp

# Name of the entry point the installer calls once per provisioned cell.
INIT_FN = "init"


class AdminInterface:
    def list_installed_apps(self) -> list[InstalledApp]:
        raise NotImplementedError

    def install_app(self, app_id: str, bundle: Bundle) -> InstalledApp:
        """Install and enable an app. Raises InstallError."""
        raise NotImplementedError

    def get_dna_definition(self, dna_hash: str) -> dict:
        """
        Return the structural definition of a DNA:
        {"name": str, "zomes": [{"name": str, "functions": [str, ...]}, ...]}
        """
        raise NotImplementedError


class AppInterface:
    def invoke(self, cell_id: str, entry_point: str, payload=None):
        """Call "<zome>/<function>" on a cell. Raises InvokeError."""
        raise NotImplementedError


class Runtime:
    def admin(self) -> AdminInterface:
        raise NotImplementedError

    def app_channel(self, app_id: str) -> AppInterface:
        raise NotImplementedError

    def shutdown(self, timeout: float) -> None:
        """Stop the runtime within timeout seconds. Raises ShutdownError."""
        raise NotImplementedError


def init_entry_point(definition: dict) -> str | None:
    """Return "<zome>/init" for the first named zome exposing init, or None."""
    for zome in definition.get("zomes") or []:
        if not isinstance(zome, dict) or not zome.get("name"):
            continue
        if INIT_FN in (zome.get("functions") or []):
            return f"{zome['name']}/{INIT_FN}"
    return None
