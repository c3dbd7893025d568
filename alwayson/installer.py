"""
Idempotent installation of the desired app bundles.

reconcile() installs only the bundles whose content-derived app id is not
already present on the runtime, then calls the init entry point once on each
provisioned cell. One bad bundle never blocks the others: every per-app
failure is logged, recorded on the result and the loop moves on.

Installation is not transactional across cells. If a cell fails to
initialize, the app stays installed (the runtime's install step is atomic on
its own) and an InitError naming the app and the cell is reported.
"""
import logging
from dataclasses import dataclass, field

from alwayson.errors import (
    AdminError, BundleReadError, EncodingError, InitError, InstallError, InvokeError,
)
from alwayson.models import AppDescriptor
from alwayson.runtime.base import Runtime, init_entry_point

log = logging.getLogger("alwayson.installer")


@dataclass
class ReconcileResult:
    installed: list[str] = field(default_factory=list)   # app ids installed by this run
    skipped: list[str] = field(default_factory=list)     # app ids already present
    errors: list[Exception] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "installed": self.installed,
            "skipped": self.skipped,
            "errors": [str(e) for e in self.errors],
        }


def reconcile(desired: list[AppDescriptor], installed: set[str] | None,
              runtime: Runtime) -> ReconcileResult:
    """
    Bring the runtime's installed apps up to the desired set.

    installed: ids already present; None to ask the runtime's admin interface.
    Descriptors are processed in the order given.
    """
    from alwayson.notifications import add_notification

    admin = runtime.admin()
    if installed is None:
        installed = {app.app_id for app in admin.list_installed_apps()}
    present = set(installed)
    result = ReconcileResult()

    for desc in desired:
        try:
            desc.load()
        except (BundleReadError, EncodingError) as exc:
            log.error("Skipping bundle %s: %s", desc.source, exc)
            add_notification("error", f"Bad bundle: {desc.source.name}", str(exc))
            result.errors.append(exc)
            continue

        if desc.app_id in present:
            log.info("App %s (%s) already installed", desc.app_id[:12], desc.source.name)
            result.skipped.append(desc.app_id)
            continue

        try:
            info = admin.install_app(desc.app_id, desc.bundle)
        except InstallError as exc:
            log.error("Install of %s (%s) failed: %s", desc.app_id, desc.source, exc)
            add_notification("error", f"Install failed: {desc.source.name}", str(exc))
            result.errors.append(exc)
            continue
        present.add(desc.app_id)
        result.installed.append(desc.app_id)

        for err in _init_cells(runtime, desc.app_id, info.cells):
            log.error("%s (app stays installed)", err)
            add_notification("warn", f"Init failed: {desc.source.name}", str(err))
            result.errors.append(err)

    log.info("Reconcile done: %d installed, %d already present, %d error(s)",
             len(result.installed), len(result.skipped), len(result.errors))
    return result


def _init_cells(runtime: Runtime, app_id: str, cells) -> list[InitError]:
    """Call init once on every cell that exposes it; return the failures."""
    errors: list[InitError] = []
    channel = None
    admin = runtime.admin()
    for cell in cells:
        try:
            definition = admin.get_dna_definition(cell.dna_hash)
        except AdminError as exc:
            errors.append(InitError(app_id, cell.cell_id, f"no definition: {exc}"))
            continue
        entry_point = init_entry_point(definition)
        if entry_point is None:
            log.debug("Cell %s of %s has no init entry point", cell.cell_id, app_id[:12])
            continue
        try:
            if channel is None:
                channel = runtime.app_channel(app_id)
            channel.invoke(cell.cell_id, entry_point, None)
        except (InvokeError, AdminError) as exc:
            errors.append(InitError(app_id, cell.cell_id, str(exc)))
            continue
        log.info("Initialized cell %s of %s via %s", cell.cell_id, app_id[:12], entry_point)
    return errors
