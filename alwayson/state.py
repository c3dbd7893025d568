"""
Process-wide handles shared by the entrypoint and the status server.

Set once by alwayson/node.py at startup; the status routes read them at
request time. The supervisor itself never reads from here.
"""
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from alwayson.installer import ReconcileResult
    from alwayson.supervisor import Supervisor

NODE_NAME: str = "always-online-node"

supervisor: "Supervisor | None" = None
last_reconcile: "ReconcileResult | None" = None

# Operator notifications, newest first, capped in notifications.py
notifications: list[dict] = []
