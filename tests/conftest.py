import pytest

from alwayson import state
from alwayson.models import SupervisorSettings


@pytest.fixture(autouse=True)
def _reset_state():
    state.supervisor = None
    state.last_reconcile = None
    state.notifications.clear()
    yield
    state.supervisor = None
    state.last_reconcile = None
    state.notifications.clear()


@pytest.fixture
def settings():
    return SupervisorSettings(
        signal_url="wss://relay.test",
        bootstrap_url="https://bootstrap.test",
        ice_servers=("stun:stun.test:443",),
        poll_interval=30.0,
        restart_after=1800.0,
        shutdown_timeout=0.2,
    )
