import logging

import pytest

from fakes import FakeClock, FakeLauncher, FakeProber

from alwayson import state
from alwayson.installer import ReconcileResult
from alwayson.log_buffer import install_log_handler
from alwayson.notifications import add_notification
from alwayson.status_server import app
from alwayson.supervisor import Supervisor


@pytest.fixture
def client():
    return app.test_client()


@pytest.fixture
def running(tmp_path, settings):
    sup = Supervisor(tmp_path, settings, FakeLauncher(), prober=FakeProber(True), clock=FakeClock())
    sup.start()
    state.supervisor = sup
    return sup


def test_status_reports_supervisor(client, running):
    state.last_reconcile = ReconcileResult(installed=["abc"])
    body = client.get("/status").get_json()
    assert body["state"] == "Running"
    assert body["mode"] == "wan"
    assert body["reconcile"]["installed"] == ["abc"]


def test_status_before_launch(client):
    assert client.get("/status").get_json()["state"] == "Launching"


def test_healthz_tracks_state(client, running):
    assert client.get("/healthz").status_code == 200
    running.stop()
    assert client.get("/healthz").status_code == 503


def test_logs_filters_by_level(client):
    install_log_handler()
    logging.getLogger("alwayson.test").warning("relay flapping")
    body = client.get("/logs?level=warning&tail=5").get_json()
    assert any("relay flapping" in line["message"] for line in body["lines"])
    assert all(line["levelno"] >= logging.WARNING for line in body["lines"])


def test_logs_text_format(client):
    install_log_handler()
    logging.getLogger("alwayson.test").error("conductor gone")
    resp = client.get("/logs?format=text&level=ERROR")
    assert resp.mimetype == "text/plain"
    assert "conductor gone" in resp.get_data(as_text=True)


def test_logs_rejects_unknown_level(client):
    assert client.get("/logs?level=LOUD").status_code == 400


def test_notifications_filter(client):
    add_notification("info", "Runtime restarted in lan mode", "relay unreachable")
    add_notification("error", "Bad bundle: x.dna", "not a bundle document")
    body = client.get("/notifications?level=error").get_json()
    assert [n["title"] for n in body] == ["Bad bundle: x.dna"]
