"""
Local status endpoint (opt-in with --status-port).

  GET /status         supervisor state, mode, uptime, last reconcile
  GET /healthz        200 while the runtime is Running, 503 otherwise
  GET /logs           recent log lines (?tail=N&level=WARNING&format=text)
  GET /notifications  restarts and per-app failures (?level=error)

Read-only: nothing here can restart or stop the runtime.
"""
import logging
import threading

from flask import Flask, Response, jsonify, request
from werkzeug.serving import make_server

from alwayson import state
from alwayson.log_buffer import get_recent_logs
from alwayson.notifications import list_notifications

log = logging.getLogger("alwayson.status_server")

TAIL_DEFAULT = 200
TAIL_MAX = 1000

app = Flask(__name__)


@app.route("/status")
def status():
    sup = state.supervisor
    body = {"node": state.NODE_NAME}
    body.update(sup.snapshot() if sup is not None else {"state": "Launching"})
    if state.last_reconcile is not None:
        body["reconcile"] = state.last_reconcile.to_dict()
    return jsonify(body)


@app.route("/healthz")
def healthz():
    from alwayson.supervisor import RUNNING
    sup = state.supervisor
    current = sup.state if sup is not None else "Launching"
    return jsonify({"state": current}), (200 if current == RUNNING else 503)


@app.route("/logs")
def logs():
    tail = request.args.get("tail", default=TAIL_DEFAULT, type=int)
    tail = max(1, min(TAIL_MAX, tail))
    level_name = (request.args.get("level") or "NOTSET").strip().upper()
    min_level = logging.getLevelName(level_name)
    if not isinstance(min_level, int):
        return jsonify({"error": f"unknown level {level_name!r}"}), 400

    lines = get_recent_logs(limit=tail, min_level=min_level)
    if (request.args.get("format") or "json").strip().lower() == "text":
        text = "\n".join(entry["message"] for entry in lines)
        return Response(text, mimetype="text/plain; charset=utf-8")
    return jsonify({"lines": lines})


@app.route("/notifications")
def notifications():
    level = (request.args.get("level") or "").strip().lower()
    return jsonify(list_notifications(level))


def start(port: int, host: str = "127.0.0.1"):
    """Serve the status app from a daemon thread; returns the server."""
    srv = make_server(host, port, app, threaded=True)
    threading.Thread(target=srv.serve_forever, daemon=True, name="status-server").start()
    log.info("Status server listening on http://%s:%d", host, srv.server_port)
    return srv
