# file: canrelay/app.py
"""
Main application entry point for the CAN network telemetry relay.

This module initializes the Flask backend, recovers the persisted valve
command and the reading history at startup, and exposes the REST API used by
the field node (readings in, commands out) and by the dashboard (state,
history and valve commands).
"""

import os
import sys
import math
import logging
import threading

# Ensure the repository root is on the import path when the file is executed
# directly (e.g., `python app.py` from the canrelay directory).
CURRENT_DIR = os.path.dirname(__file__)
REPO_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

from canrelay.config import load_config, apply_env_overrides
from canrelay.history import HistoryLog
from canrelay.command_store import load_command_from_disk
from canrelay.state import StateStore
from canrelay.metrics import (
    READINGS_RECEIVED_TOTAL,
    COMMANDS_RECEIVED_TOTAL,
    API_IGNORED_FIELDS_TOTAL,
)
from prometheus_client import make_wsgi_app
from werkzeug.middleware.dispatcher import DispatcherMiddleware

logging.basicConfig(level=logging.INFO)
app_logger = logging.getLogger("canrelay.app")

READING_SCHEMA = {
    "temperatura": {"type": float},
    "pressao": {"type": float},
    "valvula1": {"type": bool},
    "valvula2": {"type": bool},
}

COMMAND_SCHEMA = {
    "emissao_ativa": {"type": bool},
    "valvula1": {"type": bool},
    "valvula2": {"type": bool},
}


def _coerce_finite(value: object) -> float | None:
    """
    Return value if it is a finite JSON number, otherwise None.
    Booleans and numeric strings are not numbers here.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        if not math.isfinite(value):
            return None
    except OverflowError:
        # integers beyond float range
        return None
    return value


def _validate_payload(payload: dict, schema: dict) -> tuple[dict, list[str]]:
    """
    Keep the fields of payload that have the type the schema expects.
    Returns (cleaned_data, ignored_fields).

    Absent and null fields are simply left out. Fields of the wrong type are
    left out as well and reported in ignored_fields; they never make the
    request fail.

    Schema format:
    {
        "field_name": {"type": float | bool},
    }
    """
    cleaned = {}
    ignored = []

    for field, rules in schema.items():
        val = payload.get(field)
        if val is None:
            continue

        target_type = rules.get("type")
        if target_type == float:
            val = _coerce_finite(val)
            if val is None:
                ignored.append(field)
                continue
        elif target_type == bool:
            if not isinstance(val, bool):
                ignored.append(field)
                continue

        cleaned[field] = val

    return cleaned, ignored


sys_config = apply_env_overrides(load_config())

history: HistoryLog | None = None
store: StateStore | None = None

startup_lock = threading.Lock()

app = Flask(__name__)
CORS(app, origins=sys_config["server"]["cors_origins"])

# 'threading' mode: requests may run in parallel, StateStore and HistoryLog lock internally
socketio = SocketIO(app, cors_allowed_origins=sys_config["server"]["cors_origins"], async_mode='threading')

# Add prometheus wsgi middleware to export metrics at /metrics
app.wsgi_app = DispatcherMiddleware(app.wsgi_app, {
    '/metrics': make_wsgi_app()
})


def startup():
    """
    Recover persisted state and build the state store.

    Creates the history file if it is missing and loads (or creates, or
    repairs) the command file. Safe to call more than once; I/O errors
    propagate.

    Returns:
        StateStore: The store that is current once startup has run.
    """
    global history, store
    with startup_lock:
        if store is not None:
            return store
        storage = sys_config["storage"]
        mode = sys_config["command"]["mode"]

        log = HistoryLog(storage["history_file"])
        log.ensure_exists()
        command = load_command_from_disk(storage["command_file"], mode)

        history = log
        store = StateStore(log, storage["command_file"], command, mode=mode)
        app_logger.info(f"Relay started in {mode} command mode")
        return store


def shutdown():
    """Drop the in-memory state; the next request recovers it from disk."""
    global history, store
    with startup_lock:
        history = None
        store = None


def _ensure_started() -> StateStore:
    """Lazy-initialize the state store if needed."""
    # one read of the global, shutdown() may clear it meanwhile
    current = store
    if current is None:
        current = startup()
    return current


def _read_json_object() -> dict:
    """
    Return the request body as a dict.

    An empty body or a JSON value that is not an object counts as {}. A body
    that is not JSON at all is rejected by Flask with a 400.
    """
    if not request.get_data():
        return {}
    req = request.get_json(force=True)
    return req if isinstance(req, dict) else {}


def _note_ignored(route: str, ignored: list[str]):
    if ignored:
        API_IGNORED_FIELDS_TOTAL.inc(len(ignored))
        app_logger.debug(f"[{route}] Ignoring fields with wrong type: {ignored}")


def _broadcast_state(current: StateStore):
    """Push the combined state to connected dashboards."""
    try:
        socketio.emit("estado", current.current_state())
    except Exception:
        app_logger.exception("Failed to push state update")


@app.route("/api/dados", methods=["POST"])
def post_dados():
    """Receive a reading from the field node (temperature, pressure, valve states)."""
    current = _ensure_started()
    reading, ignored = _validate_payload(_read_json_object(), READING_SCHEMA)
    _note_ignored("POST /api/dados", ignored)

    current.record_reading(reading)
    READINGS_RECEIVED_TOTAL.inc()
    app_logger.info(
        f"[POST /api/dados] T: {reading.get('temperatura')}°C | P: {reading.get('pressao')} bar"
        f" | V1: {reading.get('valvula1')} | V2: {reading.get('valvula2')}"
    )
    _broadcast_state(current)
    return jsonify({"success": True, "message": "Dados recebidos"})


@app.route("/api/comando", methods=["GET"])
def get_comando():
    """Field node polls the pending command."""
    comando = _ensure_started().current_command()
    app_logger.debug(f"[GET /api/comando] Returning: {comando}")
    return jsonify(comando)


@app.route("/api/comando", methods=["POST"])
def post_comando():
    """Dashboard submits a valve command."""
    current = _ensure_started()
    update, ignored = _validate_payload(_read_json_object(), COMMAND_SCHEMA)
    _note_ignored("POST /api/comando", ignored)

    comando = current.set_command(update)
    COMMANDS_RECEIVED_TOTAL.inc()
    app_logger.info(f"[POST /api/comando] Received {update}, pending command now {comando}")
    _broadcast_state(current)
    return jsonify({"success": True, "comando": comando})


@app.route("/api/estado", methods=["GET"])
def get_estado():
    """Dashboard reads the latest readings together with the pending command."""
    return jsonify(_ensure_started().current_state())


@app.route("/api/historico", methods=["GET"])
def get_historico():
    """
    Return the last N readings from the history file, oldest first.
    N comes from ?limite= and falls back to the configured default.
    """
    log = _ensure_started().history
    default_limit = sys_config["history"]["default_limit"]
    limite = request.args.get("limite", type=int)
    if limite is None or limite <= 0:
        limite = default_limit
    return jsonify(log.read_last(limite))


@app.route("/api/historico", methods=["DELETE"])
def delete_historico():
    """Clear the reading history."""
    _ensure_started().history.clear()
    app_logger.info("[DELETE /api/historico] History cleared")
    return jsonify({"success": True, "message": "Histórico limpo"})


def _log_banner(host: str, port: int):
    app_logger.info("CAN NETWORK CONTROL SERVER")
    app_logger.info(f"  Listening on http://{host}:{port}")
    app_logger.info("  Routes:")
    app_logger.info("    POST   /api/dados     - readings from the field node")
    app_logger.info("    GET    /api/comando   - field node polls commands")
    app_logger.info("    POST   /api/comando   - dashboard sends commands")
    app_logger.info("    GET    /api/estado    - dashboard reads current state")
    app_logger.info("    GET    /api/historico - reading history")
    app_logger.info("    DELETE /api/historico - clear reading history")
    app_logger.info("    GET    /metrics       - Prometheus metrics")


def main():
    debug = os.getenv("FLASK_DEBUG", "false").lower() == "true"
    host = sys_config["server"]["host"]
    port = sys_config["server"]["port"]

    eager_start = (
        os.getenv("CANRELAY_EAGER_STARTUP", "true").lower() == "true"
    )

    # the reloader parent process must not touch the data files
    if eager_start and (not debug or os.environ.get("WERKZEUG_RUN_MAIN") == "true"):
        startup()
    _log_banner(host, port)
    socketio.run(app, host=host, port=port, debug=debug, allow_unsafe_werkzeug=True)


if __name__ == "__main__":
    main()
