"""
Process-wide state of the relay: the latest sensor snapshot and the pending
valve command.

All reads and merges happen under a single lock. A reading is appended to the
history while that lock is held, so the history order always matches the
order in which readings were accepted.
"""

import copy
import logging
import threading
from datetime import datetime, timezone

from canrelay.command_store import (
    MODE_UNIFIED,
    command_to_wire,
    save_command_to_disk,
)
from canrelay.metrics import SENSOR_TEMPERATURE, SENSOR_PRESSURE, VALVE_COMMAND_STATE

READING_FIELDS = ("temperatura", "pressao", "valvula1", "valvula2")


def now_iso() -> str:
    """UTC wall-clock time as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def initial_snapshot() -> dict:
    return {
        "temperatura": 0,
        "pressao": 0,
        "valvula1": False,
        "valvula2": False,
        "ultimaAtualizacao": None,
    }


class StateStore:
    """
    Owner of the sensor snapshot and the pending command.

    Partial updates apply only the keys present in the incoming dict; callers
    strip wrongly typed or null fields before handing them over. An explicit
    False or 0 is a value like any other.
    """
    def __init__(self, history, command_file: str, command: dict, mode: str = MODE_UNIFIED):
        """
        Args:
            history (HistoryLog): Destination for history records.
            command_file (str): Where the pending command is persisted.
            command (dict): Command recovered at startup.
            mode (str): Command addressing mode of this deployment.
        """
        self.history = history
        self.command_file = command_file
        self.mode = mode
        self._snapshot = initial_snapshot()
        self._command = dict(command)
        self._lock = threading.Lock()
        self._logger = logging.getLogger("canrelay.state")
        self._update_command_gauges()

    def _update_command_gauges(self):
        VALVE_COMMAND_STATE.labels(valve="valvula1").set(1 if self._command["valvula1"] else 0)
        VALVE_COMMAND_STATE.labels(valve="valvula2").set(1 if self._command["valvula2"] else 0)

    def record_reading(self, reading: dict) -> dict:
        """
        Merge a partial reading into the snapshot and log it.

        The history record carries the commanded valve state, not the valve
        state reported in the reading.

        Args:
            reading (dict): Any subset of temperatura, pressao, valvula1, valvula2.

        Returns:
            dict: The history record that was appended.
        """
        with self._lock:
            snapshot = dict(self._snapshot)
            for field in READING_FIELDS:
                if reading.get(field) is not None:
                    snapshot[field] = reading[field]
            snapshot["ultimaAtualizacao"] = now_iso()

            record = {
                "timestamp": snapshot["ultimaAtualizacao"],
                "temperatura": snapshot["temperatura"],
                "pressao": snapshot["pressao"],
                "valvula1": self._command["valvula1"],
                "valvula2": self._command["valvula2"],
            }
            self.history.append(record)
            self._snapshot = snapshot

        SENSOR_TEMPERATURE.set(snapshot["temperatura"])
        SENSOR_PRESSURE.set(snapshot["pressao"])
        return record

    def set_command(self, update: dict) -> dict:
        """
        Merge a partial command and persist the whole command.

        In unified mode only "emissao_ativa" is honoured and it drives both
        valves. In individual mode "emissao_ativa" sets both valves first and
        "valvula1"/"valvula2" are applied after it, overriding it.

        Args:
            update (dict): Any subset of emissao_ativa, valvula1, valvula2.

        Returns:
            dict: The resulting command in the wire shape of the mode.
        """
        with self._lock:
            command = dict(self._command)
            applied = False

            active = update.get("emissao_ativa")
            if active is not None:
                command["valvula1"] = active
                command["valvula2"] = active
                applied = True

            for valve in ("valvula1", "valvula2"):
                if update.get(valve) is None:
                    continue
                if self.mode == MODE_UNIFIED:
                    self._logger.debug("Unified mode ignores %s", valve)
                    continue
                command[valve] = update[valve]
                applied = True

            # in-memory command changes only after a successful write
            if applied:
                save_command_to_disk(self.command_file, command, self.mode)
                self._command = command
                self._update_command_gauges()

            return command_to_wire(self._command, self.mode)

    def current_snapshot(self) -> dict:
        with self._lock:
            return copy.deepcopy(self._snapshot)

    def current_command(self) -> dict:
        """Pending command in the wire shape of the mode."""
        with self._lock:
            return command_to_wire(self._command, self.mode)

    def current_state(self) -> dict:
        """
        Combined dashboard view, read in one critical section.

        "valvula1"/"valvula2" are the commanded valves, matching what the
        history records; the field node's own report is under
        "valvulasReportadas".
        """
        with self._lock:
            return {
                "temperatura": self._snapshot["temperatura"],
                "pressao": self._snapshot["pressao"],
                "valvula1": self._command["valvula1"],
                "valvula2": self._command["valvula2"],
                "ultimaAtualizacao": self._snapshot["ultimaAtualizacao"],
                "valvulasReportadas": {
                    "valvula1": self._snapshot["valvula1"],
                    "valvula2": self._snapshot["valvula2"],
                },
                "comandoAtual": command_to_wire(self._command, self.mode),
            }
