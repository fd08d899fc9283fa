import json
import os
import shutil
import logging
from datetime import datetime
from json import JSONDecodeError

from canrelay.metrics import COMMAND_FILE_RECOVERIES_TOTAL

MODE_UNIFIED = "unified"
MODE_INDIVIDUAL = "individual"
COMMAND_MODES = (MODE_UNIFIED, MODE_INDIVIDUAL)

_logger = logging.getLogger("canrelay.commands")


def default_command():
    """Return the command used on first start and after corruption: all valves closed."""
    return {"valvula1": False, "valvula2": False}


def command_to_wire(command, mode):
    """
    Convert an internal command to the JSON shape of the configured mode.

    Args:
        command (dict): Internal command with "valvula1" and "valvula2".
        mode (str): MODE_UNIFIED or MODE_INDIVIDUAL.

    Returns:
        dict: {"emissao_ativa": bool} in unified mode, otherwise
              {"valvula1": bool, "valvula2": bool}.
    """
    if mode == MODE_UNIFIED:
        return {"emissao_ativa": command["valvula1"]}
    return {"valvula1": command["valvula1"], "valvula2": command["valvula2"]}


def _require_bool(data, key):
    val = data.get(key, False)
    if not isinstance(val, bool):
        raise ValueError(f"{key} must be a boolean, got {val!r}")
    return val


def parse_command(data, mode):
    """
    Build an internal command from a decoded command file.

    The two modes read each other's files: individual mode seeds both valves
    from "emissao_ativa", unified mode takes "emissao_ativa" from the valves
    when they agree. In individual mode a missing valve defaults to False; in
    unified mode a file that yields no flag is invalid.

    Args:
        data: The decoded JSON document.
        mode (str): MODE_UNIFIED or MODE_INDIVIDUAL.

    Returns:
        dict: Internal command.

    Raises:
        ValueError: If the document is not an object or a field has the wrong type.
    """
    if not isinstance(data, dict):
        raise ValueError("command file must hold a JSON object")

    if mode == MODE_UNIFIED:
        if "emissao_ativa" in data:
            active = _require_bool(data, "emissao_ativa")
            return {"valvula1": active, "valvula2": active}
        if "valvula1" not in data or "valvula2" not in data:
            raise ValueError("command file has neither emissao_ativa nor both valves")
        valvula1 = _require_bool(data, "valvula1")
        if valvula1 != _require_bool(data, "valvula2"):
            raise ValueError("valves differ, cannot derive emissao_ativa")
        return {"valvula1": valvula1, "valvula2": valvula1}

    if "valvula1" not in data and "valvula2" not in data and "emissao_ativa" in data:
        active = _require_bool(data, "emissao_ativa")
        return {"valvula1": active, "valvula2": active}

    return {
        "valvula1": _require_bool(data, "valvula1"),
        "valvula2": _require_bool(data, "valvula2"),
    }


def save_command_to_disk(path, command, mode):
    """
    Overwrite the command file with the full command.

    Writes a temporary file and renames it over the target. Errors propagate
    to the caller.

    Args:
        path (str): Location of the command file.
        command (dict): Internal command to persist.
        mode (str): Wire shape to write.
    """
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    tmp_path = f"{path}.tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(command_to_wire(command, mode), f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def _backup_corrupt_file(path):
    ts = datetime.now().strftime("%Y%m%d%H%M%S")
    backup_path = f"{path}.bak.{ts}"
    _logger.warning(f"Backing up corrupt command file to {backup_path}")
    try:
        shutil.copy(path, backup_path)
    except OSError as copy_err:
        _logger.error(f"Failed to backup corrupt command file: {copy_err}")


def load_command_from_disk(path, mode):
    """
    Load the persisted command, creating or repairing the file if needed.

    - Missing file: written with the default command.
    - Unreadable or malformed content: backed up, then reset to the default.
    - Valid content: returned as-is, the file is not touched.

    Other I/O errors (permissions, disk) propagate.

    Args:
        path (str): Location of the command file.
        mode (str): MODE_UNIFIED or MODE_INDIVIDUAL.

    Returns:
        dict: Internal command.
    """
    if not os.path.exists(path):
        command = default_command()
        save_command_to_disk(path, command, mode)
        _logger.info(f"[INIT] Command file created: {command_to_wire(command, mode)}")
        return command

    try:
        with open(path, "r", encoding="utf-8") as f:
            command = parse_command(json.load(f), mode)
    except (JSONDecodeError, UnicodeDecodeError, ValueError) as exc:
        _logger.warning(f"[INIT] Invalid command file {path} ({exc}), using default")
        COMMAND_FILE_RECOVERIES_TOTAL.inc()
        _backup_corrupt_file(path)
        command = default_command()
        save_command_to_disk(path, command, mode)
        return command

    _logger.info(f"[INIT] Command loaded: {command_to_wire(command, mode)}")
    return command
