# file: canrelay/config.py
"""
Configuration for the telemetry relay.

The configuration is a JSON document validated section by section against
SYSTEM_DEFAULTS. Invalid entries fall back to their default with a warning;
a malformed file is backed up and replaced by defaults for this run.
"""

import os
import json
import copy
import shutil
import logging
from datetime import datetime
from json import JSONDecodeError

from canrelay.command_store import COMMAND_MODES, MODE_UNIFIED

CURRENT_DIR = os.path.dirname(__file__)
CONFIG_FILE = os.getenv("CANRELAY_CONFIG", os.path.join(CURRENT_DIR, "config.json"))

SYSTEM_DEFAULTS = {
    "server": {
        "host": "0.0.0.0",
        "port": 3001,
        "cors_origins": "*",
    },
    "storage": {
        "history_file": "dados.txt",
        "command_file": "estado.txt",
    },
    "command": {
        "mode": MODE_UNIFIED,
    },
    "history": {
        "default_limit": 20,
    },
}

config_logger = logging.getLogger("canrelay.config")


def _validate_server(section: dict, errors: list[str]):
    result = copy.deepcopy(SYSTEM_DEFAULTS["server"])
    if "host" in section:
        host = section["host"]
        if isinstance(host, str) and host.strip():
            result["host"] = host.strip()
        else:
            errors.append("Invalid server.host, using default")
    if "port" in section:
        try:
            port = int(section["port"])
            if 1 <= port <= 65535:
                result["port"] = port
            else:
                raise ValueError
        except (TypeError, ValueError):
            errors.append("Invalid server.port (must be 1-65535), using default")
    if "cors_origins" in section:
        origins = section["cors_origins"]
        if isinstance(origins, str) or (
            isinstance(origins, list) and all(isinstance(o, str) for o in origins)
        ):
            result["cors_origins"] = origins
        else:
            errors.append("Invalid server.cors_origins, using default")
    return result


def _validate_storage(section: dict, errors: list[str]):
    result = copy.deepcopy(SYSTEM_DEFAULTS["storage"])
    for key in ("history_file", "command_file"):
        if key not in section:
            continue
        val = section[key]
        if isinstance(val, str) and val.strip():
            result[key] = val.strip()
        else:
            errors.append(f"Invalid storage.{key}, using default")
    if result["history_file"] == result["command_file"]:
        errors.append("storage.history_file and storage.command_file must differ, using defaults")
        return copy.deepcopy(SYSTEM_DEFAULTS["storage"])
    return result


def _validate_command(section: dict, errors: list[str]):
    result = copy.deepcopy(SYSTEM_DEFAULTS["command"])
    if "mode" in section:
        if section["mode"] in COMMAND_MODES:
            result["mode"] = section["mode"]
        else:
            errors.append(f"Invalid command.mode (must be one of {list(COMMAND_MODES)}), using default")
    return result


def _validate_history(section: dict, errors: list[str]):
    result = copy.deepcopy(SYSTEM_DEFAULTS["history"])
    if "default_limit" in section:
        try:
            limit = int(section["default_limit"])
            if limit > 0:
                result["default_limit"] = limit
            else:
                raise ValueError
        except (TypeError, ValueError):
            errors.append("Invalid history.default_limit (must be > 0), using default")
    return result


def _section(raw_cfg: dict, name: str, errors: list[str]) -> dict:
    section = raw_cfg.get(name, {})
    if not isinstance(section, dict):
        errors.append(f"Invalid {name} section, using defaults")
        return {}
    return section


def validate_config(raw_cfg: dict):
    """
    Validate the entire application configuration dictionary.

    Args:
        raw_cfg (dict): The raw configuration dictionary loaded from JSON.

    Returns:
        dict: A validated configuration dictionary with defaults applied where necessary.
    """
    errors: list[str] = []
    if not isinstance(raw_cfg, dict):
        errors.append("Configuration root must be an object, using defaults")
        raw_cfg = {}

    cfg = copy.deepcopy(SYSTEM_DEFAULTS)
    cfg["server"] = _validate_server(_section(raw_cfg, "server", errors), errors)
    cfg["storage"] = _validate_storage(_section(raw_cfg, "storage", errors), errors)
    cfg["command"] = _validate_command(_section(raw_cfg, "command", errors), errors)
    cfg["history"] = _validate_history(_section(raw_cfg, "history", errors), errors)

    for err in errors:
        config_logger.warning(f"CONFIG_WARNING: {err}")

    return cfg


def apply_env_overrides(cfg: dict, environ=None):
    """
    Apply FLASK_RUN_HOST, FLASK_RUN_PORT and CANRELAY_COMMAND_MODE on top of a
    validated configuration. Invalid values are ignored with a warning.
    """
    environ = os.environ if environ is None else environ
    cfg = copy.deepcopy(cfg)
    for env_key, section, key, validator in (
        ("FLASK_RUN_HOST", "server", "host", _validate_server),
        ("FLASK_RUN_PORT", "server", "port", _validate_server),
        ("CANRELAY_COMMAND_MODE", "command", "mode", _validate_command),
    ):
        raw = environ.get(env_key)
        if not raw:
            continue
        if key == "mode":
            raw = raw.strip().lower()
        errors: list[str] = []
        validated = validator({key: raw}, errors)
        if errors:
            config_logger.warning(f"CONFIG_WARNING: ignoring {env_key}={raw!r}")
            continue
        cfg[section][key] = validated[key]
    return cfg


def _backup_config(path: str):
    ts = datetime.now().strftime("%Y%m%d%H%M%S")
    backup_path = f"{path}.bak.{ts}"
    config_logger.warning(f"Backing up malformed config to {backup_path}")
    try:
        shutil.copy(path, backup_path)
    except OSError as copy_err:
        config_logger.error(f"Failed to backup corrupt config: {copy_err}")


def load_config(path: str | None = None):
    """
    Load and validate configuration from config.json.
    Falls back to defaults if the file is missing or corrupt.
    Backs up corrupt files.
    """
    path = path or CONFIG_FILE
    if not os.path.exists(path):
        config_logger.info(f"Configuration file {path} not found, using defaults")
        return validate_config({})

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw_cfg = json.load(f)
    except (JSONDecodeError, UnicodeDecodeError):
        config_logger.error(f"Malformed JSON in {path}")
        _backup_config(path)
        return validate_config({})

    return validate_config(raw_cfg)
