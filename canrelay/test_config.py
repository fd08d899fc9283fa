import unittest
import json
import os
import glob
import tempfile
import logging

from canrelay import config

# Keep test output clean; warnings are expected here
logging.getLogger("canrelay.config").setLevel(logging.CRITICAL)


class TestConfigHardening(unittest.TestCase):
    def setUp(self):
        self.test_dir = tempfile.TemporaryDirectory()
        self.config_path = os.path.join(self.test_dir.name, "config.json")

    def tearDown(self):
        self.test_dir.cleanup()

    def _write(self, content):
        with open(self.config_path, 'w') as f:
            if isinstance(content, str):
                f.write(content)
            else:
                json.dump(content, f)

    def test_missing_file_uses_defaults(self):
        cfg = config.load_config(self.config_path)
        self.assertEqual(cfg, config.SYSTEM_DEFAULTS)
        self.assertEqual(cfg["server"]["port"], 3001)
        self.assertEqual(cfg["server"]["host"], "0.0.0.0")
        self.assertEqual(cfg["command"]["mode"], "unified")
        self.assertEqual(cfg["history"]["default_limit"], 20)

    def test_load_valid_config(self):
        self._write({
            "server": {"port": 8080},
            "storage": {"history_file": "/var/lib/canrelay/dados.txt"},
            "command": {"mode": "individual"},
            "history": {"default_limit": 50},
        })
        cfg = config.load_config(self.config_path)
        self.assertEqual(cfg["server"]["port"], 8080)
        self.assertEqual(cfg["server"]["host"], "0.0.0.0")
        self.assertEqual(cfg["storage"]["history_file"], "/var/lib/canrelay/dados.txt")
        self.assertEqual(cfg["storage"]["command_file"], "estado.txt")
        self.assertEqual(cfg["command"]["mode"], "individual")
        self.assertEqual(cfg["history"]["default_limit"], 50)

    def test_load_malformed_json(self):
        self._write("{ invalid json")

        cfg = config.load_config(self.config_path)

        self.assertEqual(cfg, config.SYSTEM_DEFAULTS)
        self.assertEqual(len(glob.glob(self.config_path + ".bak.*")), 1)

    def test_invalid_types(self):
        self._write({
            "server": {"port": "not a number", "host": ""},
            "command": {"mode": "both"},
            "history": {"default_limit": -5},
        })
        cfg = config.load_config(self.config_path)
        self.assertEqual(cfg["server"]["port"], 3001)
        self.assertEqual(cfg["server"]["host"], "0.0.0.0")
        self.assertEqual(cfg["command"]["mode"], "unified")
        self.assertEqual(cfg["history"]["default_limit"], 20)

    def test_invalid_sections(self):
        self._write({"server": [], "storage": "dados.txt"})
        cfg = config.load_config(self.config_path)
        self.assertEqual(cfg["server"], config.SYSTEM_DEFAULTS["server"])
        self.assertEqual(cfg["storage"], config.SYSTEM_DEFAULTS["storage"])

    def test_root_not_an_object(self):
        self._write([1, 2, 3])
        self.assertEqual(config.load_config(self.config_path), config.SYSTEM_DEFAULTS)

    def test_same_file_for_history_and_command_rejected(self):
        self._write({"storage": {"history_file": "x.txt", "command_file": "x.txt"}})
        cfg = config.load_config(self.config_path)
        self.assertEqual(cfg["storage"], config.SYSTEM_DEFAULTS["storage"])

    def test_env_overrides(self):
        cfg = config.apply_env_overrides(
            config.validate_config({}),
            environ={
                "FLASK_RUN_HOST": "127.0.0.1",
                "FLASK_RUN_PORT": "5001",
                "CANRELAY_COMMAND_MODE": "Individual",
            },
        )
        self.assertEqual(cfg["server"]["host"], "127.0.0.1")
        self.assertEqual(cfg["server"]["port"], 5001)
        self.assertEqual(cfg["command"]["mode"], "individual")

    def test_invalid_env_override_ignored(self):
        cfg = config.apply_env_overrides(
            config.validate_config({"server": {"port": 4000}}),
            environ={"FLASK_RUN_PORT": "99999", "CANRELAY_COMMAND_MODE": "bogus"},
        )
        self.assertEqual(cfg["server"]["port"], 4000)
        self.assertEqual(cfg["command"]["mode"], "unified")


if __name__ == '__main__':
    unittest.main()
