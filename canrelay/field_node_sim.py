# Field node simulation
# Stands in for the CAN gateway node so the dashboard can be built without hardware.

import argparse
import logging
import random
import time

import requests

sim_logger = logging.getLogger("canrelay.field_node_sim")


class FieldNodeSimulator:
    """
    Simulates the remote field node.

    Every cycle it reports a reading to POST /api/dados and polls
    GET /api/comando, then applies the command to its own valves so that the
    next reading reports them. Temperature and pressure drift slowly around a
    base value and climb while emission is active.
    """
    def __init__(self, base_url, session=None, seed=None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.rng = random.Random(seed)
        self.temperature = 25.0
        self.pressure = 1.2
        self.valves = {"valvula1": False, "valvula2": False}

    def next_reading(self):
        """Advance the simulated process by one step and return the reading to send."""
        open_valves = sum(1 for v in self.valves.values() if v)
        self.temperature += self.rng.uniform(-0.3, 0.3) + 0.2 * open_valves
        self.pressure += self.rng.uniform(-0.02, 0.02) + 0.01 * open_valves
        self.temperature = max(15.0, min(self.temperature, 90.0))
        self.pressure = max(0.8, min(self.pressure, 3.5))
        return {
            "temperatura": round(self.temperature, 2),
            "pressao": round(self.pressure, 3),
            "valvula1": self.valves["valvula1"],
            "valvula2": self.valves["valvula2"],
        }

    def apply_command(self, comando):
        """Accept either command shape: {"emissao_ativa"} or {"valvula1", "valvula2"}."""
        if isinstance(comando.get("emissao_ativa"), bool):
            self.valves["valvula1"] = comando["emissao_ativa"]
            self.valves["valvula2"] = comando["emissao_ativa"]
        for valve in ("valvula1", "valvula2"):
            if isinstance(comando.get(valve), bool):
                self.valves[valve] = comando[valve]

    def step(self, timeout=2.0):
        """Send one reading and poll the command once."""
        reading = self.next_reading()
        resp = self.session.post(f"{self.base_url}/api/dados", json=reading, timeout=timeout)
        resp.raise_for_status()

        resp = self.session.get(f"{self.base_url}/api/comando", timeout=timeout)
        resp.raise_for_status()
        self.apply_command(resp.json())
        return reading

    def run(self, interval=2.0, cycles=None):
        done = 0
        while cycles is None or done < cycles:
            try:
                reading = self.step()
                sim_logger.info(f"Sent {reading}")
            except requests.RequestException as exc:
                sim_logger.warning(f"Relay unreachable: {exc}")
            done += 1
            time.sleep(interval)


def main():
    """Entry point for the field node simulation."""
    parser = argparse.ArgumentParser(description="Simulated CAN field node")
    parser.add_argument("--url", default="http://127.0.0.1:3001")
    parser.add_argument("--interval", type=float, default=2.0)
    parser.add_argument("--cycles", type=int, default=None)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    sim_logger.info("Field node simulation started...")
    FieldNodeSimulator(args.url, seed=args.seed).run(interval=args.interval, cycles=args.cycles)


if __name__ == "__main__":
    main()
