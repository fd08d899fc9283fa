"""Locust scenarios for the telemetry relay APIs.

Use headless mode for CI/regression-style checks or the web UI for manual runs.
Set --host to the URL of the relay (e.g. http://gateway-host:3001).
"""

import random
from locust import HttpUser, between, task

TEMPERATURES = [22.5, 25.0, 31.2, 40.8]
PRESSURES = [0.9, 1.2, 1.8, 2.4]
HISTORY_LIMITS = [1, 20, 100]


class FieldNodeUser(HttpUser):
    """Simulates the field node reporting readings and polling commands."""

    wait_time = between(0.5, 1.5)

    @task(3)
    def send_reading(self):
        self.client.post(
            "/api/dados",
            json={
                "temperatura": random.choice(TEMPERATURES),  # nosec B311
                "pressao": random.choice(PRESSURES),  # nosec B311
            },
            name="POST /api/dados",
        )

    @task(3)
    def poll_command(self):
        self.client.get("/api/comando", name="GET /api/comando")


class DashboardUser(HttpUser):
    """Simulates dashboard polling for state and history."""

    wait_time = between(0.2, 0.6)

    @task(5)
    def read_state(self):
        self.client.get("/api/estado", name="GET /api/estado")

    @task(2)
    def read_history(self):
        limite = random.choice(HISTORY_LIMITS)  # nosec B311
        self.client.get(f"/api/historico?limite={limite}", name="GET /api/historico")


class OperatorUser(HttpUser):
    """Simulates operator valve commands."""

    wait_time = between(2.0, 4.0)

    @task(2)
    def toggle_emission(self):
        self.client.post(
            "/api/comando",
            json={"emissao_ativa": random.choice([True, False])},  # nosec B311
            name="POST /api/comando:emissao",
        )

    @task(1)
    def toggle_valve(self):
        valve = random.choice(["valvula1", "valvula2"])  # nosec B311
        self.client.post(
            "/api/comando",
            json={valve: random.choice([True, False])},  # nosec B311
            name="POST /api/comando:valvula",
        )
