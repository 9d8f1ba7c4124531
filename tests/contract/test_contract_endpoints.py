import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client():
    from service_checker.app import app  # noqa: WPS433

    return TestClient(app)


def test_routes_exist(client: TestClient):
    # The scheduler may call the trigger with either verb
    assert client.post("/v1/checks/run").status_code == 200
    assert client.get("/v1/checks/run").status_code == 200

    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}

    resp = client.get("/v1/metrics")
    assert resp.status_code == 200
    assert set(resp.json()) == {"counters", "timers", "services"}

    resp = client.get("/v1/services/some-service/metrics")
    assert resp.status_code == 200
    assert set(resp.json()) == {"counters", "timers"}


def test_trigger_rejects_other_verbs(client: TestClient):
    assert client.delete("/v1/checks/run").status_code == 405
    assert client.put("/v1/checks/run").status_code == 405


def test_run_summary_shape(client: TestClient):
    body = client.post("/v1/checks/run").json()

    assert set(body) == {
        "checked",
        "disabled",
        "failed",
        "recovered",
        "notified",
        "persisted",
        "duration_ms",
    }
