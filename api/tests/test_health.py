from fastapi.testclient import TestClient

from issue_relay.main import app


def test_healthz_reports_store_backend() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "job_store": "memory"}


def test_root_names_the_service() -> None:
    client = TestClient(app)
    assert client.get("/").json() == {"service": "issue-relay-api", "status": "ok"}
