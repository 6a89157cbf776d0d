import time

import pytest
from fastapi.testclient import TestClient

from dropmanager.analysis.cache import AnalysisCache
from dropmanager.api.app import create_app
from dropmanager.core.project_manager import ProjectManager

API = "/api/v1"


@pytest.fixture
def client():
    app = create_app(manager=ProjectManager(), cache=AnalysisCache(sweep_interval=None))
    with TestClient(app) as test_client:
        yield test_client


def _update(text: str, employee_id: str = "emp-1") -> dict:
    return {
        "message_text": text,
        "employee_id": employee_id,
        "employee_email": f"{employee_id}@example.com",
        "employee_display_name": "Dana Kim",
    }


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_process_update_and_state(client):
    response = client.post(f"{API}/updates", json=_update("Finished the quarterly report."))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["extracted_tasks"][0]["title"] == "quarterly report"

    state = client.get(f"{API}/state").json()
    assert state["counts"]["updates"] == 1
    assert state["latest_update"]["id"] == body["update_id"]
    assert state["queue_pending"] == 0
    assert state["token_usage"] == {}


def test_invalid_update_is_rejected(client):
    response = client.post(f"{API}/updates", json={"message_text": "Finished the report."})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_queued_update_reaches_processed(client):
    response = client.post(f"{API}/updates/queue", json=_update("Working on the payment webhooks."))
    assert response.status_code == 202
    ticket_id = response.json()["ticket_id"]

    deadline = time.monotonic() + 5.0
    ticket = response.json()
    while ticket["status"] in ("queued", "processing") and time.monotonic() < deadline:
        time.sleep(0.05)
        ticket = client.get(f"{API}/updates/queue/{ticket_id}").json()

    assert ticket["status"] == "processed"
    assert ticket["response"]["success"] is True


def test_unknown_ticket_is_404(client):
    assert client.get(f"{API}/updates/queue/ticket-missing").status_code == 404


def test_gap_analysis_endpoints(client):
    client.post(f"{API}/updates", json=_update("Stuck on the vendor invoice."))

    result = client.post(f"{API}/analysis/gaps", json={"timeframe": "week", "min_severity": "medium"})
    assert result.status_code == 200
    assert result.json()["summary"]["total_gaps"] == len(result.json()["gaps"])

    critical = client.get(f"{API}/analysis/gaps/critical")
    assert critical.status_code == 200
    assert all(gap["severity"] in ("high", "critical") for gap in critical.json())

    assert client.get(f"{API}/analysis/questions/employee/emp-1").status_code == 200
    assert client.get(f"{API}/analysis/questions/project/general").status_code == 200


def test_summary_endpoints_and_cache(client):
    client.post(f"{API}/updates", json=_update("Finished the quarterly report."))

    posted = client.post(f"{API}/analysis/summary", json={"type": "team_performance"})
    assert posted.status_code == 200
    assert posted.json()["confidence"] == 30

    by_type = client.get(f"{API}/analysis/summary/project_status", params={"scope": "general"})
    assert by_type.status_code == 200
    keys = [entry["key"] for entry in client.get(f"{API}/analysis/cache").json()["entries"]]
    assert "summary:project_status:general" in keys

    client.post(f"{API}/updates", json=_update("Finished the slides deck."))
    assert client.get(f"{API}/analysis/cache").json()["size"] == 0

    assert client.get(f"{API}/analysis/summary/quarterly_poem").status_code == 404

    client.get(f"{API}/analysis/summary/risk_alerts")
    assert client.delete(f"{API}/analysis/cache").status_code == 204
    assert client.get(f"{API}/analysis/cache").json()["size"] == 0


def test_agents_run_relays_to_project_handler(client):
    response = client.post(
        f"{API}/agents/run",
        json={"user_id": "u1", "message_text": "Finished triage of the maintenance backlog."},
    )

    assert response.status_code == 200
    types = sorted(message["type"] for message in response.json()["outbound"])
    assert types == ["NOTIFICATION", "QUERY", "REQUEST"]


def test_team_performance_with_non_timeframe_scope_is_400(client):
    response = client.get(f"{API}/analysis/summary/team_performance", params={"scope": "P1"})

    assert response.status_code == 400
    assert "P1" in response.json()["detail"]
    assert client.get(f"{API}/analysis/summary/team_performance", params={"scope": "day"}).status_code == 200
