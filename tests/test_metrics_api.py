from fastapi.testclient import TestClient

from perfportal.api.deps import get_db
from perfportal.core.config import settings
from perfportal.db import models
from perfportal.main import app


def _override_get_db(session):
    def _get_db():
        yield session
    return _get_db


def test_health_reports_ok():
    client = TestClient(app)

    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert body["environment"] == settings.environment


def test_metrics_reflect_uploads_and_failures(monkeypatch, tmp_path, session, make_csv):
    session.add(models.Capability(name="Checkout"))
    session.commit()
    app.dependency_overrides[get_db] = _override_get_db(session)
    monkeypatch.setattr(settings, "ingestion_storage_dir", tmp_path)
    client = TestClient(app)

    form = {"capability": "Checkout", "testName": "Peak", "buildNumber": "1"}
    client.post("/upload", files={"file": ("ok.jtl", make_csv(), "text/csv")}, data=form)
    client.post("/upload", files={"file": ("bad.jtl", "", "text/csv")}, data=form)
    client.post("/upload", files={"file": ("bad.txt", "x", "text/plain")}, data=form)

    payload = client.get("/metrics").json()

    assert payload["totals"] == {
        "uploads": 3,
        "completed": 1,
        "failed": 1,
        "rejected": 1,
        "rows_parsed": 4,
        "rows_skipped": 0,
    }
    assert [counter["capability"] for counter in payload["counters"]] == ["Checkout"]
    reasons = [failure["error_type"] for failure in payload["recent_failures"]]
    assert reasons == ["UnsupportedFormatError", "MalformedInputError"]
    statuses = [event["status"] for event in payload["recent_parse_events"]]
    assert statuses == ["failed", "completed"]
    assert payload["buffer_limits"]["parse_events"] == settings.log_parse_event_size

    app.dependency_overrides.pop(get_db, None)


def test_logs_endpoint_filters_by_level_and_test_run(monkeypatch, tmp_path, session):
    session.add(models.Capability(name="Checkout"))
    session.commit()
    app.dependency_overrides[get_db] = _override_get_db(session)
    monkeypatch.setattr(settings, "ingestion_storage_dir", tmp_path)
    client = TestClient(app)

    failed = client.post(
        "/upload",
        files={"file": ("bad.jtl", "", "text/csv")},
        data={"capability": "Checkout", "testName": "Peak", "buildNumber": "1"},
    ).json()

    body = client.get(
        "/metrics/logs", params={"level": "warning", "test_run_id": failed["test_run_id"]}
    ).json()

    assert body["entries"]
    assert all(entry["levelno"] >= 30 for entry in body["entries"])
    assert all(entry["test_run_id"] == failed["test_run_id"] for entry in body["entries"])
    assert "JTL processing failed" in body["entries"][0]["message"]

    assert client.get("/metrics/logs", params={"level": "loud"}).status_code == 400

    app.dependency_overrides.pop(get_db, None)
