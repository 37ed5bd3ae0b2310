from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from perfportal.api.deps import get_db
from perfportal.db import models
from perfportal.main import app
from perfportal.services import test_run_processing as processing


def _override_get_db(session):
    def _get_db():
        yield session
    return _get_db


@pytest.fixture()
def client(session):
    app.dependency_overrides[get_db] = _override_get_db(session)
    yield TestClient(app)
    app.dependency_overrides.pop(get_db, None)


def _capability(session, **fields) -> models.Capability:
    values = dict(
        name="Checkout",
        description="Order placement",
        test_objective="Hold latency targets at peak",
        test_scope="Login and search",
        environment_details="staging",
        acceptance_criteria={"baseline": {"p95MaxMs": 350}},
    )
    values.update(fields)
    capability = models.Capability(**values)
    session.add(capability)
    session.commit()
    session.refresh(capability)
    return capability


def _completed_run(session, capability, path: Path) -> models.TestRun:
    test_run = models.TestRun(
        capability_id=capability.id,
        test_name="Peak load",
        build_number="7",
        file_name=path.name,
        storage_path=path.as_posix(),
    )
    session.add(test_run)
    session.commit()
    processing.process_test_run(session=session, test_run=test_run, file_path=path)
    session.refresh(test_run)
    return test_run


def test_list_filters_by_status(client, session, write_jtl, make_csv):
    capability = _capability(session)
    completed = _completed_run(session, capability, write_jtl(make_csv()))
    session.add(models.TestRun(capability_id=capability.id, test_name="Queued"))
    session.commit()

    everything = client.get("/test-runs").json()
    assert len(everything) == 2

    only_completed = client.get("/test-runs", params={"status": "completed"}).json()
    assert [run["id"] for run in only_completed] == [str(completed.id)]
    assert only_completed[0]["percentile_95"] == 400

    assert client.get("/test-runs", params={"status": "exploded"}).status_code == 400


def test_detail_includes_label_statistics(client, session, write_jtl, make_csv):
    capability = _capability(session)
    test_run = _completed_run(session, capability, write_jtl(make_csv()))

    response = client.get(f"/test-runs/{test_run.id}")

    assert response.status_code == 200
    data = response.json()["capability_specific_data"]
    assert set(data["labelStatistics"]) == {"Login", "Search"}
    assert client.get("/test-runs/00000000-0000-0000-0000-000000000000").status_code == 404


def test_baseline_uses_capability_thresholds(client, session, write_jtl, make_csv):
    capability = _capability(session)
    test_run = _completed_run(session, capability, write_jtl(make_csv()))

    body = client.get(f"/test-runs/{test_run.id}/baseline").json()

    assert body["source"] == "capability"
    assert body["thresholds"]["p95_max_ms"] == 350
    assert body["verdict"]["overall"] == "fail"
    assert body["label_verdicts"]["Login"]["overall"] == "pass"


def test_baseline_query_thresholds_replace_capability(client, session, write_jtl, make_csv):
    capability = _capability(session)
    test_run = _completed_run(session, capability, write_jtl(make_csv()))

    body = client.get(
        f"/test-runs/{test_run.id}/baseline",
        params={"p95MaxMs": 500, "throughputMin": 1},
    ).json()

    assert body["source"] == "query"
    assert body["verdict"]["overall"] == "pass"
    checks = {check["name"]: check["status"] for check in body["verdict"]["checks"]}
    assert checks == {"p95": "pass", "avg": "skipped", "p90": "skipped", "throughput": "pass"}


def test_baseline_requires_completed_run(client, session):
    capability = _capability(session)
    test_run = models.TestRun(capability_id=capability.id, test_name="Queued")
    session.add(test_run)
    session.commit()

    assert client.get(f"/test-runs/{test_run.id}/baseline").status_code == 409


def test_report_data_filters_to_test_cases(client, session, write_jtl, make_csv):
    capability = _capability(session)
    session.add(models.CapabilityTestCase(capability_id=capability.id, test_case_name="login"))
    session.commit()
    test_run = _completed_run(session, capability, write_jtl(make_csv()))

    response = client.get(f"/test-runs/{test_run.id}/report-data")

    assert response.status_code == 200
    payload = response.json()
    assert payload["capability_name"] == "Checkout"
    assert payload["build_number"] == "7"
    assert list(payload["by_label"]) == ["Login"]
    assert payload["overall"]["total_requests"] == 4
    assert payload["verdict"]["overall"] == "fail"
    assert payload["missing_fields"] == []

    unfiltered = client.get(
        f"/test-runs/{test_run.id}/report-data", params={"filter_test_cases": "false"}
    ).json()
    assert set(unfiltered["by_label"]) == {"Login", "Search"}


def test_report_data_lists_missing_cover_fields(client, session, write_jtl, make_csv):
    capability = _capability(session, test_objective=None, environment_details="  ")
    test_run = _completed_run(session, capability, write_jtl(make_csv()))

    refused = client.get(f"/test-runs/{test_run.id}/report-data")
    assert refused.status_code == 409
    assert refused.json()["detail"]["missing_fields"] == ["Test objective", "Environment details"]

    allowed = client.get(
        f"/test-runs/{test_run.id}/report-data", params={"allow_incomplete": "true"}
    )
    assert allowed.status_code == 200
    assert allowed.json()["missing_fields"] == ["Test objective", "Environment details"]


def test_reprocess_reparses_stored_file(client, session, write_jtl, make_csv):
    capability = _capability(session)
    path = write_jtl(make_csv())
    test_run = _completed_run(session, capability, path)
    path.write_text(
        make_csv("1700000000000,100,Login,200,OK,T1,text,true,,1,1,1,1,u,5,0,1"),
        encoding="utf-8",
    )

    response = client.post(f"/test-runs/{test_run.id}/reprocess")

    assert response.status_code == 200
    assert response.json()["rows_parsed"] == 1
    session.expire_all()
    assert session.get(models.TestRun, test_run.id).total_requests == 1


def test_reprocess_failure_returns_envelope(client, session, write_jtl, make_csv):
    capability = _capability(session)
    path = write_jtl(make_csv())
    test_run = _completed_run(session, capability, path)
    path.write_text("", encoding="utf-8")

    response = client.post(f"/test-runs/{test_run.id}/reprocess")

    assert response.status_code == 422
    assert response.json()["status"] == "failed"
    session.expire_all()
    assert session.get(models.TestRun, test_run.id).status == "failed"


def test_reprocess_without_stored_file_returns_404(client, session):
    capability = _capability(session)
    test_run = models.TestRun(capability_id=capability.id, test_name="No file")
    session.add(test_run)
    session.commit()

    assert client.post(f"/test-runs/{test_run.id}/reprocess").status_code == 404
