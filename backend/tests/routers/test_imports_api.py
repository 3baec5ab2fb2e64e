"""Tests for the CSV import API."""

import json

from fastapi.testclient import TestClient

from tests.conftest import load_fixture
from trade_import.config import settings
from trade_import.main import app


def upload(name: str = "robinhood_options.csv", content: bytes | None = None) -> dict:
    if content is None:
        content = load_fixture(name).encode("utf-8")
    return {"file": (name, content, "text/csv")}


def run_import(client: TestClient, portfolio_id: int, **kwargs):
    data = {"portfolio_id": str(portfolio_id)}
    if "options" in kwargs:
        data["options"] = kwargs.pop("options")
    if "session_id" in kwargs:
        data["session_id"] = kwargs.pop("session_id")
    return client.post("/api/imports", files=upload(**kwargs), data=data)


class TestListBrokers:
    def test_lists_every_format_in_detection_order(self, client: TestClient):
        response = client.get("/api/imports/brokers")

        assert response.status_code == 200
        brokers = response.json()
        assert [b["type"] for b in brokers] == [
            "td_ameritrade",
            "schwab",
            "robinhood",
            "etrade",
            "interactive_brokers",
            "generic",
        ]
        assert brokers[0]["name"] == "TD Ameritrade"
        assert brokers[0]["required_columns"]


class TestPreview:
    """Test POST /api/imports/preview."""

    def test_preview_writes_nothing(self, client: TestClient, portfolio):
        response = client.post("/api/imports/preview", files=upload("robinhood_mixed.csv"))

        assert response.status_code == 200
        data = response.json()
        assert data["broker_detection"]["broker_type"] == "robinhood"
        assert data["total_estimated_rows"] == 7
        assert [r["status"] for r in data["records"]][:2] == ["success", "skipped"]
        assert data["validation_summary"]["invalid_records"] == 1

        trades = client.get(f"/api/portfolios/{portfolio.id}/trades").json()
        assert trades == []

    def test_unknown_format(self, client: TestClient):
        response = client.post(
            "/api/imports/preview",
            files=upload("contacts.csv", b"Name,Email\nAda,ada@example.com\n"),
        )

        assert response.status_code == 200
        assert response.json()["error"].startswith("Could not detect broker format")


class TestImport:
    """Test POST /api/imports."""

    def test_successful_import(self, client: TestClient, portfolio):
        response = run_import(client, portfolio.id)

        assert response.status_code == 200
        report = response.json()
        assert report["status"] == "completed"
        assert report["successful_records"] == 3
        assert report["broker_detection"]["broker_type"] == "robinhood"
        assert report["parse_summary"]["encoding"] == "utf-8"
        assert len(report["created_trade_ids"]) == 3
        assert report["session_id"].startswith("import_")

    def test_partial_import_reports_row_issues(self, client: TestClient, portfolio):
        response = run_import(client, portfolio.id, name="robinhood_mixed.csv")

        assert response.status_code == 200
        report = response.json()
        assert report["status"] == "partial"
        assert report["failed_records"] == 2
        assert report["skipped_records"] == 3
        assert {e["record_index"] for e in report["errors"]} == {4, 5}

    def test_options_are_applied(self, client: TestClient, portfolio):
        response = run_import(
            client,
            portfolio.id,
            name="robinhood_mixed.csv",
            options=json.dumps({"skip_invalid_records": False}),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "failed"

    def test_missing_portfolio(self, client: TestClient):
        response = run_import(client, 999)

        assert response.status_code == 404
        assert response.json()["detail"] == "Portfolio 999 not found"

    def test_empty_file(self, client: TestClient, portfolio):
        response = run_import(client, portfolio.id, content=b"")

        assert response.status_code == 400
        assert response.json()["detail"] == "Empty file uploaded"

    def test_malformed_options(self, client: TestClient, portfolio):
        response = run_import(client, portfolio.id, options="{not json")

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Invalid import options")

    def test_invalid_option_values(self, client: TestClient, portfolio):
        response = run_import(client, portfolio.id, options=json.dumps({"batch_size": 0}))

        assert response.status_code == 400

    def test_options_must_be_an_object(self, client: TestClient, portfolio):
        response = run_import(client, portfolio.id, options="[1, 2]")

        assert response.status_code == 400

    def test_file_too_large(self, client: TestClient, portfolio, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 100)

        response = run_import(client, portfolio.id)

        assert response.status_code == 413


class TestImportSessions:
    """Test following, cancelling and inspecting import sessions."""

    def test_progress_after_import(self, client: TestClient, portfolio):
        session_id = run_import(client, portfolio.id).json()["session_id"]

        response = client.get(f"/api/imports/{session_id}/progress")

        assert response.status_code == 200
        progress = response.json()
        assert progress["status"] == "completed"
        assert progress["processed_records"] == 3
        assert progress["percentage"] == 100.0

    def test_unknown_session(self, client: TestClient):
        assert client.get("/api/imports/import_missing/progress").status_code == 404
        assert client.post("/api/imports/import_missing/cancel").status_code == 404

    def test_cancel_running_session(self, client: TestClient):
        app.state.trackers.create("import_running", total_records=10)

        response = client.post("/api/imports/import_running/cancel")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_cancel_finished_session(self, client: TestClient, portfolio):
        session_id = run_import(client, portfolio.id).json()["session_id"]

        response = client.post(f"/api/imports/{session_id}/cancel")

        assert response.status_code == 409

    def test_client_chosen_session_id(self, client: TestClient, portfolio):
        response = run_import(client, portfolio.id, session_id="upload_42")

        assert response.status_code == 200
        assert response.json()["session_id"] == "upload_42"
        assert client.get("/api/imports/upload_42/progress").json()["status"] == "completed"

    def test_session_id_of_running_import_is_rejected(self, client: TestClient, portfolio):
        app.state.trackers.create("upload_42", total_records=10)

        response = run_import(client, portfolio.id, session_id="upload_42")

        assert response.status_code == 409
        assert response.json()["detail"] == "Import upload_42 is still running"

    def test_malformed_session_id(self, client: TestClient, portfolio):
        assert run_import(client, portfolio.id, session_id="../etc").status_code == 422

    def test_finished_sessions_are_pruned(self, client: TestClient, portfolio):
        app.state.trackers.max_finished = 1
        first, _, last = (
            run_import(client, portfolio.id).json()["session_id"] for _ in range(3)
        )

        assert len(app.state.trackers) == 2
        assert client.get(f"/api/imports/{first}/progress").status_code == 404
        assert client.get(f"/api/imports/{last}/progress").status_code == 200

    def test_trades_of_session(self, client: TestClient, portfolio):
        session_id = run_import(client, portfolio.id).json()["session_id"]

        response = client.get(f"/api/imports/{session_id}/trades")

        assert response.status_code == 200
        trades = response.json()
        assert len(trades) == 3
        assert {t["import_batch_id"] for t in trades} == {session_id}
        assert {t["import_source"] for t in trades} == {"robinhood"}
        assert trades[0]["portfolio_id"] == portfolio.id
