"""HTTP surface tests through FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from mobile_cleaner.main import app
from mobile_cleaner.services.session import SessionStore

CSV_DATA = (
    "Name,Mobile Number\r\n"
    "Ravi,919818202888\r\n"
    "Asha,+91 98765-01234\r\n"
    "Kiran,7012345678\r\n"
    "Ravi,9818202888\r\n"
    "Meena,12345\r\n"
).encode("utf-8")


@pytest.fixture
def client():
    app.state.sessions = SessionStore()
    return TestClient(app)


@pytest.fixture
def session_id(client):
    response = client.post("/sessions", files={"file": ("contacts.csv", CSV_DATA, "text/csv")})
    assert response.status_code == 201
    return response.json()["session_id"]


class TestService:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestUpload:
    def test_upload_csv(self, client):
        response = client.post("/sessions", files={"file": ("contacts.csv", CSV_DATA, "text/csv")})
        body = response.json()
        assert body["file_format"] == "csv"
        assert body["sheet_names"] == []
        assert body["file_size"] == len(CSV_DATA)

    def test_unsupported_type(self, client):
        response = client.post("/sessions", files={"file": ("photo.png", b"\x89PNG", "image/png")})
        assert response.status_code == 400
        assert "not allowed" in response.json()["detail"]

    def test_corrupt_workbook(self, client):
        response = client.post("/sessions", files={"file": ("book.xlsx", b"not a workbook", "application/octet-stream")})
        assert response.status_code == 422


class TestFlow:
    def test_preview_then_clean(self, client, session_id):
        preview = client.post(f"/sessions/{session_id}/preview").json()
        assert preview["header_row"] == 0
        assert preview["selected_columns"] == [1]
        assert preview["rows"][1] == ["Ravi", "919818202888"]

        response = client.post(f"/sessions/{session_id}/clean", params={"mode": "unique"})
        assert response.status_code == 200
        assert response.headers["x-valid"] == "3"
        assert response.headers["x-duplicates"] == "1"
        assert "Unique_3_contacts.xlsx" in response.headers["content-disposition"]

        report = client.get(f"/sessions/{session_id}/reports/duplicate")
        assert report.status_code == 200
        assert report.headers["x-row-count"] == "1"

    def test_selection_endpoints(self, client, session_id):
        client.post(f"/sessions/{session_id}/preview")
        toggled = client.post(f"/sessions/{session_id}/columns/1/toggle").json()
        assert toggled["selected_columns"] == []
        named = client.put(f"/sessions/{session_id}/name-column", json={"index": None}).json()
        assert named["name_column"] is None
        header = client.post(f"/sessions/{session_id}/header-row", json={"index": 0}).json()
        assert header["selected_columns"] == [1]

    def test_clean_without_selection(self, client, session_id):
        response = client.post(f"/sessions/{session_id}/clean")
        assert response.status_code == 400

    def test_status(self, client, session_id):
        body = client.get(f"/sessions/{session_id}/status").json()
        assert body["filename"] == "contacts.csv"
        assert body["is_processing"] is False
        assert body["stats"] is None

    def test_busy_session_conflict(self, client, session_id):
        client.post(f"/sessions/{session_id}/preview")
        app.state.sessions.get(session_id).is_processing = True
        assert client.post(f"/sessions/{session_id}/clean").status_code == 409

    def test_report_before_run(self, client, session_id):
        assert client.get(f"/sessions/{session_id}/reports/valid").status_code == 400


class TestSessions:
    def test_unknown_session(self, client):
        assert client.get("/sessions/nope/status").status_code == 404

    def test_delete(self, client, session_id):
        assert client.delete(f"/sessions/{session_id}").status_code == 204
        assert client.get(f"/sessions/{session_id}/status").status_code == 404
