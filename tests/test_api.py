"""
HTTP and WebSocket tests for the import API.

The ``client`` fixture wires the app to a per-test SQLite store; background
import tasks run to completion before TestClient returns the response.
"""
import json
import os

CSV_BODY = (
    "Full Name,Email,Company\n"
    "Jane Doe,jane@acme.io,Acme\n"
    "Bob Roe,bob@initech.com,Initech\n"
    ",broken,Nowhere\n"
)


def _upload(client, body=CSV_BODY, filename="contacts.csv", **form):
    return client.post(
        "/api/import",
        files={"file": (filename, body.encode("utf-8"), "text/csv")},
        data=form,
    )


def test_root_and_health(client):
    assert client.get("/").json() == {"message": "CRM Import API", "version": "1.0.0"}

    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert "total_connections" in health["progress"]


class TestImportEndpoints:
    def test_upload_runs_job_to_completion(self, client, upload_dir):
        response = _upload(client, batch_size="2")

        assert response.status_code == 202
        body = response.json()
        assert body["success"] is True
        assert body["status"] == "pending"

        status = client.get(f"/api/import/{body['job_id']}")
        assert status.status_code == 200
        job = status.json()["job"]
        assert job["status"] == "completed"
        assert job["processed_rows"] == 3
        assert job["successful_rows"] == 2
        assert job["error_rows"] == 1
        assert job["errors"][0]["row"] == 3
        assert job["field_mapping"]["Email"] == "email"
        # the upload is removed once the job is terminal
        assert os.listdir(upload_dir) == []

    def test_explicit_mapping_and_options(self, client):
        mapping = {"Full Name": "full_name", "Email": "email", "Company": ""}
        response = _upload(client, field_mapping=json.dumps(mapping), update_existing="true")

        job = client.get(f"/api/import/{response.json()['job_id']}").json()["job"]
        assert job["field_mapping"] == {"Full Name": "full_name", "Email": "email"}
        assert job["options"]["update_existing"] is True

    def test_rejects_non_csv_upload(self, client, upload_dir):
        response = _upload(client, filename="contacts.xlsx")

        assert response.status_code == 400
        assert os.listdir(upload_dir) == []

    def test_rejects_bad_mapping_json(self, client):
        response = _upload(client, field_mapping="{not json")
        assert response.status_code == 400

        response = _upload(client, field_mapping='["Email"]')
        assert response.status_code == 400

    def test_rejects_invalid_batch_size(self, client):
        response = _upload(client, batch_size="-5")
        assert response.status_code == 400

    def test_unknown_job_is_404(self, client):
        response = client.get("/api/import/does-not-exist")
        assert response.status_code == 404

    def test_list_import_jobs(self, client):
        _upload(client)
        _upload(client, filename="more.csv")

        response = client.get("/api/import-jobs", params={"limit": 1})

        assert response.status_code == 200
        body = response.json()
        assert body["total_count"] == 2
        assert len(body["jobs"]) == 1
        assert body["limit"] == 1

    def test_list_import_jobs_validates_limit(self, client):
        assert client.get("/api/import-jobs", params={"limit": 0}).status_code == 422


class TestMappingEndpoints:
    def test_auto_map_headers(self, client):
        response = client.post(
            "/api/import/auto-map",
            json={"headers": [" Full Name ", "E-mail", "Company Name"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["mapping"] == {"Full Name": "full_name", "E-mail": "email", "Company Name": "company"}
        assert body["confidence"]["E-mail"] >= 0.8

    def test_auto_map_company_headers(self, client):
        response = client.post(
            "/api/import/auto-map",
            json={"headers": ["Company Name", "Website"], "entity_type": "company"},
        )

        assert response.json()["mapping"] == {"Company Name": "name", "Website": "website"}

    def test_auto_map_file(self, client, upload_dir):
        response = client.post(
            "/api/import/auto-map/file",
            files={"file": ("contacts.csv", CSV_BODY.encode("utf-8"), "text/csv")},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["headers"] == ["Full Name", "Email", "Company"]
        assert body["total_rows"] == 3
        assert body["preview"][0]["Email"] == "jane@acme.io"
        assert os.listdir(upload_dir) == []

    def test_available_fields(self, client):
        response = client.get("/api/import/fields/contact")

        assert response.status_code == 200
        values = {field["value"] for field in response.json()["fields"]}
        assert {"full_name", "email", "company"} <= values

    def test_available_fields_unknown_entity(self, client):
        assert client.get("/api/import/fields/invoice").status_code == 422


class TestProgressSocket:
    def test_control_messages(self, client):
        with client.websocket_connect("/ws/import-progress") as ws:
            assert ws.receive_json()["type"] == "connected"

            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_text("not json")
            assert ws.receive_json() == {"type": "error", "message": "Invalid JSON message"}

            ws.send_json(["subscribe"])
            assert ws.receive_json() == {"type": "error", "message": "Message must be a JSON object"}

            ws.send_json({"action": "dance", "job_id": "x"})
            assert ws.receive_json() == {"type": "error", "message": "Unknown action"}

            ws.send_json({"action": "subscribe"})
            assert ws.receive_json() == {"type": "error", "message": "job_id is required"}

    def test_late_subscriber_gets_terminal_snapshot(self, client):
        job_id = _upload(client).json()["job_id"]

        with client.websocket_connect("/ws/import-progress") as ws:
            ws.receive_json()
            ws.send_json({"action": "subscribe", "job_id": job_id})

            assert ws.receive_json() == {"type": "subscribed", "job_id": job_id}
            frame = ws.receive_json()
            assert frame["type"] == "import-progress"
            assert frame["job_id"] == job_id
            assert frame["status"] == "completed"
            assert frame["processed_rows"] == 3
            assert frame["errors"][0]["row"] == 3

            ws.send_json({"action": "unsubscribe", "job_id": job_id})
            assert ws.receive_json() == {"type": "unsubscribed", "job_id": job_id}

    def test_subscribe_to_unknown_job(self, client):
        with client.websocket_connect("/ws/import-progress") as ws:
            ws.receive_json()
            ws.send_json({"action": "subscribe", "job_id": "missing"})
            assert ws.receive_json() == {"type": "subscribed", "job_id": "missing"}

            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"type": "pong"}
