"""
HTTP Surface Tests
==================

Command router, streaming start, registry routes and service endpoints,
exercised through FastAPI's TestClient against a scripted job server.
"""

import asyncio

import httpx
import pytest


START_PATH = "/jpid/start/run/42"


class TestCommandRouter:
    """Direct (request/response) commands."""

    def test_unknown_server_is_404_without_upstream_call(self, client, job_server):
        response = client.get("/api/projects/nope")

        assert response.status_code == 404
        assert response.json() == {"error": 'Server "nope" not found.', "details": None, "status": None}
        assert job_server.requests == []

    def test_list_projects_forwarded(self, client, job_server):
        job_server.json("GET", "/jpid", {"code": 0, "data": [{"id": 42}]})

        response = client.get("/api/projects/wsl")

        assert response.status_code == 200
        assert response.json() == {"code": 0, "data": [{"id": 42}]}
        assert str(job_server.requests[0].url) == "http://job.local/jpid"

    def test_upstream_status_and_body_forwarded_verbatim(self, client, job_server):
        job_server.on(
            "GET", "/jpid/auto/register",
            lambda r: httpx.Response(418, text="not today", headers={"content-type": "text/plain"}),
        )

        response = client.get("/api/register/wsl")

        assert response.status_code == 418
        assert response.text == "not today"
        assert response.headers["content-type"].startswith("text/plain")

    def test_stop(self, client, job_server):
        job_server.json("POST", "/jpid/stop/42", {"code": 0, "message": "stopped"})

        response = client.post("/api/stop/wsl/42")

        assert response.status_code == 200
        assert job_server.requests[0].method == "POST"

    def test_update_forwards_json_body(self, client, job_server):
        job_server.on("POST", "/jpid/update/42", lambda r: httpx.Response(200, content=r.content))

        response = client.post("/api/update/wsl/42", json={"name": "api", "port": 8080})

        assert response.status_code == 200
        assert response.json() == {"name": "api", "port": 8080}

    def test_delete(self, client, job_server):
        job_server.json("DELETE", "/jpid/delete/7", {"code": 0})

        response = client.delete("/api/delete/wsl/7")

        assert response.status_code == 200
        assert job_server.requests[0].url.path == "/jpid/delete/7"

    def test_query_characters_stay_in_the_path(self, client, job_server):
        response = client.post("/api/stop/wsl/a%3Fx%3D1")

        request = job_server.requests[0]
        assert response.status_code == 404
        assert request.url.raw_path == b"/jpid/stop/a%3Fx%3D1"
        assert request.url.query == b""

    def test_dot_segments_are_not_resolved(self, client, job_server):
        client.delete("/api/delete/wsl/%2E%2E")
        client.post("/api/update/wsl/.%2E", json={})

        assert [r.method for r in job_server.requests] == ["DELETE", "POST"]
        assert job_server.requests[0].url.raw_path == b"/jpid/delete/%2E%2E"
        assert job_server.requests[1].url.raw_path == b"/jpid/update/%2E%2E"

    def test_unreachable_upstream_is_502(self, client, job_server):
        job_server.fail("GET", "/jpid", httpx.ConnectError("connection refused"))

        response = client.get("/api/projects/wsl")

        assert response.status_code == 502
        assert response.json()["error"] == "Failed on wsl"
        assert response.json()["details"] == "connection refused"


class TestStartRoute:
    """Streaming start through the relay."""

    def test_stream_relayed(self, client, job_server):
        job_server.stream(START_PATH, [b"event: output\ndata: hel", b"lo\n\n"])

        response = client.get("/api/start/wsl/run/42")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-accel-buffering"] == "no"
        assert response.headers["x-relay-session"]
        assert response.text == (
            'event: output\ndata: {"text":"hello"}\n\n'
            'event: complete\ndata: {"status":"complete","message":"Stream completed for 42"}\n\n'
        )

    def test_background_query_forwarded(self, client, job_server):
        job_server.stream(START_PATH, [])

        client.get("/api/start/wsl/run/42", params={"background": "true"})

        assert job_server.requests[0].url.params["background"] == "true"

    def test_unrecognised_background_value_is_false(self, client, job_server):
        job_server.stream(START_PATH, [])

        response = client.get("/api/start/wsl/run/42", params={"background": "maybe"})

        assert response.status_code == 200
        assert job_server.requests[0].url.params["background"] == "false"

    def test_process_id_escaped_in_start_url(self, client, job_server):
        job_server.stream("/jpid/start/run/a?b", [b"event: complete\ndata: {}\n\n"])

        response = client.get("/api/start/wsl/run/a%3Fb")

        assert response.status_code == 200
        assert job_server.requests[0].url.raw_path.startswith(b"/jpid/start/run/a%3Fb?")

    def test_script_start(self, client, job_server):
        job_server.stream("/jpid/start/script/9", [b"data: done\n\n"])

        response = client.get("/api/start/wsl/script/9")

        assert response.status_code == 200
        assert 'data: {"text":"done"}' in response.text
        assert "background" not in job_server.requests[0].url.params

    def test_unknown_server_is_404(self, client, job_server):
        response = client.get("/api/start/nope/run/42")

        assert response.status_code == 404
        assert job_server.requests == []

    def test_invalid_type_is_400_without_upstream_call(self, client, job_server):
        response = client.get("/api/start/wsl/docker/42")

        assert response.status_code == 400
        assert response.json()["error"] == 'Invalid start type. Must be "run" or "script".'
        assert job_server.requests == []

    def test_unknown_server_checked_before_type(self, client):
        assert client.get("/api/start/nope/docker/42").status_code == 404

    def test_upstream_status_reused_before_stream(self, client, job_server):
        job_server.on("GET", START_PATH, lambda r: httpx.Response(409, text="already running"))

        response = client.get("/api/start/wsl/run/42")

        assert response.status_code == 409
        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == {
            "error": "Failed to connect to http://job.local",
            "details": "already running",
            "status": 409,
        }

    def test_unreachable_upstream_is_502(self, client, job_server):
        job_server.fail("GET", START_PATH, httpx.ConnectError("refused"))

        response = client.get("/api/start/wsl/run/42")

        assert response.status_code == 502
        assert response.json()["status"] is None

    def test_mid_stream_failure_is_in_band(self, client, job_server):
        job_server.stream(
            START_PATH,
            [b"event: output\ndata: a\n\n"],
            error=httpx.ReadError("reset"),
        )

        response = client.get("/api/start/wsl/run/42")

        assert response.status_code == 200
        assert response.text.endswith(
            'event: error\ndata: {"error":"Stream error","details":"reset","pid":"42","server":"wsl"}\n\n'
        )

    def test_finished_sessions_are_released(self, client, job_server):
        job_server.stream(START_PATH, [b"data: 1\n\n"])

        client.get("/api/start/wsl/run/42")
        client.get("/api/start/wsl/run/42")

        assert client.get("/api/sessions").json() == {"active": 0, "sessions": []}
        metrics = client.get("/metrics").json()
        assert metrics["sessions_started"] == 2
        assert metrics["sessions_completed"] == 2
        assert metrics["frames_relayed"] == 4


class TestServerRoutes:
    """Registry CRUD."""

    def test_seeded_server_listed(self, client):
        servers = client.get("/api/servers").json()
        assert [s["id"] for s in servers] == ["wsl"]

    def test_add_get_delete(self, client):
        response = client.post(
            "/api/servers",
            json={"url": "http://10.0.0.5:8000/", "description": "ci box"},
        )
        assert response.status_code == 201
        created = response.json()
        assert created["url"] == "http://10.0.0.5:8000"

        assert client.get(f"/api/servers/{created['id']}").json()["description"] == "ci box"
        assert client.delete(f"/api/servers/{created['id']}").json() == {"success": True}
        assert client.get(f"/api/servers/{created['id']}").status_code == 404

    def test_added_server_is_routable(self, client, job_server):
        created = client.post(
            "/api/servers",
            json={"url": "http://job.local:9000", "description": "second"},
        ).json()
        job_server.json("GET", "/jpid", [])

        assert client.get(f"/api/projects/{created['id']}").status_code == 200
        assert job_server.requests[0].url.port == 9000

    @pytest.mark.parametrize("body", [
        {"url": "http://x.local"},
        {"description": "no url"},
        {"url": "ftp://x.local", "description": "bad scheme"},
        None,
    ])
    def test_add_invalid_is_400(self, client, body):
        response = client.post("/api/servers", json=body)
        assert response.status_code == 400
        assert response.json()["error"] == "Server URL and description are required."

    def test_duplicate_url_is_409(self, client):
        response = client.post(
            "/api/servers",
            json={"url": "http://job.local", "description": "again"},
        )
        assert response.status_code == 409

    def test_delete_unknown_is_404(self, client):
        assert client.delete("/api/servers/nope").status_code == 404

    def test_export(self, client):
        response = client.get("/api/servers/export")

        assert response.status_code == 200
        assert response.headers["content-disposition"] == "attachment; filename=servers_backup.json"
        assert response.json()[0]["url"] == "http://job.local"

    def test_import(self, client):
        response = client.post("/api/servers/import", json=[
            {"url": "http://a.local", "description": "a"},
            {"url": "http://b.local"},
            "garbage",
            {"url": "http://job.local", "description": "duplicate"},
        ])

        assert response.status_code == 200
        body = response.json()
        assert body["results"] == {"total": 4, "imported": 1, "failed": 3}
        assert [s["url"] for s in body["servers"]] == ["http://a.local"]
        assert len(client.get("/api/servers").json()) == 2

    def test_import_requires_list(self, client):
        response = client.post("/api/servers/import", json={"url": "http://a.local"})
        assert response.status_code == 400

    def test_reset(self, client):
        response = client.post("/api/servers/reset")

        assert response.json()["removed"] == 1
        assert client.get("/api/servers").json() == []
        assert client.get("/api/projects/wsl").status_code == 404

    def test_registry_writes_run_off_the_event_loop(self, client, monkeypatch):
        registry = client.app.state.registry
        on_loop = []

        def save(records):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                on_loop.append(False)
            else:
                on_loop.append(True)

        monkeypatch.setattr(registry, "_save", save)

        client.post("/api/servers", json={"url": "http://10.0.0.9:8000", "description": "ci"})
        client.post("/api/servers/import", json=[{"url": "http://10.0.0.10", "description": "x"}])
        client.post("/api/servers/reset")

        assert on_loop == [False, False, False]


class TestServiceEndpoints:

    def test_root(self, client):
        body = client.get("/").json()
        assert body["service"] == "jpid-gateway"
        assert body["upstream_prefix"] == "/jpid"

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_ready(self, client):
        body = client.get("/ready").json()
        assert body["status"] == "ready"
        assert body["servers"] == 1
        assert body["active_streams"] == 0
