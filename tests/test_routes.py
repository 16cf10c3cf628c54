"""HTTP surface tests through FastAPI's TestClient."""

import json

from conftest import granted
from models.auth import TokenPollResponse


def rpc(method, params=None, id=1):
    body = {"jsonrpc": "2.0", "id": id, "method": method}
    if params is not None:
        body["params"] = params
    return body


def sse_events(text):
    events = []
    for block in text.split("\n\n"):
        if not block.strip():
            continue
        event = dict(line.split(": ", 1) for line in block.split("\n"))
        event["data"] = json.loads(event["data"])
        events.append(event)
    return events


class TestMcpEndpoint:
    def test_initialize(self, client):
        response = client.post("/mcp", json=rpc("initialize", {"protocolVersion": "2024-11-05"}))
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert response.json()["result"]["serverInfo"]["name"] == "MCP Gateway"

    def test_root_path_accepts_json_rpc(self, client):
        response = client.post("/", json=rpc("ping"))
        assert response.json() == {"jsonrpc": "2.0", "id": 1, "result": {}}

    def test_parse_error_is_http_200(self, client):
        response = client.post("/mcp", content=b"{oops", headers={"content-type": "application/json"})
        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32700

    def test_notification_has_empty_body(self, client):
        response = client.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert response.status_code == 202
        assert response.content == b""

    def test_protected_method_without_credentials(self, client):
        response = client.post("/mcp", json=rpc("tools/call", {"name": "get_restaurants"}))
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == 'Bearer realm="mcp"'
        error = response.json()["error"]
        assert error["code"] == -32001
        assert error["data"]["auth_flow"] == "device_code"

    def test_api_key(self, client, api_key_headers):
        response = client.post("/mcp", json=rpc("tools/call", {"name": "get_restaurants"}), headers=api_key_headers)
        assert response.status_code == 200
        assert response.json()["result"]["structuredContent"]["total"] == 10


class TestStreamingEndpoints:
    def test_sse(self, client, api_key_headers):
        response = client.post(
            "/mcp/stream/sse",
            json=rpc("tools/call", {"name": "get_restaurants_stream"}, id="s-1"),
            headers=api_key_headers,
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        events = sse_events(response.text)
        assert events[0]["event"] == "connected"
        assert [e["id"] for e in events if e["event"] == "chunk"] == [str(n) for n in range(1, 11)]
        assert events[-1]["event"] == "complete"
        assert events[-1]["data"]["id"] == "s-1"

    def test_sse_requires_credentials(self, client):
        response = client.post("/mcp/stream/sse", json=rpc("tools/call", {"name": "get_restaurants_stream"}))
        assert response.status_code == 401

    def test_chunked(self, client, api_key_headers):
        response = client.post(
            "/mcp/stream/chunked",
            json=rpc("tools/call", {"name": "search_restaurants_stream", "arguments": {"query": "melrose"}}),
            headers=api_key_headers,
        )
        assert response.status_code == 200
        chunks = json.loads(response.text)
        assert [c["sequence"] for c in chunks] == list(range(1, len(chunks) + 1))
        assert chunks[-1]["isLast"] is True
        assert chunks[-1]["payload"]["matches"] == 4

    def test_capabilities(self, client):
        response = client.get("/mcp/stream/capabilities")
        names = {t["name"] for t in response.json()["streaming"]["tools"]}
        assert names == {"get_restaurants_stream", "search_restaurants_stream", "analyze_restaurants_stream"}

    def test_call_log(self, client, api_key_headers):
        client.post("/mcp", json=rpc("tools/call", {"name": "get_visit_statistics"}), headers=api_key_headers)
        response = client.get("/mcp/call-log", params={"limit": 5})
        body = response.json()
        assert body["total"] == 1
        assert body["calls"][0]["toolName"] == "get_visit_statistics"


class TestDeviceFlow:
    def test_full_flow(self, client, provider):
        start = client.post("/auth/device/start", json={"session_id": "s1"})
        assert start.status_code == 200
        challenge = start.json()
        assert challenge["sessionId"] == "s1"
        assert challenge["userCode"] == "ABCD-EFGH"
        assert challenge["verificationUri"] == "https://microsoft.com/devicelogin"

        poll = client.post("/auth/device/poll", json={"session_id": "s1"})
        assert poll.json()["status"] == "pending"
        assert "accessToken" not in poll.json()

        denied = client.post("/mcp", json=rpc("tools/list"), headers={"Mcp-Session-Id": "s1"})
        assert denied.status_code == 401

        provider.script = [granted("tok-1")]
        poll = client.post("/auth/device/poll", json={"session_id": "s1"})
        assert poll.json() == {"sessionId": "s1", "status": "authorized", "interval": 5, "accessToken": "tok-1"}

        by_session = client.post("/mcp", json=rpc("tools/list"), headers={"Mcp-Session-Id": "s1"})
        assert by_session.status_code == 200
        by_token = client.post("/mcp", json=rpc("tools/list"), headers={"Authorization": "Bearer tok-1"})
        assert by_token.status_code == 200

        status = client.get("/auth/device/status/s1").json()
        assert status["authorized"] is True
        assert status["state"] == "authorized"
        assert "deviceCode" not in status
        assert "accessToken" not in status

    def test_start_generates_session_id(self, client):
        challenge = client.post("/auth/device/start", json={}).json()
        assert challenge["sessionId"]

    def test_start_with_provider_down(self, client, provider):
        provider.fail_start = True
        response = client.post("/auth/device/start", json={"session_id": "s1"})
        assert response.status_code == 502

    def test_poll_denied(self, client, provider):
        provider.script = [TokenPollResponse(error="access_denied")]
        client.post("/auth/device/start", json={"session_id": "s1"})
        response = client.post("/auth/device/poll", json={"session_id": "s1"})
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "access_denied"

    def test_unknown_session(self, client):
        assert client.post("/auth/device/poll", json={"session_id": "ghost"}).status_code == 404
        assert client.get("/auth/device/status/ghost").status_code == 404


class TestSystem:
    def test_root(self, client):
        body = client.get("/").json()
        assert body["status"] == "running"
        assert body["mcp"] == "/mcp"

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["checks"]["tools"] == 7
        assert body["checks"]["auth_required"] is True
