"""
Tests for the deployment API endpoints.

Uses httpx.AsyncClient over ASGITransport so background pipelines run on the
test's event loop, and FastAPI's TestClient for the WebSocket.
"""
import asyncio
import json
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from dockyard.api.v1.endpoints.deployments import get_broadcaster, get_executor, relay_events
from dockyard.core.database import get_db
from dockyard.core.events import EventDispatcher
from dockyard.main import app
from dockyard.services.deployment.command_runner import CommandResult, CommandRunner
from dockyard.services.deployment.executor import DeploymentExecutor
from dockyard.services.deployment.log_broadcaster import LogBroadcaster
from dockyard.services.deployment.materializer import ProjectMaterializer
from dockyard.services.deployment.port_allocator import PortAllocator

STATIC_FILES = {"index.html": "<h1>Hello</h1>"}


class GatedRunner(CommandRunner):
    """Succeeds every command; build commands wait for the gate."""

    def __init__(self):
        super().__init__(timeout=0)
        self.gate = asyncio.Event()
        self.gate.set()

    async def run(self, command, cwd=None, on_line=None, timeout=None):
        if command.endswith(" build"):
            await self.gate.wait()
        await self._emit(on_line, f"ok: {command}")
        return CommandResult(command=command, exit_code=0, output="")


@pytest.fixture
def runner():
    return GatedRunner()


@pytest.fixture
def broadcaster():
    return LogBroadcaster(max_buffer=100)


@pytest.fixture
def executor(session_factory, runner, broadcaster, tmp_path):
    return DeploymentExecutor(
        session_factory=session_factory,
        materializer=ProjectMaterializer(work_dir_base=str(tmp_path / "deploy")),
        runner=runner,
        allocator=PortAllocator(4200, 4209, probe_docker=False),
        broadcaster=broadcaster,
        dispatcher=EventDispatcher(),
        public_host="apps.example.test",
    )


@pytest.fixture
def overrides(session_factory, executor, broadcaster):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_executor] = lambda: executor
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    yield
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(overrides):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestDeployEndpoint:
    """Tests for POST /projects/{id}/deploy."""

    @pytest.mark.asyncio
    async def test_deploy_then_read_back(self, client, executor, create_project):
        project_id = await create_project(STATIC_FILES)

        response = await client.post(f"/api/v1/projects/{project_id}/deploy")

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending"
        assert body["project_id"] == str(project_id)
        deployment_id = body["deployment_id"]

        await executor.wait(project_id)

        status_response = await client.get(f"/api/v1/projects/{project_id}/deploy/status/{deployment_id}")
        assert status_response.status_code == 200
        status_body = status_response.json()
        assert status_body["status"] == "succeeded"
        assert status_body["url"] == "http://apps.example.test:4200"
        assert status_body["runtime_type"] == "static"

        logs_response = await client.get(f"/api/v1/projects/{project_id}/deploy/logs/{deployment_id}")
        assert logs_response.status_code == 200
        assert "Application URL: http://apps.example.test:4200" in logs_response.json()["logs"]

    @pytest.mark.asyncio
    async def test_deploy_in_progress_conflict(self, client, executor, runner, create_project):
        project_id = await create_project(STATIC_FILES)
        runner.gate.clear()

        first = await client.post(f"/api/v1/projects/{project_id}/deploy")
        second = await client.post(f"/api/v1/projects/{project_id}/deploy")

        assert first.status_code == 202
        assert second.status_code == 409
        assert second.json()["error_type"] == "DeploymentInProgressError"

        runner.gate.set()
        await executor.wait(project_id)

    @pytest.mark.asyncio
    async def test_deploy_unknown_project(self, client):
        response = await client.post(f"/api/v1/projects/{uuid4()}/deploy")

        assert response.status_code == 404
        assert response.json()["error_type"] == "ProjectNotFoundError"

    @pytest.mark.asyncio
    async def test_deploy_archived_project(self, client, create_project):
        project_id = await create_project(STATIC_FILES, status="archived")

        response = await client.post(f"/api/v1/projects/{project_id}/deploy")

        assert response.status_code == 400
        assert response.json()["error_type"] == "ProjectArchivedError"

    @pytest.mark.asyncio
    async def test_invalid_project_id(self, client):
        response = await client.post("/api/v1/projects/not-a-uuid/deploy")
        assert response.status_code == 422


class TestCancelEndpoint:
    """Tests for POST /projects/{id}/deploy/cancel."""

    @pytest.mark.asyncio
    async def test_cancel_in_flight(self, client, executor, runner, create_project):
        project_id = await create_project(STATIC_FILES)
        runner.gate.clear()
        deployment_id = (await client.post(f"/api/v1/projects/{project_id}/deploy")).json()["deployment_id"]

        response = await client.post(f"/api/v1/projects/{project_id}/deploy/cancel")

        assert response.status_code == 200
        assert response.json()["deployment_id"] == deployment_id

        runner.gate.set()
        await executor.wait(project_id)
        status_body = (await client.get(
            f"/api/v1/projects/{project_id}/deploy/status/{deployment_id}"
        )).json()
        assert status_body["status"] == "failed"

    @pytest.mark.asyncio
    async def test_cancel_nothing(self, client, create_project):
        project_id = await create_project(STATIC_FILES)

        response = await client.post(f"/api/v1/projects/{project_id}/deploy/cancel")

        assert response.status_code == 409
        assert response.json()["error_type"] == "NoDeploymentInProgressError"


class TestReadEndpoints:
    """Tests for status, logs and history."""

    @pytest.mark.asyncio
    async def test_deployment_of_other_project_is_forbidden(self, client, executor, create_project):
        owner = await create_project(STATIC_FILES, name="owner")
        other = await create_project(STATIC_FILES, name="other")
        deployment_id = (await client.post(f"/api/v1/projects/{owner}/deploy")).json()["deployment_id"]
        await executor.wait(owner)

        for kind in ("status", "logs"):
            response = await client.get(f"/api/v1/projects/{other}/deploy/{kind}/{deployment_id}")
            assert response.status_code == 403
            assert response.json()["error_type"] == "DeploymentProjectMismatchError"

    @pytest.mark.asyncio
    async def test_unknown_deployment(self, client, create_project):
        project_id = await create_project(STATIC_FILES)

        response = await client.get(f"/api/v1/projects/{project_id}/deploy/status/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["error_type"] == "DeploymentNotFoundError"

    @pytest.mark.asyncio
    async def test_history_newest_first(self, client, executor, create_project):
        project_id = await create_project(STATIC_FILES)
        ids = []
        for _ in range(3):
            ids.append((await client.post(f"/api/v1/projects/{project_id}/deploy")).json()["deployment_id"])
            await executor.wait(project_id)

        response = await client.get(f"/api/v1/projects/{project_id}/deploy/history")

        assert response.status_code == 200
        body = response.json()
        assert body["results"] == 3
        assert [d["id"] for d in body["deployments"]] == list(reversed(ids))

        limited = await client.get(f"/api/v1/projects/{project_id}/deploy/history", params={"limit": 1})
        assert [d["id"] for d in limited.json()["deployments"]] == [ids[-1]]

    @pytest.mark.asyncio
    async def test_history_unknown_project(self, client):
        response = await client.get(f"/api/v1/projects/{uuid4()}/deploy/history")
        assert response.status_code == 404


class TestLiveEndpoints:
    """Tests for the WebSocket and server-sent event channels."""

    @pytest.mark.asyncio
    async def test_event_stream(self, client, broadcaster):
        project_id = uuid4()
        request = asyncio.create_task(client.get(f"/api/v1/projects/{project_id}/deploy/stream"))

        for _ in range(100):
            if broadcaster.subscriber_count(project_id):
                break
            await asyncio.sleep(0.01)
        broadcaster.publish_line(project_id, "d-1", "hello")
        broadcaster.publish_finished(project_id, "d-1", "succeeded", "http://localhost:4200")

        response = await asyncio.wait_for(request, timeout=5)

        assert response.headers["content-type"].startswith("text/event-stream")
        events = [
            json.loads(chunk[len("data: "):])
            for chunk in response.text.split("\n\n") if chunk
        ]
        assert [e["type"] for e in events] == ["log", "finished"]
        assert events[0]["line"] == "hello"
        assert not broadcaster.has_channel(project_id)

    def test_websocket_subscribes_and_cleans_up(self, broadcaster):
        project_id = uuid4()
        app.dependency_overrides[get_broadcaster] = lambda: broadcaster
        try:
            client = TestClient(app)
            with client.websocket_connect(f"/api/v1/projects/{project_id}/deploy/live"):
                assert broadcaster.subscriber_count(project_id) == 1

            assert broadcaster.subscriber_count(project_id) == 0
        finally:
            app.dependency_overrides.clear()


class FakeWebSocket:
    """Records sent JSON; receive() yields queued client frames."""

    def __init__(self):
        self.sent = []
        self._inbound = asyncio.Queue()

    def push(self, message):
        self._inbound.put_nowait(message)

    def disconnect(self):
        self.push({"type": "websocket.disconnect", "code": 1000})

    async def send_json(self, data):
        self.sent.append(data)

    async def receive(self):
        return await self._inbound.get()


class TestRelayEvents:
    """Tests for relay_events."""

    @pytest.mark.asyncio
    async def test_relays_until_finished(self):
        broadcaster = LogBroadcaster(max_buffer=10)
        subscription = broadcaster.subscribe("p-1")
        websocket = FakeWebSocket()

        broadcaster.publish_line("p-1", "d-1", "one")
        broadcaster.publish_line("p-1", "d-1", "two")
        broadcaster.publish_finished("p-1", "d-1", "failed")
        await asyncio.wait_for(relay_events(websocket, subscription), timeout=5)

        assert websocket.sent == [
            {"deployment_id": "d-1", "line": "one", "type": "log"},
            {"deployment_id": "d-1", "line": "two", "type": "log"},
            {"deployment_id": "d-1", "status": "failed", "url": None, "type": "finished"},
        ]

    @pytest.mark.asyncio
    async def test_client_disconnect_ends_relay(self):
        broadcaster = LogBroadcaster(max_buffer=10)
        subscription = broadcaster.subscribe("p-1")
        websocket = FakeWebSocket()

        relay = asyncio.create_task(relay_events(websocket, subscription))
        broadcaster.publish_line("p-1", "d-1", "one")
        await asyncio.sleep(0.01)
        websocket.disconnect()
        await asyncio.wait_for(relay, timeout=5)

        assert websocket.sent == [{"deployment_id": "d-1", "line": "one", "type": "log"}]
        assert subscription.closed

    @pytest.mark.asyncio
    async def test_client_frames_do_not_end_relay(self):
        broadcaster = LogBroadcaster(max_buffer=10)
        subscription = broadcaster.subscribe("p-1")
        websocket = FakeWebSocket()

        relay = asyncio.create_task(relay_events(websocket, subscription))
        websocket.push({"type": "websocket.receive", "bytes": b"\x00\x01"})
        websocket.push({"type": "websocket.receive", "text": "ping"})
        await asyncio.sleep(0.01)
        assert not subscription.closed

        broadcaster.publish_finished("p-1", "d-1", "succeeded", "http://localhost:3000")
        await asyncio.wait_for(relay, timeout=5)

        assert websocket.sent[-1]["type"] == "finished"


class TestHealth:
    """Tests for the health endpoint."""

    @pytest.mark.asyncio
    async def test_health(self):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
