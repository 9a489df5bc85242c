"""
Tests for PortAllocator.

Tests cover:
- Lowest free port selection with in-memory reservations
- Ports of live deployments stay protected
- Docker port probe parsing
- Exhaustion
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from dockyard.core.exceptions import PortExhaustionError
from dockyard.models.deployment import Deployment
from dockyard.services.deployment.port_allocator import PortAllocator


def allocator_with_live_ports(live_ports, start=4000, end=4004):
    allocator = PortAllocator(port_range_start=start, port_range_end=end, probe_docker=False)
    repo = MagicMock()
    repo.get_live_ports = AsyncMock(return_value=set(live_ports))
    return allocator, repo


class TestPortAllocatorAllocate:
    """Tests for allocate and release."""

    @pytest.mark.asyncio
    async def test_allocates_lowest_free_port(self, mock_db_session):
        allocator, repo = allocator_with_live_ports({4000})

        with patch("dockyard.services.deployment.port_allocator.DeploymentRepository", return_value=repo):
            port = await allocator.allocate(mock_db_session, uuid4())

        assert port == 4001
        assert allocator.reserved_ports == {4001}

    @pytest.mark.asyncio
    async def test_concurrent_allocations_get_distinct_ports(self, mock_db_session):
        allocator, repo = allocator_with_live_ports(set())

        with patch("dockyard.services.deployment.port_allocator.DeploymentRepository", return_value=repo):
            ports = await asyncio.gather(*[
                allocator.allocate(mock_db_session, uuid4()) for _ in range(5)
            ])

        assert sorted(ports) == [4000, 4001, 4002, 4003, 4004]

    @pytest.mark.asyncio
    async def test_release_makes_port_available_again(self, mock_db_session):
        allocator, repo = allocator_with_live_ports(set(), end=4000)

        with patch("dockyard.services.deployment.port_allocator.DeploymentRepository", return_value=repo):
            port = await allocator.allocate(mock_db_session, uuid4())
            with pytest.raises(PortExhaustionError):
                await allocator.allocate(mock_db_session, uuid4())

            allocator.release(port)
            assert await allocator.allocate(mock_db_session, uuid4()) == port

    @pytest.mark.asyncio
    async def test_exhaustion(self, mock_db_session):
        allocator, repo = allocator_with_live_ports({4000, 4001, 4002}, end=4002)

        with patch("dockyard.services.deployment.port_allocator.DeploymentRepository", return_value=repo):
            with pytest.raises(PortExhaustionError) as exc_info:
                await allocator.allocate(mock_db_session, uuid4())

        assert exc_info.value.details == {"port_range_start": 4000, "port_range_end": 4002}

    def test_release_unknown_port_is_noop(self):
        allocator = PortAllocator(4000, 4010, probe_docker=False)
        allocator.release(4005)
        assert allocator.reserved_ports == set()


class TestPortAllocatorDockerProbe:
    """Tests for get_docker_ports_in_use."""

    @pytest.mark.asyncio
    async def test_parses_published_ports_in_range(self):
        allocator = PortAllocator(3000, 3999, probe_docker=True)
        proc = MagicMock()
        proc.returncode = 0
        proc.communicate = AsyncMock(return_value=(
            b"0.0.0.0:3000->3000/tcp, :::3000->3000/tcp\n"
            b"0.0.0.0:3005->80/tcp\n"
            b"0.0.0.0:8080->80/tcp\n"
            b"5432/tcp\n",
            b"",
        ))

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            ports = await allocator.get_docker_ports_in_use()

        assert ports == {3000, 3005}

    @pytest.mark.asyncio
    async def test_probe_failure_means_no_ports(self):
        allocator = PortAllocator(3000, 3999, probe_docker=True)

        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("docker"))):
            assert await allocator.get_docker_ports_in_use() == set()

    @pytest.mark.asyncio
    async def test_probe_results_are_excluded(self, mock_db_session):
        allocator = PortAllocator(3000, 3002, probe_docker=True)
        repo = MagicMock()
        repo.get_live_ports = AsyncMock(return_value=set())

        with patch("dockyard.services.deployment.port_allocator.DeploymentRepository", return_value=repo), \
                patch.object(allocator, "get_docker_ports_in_use", AsyncMock(return_value={3000, 3001})):
            assert await allocator.allocate(mock_db_session, uuid4()) == 3002


class TestLivePorts:
    """Tests for DeploymentRepository.get_live_ports against SQLite."""

    @pytest.mark.asyncio
    async def test_latest_success_per_project_holds_its_port(self, db_session, create_project):
        from datetime import datetime, timedelta

        from dockyard.repositories.deployment_repository import DeploymentRepository

        first_project = await create_project(name="first")
        second_project = await create_project(name="second")
        now = datetime.utcnow()
        db_session.add_all([
            Deployment(project_id=first_project, status="succeeded", host_port=3000,
                       finished_at=now - timedelta(minutes=10)),
            Deployment(project_id=first_project, status="succeeded", host_port=3001,
                       finished_at=now),
            Deployment(project_id=first_project, status="failed", host_port=3002, finished_at=now),
            Deployment(project_id=second_project, status="succeeded", host_port=3003, finished_at=now),
        ])
        await db_session.commit()

        assert await DeploymentRepository(db_session).get_live_ports() == {3001, 3003}
