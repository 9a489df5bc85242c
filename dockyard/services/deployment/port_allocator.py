"""
Port allocation service for deployments.

Manages port allocation in a configurable range (default 3000-3999) so that
concurrent deployments never share a port and a port is not handed out again
while the service previously bound to it may still be reachable.
"""
import asyncio
import logging
import shlex
from typing import Dict, Optional, Set
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dockyard.core.config import settings
from dockyard.core.exceptions import PortExhaustionError
from dockyard.repositories.deployment_repository import DeploymentRepository

logger = logging.getLogger(__name__)


class PortAllocator:
    """
    Reserving port allocator.

    A port is unavailable while any of these hold it:
    - an in-flight deployment's reservation (in memory)
    - the latest successful deployment of any project (database)
    - a running Docker container publishing it (optional probe)
    """

    def __init__(
        self,
        port_range_start: int = None,
        port_range_end: int = None,
        probe_docker: Optional[bool] = None,
    ):
        """
        Initialize the port allocator.

        Args:
            port_range_start: Start of port range (default from settings)
            port_range_end: End of port range (default from settings)
            probe_docker: Whether to ask Docker for published ports (default from settings)
        """
        self.port_range_start = port_range_start or settings.DEPLOYMENT_PORT_RANGE_START
        self.port_range_end = port_range_end or settings.DEPLOYMENT_PORT_RANGE_END
        self.probe_docker = settings.DEPLOYMENT_PORT_PROBE_DOCKER if probe_docker is None else probe_docker
        self._reservations: Dict[int, UUID] = {}
        self._lock = asyncio.Lock()

    @property
    def reserved_ports(self) -> Set[int]:
        """Ports currently reserved by in-flight deployments."""
        return set(self._reservations)

    async def get_docker_ports_in_use(self) -> Set[int]:
        """
        Get all ports currently bound by RUNNING Docker containers.

        Catches containers that are running but not tracked in the database.
        Errors are logged and treated as "no ports in use".

        Returns:
            Set of port numbers within range bound by Docker containers
        """
        ports = set()
        try:
            proc = await asyncio.create_subprocess_exec(
                *shlex.split(settings.DOCKER_COMMAND), "ps", "--format", "{{.Ports}}",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()

            if proc.returncode == 0 and stdout:
                # Parse port mappings like "0.0.0.0:3000->3000/tcp"
                for line in stdout.decode().strip().split("\n"):
                    for mapping in line.split(", "):
                        if "->" not in mapping or ":" not in mapping:
                            continue
                        try:
                            host_part = mapping.split("->")[0]
                            host_port = int(host_part.split(":")[-1])
                        except (ValueError, IndexError):
                            continue
                        if self.port_range_start <= host_port <= self.port_range_end:
                            ports.add(host_port)
            elif stderr:
                logger.warning(f"Docker ps error: {stderr.decode()}")
        except Exception as e:
            logger.warning(f"Error checking Docker ports: {e}")

        return ports

    async def get_used_ports(self, db: AsyncSession) -> Set[int]:
        """Every port that must not be handed out right now."""
        used = set(self._reservations)
        used |= await DeploymentRepository(db).get_live_ports()
        if self.probe_docker:
            used |= await self.get_docker_ports_in_use()
        return used

    async def allocate(self, db: AsyncSession, deployment_id: UUID) -> int:
        """
        Reserve the lowest available port in the range.

        Args:
            db: Database session
            deployment_id: Deployment the reservation belongs to

        Returns:
            Reserved port number

        Raises:
            PortExhaustionError: If no ports are available
        """
        async with self._lock:
            used = await self.get_used_ports(db)
            for port in range(self.port_range_start, self.port_range_end + 1):
                if port in used:
                    continue
                self._reservations[port] = deployment_id
                logger.info(f"Allocated port {port} to deployment {deployment_id}")
                return port

        raise PortExhaustionError(self.port_range_start, self.port_range_end)

    def release(self, port: int) -> None:
        """
        Drop a reservation.

        A successful deployment's port stays protected afterwards through its
        database record.
        """
        deployment_id = self._reservations.pop(port, None)
        if deployment_id is not None:
            logger.info(f"Port {port} reservation released (deployment {deployment_id})")


# Singleton instance
port_allocator = PortAllocator()
