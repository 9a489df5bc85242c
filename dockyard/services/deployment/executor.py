"""
Deployment executor.

Coordinates a deployment attempt end to end:
- per-project exclusivity (fail fast, never queue)
- materialize -> descriptors -> build -> replace old instance -> run
- live output through the LogBroadcaster
- terminal state, logs and project status through the state machine

Database sessions are opened per phase so no connection is held while
external commands run.
"""
import asyncio
import logging
import shlex
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dockyard.core.config import settings
from dockyard.core.database import async_session_maker
from dockyard.core.events import EventDispatcher, event_dispatcher
from dockyard.core.exceptions import (
    DeploymentCancelledError,
    DeploymentInProgressError,
    DomainException,
    NoDeploymentInProgressError,
    ProjectArchivedError,
)
from dockyard.repositories.deployment_repository import DeploymentRepository
from dockyard.repositories.project_repository import ProjectRepository
from dockyard.schemas.deployment import DeploymentHandle, DeploymentStatus, ProjectStatus
from dockyard.services.deployment.command_runner import CommandRunner, command_runner
from dockyard.services.deployment.descriptors import (
    IMAGE_RECIPE_FILENAME,
    SERVICE_DESCRIPTOR_FILENAME,
    BuildDescriptors,
    generate_descriptors,
)
from dockyard.services.deployment.log_broadcaster import LogBroadcaster, log_broadcaster
from dockyard.services.deployment.materializer import ProjectMaterializer
from dockyard.services.deployment.port_allocator import PortAllocator, port_allocator
from dockyard.services.deployment.state_machine import DeploymentStateMachine

logger = logging.getLogger(__name__)

RESTART_INTERRUPTED_ERROR = "Deployment interrupted by service restart"


@dataclass
class _InFlight:
    """Lock table entry: one per project with a deployment in flight."""
    deployment_id: Optional[UUID] = None
    task: Optional[asyncio.Task] = None
    cancel_requested: bool = False


@dataclass
class _Attempt:
    """Mutable state of one pipeline run."""
    project_id: UUID
    deployment_id: UUID
    emit: Callable[[str], None]
    lines: List[str] = field(default_factory=list)
    work_dir: Optional[str] = None
    port: Optional[int] = None
    runtime_type: Optional[str] = None
    url: Optional[str] = None


class DeploymentExecutor:
    """
    Runs deployment pipelines as background asyncio tasks.

    At most one deployment per project is in flight; a second request for
    the same project raises DeploymentInProgressError before anything is
    created.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = None,
        materializer: Optional[ProjectMaterializer] = None,
        runner: Optional[CommandRunner] = None,
        allocator: Optional[PortAllocator] = None,
        broadcaster: Optional[LogBroadcaster] = None,
        dispatcher: Optional[EventDispatcher] = None,
        public_host: Optional[str] = None,
        keep_work_dirs: Optional[bool] = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.materializer = materializer or ProjectMaterializer()
        self.runner = runner or command_runner
        self.allocator = allocator or port_allocator
        self.broadcaster = broadcaster or log_broadcaster
        self.dispatcher = dispatcher or event_dispatcher
        self.public_host = public_host or settings.DEPLOYMENT_PUBLIC_HOST
        self.keep_work_dirs = settings.KEEP_WORK_DIRS if keep_work_dirs is None else keep_work_dirs
        self._in_flight: Dict[str, _InFlight] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_deploying(self, project_id: UUID) -> bool:
        """Check if the project has a deployment in flight."""
        return str(project_id) in self._in_flight

    async def deploy(self, project_id: UUID) -> DeploymentHandle:
        """
        Accept a deployment request and start the pipeline in the background.

        Returns as soon as the pending Deployment record exists.

        Raises:
            DeploymentInProgressError: If the project already has one in flight
            ProjectNotFoundError: If the project does not exist
            ProjectArchivedError: If the project is archived
        """
        key = str(project_id)
        if key in self._in_flight:
            raise DeploymentInProgressError(key)

        # Taken before the first await so concurrent requests cannot both pass
        entry = _InFlight()
        self._in_flight[key] = entry

        try:
            async with self.session_factory() as db:
                project = await ProjectRepository(db).get_project(project_id)
                if project.status == ProjectStatus.ARCHIVED.value:
                    raise ProjectArchivedError(key)
                deployment = await DeploymentStateMachine(db, self.dispatcher).open(project_id)
        except BaseException:
            self._in_flight.pop(key, None)
            raise

        entry.deployment_id = deployment.id
        entry.task = asyncio.create_task(
            self._run(project_id, deployment.id, entry),
            name=f"deployment-{deployment.id}",
        )

        logger.info(f"Deployment {deployment.id} accepted for project {project_id}")
        return DeploymentHandle(
            deployment_id=deployment.id,
            project_id=project_id,
            status=DeploymentStatus.PENDING,
        )

    def cancel(self, project_id: UUID) -> UUID:
        """
        Request cooperative cancellation of the project's in-flight deployment.

        The running command is allowed to finish; the pipeline stops before
        the next step and the deployment ends as failed.

        Returns:
            ID of the deployment being cancelled

        Raises:
            NoDeploymentInProgressError: If nothing is in flight
        """
        entry = self._in_flight.get(str(project_id))
        if entry is None or entry.deployment_id is None:
            raise NoDeploymentInProgressError(str(project_id))
        entry.cancel_requested = True
        logger.info(f"Cancellation requested for deployment {entry.deployment_id}")
        return entry.deployment_id

    async def wait(self, project_id: UUID) -> None:
        """Wait for the project's in-flight pipeline, if any, to finish."""
        entry = self._in_flight.get(str(project_id))
        if entry is not None and entry.task is not None:
            await asyncio.wait({entry.task})

    async def shutdown(self) -> None:
        """Wait for every in-flight pipeline to finish."""
        tasks = {entry.task for entry in self._in_flight.values() if entry.task is not None}
        if tasks:
            logger.info(f"Waiting for {len(tasks)} in-flight deployments")
            await asyncio.wait(tasks)

    async def recover_interrupted(self) -> int:
        """
        Fail deployments left unfinished by a previous process.

        Call at startup, before accepting requests. Projects stuck in
        deploying are returned to active.

        Returns:
            Number of deployments marked failed
        """
        recovered = 0
        async with self.session_factory() as db:
            machine = DeploymentStateMachine(db, self.dispatcher)
            for deployment in await DeploymentRepository(db).list_unfinished():
                if self.is_deploying(deployment.project_id):
                    continue
                if deployment.status == DeploymentStatus.PENDING.value:
                    await machine.start_build(deployment)
                await machine.fail(deployment, RESTART_INTERRUPTED_ERROR, deployment.logs or "")
                recovered += 1

            projects = ProjectRepository(db)
            for project in await projects.list_by_status(ProjectStatus.DEPLOYING.value):
                if not self.is_deploying(project.id):
                    await projects.set_status(project.id, ProjectStatus.ACTIVE.value)

        if recovered:
            logger.warning(f"Marked {recovered} interrupted deployments as failed")
        return recovered

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _checkpoint(self, entry: _InFlight, attempt: _Attempt) -> None:
        if entry.cancel_requested:
            raise DeploymentCancelledError(str(attempt.deployment_id))

    async def _run(self, project_id: UUID, deployment_id: UUID, entry: _InFlight) -> None:
        """Background task body: run every step, then always finalize."""
        lines: List[str] = []

        def emit(line: str) -> None:
            lines.append(line)
            self.broadcaster.publish_line(project_id, deployment_id, line)

        attempt = _Attempt(project_id=project_id, deployment_id=deployment_id, emit=emit, lines=lines)
        error: Optional[str] = None
        cancelled = False

        try:
            await self._execute(entry, attempt)
        except DomainException as e:
            logger.warning(f"Deployment {deployment_id} aborted: {e.message}")
            error = e.message
        except asyncio.CancelledError:
            cancelled = True
            error = "Deployment task was cancelled"
        except Exception as e:
            logger.exception(f"Unexpected error in deployment {deployment_id}")
            error = f"Unexpected error: {e}"

        if error is not None:
            emit(f"ERROR: {error}")

        final_status = DeploymentStatus.FAILED.value
        try:
            final_status = await self._finalize(attempt, error)
        except Exception as e:
            logger.exception(f"Failed to finalize deployment {deployment_id}: {e}")
        finally:
            self._release(attempt, entry)
            self.broadcaster.publish_finished(
                project_id,
                deployment_id,
                final_status,
                attempt.url if final_status == DeploymentStatus.SUCCEEDED.value else None,
            )

        if cancelled:
            raise asyncio.CancelledError()

    async def _execute(self, entry: _InFlight, attempt: _Attempt) -> None:
        """Run the pipeline steps; any exception aborts the rest."""
        emit = attempt.emit
        emit(f"Starting deployment {attempt.deployment_id} at {datetime.utcnow().isoformat()}Z")

        async with self.session_factory() as db:
            deployment = await DeploymentRepository(db).get_by_id_or_raise(attempt.deployment_id)
            await DeploymentStateMachine(db, self.dispatcher).start_build(deployment)
            files = await ProjectRepository(db).list_files(attempt.project_id)

        # Materialize
        attempt.work_dir = self.materializer.create_work_dir(attempt.project_id, attempt.deployment_id)
        written = self.materializer.materialize(files, attempt.work_dir)
        emit(f"Wrote {written} project files")

        runtime_type = self.materializer.classify(files)
        attempt.runtime_type = runtime_type.value
        emit(f"Detected runtime type: {runtime_type.value}")
        self._checkpoint(entry, attempt)

        # Descriptors
        async with self.session_factory() as db:
            attempt.port = await self.allocator.allocate(db, attempt.deployment_id)
        descriptors = generate_descriptors(runtime_type, attempt.port, attempt.project_id)
        self.materializer.write_descriptor(attempt.work_dir, IMAGE_RECIPE_FILENAME, descriptors.image_recipe)
        self.materializer.write_descriptor(attempt.work_dir, SERVICE_DESCRIPTOR_FILENAME, descriptors.service_descriptor)
        emit(f"Container name: {descriptors.service_name}")
        emit(f"Port: {attempt.port}")
        self._checkpoint(entry, attempt)

        # Build, replace, run
        await self._run_commands(entry, attempt, descriptors)

        attempt.url = f"http://{self.public_host}:{attempt.port}"
        emit("Deployment complete")
        emit(f"Application URL: {attempt.url}")

    async def _run_commands(
        self,
        entry: _InFlight,
        attempt: _Attempt,
        descriptors: BuildDescriptors,
    ) -> None:
        emit = attempt.emit
        name = shlex.quote(descriptors.service_name)
        compose = f"{settings.COMPOSE_COMMAND} -p {name}"
        docker = settings.DOCKER_COMMAND

        emit("Building image...")
        await self.runner.run(f"{compose} build", cwd=attempt.work_dir, on_line=emit)
        self._checkpoint(entry, attempt)

        # Stop the previous instance before starting a new one; absence is fine
        emit("Stopping previous instance...")
        await self.runner.run_tolerating_not_found(f"{docker} stop {name}", on_line=emit)
        await self.runner.run_tolerating_not_found(f"{docker} rm {name}", on_line=emit)
        self._checkpoint(entry, attempt)

        emit("Starting service...")
        await self.runner.run(f"{compose} up -d", cwd=attempt.work_dir, on_line=emit)

    async def _finalize(self, attempt: _Attempt, error: Optional[str]) -> str:
        """Persist the terminal state; returns the final status."""
        logs = "\n".join(attempt.lines)
        async with self.session_factory() as db:
            deployment = await DeploymentRepository(db).get_by_id_or_raise(attempt.deployment_id)
            machine = DeploymentStateMachine(db, self.dispatcher)
            deployment.runtime_type = attempt.runtime_type
            deployment.host_port = attempt.port

            if error is None:
                await machine.succeed(deployment, attempt.url, logs)
                return DeploymentStatus.SUCCEEDED.value

            if deployment.status == DeploymentStatus.PENDING.value:
                await machine.start_build(deployment)
            await machine.fail(deployment, error, logs)
            return DeploymentStatus.FAILED.value

    def _release(self, attempt: _Attempt, entry: _InFlight) -> None:
        """Give back the port reservation, the working directory and the lock."""
        if attempt.port is not None:
            self.allocator.release(attempt.port)

        if attempt.work_dir and not self.keep_work_dirs:
            self.materializer.cleanup_work_dir(attempt.work_dir)

        key = str(attempt.project_id)
        if self._in_flight.get(key) is entry:
            del self._in_flight[key]


# Singleton instance
deployment_executor = DeploymentExecutor()
