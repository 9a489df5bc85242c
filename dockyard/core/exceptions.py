"""
Custom exception hierarchy for domain-specific errors.

This module provides a clean separation between domain errors and HTTP concerns.
Services raise domain exceptions, and the exception handlers in main.py map them to HTTP responses.
"""
from typing import Optional, Dict, Any


class DomainException(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# =============================================================================
# Not Found Errors (404)
# =============================================================================

class NotFoundError(DomainException):
    """Base class for resource not found errors."""
    pass


class ProjectNotFoundError(NotFoundError):
    """Project does not exist."""

    def __init__(self, identifier: str):
        super().__init__(f"Project not found: {identifier}", {"identifier": identifier})


class DeploymentNotFoundError(NotFoundError):
    """Deployment does not exist."""

    def __init__(self, identifier: str):
        super().__init__(f"Deployment not found: {identifier}", {"identifier": identifier})


# =============================================================================
# Conflict Errors (409)
# =============================================================================

class ConflictError(DomainException):
    """Base class for requests that clash with current state."""
    pass


class DeploymentInProgressError(ConflictError):
    """Another deployment of the same project is still in flight."""

    def __init__(self, project_id: str):
        super().__init__(
            f"A deployment is already in progress for project {project_id}",
            {"project_id": project_id}
        )


class NoDeploymentInProgressError(ConflictError):
    """There is no in-flight deployment to act on."""

    def __init__(self, project_id: str):
        super().__init__(
            f"No deployment in progress for project {project_id}",
            {"project_id": project_id}
        )


# =============================================================================
# Validation Errors (400)
# =============================================================================

class ValidationError(DomainException):
    """Base class for validation errors."""
    pass


class ProjectArchivedError(ValidationError):
    """Archived projects cannot be deployed."""

    def __init__(self, project_id: str):
        super().__init__(f"Project {project_id} is archived", {"project_id": project_id})


class UnknownRuntimeTypeError(ValidationError):
    """No build recipe exists for the runtime type."""

    def __init__(self, runtime_type: str):
        super().__init__(f"Unknown runtime type: {runtime_type}", {"runtime_type": runtime_type})


class InvalidStateTransitionError(ValidationError):
    """Deployment status change not permitted by the lifecycle."""

    def __init__(self, deployment_id: str, current_status: str, target_status: str):
        super().__init__(
            f"Deployment {deployment_id} cannot move from {current_status} to {target_status}",
            {
                "deployment_id": deployment_id,
                "current_status": current_status,
                "target_status": target_status,
            }
        )


# =============================================================================
# Authorization Errors (403)
# =============================================================================

class AuthorizationError(DomainException):
    """Base class for authorization errors."""
    pass


class DeploymentProjectMismatchError(AuthorizationError):
    """Deployment was requested through a project it does not belong to."""

    def __init__(self, deployment_id: str, project_id: str):
        super().__init__(
            f"Deployment {deployment_id} does not belong to project {project_id}",
            {"deployment_id": deployment_id, "project_id": project_id}
        )


# =============================================================================
# Operation Errors (500)
# =============================================================================

class OperationError(DomainException):
    """Base class for operation failures."""
    pass


class MaterializationError(OperationError):
    """Writing the project files to the working directory failed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to materialize {path}: {reason}", {"path": path, "reason": reason})


class CommandError(OperationError):
    """External toolchain command failed to spawn or exited non-zero."""

    NOT_FOUND_MARKERS = ("no such container", "no such object", "no such service")

    def __init__(self, command: str, exit_code: int, captured_output: str):
        self.command = command
        self.exit_code = exit_code
        self.captured_output = captured_output
        super().__init__(
            f"Command failed with exit code {exit_code}: {command}",
            {"command": command, "exit_code": exit_code}
        )

    @property
    def is_not_found(self) -> bool:
        """True when the command failed only because its target does not exist."""
        output = self.captured_output.lower()
        return any(marker in output for marker in self.NOT_FOUND_MARKERS)


class PortExhaustionError(OperationError):
    """No available ports in range."""

    def __init__(self, port_range_start: int, port_range_end: int):
        super().__init__(
            f"No available ports in range {port_range_start}-{port_range_end}",
            {"port_range_start": port_range_start, "port_range_end": port_range_end}
        )


class DeploymentCancelledError(OperationError):
    """Deployment was cancelled between pipeline steps."""

    def __init__(self, deployment_id: str):
        super().__init__(f"Deployment {deployment_id} was cancelled", {"deployment_id": deployment_id})
