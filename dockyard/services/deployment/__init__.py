"""
Deployment pipeline services.

Provides:
- ProjectMaterializer: project files -> working directory, runtime type
- Build descriptors: Dockerfile and compose file per runtime type
- CommandRunner: streaming shell command execution
- PortAllocator: reserving host port allocation
- DeploymentStateMachine: lifecycle transitions and persistence
- LogBroadcaster: live per-project output channels
- DeploymentExecutor: the end-to-end pipeline
"""
from dockyard.services.deployment.command_runner import CommandResult, CommandRunner, command_runner
from dockyard.services.deployment.descriptors import BuildDescriptors, generate_descriptors
from dockyard.services.deployment.executor import DeploymentExecutor, deployment_executor
from dockyard.services.deployment.log_broadcaster import LogBroadcaster, Subscription, log_broadcaster
from dockyard.services.deployment.materializer import (
    FileEntry,
    ProjectMaterializer,
    RuntimeType,
    classify_runtime,
)
from dockyard.services.deployment.port_allocator import PortAllocator, port_allocator
from dockyard.services.deployment.state_machine import DeploymentStateMachine

__all__ = [
    "BuildDescriptors",
    "CommandResult",
    "CommandRunner",
    "DeploymentExecutor",
    "DeploymentStateMachine",
    "FileEntry",
    "LogBroadcaster",
    "PortAllocator",
    "ProjectMaterializer",
    "RuntimeType",
    "Subscription",
    "classify_runtime",
    "command_runner",
    "deployment_executor",
    "generate_descriptors",
    "log_broadcaster",
    "port_allocator",
]
