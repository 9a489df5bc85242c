"""
Build descriptor generation.

Pure functions that turn a runtime type and an assigned host port into the
image recipe (Dockerfile) and service descriptor (compose file) for a
deployment. No I/O happens here.
"""
from dataclasses import dataclass
from typing import Dict, Optional

from dockyard.core.config import settings
from dockyard.core.exceptions import UnknownRuntimeTypeError
from dockyard.services.deployment.materializer import RuntimeType


IMAGE_RECIPE_FILENAME = "Dockerfile"
SERVICE_DESCRIPTOR_FILENAME = "docker-compose.yml"


@dataclass(frozen=True)
class RecipeTemplate:
    """Dockerfile template and the port the service listens on inside the container."""
    dockerfile: str
    internal_port: int


RECIPE_TEMPLATES: Dict[RuntimeType, RecipeTemplate] = {
    RuntimeType.NODE_SERVICE: RecipeTemplate(
        dockerfile=(
            "FROM node:20-alpine\n"
            "WORKDIR /app\n"
            "COPY package*.json ./\n"
            "RUN npm install --omit=dev\n"
            "COPY . .\n"
            "ENV PORT=3000\n"
            "EXPOSE 3000\n"
            'CMD ["node", "index.js"]\n'
        ),
        internal_port=3000,
    ),
    RuntimeType.NODE_STATIC_BUILD: RecipeTemplate(
        dockerfile=(
            "FROM node:20-alpine\n"
            "WORKDIR /app\n"
            "COPY package*.json ./\n"
            "RUN npm install\n"
            "COPY . .\n"
            "RUN npm run build\n"
            "RUN npm install -g serve\n"
            "EXPOSE 3000\n"
            'CMD ["serve", "-s", "build", "-l", "3000"]\n'
        ),
        internal_port=3000,
    ),
    RuntimeType.PYTHON_SERVICE: RecipeTemplate(
        dockerfile=(
            "FROM python:3.11-slim\n"
            "WORKDIR /app\n"
            "COPY requirements.txt .\n"
            "RUN pip install --no-cache-dir -r requirements.txt\n"
            "COPY . .\n"
            "ENV PORT=3000\n"
            "EXPOSE 3000\n"
            'CMD ["python", "app.py"]\n'
        ),
        internal_port=3000,
    ),
    RuntimeType.STATIC: RecipeTemplate(
        dockerfile=(
            "FROM nginx:alpine\n"
            "COPY . /usr/share/nginx/html\n"
            "EXPOSE 80\n"
            'CMD ["nginx", "-g", "daemon off;"]\n'
        ),
        internal_port=80,
    ),
}


@dataclass(frozen=True)
class BuildDescriptors:
    """Generated descriptors for one deployment attempt."""
    runtime_type: RuntimeType
    service_name: str
    host_port: int
    internal_port: int
    image_recipe: str
    service_descriptor: str


def get_service_name(project_id: str, prefix: Optional[str] = None) -> str:
    """
    Deterministic container/service name for a project.

    Every attempt for the same project targets the same name, so a new
    attempt can stop and replace the previous instance.
    """
    prefix = prefix or settings.DEPLOYMENT_CONTAINER_PREFIX
    return f"{prefix}-{str(project_id)[:8]}"


def render_service_descriptor(service_name: str, host_port: int, internal_port: int) -> str:
    """Render the compose file for a single service."""
    return (
        "services:\n"
        "  app:\n"
        f"    container_name: {service_name}\n"
        "    build: .\n"
        f"    image: {service_name}:latest\n"
        "    ports:\n"
        f'      - "{host_port}:{internal_port}"\n'
        "    restart: unless-stopped\n"
    )


def generate_descriptors(
    runtime_type: RuntimeType,
    host_port: int,
    project_id: str,
    prefix: Optional[str] = None,
) -> BuildDescriptors:
    """
    Produce the image recipe and service descriptor for a runtime type.

    Args:
        runtime_type: Classified runtime type of the project
        host_port: Port assigned on the host
        project_id: Project identifier, used to name the service
        prefix: Container name prefix (default from settings)

    Returns:
        BuildDescriptors with both rendered files

    Raises:
        UnknownRuntimeTypeError: If no template exists for the runtime type
    """
    try:
        template = RECIPE_TEMPLATES[RuntimeType(runtime_type)]
    except (KeyError, ValueError):
        raise UnknownRuntimeTypeError(str(runtime_type)) from None

    service_name = get_service_name(project_id, prefix)
    return BuildDescriptors(
        runtime_type=RuntimeType(runtime_type),
        service_name=service_name,
        host_port=host_port,
        internal_port=template.internal_port,
        image_recipe=template.dockerfile,
        service_descriptor=render_service_descriptor(service_name, host_port, template.internal_port),
    )
