"""
Application configuration using Pydantic Settings.
"""
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Application
    APP_NAME: str = "Dockyard"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "info"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost"

    # Working directories
    # Each attempt gets <DEPLOY_WORK_DIR>/<project_id>/<deployment_id>
    DEPLOY_WORK_DIR: str = "./storage/deploy"
    KEEP_WORK_DIRS: bool = False

    # Deployment Execution
    DEPLOYMENT_PORT_RANGE_START: int = 3000
    DEPLOYMENT_PORT_RANGE_END: int = 3999
    DEPLOYMENT_PORT_PROBE_DOCKER: bool = True  # Also skip ports published by running containers
    DEPLOYMENT_PUBLIC_HOST: str = "localhost"
    DEPLOYMENT_CONTAINER_PREFIX: str = "dockyard"

    # External toolchain
    DOCKER_COMMAND: str = "docker"
    COMPOSE_COMMAND: str = "docker compose"
    COMMAND_TIMEOUT: int = 900  # seconds per command, 0 disables

    # Live channel
    BROADCAST_QUEUE_SIZE: int = 1000  # Events buffered per subscriber before dropping

    # Runtime classification
    WEB_FRAMEWORK_DEPENDENCIES: str = "express,fastify,koa,@hapi/hapi"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    def get_cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    def get_web_framework_dependencies(self) -> List[str]:
        """Parse web framework package names from comma-separated string."""
        return [name.strip() for name in self.WEB_FRAMEWORK_DEPENDENCIES.split(",") if name.strip()]


settings = Settings()
