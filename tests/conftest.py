"""
Pytest configuration and fixtures for Dockyard tests.

This file is automatically loaded by pytest before running tests.
It sets up necessary environment variables and common fixtures.
"""
import os
import tempfile

import pytest
import pytest_asyncio

# Set environment variables BEFORE any dockyard imports
# These are required by Settings class
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEPLOYMENT_PORT_PROBE_DOCKER", "false")
os.environ.setdefault("DEPLOY_WORK_DIR", tempfile.mkdtemp(prefix="dockyard-test-"))


@pytest.fixture
def mock_db_session():
    """Provide a mock database session for tests that don't need real DB."""
    from unittest.mock import AsyncMock
    return AsyncMock()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite database with all tables."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from dockyard.core.database import Base
    import dockyard.models  # noqa: F401  (registers tables)

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'dockyard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    """A session on the test database."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def create_project(session_factory):
    """
    Factory creating a project with the given files.

    Usage: project_id = await create_project({"index.html": "<h1>hi</h1>"})
    """
    from dockyard.models.project import Project, ProjectFile

    async def _create(files=None, status="active", name="demo", deployed_url=None):
        async with session_factory() as db:
            project = Project(name=name, status=status, deployed_url=deployed_url)
            db.add(project)
            await db.flush()
            for path, content in (files or {}).items():
                db.add(ProjectFile(project_id=project.id, path=path, content=content))
            await db.commit()
            return project.id

    return _create
