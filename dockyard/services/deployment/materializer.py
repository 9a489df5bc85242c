"""
Project materialization for deployments.

Handles:
- Per-attempt working directory creation and cleanup
- Writing a project's stored file tree onto disk
- Runtime type classification from the file tree
"""
import json
import logging
import os
import shutil
from enum import Enum
from typing import Any, Iterable, List, NamedTuple, Optional

from dockyard.core.config import settings
from dockyard.core.exceptions import MaterializationError

logger = logging.getLogger(__name__)


class RuntimeType(str, Enum):
    """Build/run recipe family of a project."""
    NODE_SERVICE = "node-service"
    NODE_STATIC_BUILD = "node-static-build"
    PYTHON_SERVICE = "python-service"
    STATIC = "static"


class FileEntry(NamedTuple):
    """Minimal file tree entry, interchangeable with the ProjectFile model."""
    path: str
    content: str = ""
    type: str = "file"


NODE_MANIFEST = "package.json"
PYTHON_MANIFEST = "requirements.txt"
HTML_ENTRY = "index.html"


def normalize_path(path: str) -> str:
    """
    Normalize a stored file path to a relative POSIX path.

    Stored paths may carry a leading slash ("/package.json"). Returns an
    empty string for paths that resolve to the root itself.
    """
    relative = (path or "").replace("\\", "/").lstrip("/")
    normalized = os.path.normpath(relative) if relative else ""
    return "" if normalized == "." else normalized.replace(os.sep, "/")


def _is_file(entry: Any) -> bool:
    # Rows created without an explicit type are files
    return (getattr(entry, "type", None) or "file") == "file"


def _root_files(files: Iterable[Any]) -> dict:
    """Map root-level file names to their content."""
    root = {}
    for entry in files:
        if not _is_file(entry):
            continue
        path = normalize_path(entry.path)
        if path and "/" not in path:
            root.setdefault(path, entry.content or "")
    return root


def _declares_web_framework(manifest: str, frameworks: List[str]) -> bool:
    try:
        package = json.loads(manifest)
    except (TypeError, ValueError):
        return False
    if not isinstance(package, dict):
        return False
    dependencies = package.get("dependencies")
    if not isinstance(dependencies, dict):
        return False
    return any(name in dependencies for name in frameworks)


def classify_runtime(
    files: Iterable[Any],
    web_frameworks: Optional[List[str]] = None,
) -> RuntimeType:
    """
    Classify a project's runtime type from its file tree.

    Decision list, first match wins:
    1. package.json declaring a web framework dependency -> node-service
    2. package.json without one (or unparsable) -> node-static-build
    3. requirements.txt -> python-service
    4. index.html -> static
    5. anything else -> static

    Only files at the project root are considered.

    Args:
        files: File tree entries with path, content and type attributes
        web_frameworks: Package names that mark a server process

    Returns:
        The runtime type; never raises
    """
    frameworks = web_frameworks if web_frameworks is not None else settings.get_web_framework_dependencies()
    root = _root_files(files)

    if NODE_MANIFEST in root:
        if _declares_web_framework(root[NODE_MANIFEST], frameworks):
            return RuntimeType.NODE_SERVICE
        return RuntimeType.NODE_STATIC_BUILD

    if PYTHON_MANIFEST in root:
        return RuntimeType.PYTHON_SERVICE

    if HTML_ENTRY in root:
        return RuntimeType.STATIC

    return RuntimeType.STATIC


class ProjectMaterializer:
    """
    Renders a project's file tree into a per-attempt working directory.

    Responsibilities:
    - Create and clean up working directories
    - Write files, creating intermediate directories
    - Classify the runtime type
    """

    def __init__(
        self,
        work_dir_base: Optional[str] = None,
        web_frameworks: Optional[List[str]] = None,
    ):
        """
        Initialize ProjectMaterializer.

        Args:
            work_dir_base: Base directory for working directories
            web_frameworks: Package names that mark a Node.js server process
        """
        self.work_dir_base = work_dir_base or settings.DEPLOY_WORK_DIR
        self.web_frameworks = web_frameworks

    def create_work_dir(self, project_id: str, deployment_id: str) -> str:
        """
        Create the working directory for one deployment attempt.

        Raises:
            MaterializationError: If the directory cannot be created
        """
        work_dir = os.path.join(self.work_dir_base, str(project_id), str(deployment_id))
        try:
            os.makedirs(work_dir, exist_ok=False)
        except OSError as e:
            raise MaterializationError(work_dir, str(e)) from e
        logger.info(f"Created working directory: {work_dir}")
        return work_dir

    def cleanup_work_dir(self, work_dir: str) -> bool:
        """
        Remove a working directory.

        Returns:
            True if removed (or already gone), False if removal failed
        """
        if not os.path.exists(work_dir):
            return True
        try:
            shutil.rmtree(work_dir)
        except OSError as e:
            logger.warning(f"Failed to clean up working directory {work_dir}: {e}")
            return False
        logger.info(f"Cleaned up working directory: {work_dir}")
        return True

    def materialize(self, files: Iterable[Any], work_dir: str) -> int:
        """
        Write every file entry to <work_dir>/<relative path>.

        Directory entries are skipped; directories are created as needed.

        Args:
            files: File tree entries with path, content and type attributes
            work_dir: Target working directory

        Returns:
            Number of files written

        Raises:
            MaterializationError: If a path is invalid or a write fails
        """
        root = os.path.realpath(work_dir)
        written = 0

        for entry in files:
            if not _is_file(entry):
                continue

            relative = normalize_path(entry.path)
            if not relative or relative == ".." or relative.startswith("../"):
                raise MaterializationError(entry.path, "path escapes the working directory")

            target = os.path.join(root, relative)
            try:
                os.makedirs(os.path.dirname(target), exist_ok=True)
                with open(target, "w", encoding="utf-8") as f:
                    f.write(entry.content or "")
            except OSError as e:
                raise MaterializationError(entry.path, str(e)) from e
            written += 1

        logger.info(f"Materialized {written} files into {work_dir}")
        return written

    def classify(self, files: Iterable[Any]) -> RuntimeType:
        """Classify using this materializer's framework list."""
        return classify_runtime(files, self.web_frameworks)

    def write_descriptor(self, work_dir: str, filename: str, content: str) -> str:
        """
        Write a generated build descriptor next to the project files.

        Raises:
            MaterializationError: If the write fails
        """
        path = os.path.join(work_dir, filename)
        try:
            with open(path, "w", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            raise MaterializationError(filename, str(e)) from e
        return path
