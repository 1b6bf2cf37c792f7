"""
In-process registry of project database credentials.

Projects live for the lifetime of the process; nothing is persisted.
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from datadump.core.logging_config import forget_secret, get_logger, register_secret

logger = get_logger(__name__)

DEFAULT_PORT = 5432


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProjectConfig:
    """One configured database target."""

    name: str
    host: str
    database: str
    username: str
    password: str = field(repr=False)
    port: int = DEFAULT_PORT
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_now)
    seeded: bool = False

    def __post_init__(self):
        if not 1 <= int(self.port) <= 65535:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")
        self.port = int(self.port)

    def public_view(self) -> dict[str, Any]:
        """External representation; the password is never included."""
        return {
            "id": self.id,
            "name": self.name,
            "host": self.host,
            "database": self.database,
            "username": self.username,
            "port": self.port,
            "createdAt": self.created_at.isoformat(),
        }


class ProjectRepository:
    """Thread-safe, insertion-ordered project store."""

    def __init__(self, projects: Optional[Iterable[ProjectConfig]] = None):
        self._lock = threading.Lock()
        self._projects: dict[str, ProjectConfig] = {}
        for project in projects or ():
            self.add(project)

    def list(self) -> List[ProjectConfig]:
        """Snapshot of registered projects in registration order."""
        with self._lock:
            return list(self._projects.values())

    def get(self, project_id: str) -> Optional[ProjectConfig]:
        with self._lock:
            return self._projects.get(project_id)

    def add(self, project: ProjectConfig) -> ProjectConfig:
        with self._lock:
            if project.id in self._projects:
                raise ValueError(f"Project id already registered: {project.id}")
            self._projects[project.id] = project
        register_secret(project.password)
        logger.info(f"Registered project {project.name} ({project.id})")
        return project

    def remove_by_id(self, project_id: str) -> bool:
        """Remove a project. Returns False if no project has that id."""
        with self._lock:
            project = self._projects.pop(project_id, None)
        if project is None:
            return False
        forget_secret(project.password)
        logger.info(f"Removed project {project.name} ({project.id})")
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._projects)


def load_seed_projects(entries: Iterable[dict[str, Any]]) -> List[ProjectConfig]:
    """Build seeded projects from ``[[seed_projects]]`` config entries.

    The password is read from the environment variable named by
    ``password_env``; entries whose variable is unset are skipped.
    """
    from datadump.core.config import get_env

    projects = []
    for entry in entries:
        name = entry.get("name", "?")
        password_env = entry.get("password_env")
        password = get_env(password_env) if password_env else entry.get("password")
        if not password:
            logger.warning(
                f"Skipping seed project {name}: password variable "
                f"{password_env or '(none)'} is not set"
            )
            continue
        projects.append(
            ProjectConfig(
                id=entry.get("id") or str(uuid.uuid4()),
                name=name,
                host=entry["host"],
                database=entry["database"],
                username=entry["username"],
                password=password,
                port=entry.get("port", DEFAULT_PORT),
                seeded=True,
            )
        )
    return projects
