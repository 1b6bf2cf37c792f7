"""
API server for the multi-project table export service.

Run with ``python main.py`` or ``uvicorn main:asgi_app``.
"""

import uvicorn

from datadump.core.config import get, get_optional
from datadump.core.logging_config import configure_logging, get_logger
from datadump.gateway.app import create_app
from datadump.registry import ProjectRepository, load_seed_projects

# Initialize centralized logging
LOG_LEVEL = get("app", "log_level").upper()
configure_logging(
    log_level=LOG_LEVEL,
    service="datadump",
    enable_file_logging=get("app", "file_logging"),
)
logger = get_logger("datadump")

repository = ProjectRepository(load_seed_projects(get_optional("seed_projects", default=[])))

app = create_app(repository=repository)

# Alias for compatibility with existing uvicorn command
asgi_app = app

if __name__ == "__main__":
    HOT_RELOAD = get("app", "hot_reload")
    logger.info(f"Starting server on port {get('app', 'port')} (hot reload: {HOT_RELOAD})")
    uvicorn.run(
        "main:asgi_app",
        host=get("app", "host"),
        port=get("app", "port"),
        reload=HOT_RELOAD,
    )
