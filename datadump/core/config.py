"""
Settings for the export service.

Tunables (chunk sizes, concurrency, database timeouts) live in datadump.toml
and have no code-side defaults. Credentials stay in the environment, loaded
from .env at import.
"""

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

load_dotenv()

DEFAULT_CONFIG_FILE = Path(__file__).resolve().parents[2] / "datadump.toml"


def _config_path() -> Path:
    return Path(os.environ.get("DATADUMP_CONFIG_PATH") or DEFAULT_CONFIG_FILE)


@lru_cache(maxsize=1)
def _load() -> dict[str, Any]:
    path = _config_path()
    if not path.is_file():
        raise RuntimeError(f"Configuration file not found: {path}")
    return tomllib.loads(path.read_text(encoding="utf-8"))


def reload() -> None:
    """Forget the parsed file; the next lookup reads it again."""
    _load.cache_clear()


def get(*keys: str) -> Any:
    """Value at ``keys`` in datadump.toml, e.g. ``get("export", "chunk_size")``.

    Raises:
        RuntimeError: a section or key along the path is absent
    """
    node: Any = _load()
    for depth, key in enumerate(keys):
        if not isinstance(node, dict) or key not in node:
            missing = ".".join(keys[: depth + 1])
            raise RuntimeError(f"Missing required config key '{missing}' in datadump.toml")
        node = node[key]
    return node


def get_optional(*keys: str, default: Any = None) -> Any:
    try:
        return get(*keys)
    except RuntimeError:
        return default


def get_env(name: str) -> str | None:
    return os.environ.get(name)
