"""News anchor video service.

Importing the package applies the local ``.env`` files so that
``newsanchor.config`` reads them.
"""
from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


SERVER_DIR = Path(__file__).resolve().parent.parent

# (path, override): later files only win when they override.
ENV_FILES = (
    (SERVER_DIR.parent / ".env", False),
    (SERVER_DIR / ".env", False),
    (SERVER_DIR / ".env.local", True),
)


def load_environment(files=ENV_FILES) -> list[Path]:
    """Apply env files in order and return the ones that were found."""
    loaded: list[Path] = []
    for path, override in files:
        if path.is_file():
            load_dotenv(path, override=override)
            loaded.append(path)
    return loaded


load_environment()
