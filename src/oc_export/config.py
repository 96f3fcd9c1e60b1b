"""Platform-aware path resolution for the OpenCode storage directory."""

import os
import sys
from pathlib import Path

STORAGE_ENV_VAR = "OC_EXPORT_STORAGE"


def get_opencode_path() -> Path:
    """Return the path to OpenCode's storage directory."""
    env = os.environ.get(STORAGE_ENV_VAR)
    if env:
        return Path(env)

    if sys.platform == "win32":
        return Path(os.environ.get("USERPROFILE", "")) / ".local" / "share" / "opencode" / "storage"
    else:  # macOS and Linux
        return Path.home() / ".local" / "share" / "opencode" / "storage"
