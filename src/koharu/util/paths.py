# src/koharu/util/paths.py: Project and XDG path resolution.
# This module resolves the XDG base directories used for user-level
# configuration and lock files, and locates the root of the theme repository
# the CLI operates on.

import hashlib
import os
from pathlib import Path
import platformdirs
from .errors import KoharuError

APP_NAME = "koharu"

def get_xdg_config_home() -> Path:
    """Get the XDG_CONFIG_HOME path for the application."""
    return Path(platformdirs.user_config_dir(APP_NAME))

def get_xdg_state_home() -> Path:
    """Get the XDG_STATE_HOME path for the application."""
    return Path(platformdirs.user_state_dir(APP_NAME))

def expand_path(path: str | Path) -> Path:
    """Expand environment variables and user home directory in a path."""
    return Path(os.path.expandvars(os.path.expanduser(str(path)))).resolve()

def find_project_root(start: str | Path | None = None) -> Path:
    """
    Walk upward from `start` (default: cwd) to the first directory holding `.git`.

    Raises:
        KoharuError: If no enclosing git repository exists.
    """
    current = expand_path(start or Path.cwd())
    for candidate in [current, *current.parents]:
        if (candidate / ".git").exists():
            return candidate
    raise KoharuError(
        f"'{current}' is not inside a git repository. Run koharu from the theme checkout."
    )

def get_lock_path(project_root: Path) -> Path:
    """Per-repository lock file under the XDG state directory."""
    digest = hashlib.sha1(str(project_root).encode("utf-8")).hexdigest()[:16]
    return get_xdg_state_home() / "locks" / f"update-{digest}.lock"
