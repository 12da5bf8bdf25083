# src/koharu/gitwrap.py: Safe subprocess wrappers for Git.
# This module is the only place the 'git' binary is executed. It offers two
# entry points with different failure contracts: run_git() raises GitCommandError
# for commands whose failure is actionable, and try_git() returns None for lookups
# where a failing command simply means "no".

import os
import subprocess
from pathlib import Path
from typing import List, Optional

from .util.errors import GitCommandError
from .util.log import get_logger

logger = get_logger(__name__)

# --- Core Git Execution ---

def _execute(
    args: List[str],
    cwd: Path,
    timeout: Optional[int] = None,
    env: Optional[dict] = None,
) -> subprocess.CompletedProcess:
    """
    Runs a git command in a specified directory with error handling.

    Args:
        args: A list of arguments for the git command.
        cwd: The working directory for the command.
        timeout: Optional timeout in seconds. Git calls are unbounded by default.
        env: An optional dictionary of environment variables.

    Returns:
        The CompletedProcess object.

    Raises:
        GitCommandError: If git is not found, the command fails, or it times out.
    """
    cwd = Path(cwd)
    if not cwd.is_dir():
        raise GitCommandError(f"Git working directory not found: {cwd}", args)

    base_env = os.environ.copy()
    base_env["GIT_TERMINAL_PROMPT"] = "0"  # Disable interactive prompts
    if env:
        base_env.update(env)

    logger.debug(f"git {' '.join(args)}")
    try:
        return subprocess.run(
            ["git"] + args,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
            env=base_env,
        )
    except FileNotFoundError:
        raise GitCommandError(
            "The 'git' command was not found. Is it installed and in your PATH?", args
        )
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        error_message = stderr or (e.stdout or "").strip() or f"exit code {e.returncode}"
        raise GitCommandError(
            f"Git command '{' '.join(args)}' failed: {error_message}", args, stderr
        )
    except subprocess.TimeoutExpired:
        raise GitCommandError(f"Git command '{' '.join(args)}' timed out after {timeout} seconds.", args)


def run_git(args: List[str], cwd: Path, timeout: Optional[int] = None) -> str:
    """Run git and return its trimmed stdout, raising GitCommandError on failure."""
    return _execute(args, cwd=cwd, timeout=timeout).stdout.strip()


def try_git(args: List[str], cwd: Path, timeout: Optional[int] = None) -> Optional[str]:
    """Run a git lookup: trimmed stdout on success, None on any failure."""
    try:
        return run_git(args, cwd=cwd, timeout=timeout)
    except GitCommandError as e:
        logger.debug(f"git lookup failed: {e}")
        return None


# --- High-Level Git Operations ---

def git_current_branch(cwd: Path) -> str:
    """Gets the current active branch name."""
    return run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)

def git_status_porcelain(cwd: Path) -> List[str]:
    """Non-empty `status --porcelain` lines; an unreadable status counts as clean."""
    # Not stripped: the two-column status code may start with a space.
    try:
        output = _execute(["status", "--porcelain"], cwd=cwd).stdout
    except GitCommandError as e:
        logger.debug(f"git lookup failed: {e}")
        return []
    return [line for line in output.splitlines() if line.strip()]

def porcelain_path(line: str) -> str:
    """Path column of a porcelain line; renames report the destination."""
    path = line[3:]
    if " -> " in path:
        path = path.split(" -> ", 1)[1]
    return path.strip('"')

def git_has_changes(cwd: Path) -> bool:
    """Checks if the working tree differs from HEAD."""
    return bool(git_status_porcelain(cwd))
