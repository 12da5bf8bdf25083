# src/koharu/util/errors.py: Typed exceptions and exit codes.
# This module defines the exception hierarchy used across the CLI. Each
# exception carries the process exit code the command-line layer should use
# when the error escapes a command.

class KoharuError(Exception):
    """Base exception for the application."""
    exit_code = 1

class ConfigError(KoharuError):
    """Configuration-related errors."""
    exit_code = 2

class GitCommandError(KoharuError):
    """A git invocation exited non-zero or could not be started."""
    exit_code = 3

    def __init__(self, message: str, args=None, stderr: str = ""):
        super().__init__(message)
        self.git_args = list(args or [])
        self.stderr = stderr

class BackupError(KoharuError):
    """Backup, restore or prune failures."""
    exit_code = 4

class LockError(KoharuError):
    """Another update session holds the repository lock."""
    exit_code = 5
