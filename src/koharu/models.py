# src/koharu/models.py: Value types for the update session.
# This module defines the immutable records passed between the git layer, the
# state machine and the terminal view: repository status, drift summaries,
# integration outcomes, session options, the session itself and the events the
# reducer consumes. Sessions are replaced wholesale on every transition and are
# never persisted.

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class Phase(str, Enum):
    """Phases of an update session."""
    CHECKING = "checking"
    DIRTY_WARNING = "dirty-warning"
    BACKUP_CONFIRM = "backup-confirm"
    BACKING_UP = "backing-up"
    FETCHING = "fetching"
    PREVIEW = "preview"
    MERGING = "merging"
    INSTALLING = "installing"
    DONE = "done"
    CONFLICT = "conflict"
    UP_TO_DATE = "up-to-date"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES = frozenset(
    {Phase.DIRTY_WARNING, Phase.DONE, Phase.CONFLICT, Phase.UP_TO_DATE, Phase.ERROR}
)

UNKNOWN_VERSION = "unknown"


@dataclass(frozen=True)
class RepositoryStatus:
    current_branch: str
    is_clean: bool
    uncommitted_count: int
    uncommitted_files: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CommitInfo:
    hash: str
    message: str
    date: str
    author: str


@dataclass(frozen=True)
class RemoteSyncSummary:
    """
    Drift between HEAD and the target reference.

    `commits` holds the commits the integration would add, or for a downgrade
    the commits it would remove. `local_commits` always holds the commits HEAD
    has that the target lacks (the ones a rebase would replay). Both are newest
    first.
    """
    has_upstream: bool
    ahead_count: int = 0
    behind_count: int = 0
    commits: Tuple[CommitInfo, ...] = ()
    local_commits: Tuple[CommitInfo, ...] = ()
    current_version: str = UNKNOWN_VERSION
    latest_version: str = UNKNOWN_VERSION
    is_downgrade: bool = False


@dataclass(frozen=True)
class IntegrationOutcome:
    success: bool
    has_conflict: bool = False
    conflict_files: Tuple[str, ...] = ()
    error: Optional[str] = None
    is_rebase_conflict: bool = False


@dataclass(frozen=True)
class SyncOptions:
    check_only: bool = False
    skip_backup: bool = False
    force: bool = False
    target_tag: Optional[str] = None
    rebase: bool = False
    dry_run: bool = False

    @property
    def is_read_only(self) -> bool:
        """Check-only and dry-run sessions stop at the preview."""
        return self.check_only or self.dry_run

    @property
    def auto_confirm(self) -> bool:
        return self.force and not self.is_read_only


@dataclass(frozen=True)
class SyncSession:
    options: SyncOptions
    phase: Phase = Phase.CHECKING
    repo_status: Optional[RepositoryStatus] = None
    summary: Optional[RemoteSyncSummary] = None
    outcome: Optional[IntegrationOutcome] = None
    backup_file: str = ""
    error: str = ""
    branch_warning: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.phase.is_terminal


# --- Events ---

@dataclass(frozen=True)
class Event:
    """Base class for everything the reducer consumes."""


@dataclass(frozen=True)
class GitChecked(Event):
    status: RepositoryStatus


@dataclass(frozen=True)
class Fetched(Event):
    summary: RemoteSyncSummary


@dataclass(frozen=True)
class BackupConfirm(Event):
    pass


@dataclass(frozen=True)
class BackupSkip(Event):
    pass


@dataclass(frozen=True)
class BackupDone(Event):
    backup_file: str


@dataclass(frozen=True)
class UpdateConfirm(Event):
    pass


@dataclass(frozen=True)
class Merged(Event):
    outcome: IntegrationOutcome


@dataclass(frozen=True)
class Installed(Event):
    pass


@dataclass(frozen=True)
class ErrorEvent(Event):
    error: str = field(default="")
