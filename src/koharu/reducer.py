# src/koharu/reducer.py: The update state machine.
# This module holds every transition rule of an update session in one pure
# function. It performs no I/O: effects run elsewhere and report back through
# events. An event that does not belong to the current phase leaves the session
# unchanged, and terminal phases absorb every event.

from dataclasses import replace

from .models import (
    BackupConfirm,
    BackupDone,
    BackupSkip,
    ErrorEvent,
    Event,
    Fetched,
    GitChecked,
    Installed,
    Merged,
    Phase,
    RemoteSyncSummary,
    SyncOptions,
    SyncSession,
    UpdateConfirm,
)
from .upstream import versions_match

DEFAULT_MAIN_BRANCH = "main"


def create_initial_session(options: SyncOptions) -> SyncSession:
    return SyncSession(options=options, phase=Phase.CHECKING)


def has_changes(summary: RemoteSyncSummary) -> bool:
    """
    True if integrating the target would change anything.

    Matching versions mean up to date even when commit hashes differ, which is
    the normal state after a squash merge.
    """
    if versions_match(summary.current_version, summary.latest_version):
        return False
    return summary.behind_count > 0 or (summary.is_downgrade and summary.ahead_count > 0)


def _after_fetch_phase(options: SyncOptions) -> Phase:
    # Rebase rewrites history, so it always goes through the backup prompt.
    if options.rebase:
        return Phase.BACKUP_CONFIRM
    if options.skip_backup or options.force:
        return Phase.PREVIEW
    return Phase.BACKUP_CONFIRM


def update_reducer(session: SyncSession, event: Event, main_branch: str = DEFAULT_MAIN_BRANCH) -> SyncSession:
    """Returns the session that follows `session` after `event`."""
    phase = session.phase
    options = session.options

    if phase.is_terminal:
        return session

    if isinstance(event, ErrorEvent):
        return replace(session, phase=Phase.ERROR, error=event.error)

    if phase is Phase.CHECKING:
        if not isinstance(event, GitChecked):
            return session
        status = event.status
        branch_warning = ""
        if status.current_branch != main_branch:
            branch_warning = (
                f"You are on branch '{status.current_branch}'; "
                f"updating from '{main_branch}' is recommended."
            )
        if not status.is_clean and not options.force:
            return replace(session, phase=Phase.DIRTY_WARNING, repo_status=status, branch_warning=branch_warning)
        return replace(session, phase=Phase.FETCHING, repo_status=status, branch_warning=branch_warning)

    if phase is Phase.FETCHING:
        if not isinstance(event, Fetched):
            return session
        summary = event.summary
        if not has_changes(summary):
            return replace(session, phase=Phase.UP_TO_DATE, summary=summary)
        return replace(session, phase=_after_fetch_phase(options), summary=summary)

    if phase is Phase.BACKUP_CONFIRM:
        if isinstance(event, BackupConfirm):
            return replace(session, phase=Phase.BACKING_UP)
        if isinstance(event, BackupSkip):
            return replace(session, phase=Phase.PREVIEW)
        return session

    if phase is Phase.BACKING_UP:
        if isinstance(event, BackupDone):
            return replace(session, phase=Phase.PREVIEW, backup_file=event.backup_file)
        return session

    if phase is Phase.PREVIEW:
        # Cancelling at the preview ends the session outside the reducer.
        if isinstance(event, UpdateConfirm):
            return replace(session, phase=Phase.MERGING)
        return session

    if phase is Phase.MERGING:
        if not isinstance(event, Merged):
            return session
        outcome = event.outcome
        if outcome.has_conflict:
            return replace(session, phase=Phase.CONFLICT, outcome=outcome)
        if not outcome.success:
            return replace(session, phase=Phase.ERROR, outcome=outcome, error=outcome.error or "Merge failed")
        return replace(session, phase=Phase.INSTALLING, outcome=outcome)

    if phase is Phase.INSTALLING:
        if isinstance(event, Installed):
            return replace(session, phase=Phase.DONE)
        return session

    return session
