# src/koharu/view.py: Terminal rendering of an update session.
# This module turns a SyncSession into rich renderables. It is a pure view: it
# reads the session and never changes it. Terminal phases render the outcome
# together with the commands the user can run next.

from typing import List, Optional

from rich.console import Group, RenderableType
from rich.text import Text

from .models import Phase, SyncSession
from .release import ReleaseInfo, build_release_url, extract_release_summary
from .upstream import display_version

MAX_LISTED = 10
MAX_DIRTY_FILES = 5

PROGRESS_LABELS = {
    Phase.CHECKING: "Checking Git status...",
    Phase.FETCHING: "Fetching updates...",
    Phase.BACKING_UP: "Backing up...",
    Phase.INSTALLING: "Installing dependencies...",
}


def progress_label(session: SyncSession) -> Optional[str]:
    """Spinner label for non-terminal phases that do work, else None."""
    if session.phase is Phase.MERGING:
        if session.options.rebase:
            return "Rebasing..."
        if session.summary and session.summary.is_downgrade:
            return "Rolling back..."
        return "Merging updates (squash merge)..."
    return PROGRESS_LABELS.get(session.phase)


def _hint(text: str) -> Text:
    return Text(f"  {text}", style="dim")


def render_dirty_warning(session: SyncSession) -> List[RenderableType]:
    status = session.repo_status
    lines: List[RenderableType] = [Text("Working tree has uncommitted changes", style="bold yellow")]
    if status:
        for path in status.uncommitted_files[:MAX_DIRTY_FILES]:
            lines.append(_hint(f"- {path}"))
        if status.uncommitted_count > MAX_DIRTY_FILES:
            lines.append(_hint(f"... and {status.uncommitted_count - MAX_DIRTY_FILES} more"))
    lines += [
        Text(""),
        Text("Commit or stash your changes first:"),
        _hint('git add . && git commit -m "save changes"'),
        _hint("# or"),
        _hint("git stash"),
        Text(""),
        Text("Tip: --force skips this check (not recommended)", style="dim"),
    ]
    return lines


def render_preview(
    session: SyncSession,
    github_repo: str,
    release: Optional[ReleaseInfo] = None,
) -> List[RenderableType]:
    summary = session.summary
    options = session.options
    lines: List[RenderableType] = []
    if summary is None:
        return lines

    if options.rebase:
        lines.append(Text("REBASE mode: history will be rewritten!", style="bold red"))
    if session.backup_file:
        lines.append(Text(f"  + Backup written: {session.backup_file}", style="green"))
    if summary.is_downgrade and not options.rebase:
        lines.append(Text("This is a downgrade to an older version", style="bold yellow"))
        lines.append(Text("  Theme files will be overwritten; make sure your content is backed up", style="yellow"))
        if not session.backup_file:
            lines.append(Text("  No backup was taken! Cancelling and running 'koharu backup' first is strongly advised", style="red"))
    if session.branch_warning:
        lines.append(Text(session.branch_warning, style="yellow"))

    if summary.is_downgrade:
        heading, color = "Roll back", "yellow"
    elif options.target_tag:
        heading, color = "Update to version", "green"
    else:
        heading, color = "New version available", "green"
    version_line = Text(f"{heading}: ", style="bold")
    version_line.append(display_version(summary.current_version), style="cyan")
    version_line.append(" -> ")
    version_line.append(display_version(summary.latest_version), style=color)
    lines.append(version_line)

    if not summary.is_downgrade:
        if release and release.body:
            lines.append(Text("Release notes:", style="bold magenta"))
            for line in extract_release_summary(release.body):
                lines.append(_hint(line))
        else:
            lines.append(Text("(release notes unavailable)", style="dim"))
        if summary.latest_version != "unknown":
            lines.append(Text(f"Full notes: {build_release_url(github_repo, summary.latest_version)}", style="blue"))

    if summary.is_downgrade:
        lines.append(Text(f"{summary.ahead_count} commit(s) will be removed:", style="bold"))
    else:
        lines.append(Text(f"{summary.behind_count} new commit(s):", style="bold"))
    marker, marker_style = ("-", "red") if summary.is_downgrade else ("+", "yellow")
    for commit in summary.commits[:MAX_LISTED]:
        line = Text(f"  {marker} {commit.hash}", style=marker_style)
        line.append(f" {commit.message}")
        line.append(f" ({commit.date})", style="dim")
        lines.append(line)
    if len(summary.commits) > MAX_LISTED:
        lines.append(_hint(f"... and {len(summary.commits) - MAX_LISTED} more"))

    if not summary.is_downgrade and summary.ahead_count > 0:
        lines.append(Text(f"Note: your fork is {summary.ahead_count} commit(s) ahead of the template", style="yellow"))

    if options.dry_run:
        lines.append(Text("Dry run: nothing was changed.", style="dim"))
        if options.rebase:
            lines.append(Text("A rebase would:"))
            lines.append(_hint("- replay your local commits on top of the target"))
            lines.append(_hint("- rewrite history (commit hashes change)"))
            lines.append(_hint("- require a backup first"))
            if summary.local_commits:
                lines.append(Text(f"Local commits to replay ({len(summary.local_commits)}):", style="bold"))
                for commit in summary.local_commits[:MAX_LISTED]:
                    line = Text(f"  {commit.hash}", style="cyan")
                    line.append(f" {commit.message}")
                    line.append(f" ({commit.date})", style="dim")
                    lines.append(line)
                if len(summary.local_commits) > MAX_LISTED:
                    lines.append(_hint(f"... and {len(summary.local_commits) - MAX_LISTED} more"))
    elif options.check_only:
        action = "roll back" if summary.is_downgrade else "update"
        lines.append(Text(f"Check mode: did not {action}.", style="dim"))
        if summary.is_downgrade:
            lines.append(Text("Back up your content before rolling back:", style="yellow"))
            lines.append(_hint("koharu backup"))
    elif not options.rebase and not summary.is_downgrade:
        lines.append(_hint("A squash merge keeps your history linear"))
    return lines


def render_done(session: SyncSession, github_repo: str) -> List[RenderableType]:
    summary = session.summary
    options = session.options
    downgrade = bool(summary and summary.is_downgrade) and not options.rebase
    if options.rebase:
        title = "Rebase complete"
    elif downgrade:
        title = "Rollback complete"
    else:
        title = "Update complete"
    lines: List[RenderableType] = [Text(title, style="bold green")]

    if downgrade:
        lines.append(Text(f"Rolled back to {display_version(summary.latest_version)}"))
    elif not options.rebase:
        lines.append(Text("Squash merge kept your history linear", style="dim"))
    if session.backup_file:
        lines.append(Text(f"Backup: {session.backup_file}", style="cyan"))

    if options.rebase:
        lines.append(Text("Your history now follows upstream. To go back, run:", style="yellow"))
        lines.append(Text("  koharu restore --latest", style="cyan"))
    elif summary and summary.latest_version != "unknown" and not downgrade:
        lines.append(Text(f"What's new: {build_release_url(github_repo, summary.latest_version)}", style="blue"))

    if downgrade:
        lines.append(Text("Important: restore your blog content now!", style="bold yellow"))
        if session.backup_file:
            lines.append(Text("  koharu restore --latest", style="cyan"))
        else:
            lines.append(Text("  No backup was taken; restore src/content/blog and config/site.yaml by hand", style="red"))

    lines.append(Text("Next steps:", style="dim"))
    if (downgrade or options.rebase) and session.backup_file:
        lines.append(_hint("koharu restore --latest  # restore the backup"))
    lines.append(_hint("pnpm dev  # start the dev server and check the site"))
    return lines


def render_conflict(session: SyncSession) -> List[RenderableType]:
    outcome = session.outcome
    rebase = bool(outcome and outcome.is_rebase_conflict)
    lines: List[RenderableType] = [
        Text("Rebase conflict" if rebase else "Merge conflict", style="bold yellow"),
        Text("Conflicting files:"),
    ]
    for path in (outcome.conflict_files if outcome else ()):
        lines.append(Text(f"  - {path}", style="red"))
    lines.append(Text("You can:"))
    if rebase:
        lines.append(_hint("1. Resolve the conflicts, then: git add . && git rebase --continue"))
        lines.append(_hint("2. Abort: git rebase --abort"))
    else:
        lines.append(_hint("1. Resolve the conflicts, then: git add . && git commit"))
        # A squash merge leaves no MERGE_HEAD for `git merge --abort` to undo.
        lines.append(_hint("2. Abort: git reset --merge"))
    if session.backup_file:
        lines.append(Text(f"Backup: {session.backup_file}", style="cyan"))
    return lines


def render_session(
    session: SyncSession,
    github_repo: str,
    release: Optional[ReleaseInfo] = None,
) -> RenderableType:
    """Renderable for the current phase of `session`."""
    phase = session.phase
    if phase is Phase.DIRTY_WARNING:
        return Group(*render_dirty_warning(session))
    if phase is Phase.PREVIEW:
        return Group(*render_preview(session, github_repo, release))
    if phase is Phase.DONE:
        return Group(*render_done(session, github_repo))
    if phase is Phase.CONFLICT:
        return Group(*render_conflict(session))
    if phase is Phase.UP_TO_DATE:
        title = "Already at that version" if session.options.target_tag else "Already up to date"
        version = session.summary.current_version if session.summary else "unknown"
        return Group(Text(title, style="bold green"), Text(f"Current version: {display_version(version)}"))
    if phase is Phase.ERROR:
        return Group(Text("Update failed", style="bold red"), Text(session.error, style="red"))
    if phase is Phase.BACKUP_CONFIRM:
        lines: List[RenderableType] = []
        if session.options.rebase:
            lines.append(Text("Rebase mode requires a backup", style="bold yellow"))
            if session.options.skip_backup:
                lines.append(Text("  (--skip-backup ignored)", style="yellow"))
        else:
            lines.append(Text("Tip: --skip-backup skips this prompt", style="dim"))
        return Group(*lines)
    return Text(progress_label(session) or phase.value, style="dim")
