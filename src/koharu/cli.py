# src/koharu/cli.py: Command-Line Interface (CLI) entry point.
# Implemented using Typer, this module provides the 'koharu' command. The
# 'update' subcommand runs the upstream synchronization session and maps its
# final phase to an exit status; the backup subcommands manage the content
# archives the update relies on.

import sys
from pathlib import Path
from typing import Optional

import typer
from filelock import FileLock, Timeout
from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from . import __version__
from .backup import list_backups, prune_backups, restore_backup, run_backup
from .config import KoharuConfig, load_config
from .effects import SyncContext
from .models import Phase, SyncOptions, SyncSession
from .release import fetch_release_info
from .runner import SessionRunner, abort_integration
from .util.errors import KoharuError, LockError
from .util.log import configure_logging, get_logger
from .util.paths import find_project_root, get_lock_path
from .view import progress_label, render_session

app = typer.Typer(
    name="koharu",
    help="Lifecycle tool for the koharu blog theme: update from upstream, back up and restore content.",
    add_completion=False,
)
console = Console()
logger = get_logger(__name__)

# Exit status per final phase; a cancelled session or a stopped preview exits 0.
PHASE_EXIT_CODES = {
    Phase.DONE: 0,
    Phase.UP_TO_DATE: 0,
    Phase.PREVIEW: 0,
    Phase.ERROR: 1,
    Phase.CONFLICT: 2,
    Phase.DIRTY_WARNING: 3,
}


class ConsolePrompter:
    """Yes/no questions on the console; declines when stdin is not a terminal."""

    def __init__(self, console: Console, interactive: Optional[bool] = None):
        self.console = console
        self.interactive = sys.stdin.isatty() if interactive is None else interactive

    def confirm(self, question: str, default: bool = False) -> bool:
        if not self.interactive:
            self.console.print(f"{question} [dim](non-interactive: no)[/dim]")
            return False
        return Confirm.ask(question, default=default, console=self.console)


def version_callback(value: bool):
    """Print the version and exit."""
    if value:
        print(f"koharu version: {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", callback=version_callback, is_eager=True, help="Show the version and exit."
    ),
):
    """
    koharu theme lifecycle CLI.
    """


def _load(project_root: Optional[Path], verbose: bool = False):
    """Resolves the project root and configuration, exiting on failure."""
    try:
        root = find_project_root(project_root)
        config = load_config(root)
    except KoharuError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(e.exit_code)
    configure_logging(config.logging.level, config.logging.json_format, verbose)
    return root, config


def exit_code_for(session: SyncSession, cancelled: bool, aborted: Optional[bool] = None) -> int:
    """
    Exit status for a finished session.

    `aborted` is the result of the abort offered after a conflict: a restored
    tree exits 0, a failed abort exits 1 like any other error.
    """
    if cancelled:
        return 0
    if session.phase is Phase.CONFLICT and aborted is not None:
        return 0 if aborted else PHASE_EXIT_CODES[Phase.ERROR]
    return PHASE_EXIT_CODES.get(session.phase, 1)


def _make_renderer(config: KoharuConfig):
    def on_change(session: SyncSession) -> None:
        label = progress_label(session)
        if label:
            console.print(f"[dim]{label}[/dim]")
            return
        release = None
        summary = session.summary
        if (
            session.phase is Phase.PREVIEW
            and summary is not None
            and not summary.is_downgrade
            and summary.latest_version != "unknown"
        ):
            release = fetch_release_info(config.upstream.github_repo, summary.latest_version)
        console.print(render_session(session, config.upstream.github_repo, release))
    return on_change


MANUAL_ABORT = {
    "rebase": "git rebase --abort",
    # A squash merge leaves no MERGE_HEAD, so `git merge --abort` refuses it.
    "merge": "git reset --merge",
}


def _offer_abort(ctx: SyncContext, session: SyncSession, prompter: ConsolePrompter) -> Optional[bool]:
    """Offers to abort a conflicted integration; None if the user declined."""
    outcome = session.outcome
    kind = "rebase" if outcome.is_rebase_conflict else "merge"
    if not prompter.confirm(f"Abort the {kind} and restore the previous state?", default=False):
        return None
    if abort_integration(ctx, outcome):
        console.print(f"[green]The {kind} was aborted; the working tree is back to its previous state.[/green]")
        return True
    logger.error(f"Could not abort the {kind}")
    console.print(f"[bold red]Could not abort the {kind}.[/bold red] Run '{MANUAL_ABORT[kind]}' manually.")
    return False


@app.command()
def update(
    tag: Optional[str] = typer.Argument(None, help="Release tag to sync to (e.g. v2.1.0). Defaults to the upstream tip."),
    tag_option: Optional[str] = typer.Option(None, "--tag", "-t", help="Same as the TAG argument."),
    check: bool = typer.Option(False, "--check", help="Only report whether an update exists; never modify the repository."),
    skip_backup: bool = typer.Option(False, "--skip-backup", help="Do not offer a backup (ignored with --rebase)."),
    force: bool = typer.Option(False, "--force", help="Skip the dirty-tree check and all confirmations."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the preview without changing anything."),
    rebase: bool = typer.Option(False, "--rebase", help="Replay local commits on top of upstream instead of squash merging."),
    project_root: Optional[Path] = typer.Option(None, "--project-root", help="Theme checkout to operate on. [default: current directory]"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Write debug logs to stderr."),
):
    """Sync the theme with the upstream template."""
    root, config = _load(project_root, verbose)
    options = SyncOptions(
        check_only=check,
        skip_backup=skip_backup,
        force=force,
        target_tag=tag or tag_option,
        rebase=rebase,
        dry_run=dry_run,
    )
    ctx = SyncContext(
        project_root=root,
        config=config,
        on_output=(lambda line: console.print(line.rstrip(), style="dim", markup=False, highlight=False)) if verbose else None,
    )
    prompter = ConsolePrompter(console)

    lock_path = get_lock_path(root)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(lock_path)
    aborted = None
    try:
        with lock.acquire(timeout=1):
            runner = SessionRunner(ctx, options, prompter, on_change=_make_renderer(config))
            session = runner.run()
            if session.phase is Phase.CONFLICT:
                aborted = _offer_abort(ctx, session, prompter)
    except Timeout:
        error = LockError(f"Another koharu update is running for {root}.")
        console.print(f"[bold red]Error:[/bold red] {error}")
        raise typer.Exit(error.exit_code)

    if runner.cancelled:
        logger.info(f"Update cancelled at {session.phase.value}")
        console.print("Update cancelled.")
    raise typer.Exit(exit_code_for(session, runner.cancelled, aborted))


@app.command()
def backup(
    force: bool = typer.Option(False, "--force", help="Write an archive even when no content matched."),
    full: bool = typer.Option(False, "--full", help="Complete backup including all images and assets."),
    project_root: Optional[Path] = typer.Option(None, "--project-root"),
):
    """Back up blog content and configuration."""
    root, config = _load(project_root)
    try:
        with console.status("Backing up...", spinner="dots"):
            result = run_backup(root, config, force=force, full=full)
    except KoharuError as e:
        console.print(f"[bold red]Backup failed:[/bold red] {e}")
        raise typer.Exit(e.exit_code)
    kind = "Full backup" if result.full else "Backed up"
    console.print(f"[bold green]{kind}: {result.file_count} file(s) to {result.backup_file}[/bold green]")


@app.command("list")
def list_command(project_root: Optional[Path] = typer.Option(None, "--project-root")):
    """List existing backups, newest first."""
    root, config = _load(project_root)
    entries = list_backups(root, config)
    if not entries:
        console.print("No backups found.")
        return
    table = Table("Name", "Created", "Type", "Version", "Files", "Size")
    for entry in entries:
        table.add_row(
            entry.name,
            entry.created,
            "full" if entry.full else "basic",
            entry.version or "-",
            str(entry.file_count) if entry.file_count is not None else "-",
            f"{entry.size / 1024:.1f} KiB",
        )
    console.print(table)


@app.command()
def restore(
    name: Optional[str] = typer.Argument(None, help="Backup file name. Omit with --latest."),
    latest: bool = typer.Option(False, "--latest", help="Restore the newest backup."),
    dry_run: bool = typer.Option(False, "--dry-run", help="List the files that would be restored."),
    force: bool = typer.Option(False, "--force", help="Skip the confirmation prompt."),
    project_root: Optional[Path] = typer.Option(None, "--project-root"),
):
    """Restore content from a backup."""
    root, config = _load(project_root)
    if not name and not latest:
        console.print("[bold red]Error:[/bold red] Pass a backup name or --latest.")
        raise typer.Exit(1)

    try:
        if not dry_run and not force:
            target = name or "the latest backup"
            if not ConsolePrompter(console).confirm(f"Overwrite project files with {target}?", default=False):
                console.print("Restore cancelled.")
                return
        restored = restore_backup(root, config, None if latest else name, dry_run=dry_run)
    except KoharuError as e:
        console.print(f"[bold red]Restore failed:[/bold red] {e}")
        raise typer.Exit(e.exit_code)

    for path in restored:
        console.print(f"  [dim]{path}[/dim]")
    verb = "Would restore" if dry_run else "Restored"
    console.print(f"[bold green]{verb} {len(restored)} file(s).[/bold green]")


@app.command()
def clean(
    keep: Optional[int] = typer.Option(None, "--keep", min=0, help="Number of newest backups to keep. [default: backup.keep or 5]"),
    project_root: Optional[Path] = typer.Option(None, "--project-root"),
):
    """Delete old backups."""
    root, config = _load(project_root)
    if keep is None:
        keep = config.backup.keep if config.backup.keep is not None else 5
    try:
        removed = prune_backups(root, config, keep)
    except KoharuError as e:
        console.print(f"[bold red]Clean failed:[/bold red] {e}")
        raise typer.Exit(e.exit_code)
    for path in removed:
        console.print(f"  [dim]removed {path.name}[/dim]")
    console.print(f"Removed {len(removed)} backup(s), kept up to {keep}.")


if __name__ == "__main__":
    app()
