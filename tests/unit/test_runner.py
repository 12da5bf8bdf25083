# tests/unit/test_runner.py: Unit tests for the session runner.

import pytest
from pathlib import Path
from unittest.mock import MagicMock, patch

from koharu.backup import BackupResult
from koharu.config import KoharuConfig
from koharu.effects import SyncContext
from koharu.models import (
    CommitInfo,
    ErrorEvent,
    Fetched,
    GitChecked,
    Installed,
    IntegrationOutcome,
    Merged,
    Phase,
    RemoteSyncSummary,
    RepositoryStatus,
    SyncOptions,
)
from koharu.runner import SessionRunner, abort_integration
from koharu.util.errors import BackupError

CLEAN = RepositoryStatus(current_branch="main", is_clean=True, uncommitted_count=0)
BEHIND = RemoteSyncSummary(has_upstream=True, behind_count=2, current_version="1.0.0", latest_version="1.1.0")


class FakePrompter:
    def __init__(self, *answers: bool):
        self.answers = list(answers)
        self.questions = []

    def confirm(self, question: str, default: bool = False) -> bool:
        self.questions.append(question)
        return self.answers.pop(0)


def fake_effects(merge_outcome=IntegrationOutcome(success=True), summary=BEHIND, install_cancel=None, status=CLEAN):
    calls = []

    def effect(event):
        def run(session, emit, ctx):
            calls.append(session.phase)
            emit(event)
            return install_cancel if session.phase is Phase.INSTALLING else None
        return run

    effects = {
        Phase.CHECKING: effect(GitChecked(status)),
        Phase.FETCHING: effect(Fetched(summary)),
        Phase.MERGING: effect(Merged(merge_outcome)),
        Phase.INSTALLING: effect(Installed()),
    }
    return effects, calls


@pytest.fixture
def ctx(tmp_path: Path) -> SyncContext:
    return SyncContext(project_root=tmp_path, config=KoharuConfig())


def backup_ok(force: bool) -> BackupResult:
    return BackupResult(backup_file=Path("/tmp/backups/backup-2024-05-01-101010.tar.gz"), file_count=3)


def test_full_session_with_backup(ctx):
    effects, calls = fake_effects()
    prompter = FakePrompter(True, True)
    seen = []
    runner = SessionRunner(ctx, SyncOptions(), prompter, backup_runner=backup_ok, on_change=lambda s: seen.append(s.phase), effects=effects)

    session = runner.run()

    assert session.phase is Phase.DONE
    assert session.backup_file == "backup-2024-05-01-101010.tar.gz"
    assert runner.history == [
        Phase.CHECKING, Phase.FETCHING, Phase.BACKUP_CONFIRM, Phase.BACKING_UP,
        Phase.PREVIEW, Phase.MERGING, Phase.INSTALLING, Phase.DONE,
    ]
    assert seen == runner.history
    assert calls == [Phase.CHECKING, Phase.FETCHING, Phase.MERGING, Phase.INSTALLING]
    assert prompter.questions[1] == "Update to the latest version?"

def test_force_auto_confirms_without_prompting(ctx):
    effects, _ = fake_effects()
    prompter = FakePrompter()
    runner = SessionRunner(ctx, SyncOptions(force=True), prompter, backup_runner=backup_ok, effects=effects)
    assert runner.run().phase is Phase.DONE
    assert prompter.questions == []

def test_dry_run_with_force_stops_at_preview(ctx):
    effects, calls = fake_effects()
    prompter = FakePrompter()
    runner = SessionRunner(ctx, SyncOptions(force=True, dry_run=True), prompter, effects=effects)
    session = runner.run()
    assert session.phase is Phase.PREVIEW
    assert runner.stopped_at_preview
    assert Phase.MERGING not in calls

def test_check_only_skips_backup_prompt_and_stops(ctx):
    effects, _ = fake_effects()
    prompter = FakePrompter()
    backup_runner = MagicMock()
    runner = SessionRunner(ctx, SyncOptions(check_only=True), prompter, backup_runner=backup_runner, effects=effects)
    session = runner.run()
    assert session.phase is Phase.PREVIEW
    assert Phase.BACKUP_CONFIRM in runner.history
    assert prompter.questions == []
    backup_runner.assert_not_called()

def test_declining_backup_skips_it(ctx):
    effects, _ = fake_effects()
    backup_runner = MagicMock()
    runner = SessionRunner(ctx, SyncOptions(), FakePrompter(False, True), backup_runner=backup_runner, effects=effects)
    session = runner.run()
    assert session.phase is Phase.DONE
    assert session.backup_file == ""
    backup_runner.assert_not_called()

def test_declining_preview_cancels(ctx):
    effects, calls = fake_effects()
    runner = SessionRunner(ctx, SyncOptions(skip_backup=True), FakePrompter(False), effects=effects)
    session = runner.run()
    assert runner.cancelled
    assert session.phase is Phase.PREVIEW
    assert Phase.MERGING not in calls

def test_rebase_forces_backup_prompt_even_with_force(ctx):
    effects, _ = fake_effects()
    prompter = FakePrompter(True)
    runner = SessionRunner(ctx, SyncOptions(rebase=True, skip_backup=True, force=True), prompter, backup_runner=backup_ok, effects=effects)
    session = runner.run()
    assert Phase.BACKUP_CONFIRM in runner.history
    assert session.phase is Phase.DONE
    assert len(prompter.questions) == 1
    assert "Rebase" in prompter.questions[0]

def test_rebase_backup_declined_cancels(ctx):
    effects, calls = fake_effects()
    runner = SessionRunner(ctx, SyncOptions(rebase=True), FakePrompter(False), effects=effects)
    session = runner.run()
    assert runner.cancelled
    assert session.phase is Phase.BACKUP_CONFIRM
    assert Phase.MERGING not in calls

def test_backup_failure_becomes_error(ctx):
    effects, _ = fake_effects()

    def failing_backup(force):
        raise BackupError("disk full")

    runner = SessionRunner(ctx, SyncOptions(), FakePrompter(True), backup_runner=failing_backup, effects=effects)
    session = runner.run()
    assert session.phase is Phase.ERROR
    assert session.error == "backup failed: disk full"

def test_forced_dirty_update_skips_backup_phases(ctx):
    """Dirty tree, force and skip-backup with three incoming commits."""
    dirty = RepositoryStatus(current_branch="main", is_clean=False, uncommitted_count=1, uncommitted_files=("draft.md",))
    incoming = tuple(
        CommitInfo(hash=f"c{i}", message=f"upstream change {i}", date="1 day ago", author="theme") for i in range(3)
    )
    summary = RemoteSyncSummary(
        has_upstream=True, behind_count=3, commits=incoming, current_version="1.0.0", latest_version="1.1.0"
    )
    effects, calls = fake_effects(summary=summary, status=dirty)
    backup_runner = MagicMock()
    prompter = FakePrompter()
    runner = SessionRunner(
        ctx, SyncOptions(force=True, skip_backup=True), prompter, backup_runner=backup_runner, effects=effects
    )

    session = runner.run()

    assert runner.history[:3] == [Phase.CHECKING, Phase.FETCHING, Phase.PREVIEW]
    assert Phase.BACKUP_CONFIRM not in runner.history
    assert Phase.BACKING_UP not in runner.history
    assert session.phase is Phase.DONE
    assert len(session.summary.commits) == 3
    assert session.repo_status == dirty
    assert prompter.questions == []
    backup_runner.assert_not_called()

def test_conflict_is_terminal(ctx):
    outcome = IntegrationOutcome(success=False, has_conflict=True, conflict_files=("a.ts",))
    effects, calls = fake_effects(merge_outcome=outcome)
    runner = SessionRunner(ctx, SyncOptions(force=True), FakePrompter(), effects=effects)
    session = runner.run()
    assert session.phase is Phase.CONFLICT
    assert Phase.INSTALLING not in calls

def test_up_to_date_ends_session(ctx):
    summary = RemoteSyncSummary(has_upstream=True, behind_count=3, current_version="1.1.0", latest_version="v1.1.0")
    effects, _ = fake_effects(summary=summary)
    runner = SessionRunner(ctx, SyncOptions(), FakePrompter(), effects=effects)
    assert runner.run().phase is Phase.UP_TO_DATE

def test_stale_events_are_discarded(ctx):
    effects, _ = fake_effects()

    def noisy_checking(session, emit, ctx):
        emit(GitChecked(CLEAN))
        # Arrives after the session left 'checking'.
        emit(ErrorEvent("late"))
        return None

    effects[Phase.CHECKING] = noisy_checking
    runner = SessionRunner(ctx, SyncOptions(force=True), FakePrompter(), effects=effects)
    session = runner.run()
    assert session.phase is Phase.DONE
    assert session.error == ""

def test_pending_effect_is_cancelled_on_phase_exit(ctx):
    cancel = MagicMock()
    effects, _ = fake_effects(install_cancel=cancel)
    runner = SessionRunner(ctx, SyncOptions(force=True), FakePrompter(), effects=effects)
    assert runner.run().phase is Phase.DONE
    cancel.assert_called_once()

def test_error_from_effect(ctx):
    effects, _ = fake_effects()
    effects[Phase.FETCHING] = lambda session, emit, ctx: emit(ErrorEvent("offline"))
    runner = SessionRunner(ctx, SyncOptions(), FakePrompter(), effects=effects)
    session = runner.run()
    assert session.phase is Phase.ERROR
    assert session.error == "offline"


# --- abort ---

@patch("koharu.runner.abort_rebase", return_value=True)
@patch("koharu.runner.abort_merge")
def test_abort_integration_rebase(mock_merge, mock_rebase, ctx):
    outcome = IntegrationOutcome(success=False, has_conflict=True, is_rebase_conflict=True)
    assert abort_integration(ctx, outcome) is True
    mock_rebase.assert_called_once_with(ctx.project_root)
    mock_merge.assert_not_called()

@patch("koharu.runner.abort_rebase")
@patch("koharu.runner.abort_merge", return_value=False)
def test_abort_integration_merge(mock_merge, mock_rebase, ctx):
    outcome = IntegrationOutcome(success=False, has_conflict=True)
    assert abort_integration(ctx, outcome) is False
    mock_merge.assert_called_once_with(ctx.project_root)
    mock_rebase.assert_not_called()
