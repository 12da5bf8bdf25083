# src/koharu/runner.py: Drives an update session to completion.
# This module owns the event loop around the reducer. It starts the effect of a
# phase once the reducer has settled into it, feeds effect results back as
# events, asks the user at the two decision points (backup and preview) and
# stops at a terminal phase or at the preview of a read-only session. Events
# emitted on behalf of a phase the session has already left are discarded.

import queue
from functools import partial
from typing import Callable, Dict, Optional, Protocol

from .backup import BackupResult, run_backup
from .effects import STATUS_EFFECTS, Cancel, EffectFn, SyncContext
from .merge import abort_merge, abort_rebase
from .models import (
    BackupConfirm,
    BackupDone,
    BackupSkip,
    ErrorEvent,
    Event,
    IntegrationOutcome,
    Phase,
    SyncOptions,
    SyncSession,
    UpdateConfirm,
)
from .reducer import create_initial_session, update_reducer
from .upstream import display_version
from .util.log import get_logger, phase_context

logger = get_logger(__name__)

BackupRunner = Callable[[bool], BackupResult]


class Prompter(Protocol):
    def confirm(self, question: str, default: bool = False) -> bool:
        ...


class SessionRunner:
    """
    Runs one update session.

    `on_change` is called with every new session after a phase change, which
    is how the terminal view follows along.
    """

    def __init__(
        self,
        ctx: SyncContext,
        options: SyncOptions,
        prompter: Prompter,
        backup_runner: Optional[BackupRunner] = None,
        on_change: Optional[Callable[[SyncSession], None]] = None,
        effects: Optional[Dict[Phase, EffectFn]] = None,
    ):
        self.ctx = ctx
        self.prompter = prompter
        self.backup_runner = backup_runner or partial(run_backup, ctx.project_root, ctx.config)
        self.on_change = on_change
        self.effects = STATUS_EFFECTS if effects is None else effects
        self.session = create_initial_session(options)
        self.cancelled = False
        self.history = [self.session.phase]
        self._events: "queue.Queue[tuple]" = queue.Queue()
        self._generation = 0
        self._cancel_effect: Optional[Cancel] = None

    @property
    def stopped_at_preview(self) -> bool:
        return self.session.phase is Phase.PREVIEW and self.session.options.is_read_only

    # --- Event handling ---

    def _emitter(self, generation: int):
        def emit(event: Event) -> None:
            self._events.put((generation, event))
        return emit

    def dispatch(self, event: Event) -> SyncSession:
        previous = self.session
        self.session = update_reducer(previous, event, self.ctx.config.upstream.main_branch)
        if self.session.phase is not previous.phase:
            self._enter_phase(previous.phase)
        return self.session

    def _enter_phase(self, previous: Optional[Phase]) -> None:
        if self._cancel_effect is not None:
            self._cancel_effect()
            self._cancel_effect = None
        self._generation += 1

        phase = self.session.phase
        phase_context.set(phase.value)
        if previous is not None:
            self.history.append(phase)
            logger.info(f"{previous.value} -> {phase.value}")
        if phase is Phase.ERROR:
            logger.error(self.session.error)
        if self.on_change:
            self.on_change(self.session)

        effect = self.effects.get(phase)
        if effect is not None:
            self._cancel_effect = effect(self.session, self._emitter(self._generation), self.ctx)

    def _wait_for_event(self) -> None:
        generation, event = self._events.get()
        if generation != self._generation:
            logger.debug(f"Discarding stale {type(event).__name__}")
            return
        self.dispatch(event)

    # --- Decision points ---

    def _backup_step(self) -> None:
        options = self.session.options
        if options.is_read_only:
            # Nothing will be integrated, so nothing is written either.
            self.dispatch(BackupSkip())
            return
        if options.rebase:
            question = "Rebase rewrites history and requires a backup. Back up now and continue?"
        else:
            question = "Back up your content before updating?"

        if not self.prompter.confirm(question, default=True):
            if options.rebase:
                self.cancelled = True
            else:
                self.dispatch(BackupSkip())
            return

        self.dispatch(BackupConfirm())
        try:
            result = self.backup_runner(True)
        except Exception as e:
            logger.error(f"Backup failed: {e}", exc_info=True)
            self.dispatch(ErrorEvent(f"backup failed: {e}"))
            return
        self.dispatch(BackupDone(result.backup_file.name))

    def _preview_step(self) -> None:
        options = self.session.options
        if options.auto_confirm:
            self.dispatch(UpdateConfirm())
            return
        if self.prompter.confirm(self._preview_question(), default=False):
            self.dispatch(UpdateConfirm())
        else:
            self.cancelled = True

    def _preview_question(self) -> str:
        options = self.session.options
        summary = self.session.summary
        version = display_version(summary.latest_version) if summary else "the target"
        if options.rebase:
            target = f"version {version}" if options.target_tag else "the latest upstream"
            return f"Rebase onto {target}? (history will be rewritten)"
        if summary and summary.is_downgrade:
            return f"Roll back to version {version}?"
        target = f"version {version}" if options.target_tag else "the latest version"
        return f"Update to {target}?"

    # --- Main loop ---

    def run(self) -> SyncSession:
        self._enter_phase(None)
        try:
            while not self.session.is_terminal and not self.cancelled:
                phase = self.session.phase
                if phase is Phase.PREVIEW and self.session.options.is_read_only:
                    break
                if phase is Phase.BACKUP_CONFIRM:
                    self._backup_step()
                elif phase is Phase.PREVIEW:
                    self._preview_step()
                else:
                    self._wait_for_event()
        finally:
            if self._cancel_effect is not None:
                self._cancel_effect()
                self._cancel_effect = None
        return self.session


def abort_integration(ctx: SyncContext, outcome: IntegrationOutcome) -> bool:
    """Undo a conflicted integration with the abort matching its strategy."""
    if outcome.is_rebase_conflict:
        return abort_rebase(ctx.project_root)
    return abort_merge(ctx.project_root)
