# src/koharu/effects.py: Per-phase side effects of an update session.
# This module maps the phases that need I/O to the function performing it.
# Each effect reads the session, does its git or process work, and reports the
# result as exactly one event through `emit`. Exceptions never reach the
# reducer; they are converted into ErrorEvent here. Phases without an entry in
# STATUS_EFFECTS are pure waypoints driven by user input.

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from .config import KoharuConfig
from .install import InstallResult, OutputObserver, start_install
from .merge import merge_upstream
from .models import ErrorEvent, Event, Fetched, GitChecked, Installed, Merged, Phase, SyncSession
from .upstream import (
    check_git_status,
    ensure_upstream_remote,
    fetch_upstream,
    get_update_info,
    has_upstream_tracking_ref,
    list_recent_tags,
    normalize_tag,
    tag_exists,
)
from .util.log import get_logger

logger = get_logger(__name__)

Emit = Callable[[Event], None]
Cancel = Callable[[], None]


@dataclass
class SyncContext:
    """Everything an effect needs besides the session itself."""
    project_root: Path
    config: KoharuConfig
    on_output: Optional[OutputObserver] = None


EffectFn = Callable[[SyncSession, Emit, SyncContext], Optional[Cancel]]


def _describe(err: Exception) -> str:
    return str(err) or err.__class__.__name__


def checking_effect(session: SyncSession, emit: Emit, ctx: SyncContext) -> Optional[Cancel]:
    upstream = ctx.config.upstream
    check_only = session.options.check_only
    try:
        status = check_git_status(ctx.project_root)

        # Check-only sessions must not modify the repository, remotes included.
        result = ensure_upstream_remote(ctx.project_root, upstream, allow_add=not check_only)
        if not result.success:
            if result.reason == "mismatch":
                current_url = result.current_url or "unknown"
                emit(ErrorEvent(
                    f"Remote '{upstream.remote}' points to {current_url}. "
                    f"Change it to {upstream.url} manually: "
                    f"git remote set-url {upstream.remote} {upstream.url}"
                ))
                return None
            if result.reason == "missing" and check_only:
                emit(ErrorEvent(
                    f"Check mode does not modify the repository. Add the remote first "
                    f"(git remote add {upstream.remote} {upstream.url}) or run without --check."
                ))
                return None
            emit(ErrorEvent(f"Could not add remote '{upstream.remote}' ({upstream.url})."))
            return None

        emit(GitChecked(status))
    except Exception as e:
        logger.error(f"Git status check failed: {e}", exc_info=True)
        emit(ErrorEvent(_describe(e)))
    return None


def fetching_effect(session: SyncSession, emit: Emit, ctx: SyncContext) -> Optional[Cancel]:
    upstream = ctx.config.upstream
    try:
        if session.options.check_only:
            # No network in check mode: rely on whatever was fetched before.
            if not has_upstream_tracking_ref(ctx.project_root, upstream):
                emit(ErrorEvent(
                    f"Check mode does not run git fetch. Run 'git fetch {upstream.remote}' first."
                ))
                return None
        elif not fetch_upstream(ctx.project_root, upstream):
            emit(ErrorEvent(
                f"Could not fetch updates from '{upstream.remote}'. Check your network connection."
            ))
            return None

        target_tag = session.options.target_tag
        if target_tag and not tag_exists(ctx.project_root, target_tag):
            recent = list_recent_tags(ctx.project_root)
            hint = f" Recent tags: {', '.join(recent)}" if recent else ""
            emit(ErrorEvent(f"Tag {normalize_tag(target_tag)} does not exist.{hint}"))
            return None

        summary = get_update_info(ctx.project_root, ctx.config, target_tag)
        emit(Fetched(summary))
    except Exception as e:
        logger.error(f"Fetching update info failed: {e}", exc_info=True)
        emit(ErrorEvent(_describe(e)))
    return None


def merging_effect(session: SyncSession, emit: Emit, ctx: SyncContext) -> Optional[Cancel]:
    options = session.options
    is_downgrade = bool(session.summary and session.summary.is_downgrade)
    try:
        outcome = merge_upstream(
            ctx.project_root,
            ctx.config,
            target_tag=options.target_tag,
            is_downgrade=is_downgrade,
            rebase=options.rebase,
        )
    except Exception as e:
        logger.error(f"Integration crashed: {e}", exc_info=True)
        emit(ErrorEvent(_describe(e)))
        return None
    emit(Merged(outcome))
    return None


def installing_effect(session: SyncSession, emit: Emit, ctx: SyncContext) -> Optional[Cancel]:
    def on_done(result: InstallResult):
        if not result.success:
            emit(ErrorEvent(f"Dependency install failed: {result.error}"))
            return
        emit(Installed())

    try:
        handle = start_install(
            ctx.project_root,
            ctx.config.install.command,
            on_done=on_done,
            on_output=ctx.on_output,
        )
    except Exception as e:
        logger.error(f"Could not start dependency install: {e}", exc_info=True)
        emit(ErrorEvent(_describe(e)))
        return None
    return handle.cancel


STATUS_EFFECTS: Dict[Phase, EffectFn] = {
    Phase.CHECKING: checking_effect,
    Phase.FETCHING: fetching_effect,
    Phase.MERGING: merging_effect,
    Phase.INSTALLING: installing_effect,
}
