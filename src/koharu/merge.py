# src/koharu/merge.py: Integration strategies and conflict recovery.
# This module applies the upstream changes to the working branch using one of
# three mutually exclusive strategies (rebase, downgrade via checkout+commit, or
# the default squash merge) and classifies a failure as either a content
# conflict or a plain error. It also provides the abort commands offered to the
# user once a conflict has been reported.

from pathlib import Path
from typing import List, Optional

from .config import KoharuConfig
from .gitwrap import git_has_changes, git_status_porcelain, porcelain_path, run_git, try_git
from .models import IntegrationOutcome
from .upstream import display_version, normalize_tag, read_manifest_version, resolve_target_ref
from .util.errors import GitCommandError
from .util.log import get_logger

logger = get_logger(__name__)

UNMERGED_STATUS_CODES = ("AA", "DD")


def get_conflict_files(cwd: Path) -> List[str]:
    """
    Files left unmerged by a failed merge or rebase, first-seen order, no duplicates.

    The index's unmerged-path list is authoritative; the porcelain status codes
    (any 'U', or both-added / both-deleted) are scanned only when it is empty.
    """
    diff_output = try_git(["diff", "--name-only", "--diff-filter=U"], cwd=cwd) or ""
    files = [line.strip() for line in diff_output.splitlines() if line.strip()]

    if not files:
        for line in git_status_porcelain(cwd):
            code = line[:2]
            if "U" in code or code in UNMERGED_STATUS_CODES:
                files.append(porcelain_path(line))

    return list(dict.fromkeys(files))


def _squash_commit_message(cwd: Path, config: KoharuConfig, target_ref: str, normalized_tag: Optional[str]) -> str:
    version_info = "latest"
    if normalized_tag:
        version_info = normalized_tag
    else:
        version = read_manifest_version(cwd, target_ref, config.manifest)
        if version:
            version_info = display_version(version)
    return f"chore: update theme to {version_info}\n\nSquashed merge from upstream"


def merge_upstream(
    cwd: Path,
    config: KoharuConfig,
    target_tag: Optional[str] = None,
    is_downgrade: bool = False,
    rebase: bool = False,
) -> IntegrationOutcome:
    """
    Integrate the target reference into the current branch.

    Strategies, in order of precedence:
      * rebase: replay local commits on top of the target.
      * downgrade (tagged target already passed by HEAD): overwrite the tree
        with the tag's content and record it as a new commit.
      * squash merge: bring the target in as a single commit, tolerating
        unrelated histories for a fork's first sync.

    Commits are only created when the tree actually changed. Never raises;
    every failure is reported through the returned outcome.
    """
    normalized_tag = normalize_tag(target_tag) if target_tag else None
    target_ref = resolve_target_ref(config.upstream, target_tag)

    try:
        if rebase:
            logger.info(f"Rebasing onto {target_ref}")
            run_git(["rebase", target_ref], cwd=cwd)
        elif is_downgrade and normalized_tag:
            logger.info(f"Downgrading working tree to {normalized_tag}")
            run_git(["checkout", normalized_tag, "--", "."], cwd=cwd)
            if git_has_changes(cwd):
                run_git(["commit", "-m", f"Downgrade to {normalized_tag}"], cwd=cwd)
        else:
            logger.info(f"Squash merging {target_ref}")
            run_git(["merge", "--squash", "--allow-unrelated-histories", target_ref], cwd=cwd)
            if git_has_changes(cwd):
                message = _squash_commit_message(cwd, config, target_ref, normalized_tag)
                run_git(["commit", "-m", message], cwd=cwd)
        return IntegrationOutcome(success=True)
    except GitCommandError as e:
        # A checkout-based downgrade has nothing to three-way merge.
        if is_downgrade and not rebase:
            logger.error(f"Downgrade failed: {e}")
            return IntegrationOutcome(success=False, error=str(e))

        conflict_files = get_conflict_files(cwd)
        if conflict_files:
            logger.warning(f"Integration stopped on {len(conflict_files)} conflicting file(s)")
            return IntegrationOutcome(
                success=False,
                has_conflict=True,
                conflict_files=tuple(conflict_files),
                is_rebase_conflict=rebase,
            )

        logger.error(f"Integration failed: {e}")
        return IntegrationOutcome(success=False, error=str(e))


def abort_merge(cwd: Path) -> bool:
    """
    Runs `git merge --abort`; False if git refuses.

    A squash merge leaves no MERGE_HEAD, so `merge --abort` refuses it;
    `reset --merge` restores the same pre-merge state in that case.
    """
    try:
        run_git(["merge", "--abort"], cwd=cwd)
        return True
    except GitCommandError as e:
        logger.debug(f"merge --abort failed, trying reset --merge: {e}")
    try:
        run_git(["reset", "--merge"], cwd=cwd)
        return True
    except GitCommandError as e:
        logger.warning(f"Could not abort merge: {e}")
        return False


def abort_rebase(cwd: Path) -> bool:
    """Runs `git rebase --abort`; False if git refuses."""
    try:
        run_git(["rebase", "--abort"], cwd=cwd)
        return True
    except GitCommandError as e:
        logger.warning(f"rebase --abort failed: {e}")
        return False
