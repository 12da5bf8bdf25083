# src/koharu/upstream.py: Upstream remote registration and drift detection.
# This module answers the read-only questions an update session asks before it
# touches anything: is the working tree clean, is the upstream template
# registered under the expected URL, how far has HEAD drifted from the target
# reference, and which versions are involved.

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlsplit

from .config import KoharuConfig, ManifestConfig, UpstreamConfig
from .gitwrap import (
    git_current_branch,
    git_status_porcelain,
    porcelain_path,
    run_git,
    try_git,
)
from .models import CommitInfo, RemoteSyncSummary, RepositoryStatus, UNKNOWN_VERSION
from .util.errors import GitCommandError
from .util.log import get_logger

logger = get_logger(__name__)

COMMIT_FORMAT = "%h|%s|%ar|%an"

_SCP_LIKE = re.compile(r"^[^@/]+@([^:]+):(.+)$")


@dataclass(frozen=True)
class EnsureUpstreamResult:
    existed: bool
    success: bool
    reason: Optional[str] = None  # 'mismatch' | 'missing' | 'add-failed'
    current_url: Optional[str] = None


# --- Working tree ---

def check_git_status(cwd: Path) -> RepositoryStatus:
    """Reads the branch name and uncommitted files of the working tree."""
    lines = git_status_porcelain(cwd)
    return RepositoryStatus(
        current_branch=git_current_branch(cwd),
        is_clean=not lines,
        uncommitted_count=len(lines),
        uncommitted_files=tuple(porcelain_path(line) for line in lines),
    )


# --- Remote registration ---

def normalize_remote_url(url: str) -> str:
    """
    Reduce a remote URL to 'host/path' so equivalent remotes compare equal.

    Only used for comparison: protocol, credentials, port and a trailing '.git'
    are dropped. 'https://github.com/org/repo.git' and 'git@github.com:org/repo'
    both become 'github.com/org/repo'.
    """
    trimmed = url.strip()
    if trimmed.startswith(("http://", "https://", "ssh://", "git://")):
        parsed = urlsplit(trimmed)
        if parsed.hostname:
            return f"{parsed.hostname}{_strip_git_suffix(parsed.path)}"
        return _strip_git_suffix(trimmed)

    scp_match = _SCP_LIKE.match(trimmed)
    if scp_match:
        host, path = scp_match.groups()
        return f"{host}/{_strip_git_suffix(path).lstrip('/')}"
    return _strip_git_suffix(trimmed)

def _strip_git_suffix(path: str) -> str:
    path = path.rstrip("/")
    return path[:-4] if path.endswith(".git") else path

def get_upstream_remote_url(cwd: Path, upstream: UpstreamConfig) -> Optional[str]:
    return try_git(["remote", "get-url", upstream.remote], cwd=cwd)

def has_upstream_remote(cwd: Path, upstream: UpstreamConfig) -> bool:
    return bool(get_upstream_remote_url(cwd, upstream))

def has_upstream_tracking_ref(cwd: Path, upstream: UpstreamConfig) -> bool:
    """True if refs/remotes/<remote>/<branch> exists locally (no network)."""
    ref = f"refs/remotes/{upstream.remote}/{upstream.main_branch}"
    return bool(try_git(["show-ref", "--verify", ref], cwd=cwd))

def add_upstream_remote(cwd: Path, upstream: UpstreamConfig) -> bool:
    try:
        run_git(["remote", "add", upstream.remote, upstream.url], cwd=cwd)
        return True
    except GitCommandError as e:
        logger.warning(f"Failed to add remote '{upstream.remote}': {e}")
        return False

def ensure_upstream_remote(cwd: Path, upstream: UpstreamConfig, allow_add: bool = True) -> EnsureUpstreamResult:
    """
    Make sure the upstream remote exists and points at the expected template.

    A remote pointing elsewhere is reported, never rewritten. With
    `allow_add=False` a missing remote is reported without touching the
    repository.
    """
    current_url = get_upstream_remote_url(cwd, upstream)
    if current_url:
        if normalize_remote_url(current_url) != normalize_remote_url(upstream.url):
            return EnsureUpstreamResult(existed=True, success=False, reason="mismatch", current_url=current_url)
        return EnsureUpstreamResult(existed=True, success=True, current_url=current_url)

    if not allow_add:
        return EnsureUpstreamResult(existed=False, success=False, reason="missing")

    if add_upstream_remote(cwd, upstream):
        logger.info(f"Added remote '{upstream.remote}' -> {upstream.url}")
        return EnsureUpstreamResult(existed=False, success=True)
    return EnsureUpstreamResult(existed=False, success=False, reason="add-failed")

def fetch_upstream(cwd: Path, upstream: UpstreamConfig) -> bool:
    """Fetches the upstream remote (including tags); False on any failure."""
    try:
        run_git(["fetch", "--tags", upstream.remote], cwd=cwd)
        return True
    except GitCommandError as e:
        logger.warning(f"Fetch from '{upstream.remote}' failed: {e}")
        return False


# --- Tags and versions ---

def normalize_tag(tag: str) -> str:
    """'2.1.0' -> 'v2.1.0'; tags already carrying the prefix are unchanged."""
    tag = tag.strip()
    return tag if tag.startswith("v") else f"v{tag}"

def tag_exists(cwd: Path, tag: str) -> bool:
    return bool(try_git(["show-ref", "--verify", f"refs/tags/{normalize_tag(tag)}"], cwd=cwd))

def list_recent_tags(cwd: Path, limit: int = 5) -> List[str]:
    output = try_git(["tag", "--sort=-creatordate", "--list", "v*"], cwd=cwd) or ""
    tags = [line.strip() for line in output.splitlines() if line.strip()]
    return tags[:limit]

def _parse_manifest_version(content: Optional[str], manifest: ManifestConfig) -> Optional[str]:
    if not content:
        return None
    try:
        data = json.loads(content)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    version = data.get(manifest.version_key)
    return str(version) if version else None

def read_manifest_version(cwd: Path, ref: str, manifest: ManifestConfig) -> Optional[str]:
    """Version declared in the manifest at `ref`; None if unreadable."""
    content = try_git(["show", f"{ref}:{manifest.file}"], cwd=cwd)
    return _parse_manifest_version(content, manifest)

def read_current_version(cwd: Path, manifest: ManifestConfig) -> str:
    """Version declared in the working-tree manifest, or 'unknown'."""
    try:
        content = (Path(cwd) / manifest.file).read_text(encoding="utf-8")
    except OSError:
        return UNKNOWN_VERSION
    return _parse_manifest_version(content, manifest) or UNKNOWN_VERSION

def strip_version(version: str) -> str:
    version = version.strip()
    return version[1:] if version.startswith("v") else version

def display_version(version: str) -> str:
    """'2.0.0' and 'v2.0.0' both read 'v2.0.0'; 'unknown' stays as is."""
    if strip_version(version) == UNKNOWN_VERSION:
        return UNKNOWN_VERSION
    return f"v{strip_version(version)}"

def versions_match(current: str, latest: str) -> bool:
    """Equality ignoring a leading 'v'; an unknown latest version never matches."""
    if latest == UNKNOWN_VERSION:
        return False
    return strip_version(current) == strip_version(latest)


# --- Drift ---

def parse_commits(output: str) -> List[CommitInfo]:
    """Parses `git log --pretty=format:%h|%s|%ar|%an` output."""
    commits = []
    for line in output.strip().splitlines():
        if not line.strip():
            continue
        # Subjects may contain '|', so hash comes from the left and the rest from the right.
        commit_hash, rest = line.split("|", 1) if "|" in line else (line, "")
        parts = rest.rsplit("|", 2)
        while len(parts) < 3:
            parts.append("")
        message, date, author = parts
        commits.append(CommitInfo(hash=commit_hash, message=message, date=date, author=author))
    return commits

def _log_range(cwd: Path, rev_range: str) -> List[CommitInfo]:
    output = try_git(["log", rev_range, f"--pretty=format:{COMMIT_FORMAT}", "--no-merges"], cwd=cwd) or ""
    return parse_commits(output)

def _ahead_behind(cwd: Path, target_ref: str):
    output = try_git(["rev-list", "--left-right", "--count", f"HEAD...{target_ref}"], cwd=cwd) or "0\t0"
    parts = output.split()
    try:
        ahead = int(parts[0])
        behind = int(parts[1])
    except (IndexError, ValueError):
        return 0, 0
    return ahead, behind

def resolve_target_ref(upstream: UpstreamConfig, target_tag: Optional[str] = None) -> str:
    return normalize_tag(target_tag) if target_tag else upstream.tracking_ref

def get_update_info(cwd: Path, config: KoharuConfig, target_tag: Optional[str] = None) -> RemoteSyncSummary:
    """
    Computes the drift between HEAD and the target reference.

    The target is the normalized tag when one is given, otherwise the tip of
    the upstream main branch. A downgrade is a tagged target that HEAD has
    already moved past: commits ahead and none behind.
    """
    current_version = read_current_version(cwd, config.manifest)

    if not has_upstream_remote(cwd, config.upstream):
        return RemoteSyncSummary(has_upstream=False, current_version=current_version)

    normalized_tag = normalize_tag(target_tag) if target_tag else None
    target_ref = resolve_target_ref(config.upstream, target_tag)

    ahead_count, behind_count = _ahead_behind(cwd, target_ref)
    is_downgrade = bool(normalized_tag and ahead_count > 0 and behind_count == 0)

    if is_downgrade:
        commits = _log_range(cwd, f"{target_ref}..HEAD")
    else:
        commits = _log_range(cwd, f"HEAD..{target_ref}")
    local_commits = _log_range(cwd, f"{target_ref}..HEAD")

    if normalized_tag:
        latest_version = strip_version(normalized_tag)
    else:
        latest_version = read_manifest_version(cwd, target_ref, config.manifest) or UNKNOWN_VERSION

    logger.info(
        f"Drift against {target_ref}: ahead={ahead_count} behind={behind_count} downgrade={is_downgrade}"
    )
    return RemoteSyncSummary(
        has_upstream=True,
        ahead_count=ahead_count,
        behind_count=behind_count,
        commits=tuple(commits),
        local_commits=tuple(local_commits),
        current_version=current_version,
        latest_version=latest_version,
        is_downgrade=is_downgrade,
    )
