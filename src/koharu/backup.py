# src/koharu/backup.py: Content backups taken before risky updates.
# This module archives the user's own content (posts, site config, images) so
# an update, downgrade or rebase can be undone with `koharu restore`. Archives
# are gzip tarballs under the project's backup directory, each accompanied by a
# small JSON sidecar describing it.

import json
import tarfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import KoharuConfig
from .upstream import read_current_version
from .util.errors import BackupError
from .util.fs import atomic_write, collect_files
from .util.log import get_logger

logger = get_logger(__name__)

ARCHIVE_PREFIX = "backup-"
ARCHIVE_SUFFIX = ".tar.gz"


@dataclass(frozen=True)
class BackupResult:
    backup_file: Path
    file_count: int
    full: bool = False


@dataclass(frozen=True)
class BackupEntry:
    path: Path
    created: str
    size: int
    file_count: Optional[int] = None
    version: Optional[str] = None
    full: bool = False

    @property
    def name(self) -> str:
        return self.path.name


def get_backup_dir(project_root: Path, config: KoharuConfig) -> Path:
    return Path(project_root) / config.backup.directory


def _sidecar(archive: Path) -> Path:
    return archive.with_name(archive.name + ".json")


def run_backup(project_root: Path, config: KoharuConfig, force: bool = False, full: bool = False) -> BackupResult:
    """
    Archive the configured content paths.

    A `full` backup also takes the `full_include` globs (all images and
    assets), not only the user's content.

    Raises:
        BackupError: If nothing matches the include globs (unless `force`) or
            the archive cannot be written.
    """
    project_root = Path(project_root)
    backup_dir = get_backup_dir(project_root, config)
    exclude = list(config.backup.exclude) + [f"{config.backup.directory}/"]
    include = list(config.backup.include)
    if full:
        include += config.backup.full_include
    files = collect_files(project_root, include, exclude)
    if not files and not force:
        raise BackupError("No content matched the backup include patterns.")

    timestamp = datetime.now().strftime("%Y-%m-%d-%H%M%S")
    archive = backup_dir / f"{ARCHIVE_PREFIX}{timestamp}{ARCHIVE_SUFFIX}"
    partial = archive.with_name(archive.name + ".partial")
    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
        with tarfile.open(partial, "w:gz") as tar:
            for rel in files:
                tar.add(project_root / rel, arcname=rel, recursive=False)
        partial.replace(archive)
        metadata = {
            "created": datetime.now().isoformat(timespec="seconds"),
            "version": read_current_version(project_root, config.manifest),
            "full": full,
            "files": files,
        }
        atomic_write(_sidecar(archive), json.dumps(metadata, indent=2))
    except (OSError, tarfile.TarError) as e:
        if partial.exists():
            partial.unlink()
        raise BackupError(f"Failed to write backup '{archive}': {e}")

    logger.info(f"Backed up {len(files)} file(s) to {archive} (full={full})")
    return BackupResult(backup_file=archive, file_count=len(files), full=full)


def list_backups(project_root: Path, config: KoharuConfig) -> List[BackupEntry]:
    """Existing backups, newest first."""
    backup_dir = get_backup_dir(project_root, config)
    if not backup_dir.is_dir():
        return []

    entries = []
    for archive in backup_dir.glob(f"{ARCHIVE_PREFIX}*{ARCHIVE_SUFFIX}"):
        file_count = None
        version = None
        full = False
        created = datetime.fromtimestamp(archive.stat().st_mtime).isoformat(timespec="seconds")
        sidecar = _sidecar(archive)
        if sidecar.is_file():
            try:
                metadata = json.loads(sidecar.read_text(encoding="utf-8"))
                file_count = len(metadata.get("files", []))
                version = metadata.get("version")
                created = metadata.get("created", created)
                full = bool(metadata.get("full", False))
            except ValueError:
                logger.warning(f"Ignoring unreadable backup metadata: {sidecar}")
        entries.append(BackupEntry(
            path=archive,
            created=created,
            size=archive.stat().st_size,
            file_count=file_count,
            version=version,
            full=full,
        ))
    # Archive names embed a sortable timestamp.
    return sorted(entries, key=lambda entry: entry.name, reverse=True)


def _resolve_backup(project_root: Path, config: KoharuConfig, name: Optional[str]) -> Path:
    backups = list_backups(project_root, config)
    if not backups:
        raise BackupError("No backups found.")
    if name is None:
        return backups[0].path
    for entry in backups:
        if entry.name == name or entry.name == f"{name}{ARCHIVE_SUFFIX}":
            return entry.path
    candidate = Path(name)
    if candidate.is_file():
        return candidate
    raise BackupError(f"Backup '{name}' not found in {get_backup_dir(project_root, config)}.")


def restore_backup(
    project_root: Path,
    config: KoharuConfig,
    name: Optional[str] = None,
    dry_run: bool = False,
) -> List[str]:
    """
    Extract a backup (the newest when `name` is None) over the project tree.

    Returns the restored relative paths. With `dry_run` nothing is written.
    """
    project_root = Path(project_root)
    archive = _resolve_backup(project_root, config, name)
    try:
        with tarfile.open(archive, "r:gz") as tar:
            members = [m for m in tar.getmembers() if m.isfile()]
            for member in members:
                parts = Path(member.name).parts
                if Path(member.name).is_absolute() or ".." in parts:
                    raise BackupError(f"Refusing to restore unsafe path '{member.name}' from {archive.name}.")
            if not dry_run:
                for member in members:
                    tar.extract(member, path=project_root)
    except (OSError, tarfile.TarError) as e:
        raise BackupError(f"Failed to restore '{archive}': {e}")

    restored = [m.name for m in members]
    logger.info(f"{'Would restore' if dry_run else 'Restored'} {len(restored)} file(s) from {archive.name}")
    return restored


def prune_backups(project_root: Path, config: KoharuConfig, keep: int) -> List[Path]:
    """Delete all but the `keep` newest backups; returns the removed archives."""
    if keep < 0:
        raise BackupError("keep must be zero or positive.")
    removed = []
    for entry in list_backups(project_root, config)[keep:]:
        try:
            entry.path.unlink()
            sidecar = _sidecar(entry.path)
            if sidecar.exists():
                sidecar.unlink()
        except OSError as e:
            raise BackupError(f"Failed to delete backup '{entry.path}': {e}")
        removed.append(entry.path)
    return removed
