# src/koharu/util/fs.py: Filesystem utilities.
# This module selects the set of project files a backup should contain by
# applying include/exclude globs (gitwildmatch syntax, the same dialect as
# .gitignore) and provides an atomic write helper for small metadata files.

import os
from pathlib import Path
from typing import List
import pathspec

def collect_files(root: str | Path, include: List[str], exclude: List[str]) -> List[str]:
    """
    Return POSIX-style paths relative to `root`, filtered by include/exclude globs.

    With no include patterns every file under `root` is a candidate.
    """
    root = str(root)
    all_files_rel = []
    for dirpath, dirnames, files in os.walk(root):
        # Never descend into the repository metadata.
        dirnames[:] = [d for d in dirnames if d != ".git"]
        for name in files:
            full_path = os.path.join(dirpath, name)
            all_files_rel.append(Path(os.path.relpath(full_path, root)).as_posix())

    files_to_process = set(all_files_rel)

    if include:
        include_spec = pathspec.PathSpec.from_lines('gitwildmatch', include)
        files_to_process = set(include_spec.match_files(all_files_rel))

    if exclude:
        exclude_spec = pathspec.PathSpec.from_lines('gitwildmatch', exclude)
        files_to_process -= set(exclude_spec.match_files(files_to_process))

    return sorted(rel for rel in files_to_process if ".." not in rel.split("/"))


def atomic_write(path: str | Path, content: str):
    """Write content to a file atomically."""
    temp_path = f"{path}.tmp"
    with open(temp_path, "w", encoding="utf-8") as f:
        f.write(content)
    os.replace(temp_path, path)
