"""Read-only directory listing for ``file_browse`` commands."""

from __future__ import annotations

import os
from pathlib import Path

from neonbridge.core.models import FileBrowseResult, FileEntry

MAX_BROWSE_ENTRIES = 1000


def browse_directory(
    *,
    request_id: str,
    target: str | Path,
    max_entries: int = MAX_BROWSE_ENTRIES,
) -> FileBrowseResult:
    """List ``target``: directories first, then by name, hidden entries skipped.

    A ``..`` entry leads the listing unless ``target`` is a filesystem root.
    Read failures are reported in ``error`` with no entries.
    """
    target_path = Path(os.path.abspath(os.path.expanduser(str(target))))
    result = FileBrowseResult(request_id=request_id, path=str(target_path))
    try:
        entries: list[FileEntry] = []
        with os.scandir(target_path) as iterator:
            for item in iterator:
                if item.name.startswith("."):
                    continue
                try:
                    is_directory = item.is_dir()
                except OSError:
                    is_directory = False
                entries.append(
                    FileEntry(
                        name=item.name,
                        path=str(target_path / item.name),
                        is_directory=is_directory,
                    )
                )
    except OSError as error:
        result.error = str(error)
        return result

    entries.sort(key=lambda entry: (not entry.is_directory, entry.name))
    parent = target_path.parent
    if parent != target_path:
        entries.insert(0, FileEntry(name="..", path=str(parent), is_directory=True))
    result.entries = entries[:max_entries]
    return result
