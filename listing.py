# listing.py
import os
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from werkzeug.security import safe_join

from errors import InvalidArgument, InvalidOperation, IOFailure, PathNotFound
from logging_setup import get_logger

log = get_logger("listing")


# -----------------------------
# Models
# -----------------------------
@dataclass
class FileEntry:
    name: str
    relative_path: str  # forward slashes, relative to the listing root
    is_directory: bool
    size: int
    modified_at: datetime
    children: Optional[List["FileEntry"]] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "relativePath": self.relative_path,
            "isDirectory": self.is_directory,
            "size": self.size,
            "modifiedAt": self.modified_at.isoformat(),
        }
        if self.children is not None:
            d["children"] = [c.to_dict() for c in self.children]
        return d


def entry_sort_key(entry: FileEntry):
    # directories first, then case-insensitive name
    return (not entry.is_directory, entry.name.casefold(), entry.name)


# -----------------------------
# Path helpers
# -----------------------------
def normalize_relative(relative_path: Optional[str]) -> str:
    """
    'docs\\sub/', '/docs/./sub' -> 'docs/sub'
    """
    rel = (relative_path or "").replace("\\", "/")
    parts = [p for p in rel.split("/") if p and p != "."]
    return "/".join(parts)


def resolve_within(root: str, relative_path: Optional[str]) -> str:
    """
    Join a relative path onto root, refusing anything that escapes it.
    """
    rel = normalize_relative(relative_path)
    if not rel:
        return os.path.normpath(root)

    target = safe_join(root, rel)
    if target is None:
        raise InvalidArgument(f"Path escapes the share root: {relative_path}")
    return os.path.normpath(target)


# -----------------------------
# Listing
# -----------------------------
def _read_level(directory: str, rel: str, depth: int) -> List[FileEntry]:
    entries: List[FileEntry] = []

    with os.scandir(directory) as it:
        for dirent in it:
            child_rel = dirent.name.replace("\\", "/")
            if rel:
                child_rel = f"{rel}/{child_rel}"

            try:
                st = os.stat(dirent.path)
            except OSError as e:
                log.warning("Skipping %s: %s", child_rel, e)
                continue

            is_dir = stat.S_ISDIR(st.st_mode)
            entry = FileEntry(
                name=dirent.name,
                relative_path=child_rel,
                is_directory=is_dir,
                size=0 if is_dir else st.st_size,
                modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            )

            if is_dir and depth > 1:
                try:
                    entry.children = _read_level(dirent.path, child_rel, depth - 1)
                except OSError as e:
                    log.warning("Cannot expand %s: %s", child_rel, e)

            entries.append(entry)

    entries.sort(key=entry_sort_key)
    return entries


def list_entries(root: str, relative_path: Optional[str] = "", depth: int = 1) -> List[FileEntry]:
    """
    List the immediate entries of root/relative_path.

    depth=1 reads one level and leaves `children` unset; deeper levels are
    fetched by calling again with a longer relative_path. depth=N expands
    N-1 further levels into `children`.
    """
    if depth < 1:
        raise InvalidArgument("depth must be >= 1")

    rel = normalize_relative(relative_path)
    target = resolve_within(root, rel)

    if not os.path.exists(target):
        raise PathNotFound(f"Path not found: {rel or root}")
    if not os.path.isdir(target):
        raise InvalidOperation(f"Not a directory: {rel}")

    try:
        return _read_level(target, rel, depth)
    except OSError as e:
        raise IOFailure.wrap(e)


def resolve_file(root: str, relative_path: Optional[str]) -> str:
    """
    Absolute path of an existing regular file under root.
    """
    target = resolve_within(root, relative_path)

    if not os.path.exists(target):
        raise PathNotFound("File not found")
    if os.path.isdir(target):
        raise InvalidOperation("Cannot download directory")
    return target
