"""
Path containment and name validation.

Every operation that touches the storage tree or the upload temp area resolves
its user-supplied path here first. Nothing is created, written or removed for
a path that fails these checks.
"""

import re
from pathlib import Path

from .exceptions import AccessDenied, InvalidName

_INVALID_NAME_CHARS = re.compile(r'[<>:"|?*\\/\x00]')


def resolve_path(root: Path, relative_path: str | None) -> Path:
    """Resolve ``relative_path`` against ``root`` and ensure it stays inside.

    Leading slashes are ignored, so ``/docs`` and ``docs`` name the same
    entry. ``.``/``..`` and symlinks are resolved before the containment check,
    which compares whole path segments (``/store-evil`` is not inside
    ``/store``).

    Raises:
        AccessDenied: if the canonical path is outside the canonical root
    """
    base = root.resolve()
    relative = (relative_path or "").lstrip("/")
    try:
        resolved = (base / relative).resolve()
    except (OSError, ValueError, RuntimeError):
        raise AccessDenied()

    if resolved == base or base in resolved.parents:
        return resolved
    raise AccessDenied()


def resolve_entry(root: Path, relative_path: str | None) -> Path:
    """Like ``resolve_path`` but the final segment is not dereferenced.

    Used where an operation acts on a directory entry itself: a symlink comes
    back as the link, not its target. Only the parent must lie inside ``root``.
    """
    parent, _, name = (relative_path or "").strip("/").rpartition("/")
    if name in ("", ".", ".."):
        return resolve_path(root, relative_path)
    if "\x00" in name:
        raise AccessDenied()
    return resolve_path(root, parent) / name


def to_relative(root: Path, path: Path) -> str:
    """Storage-relative, forward-slash form of an already resolved path."""
    relative = path.relative_to(root.resolve()).as_posix()
    return "" if relative == "." else relative


def join_relative(relative_dir: str | None, name: str) -> str:
    """Join a relative directory and a name the way API responses report paths."""
    parts = [p for p in (relative_dir or "").replace("\\", "/").split("/") if p]
    return "/".join([*parts, name])


def validate_name(name: str | None, kind: str = "File") -> str:
    """Validate a bare file or folder name (not a path).

    Raises:
        InvalidName: for empty or whitespace-only names, ``.``/``..``, or names
            containing any of ``< > : " | ? * \\ /``
    """
    if not isinstance(name, str) or not name.strip():
        raise InvalidName(f"Invalid {kind.lower()} name")
    if name in (".", ".."):
        raise InvalidName(f"Invalid {kind.lower()} name")
    if _INVALID_NAME_CHARS.search(name):
        raise InvalidName(f"{kind} name contains invalid characters")
    return name


def decode_filename(name: str) -> str:
    """Repair a UTF-8 file name that was decoded as latin-1 by the client stack.

    Names that are not such mojibake come back unchanged.
    """
    try:
        return name.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return name


def sanitize_name_part(part: str) -> str:
    """Replace filesystem-sensitive characters so ``part`` is usable as a name."""
    sanitized = _INVALID_NAME_CHARS.sub("_", part).replace(" ", "_")
    sanitized = sanitized.strip(". ")
    return sanitized or "unknown"
