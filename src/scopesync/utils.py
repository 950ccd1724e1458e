"""Utility functions for scopesync."""

import hashlib
import os
import tempfile
from datetime import datetime
from datetime import timezone
from pathlib import Path
from pathlib import PurePosixPath
from typing import Any

from .exceptions import ValidationError


def deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries with overlay precedence.

    Recursively merges nested dictionaries. Non-dict values in overlay
    completely replace corresponding values in base.

    Args:
        base: Base dictionary
        overlay: Overlay dictionary (takes precedence)

    Returns:
        New merged dictionary (base and overlay are not modified)

    Examples:
        >>> base = {"a": 1, "b": {"c": 2, "d": 3}}
        >>> overlay = {"b": {"c": 20}, "e": 5}
        >>> deep_merge(base, overlay)
        {'a': 1, 'b': {'c': 20, 'd': 3}, 'e': 5}

        >>> deep_merge({}, {"a": 1})
        {'a': 1}
    """
    result = base.copy()

    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            # Both base and overlay have dict at this key - recurse
            result[key] = deep_merge(result[key], value)
        else:
            # Overlay wins - replace completely
            result[key] = value

    return result


def content_hash(data: bytes | str) -> str:
    """Return the SHA-256 hex digest of file content.

    Strings are hashed as their UTF-8 encoding, so a file read as text and
    the same file read as bytes hash identically.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def file_hash(path: Path) -> str | None:
    """Hash a file's bytes, or return None if it does not exist."""
    try:
        return content_hash(path.read_bytes())
    except FileNotFoundError:
        return None


def validate_name(name: str) -> str:
    """Validate a skill, command, agent or profile name for use in paths.

    Args:
        name: Candidate name

    Returns:
        The name, stripped of surrounding whitespace

    Raises:
        ValidationError: If the name is empty or could escape its directory
    """
    name = name.strip()
    if not name:
        raise ValidationError("Name cannot be empty")
    if "/" in name or "\\" in name:
        raise ValidationError(f"Name contains path separator: {name}")
    if ".." in name:
        raise ValidationError(f"Name contains parent directory reference: {name}")
    if name.startswith("."):
        raise ValidationError(f"Name cannot start with dot: {name}")
    if "\0" in name:
        raise ValidationError("Name contains null byte")
    return name


def safe_join(root: Path, relative: str | Path) -> Path:
    """Join an untrusted relative path onto root without escaping it.

    Args:
        root: Directory the result must stay under
        relative: Relative path, POSIX or native separators

    Returns:
        root joined with the normalized relative path

    Raises:
        ValidationError: If the path is absolute or climbs above root
    """
    rel = PurePosixPath(str(relative).replace("\\", "/"))
    if rel.is_absolute():
        raise ValidationError(f"Absolute path not allowed: {relative}")

    parts: list[str] = []
    for part in rel.parts:
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                raise ValidationError(f"Path traversal attempt detected: {relative}")
            parts.pop()
            continue
        if "\0" in part:
            raise ValidationError("Null byte in path")
        parts.append(part)

    if not parts:
        raise ValidationError(f"Empty path: {relative!r}")
    return root.joinpath(*parts)


def atomic_write(path: Path, data: bytes) -> None:
    """Write bytes to path via a temporary sibling and os.replace.

    Readers see either the previous content or the new content, never a
    partially written file. Parent directories are created as needed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def prune_empty_dirs(start: Path, boundary: Path) -> None:
    """Remove empty directories from start upward, stopping at boundary."""
    current = start
    while current != boundary and boundary in current.parents:
        try:
            next(current.iterdir())
            return
        except StopIteration:
            current.rmdir()
            current = current.parent
        except FileNotFoundError:
            current = current.parent


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 timestamp as stored in YAML records."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
