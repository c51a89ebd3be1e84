# patchloop/utils/path_utils.py
"""
Centralized Path Utilities - Single source of truth for path safety.

This module provides utilities for:
- Normalizing directive paths to project-relative form (PathGuard)
- Resolving a session's project directory
- Validating that filesystem paths stay inside a project root

Every path extracted from agent output goes through `normalize()` before it
can reach the overlay.
"""
import re
from pathlib import Path

from patchloop.core.config import settings
from patchloop.core.exceptions import PathEscape

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


def normalize(raw_path: str) -> str:
    """
    Normalize a raw directive path into a project-relative path.

    Rules:
    - backslashes become forward slashes, surrounding whitespace is dropped
    - a leading "/" is anchored at the project root
    - "." and empty segments collapse, ".." pops the previous segment

    Raises:
        PathEscape: if resolution leaves the root, or nothing is left to name

    Example:
        normalize("./a/../b.ts")       -> "b.ts"
        normalize("../../etc/passwd")  -> PathEscape
    """
    if raw_path is None:
        raise PathEscape("", "missing path")

    candidate = str(raw_path).replace("\\", "/").strip()

    if "\x00" in candidate:
        raise PathEscape(candidate, "contains NUL byte")
    if _DRIVE_PREFIX.match(candidate):
        raise PathEscape(candidate, "drive-qualified paths are not project-relative")

    segments = []
    for segment in candidate.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not segments:
                raise PathEscape(candidate)
            segments.pop()
            continue
        segments.append(segment)

    if not segments:
        raise PathEscape(candidate, "does not name a file inside the project")

    return "/".join(segments)


def sanitize_session_id(session_id: str) -> str:
    """
    Normalize session IDs for safe filesystem use.
    Replaces any character not in [a-zA-Z0-9._-] with underscore.
    """
    return re.sub(r'[^a-zA-Z0-9._-]', '_', session_id)


def validate_session_id(session_id: str) -> bool:
    """
    Validate session_id format to prevent path traversal attacks.
    Only allows alphanumeric, hyphens, and underscores (1-100 chars).
    """
    if not session_id or not isinstance(session_id, str):
        return False
    return bool(re.match(r'^[a-zA-Z0-9_-]{1,100}$', session_id))


def get_project_path(session_id: str) -> Path:
    """
    Get the absolute path to the project tree a session edits.

    Args:
        session_id: The session identifier (directory name)

    Returns:
        Path object pointing to the project directory
    """
    return settings.paths.workspaces_dir / sanitize_session_id(session_id)


def is_within_root(root: Path, candidate: Path) -> bool:
    """
    Check if a path resolves inside root.

    Security check applied again at commit time, after symlinks resolve.
    """
    try:
        candidate.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False
