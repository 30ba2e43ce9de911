"""Materialized path helpers.

A folder path is the slash-delimited chain of ancestor ids ending with the
folder's own id: ``/root_id/child_id/``.  Every ancestor's path is a strict
prefix of its descendants' paths, so subtree membership is ``startswith``.
"""

from __future__ import annotations


def folder_path(folder_id: str, parent_path: str | None) -> str:
    """Return the path of *folder_id* placed under *parent_path* (``None`` = root)."""
    if not folder_id or "/" in folder_id:
        raise ValueError(f"Invalid folder id for a path segment: {folder_id!r}")
    if parent_path is None:
        return f"/{folder_id}/"
    if not is_valid_path(parent_path):
        raise ValueError(f"Malformed folder path: {parent_path!r}")
    return f"{parent_path}{folder_id}/"


def is_valid_path(path: str | None) -> bool:
    """True for ``/id/``-style paths with at least one non-empty segment."""
    if not path or len(path) < 3:
        return False
    if not (path.startswith("/") and path.endswith("/")):
        return False
    return all(path[1:-1].split("/"))


def is_within(path: str | None, root: str | None) -> bool:
    """True if *path* equals *root* or lies below it."""
    if not path or not root:
        return False
    return path.startswith(root)


def ancestor_ids(path: str | None) -> list[str]:
    """Return the folder ids encoded in *path*, root first (self included)."""
    if not path:
        return []
    return [segment for segment in path.strip("/").split("/") if segment]


def rebase(path: str, old_prefix: str, new_prefix: str) -> str:
    """Replace the *old_prefix* head of *path* with *new_prefix*, keeping the tail."""
    if not path.startswith(old_prefix):
        raise ValueError(f"{path!r} is not under {old_prefix!r}")
    return new_prefix + path[len(old_prefix):]


def like_prefix(prefix: str) -> str:
    """SQL ``LIKE`` pattern matching *prefix* and everything under it.

    Use with ``escape="\\\\"``.
    """
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"
