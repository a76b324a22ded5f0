"""Utility exports for filesystem helpers."""

from spec_coordinator.utils.fs import (
    atomic_write,
    is_within,
    list_tree_files,
    looks_like_text,
    prune_files_older_than,
)

__all__ = [
    "atomic_write",
    "is_within",
    "list_tree_files",
    "looks_like_text",
    "prune_files_older_than",
]
