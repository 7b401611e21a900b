"""Resolve slash-delimited folder paths to 115 folder ids."""

import logging
import re

from .cloud115 import ROOT_HANDLE, Cloud115Client
from .errors import PathSegmentNotFound

logger = logging.getLogger("sharesync.paths")

ROOT_LABEL = "Root"

_SEPARATOR_RE = re.compile(r"[/\\]")


def split_path(path: str) -> list[str]:
    """Split a path on / or \\, dropping empty and whitespace-only segments."""
    return [seg.strip() for seg in _SEPARATOR_RE.split(path or "") if seg.strip()]


def fallback_label(handle: str) -> str:
    return f"Folder({handle})"


class PathResolver:
    """
    Walks a folder path from the root, descending by display name.

    With ``create_missing`` (the default) missing segments are created, so
    resolving the same path twice returns the same handle and only the
    missing suffix is ever built. Without it a missing segment raises
    PathSegmentNotFound. Remote errors propagate unchanged.
    """

    def __init__(self, client: Cloud115Client, create_missing: bool = True):
        self.client = client
        self.create_missing = create_missing

    def _find_child(self, parent: str, name: str) -> str | None:
        matches = [
            entry for entry in self.client.list_directory(parent)
            if entry.is_directory and entry.name == name
        ]
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Folder %s has %d sub-folders named %r, using first listed (%s)",
                parent, len(matches), name, matches[0].handle,
            )
        return matches[0].handle

    def resolve(self, path: str) -> str:
        current = ROOT_HANDLE
        for segment in split_path(path):
            child = self._find_child(current, segment)
            if child is None:
                if not self.create_missing:
                    raise PathSegmentNotFound(segment, current)
                child = self.client.create_directory(current, segment)
            current = child
        logger.debug("Resolved %r -> %s", path, current)
        return current

    def describe(self, handle: str) -> str:
        """Human-readable label for a folder id. Never raises on remote errors."""
        if not handle or handle == ROOT_HANDLE:
            return ROOT_LABEL
        try:
            names = [n for n in self.client.get_folder_path(handle) if n]
        except Exception as e:
            logger.debug("Could not describe folder %s: %s", handle, e)
            return fallback_label(handle)
        return " > ".join(names) if names else fallback_label(handle)
