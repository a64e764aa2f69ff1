"""Shared state handed from the application to the store, monitor and endpoints."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class DiffableContext:
    """Resource folders, URL prefix and the current version of every managed resource.

    The store reports current versions here; page snippets read them back.
    """

    resource_folders: list[Path] = field(default_factory=list)
    url_prefix: str = "/diffable"
    _current_versions: dict[Path, str] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def set_current_version(self, resource: Path, version: str) -> None:
        with self._lock:
            self._current_versions[resource] = version

    def get_current_version(self, resource: Path) -> str | None:
        with self._lock:
            return self._current_versions.get(resource)

    def remove_current_version(self, resource: Path) -> None:
        with self._lock:
            self._current_versions.pop(resource, None)

    @property
    def current_versions(self) -> dict[Path, str]:
        """Snapshot of the current-version map."""
        with self._lock:
            return dict(self._current_versions)

    def find_resource(self, name: str) -> Path | None:
        """Locate a resource by absolute path or by a path relative to a resource folder."""
        candidate = Path(name)
        if candidate.is_absolute():
            return absolute_path(candidate) if candidate.is_file() else None
        for folder in self.resource_folders:
            found = folder / name
            if found.is_file():
                return absolute_path(found)
        return None


def absolute_path(path: Path | str) -> Path:
    """Absolute, normalized form of a path without resolving symlinks."""
    return Path(os.path.abspath(path))
