"""Background polling of resource folders for new, changed and deleted files."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from diffable.context import absolute_path

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from pathlib import Path

    from diffable.filesystem.resource_store import VersionedResourceStore

logger = logging.getLogger(__name__)


def iter_resource_files(folder: Path) -> Iterator[Path]:
    """Yield every non-hidden file below ``folder``, skipping hidden directories."""
    try:
        entries = sorted(folder.iterdir())
    except FileNotFoundError:
        return
    for entry in entries:
        if entry.name.startswith("."):
            continue
        if entry.is_dir():
            yield from iter_resource_files(entry)
        elif entry.is_file():
            yield entry


def _is_under(resource: Path, folders: Sequence[Path]) -> bool:
    return any(resource.is_relative_to(folder) for folder in folders)


class ResourceMonitor:
    """Keeps the store in sync with the files in a set of resource folders."""

    def __init__(
        self,
        store: VersionedResourceStore,
        folders: Sequence[Path],
        interval: float = 2.0,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Monitor interval must be positive, got {interval}")
        self.store = store
        self.folders = [absolute_path(folder) for folder in folders]
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def check_folders(self) -> int:
        """Run one synchronization pass; return the number of resources touched."""
        touched = 0
        for folder in self.folders:
            if not folder.is_dir():
                logger.warning("Resource folder %s does not exist", folder)
                continue
            for resource in iter_resource_files(folder):
                try:
                    resource = absolute_path(resource)
                    if not self.store.is_managed(resource) or self.store.has_changed(resource):
                        self.store.put(resource)
                        touched += 1
                except Exception:
                    logger.exception("Failed to update resource %s", resource)

        for resource in self.store.get_managed_resources():
            if resource.exists() or not _is_under(resource, self.folders):
                continue
            try:
                self.store.delete_resource(resource)
                touched += 1
            except Exception:
                logger.exception("Failed to delete vanished resource %s", resource)
        return touched

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="diffable-resource-monitor", daemon=True
        )
        self._thread.start()
        logger.info(
            "Monitoring %d resource folders every %.1fs", len(self.folders), self.interval
        )

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to stop and wait for the in-flight pass to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Resource monitor stopped")

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                touched = self.check_folders()
                if touched:
                    logger.debug("Monitor pass updated %d resources", touched)
            except Exception:
                logger.exception("Resource monitor pass failed")
            self._stop.wait(self.interval)
