"""Content-addressed, manifest-backed store of resource versions and deltas.

Layout under the store root::

    diffable.manifest                    # resource path = resource id
    <resourceId>/<contentHash>.version   # one file per retained version
    <resourceId>/<oldHash>_<newHash>.diff

Only deltas that end at the current version are kept. The modification time
of each ``<resourceId>`` folder mirrors the resource's own modification time
and is the change-detection fence used by ``has_changed``.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from diffable.context import absolute_path
from diffable.delta.codec import DeltaCodec, fallback_payload
from diffable.exceptions import (
    ArtifactError,
    HashAlgorithmError,
    NotManagedError,
    StoreInitError,
)
from diffable.filesystem.atomic import atomic_write_bytes, atomic_write_text
from diffable.filesystem.manifest import MANIFEST_NAME, Manifest
from diffable.services.request_service import DIFF_SUFFIX, ResourceResponse

if TYPE_CHECKING:
    from diffable.context import DiffableContext
    from diffable.services.request_service import ResourceRequest

logger = logging.getLogger(__name__)

STORE_DIR_NAME = ".diffable"
FILE_URI_PREFIX = "file://"
VERSION_SUFFIX = ".version"


def resolve_store_root(base_dir: Path, store_location: str | None = None) -> Path:
    """Resolve the configured store location against the application base directory.

    ``file://`` locations and absolute paths are used as-is, other locations
    are relative to ``base_dir``. Without a location the store lives in
    ``<base_dir>/.diffable``.
    """
    if not store_location:
        return absolute_path(base_dir / STORE_DIR_NAME)
    if store_location.startswith(FILE_URI_PREFIX):
        return absolute_path(store_location[len(FILE_URI_PREFIX) :])
    location = Path(store_location)
    if location.is_absolute():
        return absolute_path(location)
    return absolute_path(base_dir / location)


def check_hash_algorithm(algorithm: str) -> str:
    """Return ``algorithm`` if hashlib provides it, else raise HashAlgorithmError."""
    try:
        hashlib.new(algorithm)
    except (ValueError, TypeError) as exc:
        raise HashAlgorithmError(f"Digest algorithm {algorithm!r} is unavailable: {exc}") from exc
    return algorithm


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


class VersionedResourceStore:
    """Stores resource versions and precomputed deltas on the filesystem.

    All public operations hold one store-wide re-entrant lock, so the
    monitor thread writing artifacts never races request handlers reading
    them.
    """

    def __init__(
        self,
        store_root: Path,
        manifest: Manifest,
        context: DiffableContext,
        *,
        codec: DeltaCodec | None = None,
        keep_in_memory: bool = True,
        hash_algorithm: str = "md5",
    ) -> None:
        self.store_root = store_root
        self.manifest = manifest
        self.context = context
        self.codec = codec if codec is not None else DeltaCodec()
        self.keep_in_memory = keep_in_memory
        self.hash_algorithm = check_hash_algorithm(hash_algorithm)
        self._lock = threading.RLock()
        self._current: dict[Path, str] = {}
        self._contents: dict[Path, str] = {}
        self._ids_to_paths: dict[str, Path] = {}

    @classmethod
    def initialize(
        cls,
        base_dir: Path,
        context: DiffableContext,
        *,
        store_location: str | None = None,
        codec: DeltaCodec | None = None,
        keep_in_memory: bool = True,
        hash_algorithm: str = "md5",
    ) -> VersionedResourceStore:
        """Open (or create) the store and reconcile it with the filesystem."""
        check_hash_algorithm(hash_algorithm)
        store_root = resolve_store_root(base_dir, store_location)
        logger.debug("Initializing resource store at %s", store_root)

        if store_root.exists() and not store_root.is_dir():
            raise StoreInitError(f"Resource store path is not a directory: {store_root}")
        if not store_root.exists():
            logger.info("Creating resource store folder %s", store_root)
            try:
                store_root.mkdir(parents=True)
            except OSError as exc:
                raise StoreInitError(f"Cannot create resource store {store_root}: {exc}") from exc

        manifest_path = store_root / MANIFEST_NAME
        try:
            manifest = Manifest.load(manifest_path)
        except (OSError, UnicodeDecodeError) as exc:
            raise StoreInitError(f"Cannot load manifest {manifest_path}: {exc}") from exc

        store = cls(
            store_root,
            manifest,
            context,
            codec=codec,
            keep_in_memory=keep_in_memory,
            hash_algorithm=hash_algorithm,
        )
        store.reconcile()
        logger.info("Resource store at %s manages %d resources", store_root, len(manifest))
        return store

    def reconcile(self) -> None:
        """Purge artifacts of vanished resources and restore every surviving one."""
        with self._lock:
            orphans = self.manifest.reconcile()
            for resource, resource_id in orphans:
                logger.info("Managed resource %s no longer exists; purging its artifacts", resource)
                self._clean_up(resource_id)
                self._forget(resource, resource_id)
            if orphans:
                try:
                    self.manifest.save()
                except (OSError, ValueError):
                    logger.exception("Failed to save manifest %s", self.manifest.path)

            for resource in self.manifest.paths():
                try:
                    self.put(resource)
                    if resource not in self._current:
                        self._restore_current(resource)
                except (ArtifactError, OSError, ValueError):
                    logger.exception("Failed to restore managed resource %s", resource)

    def is_managed(self, resource: Path | str) -> bool:
        with self._lock:
            return absolute_path(resource) in self.manifest

    def get_managed_resources(self) -> list[Path]:
        with self._lock:
            return self.manifest.paths()

    def resource_id(self, resource: Path | str) -> str:
        """Resource id of a path: the manifest entry if managed, else the path digest."""
        resource = absolute_path(resource)
        with self._lock:
            return self.manifest.get(resource) or self._hash_path(resource)

    def current_version(self, resource: Path | str) -> str | None:
        with self._lock:
            return self._current.get(absolute_path(resource))

    def has_changed(self, resource: Path | str) -> bool:
        """True unless the resource folder's fence timestamp equals the file's mtime."""
        resource = absolute_path(resource)
        with self._lock:
            resource_id = self.manifest.get(resource)
            if resource_id is None:
                raise NotManagedError(f"Resource is not managed: {resource}")
            return not self._fence_matches(resource, self.store_root / resource_id)

    def put(self, resource: Path | str) -> None:
        """Start managing a resource or record its latest version.

        Idempotent: without a content change no artifacts are created, only
        the fence timestamp is refreshed.
        """
        resource = absolute_path(resource)
        with self._lock:
            folder = self._ensure_artifacts(resource)
            if self._fence_matches(resource, folder):
                return
            logger.info("Resource %s changed", resource)
            try:
                self._update_version(resource, folder)
            except (OSError, ValueError) as exc:
                raise ArtifactError(f"Cannot store latest version of {resource}: {exc}") from exc

    def get(self, request: ResourceRequest) -> ResourceResponse | None:
        """Answer a resource request; None when the resource is unknown."""
        with self._lock:
            resource = self._ids_to_paths.get(request.resource_hash)
            if resource is None:
                logger.debug("No managed resource for %s", request.resource_hash)
                return None
            logger.debug("Serving %s from %s", request.token, resource)

            if request.is_diff:
                folder = self.store_root / request.resource_hash
                delta = folder / f"{request.old_version}_{request.new_version}{DIFF_SUFFIX}"
                if delta.is_file():
                    try:
                        payload = delta.read_text(encoding="utf-8")
                    except OSError:
                        logger.warning("Failed to read delta %s", delta, exc_info=True)
                    else:
                        return ResourceResponse(
                            request.resource_hash, payload, request.new_version, is_diff=True
                        )
                # A full update is always acceptable to the client.
                content = self._current_content(resource)
                if content is None:
                    return None
                return ResourceResponse(
                    request.resource_hash,
                    fallback_payload(content),
                    self._current.get(resource),
                    is_diff=True,
                )

            content = self._current_content(resource)
            if content is None:
                return None
            return ResourceResponse(request.resource_hash, content, self._current.get(resource))

    def delete_resource(self, resource: Path | str) -> None:
        """Stop managing a resource and delete its artifacts. No-op if unmanaged."""
        resource = absolute_path(resource)
        with self._lock:
            resource_id = self.manifest.remove(resource)
            if resource_id is None:
                return
            try:
                self.manifest.save()
            except OSError as exc:
                self.manifest.put(resource, resource_id)
                raise ArtifactError(f"Cannot save manifest while deleting {resource}: {exc}") from exc
            logger.info("Deleting managed resource %s", resource)
            self._clean_up(resource_id)
            self._forget(resource, resource_id)

    # -- internals ---------------------------------------------------------

    def _hash_path(self, resource: Path) -> str:
        # fsencode keeps undecodable file names hashable.
        return hashlib.new(self.hash_algorithm, os.fsencode(resource)).hexdigest()

    def _hash_content(self, data: bytes) -> str:
        return hashlib.new(self.hash_algorithm, data).hexdigest()

    def _ensure_artifacts(self, resource: Path) -> Path:
        """Create the resource folder, first version and manifest entry if missing."""
        resource_id = self.manifest.get(resource)
        is_new = resource_id is None
        if resource_id is None:
            resource_id = self._hash_path(resource)
            # Leftovers from an earlier incarnation would confuse version tracking.
            self._clean_up(resource_id)
        folder = self.store_root / resource_id
        if not is_new and folder.is_dir():
            self._ids_to_paths[resource_id] = resource
            return folder

        try:
            folder.mkdir(parents=True, exist_ok=True)
            content_hash, text, _ = self._write_version(resource, folder)
            self._fence(resource, folder)
        except (OSError, ValueError) as exc:
            if is_new:
                self._clean_up(resource_id)
            raise ArtifactError(f"Cannot create artifacts for {resource}: {exc}") from exc

        if is_new:
            self.manifest.put(resource, resource_id)
            try:
                self.manifest.save()
            except (OSError, ValueError) as exc:
                self.manifest.remove(resource)
                self._clean_up(resource_id)
                raise ArtifactError(f"Cannot save manifest entry for {resource}: {exc}") from exc
            logger.info("Managing resource %s as %s", resource, resource_id)

        self._ids_to_paths[resource_id] = resource
        self._set_current(resource, content_hash, text)
        return folder

    def _write_version(self, resource: Path, folder: Path) -> tuple[str, str, bool]:
        """Store the resource's bytes as a version file if absent.

        Returns (content hash, decoded text, whether a file was written).
        """
        data = resource.read_bytes()
        content_hash = self._hash_content(data)
        version_file = folder / f"{content_hash}{VERSION_SUFFIX}"
        created = not version_file.exists()
        if created:
            atomic_write_bytes(version_file, data)
        return content_hash, _decode(data), created

    def _update_version(self, resource: Path, folder: Path) -> None:
        previous = self._current.get(resource)
        latest, text, _ = self._write_version(resource, folder)
        if latest != previous:
            logger.info("Generating deltas for %s (%s -> %s)", resource, previous, latest)
            self._set_current(resource, latest, text)
            self._generate_deltas(resource, folder, latest, text)
        self._fence(resource, folder)

    def _restore_current(self, resource: Path) -> None:
        """Establish the current version of an unchanged resource after a restart."""
        resource_id = self.manifest.get(resource)
        if resource_id is None:
            return
        folder = self.store_root / resource_id
        latest, text, created = self._write_version(resource, folder)
        self._set_current(resource, latest, text)
        if created:
            self._generate_deltas(resource, folder, latest, text)
        self._fence(resource, folder)

    def _generate_deltas(self, resource: Path, folder: Path, latest: str, text: str) -> None:
        """Diff every retained version against ``latest`` and retire all other deltas."""
        for version_file in sorted(folder.glob(f"*{VERSION_SUFFIX}")):
            old_hash = version_file.name[: -len(VERSION_SUFFIX)]
            if old_hash == latest:
                continue
            try:
                script = self.codec.diff(_decode(version_file.read_bytes()), text)
                if script is None:
                    continue
                delta = folder / f"{old_hash}_{latest}{DIFF_SUFFIX}"
                atomic_write_text(delta, script.to_payload())
                logger.debug("Generated delta %s for %s", delta.name, resource)
            except OSError:
                logger.exception(
                    "Failed to generate delta %s -> %s for %s", old_hash, latest, resource
                )

        for delta in folder.glob(f"*{DIFF_SUFFIX}"):
            target = delta.name[: -len(DIFF_SUFFIX)].rpartition("_")[2]
            if target != latest:
                logger.debug("Removing stale delta %s of %s", delta.name, resource)
                delta.unlink(missing_ok=True)

    def _set_current(self, resource: Path, version: str, text: str) -> None:
        self._current[resource] = version
        if self.keep_in_memory:
            self._contents[resource] = text
        self.context.set_current_version(resource, version)

    def _current_content(self, resource: Path) -> str | None:
        if self.keep_in_memory and resource in self._contents:
            return self._contents[resource]
        version = self._current.get(resource)
        resource_id = self.manifest.get(resource)
        if version is None or resource_id is None:
            return None
        version_file = self.store_root / resource_id / f"{version}{VERSION_SUFFIX}"
        try:
            return _decode(version_file.read_bytes())
        except OSError:
            logger.warning("Failed to read current version of %s", resource, exc_info=True)
            return None

    def _fence(self, resource: Path, folder: Path) -> None:
        """Copy the resource's modification time onto its folder."""
        stat = resource.stat()
        os.utime(folder, ns=(stat.st_atime_ns, stat.st_mtime_ns))

    def _fence_matches(self, resource: Path, folder: Path) -> bool:
        try:
            return folder.stat().st_mtime_ns == resource.stat().st_mtime_ns
        except FileNotFoundError:
            return False

    def _clean_up(self, resource_id: str) -> None:
        folder = self.store_root / resource_id
        if not folder.is_dir():
            return
        logger.debug("Deleting artifact folder %s", folder)
        try:
            shutil.rmtree(folder)
        except OSError:
            logger.warning("Failed to delete artifact folder %s", folder, exc_info=True)

    def _forget(self, resource: Path, resource_id: str) -> None:
        self._current.pop(resource, None)
        self._contents.pop(resource, None)
        self._ids_to_paths.pop(resource_id, None)
        self.context.remove_current_version(resource)
