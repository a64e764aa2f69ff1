"""Application-level exception types.

Convention:
- ``StoreInitError`` / ``HashAlgorithmError``: the resource store cannot be
  brought up. Raised from startup only; the lifespan logs them at CRITICAL
  and aborts.
- ``ArtifactError``: a per-resource folder or file could not be written.
  Scoped to one resource; the store stays usable.
- ``NotManagedError``: an operation that requires a managed resource was
  called for an unmanaged path.
- ``ResourceRequestError``: a malformed request token. Safe to report to
  clients (HTTP 400).
"""

from __future__ import annotations


class DiffableError(Exception):
    """Base class for all errors raised by the resource store and its helpers."""


class StoreInitError(DiffableError):
    """Raised when no usable store root can be obtained."""


class HashAlgorithmError(DiffableError):
    """Raised when the configured digest algorithm is unavailable."""


class ArtifactError(DiffableError):
    """Raised when a resource folder, version or delta cannot be created."""


class NotManagedError(DiffableError):
    """Raised for operations on a resource that is not managed by the store."""


class ResourceRequestError(DiffableError, ValueError):
    """Raised when a resource request token cannot be parsed."""
