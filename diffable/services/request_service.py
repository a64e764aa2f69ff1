"""Resource request tokens: parsing and the store's response type.

Tokens are produced by the browser client:

- ``<resourceHash>`` requests the current full content,
- ``<resourceHash>_<oldVersion>_<newVersion>.diff`` requests a delta.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from diffable.exceptions import ResourceRequestError

DIFF_SUFFIX = ".diff"

_HASH_RE = re.compile(r"^[0-9A-Za-z]+$")


@dataclass(frozen=True)
class ResourceRequest:
    """A parsed request for a managed resource or a delta between two of its versions."""

    resource_hash: str
    old_version: str | None = None
    new_version: str | None = None

    @property
    def is_diff(self) -> bool:
        return self.old_version is not None and self.new_version is not None

    @property
    def token(self) -> str:
        if self.is_diff:
            return f"{self.resource_hash}_{self.old_version}_{self.new_version}{DIFF_SUFFIX}"
        return self.resource_hash


@dataclass(frozen=True)
class ResourceResponse:
    """Payload answering a ResourceRequest.

    For plain requests ``content`` is the current text and ``version`` its
    content hash. For delta requests ``content`` is a serialized diff payload
    (or the full-content fallback). ``version`` is the requested target when
    a stored delta is served and the current content hash when the fallback is
    served, since that is the version the client holds after applying it.
    """

    resource_hash: str
    content: str
    version: str | None
    is_diff: bool = False


def parse_resource_token(token: str) -> ResourceRequest:
    """Parse a request token; raise ResourceRequestError when malformed."""
    requested = token.lstrip("/")
    if not requested:
        raise ResourceRequestError("Empty resource request")

    if requested.endswith(DIFF_SUFFIX):
        parts = requested[: -len(DIFF_SUFFIX)].split("_")
        if len(parts) != 3 or not all(_HASH_RE.match(part) for part in parts):
            raise ResourceRequestError(f"Malformed diff request: {token!r}")
        resource_hash, old_version, new_version = parts
        return ResourceRequest(resource_hash, old_version, new_version)

    if not _HASH_RE.match(requested):
        raise ResourceRequestError(f"Malformed resource request: {token!r}")
    return ResourceRequest(requested)
