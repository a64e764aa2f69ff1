"""Reader/writer for the store manifest (``diffable.manifest``).

The manifest maps absolute resource paths to resource ids, one
``path=resourceId`` entry per line. Keys and values are escaped the way Java
properties files escape them so manifests written by older deployments
still load.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from diffable.filesystem.atomic import atomic_write_bytes

logger = logging.getLogger(__name__)

MANIFEST_NAME = "diffable.manifest"
# Paths that are not valid UTF-8 round-trip through the manifest byte for byte.
MANIFEST_ERRORS = "surrogateescape"

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_SPECIAL = {"\\": "\\\\", "=": "\\=", ":": "\\:", "#": "\\#", "!": "\\!"}
_CONTROL = {"\t": "\\t", "\n": "\\n", "\r": "\\r", "\f": "\\f"}


def escape(text: str, *, is_key: bool) -> str:
    """Escape a key or value for a properties line."""
    out: list[str] = []
    for i, char in enumerate(text):
        if char in _SPECIAL:
            out.append(_SPECIAL[char])
        elif char in _CONTROL:
            out.append(_CONTROL[char])
        elif char == " " and (is_key or i == 0):
            out.append("\\ ")
        else:
            out.append(char)
    return "".join(out)


def unescape(text: str) -> str:
    """Undo ``escape`` (also accepts ``\\uXXXX`` sequences)."""
    out: list[str] = []
    i = 0
    while i < len(text):
        char = text[i]
        if char != "\\" or i + 1 >= len(text):
            out.append(char)
            i += 1
            continue
        nxt = text[i + 1]
        if nxt == "u" and i + 6 <= len(text):
            try:
                out.append(chr(int(text[i + 2 : i + 6], 16)))
                i += 6
                continue
            except ValueError:
                pass
        out.append(_ESCAPES.get(nxt, nxt))
        i += 2
    return "".join(out)


def parse_line(line: str) -> tuple[str, str] | None:
    """Split one manifest line into (key, value); None for blanks and comments."""
    stripped = line.lstrip(" \t\f")
    if not stripped or stripped[0] in "#!":
        return None
    i = 0
    while i < len(stripped):
        char = stripped[i]
        if char == "\\":
            i += 2
            continue
        if char in "=: \t\f":
            break
        i += 1
    key = stripped[:i]
    rest = stripped[i:].lstrip(" \t\f")
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip(" \t\f")
    return unescape(key), unescape(rest)


@dataclass
class Manifest:
    """Ordered mapping of absolute resource path -> resource id."""

    path: Path
    entries: dict[str, str] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> Manifest:
        """Load the manifest, creating an empty file when none exists."""
        manifest = cls(path=path)
        if not path.exists():
            path.touch()
            logger.debug("Created manifest %s", path)
            return manifest

        text = path.read_bytes().decode("utf-8", MANIFEST_ERRORS)
        for lineno, line in enumerate(text.splitlines(), start=1):
            parsed = parse_line(line)
            if parsed is None:
                continue
            key, value = parsed
            if not key or not value:
                logger.warning("Skipping malformed manifest line %d in %s", lineno, path)
                continue
            manifest.entries[key] = value
        return manifest

    def __contains__(self, resource: object) -> bool:
        return str(resource) in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, resource: Path | str) -> str | None:
        return self.entries.get(str(resource))

    def put(self, resource: Path | str, resource_id: str) -> None:
        self.entries[str(resource)] = resource_id

    def remove(self, resource: Path | str) -> str | None:
        return self.entries.pop(str(resource), None)

    def paths(self) -> list[Path]:
        return [Path(key) for key in self.entries]

    def reconcile(
        self, exists: Callable[[Path], bool] = Path.exists
    ) -> list[tuple[Path, str]]:
        """Drop entries whose path no longer exists; return the dropped (path, id) pairs."""
        orphaned_keys = [key for key in self.entries if not exists(Path(key))]
        return [(Path(key), self.entries.pop(key)) for key in orphaned_keys]

    def dumps(self) -> str:
        lines = ["# diffable manifest: resource path = resource id"]
        for key, value in self.entries.items():
            lines.append(f"{escape(key, is_key=True)}={escape(value, is_key=False)}")
        return "\n".join(lines) + "\n"

    def save(self) -> None:
        atomic_write_bytes(self.path, self.dumps().encode("utf-8", MANIFEST_ERRORS))
