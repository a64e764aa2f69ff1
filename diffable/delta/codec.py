"""Block-based delta codec.

A diff is an ordered list of two operations:

- ``LiteralOp(text)`` appends text to the output,
- ``CopyOp(offset, length)`` appends ``base[offset:offset + length]``.

Serialized payloads are JavaScript array literals, one element per literal
and two bare integers per copy, every element followed by a comma::

    [3,3,"ghi",0,3,]
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Union

from diffable.delta.block_index import BlockIndex
from diffable.delta.hasher import NO_ROLL, Hasher, RollingHash

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 20


@dataclass(frozen=True)
class LiteralOp:
    """Append literal text to the output."""

    text: str

    def __repr__(self) -> str:
        if len(self.text) <= 20:
            return f"LITERAL({self.text!r})"
        return f"LITERAL(len={len(self.text)})"


@dataclass(frozen=True)
class CopyOp:
    """Copy base[offset : offset + length] to the output."""

    offset: int
    length: int

    def __repr__(self) -> str:
        return f"COPY(off={self.offset}, len={self.length})"


DiffOp = Union[LiteralOp, CopyOp]


def quote_js(text: str) -> str:
    """Quote text as a string literal that is safe inside a <script> element."""
    quoted = json.dumps(text, ensure_ascii=False)
    return quoted.replace("</", "<\\/").replace("\u2028", "\\u2028").replace("\u2029", "\\u2029")


def fallback_payload(content: str) -> str:
    """Full-content payload served when a requested delta does not exist."""
    return f"[{quote_js(content)}]"


@dataclass
class DiffScript:
    """Ordered diff operations transforming a base text into a target text."""

    ops: list[DiffOp] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.ops)

    def __iter__(self):
        return iter(self.ops)

    def to_payload(self) -> str:
        parts: list[str] = []
        for op in self.ops:
            if isinstance(op, LiteralOp):
                parts.append(quote_js(op.text))
            else:
                parts.append(str(op.offset))
                parts.append(str(op.length))
        return "[" + "".join(f"{part}," for part in parts) + "]"

    def apply(self, base: str) -> str:
        """Reconstruct the target text from ``base``."""
        output: list[str] = []
        for op in self.ops:
            if isinstance(op, LiteralOp):
                output.append(op.text)
                continue
            if op.offset < 0 or op.offset >= len(base):
                raise ValueError(f"Invalid copy offset: {op.offset}")
            if op.length < 0 or op.offset + op.length > len(base):
                raise ValueError(f"Invalid copy end: {op.offset + op.length}")
            output.append(base[op.offset : op.offset + op.length])
        return "".join(output)

    @property
    def literal_size(self) -> int:
        return sum(len(op.text) for op in self.ops if isinstance(op, LiteralOp))

    @property
    def copied_size(self) -> int:
        return sum(op.length for op in self.ops if isinstance(op, CopyOp))


def parse_payload(payload: str) -> DiffScript:
    """Parse a serialized payload (including the full-content fallback)."""
    body = payload.strip()
    if body.endswith(",]"):
        body = body[:-2] + "]"
    try:
        items = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Malformed diff payload: {exc}") from exc
    if not isinstance(items, list):
        raise ValueError("Diff payload must be an array")

    ops: list[DiffOp] = []
    i = 0
    while i < len(items):
        item = items[i]
        if isinstance(item, str):
            ops.append(LiteralOp(item))
            i += 1
        elif isinstance(item, int) and not isinstance(item, bool):
            if i + 1 >= len(items) or not isinstance(items[i + 1], int):
                raise ValueError(f"Copy offset {item} is missing its length")
            ops.append(CopyOp(item, items[i + 1]))
            i += 2
        else:
            raise ValueError(f"Unexpected diff payload element: {item!r}")
    return DiffScript(ops)


class DeltaCodec:
    """Computes diffs with a block index and a (rolling) window hash.

    ``hasher_factory`` is called once per ``diff()`` so a codec can be shared
    between threads.
    """

    def __init__(
        self,
        block_size: int = DEFAULT_BLOCK_SIZE,
        hasher_factory: Callable[[], Hasher] = RollingHash,
    ) -> None:
        if block_size < 1:
            msg = f"block_size must be positive, got {block_size}"
            raise ValueError(msg)
        self.block_size = block_size
        self.hasher_factory = hasher_factory

    def diff(self, base: str, target: str) -> DiffScript | None:
        """Return the ops turning ``base`` into ``target``; None when they are equal."""
        if base == target:
            return None

        block_size = self.block_size
        hasher = self.hasher_factory()
        index = BlockIndex.build(base, block_size, hasher)
        script = DiffScript()
        literal: list[str] = []

        target_len = len(target)
        pos = 0
        current_hash = NO_ROLL

        while pos < target_len:
            if target_len - pos < block_size:
                literal.append(target[pos:])
                pos = target_len
                break

            if current_hash == NO_ROLL:
                current_hash = hasher.hash(target[pos : pos + block_size])
            else:
                current_hash = hasher.next_hash(target[pos + block_size - 1])
                if current_hash == NO_ROLL:
                    current_hash = hasher.hash(target[pos : pos + block_size])

            match = index.get_match(current_hash, block_size, target, pos)
            if match is None:
                literal.append(target[pos])
                pos += 1
                continue

            if literal:
                script.ops.append(LiteralOp("".join(literal)))
                literal = []
            script.ops.append(CopyOp(match.offset, match.length))
            pos += match.length
            # Rolling is only valid for one-character slides.
            current_hash = NO_ROLL

        if literal:
            script.ops.append(LiteralOp("".join(literal)))

        logger.debug(
            "Diffed %d -> %d chars: %d ops, %d literal, %d copied",
            len(base),
            target_len,
            len(script),
            script.literal_size,
            script.copied_size,
        )
        return script
