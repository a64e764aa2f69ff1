"""Block partitioning and fingerprint index over a reference text."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from diffable.delta.hasher import Hasher


@dataclass(frozen=True)
class Block:
    """A span of reference text starting at ``offset``."""

    text: str
    offset: int

    @property
    def length(self) -> int:
        return len(self.text)


def split_blocks(text: str, block_size: int) -> list[Block]:
    """Partition text into consecutive blocks; the last one may be shorter."""
    if block_size < 1:
        msg = f"block_size must be positive, got {block_size}"
        raise ValueError(msg)
    return [Block(text[i : i + block_size], i) for i in range(0, len(text), block_size)]


@dataclass
class BlockIndex:
    """Maps block fingerprints to the blocks of the reference text.

    Colliding fingerprints are chained in one bucket; lookups verify the
    candidate text before reporting a match.
    """

    text: str = ""
    block_size: int = 1
    buckets: dict[int, list[Block]] = field(default_factory=dict)

    @classmethod
    def build(cls, text: str, block_size: int, hasher: Hasher) -> BlockIndex:
        index = cls(text=text, block_size=block_size)
        for block in split_blocks(text, block_size):
            index.put(hasher.hash(block.text), block)
        return index

    def put(self, fingerprint: int, block: Block) -> None:
        self.buckets.setdefault(fingerprint, []).append(block)

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self.buckets.values())

    def __iter__(self) -> Iterator[Block]:
        for bucket in self.buckets.values():
            yield from bucket

    def get_match(
        self,
        fingerprint: int,
        block_size: int,
        target: str,
        start: int = 0,
    ) -> Block | None:
        """Return the longest verified match for ``target[start:]``, or None.

        The first candidate whose text equals the window is extended one
        character at a time while the reference text and the target keep
        agreeing past the block.
        """
        bucket = self.buckets.get(fingerprint)
        if not bucket:
            return None
        window = target[start : start + block_size]
        for block in bucket:
            if block.text != window:
                continue
            ref_pos = block.offset + block_size
            target_pos = start + block_size
            ref_end = len(self.text)
            target_end = len(target)
            while (
                ref_pos < ref_end
                and target_pos < target_end
                and self.text[ref_pos] == target[target_pos]
            ):
                ref_pos += 1
                target_pos += 1
            return Block(self.text[block.offset : ref_pos], block.offset)
        return None
