"""Fixed-window hash functions used to fingerprint text blocks."""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod

# Returned by next_hash() when a hasher cannot roll; callers must rehash the window.
NO_ROLL = -1


class Hasher(ABC):
    """Base hasher: full-window hashing with optional incremental rolling."""

    @abstractmethod
    def hash(self, text: str) -> int:
        """Hash a whole window."""

    def next_hash(self, char: str) -> int:
        """Slide the last hashed window by one character.

        Hashers without rolling support return ``NO_ROLL``.
        """
        return NO_ROLL


class RollingHash(Hasher):
    """Polynomial Karp-Rabin hash supporting O(1) window slides.

    ``hash()`` must be called once to seed the window before ``next_hash()``.
    Instances are stateful and must not be shared between threads.
    """

    def __init__(self, prime_base: int = 257, prime_mod: int = 1_000_000_007) -> None:
        self.prime_base = prime_base
        self.prime_mod = prime_mod
        self._last_hash = 0
        self._last_power = 0
        self._window = ""

    def hash(self, text: str) -> int:
        value = 0
        for char in text:
            value = (value * self.prime_base + ord(char)) % self.prime_mod
        self._last_power = pow(self.prime_base, max(len(text) - 1, 0), self.prime_mod)
        self._window = text
        self._last_hash = value
        return value

    def next_hash(self, char: str) -> int:
        if not self._window:
            return NO_ROLL
        value = self._last_hash - ord(self._window[0]) * self._last_power
        value = (value * self.prime_base + ord(char)) % self.prime_mod
        self._window = self._window[1:] + char
        self._last_hash = value
        return value


class DigestHasher(Hasher):
    """Hash windows with a hashlib digest. Does not roll."""

    def __init__(self, algorithm: str = "md5") -> None:
        self.algorithm = algorithm

    def hash(self, text: str) -> int:
        digest = hashlib.new(self.algorithm, text.encode("utf-8")).digest()
        return int.from_bytes(digest[:8], "big")
