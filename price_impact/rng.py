# price_impact/rng.py
from __future__ import annotations

import math
from typing import List, Sequence, TypeVar

T = TypeVar("T")

_MASK32 = 0xFFFFFFFF


def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK32


class SeededRNG:
    """
    mulberry32 generator.

    Produces the same stream as the 32-bit reference implementation for a
    given seed, so synthetic datasets are reproducible across platforms.
    """

    def __init__(self, seed: int) -> None:
        self._state = seed & _MASK32

    def next(self) -> float:
        """Uniform float in [0, 1)."""
        self._state = (self._state + 0x6D2B79F5) & _MASK32
        t = self._state
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & _MASK32
        return ((t ^ (t >> 14)) & _MASK32) / 4294967296

    def int(self, lo: int, hi: int) -> int:
        """Uniform integer in [lo, hi] (inclusive)."""
        return math.floor(self.next() * (hi - lo + 1)) + lo

    def float(self, lo: float, hi: float) -> float:
        """Uniform float in [lo, hi)."""
        return self.next() * (hi - lo) + lo

    def choice(self, seq: Sequence[T]) -> T:
        if not seq:
            raise ValueError("choice() from an empty sequence")
        return seq[self.int(0, len(seq) - 1)]

    def shuffle(self, seq: Sequence[T]) -> List[T]:
        """Fisher-Yates shuffle. Returns a new list; `seq` is untouched."""
        result = list(seq)
        for i in range(len(result) - 1, 0, -1):
            j = self.int(0, i)
            result[i], result[j] = result[j], result[i]
        return result
