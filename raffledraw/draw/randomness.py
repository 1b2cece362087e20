"""Randomness sources used by the draw engine."""

from __future__ import annotations

import secrets
from abc import ABC, abstractmethod
from typing import Sequence, TypeVar

T = TypeVar("T")


class RandomSource(ABC):
    """Picks one of ``n`` options with uniform probability.

    The draw engine takes every random decision through this single method,
    so tests can inject a deterministic source.
    """

    @abstractmethod
    def pick(self, n: int) -> int:
        """Return an index in ``range(n)``.

        Raises
        ------
        ValueError
            If ``n`` is less than 1.
        """


class SystemRandomSource(RandomSource):
    """Uniform selection backed by the operating system CSPRNG."""

    def pick(self, n: int) -> int:
        if n < 1:
            raise ValueError("Cannot pick from an empty set")
        return secrets.randbelow(n)


DEFAULT_RANDOM_SOURCE = SystemRandomSource()


def shuffle(items: Sequence[T], source: RandomSource) -> list[T]:
    """Return a uniformly random permutation of ``items`` (Fisher-Yates).

    ``items`` is not modified.
    """
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = source.pick(i + 1)
        result[i], result[j] = result[j], result[i]
    return result


__all__ = ["DEFAULT_RANDOM_SOURCE", "RandomSource", "SystemRandomSource", "shuffle"]
