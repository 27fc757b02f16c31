"""Standard-normal random source (Box-Muller over a seedable uniform stream).

Every simulation takes a ``RandomSource`` explicitly so that callers control
reproducibility. Parallel workers must each get their own child source via
``spawn`` rather than sharing one generator.
"""

import math

import numpy as np


class RandomSource:
    """Box-Muller standard normals drawn from a NumPy uniform stream.

    Args:
        seed: Integer seed for reproducible draws, or None for OS entropy.
        rng: An existing ``numpy.random.Generator`` to draw uniforms from.
            Takes precedence over ``seed``.
    """

    def __init__(self, seed: int | None = None, rng: np.random.Generator | None = None):
        self._rng = rng if rng is not None else np.random.default_rng(seed)

    def _nonzero_uniform(self) -> float:
        u = 0.0
        while u == 0.0:
            u = float(self._rng.random())
        return u

    def next_standard_normal(self) -> float:
        """Draw one standard normal: sqrt(-2 ln u) * cos(2 pi v)."""
        u = self._nonzero_uniform()
        v = self._nonzero_uniform()
        return math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)

    def uniform(self, size: int | tuple[int, ...]) -> np.ndarray:
        """Uniform draws in [0, 1)."""
        return self._rng.random(size)

    def standard_normal(self, size: int | tuple[int, ...]) -> np.ndarray:
        """Vectorised Box-Muller draws.

        Uniforms are consumed as interleaved (u, v) pairs, the same order as
        repeated ``next_standard_normal`` calls.
        """
        shape = (size,) if isinstance(size, int) else tuple(size)
        n = int(np.prod(shape))
        if n == 0:
            return np.empty(shape)

        pairs = self._rng.random((n, 2))
        zeros = pairs == 0.0
        while zeros.any():
            # Exact zeros would hit log(0); redraw just those slots
            pairs[zeros] = self._rng.random(int(zeros.sum()))
            zeros = pairs == 0.0

        u = pairs[:, 0]
        v = pairs[:, 1]
        z = np.sqrt(-2.0 * np.log(u)) * np.cos(2.0 * np.pi * v)
        return z.reshape(shape)

    def spawn(self, n: int) -> list["RandomSource"]:
        """Create ``n`` independent child sources for parallel workers."""
        return [RandomSource(rng=child) for child in self._rng.spawn(n)]


def as_random_source(source: "RandomSource | int | None") -> RandomSource:
    """Accept a RandomSource, an integer seed, or None."""
    if isinstance(source, RandomSource):
        return source
    return RandomSource(seed=source)
