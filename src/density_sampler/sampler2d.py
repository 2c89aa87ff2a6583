"""
Piecewise-constant 2D density sampler.

Draws points in the unit square with probability proportional to the weights
of a rectangular density grid, using two chained 1D inverse-CDF samplers:

1.  **Marginal over rows:** each row's total weight, normalized over all rows,
    selects a row and a continuous vertical position inside it.
2.  **Conditional over columns:** the chosen row's normalized weights select a
    continuous horizontal position.

The normalized tables are built once at construction (O(W*H)); every sample
afterwards is an O(row width) walk compiled with `@numba.njit`.

Thread safety:
    A sampler owns a single `numpy.random.Generator`. Sampling reads immutable
    tables but advances that generator, so concurrent calls from several
    threads must be synchronized externally, or each thread given its own
    sampler.
"""

from __future__ import annotations

import logging
from typing import Sequence, Tuple

import numpy as np
from numba import njit

logger = logging.getLogger(__name__)


class InvalidDensityError(ValueError):
    """Raised by strict construction when the density buffer is unusable."""


###############################################################################
# Compiled inverse-CDF kernels
###############################################################################


@njit(cache=True)
def _sample_1d(weights: np.ndarray, last: int, r: float) -> Tuple[int, float]:
    """
    Inverse-CDF walk over a normalized 1D distribution.

    Accumulates weights from bucket 0 until the running total exceeds `r`,
    then interpolates inside the bucket. The walk never goes past `last`,
    the final bucket with positive weight, so the interpolation never
    divides by zero even when rounding leaves the total slightly below 1.

    Returns the bucket index and a continuous position in [0, len(weights)].
    """
    n = weights.shape[0]
    if last < 0:
        # all-zero row: never selected by a well-formed marginal
        pos = r * n
        idx = int(pos)
        if idx > n - 1:
            idx = n - 1
        return idx, pos

    current = 0
    total = weights[0]
    while r >= total and current < last:
        current += 1
        total += weights[current]

    frac = (total - r) / weights[current]
    if frac < 0.0:
        frac = 0.0
    elif frac > 1.0:
        frac = 1.0
    return current, current + frac


@njit(cache=True)
def _sample_point(
    marginal, marginal_last, rows, rows_last, r_y, r_x
) -> Tuple[float, float]:
    height, width = rows.shape
    row_index, y = _sample_1d(marginal, marginal_last, r_y)
    if row_index > height - 1:
        row_index = height - 1
    _, x = _sample_1d(rows[row_index], rows_last[row_index], r_x)
    return x / width, y / height


@njit(cache=True)
def _sample_batch(marginal, marginal_last, rows, rows_last, uniforms, out):
    for i in range(uniforms.shape[0]):
        x, y = _sample_point(
            marginal, marginal_last, rows, rows_last, uniforms[i, 0], uniforms[i, 1]
        )
        out[i, 0] = x
        out[i, 1] = y


###############################################################################
# Table construction
###############################################################################


def _last_positive(weights: np.ndarray) -> np.ndarray:
    """Index of the last positive entry along the final axis, -1 if none."""
    positive = weights > 0.0
    n = weights.shape[-1]
    flipped_first = np.argmax(positive[..., ::-1], axis=-1)
    last = n - 1 - flipped_first
    return np.where(positive.any(axis=-1), last, -1).astype(np.int64)


def _normalize_lines(lines: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Normalize each line (last axis) to unit sum.

    Lines with zero total stay all-zero. Returns the normalized copy and the
    pre-normalization totals.
    """
    totals = np.asarray(lines.sum(axis=-1))
    normalized = np.zeros_like(lines)
    np.divide(
        lines,
        totals[..., np.newaxis],
        out=normalized,
        where=totals[..., np.newaxis] > 0.0,
    )
    return normalized, totals


def _check_density(width: int, height: int, density: np.ndarray) -> str | None:
    """Return a description of what is wrong with the input, or None."""
    if density.size == 0:
        return "the provided buffer was empty"
    if width < 1 or height < 1 or density.size != width * height:
        return (
            f"the provided buffer size ({density.size}) doesn't match "
            f"the provided size ({width}x{height})"
        )
    if np.isinf(density).any():
        return "the provided buffer contains infinite weights"
    return None


class DensitySampler:
    """
    Sampler for discrete 2D density distributions.

    Args:
        width: Number of columns W.
        height: Number of rows H.
        density: W*H weights, row-major. Need not be normalized; negative
            values (and NaN) count as 0.
        seed: Seed for a fresh `numpy.random.default_rng`, ignored if `rng`
            is given.
        rng: Random source to own. Must not be shared with other threads.
        strict: Raise `InvalidDensityError` on invalid input instead of
            falling back to a uniform 1x1 grid.
    """

    def __init__(
        self,
        width: int,
        height: int,
        density: Sequence[float] | np.ndarray,
        *,
        seed: int | None = None,
        rng: np.random.Generator | None = None,
        strict: bool = False,
    ):
        self.rng = rng if rng is not None else np.random.default_rng(seed)

        width, height = int(width), int(height)
        weights = np.asarray(density, dtype=np.float64).ravel()

        problem = _check_density(width, height, weights)
        if problem is not None:
            if strict:
                raise InvalidDensityError(problem)
            logger.warning("Invalid density (%s); sampling the uniform 1x1 grid.", problem)
            width, height = 1, 1
            weights = np.ones(1, dtype=np.float64)

        # Density map is positive
        weights = np.where(weights > 0.0, weights, 0.0)
        grid = weights.reshape(height, width)

        if not grid.any():
            logger.warning(
                "Density %dx%d has no positive weight; sampling it uniformly.",
                width,
                height,
            )
            grid = np.ones((height, width), dtype=np.float64)

        # Scale cancels under normalization; keeps row totals finite
        grid = grid / grid.max()

        rows, row_totals = _normalize_lines(grid)
        marginal, _ = _normalize_lines(row_totals)

        self._width = width
        self._height = height
        self._rows = np.ascontiguousarray(rows)
        self._marginal = np.ascontiguousarray(marginal)
        self._rows_last = _last_positive(self._rows)
        self._marginal_last = int(_last_positive(self._marginal))

        for table in (self._rows, self._marginal, self._rows_last):
            table.flags.writeable = False

    @classmethod
    def from_array(cls, density: np.ndarray, **kwargs) -> "DensitySampler":
        """Build from a 2D array of shape (H, W)."""
        arr = np.asarray(density, dtype=np.float64)
        if arr.ndim != 2:
            if kwargs.get("strict"):
                raise InvalidDensityError(
                    f"expected a 2D density array, got shape {arr.shape}"
                )
            logger.warning(
                "Density array has shape %s, expected 2D; sampling the uniform 1x1 grid.",
                arr.shape,
            )
            return cls(1, 1, [1.0], **kwargs)
        height, width = arr.shape
        return cls(width, height, arr.ravel(), **kwargs)

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def shape(self) -> Tuple[int, int]:
        """Grid shape as (height, width)."""
        return self._height, self._width

    @property
    def normalized_rows(self) -> np.ndarray:
        """Conditional distributions over columns, one row each (read-only)."""
        return self._rows

    @property
    def marginal(self) -> np.ndarray:
        """Marginal distribution over rows (read-only)."""
        return self._marginal

    def sample(self) -> Tuple[float, float]:
        """
        Generate one sample using the inverse method.

        Returns:
            (x, y) in [0, 1] x [0, 1]. x follows columns, y follows rows.
        """
        r_y, r_x = self.rng.random(2)
        x, y = _sample_point(
            self._marginal,
            self._marginal_last,
            self._rows,
            self._rows_last,
            r_y,
            r_x,
        )
        return float(x), float(y)

    def sample_n(self, n: int) -> np.ndarray:
        """
        Generate `n` samples in one compiled loop.

        Returns:
            Array of shape (n, 2) holding (x, y) pairs.
        """
        n = int(n)
        if n < 0:
            raise ValueError(f"Number of samples must be non-negative, got {n}")
        uniforms = self.rng.random((n, 2))
        out = np.empty((n, 2), dtype=np.float64)
        _sample_batch(
            self._marginal,
            self._marginal_last,
            self._rows,
            self._rows_last,
            uniforms,
            out,
        )
        return out

    def __repr__(self) -> str:
        return f"DensitySampler(width={self._width}, height={self._height})"


__all__ = ["DensitySampler", "InvalidDensityError"]
