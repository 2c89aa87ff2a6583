"""
Unit tests for the 2D density sampler.
"""

import logging
import sys
from pathlib import Path

import numpy as np
import pytest
from scipy.stats import chisquare

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from src.density_sampler import DensitySampler, InvalidDensityError
from src.density_sampler.sampler2d import _sample_1d
from src.density_sampler.utils import empirical_histogram


def test_normalization():
    """Rows and marginal sum to 1; zero rows stay zero."""
    rng = np.random.default_rng(3)
    density = rng.uniform(-0.5, 2.0, size=(6, 5))
    density[:, 0] = 1.0
    density[2] = -1.0  # clamps to an all-zero row

    sampler = DensitySampler.from_array(density, seed=0)

    row_sums = sampler.normalized_rows.sum(axis=1)
    for i, s in enumerate(row_sums):
        if i == 2:
            assert s == 0.0
            assert np.all(sampler.normalized_rows[i] == 0.0)
        else:
            assert abs(s - 1.0) < 1e-5
    assert abs(sampler.marginal.sum() - 1.0) < 1e-5
    assert sampler.marginal[2] == 0.0
    assert np.all(sampler.normalized_rows >= 0.0)


def test_marginal_matches_row_totals():
    density = np.array([[1.0, 3.0], [2.0, 2.0], [0.0, 0.0], [-5.0, 2.0]])
    sampler = DensitySampler.from_array(density)
    expected = np.array([4.0, 4.0, 0.0, 2.0]) / 10.0
    np.testing.assert_allclose(sampler.marginal, expected)
    np.testing.assert_allclose(sampler.normalized_rows[0], [0.25, 0.75])
    np.testing.assert_allclose(sampler.normalized_rows[3], [0.0, 1.0])


def test_range_valid_and_fallback():
    """Every sample lies in the unit square."""
    valid = DensitySampler(7, 3, np.linspace(0.0, 5.0, 21), seed=1)
    fallback = DensitySampler(2, 2, [], seed=2)
    for sampler in (valid, fallback):
        pts = sampler.sample_n(100_000)
        assert pts.shape == (100_000, 2)
        assert np.all(pts >= 0.0)
        assert np.all(pts <= 1.0)


def test_uniform_density_fidelity():
    """A flat 4x4 grid gives a flat 4x4 histogram."""
    sampler = DensitySampler(4, 4, [1.0] * 16, seed=12345)
    pts = sampler.sample_n(100_000)
    counts = empirical_histogram(pts, 4, 4).ravel()
    assert counts.sum() == 100_000
    _, p_value = chisquare(counts)
    assert p_value > 0.001, f"Uniformity rejected: counts={counts}, p={p_value}"


def test_weighted_density_fidelity():
    density = np.array([[1.0, 2.0, 0.0], [0.0, 3.0, 4.0]])
    sampler = DensitySampler.from_array(density, seed=99)
    pts = sampler.sample_n(100_000)
    counts = empirical_histogram(pts, 3, 2)
    expected = density / density.sum() * 100_000
    mask = expected > 0
    assert np.all(counts[~mask] == 0)
    _, p_value = chisquare(counts[mask], expected[mask])
    assert p_value > 0.001


def test_concentrated_density():
    """All mass in cell (0, 0) keeps samples in the lower-left quadrant."""
    sampler = DensitySampler(2, 2, [1.0, 0.0, 0.0, 0.0], seed=7)
    pts = sampler.sample_n(20_000)
    assert np.all(pts <= 0.5)
    inside = np.mean((pts[:, 0] < 0.5) & (pts[:, 1] < 0.5))
    assert inside > 0.999


def test_single_sample_in_concentrated_cell():
    sampler = DensitySampler(2, 2, [0.0, 0.0, 0.0, 1.0], seed=11)
    for _ in range(1000):
        x, y = sampler.sample()
        assert isinstance(x, float) and isinstance(y, float)
        assert 0.5 <= x <= 1.0
        assert 0.5 <= y <= 1.0


def test_zero_row_never_selected():
    density = np.array([[1.0, 1.0], [0.0, 0.0], [1.0, 1.0]])
    sampler = DensitySampler.from_array(density, seed=5)
    y = sampler.sample_n(50_000)[:, 1]
    eps = 1e-9
    assert not np.any((y > 1.0 / 3.0 + eps) & (y < 2.0 / 3.0 - eps))


def test_fallback_on_empty(caplog):
    with caplog.at_level(logging.WARNING):
        sampler = DensitySampler(2, 2, [], seed=0)
    assert "empty" in caplog.text
    assert sampler.shape == (1, 1)
    np.testing.assert_array_equal(sampler.marginal, [1.0])
    for _ in range(100):
        x, y = sampler.sample()
        assert 0.0 <= x <= 1.0
        assert 0.0 <= y <= 1.0


def test_fallback_on_size_mismatch(caplog):
    with caplog.at_level(logging.WARNING):
        sampler = DensitySampler(3, 3, [1.0, 2.0, 3.0], seed=0)
    assert "doesn't match" in caplog.text
    assert (sampler.width, sampler.height) == (1, 1)


def test_fallback_on_non_2d_array(caplog):
    with caplog.at_level(logging.WARNING):
        sampler = DensitySampler.from_array(np.ones(5))
    assert "expected 2D" in caplog.text
    assert sampler.shape == (1, 1)


@pytest.mark.parametrize(
    "width,height,density",
    [
        (2, 2, []),
        (3, 2, [1.0, 2.0]),
        (0, 4, [1.0] * 4),
        (1, 2, [1.0, np.inf]),
    ],
)
def test_strict_raises(width, height, density):
    with pytest.raises(InvalidDensityError):
        DensitySampler(width, height, density, strict=True)


def test_strict_error_is_value_error():
    with pytest.raises(ValueError, match="empty"):
        DensitySampler(1, 1, [], strict=True)
    with pytest.raises(InvalidDensityError):
        DensitySampler.from_array(np.ones((2, 2, 2)), strict=True)


def test_all_zero_density_is_uniform(caplog):
    """No positive weight falls back to uniform over the full grid."""
    with caplog.at_level(logging.WARNING):
        sampler = DensitySampler(3, 2, [0.0] * 6, seed=4)
    assert "no positive weight" in caplog.text
    assert sampler.shape == (2, 3)
    np.testing.assert_allclose(sampler.marginal, [0.5, 0.5])
    np.testing.assert_allclose(sampler.normalized_rows, np.full((2, 3), 1.0 / 3.0))

    pts = sampler.sample_n(30_000)
    assert np.all(np.isfinite(pts))
    counts = empirical_histogram(pts, 3, 2)
    _, p_value = chisquare(counts.ravel())
    assert p_value > 0.001


def test_negative_and_nan_weights_clamped():
    sampler = DensitySampler(3, 1, [-2.0, np.nan, 4.0], seed=0)
    np.testing.assert_allclose(sampler.normalized_rows, [[0.0, 0.0, 1.0]])
    x = sampler.sample_n(5_000)[:, 0]
    assert np.all(x >= 2.0 / 3.0)


def test_huge_finite_weights_stay_normalized():
    """Row totals past the float64 maximum still give unit-sum tables."""
    sampler = DensitySampler(2, 2, [1e308, 1e308, 1.0, 0.0], seed=0)
    assert np.all(np.isfinite(sampler.marginal))
    assert abs(sampler.marginal.sum() - 1.0) < 1e-5
    np.testing.assert_allclose(sampler.normalized_rows, [[0.5, 0.5], [1.0, 0.0]])

    y = sampler.sample_n(20_000)[:, 1]
    assert np.mean(y <= 0.5) > 0.99


def test_tables_are_read_only():
    sampler = DensitySampler(2, 2, [1.0, 2.0, 3.0, 4.0])
    assert not sampler.normalized_rows.flags.writeable
    assert not sampler.marginal.flags.writeable
    with pytest.raises(ValueError):
        sampler.marginal[0] = 1.0


def test_input_buffer_not_aliased():
    density = np.array([1.0, 2.0, 3.0, 4.0])
    sampler = DensitySampler(2, 2, density)
    before = sampler.normalized_rows.copy()
    density[:] = 100.0
    np.testing.assert_array_equal(sampler.normalized_rows, before)


def test_reproducible_with_seed():
    density = np.arange(12, dtype=float)
    a = DensitySampler(4, 3, density, seed=2024)
    b = DensitySampler(4, 3, density, seed=2024)
    np.testing.assert_array_equal(a.sample_n(1000), b.sample_n(1000))

    c = DensitySampler(4, 3, density, rng=np.random.default_rng(2024))
    d = DensitySampler(4, 3, density, seed=2024)
    assert c.sample() == tuple(d.sample_n(1)[0])


def test_sample_n_edge_cases():
    sampler = DensitySampler(2, 2, [1.0, 1.0, 1.0, 1.0], seed=0)
    empty = sampler.sample_n(0)
    assert empty.shape == (0, 2)
    with pytest.raises(ValueError):
        sampler.sample_n(-1)


def test_sample_1d_walk():
    """Direct checks of the inverse-CDF walk."""
    weights = np.array([0.25, 0.25, 0.5])

    idx, pos = _sample_1d(weights, 2, 0.0)
    assert idx == 0
    assert pos == pytest.approx(1.0)

    idx, pos = _sample_1d(weights, 2, 0.6)
    assert idx == 2
    assert pos == pytest.approx(2.0 + (1.0 - 0.6) / 0.5)

    # leading zero bucket is skipped even for r == 0
    idx, pos = _sample_1d(np.array([0.0, 1.0]), 1, 0.0)
    assert idx == 1
    assert pos == pytest.approx(2.0)


def test_sample_1d_shortfall_stops_at_last_positive():
    """A total below r ends on the last positive bucket without dividing by 0."""
    weights = np.array([0.3, 0.3, 0.0])
    idx, pos = _sample_1d(weights, 1, 0.9)
    assert idx == 1
    assert pos == pytest.approx(1.0)
    assert np.isfinite(pos)


def test_repr_and_shape():
    sampler = DensitySampler(5, 2, np.ones(10))
    assert sampler.shape == (2, 5)
    assert "width=5" in repr(sampler)
