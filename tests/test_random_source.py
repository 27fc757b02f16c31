"""Tests for the Box-Muller random source."""

import math

import numpy as np
import pytest

from quantcore.analysis.random_source import RandomSource, as_random_source


class TestRandomSource:
    def test_same_seed_same_draws(self):
        a = RandomSource(seed=11)
        b = RandomSource(seed=11)
        assert [a.next_standard_normal() for _ in range(5)] == [b.next_standard_normal() for _ in range(5)]

    def test_scalar_draw_is_box_muller(self):
        rng = np.random.default_rng(3)
        u, v = rng.random(), rng.random()
        expected = math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)
        assert RandomSource(seed=3).next_standard_normal() == pytest.approx(expected, rel=1e-12)

    def test_vector_draws_match_scalar_order(self):
        scalar = RandomSource(seed=5)
        expected = [scalar.next_standard_normal() for _ in range(6)]
        drawn = RandomSource(seed=5).standard_normal((2, 3))
        assert drawn.shape == (2, 3)
        np.testing.assert_allclose(drawn.ravel(), expected, rtol=1e-12)

    def test_integer_size(self):
        assert RandomSource(seed=1).standard_normal(4).shape == (4,)

    def test_empty_size(self):
        assert RandomSource(seed=1).standard_normal((0, 3)).shape == (0, 3)

    def test_moments(self):
        z = RandomSource(seed=2024).standard_normal(200_000)
        assert abs(z.mean()) < 0.01
        assert z.std() == pytest.approx(1.0, abs=0.01)

    def test_uniform_range(self):
        u = RandomSource(seed=9).uniform(1000)
        assert u.min() >= 0.0
        assert u.max() < 1.0

    def test_accepts_existing_generator(self):
        a = RandomSource(rng=np.random.default_rng(8))
        b = RandomSource(seed=8)
        assert a.next_standard_normal() == b.next_standard_normal()


class TestSpawn:
    def test_children_are_independent_streams(self):
        children = RandomSource(seed=1).spawn(3)
        draws = [c.standard_normal(5) for c in children]
        assert len(draws) == 3
        assert not np.allclose(draws[0], draws[1])
        assert not np.allclose(draws[1], draws[2])

    def test_spawn_is_reproducible(self):
        first = [c.standard_normal(4) for c in RandomSource(seed=77).spawn(2)]
        second = [c.standard_normal(4) for c in RandomSource(seed=77).spawn(2)]
        for a, b in zip(first, second):
            np.testing.assert_array_equal(a, b)


class TestAsRandomSource:
    def test_passthrough(self):
        rs = RandomSource(seed=1)
        assert as_random_source(rs) is rs

    def test_from_seed(self):
        assert as_random_source(4).next_standard_normal() == RandomSource(seed=4).next_standard_normal()

    def test_from_none(self):
        assert isinstance(as_random_source(None), RandomSource)
