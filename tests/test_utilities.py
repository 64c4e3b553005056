import numpy as np
import pytest

from cpstan import utilities as util


class TestUtilities:
    def test_flatten(self):
        xss = [[1,2,3], [4,5], [6], []]

        assert util.flatten(xss) == [1,2,3,4,5,6]

    def test_unique(self):
        xs = [1,2,2,3,1,5]

        assert util.unique(xs) == [1,2,3,5]

        xs = [1,5,4,3,4,2,1]

        assert util.unique(xs) == [1,2,3,4,5]

    def test_unique_keep_order(self):
        xs = ["x", "a", "x", "b", "a"]

        assert util.unique_keep_order(xs) == ["x", "a", "b"]

    def test_indent(self):
        assert util.indent("a\nb", 2) == "  a\n  b"

    def test_map_levels(self):
        idx, levels = util.map_levels(["b", "a", "b", "c"])

        assert list(idx) == [2, 1, 2, 3]
        assert levels == ["a", "b", "c"]

        idx, levels = util.map_levels(np.array([10, 5, 5]))

        assert list(idx) == [2, 1, 1]
        assert levels == [5, 10]

    def test_credible_interval(self):
        draws = np.linspace(0.0, 1.0, 1001)
        lower, upper = util.credible_interval(draws, 0.9)

        assert np.isclose(lower, 0.05)
        assert np.isclose(upper, 0.95)

        # intervals along an axis
        draws = np.stack([np.linspace(0.0, 1.0, 101), np.linspace(1.0, 2.0, 101)], axis=1)
        lower, upper = util.credible_interval(draws, 0.5, axis=0)

        assert np.allclose(lower, [0.25, 1.25])
        assert np.allclose(upper, [0.75, 1.75])

        with pytest.raises(ValueError, match="prob must be between 0 and 1"):
            util.credible_interval(draws, 1.5)
