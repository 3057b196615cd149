"""
Tests for the time series containers.
"""

import numpy as np
import pytest

from dynstab.core.timeseries import TimeIndexed, TimeSeriesBlock


class TestTimeSeriesBlock:

    def test_values_are_read_only(self, small_block):
        with pytest.raises(ValueError):
            small_block.values[0, 0] = 1.0
        with pytest.raises(ValueError):
            small_block.times[0] = 5

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            TimeSeriesBlock(times=np.arange(5), columns=('a', 'b'), values=np.zeros((5, 3)))

    def test_series_by_name(self, small_block):
        np.testing.assert_array_equal(small_block.series('y'), small_block.values[:, 1])
        assert small_block.n_vars == 2
        assert len(small_block) == 30

    def test_rescaled_is_z_score(self, small_block):
        scaled = small_block.rescaled()
        np.testing.assert_allclose(scaled.values.mean(axis=0), 0.0, atol=1e-12)
        np.testing.assert_allclose(scaled.values.std(axis=0, ddof=1), 1.0)
        assert scaled.columns == small_block.columns
        assert scaled.time_column == 'censusdate'

    def test_rescaled_constant_column_is_centred(self):
        block = TimeSeriesBlock(
            times=np.arange(4), columns=('a', 'k'),
            values=np.array([[1.0, 3.0], [2.0, 3.0], [3.0, 3.0], [4.0, 3.0]]),
        )
        scaled = block.rescaled()
        np.testing.assert_array_equal(scaled.series('k'), np.zeros(4))

    def test_fingerprint(self, small_block):
        same = TimeSeriesBlock(
            times=small_block.times, columns=small_block.columns,
            values=small_block.values.copy(), time_column='censusdate',
        )
        assert same.fingerprint() == small_block.fingerprint()
        changed = small_block.values.copy()
        changed[3, 1] += 1e-9
        other = TimeSeriesBlock(
            times=small_block.times, columns=small_block.columns,
            values=changed, time_column='censusdate',
        )
        assert other.fingerprint() != small_block.fingerprint()
        assert small_block.rescaled().fingerprint() != small_block.fingerprint()


class TestTimeIndexed:

    def test_missing_propagates_through_map(self):
        ti = TimeIndexed((1, 2, 3), [1.0, None, 3.0])

        def double(x):
            assert x is not None
            return 2 * x

        mapped = ti.map(double)
        assert mapped.entries == (2.0, None, 6.0)
        assert mapped.times == (1, 2, 3)

    def test_queries(self):
        ti = TimeIndexed((10, 11, 12), ['a', None, None])
        assert ti.missing_times() == [11, 12]
        assert ti.present() == [(10, 'a')]
        assert ti.is_missing(1)
        assert not ti.is_missing(0)
        np.testing.assert_array_equal(ti.missing_mask(), [False, True, True])
        assert list(ti) == [(10, 'a'), (11, None), (12, None)]

    def test_all_missing(self):
        ti = TimeIndexed.missing([1, 2])
        assert ti.entries == (None, None)
        assert len(ti) == 2

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            TimeIndexed((1, 2), [None])
