"""
Tests for input validation, the table reader and the manifest.
"""

from datetime import date

import numpy as np
import polars as pl
import pytest

from dynstab.errors import ConfigurationError, DataFormatError
from dynstab.io.manifest import get_observations_path, get_options, get_store_dir, load_manifest
from dynstab.io.reader import load_block, read_table
from dynstab.validation import block_from_frame, validate_frame


def _frame(times, **columns):
    data = {'censusdate': times}
    data.update(columns)
    return pl.DataFrame(data)


class TestValidateFrame:

    def test_valid_frame(self, scenario_a):
        report = validate_frame(scenario_a, 'censusdate')
        assert report.valid
        assert report.n_times == 120
        assert report.n_columns == 3
        assert report.median_step == 1.0
        assert report.constant_columns == []
        assert 'PASSED' in report.summary()

    def test_missing_time_column(self, scenario_a):
        with pytest.raises(DataFormatError, match='newmoon'):
            validate_frame(scenario_a, 'newmoon')

    def test_no_data_columns(self):
        with pytest.raises(DataFormatError):
            validate_frame(_frame([1, 2, 3]), 'censusdate')

    def test_non_numeric_column(self):
        with pytest.raises(DataFormatError, match="'species'"):
            validate_frame(_frame([1, 2, 3], species=['a', 'b', 'c']), 'censusdate')

    def test_null_value_names_index(self):
        df = _frame([1, 2, 3, 4], A=[1.0, None, 2.0, 3.0])
        with pytest.raises(DataFormatError, match='at time index') as info:
            validate_frame(df, 'censusdate')
        assert info.value.index == 2

    def test_nan_value(self):
        df = _frame([1, 2, 3], A=[1.0, np.nan, 2.0])
        with pytest.raises(DataFormatError):
            validate_frame(df, 'censusdate')

    def test_unordered_times(self):
        df = _frame([0, 1, 3, 2], A=[1.0, 2.0, 3.0, 4.0])
        with pytest.raises(DataFormatError, match='strictly increasing') as info:
            validate_frame(df, 'censusdate')
        assert info.value.index == 2

    def test_duplicate_times(self):
        df = _frame([0, 1, 1, 2], A=[1.0, 2.0, 3.0, 4.0])
        with pytest.raises(DataFormatError, match='strictly increasing'):
            validate_frame(df, 'censusdate')

    def test_gap_names_offending_index(self):
        df = _frame([0, 1, 2, 3, 5, 6, 7], A=np.arange(7.0))
        with pytest.raises(DataFormatError, match='gap') as info:
            validate_frame(df, 'censusdate')
        assert info.value.index == 5

    def test_constant_column_only_warns(self, scenario_b):
        report = validate_frame(scenario_b, 'censusdate')
        assert report.valid
        assert report.constant_columns == ['D']
        assert len(report.warnings) == 1
        assert report.to_dict()['constant_columns'] == ['D']

    def test_monthly_dates_are_regular(self):
        times = pl.date_range(date(2000, 1, 1), date(2002, 12, 1), interval='1mo', eager=True)
        df = pl.DataFrame({'censusdate': times, 'A': np.arange(len(times), dtype=float)})
        report = validate_frame(df, 'censusdate')
        assert report.n_times == 36

    def test_block_from_frame(self, scenario_a):
        block = block_from_frame(scenario_a, 'censusdate')
        assert block.columns == ('A', 'B', 'C')
        assert block.time_column == 'censusdate'
        np.testing.assert_array_equal(block.series('B'), scenario_a['B'].to_numpy())

    def test_block_from_frame_warns_on_constant_column(self, scenario_b):
        with pytest.warns(RuntimeWarning, match='constant variable.*D'):
            block = block_from_frame(scenario_b, 'censusdate')
        assert 'D' in block.columns


class TestReader:

    def test_parquet_and_csv(self, tmp_path, scenario_a):
        scenario_a.write_parquet(tmp_path / 'community.parquet')
        scenario_a.write_csv(tmp_path / 'community.csv')
        from_parquet = read_table(str(tmp_path / 'community.parquet'))
        from_csv = read_table(str(tmp_path / 'community.csv'))
        assert from_parquet.columns == from_csv.columns == ['censusdate', 'A', 'B', 'C']
        assert from_csv.height == 120

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / 'community.xlsx'
        path.write_bytes(b'')
        with pytest.raises(DataFormatError, match='unsupported'):
            read_table(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_table(str(tmp_path / 'absent.parquet'))

    def test_load_block(self, tmp_path, scenario_a):
        scenario_a.write_parquet(tmp_path / 'community.parquet')
        block = load_block(str(tmp_path / 'community.parquet'), 'censusdate')
        assert block.values.shape == (120, 3)


class TestManifest:

    def test_paths_and_options(self, tmp_path):
        (tmp_path / 'manifest.yaml').write_text(
            "paths:\n"
            "  observations: community.parquet\n"
            "  store: results\n"
            "options:\n"
            "  num_surr: 50\n"
            "  ridge_lambda: 1e-6\n"
        )
        manifest = load_manifest(str(tmp_path))
        assert get_options(manifest) == {'num_surr': 50, 'ridge_lambda': '1e-6'}
        assert get_observations_path(manifest) == str(tmp_path / 'community.parquet')
        assert get_store_dir(manifest) == str(tmp_path / 'results')

    def test_manifest_file_path(self, tmp_path):
        path = tmp_path / 'run.yaml'
        path.write_text("options: {}\n")
        manifest = load_manifest(str(path))
        assert get_options(manifest) == {}
        assert get_store_dir(manifest) == str(tmp_path / 'output')

    def test_missing_manifest(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_manifest(str(tmp_path))

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / 'manifest.yaml').write_text("options: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_manifest(str(tmp_path))

    def test_options_must_be_mapping(self, tmp_path):
        (tmp_path / 'manifest.yaml').write_text("options:\n  - 1\n")
        with pytest.raises(ConfigurationError, match='options'):
            load_manifest(str(tmp_path))
