"""
Unit tests for station_stats module.
"""

import json

import pytest
import numpy as np
import pandas as pd

from buoy_extremes.config import DEFAULT_CONFIG
from buoy_extremes.station_stats import (
    BatchReport, SkippedUnit, ensure_json_serializable, format_batch_report, pooled_gev,
    process_station, run_station_analyses, save_report,
)


@pytest.fixture
def config():
    return DEFAULT_CONFIG.with_overrides(min_exceedances=5, gpd_threshold_quantile=0.8,
                                         return_periods=[1, 10])


@pytest.fixture
def two_stations(gpd_exceedance_df):
    """Station 41001 with 200 GPD values; station 41002 with only three values."""
    short = pd.DataFrame({
        'station_id': '41002',
        'time': pd.date_range('2020-01-01', periods=3, freq='72h'),
        'wave_height': [1.0, 2.0, 3.0],
    })
    return pd.concat([gpd_exceedance_df, short], ignore_index=True)


def test_ensure_json_serializable():
    data = {
        'a': np.float64(np.nan),
        'b': np.int64(3),
        'c': [np.inf, 1.5],
        'd': pd.Timestamp('2020-01-01 06:00'),
        'e': pd.DataFrame({'x': [1.0, np.nan]}),
        'f': SkippedUnit('41001', 'wave_height', 'no data'),
        'g': np.array([True, False]),
        1: np.bool_(True),
    }
    out = ensure_json_serializable(data)

    assert out['a'] is None
    assert out['b'] == 3 and isinstance(out['b'], int)
    assert out['c'] == [None, 1.5]
    assert out['d'] == '2020-01-01T06:00:00'
    assert out['e'] == [{'x': 1.0}, {'x': None}]
    assert out['f'] == {'station': '41001', 'variable': 'wave_height', 'reason': 'no data'}
    assert out['g'] == [True, False]
    assert out['1'] is True
    json.dumps(out)


class TestProcessStation:
    """Tests for a single (station, variable) unit."""

    def test_ok(self, gpd_exceedance_df, config):
        record = process_station(('41001', 'wave_height', gpd_exceedance_df), config)

        assert record['status'] == 'OK'
        assert record['fit']['family'] == 'GPD'
        assert record['fit']['n_input_points'] == 40
        assert [rl['return_period'] for rl in record['return_levels']] == [1.0, 10.0]
        assert len(record['thresholds']) == 3

    def test_skip_too_few_exceedances(self, two_stations, config):
        short = two_stations[two_stations['station_id'] == '41002']
        record = process_station(('41002', 'wave_height', short), config)

        assert record['status'] == 'SKIP'
        assert "Insufficient exceedances" in record['reason']

    def test_skip_no_values(self, gpd_exceedance_df):
        record = process_station(('41001', 'wind_speed', gpd_exceedance_df))
        assert record['status'] == 'SKIP'
        assert record['reason'] == "no valid wind_speed values"

    def test_error_is_recorded(self, gpd_exceedance_df, config):
        df = gpd_exceedance_df.copy()
        df['wave_height'] = np.where(np.arange(len(df)) % 2 == 0, 1.0, 3.0)
        record = process_station(('41001', 'wave_height', df), config)

        assert record['status'] in ('ERROR', 'SKIP')
        assert record['reason']


class TestRunStationAnalyses:
    """Tests for the batch run (in-process)."""

    def test_results_and_skips(self, two_stations, config):
        report = run_station_analyses(two_stations, variables=['wave_height'],
                                      config=config, workers=1)

        assert isinstance(report, BatchReport)
        assert report.n_ok == 1
        assert report.results[0]['station'] == '41001'

        skipped = {(s.station, s.variable) for s in report.skipped}
        assert ('41002', 'wave_height') in skipped
        # Pooled GEV over ~1.6 years of record cannot be fitted
        assert ('ALL', 'wave_height') in skipped
        assert report.pooled['wave_height']['status'] == 'insufficient_data'

    def test_results_in_station_order(self, make_observations, config):
        df = make_observations(stations=('B', 'A', 'C'), periods=24 * 60)
        report = run_station_analyses(df, variables=['wave_height', 'wind_speed'],
                                      config=config, workers=1)

        order = [(r['station'], r['variable']) for r in report.results]
        assert order == [('A', 'wave_height'), ('A', 'wind_speed'),
                         ('B', 'wave_height'), ('B', 'wind_speed'),
                         ('C', 'wave_height'), ('C', 'wind_speed')]

    def test_worker_pool_matches_serial(self, make_observations, config):
        df = make_observations(stations=('C', 'A', 'B'), periods=24 * 90, seed=3)

        serial = run_station_analyses(df, variables=['wave_height'], config=config, workers=1)
        pooled = run_station_analyses(df, variables=['wave_height'], config=config, workers=2)

        assert [r['station'] for r in pooled.results] == ['A', 'B', 'C']
        assert pooled.skipped == serial.skipped
        assert (json.dumps(ensure_json_serializable(pooled.results), sort_keys=True)
                == json.dumps(ensure_json_serializable(serial.results), sort_keys=True))

    def test_station_filter(self, two_stations, config):
        report = run_station_analyses(two_stations, variables=['wave_height'], config=config,
                                      workers=1, stations=['41001', '99999'])

        assert report.n_ok == 1
        assert all(s.station != '41002' for s in report.skipped)

    def test_missing_variable(self, two_stations, config):
        report = run_station_analyses(two_stations, variables=['swell_height'],
                                      config=config, workers=1)

        assert report.n_ok == 0
        assert report.pooled['swell_height']['status'] == 'ERROR'
        assert len(report.skipped) == 3


def test_pooled_gev_fitted(gumbel_annual_maxima_df):
    skipped = []
    result = pooled_gev(gumbel_annual_maxima_df, 'wind_speed', DEFAULT_CONFIG, skipped)

    assert result['status'] == 'fitted'
    assert result['n_years'] == 10
    assert len(result['return_levels']) == 3
    assert skipped == []


def test_report_text_and_json(two_stations, config, tmp_path):
    report = run_station_analyses(two_stations, variables=['wave_height'],
                                  config=config, workers=1)

    text = format_batch_report(report)
    assert "PER-STATION GPD FITS" in text
    assert "41001 / wave_height" in text
    assert "SKIPPED UNITS (2)" in text
    assert "not fitted" in text

    path = save_report(report, str(tmp_path / "out" / "report.json"))
    with open(path) as f:
        loaded = json.load(f)

    assert loaded['results'][0]['station'] == '41001'
    assert loaded['config']['min_exceedances'] == 5
    assert {'station', 'variable', 'reason'} == set(loaded['skipped'][0])
    assert 'NaN' not in (tmp_path / "out" / "report.json").read_text()
