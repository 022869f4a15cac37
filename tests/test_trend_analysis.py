"""
Unit tests for trend_analysis module.
"""

import pytest
import numpy as np
import pandas as pd

from buoy_extremes.errors import InsufficientData, InvalidConfiguration
from buoy_extremes.preprocess import interpolate_gaps, station_series
from buoy_extremes.trend_analysis import (
    FREQUENCIES, calculate_annual_trends, calculate_seasonal_means, cycle_length,
    decompose_stl, detect_anomalies, trend_summary_report,
)


@pytest.fixture
def diurnal_series():
    """Ten days of hourly wave height: daily cycle + slow trend + gaps."""
    rng = np.random.default_rng(7)
    n = 24 * 10
    t = np.arange(n)
    values = 2.0 + 0.5 * np.sin(2 * np.pi * t / 24) + 0.002 * t + 0.05 * rng.standard_normal(n)
    values[30:34] = np.nan
    values[100] = np.nan
    return pd.DataFrame({
        'station_id': '41001',
        'time': pd.date_range('2021-06-01', periods=n, freq='h'),
        'wave_height': values,
    })


def test_cycle_length():
    assert cycle_length('daily') == 24
    assert cycle_length('annual') == 8766
    assert set(FREQUENCIES) == {'daily', 'weekly', 'monthly', 'annual'}
    with pytest.raises(InvalidConfiguration):
        cycle_length('fortnightly')


class TestDecomposeSTL:
    """Tests for seasonal-trend decomposition."""

    def test_components_add_up(self, diurnal_series):
        result = decompose_stl(diurnal_series, 'wave_height', frequency='daily')
        comp = result['components']

        assert result['frequency'] == 24
        assert list(comp.columns) == ['time', 'original', 'seasonal', 'trend', 'remainder']
        assert len(comp) == 240

        filled = interpolate_gaps(station_series(diurnal_series, 'wave_height')).values
        np.testing.assert_allclose(comp['seasonal'] + comp['trend'] + comp['remainder'],
                                   filled, atol=1e-8)

    def test_original_keeps_gaps(self, diurnal_series):
        comp = decompose_stl(diurnal_series)['components']
        assert comp['original'].isna().sum() == 5
        assert comp['seasonal'].notna().all()

    def test_seasonal_component_dominates(self, diurnal_series):
        summary = decompose_stl(diurnal_series)['summary'].set_index('component')

        assert list(summary.index) == ['seasonal', 'trend', 'remainder']
        assert summary.loc['seasonal', 'variance_pct'] > summary.loc['remainder', 'variance_pct']
        assert summary.loc['seasonal', 'mean'] == pytest.approx(0.0, abs=0.05)

    def test_station_selection(self, observations):
        result = decompose_stl(observations, 'wave_height', station_id='41002')
        assert len(result['components']) == 24 * 30

    def test_insufficient_data(self, diurnal_series):
        with pytest.raises(InsufficientData) as excinfo:
            decompose_stl(diurnal_series.iloc[:40])
        assert excinfo.value.required == 48

        with pytest.raises(InsufficientData):
            decompose_stl(diurnal_series, frequency='weekly')

    def test_unknown_frequency(self, diurnal_series):
        with pytest.raises(InvalidConfiguration):
            decompose_stl(diurnal_series, frequency='hourly')


def test_calculate_seasonal_means():
    df = pd.DataFrame({
        'time': pd.to_datetime(['2020-07-01', '2020-07-02', '2020-01-01', '2020-01-02', '2020-01-03']),
        'wave_height': [1.0, 2.0, 3.0, 4.0, np.nan],
    })
    result = calculate_seasonal_means(df, 'wave_height')

    monthly = result['monthly'].set_index('month')
    assert list(monthly.index) == [1, 7]
    assert monthly.loc[1, 'month_name'] == 'Jan'
    assert monthly.loc[1, 'mean'] == 3.5
    assert monthly.loc[1, 'n'] == 2

    seasonal = result['seasonal']
    assert list(seasonal['season']) == ['Winter (DJF)', 'Summer (JJA)']
    assert seasonal['max'].tolist() == [4.0, 2.0]


class TestAnnualTrends:
    """Tests for annual statistics and linear trend."""

    def test_linear_trend(self):
        times = pd.date_range('2016-01-01', '2019-12-31 23:00', freq='6h')
        values = 2.0 + 0.1 * (times.year - 2016)
        df = pd.DataFrame({'time': times, 'wave_height': values})

        result = calculate_annual_trends(df, 'wave_height')

        assert result['annual_stats']['year'].tolist() == [2016, 2017, 2018, 2019]
        assert result['trend_per_decade'] == pytest.approx(1.0)
        assert result['r_squared'] == pytest.approx(1.0)
        assert {'mean', 'median', 'sd', 'max', 'p90', 'p99', 'n'} <= set(result['annual_stats'].columns)

    def test_too_few_years(self):
        df = pd.DataFrame({'time': pd.to_datetime(['2020-01-01', '2021-01-01']),
                           'wave_height': [1.0, 2.0]})
        result = calculate_annual_trends(df, 'wave_height')

        assert np.isnan(result['trend_per_decade'])
        assert np.isnan(result['p_value'])
        assert np.isnan(result['r_squared'])


class TestAnomalies:
    """Tests for monthly z-score anomaly detection."""

    def test_spike_detected(self):
        values = np.ones(100)
        values[::2] = 1.2
        values[50] = 10.0
        df = pd.DataFrame({'time': pd.date_range('2020-03-01', periods=100, freq='h'),
                           'wave_height': values})

        result = detect_anomalies(df, 'wave_height', threshold=3)

        assert len(result['anomalies']) == 1
        assert result['anomalies']['wave_height'].iloc[0] == 10.0
        assert result['anomalies']['z_score'].iloc[0] > 3
        summary = result['summary'].set_index('month')
        assert summary.loc[3, 'n_anomalies'] == 1
        assert summary.loc[3, 'month_name'] == 'Mar'

    def test_constant_month_has_no_anomalies(self):
        df = pd.DataFrame({'time': pd.date_range('2020-03-01', periods=50, freq='h'),
                           'wave_height': 2.0})
        result = detect_anomalies(df, 'wave_height')

        assert result['anomalies'].empty
        norms = result['seasonal_norms']
        assert norms['norm_sd'].iloc[0] == 0

    def test_invalid_threshold(self, diurnal_series):
        with pytest.raises(InvalidConfiguration):
            detect_anomalies(diurnal_series, threshold=0)


def test_trend_summary_report(diurnal_series):
    seasonal = calculate_seasonal_means(diurnal_series)
    annual = calculate_annual_trends(diurnal_series)
    anomalies = detect_anomalies(diurnal_series)

    report = trend_summary_report(seasonal, annual, anomalies)
    assert "Trend Analysis Report: wave_height" in report
    assert "Summer (JJA)" in report
    assert "Insufficient data for trend analysis" in report
    assert "Total anomalies detected" in report
