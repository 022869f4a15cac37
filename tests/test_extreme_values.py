"""
Unit tests for extreme_values module.
"""

import pytest
import numpy as np
import pandas as pd

from buoy_extremes.errors import InsufficientExceedances
from buoy_extremes.extreme_values import (
    RETURN_LEVEL_COLUMNS, _return_level, annual_maxima, covariance_from_nll,
    fit_gev_annual_maxima, fit_gpd_multi_threshold, fit_gpd_threshold, goodness_of_fit,
    numerical_hessian, record_length_years, return_level_curve, return_level_estimates,
    return_levels,
)
from buoy_extremes.results import (
    FAMILY_GEV, FAMILY_GPD, FittedDistribution, InsufficientDataResult, STATUS_INSUFFICIENT,
)


@pytest.fixture
def short_record():
    """Three years of hourly wave height between 2 and 4 m with a 12 m spike in 2021."""
    times = pd.date_range('2020-01-01', '2022-12-31 23:00', freq='h')
    values = 3.0 + 0.8 * np.sin(2 * np.pi * np.arange(times.size) / 24)
    df = pd.DataFrame({'station_id': '41001', 'time': times, 'wave_height': values})
    df.loc[df['time'] == pd.Timestamp('2021-03-15 12:00'), 'wave_height'] = 12.0
    return df


@pytest.fixture
def manual_gpd_fit():
    """GPD(scale=1, shape=0.1) above 2.0 with half an exceedance per year."""
    return FittedDistribution(
        family=FAMILY_GPD,
        variable='wave_height',
        parameters={'scale': 1.0, 'shape': 0.1},
        standard_errors={'scale': 0.1, 'shape': 0.1},
        covariance=np.diag([0.01, 0.01]),
        n_input_points=10,
        data=np.linspace(0.1, 2.0, 10),
        threshold=2.0,
        rate_per_year=0.5
    )


class TestNumerics:
    """Tests for the finite-difference information matrix."""

    def test_hessian_of_quadratic(self):
        def f(t):
            return t[0] ** 2 + 3 * t[0] * t[1] + 2 * t[1] ** 2

        hess = numerical_hessian(f, [1.0, -2.0])
        np.testing.assert_allclose(hess, [[2.0, 3.0], [3.0, 4.0]], atol=1e-5)

    def test_covariance_positive_definite(self):
        cov = covariance_from_nll(lambda t: 2 * t[0] ** 2 + 8 * t[1] ** 2, [0.5, 0.5])
        np.testing.assert_allclose(cov, np.diag([0.25, 1 / 16]), rtol=1e-4)

    def test_covariance_not_positive_definite(self):
        cov = covariance_from_nll(lambda t: -t[0] ** 2 - t[1] ** 2, [1.0, 1.0])
        assert cov.shape == (2, 2)
        assert np.isnan(cov).all()

    def test_covariance_non_finite(self):
        cov = covariance_from_nll(lambda t: np.inf, [1.0])
        assert np.isnan(cov).all()


def test_annual_maxima_skips_empty_years():
    df = pd.DataFrame({
        'time': pd.to_datetime(['2019-05-01', '2020-01-01', '2020-06-01', '2022-02-01']),
        'wave_height': [np.nan, 1.0, 3.0, 2.0],
    })
    am = annual_maxima(df)

    assert am.years.tolist() == [2020, 2022]
    assert am.values.tolist() == [3.0, 2.0]
    assert am.n_years == 2


class TestGEV:
    """Tests for block maxima GEV fitting."""

    def test_fit_recovers_gumbel(self, gumbel_annual_maxima_df):
        fit = fit_gev_annual_maxima(gumbel_annual_maxima_df, 'wind_speed')

        assert fit.is_fitted
        assert fit.family == FAMILY_GEV
        assert fit.n_input_points == 10
        assert fit.annual_maxima.n_years == 10

        p = fit.parameters
        assert abs(p['location'] - 20.0) <= 2.0
        assert 1.0 < p['scale'] < 6.0
        assert abs(p['shape']) <= 0.15

        se = np.array(list(fit.standard_errors.values()))
        assert np.all(np.isfinite(se)) and np.all(se > 0)
        assert {'aic', 'bic', 'neg_log_likelihood', 'optimizer'} <= set(fit.diagnostics)

    def test_return_levels(self, gumbel_annual_maxima_df):
        fit = fit_gev_annual_maxima(gumbel_annual_maxima_df, 'wind_speed')
        table = return_levels(fit, [10, 50, 100])

        assert list(table.columns) == RETURN_LEVEL_COLUMNS
        assert table['return_level'].is_monotonic_increasing
        assert (table['lower_ci'] < table['return_level']).all()
        assert (table['return_level'] < table['upper_ci']).all()
        assert table['error'].isna().all()
        assert 25.0 < table['return_level'].iloc[-1] < 80.0

    def test_return_period_of_one_year_undefined(self, gumbel_annual_maxima_df):
        fit = fit_gev_annual_maxima(gumbel_annual_maxima_df, 'wind_speed')
        table = return_levels(fit, [1.0, 10.0])

        assert np.isnan(table['return_level'].iloc[0])
        assert table['error'].iloc[0] == "Return period too short for the fitted model"
        assert np.isfinite(table['return_level'].iloc[1])

    def test_return_level_curve(self, gumbel_annual_maxima_df):
        fit = fit_gev_annual_maxima(gumbel_annual_maxima_df, 'wind_speed')
        curve = return_level_curve(fit, max_return_period=200, n_points=20)

        assert len(curve) == 20
        assert curve['return_period'].iloc[0] == pytest.approx(1.1)
        assert curve['return_period'].iloc[-1] == pytest.approx(200)
        assert curve['return_level'].is_monotonic_increasing

    def test_goodness_of_fit(self, gumbel_annual_maxima_df):
        fit = fit_gev_annual_maxima(gumbel_annual_maxima_df, 'wind_speed')
        gof = goodness_of_fit(fit)

        assert 0 <= gof['ks_statistic'] <= 1
        assert gof['ks_pvalue'] > 0.05
        assert len(gof['qq_plot']['empirical']) == 10
        assert len(gof['pp_plot']['theoretical']) == 10

    def test_insufficient_years_sentinel(self, short_record):
        fit = fit_gev_annual_maxima(short_record, 'wave_height', min_years=5)

        assert isinstance(fit, InsufficientDataResult)
        assert not fit.is_fitted
        assert fit.n_years == 3
        assert fit.reason == ("Insufficient data for GEV fitting: 3 years available, "
                              "need at least 5")

        summary = fit.summary()
        assert summary['status'] == STATUS_INSUFFICIENT
        assert 'error' in summary
        maxima = {rec['year']: rec['max_value'] for rec in summary['annual_maxima']}
        assert maxima[2021] == 12.0
        assert all(np.isnan(v) for v in fit.parameters.values())

    def test_sentinel_downstream(self, short_record):
        fit = fit_gev_annual_maxima(short_record, 'wave_height')

        table = return_levels(fit, [10, 100])
        assert table['return_level'].isna().all()
        assert (table['error'] == fit.reason).all()

        assert return_level_curve(fit).empty
        assert goodness_of_fit(fit) == {'family': 'GEV', 'variable': 'wave_height',
                                        'error': fit.reason}

    def test_constant_maxima_raise(self):
        times = pd.date_range('2010-01-01', '2019-12-31', freq='D')
        df = pd.DataFrame({'time': times, 'wave_height': 5.0})
        with pytest.raises(ValueError, match="Failed to fit GEV"):
            fit_gev_annual_maxima(df, 'wave_height')

    def test_gumbel_limit(self):
        level = _return_level(FAMILY_GEV, np.array([20.0, 3.0, 1e-8]), 100)
        assert level == pytest.approx(20 - 3 * np.log(-np.log(0.99)))

        near = _return_level(FAMILY_GEV, np.array([20.0, 3.0, 1e-4]), 100)
        assert near == pytest.approx(level, rel=1e-3)


class TestGPD:
    """Tests for peaks-over-threshold GPD fitting."""

    def test_fit_recovers_parameters(self, gpd_exceedance_df):
        fit = fit_gpd_threshold(gpd_exceedance_df, 'wave_height', threshold=0.0)

        assert fit.is_fitted
        assert fit.family == FAMILY_GPD
        assert fit.n_input_points == 200
        assert fit.threshold == 0.0
        assert fit.exceedances.n_raw == 200
        assert 0.7 < fit.parameters['scale'] < 1.4
        assert abs(fit.parameters['shape'] - 0.2) <= 0.1
        assert all(np.isfinite(v) for v in fit.standard_errors.values())

    def test_fit_random_sample(self):
        """Independent GPD(1, 0.2) draws, 72 h apart so declustering keeps all of them."""
        from scipy.stats import genpareto

        values = genpareto.rvs(0.2, scale=1.0, size=2000, random_state=np.random.default_rng(7))
        df = pd.DataFrame({
            'station_id': '41001',
            'time': pd.date_range('2000-01-01', periods=values.size, freq='72h'),
            'wave_height': values,
        })
        fit = fit_gpd_threshold(df, 'wave_height', threshold=0.0)

        assert fit.n_input_points == 2000
        assert abs(fit.parameters['shape'] - 0.2) <= 0.1
        assert abs(fit.parameters['scale'] - 1.0) <= 0.15

    def test_rate_per_year(self, gpd_exceedance_df):
        fit = fit_gpd_threshold(gpd_exceedance_df, 'wave_height', threshold=0.0)
        years = 199 * 3 / 365.25
        assert fit.rate_per_year == pytest.approx(200 / years)
        assert fit.diagnostics['record_years'] == pytest.approx(years)

    def test_default_threshold_is_quantile(self, gpd_exceedance_df):
        fit = fit_gpd_threshold(gpd_exceedance_df, 'wave_height', quantile=0.5)
        assert fit.threshold == pytest.approx(gpd_exceedance_df['wave_height'].quantile(0.5))
        assert fit.n_input_points == 100

    def test_insufficient_exceedances(self, gpd_exceedance_df):
        with pytest.raises(InsufficientExceedances) as excinfo:
            fit_gpd_threshold(gpd_exceedance_df, 'wave_height', threshold=5.0)

        assert excinfo.value.n_exceedances < 30
        assert excinfo.value.min_exceedances == 30

    def test_declustering_reduces_count(self, gpd_exceedance_df):
        fit = fit_gpd_threshold(gpd_exceedance_df, 'wave_height', threshold=0.0,
                                decluster_hours=100, min_exceedances=10)
        assert fit.n_input_points < 200
        assert fit.diagnostics['n_raw_exceedances'] == 200

    def test_return_levels(self, gpd_exceedance_df):
        fit = fit_gpd_threshold(gpd_exceedance_df, 'wave_height', threshold=0.0)
        estimates = return_level_estimates(fit, [10, 100])

        assert [e.return_period for e in estimates] == [10.0, 100.0]
        assert estimates[0].point_estimate < estimates[1].point_estimate
        for e in estimates:
            assert e.error is None
            assert e.lower_ci < e.point_estimate < e.upper_ci

    def test_return_level_formula(self, manual_gpd_fit):
        table = return_levels(manual_gpd_fit, [1.0, 10.0])

        # lambda * T = 0.5 <= 1
        assert np.isnan(table['return_level'].iloc[0])
        assert table['error'].iloc[0] is not None

        expected = 2.0 + 1.0 / 0.1 * (5.0 ** 0.1 - 1.0)
        assert table['return_level'].iloc[1] == pytest.approx(expected)
        assert table['lower_ci'].iloc[1] < expected < table['upper_ci'].iloc[1]

    def test_exponential_limit(self):
        level = _return_level(FAMILY_GPD, np.array([2.0, 0.0]), 10, threshold=1.0, rate=3.0)
        assert level == pytest.approx(1.0 + 2.0 * np.log(30))

    def test_goodness_of_fit(self, gpd_exceedance_df):
        fit = fit_gpd_threshold(gpd_exceedance_df, 'wave_height', threshold=0.0)
        gof = goodness_of_fit(fit)

        assert gof['family'] == FAMILY_GPD
        assert gof['ks_pvalue'] > 0.5
        assert len(gof['qq_plot']['theoretical']) == 200

    def test_multi_threshold_records_failures(self, gpd_exceedance_df):
        table = fit_gpd_multi_threshold(gpd_exceedance_df, 'wave_height', quantiles=(0.5, 0.99))

        assert list(table['quantile']) == [0.5, 0.99]
        ok, failed = table.iloc[0], table.iloc[1]
        assert ok['error'] is None
        assert ok['n_exceedances'] == 100
        assert np.isfinite(ok['shape'])
        assert failed['error'] == "Insufficient exceedances (<30)"
        assert failed['n_exceedances'] == 2
        assert np.isnan(failed['scale'])


def test_return_level_validation(manual_gpd_fit):
    with pytest.raises(ValueError):
        return_level_estimates(manual_gpd_fit, [10, -5])
    with pytest.raises(ValueError):
        return_level_estimates(manual_gpd_fit, [10], confidence_level=1.5)


def test_record_length_years():
    times = pd.to_datetime(['2020-01-01', '2021-01-01'])
    assert record_length_years(times) == pytest.approx(366 / 365.25)
    assert record_length_years(pd.to_datetime(['2020-01-01'])) == pytest.approx(1 / 365.25)
