# src/buoy_extremes/trend_analysis.py
"""
Module: trend_analysis.py
Responsibilities:
- Seasonal-trend decomposition (STL, periodic seasonal window) of one station's series
- Monthly and meteorological-season aggregate statistics
- Annual statistics with a linear trend of the annual means
- Monthly-baseline z-score anomaly detection
- Plain-text trend summary report
"""
import calendar
import logging
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.tsa.seasonal import STL

from buoy_extremes.config import DEFAULT_CONFIG
from buoy_extremes.errors import InsufficientData, InvalidConfiguration
from buoy_extremes.preprocess import interpolate_gaps, station_series
from buoy_extremes.rogue_waves import meteorological_season

# Configure logging
logging.basicConfig(level=logging.INFO,
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Samples per seasonal cycle for hourly data
FREQUENCIES = {
    'daily': 24,
    'weekly': 168,
    'monthly': 720,
    'annual': 8766,
}

SEASON_ORDER = ['Winter (DJF)', 'Spring (MAM)', 'Summer (JJA)', 'Autumn (SON)']


def cycle_length(frequency: str) -> int:
    """Samples per cycle for a named frequency."""
    try:
        return FREQUENCIES[frequency]
    except KeyError:
        raise InvalidConfiguration(
            f"Unknown frequency '{frequency}'; expected one of {', '.join(FREQUENCIES)}"
        )


def decompose_stl(
    df: pd.DataFrame,
    variable: str = 'wave_height',
    frequency: str = 'daily',
    station_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Seasonal-trend decomposition using loess with a periodic seasonal window.

    The station's series is placed on a complete hourly grid; gaps are
    linearly interpolated (clamped at the ends) for the decomposition only.

    Parameters
    ----------
    df : pd.DataFrame
        Observations for a single station (or pass ``station_id``).
    variable : str
        Column to decompose.
    frequency : str
        'daily' (24), 'weekly' (168), 'monthly' (720) or 'annual' (8766).
    station_id : str, optional
        Station to select from a multi-station table.

    Returns
    -------
    dict
        {
          'components': DataFrame[time, original, seasonal, trend, remainder],
          'summary': DataFrame[component, mean, sd, variance_pct],
          'frequency': int,
          'variable': str
        }

    Raises
    ------
    InvalidConfiguration
        If ``frequency`` is not a known name.
    InsufficientData
        If fewer than two cycles of valid samples exist.
    """
    freq = cycle_length(frequency)
    logger.info(f"Performing STL decomposition of {variable} (period {freq})...")

    da = station_series(df, variable, station_id=station_id)
    original = da.values.astype(float)
    n_valid = int((~np.isnan(original)).sum())

    if n_valid < 2 * freq:
        raise InsufficientData(2 * freq, n_valid, what=f"valid {variable} samples")

    filled = interpolate_gaps(da).values
    # Periodic seasonal window: a very wide degree-0 smoother
    result = STL(filled, period=freq, seasonal=10 * filled.size + 1, seasonal_deg=0).fit()

    components = pd.DataFrame({
        'time': pd.to_datetime(da['time'].values),
        'original': original,
        'seasonal': np.asarray(result.seasonal, dtype=float),
        'trend': np.asarray(result.trend, dtype=float),
        'remainder': np.asarray(result.resid, dtype=float),
    })

    total_var = np.nanvar(original, ddof=1)
    rows = []
    for name in ('seasonal', 'trend', 'remainder'):
        values = components[name].to_numpy()
        rows.append({
            'component': name,
            'mean': float(np.mean(values)),
            'sd': float(np.std(values, ddof=1)),
            # Not normalised: the three shares need not sum to 100
            'variance_pct': float(100 * np.var(values, ddof=1) / total_var) if total_var > 0 else np.nan,
        })
    summary = pd.DataFrame(rows)

    logger.info(f"Variance explained - Seasonal: {summary['variance_pct'].iloc[0]:.1f}%, "
                f"Trend: {summary['variance_pct'].iloc[1]:.1f}%")

    return {
        'components': components,
        'summary': summary,
        'frequency': freq,
        'variable': variable,
    }


def calculate_seasonal_means(df: pd.DataFrame, variable: str = 'wave_height', time_col: str = 'time') -> Dict[str, Any]:
    """
    Monthly (mean, sd, median, n) and meteorological-season (mean, sd, max, n) statistics.
    """
    logger.info(f"Calculating seasonal means of {variable}...")

    data = pd.DataFrame({
        'month': pd.to_datetime(df[time_col]).dt.month,
        'value': pd.to_numeric(df[variable], errors='coerce'),
    }).dropna(subset=['value'])

    monthly = (data.groupby('month')['value']
               .agg(mean='mean', sd='std', median='median', n='count')
               .reset_index())
    monthly['month_name'] = monthly['month'].map(lambda m: calendar.month_abbr[int(m)])

    data['season'] = meteorological_season(data['month'], with_code=True)
    seasonal = (data.groupby('season')['value']
                .agg(mean='mean', sd='std', max='max', n='count')
                .reindex([s for s in SEASON_ORDER if s in set(data['season'])])
                .reset_index())

    return {
        'monthly': monthly,
        'seasonal': seasonal,
        'variable': variable,
    }


def calculate_annual_trends(df: pd.DataFrame, variable: str = 'wave_height', time_col: str = 'time') -> Dict[str, Any]:
    """
    Annual statistics and the least-squares trend of annual means.

    With fewer than 3 years the trend, p-value and R² are NaN.

    Returns
    -------
    dict
        {
          'annual_stats': DataFrame[year, mean, median, sd, max, p90, p99, n],
          'trend_per_decade': float,
          'p_value': float,
          'r_squared': float,
          'variable': str
        }
    """
    logger.info(f"Calculating annual trends of {variable}...")

    data = pd.DataFrame({
        'year': pd.to_datetime(df[time_col]).dt.year,
        'value': pd.to_numeric(df[variable], errors='coerce'),
    }).dropna(subset=['value'])

    annual_stats = (data.groupby('year')['value']
                    .agg(mean='mean', median='median', sd='std', max='max',
                         p90=lambda x: x.quantile(0.90), p99=lambda x: x.quantile(0.99),
                         n='count')
                    .reset_index())

    trend_per_decade = p_value = r_squared = np.nan
    if len(annual_stats) >= 3:
        fit = stats.linregress(annual_stats['year'].astype(float), annual_stats['mean'])
        trend_per_decade = float(fit.slope * 10)
        p_value = float(fit.pvalue)
        r_squared = float(fit.rvalue ** 2)
        logger.info(f"Trend: {trend_per_decade:.3f} {variable} units per decade (p={p_value:.3f})")
    else:
        logger.warning(f"Insufficient years for trend analysis ({len(annual_stats)} < 3)")

    return {
        'annual_stats': annual_stats,
        'trend_per_decade': trend_per_decade,
        'p_value': p_value,
        'r_squared': r_squared,
        'variable': variable,
    }


def detect_anomalies(
    df: pd.DataFrame,
    variable: str = 'wave_height',
    threshold: float = DEFAULT_CONFIG.anomaly_z_threshold,
    time_col: str = 'time'
) -> Dict[str, Any]:
    """
    Flag observations more than ``threshold`` standard deviations from their month's mean.

    Returns
    -------
    dict
        {
          'anomalies': observations with |z| > threshold, sorted by |z| descending,
          'seasonal_norms': DataFrame[month, norm_mean, norm_sd],
          'summary': DataFrame[month, n_anomalies, month_name],
          'threshold': float,
          'variable': str
        }
    """
    if threshold <= 0:
        raise InvalidConfiguration(f"Anomaly threshold must be positive, got {threshold}")

    data = df.copy()
    data['month'] = pd.to_datetime(data[time_col]).dt.month
    values = pd.to_numeric(data[variable], errors='coerce')

    norms = (values.groupby(data['month'])
             .agg(norm_mean='mean', norm_sd='std')
             .reset_index())

    data = data.merge(norms, on='month', how='left')
    sd = data['norm_sd'].where(data['norm_sd'] > 0)
    data['z_score'] = (values.to_numpy() - data['norm_mean']) / sd
    data['is_anomaly'] = (data['z_score'].abs() > threshold).fillna(False).astype(bool)

    anomalies = data[data['is_anomaly']].copy()
    anomalies = (anomalies.assign(_abs_z=anomalies['z_score'].abs())
                 .sort_values('_abs_z', ascending=False, kind='mergesort')
                 .drop(columns='_abs_z')
                 .reset_index(drop=True))

    summary = (data.groupby('month')['is_anomaly'].sum().astype(int)
               .rename('n_anomalies').reset_index())
    summary['month_name'] = summary['month'].map(lambda m: calendar.month_abbr[int(m)])

    logger.info(f"Detected {len(anomalies)} anomalies (>{threshold} SD from seasonal norm)")

    return {
        'anomalies': anomalies,
        'seasonal_norms': norms,
        'summary': summary,
        'threshold': threshold,
        'variable': variable,
    }


def trend_summary_report(
    seasonal_means: Dict[str, Any],
    annual_trends: Dict[str, Any],
    anomalies: Optional[Dict[str, Any]] = None
) -> str:
    """Format seasonal means, annual trends and (optionally) anomalies as text."""
    lines = [
        f"=== Trend Analysis Report: {seasonal_means['variable']} ===",
        "",
        "SEASONAL PATTERNS",
        "-----------------",
    ]

    for _, s in seasonal_means['seasonal'].iterrows():
        lines.append(f"{s['season']}: mean={s['mean']:.2f} (sd={s['sd']:.2f}), "
                     f"max={s['max']:.2f}, n={int(s['n'])}")

    lines += ["", "ANNUAL TREND", "------------"]

    if not pd.isna(annual_trends['trend_per_decade']):
        significance = 'significant' if annual_trends['p_value'] < 0.05 else 'not significant'
        lines.append(f"Trend: {annual_trends['trend_per_decade']:+.3f} per decade "
                     f"(p={annual_trends['p_value']:.3f}, {significance})")
        lines.append(f"R-squared: {annual_trends['r_squared']:.3f}")
    else:
        lines.append("Insufficient data for trend analysis")

    if anomalies is not None:
        lines += ["", "ANOMALIES", "---------",
                  f"Total anomalies detected: {len(anomalies['anomalies'])} "
                  f"(threshold: {anomalies['threshold']:g} SD)"]

    return "\n".join(lines) + "\n"
