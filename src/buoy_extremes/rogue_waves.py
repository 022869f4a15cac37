# src/buoy_extremes/rogue_waves.py
"""
Module: rogue_waves.py
Responsibilities:
- Compute peak-to-background ratios (Hmax/Hs, gust/wind) with null-safe division
- Detect rogue events (ratio above threshold with a minimum base value)
- Add wave metrics: rogue flag, steepness and danger level
- Enrich rogue events with wind / time-of-day / season categories
- Occurrence statistics by station and rogue-vs-normal conditions
- Plain-text rogue wave report
"""
import logging
from typing import Any, Dict, Iterable, Optional

import numpy as np
import pandas as pd

from buoy_extremes.config import DEFAULT_CONFIG
from buoy_extremes.data_io import query_observations
from buoy_extremes.errors import InvalidConfiguration

# Configure logging
logging.basicConfig(level=logging.INFO,
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Deep-water wavelength factor g / (2 pi) in m/s^2
WAVELENGTH_FACTOR = 1.56

CONDITION_COLUMNS = [
    'wave_height', 'wave_period', 'wind_speed', 'gust',
    'atmospheric_pressure', 'sea_temperature',
]

STATUS_NO_ELIGIBLE = 'no_eligible'
STATUS_NONE_ABOVE = 'none_above_threshold'
STATUS_OK = 'ok'


def safe_ratio(numerator, denominator) -> pd.Series:
    """
    Element-wise ratio that is null (NaN) wherever either side is null
    or the denominator is zero. Never returns +/-inf.
    """
    num = pd.to_numeric(pd.Series(numerator), errors='coerce').astype(float)
    den = pd.to_numeric(pd.Series(denominator), errors='coerce').astype(float)
    den = den.set_axis(num.index)
    ratio = num / den.where(den != 0)
    return ratio.where(np.isfinite(ratio))


def rogue_ratio(df: pd.DataFrame, peak_col: str = 'hmax', base_col: str = 'wave_height') -> pd.Series:
    """Peak-to-base ratio for every row (null when not computable)."""
    return safe_ratio(df[peak_col], df[base_col]).set_axis(df.index)


def wave_steepness(wave_height, wave_period) -> pd.Series:
    """
    Wave steepness H / L with deep-water wavelength L = 1.56 T^2.

    Null whenever the period is zero or either input is null.
    """
    period = pd.to_numeric(pd.Series(wave_period), errors='coerce').astype(float)
    return safe_ratio(wave_height, WAVELENGTH_FACTOR * period ** 2)


def danger_level(
    steepness: pd.Series,
    moderate: float = DEFAULT_CONFIG.steepness_moderate,
    dangerous: float = DEFAULT_CONFIG.steepness_dangerous
) -> pd.Series:
    """Classify steepness: safe (<= moderate), moderate, dangerous (> dangerous)."""
    steepness = pd.Series(steepness, dtype=float)
    levels = np.select(
        [steepness > dangerous, steepness > moderate, steepness.notna()],
        ['dangerous', 'moderate', 'safe'],
        default=None
    )
    return pd.Series(levels, index=steepness.index, dtype=object)


def detect_rogue_events(
    df: pd.DataFrame,
    peak_col: str,
    base_col: str,
    threshold: float,
    min_base: float,
    ratio_col: str = 'rogue_ratio'
) -> pd.DataFrame:
    """
    Return observations whose ``peak/base`` ratio exceeds ``threshold``.

    Rows with a null peak, null base or zero base are never candidates.
    Only rows with ``base >= min_base`` are eligible.

    Parameters
    ----------
    df : pd.DataFrame
        Observation table.
    peak_col, base_col : str
        Peak and background columns.
    threshold : float
        Ratio threshold (strictly exceeded).
    min_base : float
        Minimum base value for eligibility.
    ratio_col : str
        Name of the added ratio column.

    Returns
    -------
    pd.DataFrame
        Events sorted by ratio descending, then by time descending
        (most recent first). Empty when nothing qualifies.
    """
    if not isinstance(df, pd.DataFrame):
        raise TypeError("Input must be a pandas DataFrame")

    for col in (peak_col, base_col):
        if col not in df.columns:
            raise KeyError(f"Observation table missing '{col}' column")
    if not threshold > 0:
        raise InvalidConfiguration(f"Rogue ratio threshold must be positive, got {threshold}")

    ratio = rogue_ratio(df, peak_col, base_col)
    base = pd.to_numeric(df[base_col], errors='coerce')
    eligible = ratio.notna() & (base >= min_base)
    is_event = eligible & (ratio > threshold)

    events = df.loc[is_event].copy()
    events[ratio_col] = ratio[is_event]
    events = events.sort_values([ratio_col, 'time'], ascending=[False, False], kind='mergesort')
    events = events.reset_index(drop=True)

    if len(events) > 0:
        logger.info(f"Detected {len(events)} events with {peak_col}/{base_col} > {threshold} "
                    f"({int(eligible.sum())} eligible)")
    else:
        logger.info(f"No events detected with {peak_col}/{base_col} > {threshold}")

    return events


def detect_rogue_waves(
    df: pd.DataFrame,
    threshold: float = DEFAULT_CONFIG.wave_rogue_threshold,
    min_wave_height: float = DEFAULT_CONFIG.wave_min_height,
    start_date=None,
    end_date=None,
    stations: Optional[Iterable[str]] = None
) -> pd.DataFrame:
    """
    Detect rogue waves: Hmax / significant wave height above ``threshold``.

    Optional station and time filters are applied before detection.
    """
    if start_date is not None or end_date is not None or stations is not None:
        df = query_observations(df, stations=stations, start=start_date, end=end_date,
                                qc_filter=False)
    return detect_rogue_events(df, 'hmax', 'wave_height', threshold, min_wave_height)


def detect_rogue_gusts(
    df: pd.DataFrame,
    threshold: float = DEFAULT_CONFIG.gust_rogue_threshold,
    min_wind_speed: float = DEFAULT_CONFIG.gust_min_wind_speed,
    stations: Optional[Iterable[str]] = None
) -> pd.DataFrame:
    """Detect rogue gusts: gust / sustained wind above ``threshold`` (2.6 by default)."""
    if stations is not None:
        df = query_observations(df, stations=stations, qc_filter=False)
    events = detect_rogue_events(df, 'gust', 'wind_speed', threshold, min_wind_speed,
                                 ratio_col='gust_factor')
    return events


def add_wave_metrics(
    df: pd.DataFrame,
    rogue_threshold: float = DEFAULT_CONFIG.wave_rogue_threshold,
    min_wave_height: float = DEFAULT_CONFIG.wave_min_height,
    steepness_moderate: float = DEFAULT_CONFIG.steepness_moderate,
    steepness_dangerous: float = DEFAULT_CONFIG.steepness_dangerous
) -> pd.DataFrame:
    """
    Add ``rogue_ratio``, ``is_rogue``, ``steepness`` and ``danger_level`` columns.

    ``is_rogue`` holds exactly when the ratio exceeds ``rogue_threshold``
    and the wave height is at least ``min_wave_height``.
    """
    out = df.copy()
    out['rogue_ratio'] = rogue_ratio(out)
    heights = pd.to_numeric(out['wave_height'], errors='coerce')
    out['is_rogue'] = ((out['rogue_ratio'] > rogue_threshold) & (heights >= min_wave_height)).astype(bool)
    out['steepness'] = wave_steepness(out['wave_height'], out['wave_period']).set_axis(out.index)
    out['danger_level'] = danger_level(out['steepness'], steepness_moderate, steepness_dangerous)
    return out


def wind_category(wind_speed) -> pd.Series:
    speed = pd.Series(wind_speed, dtype=float)
    labels = np.select(
        [speed < 5, speed < 10, speed < 15, speed < 20, speed.notna()],
        ['Calm (<5 m/s)', 'Light (5-10 m/s)', 'Moderate (10-15 m/s)',
         'Fresh (15-20 m/s)', 'Strong (>20 m/s)'],
        default=None
    )
    return pd.Series(labels, index=speed.index, dtype=object)


def time_of_day(hours) -> pd.Series:
    hours = pd.Series(hours)
    labels = np.select(
        [(hours >= 6) & (hours < 12), (hours >= 12) & (hours < 18), (hours >= 18) & (hours < 22)],
        ['Morning', 'Afternoon', 'Evening'],
        default='Night'
    )
    return pd.Series(labels, index=hours.index, dtype=object)


def meteorological_season(months, with_code: bool = False) -> pd.Series:
    """Map calendar months to meteorological seasons (DJF, MAM, JJA, SON)."""
    months = pd.Series(months)
    names = {12: 'Winter', 1: 'Winter', 2: 'Winter',
             3: 'Spring', 4: 'Spring', 5: 'Spring',
             6: 'Summer', 7: 'Summer', 8: 'Summer',
             9: 'Autumn', 10: 'Autumn', 11: 'Autumn'}
    codes = {'Winter': 'DJF', 'Spring': 'MAM', 'Summer': 'JJA', 'Autumn': 'SON'}
    seasons = months.map(names)
    if with_code:
        seasons = seasons.map(lambda s: f"{s} ({codes[s]})" if isinstance(s, str) else s)
    return seasons


def classify_rogue_conditions(events: pd.DataFrame) -> pd.DataFrame:
    """
    Add categorical context to rogue events: ``wind_category``, ``hour``,
    ``time_of_day``, ``month`` and ``season``.
    """
    out = events.copy()
    if out.empty:
        for col in ('wind_category', 'hour', 'time_of_day', 'month', 'season'):
            out[col] = pd.Series(dtype=object)
        return out

    times = pd.to_datetime(out['time'])
    out['wind_category'] = wind_category(out['wind_speed']).to_numpy()
    out['hour'] = times.dt.hour.to_numpy()
    out['time_of_day'] = time_of_day(out['hour']).to_numpy()
    out['month'] = times.dt.month.to_numpy()
    out['season'] = meteorological_season(out['month']).to_numpy()
    return out


def rogue_event_statistics(
    df: pd.DataFrame,
    peak_col: str = 'hmax',
    base_col: str = 'wave_height',
    threshold: float = DEFAULT_CONFIG.wave_rogue_threshold,
    min_base: float = DEFAULT_CONFIG.wave_min_height
) -> Dict[str, Any]:
    """
    Occurrence statistics over the eligible set for one rogue criterion.

    Returns
    -------
    dict
        {
          'status': 'ok' | 'no_eligible' | 'none_above_threshold',
          'overall': {...},
          'by_station': pd.DataFrame,
          'conditions': pd.DataFrame (rogue vs normal means),
          'hourly_distribution': pd.DataFrame,
          'threshold': float,
          'min_base': float
        }
    """
    ratio = rogue_ratio(df, peak_col, base_col)
    base = pd.to_numeric(df[base_col], errors='coerce')
    eligible_mask = ratio.notna() & (base >= min_base)

    eligible = df.loc[eligible_mask].copy()
    eligible['ratio'] = ratio[eligible_mask]
    eligible['is_rogue'] = eligible['ratio'] > threshold
    rogues = eligible[eligible['is_rogue']]

    n_eligible = len(eligible)
    n_rogue = len(rogues)

    if n_eligible == 0:
        status = STATUS_NO_ELIGIBLE
    elif n_rogue == 0:
        status = STATUS_NONE_ABOVE
    else:
        status = STATUS_OK

    overall = {
        'total_observations': n_eligible,
        'rogue_count': n_rogue,
        'rogue_pct': round(100.0 * n_rogue / n_eligible, 2) if n_eligible else np.nan,
        'avg_rogue_ratio': float(rogues['ratio'].mean()) if n_rogue else np.nan,
        'max_rogue_ratio': float(rogues['ratio'].max()) if n_rogue else np.nan,
        'max_peak': float(rogues[peak_col].max()) if n_rogue else np.nan,
    }

    if n_eligible:
        grouped = eligible.groupby('station_id')
        by_station = pd.DataFrame({
            'total_obs': grouped.size(),
            'rogue_count': grouped['is_rogue'].sum().astype(int),
            'avg_rogue_ratio': grouped.apply(lambda g: g.loc[g['is_rogue'], 'ratio'].mean()),
            'max_ratio': grouped['ratio'].max(),
            'max_peak': grouped[peak_col].max(),
            'avg_base': grouped[base_col].mean(),
        })
        by_station['rogue_pct'] = (100.0 * by_station['rogue_count'] / by_station['total_obs']).round(2)
        by_station = (by_station.reset_index()
                      .sort_values(['rogue_pct', 'station_id'], ascending=[False, True])
                      .reset_index(drop=True))

        present = [c for c in CONDITION_COLUMNS if c in eligible.columns]
        labels = np.where(eligible['is_rogue'], 'rogue', 'normal')
        conditions = eligible.groupby(labels)[present].mean()
        conditions.insert(0, 'n', eligible.groupby(labels).size())
        conditions = conditions.rename(columns={c: f'avg_{c}' for c in present})
        conditions.index.name = 'classification'
        conditions = conditions.reset_index()

        hours = pd.to_datetime(rogues['time']).dt.hour
        hourly = hours.value_counts().sort_index().rename_axis('hour').reset_index(name='rogue_count')
    else:
        by_station = pd.DataFrame(columns=['station_id', 'total_obs', 'rogue_count', 'rogue_pct',
                                           'avg_rogue_ratio', 'max_ratio', 'max_peak', 'avg_base'])
        conditions = pd.DataFrame(columns=['classification', 'n'])
        hourly = pd.DataFrame(columns=['hour', 'rogue_count'])

    logger.info(f"Eligible observations ({base_col} >= {min_base}): {n_eligible}")
    logger.info(f"Rogue events ({peak_col}/{base_col} > {threshold}): {n_rogue} "
                f"({overall['rogue_pct']}%)")

    return {
        'status': status,
        'overall': overall,
        'by_station': by_station,
        'conditions': conditions,
        'hourly_distribution': hourly,
        'threshold': threshold,
        'min_base': min_base,
    }


def analyze_rogue_statistics(
    df: pd.DataFrame,
    threshold: float = DEFAULT_CONFIG.wave_rogue_threshold,
    min_wave_height: float = DEFAULT_CONFIG.wave_min_height
) -> Dict[str, Any]:
    """Rogue wave (Hmax / Hs) occurrence statistics."""
    stats = rogue_event_statistics(df, 'hmax', 'wave_height', threshold, min_wave_height)
    stats['overall']['max_hmax'] = stats['overall'].pop('max_peak')
    stats['by_station'] = stats['by_station'].rename(
        columns={'max_peak': 'max_hmax', 'avg_base': 'avg_wave_height'})
    stats['min_wave_height'] = stats.pop('min_base')
    return stats


def rogue_wave_report(stats: Dict[str, Any], title: str = "ROGUE WAVE ANALYSIS REPORT") -> str:
    """Format the output of ``analyze_rogue_statistics`` as plain text."""
    overall = stats['overall']
    lines = [
        title,
        "=" * len(title),
        f"Threshold: Hmax > {stats['threshold']} x Significant Wave Height "
        f"(Hs >= {stats['min_wave_height']} m)",
        "",
        "SUMMARY",
        "-------",
        f"Total eligible observations: {overall['total_observations']}",
        f"Rogue wave events detected: {overall['rogue_count']}",
    ]

    if stats['status'] == STATUS_NO_ELIGIBLE:
        lines.append("No eligible observations (no valid Hs/Hmax pairs above the minimum height)")
    else:
        lines.append(f"Occurrence rate: {overall['rogue_pct']}%")
        if stats['status'] == STATUS_NONE_ABOVE:
            lines.append("No observation exceeded the rogue threshold")
        elif not pd.isna(overall.get('max_hmax')):
            lines.append(f"Maximum Hmax: {overall['max_hmax']:.2f}m")

    lines += ["", "BY STATION", "----------", stats['by_station'].to_string(index=False),
              "", "CONDITIONS COMPARISON", "--------------------",
              stats['conditions'].to_string(index=False), ""]
    return "\n".join(lines)
