# src/buoy_extremes/gust_analysis.py
"""
Module: gust_analysis.py
Responsibilities:
- Gust factor (peak gust / sustained wind) distribution summary
- Gust factor breakdown by wind speed category
- Extreme and rogue gust identification
- Rogue wave vs rogue gust occurrence comparison
"""
import logging
from typing import Any, Dict

import numpy as np
import pandas as pd

from buoy_extremes.config import DEFAULT_CONFIG
from buoy_extremes.errors import InvalidConfiguration
from buoy_extremes.rogue_waves import safe_ratio

# Configure logging
logging.basicConfig(level=logging.INFO,
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

WIND_BINS = [5, 10, 15, 20, 25, np.inf]
WIND_LABELS = ['5-10', '10-15', '15-20', '20-25', '>25']


def gust_factor(df: pd.DataFrame) -> pd.Series:
    """Gust / wind speed per row; null when either is null or wind speed is zero."""
    return safe_ratio(df['gust'], df['wind_speed']).set_axis(df.index)


def analyze_gust_factor(
    df: pd.DataFrame,
    min_wind_speed: float = DEFAULT_CONFIG.gust_min_wind_speed,
    extreme_threshold: float = DEFAULT_CONFIG.extreme_gust_factor,
    rogue_threshold: float = DEFAULT_CONFIG.gust_rogue_threshold
) -> Dict[str, Any]:
    """
    Analyze the ratio of peak gust to sustained wind speed.

    Only rows with both values present and ``wind_speed >= min_wind_speed``
    are considered.

    Returns
    -------
    dict
        {
          'summary': DataFrame[statistic, value] (n, mean, median, sd, p95, p99, max),
          'extreme_gusts': observations with gust factor > extreme_threshold,
          'by_category': DataFrame[wind_category, n, mean_gf, p95_gf],
          'rogue_gust_threshold': float,
          'n_rogue_gusts': int,
          'pct_rogue_gusts': float
        }
    """
    if not isinstance(df, pd.DataFrame):
        raise TypeError("Input must be a pandas DataFrame")
    for name, value in (('extreme_threshold', extreme_threshold),
                        ('rogue_threshold', rogue_threshold)):
        if not value > 0:
            raise InvalidConfiguration(f"{name} must be positive, got {value}")

    gf = gust_factor(df)
    wind = pd.to_numeric(df['wind_speed'], errors='coerce')
    valid = gf.notna() & (wind >= min_wind_speed)
    gf_valid = gf[valid]
    n = int(gf_valid.size)

    if n:
        values = [n, gf_valid.mean(), gf_valid.median(), gf_valid.std(ddof=1),
                  gf_valid.quantile(0.95), gf_valid.quantile(0.99), gf_valid.max()]
    else:
        logger.warning(f"No valid gust/wind pairs with wind speed >= {min_wind_speed} m/s")
        values = [0] + [np.nan] * 6
    summary = pd.DataFrame({
        'statistic': ['n', 'mean', 'median', 'sd', 'p95', 'p99', 'max'],
        'value': np.asarray(values, dtype=float),
    })

    extreme_mask = valid & (gf > extreme_threshold)
    extreme_gusts = df.loc[extreme_mask].copy()
    extreme_gusts['gust_factor'] = gf[extreme_mask]
    extreme_gusts = extreme_gusts.sort_values('gust_factor', ascending=False,
                                              kind='mergesort').reset_index(drop=True)

    categories = pd.cut(wind[valid], bins=WIND_BINS, labels=WIND_LABELS,
                        right=True, include_lowest=True)
    by_category = (pd.DataFrame({'wind_category': categories, 'gf': gf_valid})
                   .groupby('wind_category', observed=True)['gf']
                   .agg(n='size', mean_gf='mean', p95_gf=lambda x: x.quantile(0.95))
                   .reset_index())
    by_category['wind_category'] = by_category['wind_category'].astype(str)

    n_rogue = int((gf_valid > rogue_threshold).sum())
    pct_rogue = 100.0 * n_rogue / n if n else np.nan

    if n:
        logger.info(f"Typical gust factor: {gf_valid.mean():.2f}")
    logger.info(f"'Rogue gust' events (GF > {rogue_threshold}): {n_rogue} ({pct_rogue:.3f}%)")

    return {
        'summary': summary,
        'extreme_gusts': extreme_gusts,
        'by_category': by_category,
        'rogue_gust_threshold': float(rogue_threshold),
        'n_rogue_gusts': n_rogue,
        'pct_rogue_gusts': pct_rogue,
    }


def compare_rogue_wave_gust(
    df: pd.DataFrame,
    wave_threshold: float = DEFAULT_CONFIG.wave_rogue_threshold,
    min_wave_height: float = DEFAULT_CONFIG.wave_min_height,
    gust_threshold: float = DEFAULT_CONFIG.gust_rogue_threshold,
    min_wind_speed: float = DEFAULT_CONFIG.gust_min_wind_speed
) -> pd.DataFrame:
    """
    Compare occurrence rates of rogue waves (Hmax/Hs) and rogue gusts (gust/wind).

    Returns
    -------
    pd.DataFrame
        Columns ['phenomenon', 'definition', 'n_events', 'n_eligible',
        'occurrence_pct']; ``occurrence_pct`` is None when nothing is eligible.
    """
    rows = []
    criteria = [
        ('Rogue Wave', f"Hmax/Hs > {wave_threshold:.1f}", 'hmax', 'wave_height',
         wave_threshold, min_wave_height),
        ('Rogue Gust', f"Gust/Wind > {gust_threshold:.1f}", 'gust', 'wind_speed',
         gust_threshold, min_wind_speed),
    ]

    for phenomenon, definition, peak_col, base_col, threshold, min_base in criteria:
        if not threshold > 0:
            raise InvalidConfiguration(f"{phenomenon} threshold must be positive, got {threshold}")
        ratio = safe_ratio(df[peak_col], df[base_col]).set_axis(df.index)
        base = pd.to_numeric(df[base_col], errors='coerce')
        eligible = ratio.notna() & (base >= min_base)
        n_eligible = int(eligible.sum())
        n_events = int((ratio[eligible] > threshold).sum())
        rows.append({
            'phenomenon': phenomenon,
            'definition': definition,
            'n_events': n_events,
            'n_eligible': n_eligible,
            'occurrence_pct': 100.0 * n_events / n_eligible if n_eligible else None,
        })

    return pd.DataFrame(rows, columns=['phenomenon', 'definition', 'n_events',
                                       'n_eligible', 'occurrence_pct'])
