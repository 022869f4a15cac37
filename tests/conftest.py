"""
Shared fixtures: synthetic hourly buoy observation tables.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Adjust path to import the package without installing it
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def _synthetic_station(station_id, start, periods, freq, rng):
    times = pd.date_range(start=start, periods=periods, freq=freq)
    hours = np.arange(periods)

    wave_height = np.clip(2.0 + 0.8 * np.sin(2 * np.pi * hours / 24)
                          + 0.3 * rng.standard_normal(periods), 0.2, None)
    hmax = wave_height * (1.5 + 0.05 * rng.standard_normal(periods))
    wind_speed = np.clip(4.0 + 3.0 * wave_height + rng.normal(0, 1, periods), 0.0, None)
    gust = wind_speed * (1.2 + 0.1 * rng.random(periods))

    return pd.DataFrame({
        'station_id': station_id,
        'time': times,
        'wave_height': wave_height,
        'hmax': hmax,
        'wave_period': 6.0 + 2.0 * rng.random(periods),
        'wind_speed': wind_speed,
        'wind_direction': rng.uniform(0, 360, periods),
        'gust': gust,
        'atmospheric_pressure': 1013.0 + np.cumsum(rng.normal(0, 0.2, periods)),
        'air_temperature': 12.0 + rng.normal(0, 1, periods),
        'sea_temperature': 14.0 + rng.normal(0, 0.5, periods),
        'qc_flag': 1,
    })


@pytest.fixture
def make_observations():
    """Factory for multi-station observation tables."""
    def _make(stations=('41001', '41002'), start='2020-01-01', periods=24 * 30,
              freq='h', seed=0):
        rng = np.random.default_rng(seed)
        frames = [_synthetic_station(s, start, periods, freq, rng) for s in stations]
        return pd.concat(frames, ignore_index=True)
    return _make


@pytest.fixture
def observations(make_observations):
    """Two stations, 30 days of hourly data."""
    return make_observations()


@pytest.fixture
def gumbel_annual_maxima_df():
    """
    Ten years of 6-hourly wind speed between 5 and 12 m/s with one
    Gumbel(20, 3) quantile injected per year as that year's maximum.
    """
    rng = np.random.default_rng(1)
    times = pd.date_range('2010-01-01', '2019-12-31 18:00', freq='6h')
    wind = rng.uniform(5, 12, times.size)

    probs = (np.arange(1, 11) - 0.5) / 10
    maxima = 20 - 3 * np.log(-np.log(probs))
    rng.shuffle(maxima)

    df = pd.DataFrame({'station_id': '41001', 'time': times, 'wind_speed': wind})
    for year, value in zip(range(2010, 2020), maxima):
        idx = df.index[df['time'] == pd.Timestamp(f'{year}-07-01 12:00')][0]
        df.loc[idx, 'wind_speed'] = value
    return df


@pytest.fixture
def gpd_exceedance_df():
    """
    200 GPD(scale=1, shape=0.2) quantiles in shuffled order, 72 h apart,
    so a threshold of 0 keeps every value even after 48 h declustering.
    """
    from scipy.stats import genpareto

    rng = np.random.default_rng(2)
    values = genpareto.ppf((np.arange(1, 201) - 0.5) / 200, 0.2)
    rng.shuffle(values)
    times = pd.date_range('2020-01-01', periods=200, freq='72h')
    return pd.DataFrame({'station_id': '41001', 'time': times, 'wave_height': values})
