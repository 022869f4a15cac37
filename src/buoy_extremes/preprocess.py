# src/buoy_extremes/preprocess.py
"""
Module: preprocess.py
Responsibilities:
- Validate an observation table (required columns, non-empty)
- Coerce measurement columns to numeric, add absent optional columns as null
- Normalize timestamps to naive UTC
- Drop duplicate (station_id, time) rows
- Build a per-station regular hourly xarray series
- Fill gaps by linear interpolation clamped at the series ends
"""
import logging
from typing import Tuple

import numpy as np
import pandas as pd
import xarray as xr

from buoy_extremes.data_io import MEASUREMENT_COLUMNS, QC_COLUMN

# Configure logging
logging.basicConfig(level=logging.INFO,
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ['station_id', 'time']


def validate_dataframe(df: pd.DataFrame) -> Tuple[bool, str]:
    """
    Validate that the input DataFrame has the observation key columns.

    Returns
    -------
    Tuple[bool, str]
        (is_valid, error_message)
    """
    if not isinstance(df, pd.DataFrame):
        return False, "Input must be a pandas DataFrame"

    missing_required = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing_required:
        return False, f"Missing required columns: {', '.join(missing_required)}"

    if df.empty:
        return False, "DataFrame is empty"

    if df['time'].isna().all():
        return False, "time column contains only missing values"

    return True, ""


def prepare_observations(df: pd.DataFrame) -> pd.DataFrame:
    """
    Clean a raw observation table:
    1. Validate key columns
    2. Coerce measurement columns to float, adding absent ones as all-null
    3. Normalize time to naive UTC and drop rows without a timestamp
    4. Drop duplicate (station_id, time) rows, keeping the first
    5. Sort by station and time

    Parameters
    ----------
    df : pd.DataFrame
        Raw observation rows.

    Returns
    -------
    pd.DataFrame
        Clean copy; the input is not modified.

    Raises
    ------
    ValueError
        If the DataFrame doesn't meet requirements
    """
    is_valid, error_msg = validate_dataframe(df)
    if not is_valid:
        if error_msg.startswith("Input must be"):
            raise TypeError(error_msg)
        raise ValueError(f"Invalid observation table: {error_msg}")

    df = df.copy()
    df['station_id'] = df['station_id'].astype(str)

    for col in MEASUREMENT_COLUMNS:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors='coerce').astype(float)
        else:
            df[col] = np.nan

    if QC_COLUMN in df.columns:
        df[QC_COLUMN] = pd.to_numeric(df[QC_COLUMN], errors='coerce')

    times = pd.to_datetime(df['time'], utc=True)
    df['time'] = times.dt.tz_convert('UTC').dt.tz_localize(None)

    n_before = len(df)
    df = df.dropna(subset=['time'])
    if len(df) < n_before:
        logger.info(f"Dropped {n_before - len(df)} rows without timestamp")

    n_before = len(df)
    df = df.drop_duplicates(subset=['station_id', 'time'], keep='first')
    if len(df) < n_before:
        logger.info(f"Dropped {n_before - len(df)} duplicate (station_id, time) rows")

    df = df.sort_values(['station_id', 'time'], kind='mergesort').reset_index(drop=True)
    return df


def station_series(
    df: pd.DataFrame,
    variable: str,
    station_id: str = None,
    freq: str = 'h'
) -> xr.DataArray:
    """
    Extract one station's variable on a complete regular time grid.

    Timestamps are floored to ``freq``; hours without an observation are NaN.

    Parameters
    ----------
    df : pd.DataFrame
        Observation table.
    variable : str
        Column to extract.
    station_id : str, optional
        Station to select. Required when the table holds several stations.
    freq : str, default='h'
        Grid spacing.

    Returns
    -------
    xr.DataArray
        Values along a ``time`` dimension.
    """
    if variable not in df.columns:
        raise KeyError(f"Variable '{variable}' not found in observation table")

    if station_id is not None:
        df = df[df['station_id'].astype(str) == str(station_id)]
    elif 'station_id' in df.columns and df['station_id'].nunique() > 1:
        raise ValueError("station_id is required when the table holds several stations")

    if df.empty:
        raise ValueError(f"No observations for station {station_id}")

    series = pd.Series(
        pd.to_numeric(df[variable], errors='coerce').to_numpy(dtype=float),
        index=pd.to_datetime(df['time']).dt.floor(freq)
    )
    # Keep the first valid value when several samples fall in one slot
    series = series.groupby(level=0).first()
    grid = pd.date_range(series.index.min(), series.index.max(), freq=freq)
    series = series.reindex(grid)

    n_missing = int(series.isna().sum())
    if n_missing:
        logger.info(f"{variable}: {n_missing} of {len(series)} grid points missing")

    return xr.DataArray(
        series.to_numpy(),
        dims=['time'],
        coords={'time': grid},
        name=variable,
        attrs={'station_id': station_id if station_id is not None else ''}
    )


def interpolate_gaps(da: xr.DataArray) -> xr.DataArray:
    """
    Fill missing values by linear interpolation along ``time``.

    Leading and trailing gaps take the nearest valid value (no extrapolation).

    Parameters
    ----------
    da : xr.DataArray
        Input data array

    Returns
    -------
    xr.DataArray
        Gap-free copy

    Raises
    ------
    ValueError
        If the array holds no valid value
    """
    values = da.values.astype(float)
    valid = ~np.isnan(values)

    if not valid.any():
        raise ValueError("Cannot interpolate: series contains only NaN values")

    n_missing = int((~valid).sum())
    if n_missing == 0:
        return da.copy()

    positions = np.arange(values.size)
    filled = np.interp(positions, positions[valid], values[valid])
    logger.info(f"Interpolated {n_missing} missing values")

    return da.copy(data=filled)
