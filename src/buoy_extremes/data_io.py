# src/buoy_extremes/data_io.py
"""
Module: data_io.py
Responsibilities:
- Validate the observation file path
- Load an observation table (CSV or Parquet) exported by the storage layer
- List available station ids
- Read-only query: filter by station / time range / QC flag, select columns, order by time
"""
import os
import logging
from typing import Iterable, List, Optional, Union

import pandas as pd

# Configure logging
logging.basicConfig(level=logging.INFO,
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

KEY_COLUMNS = ['station_id', 'time']
MEASUREMENT_COLUMNS = [
    'wave_height', 'hmax', 'wave_period', 'wind_speed', 'wind_direction', 'gust',
    'atmospheric_pressure', 'air_temperature', 'sea_temperature',
]
QC_COLUMN = 'qc_flag'

TimeLike = Union[str, pd.Timestamp, None]


def validate_path(observation_path: str) -> bool:
    """
    Ensure the observation file exists and is readable.

    Raises
    ------
    FileNotFoundError
        If the file doesn't exist
    PermissionError
        If the file exists but isn't readable
    """
    if not os.path.exists(observation_path):
        raise FileNotFoundError(f"Observation file not found: {observation_path}")

    if not os.access(observation_path, os.R_OK):
        raise PermissionError(f"Observation file is not readable: {observation_path}")

    if os.path.isdir(observation_path):
        raise IsADirectoryError(f"Expected a file, got a directory: {observation_path}")

    return True


def load_observations(observation_path: str) -> pd.DataFrame:
    """
    Load an observation table from CSV or Parquet.

    Parameters
    ----------
    observation_path : str
        Path to a ``.csv`` or ``.parquet`` file with at least
        ``station_id`` and ``time`` columns.

    Returns
    -------
    pd.DataFrame
        Raw observation rows, ``station_id`` as str and ``time`` as datetime.

    Raises
    ------
    FileNotFoundError
        If the file is missing
    ValueError
        If the file is empty, unparsable, of unknown type, or lacks key columns
    """
    validate_path(observation_path)
    ext = os.path.splitext(observation_path)[1].lower()

    try:
        if ext == '.csv':
            df = pd.read_csv(observation_path)
        elif ext in ('.parquet', '.pq'):
            df = pd.read_parquet(observation_path)
        else:
            raise ValueError(f"Unsupported observation file type '{ext}' (use .csv or .parquet)")
    except pd.errors.EmptyDataError:
        raise ValueError(f"Observation file is empty: {observation_path}")
    except pd.errors.ParserError as e:
        raise ValueError(f"Error parsing observation file: {e}")

    if df.empty:
        raise ValueError(f"Observation file contains no data: {observation_path}")

    missing = [col for col in KEY_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"Observation file missing required columns: {', '.join(missing)}")

    df['station_id'] = df['station_id'].astype(str)
    df['time'] = pd.to_datetime(df['time'])

    logger.info(f"Loaded {len(df)} observations for {df['station_id'].nunique()} stations "
                f"from {os.path.basename(observation_path)}")
    return df


def list_station_ids(df: pd.DataFrame) -> List[str]:
    """
    Return the sorted unique station ids in an observation table.

    Raises
    ------
    TypeError
        If input is not a DataFrame
    KeyError
        If 'station_id' column is missing
    """
    if not isinstance(df, pd.DataFrame):
        raise TypeError("Input must be a pandas DataFrame")

    if 'station_id' not in df.columns:
        raise KeyError("Observation table missing 'station_id' column")

    ids = sorted(df['station_id'].dropna().astype(str).unique().tolist())
    logger.info(f"Found {len(ids)} stations; sample: {ids[:5]}")
    return ids


def query_observations(
    df: pd.DataFrame,
    stations: Optional[Iterable[str]] = None,
    start: TimeLike = None,
    end: TimeLike = None,
    columns: Optional[Iterable[str]] = None,
    qc_filter: bool = True,
    qc_good_flag: int = 1
) -> pd.DataFrame:
    """
    Filter and project an observation table without modifying it.

    Parameters
    ----------
    df : pd.DataFrame
        Observation table.
    stations : iterable of str, optional
        Station ids to keep.
    start, end : str or Timestamp, optional
        Inclusive time bounds.
    columns : iterable of str, optional
        Columns to return. Key columns are always included.
    qc_filter : bool, default=True
        Keep only rows whose ``qc_flag`` equals ``qc_good_flag``.
        Ignored when the table has no ``qc_flag`` column.
    qc_good_flag : int, default=1
        QC code for good data.

    Returns
    -------
    pd.DataFrame
        Matching rows ordered by time, then station.
    """
    if not isinstance(df, pd.DataFrame):
        raise TypeError("Input must be a pandas DataFrame")

    mask = pd.Series(True, index=df.index)

    if stations is not None:
        stations = [str(s) for s in stations]
        mask &= df['station_id'].astype(str).isin(stations)

    times = pd.to_datetime(df['time'])
    if start is not None:
        mask &= times >= pd.Timestamp(start)
    if end is not None:
        mask &= times <= pd.Timestamp(end)

    if qc_filter:
        if QC_COLUMN in df.columns:
            mask &= df[QC_COLUMN] == qc_good_flag
        else:
            logger.warning("No 'qc_flag' column; QC filter skipped")

    out = df.loc[mask]

    if columns is not None:
        selected = list(KEY_COLUMNS)
        for col in columns:
            if col not in df.columns:
                raise KeyError(f"Unknown column requested: {col}")
            if col not in selected:
                selected.append(col)
        out = out[selected]

    out = out.sort_values(['time', 'station_id'], kind='mergesort').reset_index(drop=True)
    logger.info(f"Query returned {len(out)} of {len(df)} observations")
    return out
