# src/buoy_extremes/declustering.py
"""
Module: declustering.py
Responsibilities:
- Select values above a threshold together with their timestamps
- Runs declustering: keep one independent peak per cluster of exceedances
"""
import logging
from typing import Tuple

import numpy as np
import pandas as pd

from buoy_extremes.config import DEFAULT_CONFIG
from buoy_extremes.errors import InvalidConfiguration
from buoy_extremes.results import ExceedanceSet

# Configure logging
logging.basicConfig(level=logging.INFO,
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def select_exceedances(times, values, threshold: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Return (times, values) of the valid values strictly above ``threshold``,
    ordered by time (stable, so simultaneous values keep their input order).
    """
    times = pd.to_datetime(pd.Series(times)).to_numpy(dtype='datetime64[ns]')
    values = np.asarray(values, dtype=float)

    if times.shape != values.shape:
        raise ValueError(f"times and values must have the same length "
                         f"({times.size} != {values.size})")

    mask = ~np.isnan(values) & ~pd.isna(times) & (values > threshold)
    times, values = times[mask], values[mask]

    order = np.argsort(times, kind='stable')
    return times[order], values[order]


def decluster_exceedances(
    times,
    values,
    threshold: float,
    window_hours: float = DEFAULT_CONFIG.decluster_hours
) -> ExceedanceSet:
    """
    Reduce exceedances to one peak per cluster.

    Walking chronologically, the first exceedance seeds a cluster. A later
    exceedance whose gap from the last kept peak is at least
    ``window_hours`` starts a new cluster; otherwise it joins the current
    one and replaces the kept peak only if it is strictly larger (the
    cluster's reference time then moves to it).

    Kept peaks are therefore at least ``window_hours`` apart, so applying
    the step to its own output returns the same set.

    Parameters
    ----------
    times : array-like of datetime
        Observation timestamps.
    values : array-like of float
        Observed values aligned with ``times``. NaNs are ignored.
    threshold : float
        Exceedance threshold (strict).
    window_hours : float
        Minimum separation between independent peaks.

    Returns
    -------
    ExceedanceSet
        Declustered peaks in time order.
    """
    if window_hours < 0:
        raise InvalidConfiguration(f"window_hours must be non-negative, got {window_hours}")

    exc_times, exc_values = select_exceedances(times, values, threshold)
    n_raw = exc_values.size

    if n_raw == 0:
        logger.info(f"No exceedances above threshold {threshold:.4f}")
        return ExceedanceSet(threshold=float(threshold), times=exc_times, values=exc_values,
                             declustered=True, window_hours=float(window_hours), n_raw=0)

    window = np.timedelta64(int(round(window_hours * 3600 * 1e9)), 'ns')
    kept = [0]
    last_kept_time = exc_times[0]

    for i in range(1, n_raw):
        if exc_times[i] - last_kept_time >= window:
            kept.append(i)
            last_kept_time = exc_times[i]
        elif exc_values[i] > exc_values[kept[-1]]:
            kept[-1] = i
            last_kept_time = exc_times[i]

    kept = np.asarray(kept, dtype=int)
    logger.info(f"Declustered: {n_raw} -> {kept.size} independent exceedances "
                f"(window {window_hours}h)")

    return ExceedanceSet(
        threshold=float(threshold),
        times=exc_times[kept],
        values=exc_values[kept],
        declustered=True,
        window_hours=float(window_hours),
        n_raw=int(n_raw)
    )


def raw_exceedances(times, values, threshold: float) -> ExceedanceSet:
    """All exceedances above ``threshold`` without declustering."""
    exc_times, exc_values = select_exceedances(times, values, threshold)
    return ExceedanceSet(threshold=float(threshold), times=exc_times, values=exc_values,
                         declustered=False, window_hours=None, n_raw=int(exc_values.size))
