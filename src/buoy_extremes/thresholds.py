# src/buoy_extremes/thresholds.py
"""
Module: thresholds.py
Responsibilities:
- Select a POT threshold at a given quantile of the valid values
- Compute candidate POT thresholds (quantile-based)
- Compute mean residual life (mean excess) diagnostic data
"""
import logging
from typing import List, Optional, Union

import numpy as np
import pandas as pd
import xarray as xr

from buoy_extremes.config import DEFAULT_CONFIG

# Configure logging
logging.basicConfig(level=logging.INFO,
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

ArrayLike = Union[xr.DataArray, pd.Series, np.ndarray, List[float]]


def valid_values(values: ArrayLike) -> np.ndarray:
    """Flatten ``values`` to a float array without NaNs."""
    if isinstance(values, xr.DataArray):
        arr = values.values
    elif isinstance(values, pd.Series):
        arr = pd.to_numeric(values, errors='coerce').to_numpy()
    elif isinstance(values, (np.ndarray, list, tuple)):
        arr = np.asarray(values)
    else:
        raise TypeError("Input must be an xarray DataArray, pandas Series or numpy array")

    arr = np.asarray(arr, dtype=float).flatten()
    return arr[~np.isnan(arr)]


def select_threshold(
    values: ArrayLike,
    quantile: float = DEFAULT_CONFIG.gpd_threshold_quantile,
    min_sample_size: int = DEFAULT_CONFIG.min_exceedances
) -> float:
    """
    Select threshold at the given quantile of the valid values, ignoring NaNs.

    Parameters
    ----------
    values : xr.DataArray, pd.Series or np.ndarray
        Observed values (e.g. wave height or wind speed).
    quantile : float
        Quantile for threshold selection (0.95 for the 95th percentile).
        Must be between 0 and 1.
    min_sample_size : int
        Recommended minimum of valid values and exceedances. Smaller
        samples only log a warning.

    Returns
    -------
    float
        Threshold value at the specified quantile.

    Raises
    ------
    ValueError
        If quantile is outside [0, 1] or no valid value exists.
    TypeError
        If input is not array-like.
    """
    if not 0 <= quantile <= 1:
        raise ValueError(f"Quantile must be between 0 and 1, got {quantile}")

    arr = valid_values(values)

    if arr.size == 0:
        raise ValueError("Input contains only NaNs; cannot compute threshold.")
    if arr.size < min_sample_size:
        logger.warning(f"Input contains only {arr.size} non-NaN values, which is less than "
                       f"recommended minimum of {min_sample_size}")

    threshold = float(np.quantile(arr, quantile))
    logger.info(f"Selected threshold at {quantile:.2%} quantile: {threshold:.4f}")

    n_exceed = int((arr > threshold).sum())
    if n_exceed < min_sample_size:
        logger.warning(f"Threshold {threshold:.4f} yields only {n_exceed} exceedances, "
                       f"which is less than recommended minimum of {min_sample_size}")

    return threshold


def mean_residual_life(
    values: ArrayLike,
    thresholds: Union[np.ndarray, List[float]],
    min_exceedances: int = 10
) -> pd.DataFrame:
    """
    Compute mean residual life (mean excess over threshold) for each threshold.

    A valid GPD threshold is one above which the mean excess is
    approximately linear in u.

    Parameters
    ----------
    values : xr.DataArray, pd.Series or np.ndarray
        Observed values.
    thresholds : np.ndarray or List[float]
        Threshold candidates in ascending order.
    min_exceedances : int
        Minimum number of exceedances required to compute mean excess.

    Returns
    -------
    pd.DataFrame
        Columns ['threshold', 'mean_excess', 'n_exceed', 'std_err']
    """
    if not isinstance(thresholds, (np.ndarray, list, tuple)):
        raise TypeError("thresholds must be a numpy array or list")

    if len(thresholds) == 0:
        raise ValueError("thresholds must not be empty")

    thresholds = np.asarray(thresholds, dtype=float)
    arr = valid_values(values)

    if arr.size == 0:
        raise ValueError("Input contains only NaNs; cannot compute mean residual life.")

    results = []
    for u in thresholds:
        exceedances = arr[arr > u]
        n_exceed = len(exceedances)

        if n_exceed >= max(min_exceedances, 2):
            excess = exceedances - u
            mean_exc = np.mean(excess)
            std_err = np.std(excess, ddof=1) / np.sqrt(n_exceed)
        else:
            mean_exc = np.nan
            std_err = np.nan

        results.append({
            'threshold': float(u),
            'mean_excess': float(mean_exc),
            'n_exceed': int(n_exceed),
            'std_err': float(std_err)
        })

    return pd.DataFrame(results)


def generate_threshold_candidates(
    values: ArrayLike,
    quantiles: Optional[List[float]] = None,
    n_points: int = 20,
    min_quantile: float = 0.8,
    max_quantile: float = 0.995
) -> np.ndarray:
    """
    Generate candidate thresholds from quantiles of the data.

    Parameters
    ----------
    values : xr.DataArray, pd.Series or np.ndarray
        Observed values.
    quantiles : List[float], optional
        Quantiles to use (between 0 and 1). If not provided, ``n_points``
        evenly spaced quantiles in [min_quantile, max_quantile] are used.
    n_points : int
        Number of candidates when ``quantiles`` is None.
    min_quantile, max_quantile : float
        Range of the generated quantiles.

    Returns
    -------
    np.ndarray
        Threshold candidates (non-decreasing).
    """
    if quantiles is None:
        if not 0 <= min_quantile < max_quantile <= 1:
            raise ValueError("Quantile range must satisfy 0 <= min_quantile < max_quantile <= 1")
        quantiles = np.linspace(min_quantile, max_quantile, n_points)
    elif not all(0 <= q <= 1 for q in quantiles):
        raise ValueError("All quantiles must be between 0 and 1")

    arr = valid_values(values)

    if arr.size == 0:
        raise ValueError("Input contains only NaNs; cannot compute thresholds.")

    return np.quantile(arr, np.sort(np.asarray(quantiles, dtype=float)))
