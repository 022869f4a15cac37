# src/buoy_extremes/extreme_values.py
"""
Module: extreme_values.py
Responsibilities:
- Annual maxima extraction (block maxima)
- Fit GEV to annual maxima, returning a sentinel when too few years exist
- Fit GPD to (declustered) exceedances over a threshold
- Standard errors from the observed information (numerical Hessian)
- Return levels with delta-method confidence intervals and return level curves
- Goodness-of-fit diagnostics (KS test, QQ/PP coordinates)
- Multi-threshold GPD runs recording per-threshold failures
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.optimize import minimize
from scipy.stats import genextreme, genpareto, kstest, norm

from buoy_extremes.config import DEFAULT_CONFIG
from buoy_extremes.declustering import decluster_exceedances, raw_exceedances
from buoy_extremes.errors import InsufficientExceedances
from buoy_extremes.results import (
    FAMILY_GEV, FAMILY_GPD, AnnualMaximaSeries, FitOutcome, FittedDistribution,
    InsufficientDataResult, ReturnLevelEstimate,
)
from buoy_extremes.thresholds import select_threshold

# Configure logging
logging.basicConfig(level=logging.INFO,
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# |xi| below this uses the Gumbel / exponential limit
SHAPE_EPS = 1e-6
EULER_GAMMA = 0.5772156649015329
DAYS_PER_YEAR = 365.25

RETURN_LEVEL_COLUMNS = ['return_period', 'return_level', 'lower_ci', 'upper_ci',
                        'variable', 'family', 'error']


# ---------------------------------------------------------------------------
# Likelihoods and numerical information matrix
# ---------------------------------------------------------------------------

def gev_neg_log_likelihood(theta: Sequence[float], x: np.ndarray) -> float:
    """GEV negative log-likelihood for theta = (location, scale, shape)."""
    mu, sigma, xi = theta
    if sigma <= 0:
        return np.inf
    # scipy's genextreme uses c = -xi
    nll = -np.sum(genextreme.logpdf(x, -xi, loc=mu, scale=sigma))
    return float(nll) if np.isfinite(nll) else np.inf


def gpd_neg_log_likelihood(theta: Sequence[float], excess: np.ndarray) -> float:
    """GPD negative log-likelihood for theta = (scale, shape) on threshold excesses."""
    sigma, xi = theta
    if sigma <= 0:
        return np.inf
    nll = -np.sum(genpareto.logpdf(excess, xi, loc=0, scale=sigma))
    return float(nll) if np.isfinite(nll) else np.inf


def _steps(theta: np.ndarray) -> np.ndarray:
    return 1e-3 * np.maximum(np.abs(theta), 0.1)


def numerical_hessian(func: Callable[[np.ndarray], float], theta: Sequence[float]) -> np.ndarray:
    """
    Central finite-difference Hessian of ``func`` at ``theta``.

    Step for parameter i is 1e-3 * max(|theta_i|, 0.1).
    """
    theta = np.asarray(theta, dtype=float)
    k = theta.size
    h = _steps(theta)
    f0 = func(theta)
    hess = np.zeros((k, k))

    for i in range(k):
        ei = np.zeros(k)
        ei[i] = h[i]
        hess[i, i] = (func(theta + ei) - 2 * f0 + func(theta - ei)) / h[i] ** 2
        for j in range(i + 1, k):
            ej = np.zeros(k)
            ej[j] = h[j]
            value = (func(theta + ei + ej) - func(theta + ei - ej)
                     - func(theta - ei + ej) + func(theta - ei - ej)) / (4 * h[i] * h[j])
            hess[i, j] = hess[j, i] = value

    return hess


def covariance_from_nll(func: Callable[[np.ndarray], float], theta: Sequence[float]) -> np.ndarray:
    """
    Inverse observed information at the MLE.

    Returns a NaN matrix (with a warning) when the Hessian is not finite,
    singular, or not positive definite.
    """
    k = len(theta)
    nan_cov = np.full((k, k), np.nan)
    hess = numerical_hessian(func, theta)

    if not np.all(np.isfinite(hess)):
        logger.warning("Hessian of the negative log-likelihood is not finite; "
                       "standard errors unavailable")
        return nan_cov

    try:
        cov = np.linalg.inv(hess)
    except np.linalg.LinAlgError:
        logger.warning("Singular Hessian; standard errors unavailable")
        return nan_cov

    if np.any(np.diag(cov) <= 0):
        logger.warning("Hessian is not positive definite at the optimum; standard errors unavailable")
        return nan_cov

    return cov


def _information_criteria(nll: float, n_params: int, n: int) -> Dict[str, float]:
    return {
        'neg_log_likelihood': float(nll),
        'aic': float(2 * n_params + 2 * nll),
        'bic': float(n_params * np.log(n) + 2 * nll),
    }


# ---------------------------------------------------------------------------
# Block maxima (GEV)
# ---------------------------------------------------------------------------

def annual_maxima(df: pd.DataFrame, variable: str = 'wave_height', time_col: str = 'time') -> AnnualMaximaSeries:
    """
    Maximum valid value per calendar year.

    Years without any valid value are omitted; years are strictly increasing.
    """
    if not isinstance(df, pd.DataFrame):
        raise TypeError("Input must be a pandas DataFrame")

    for col in (variable, time_col):
        if col not in df.columns:
            raise KeyError(f"Observation table missing '{col}' column")

    values = pd.to_numeric(df[variable], errors='coerce')
    years = pd.to_datetime(df[time_col]).dt.year
    valid = values.notna() & np.isfinite(values) & years.notna()

    table = (pd.DataFrame({'year': years[valid].astype(int), 'max_value': values[valid].astype(float)})
             .groupby('year', sort=True)['max_value'].max()
             .reset_index())

    return AnnualMaximaSeries(variable=variable, table=table)


def _fit_gev_mle(x: np.ndarray) -> Tuple[np.ndarray, float, str]:
    """Maximise the GEV likelihood; returns (theta, nll, method)."""
    sigma0 = np.sqrt(6) * np.std(x, ddof=1) / np.pi
    if not sigma0 > 0:
        raise ValueError("Annual maxima have zero variance (all values are identical)")
    mu0 = np.mean(x) - EULER_GAMMA * sigma0
    xi0 = 0.1

    def nll(theta):
        return gev_neg_log_likelihood(theta, x)

    candidates = []

    result = minimize(nll, x0=[mu0, sigma0, xi0], method='Nelder-Mead',
                      options={'xatol': 1e-8, 'fatol': 1e-10, 'maxiter': 5000, 'maxfev': 10000})
    if np.isfinite(result.fun):
        candidates.append((np.asarray(result.x, dtype=float), float(result.fun), 'nelder-mead'))
    else:
        logger.warning(f"Nelder-Mead GEV optimisation did not reach a finite likelihood: {result.message}")

    c, loc, scale = genextreme.fit(x, -xi0, loc=mu0, scale=sigma0)
    theta = np.array([loc, scale, -c], dtype=float)
    value = nll(theta)
    if np.isfinite(value):
        candidates.append((theta, value, 'scipy-fit'))

    if not candidates:
        raise ValueError("GEV maximum likelihood did not converge")

    return min(candidates, key=lambda cand: cand[1])


def fit_gev_annual_maxima(
    df: pd.DataFrame,
    variable: str = 'wave_height',
    min_years: int = DEFAULT_CONFIG.gev_min_years,
    time_col: str = 'time'
) -> FitOutcome:
    """
    Fit a GEV distribution to annual maxima (block maxima approach).

    Parameters
    ----------
    df : pd.DataFrame
        Observations with ``time`` and ``variable`` columns.
    variable : str
        Column to analyse.
    min_years : int
        Minimum number of annual maxima required.

    Returns
    -------
    FittedDistribution or InsufficientDataResult
        A fitted GEV (location, scale, shape with xi > 0 heavy tail), or
        the insufficient-data sentinel carrying the partial annual maxima
        when fewer than ``min_years`` years are available.

    Raises
    ------
    ValueError
        If the likelihood cannot be maximised (e.g. constant maxima).
    """
    am = annual_maxima(df, variable, time_col)

    if am.n_years < min_years:
        reason = (f"Insufficient data for GEV fitting: {am.n_years} years available, "
                  f"need at least {min_years}")
        logger.warning(f"{variable}: {reason}")
        return InsufficientDataResult(family=FAMILY_GEV, variable=variable, reason=reason,
                                      annual_maxima=am, min_years=min_years)

    x = am.values
    logger.info(f"Fitting GEV to {am.n_years} annual maxima of {variable} "
                f"({am.years.min()}-{am.years.max()})")

    try:
        theta, nll, method = _fit_gev_mle(x)
    except Exception as e:
        logger.error(f"GEV fitting error: {type(e).__name__}: {e}")
        raise ValueError(f"Failed to fit GEV: {e}") from e

    cov = covariance_from_nll(lambda t: gev_neg_log_likelihood(t, x), theta)
    se = np.sqrt(np.diag(cov))
    names = ['location', 'scale', 'shape']

    diagnostics = _information_criteria(nll, 3, x.size)
    diagnostics['optimizer'] = method

    fit = FittedDistribution(
        family=FAMILY_GEV,
        variable=variable,
        parameters={name: float(v) for name, v in zip(names, theta)},
        standard_errors={name: float(v) for name, v in zip(names, se)},
        covariance=cov,
        n_input_points=int(x.size),
        data=x,
        annual_maxima=am,
        diagnostics=diagnostics
    )

    p = fit.parameters
    logger.info(f"GEV fit complete: location={p['location']:.2f}, scale={p['scale']:.2f}, "
                f"shape={p['shape']:.3f}")
    return fit


# ---------------------------------------------------------------------------
# Peaks over threshold (GPD)
# ---------------------------------------------------------------------------

def _fit_gpd_mle(excess: np.ndarray) -> Tuple[np.ndarray, float, str]:
    """Maximise the GPD likelihood on excesses; returns (theta, nll, method)."""
    def nll(theta):
        return gpd_neg_log_likelihood(theta, excess)

    xi, _, sigma = genpareto.fit(excess, floc=0)
    start = np.array([sigma, xi], dtype=float)
    candidates = []
    value = nll(start)
    if np.isfinite(value):
        candidates.append((start, value, 'scipy-fit'))
    else:
        start = np.array([np.mean(excess), 0.1])

    result = minimize(nll, x0=start, method='Nelder-Mead',
                      options={'xatol': 1e-8, 'fatol': 1e-10, 'maxiter': 5000, 'maxfev': 10000})
    if np.isfinite(result.fun):
        candidates.append((np.asarray(result.x, dtype=float), float(result.fun), 'nelder-mead'))

    if not candidates:
        raise ValueError("GPD maximum likelihood did not converge")

    return min(candidates, key=lambda cand: cand[1])


def record_length_years(times) -> float:
    """Span of the record in years (at least one day)."""
    times = pd.to_datetime(pd.Series(times)).dropna()
    if times.empty:
        return 1.0 / DAYS_PER_YEAR
    span_days = (times.max() - times.min()) / pd.Timedelta(days=1)
    return max(span_days / DAYS_PER_YEAR, 1.0 / DAYS_PER_YEAR)


def fit_gpd_threshold(
    df: pd.DataFrame,
    variable: str = 'wave_height',
    threshold: Optional[float] = None,
    decluster: bool = DEFAULT_CONFIG.decluster,
    decluster_hours: float = DEFAULT_CONFIG.decluster_hours,
    min_exceedances: int = DEFAULT_CONFIG.min_exceedances,
    quantile: float = DEFAULT_CONFIG.gpd_threshold_quantile,
    time_col: str = 'time'
) -> FittedDistribution:
    """
    Fit a Generalized Pareto Distribution to exceedances over a threshold.

    Parameters
    ----------
    df : pd.DataFrame
        Observations with ``time`` and ``variable`` columns.
    variable : str
        Column to analyse.
    threshold : float, optional
        POT threshold. Defaults to the ``quantile`` of the valid values.
    decluster : bool
        Keep one peak per cluster of exceedances.
    decluster_hours : float
        Minimum separation between independent peaks.
    min_exceedances : int
        Minimum number of (declustered) exceedances.

    Returns
    -------
    FittedDistribution
        GPD fit with ``scale`` and ``shape``, the threshold, the exceedance
        rate per year of record, and the exceedances used.

    Raises
    ------
    InsufficientExceedances
        If fewer than ``min_exceedances`` exceedances remain.
    ValueError
        If the exceedances are degenerate or the fit fails.
    """
    if not isinstance(df, pd.DataFrame):
        raise TypeError("Input must be a pandas DataFrame")

    for col in (variable, time_col):
        if col not in df.columns:
            raise KeyError(f"Observation table missing '{col}' column")

    values = pd.to_numeric(df[variable], errors='coerce').to_numpy(dtype=float)
    times = pd.to_datetime(df[time_col]).to_numpy(dtype='datetime64[ns]')
    valid = ~np.isnan(values) & ~pd.isna(times)

    if not valid.any():
        raise ValueError(f"No valid {variable} values to fit")

    if threshold is None:
        threshold = select_threshold(values[valid], quantile, min_sample_size=min_exceedances)

    if decluster:
        exceedances = decluster_exceedances(times[valid], values[valid], threshold, decluster_hours)
    else:
        exceedances = raw_exceedances(times[valid], values[valid], threshold)

    n_exc = len(exceedances)
    if n_exc < min_exceedances:
        logger.warning(f"{variable}: only {n_exc} exceedances above {threshold:.4f}, "
                       f"need at least {min_exceedances}")
        raise InsufficientExceedances(n_exc, min_exceedances, threshold)

    excess = exceedances.excesses
    if np.std(excess) == 0:
        raise ValueError("Invalid exceedances: zero variance (all values are identical)")

    years = record_length_years(times[valid])
    rate = n_exc / years

    logger.info(f"Fitting GPD to {n_exc} exceedances of {variable} above threshold {threshold:.4f}")

    try:
        theta, nll, method = _fit_gpd_mle(excess)
    except Exception as e:
        logger.error(f"GPD fitting error: {type(e).__name__}: {e}")
        raise ValueError(f"Failed to fit GPD: {e}") from e

    cov = covariance_from_nll(lambda t: gpd_neg_log_likelihood(t, excess), theta)
    se = np.sqrt(np.diag(cov))
    names = ['scale', 'shape']

    diagnostics = _information_criteria(nll, 2, n_exc)
    diagnostics['optimizer'] = method
    diagnostics['record_years'] = float(years)
    diagnostics['n_raw_exceedances'] = exceedances.n_raw

    fit = FittedDistribution(
        family=FAMILY_GPD,
        variable=variable,
        parameters={name: float(v) for name, v in zip(names, theta)},
        standard_errors={name: float(v) for name, v in zip(names, se)},
        covariance=cov,
        n_input_points=int(n_exc),
        data=excess,
        threshold=float(threshold),
        rate_per_year=float(rate),
        exceedances=exceedances,
        diagnostics=diagnostics
    )

    logger.info(f"GPD fit complete: scale={fit.parameters['scale']:.2f}, "
                f"shape={fit.parameters['shape']:.3f}, rate={rate:.2f}/year")
    return fit


def fit_gpd_multi_threshold(
    df: pd.DataFrame,
    variable: str = 'wave_height',
    quantiles: Iterable[float] = (0.90, 0.95, 0.99),
    decluster: bool = DEFAULT_CONFIG.decluster,
    decluster_hours: float = DEFAULT_CONFIG.decluster_hours,
    min_exceedances: int = DEFAULT_CONFIG.min_exceedances
) -> pd.DataFrame:
    """
    Fit a GPD at several quantile thresholds.

    Failures are recorded in the ``error`` column instead of raised.

    Returns
    -------
    pd.DataFrame
        One row per quantile: quantile, threshold, n_exceedances, scale,
        shape, scale_se, shape_se, rate_per_year, error.
    """
    values = pd.to_numeric(df[variable], errors='coerce').dropna().to_numpy(dtype=float)
    rows = []

    for q in quantiles:
        row = {'quantile': float(q), 'threshold': np.nan, 'n_exceedances': 0,
               'scale': np.nan, 'shape': np.nan, 'scale_se': np.nan, 'shape_se': np.nan,
               'rate_per_year': np.nan, 'error': None}
        try:
            u = select_threshold(values, q, min_sample_size=min_exceedances)
            row['threshold'] = u
            fit = fit_gpd_threshold(df, variable, threshold=u, decluster=decluster,
                                    decluster_hours=decluster_hours,
                                    min_exceedances=min_exceedances)
            row.update({
                'n_exceedances': fit.n_input_points,
                'scale': fit.parameters['scale'],
                'shape': fit.parameters['shape'],
                'scale_se': fit.standard_errors['scale'],
                'shape_se': fit.standard_errors['shape'],
                'rate_per_year': fit.rate_per_year,
            })
        except InsufficientExceedances as e:
            row['n_exceedances'] = e.n_exceedances
            row['error'] = f"Insufficient exceedances (<{min_exceedances})"
        except ValueError as e:
            row['error'] = str(e)
        rows.append(row)

    return pd.DataFrame(rows)


# ---------------------------------------------------------------------------
# Return levels
# ---------------------------------------------------------------------------

def _return_level(family: str, theta: np.ndarray, period: float,
                  threshold: Optional[float] = None, rate: Optional[float] = None) -> float:
    if family == FAMILY_GEV:
        mu, sigma, xi = theta
        if period <= 1:
            return np.nan
        y = -np.log(1.0 - 1.0 / period)
        if abs(xi) < SHAPE_EPS:
            return mu - sigma * np.log(y)
        return mu + sigma / xi * (y ** (-xi) - 1.0)

    sigma, xi = theta
    m = rate * period
    if m <= 1:
        return np.nan
    if abs(xi) < SHAPE_EPS:
        return threshold + sigma * np.log(m)
    return threshold + sigma / xi * (m ** xi - 1.0)


def return_level_estimates(
    fit: FitOutcome,
    return_periods: Iterable[float] = DEFAULT_CONFIG.return_periods,
    confidence_level: float = DEFAULT_CONFIG.confidence_level
) -> List[ReturnLevelEstimate]:
    """
    Return level and delta-method confidence interval per return period (years).

    The insufficient-data sentinel yields null estimates carrying its reason.
    """
    return_periods = [float(rp) for rp in return_periods]

    if any(not np.isfinite(rp) or rp <= 0 for rp in return_periods):
        raise ValueError("All return periods must be positive finite values")
    if not 0 < confidence_level < 1:
        raise ValueError(f"confidence_level must be between 0 and 1, got {confidence_level}")

    if not fit.is_fitted:
        logger.warning(f"Return levels not calculated for {fit.variable}: {fit.reason}")
        return [ReturnLevelEstimate(rp, np.nan, np.nan, np.nan, error=fit.reason)
                for rp in return_periods]

    theta = fit.param_vector()
    cov = fit.covariance
    z = norm.ppf(1 - (1 - confidence_level) / 2)
    h = _steps(theta)
    estimates = []
    undefined = []

    for rp in return_periods:
        level = _return_level(fit.family, theta, rp, fit.threshold, fit.rate_per_year)
        if not np.isfinite(level):
            undefined.append(rp)
            estimates.append(ReturnLevelEstimate(rp, np.nan, np.nan, np.nan,
                                                 error="Return period too short for the fitted model"))
            continue

        grad = np.zeros(theta.size)
        for i in range(theta.size):
            step = np.zeros(theta.size)
            step[i] = h[i]
            up = _return_level(fit.family, theta + step, rp, fit.threshold, fit.rate_per_year)
            down = _return_level(fit.family, theta - step, rp, fit.threshold, fit.rate_per_year)
            grad[i] = (up - down) / (2 * h[i])

        var = float(grad @ cov @ grad)
        if np.isfinite(var) and var >= 0:
            half_width = z * np.sqrt(var)
            lower, upper = level - half_width, level + half_width
        else:
            lower, upper = np.nan, np.nan

        estimates.append(ReturnLevelEstimate(rp, float(level), float(lower), float(upper)))

    if undefined:
        logger.warning(f"Return level undefined for {fit.variable} at periods {undefined} "
                       f"(expected exceedances per period <= 1)")

    return estimates


def return_levels(
    fit: FitOutcome,
    return_periods: Iterable[float] = DEFAULT_CONFIG.return_periods,
    confidence_level: float = DEFAULT_CONFIG.confidence_level
) -> pd.DataFrame:
    """
    Compute return levels for specified return periods (years).

    Returns
    -------
    pd.DataFrame
        Columns ['return_period', 'return_level', 'lower_ci', 'upper_ci',
        'variable', 'family', 'error']. For the insufficient-data sentinel
        every value is null and ``error`` holds the failure reason.
    """
    estimates = return_level_estimates(fit, return_periods, confidence_level)
    table = pd.DataFrame(
        [{
            'return_period': est.return_period,
            'return_level': est.point_estimate,
            'lower_ci': est.lower_ci,
            'upper_ci': est.upper_ci,
            'variable': fit.variable,
            'family': fit.family,
            'error': est.error,
        } for est in estimates],
        columns=RETURN_LEVEL_COLUMNS
    )
    if fit.is_fitted:
        logger.info(f"Return levels calculated for {len(table)} periods")
    return table


def return_level_curve(
    fit: FitOutcome,
    max_return_period: float = DEFAULT_CONFIG.curve_max_return_period,
    n_points: int = DEFAULT_CONFIG.curve_points,
    confidence_level: float = DEFAULT_CONFIG.confidence_level
) -> pd.DataFrame:
    """
    Return levels at ``n_points`` periods log-spaced from 1.1 to ``max_return_period``.

    The insufficient-data sentinel yields an empty table.
    """
    if not fit.is_fitted:
        logger.warning(f"Return level curve not calculated for {fit.variable}: {fit.reason}")
        return pd.DataFrame(columns=RETURN_LEVEL_COLUMNS)

    periods = np.exp(np.linspace(np.log(1.1), np.log(max_return_period), n_points))
    return return_levels(fit, periods, confidence_level)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

def goodness_of_fit(fit: FitOutcome) -> Dict[str, Any]:
    """
    Goodness-of-fit checks for a fitted GEV or GPD.

    Returns
    -------
    dict
        KS statistic and p-value, QQ and PP plot coordinates, and the
        likelihood criteria recorded on the fit. For the insufficient-data
        sentinel only ``family``, ``variable`` and ``error`` are returned.
    """
    if not fit.is_fitted:
        return {'family': fit.family, 'variable': fit.variable, 'error': fit.reason}

    p = fit.parameters
    if fit.family == FAMILY_GEV:
        args = (-p['shape'],)
        kwargs = {'loc': p['location'], 'scale': p['scale']}
        dist = genextreme
    else:
        args = (p['shape'],)
        kwargs = {'loc': 0, 'scale': p['scale']}
        dist = genpareto

    data = np.sort(fit.data)
    n = data.size

    ks = kstest(data, lambda x: dist.cdf(x, *args, **kwargs))

    pp = np.arange(1, n + 1) / (n + 1)
    theo_quantiles = dist.ppf(pp, *args, **kwargs)

    results = {
        'family': fit.family,
        'variable': fit.variable,
        'ks_statistic': float(ks.statistic),
        'ks_pvalue': float(ks.pvalue),
        'qq_plot': {
            'empirical': data.tolist(),
            'theoretical': theo_quantiles.tolist()
        },
        'pp_plot': {
            'empirical': (np.arange(1, n + 1) / n).tolist(),
            'theoretical': dist.cdf(data, *args, **kwargs).tolist()
        },
    }
    for key in ('neg_log_likelihood', 'aic', 'bic'):
        results[key] = fit.diagnostics.get(key, np.nan)

    return results
