# src/buoy_extremes/wave_model.py
"""
Module: wave_model.py
Responsibilities:
- Feature engineering for wave height prediction (lags, tendency, cyclical, derived)
- Random forest training on a chronological (non-shuffled) split
- Test-set evaluation overall and by wave height category
- Prediction on new observations
- Plain-text model report
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from buoy_extremes.config import DEFAULT_CONFIG
from buoy_extremes.errors import InsufficientData, MissingPredictors
from buoy_extremes.rogue_waves import safe_ratio, wave_steepness

# Configure logging
logging.basicConfig(level=logging.INFO,
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

HEIGHT_BINS = [0, 2, 4, 6, np.inf]
HEIGHT_LABELS = ['Low (0-2m)', 'Moderate (2-4m)', 'High (4-6m)', 'Extreme (>6m)']


def default_predictors(target: str = 'wave_height', lags: Iterable[int] = DEFAULT_CONFIG.lags) -> List[str]:
    return (['wind_speed', 'gust', 'wind_speed_lag1']
            + [f'{target}_lag{lag}' for lag in lags]
            + ['wave_period', 'atmospheric_pressure', 'pressure_change',
               'wind_dir_sin', 'wind_dir_cos', 'hour', 'month'])


def prepare_wave_features(
    df: pd.DataFrame,
    lags: Iterable[int] = DEFAULT_CONFIG.lags,
    target: str = 'wave_height'
) -> pd.DataFrame:
    """
    Add model features to an observation table.

    Lags are taken per station over time-ordered rows: ``<target>_lag<k>``
    for each k in ``lags`` and ``wind_speed_lag1``. Also adds
    ``pressure_change`` (first difference), ``hour``, ``month``,
    ``wind_dir_sin``/``wind_dir_cos``, ``wave_steepness`` and
    ``gust_factor`` (both null where the denominator is zero or null).

    Returns
    -------
    pd.DataFrame
        Copy sorted by station and time.
    """
    if not isinstance(df, pd.DataFrame):
        raise TypeError("Input must be a pandas DataFrame")

    logger.info("Preparing features for wave prediction...")
    data = df.sort_values(['station_id', 'time'], kind='mergesort').reset_index(drop=True)
    by_station = data.groupby('station_id', sort=False)

    lags = [int(lag) for lag in lags]
    for lag in lags:
        data[f'{target}_lag{lag}'] = by_station[target].shift(lag)

    if 'wind_speed' in data.columns:
        data['wind_speed_lag1'] = by_station['wind_speed'].shift(1)

    if 'atmospheric_pressure' in data.columns:
        data['pressure_change'] = by_station['atmospheric_pressure'].diff()

    times = pd.to_datetime(data['time'])
    data['hour'] = times.dt.hour
    data['month'] = times.dt.month

    if 'wind_direction' in data.columns:
        radians = np.deg2rad(pd.to_numeric(data['wind_direction'], errors='coerce'))
        data['wind_dir_sin'] = np.sin(radians)
        data['wind_dir_cos'] = np.cos(radians)

    if 'wave_period' in data.columns and 'wave_height' in data.columns:
        data['wave_steepness'] = wave_steepness(data['wave_height'], data['wave_period']).to_numpy()

    if 'gust' in data.columns and 'wind_speed' in data.columns:
        data['gust_factor'] = safe_ratio(data['gust'], data['wind_speed']).to_numpy()

    logger.info(f"Created {len(lags) + 8} derived features")
    return data


def _complete_cases(data: pd.DataFrame, target: str, predictors: Sequence[str]) -> pd.DataFrame:
    """Rows with target and every predictor present, in chronological order."""
    keys = [col for col in ('time', 'station_id') if col in data.columns]
    model_data = data[keys + [target] + [p for p in predictors if p not in keys]]
    model_data = model_data.dropna(subset=[target] + list(predictors))
    if keys:
        model_data = model_data.sort_values(keys, kind='mergesort')
    return model_data.reset_index(drop=True)


def train_wave_model(
    data: pd.DataFrame,
    target: str = 'wave_height',
    predictors: Optional[Sequence[str]] = None,
    train_fraction: float = DEFAULT_CONFIG.train_fraction,
    n_trees: int = DEFAULT_CONFIG.n_trees,
    min_rows: int = DEFAULT_CONFIG.min_training_rows,
    random_state: int = DEFAULT_CONFIG.random_state
) -> Dict[str, Any]:
    """
    Train a random forest wave height model on the earliest ``train_fraction`` of complete rows.

    Parameters
    ----------
    data : pd.DataFrame
        Output of ``prepare_wave_features``.
    target : str
        Column to predict.
    predictors : sequence of str, optional
        Feature columns; absent ones are dropped with a warning.
    train_fraction : float
        Share of the chronologically ordered complete rows used for training.

    Returns
    -------
    dict
        {
          'model': fitted RandomForestRegressor,
          'target', 'predictors',
          'n_complete', 'n_train', 'n_test',
          'importance': DataFrame[variable, importance] (descending),
          'oob_r_squared': float,
          'oob_rmse': float
        }

    Raises
    ------
    InsufficientData
        If fewer than ``min_rows`` complete rows exist.
    """
    if not 0 < train_fraction < 1:
        raise ValueError(f"train_fraction must be between 0 and 1, got {train_fraction}")

    logger.info("Training wave height prediction model...")

    if predictors is None:
        predictors = default_predictors(target)

    available = [p for p in predictors if p in data.columns]
    missing = [p for p in predictors if p not in data.columns]
    if missing:
        logger.warning(f"Missing predictors: {', '.join(missing)}")
    if not available:
        raise MissingPredictors(predictors)

    logger.info(f"Using {len(available)} predictors")

    model_data = _complete_cases(data, target, available)
    n = len(model_data)
    if n < min_rows:
        raise InsufficientData(min_rows, n, what="complete rows")

    n_train = int(np.floor(n * train_fraction))
    train = model_data.iloc[:n_train]
    logger.info(f"Using {n} complete observations ({n_train} train, {n - n_train} test)")

    model = RandomForestRegressor(
        n_estimators=n_trees,
        oob_score=True,
        random_state=random_state,
        n_jobs=-1
    )
    model.fit(train[available].to_numpy(dtype=float), train[target].to_numpy(dtype=float))

    importance = (pd.DataFrame({'variable': available, 'importance': model.feature_importances_})
                  .sort_values('importance', ascending=False, kind='mergesort')
                  .reset_index(drop=True))

    oob_residuals = train[target].to_numpy(dtype=float) - model.oob_prediction_
    oob_rmse = float(np.sqrt(np.nanmean(oob_residuals ** 2)))
    oob_r2 = float(model.oob_score_)

    logger.info(f"Model trained: OOB R² = {oob_r2:.3f}, OOB RMSE = {oob_rmse:.2f}m")

    return {
        'model': model,
        'target': target,
        'predictors': available,
        'n_complete': n,
        'n_train': n_train,
        'n_test': n - n_train,
        'importance': importance,
        'oob_r_squared': oob_r2,
        'oob_rmse': oob_rmse,
    }


def _metrics(actual: np.ndarray, predicted: np.ndarray) -> Dict[str, float]:
    n = actual.size
    if n == 0:
        return {'rmse': np.nan, 'mae': np.nan, 'r_squared': np.nan, 'bias': np.nan, 'n': 0}
    return {
        'rmse': float(np.sqrt(mean_squared_error(actual, predicted))),
        'mae': float(mean_absolute_error(actual, predicted)),
        'r_squared': float(r2_score(actual, predicted)) if n >= 2 else np.nan,
        'bias': float(np.mean(actual - predicted)),
        'n': int(n),
    }


def evaluate_wave_model(model_result: Dict[str, Any], data: pd.DataFrame) -> Dict[str, Any]:
    """
    Evaluate on the held-out (latest) slice of complete rows.

    Returns
    -------
    dict
        {
          'overall': {'rmse', 'mae', 'r_squared', 'bias', 'n'},
          'by_category': DataFrame[category, n, rmse, mae, r_squared, bias],
          'predictions': DataFrame[time, station_id, actual, predicted, residual, category]
        }
    """
    logger.info("Evaluating model on test data...")
    target = model_result['target']
    predictors = model_result['predictors']

    model_data = _complete_cases(data, target, predictors)
    test = model_data.iloc[model_result['n_train']:]
    if test.empty:
        raise InsufficientData(1, 0, what="test rows")

    actual = test[target].to_numpy(dtype=float)
    predicted = model_result['model'].predict(test[predictors].to_numpy(dtype=float))

    overall = _metrics(actual, predicted)

    categories = pd.cut(actual, bins=HEIGHT_BINS, labels=HEIGHT_LABELS,
                        right=True, include_lowest=True)
    rows = []
    for label in HEIGHT_LABELS:
        mask = np.asarray(categories == label)
        rows.append({'category': label, **_metrics(actual[mask], predicted[mask])})
    by_category = pd.DataFrame(rows, columns=['category', 'n', 'rmse', 'mae', 'r_squared', 'bias'])

    predictions = pd.DataFrame({
        'actual': actual,
        'predicted': predicted,
        'residual': actual - predicted,
        'category': np.asarray(categories.astype(object)),
    })
    for key in ('station_id', 'time'):
        if key in test.columns:
            predictions.insert(0, key, test[key].to_numpy())

    logger.info(f"Test RMSE: {overall['rmse']:.3f}m, R²: {overall['r_squared']:.3f}")

    return {
        'overall': overall,
        'by_category': by_category,
        'predictions': predictions,
    }


def predict_wave_height(model_result: Dict[str, Any], new_data: pd.DataFrame) -> np.ndarray:
    """
    Predict wave height for new rows.

    Raises
    ------
    MissingPredictors
        If ``new_data`` lacks any predictor the model was trained on.
    """
    missing = [p for p in model_result['predictors'] if p not in new_data.columns]
    if missing:
        raise MissingPredictors(missing)

    X = new_data[model_result['predictors']].to_numpy(dtype=float)
    return model_result['model'].predict(X)


def wave_model_report(model_result: Dict[str, Any], eval_result: Dict[str, Any]) -> str:
    """Format training and evaluation results as plain text."""
    overall = eval_result['overall']
    lines = [
        "=== Wave Height Prediction Model Report ===",
        "",
        "MODEL PERFORMANCE",
        "-----------------",
        f"OOB R²: {model_result['oob_r_squared']:.3f}",
        f"OOB RMSE: {model_result['oob_rmse']:.3f} m",
        f"Test RMSE: {overall['rmse']:.3f} m",
        f"Test MAE: {overall['mae']:.3f} m",
        f"Test R²: {overall['r_squared']:.3f}",
        f"Test bias: {overall['bias']:+.3f} m",
        f"Test samples: {overall['n']}",
        "",
        "TOP PREDICTORS",
        "--------------",
    ]

    for i, row in enumerate(model_result['importance'].head(5).itertuples(index=False), start=1):
        lines.append(f"{i}. {row.variable} (importance: {row.importance:.3f})")

    lines += ["", "PERFORMANCE BY WAVE HEIGHT", "--------------------------"]
    for row in eval_result['by_category'].itertuples(index=False):
        if row.n:
            lines.append(f"{row.category}: RMSE={row.rmse:.2f}m, MAE={row.mae:.2f}m (n={row.n})")
        else:
            lines.append(f"{row.category}: no test samples")

    return "\n".join(lines) + "\n"
