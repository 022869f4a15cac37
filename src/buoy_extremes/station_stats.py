# src/buoy_extremes/station_stats.py
"""
Module: station_stats.py
Responsibilities:
- Orchestrate per-station extreme value analysis
  * GPD (peaks over threshold) fit per station and variable
  * Return level estimation
  * Multi-threshold GPD sensitivity table
- Parallel processing over stations with a process pool
- Pooled GEV block maxima per variable after the per-station phase
- Collect skipped units with one-line reasons
- Text report and JSON export
"""
import json
import logging
import os
from concurrent.futures import ProcessPoolExecutor
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime
from functools import partial
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from tqdm import tqdm

from buoy_extremes.config import DEFAULT_CONFIG, AnalysisConfig
from buoy_extremes.data_io import list_station_ids
from buoy_extremes.errors import BuoyAnalysisError, InsufficientExceedances
from buoy_extremes.extreme_values import (
    fit_gev_annual_maxima, fit_gpd_multi_threshold, fit_gpd_threshold, return_levels,
)

# Configure logging
logging.basicConfig(level=logging.INFO,
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

DEFAULT_VARIABLES = ('wave_height', 'wind_speed', 'hmax')
POOLED_STATION = 'ALL'


def ensure_json_serializable(obj):
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    elif isinstance(obj, float):
        return None if (np.isnan(obj) or np.isinf(obj)) else obj
    elif isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        if np.isnan(obj) or np.isinf(obj):
            return None
        return float(obj)
    elif isinstance(obj, (pd.Timestamp, datetime)):
        return obj.isoformat()
    elif isinstance(obj, np.datetime64):
        return pd.Timestamp(obj).isoformat()
    elif isinstance(obj, pd.DataFrame):
        return [ensure_json_serializable(r) for r in obj.to_dict(orient='records')]
    elif isinstance(obj, pd.Series):
        return ensure_json_serializable(obj.to_dict())
    elif isinstance(obj, np.ndarray):
        return [ensure_json_serializable(x) for x in obj.tolist()]
    elif isinstance(obj, (list, tuple)):
        return [ensure_json_serializable(x) for x in obj]
    elif isinstance(obj, dict):
        return {str(k): ensure_json_serializable(v) for k, v in obj.items()}
    elif is_dataclass(obj):
        return ensure_json_serializable(asdict(obj))
    elif hasattr(obj, '__dict__'):
        return ensure_json_serializable(obj.__dict__)
    else:
        return str(obj)


@dataclass(frozen=True)
class SkippedUnit:
    """A station/variable pair that produced no fit, with a one-line reason."""
    station: str
    variable: str
    reason: str


@dataclass
class BatchReport:
    """Combined output of a batch run, built after every unit has finished."""
    results: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[SkippedUnit] = field(default_factory=list)
    pooled: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_ok(self) -> int:
        return len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'generated_at': datetime.now().isoformat(timespec='seconds'),
            'config': self.config,
            'results': self.results,
            'pooled': self.pooled,
            'skipped': [asdict(s) for s in self.skipped],
        }


def process_station(unit: Tuple[str, str, pd.DataFrame], config: AnalysisConfig = DEFAULT_CONFIG) -> Dict[str, Any]:
    """
    Fit a GPD for one (station, variable) unit and compute its return levels.

    Never raises for bad data: the returned record has ``status`` 'OK',
    'SKIP' (too few exceedances or no data) or 'ERROR' plus a ``reason``.
    """
    station, variable, data = unit
    record = {'station': station, 'variable': variable}

    if variable not in data.columns or pd.to_numeric(data[variable], errors='coerce').notna().sum() == 0:
        return {**record, 'status': 'SKIP', 'reason': f"no valid {variable} values"}

    try:
        fit = fit_gpd_threshold(
            data,
            variable,
            quantile=config.gpd_threshold_quantile,
            decluster=config.decluster,
            decluster_hours=config.decluster_hours,
            min_exceedances=config.min_exceedances
        )
        levels = return_levels(fit, config.return_periods, config.confidence_level)
        sensitivity = fit_gpd_multi_threshold(
            data,
            variable,
            decluster=config.decluster,
            decluster_hours=config.decluster_hours,
            min_exceedances=config.min_exceedances
        )
    except InsufficientExceedances as e:
        logger.error(f"{station}/{variable}: {e}")
        return {**record, 'status': 'SKIP', 'reason': str(e)}
    except (BuoyAnalysisError, ValueError, RuntimeError) as e:
        logger.error(f"Error processing {station}/{variable}: {e}")
        return {**record, 'status': 'ERROR', 'reason': f"{type(e).__name__}: {e}"}

    return {
        **record,
        'status': 'OK',
        'fit': fit.summary(),
        'return_levels': levels.to_dict(orient='records'),
        'thresholds': sensitivity.to_dict(orient='records'),
    }


def _station_units(
    df: pd.DataFrame,
    stations: Sequence[str],
    variables: Sequence[str]
) -> List[Tuple[str, str, pd.DataFrame]]:
    units = []
    for station in stations:
        station_df = df[df['station_id'].astype(str) == station]
        for variable in variables:
            columns = [c for c in ('station_id', 'time', variable) if c in station_df.columns]
            units.append((station, variable, station_df[columns].reset_index(drop=True)))
    return units


def run_station_analyses(
    df: pd.DataFrame,
    variables: Iterable[str] = DEFAULT_VARIABLES,
    config: AnalysisConfig = DEFAULT_CONFIG,
    workers: Optional[int] = None,
    stations: Optional[Iterable[str]] = None
) -> BatchReport:
    """
    Run per-station GPD analyses in parallel, then pooled GEV per variable.

    Parameters
    ----------
    df : pd.DataFrame
        Prepared observation table.
    variables : iterable of str
        Variables to analyse.
    config : AnalysisConfig
        Thresholds, windows and return periods.
    workers : int, optional
        Number of worker processes; defaults to ``config.workers``.
        ``1`` or less runs in-process.
    stations : iterable of str, optional
        Restrict to these stations.

    Returns
    -------
    BatchReport
        Successful records, pooled GEV results, and skipped units.
    """
    variables = list(variables)
    station_ids = list_station_ids(df)
    if stations is not None:
        wanted = {str(s) for s in stations}
        unknown = wanted - set(station_ids)
        if unknown:
            logger.warning(f"Stations not found in data: {', '.join(sorted(unknown))}")
        station_ids = [s for s in station_ids if s in wanted]

    units = _station_units(df, station_ids, variables)
    n_workers = int(workers if workers is not None else config.workers)
    func = partial(process_station, config=config)

    logger.info(f"Running station analyses on {len(units)} units "
                f"({len(station_ids)} stations x {len(variables)} variables) with {max(n_workers, 1)} workers...")

    if n_workers <= 1:
        records = [func(unit) for unit in tqdm(units, desc="Station analyses")]
    else:
        with ProcessPoolExecutor(max_workers=n_workers) as executor:
            chunk_size = max(1, min(100, len(units) // (n_workers * 4)))
            records = list(tqdm(executor.map(func, units, chunksize=chunk_size),
                                total=len(units), desc="Station analyses"))

    report = BatchReport(config=config.to_dict())
    counts = {'OK': 0, 'ERROR': 0, 'SKIP': 0}
    for record in records:
        counts[record['status']] += 1
        if record['status'] == 'OK':
            report.results.append(record)
        else:
            report.skipped.append(SkippedUnit(record['station'], record['variable'], record['reason']))

    logger.info(f"Station processing complete: {counts['OK']} succeeded, "
                f"{counts['ERROR']} failed, {counts['SKIP']} skipped")

    if stations is not None:
        df = df[df['station_id'].astype(str).isin(station_ids)]

    for variable in variables:
        report.pooled[variable] = pooled_gev(df, variable, config, report.skipped)

    return report


def pooled_gev(
    df: pd.DataFrame,
    variable: str,
    config: AnalysisConfig,
    skipped: List[SkippedUnit]
) -> Dict[str, Any]:
    """GEV on annual maxima of all stations combined; failures are appended to ``skipped``."""
    if variable not in df.columns:
        reason = f"variable {variable} not in observation table"
        skipped.append(SkippedUnit(POOLED_STATION, variable, reason))
        return {'status': 'ERROR', 'error': reason}

    try:
        fit = fit_gev_annual_maxima(df, variable, min_years=config.gev_min_years)
    except (BuoyAnalysisError, ValueError, RuntimeError) as e:
        logger.error(f"Pooled GEV error for {variable}: {e}")
        skipped.append(SkippedUnit(POOLED_STATION, variable, f"{type(e).__name__}: {e}"))
        return {'status': 'ERROR', 'error': f"{type(e).__name__}: {e}"}

    levels = return_levels(fit, config.return_periods, config.confidence_level)
    if not fit.is_fitted:
        skipped.append(SkippedUnit(POOLED_STATION, variable, fit.reason))

    return {
        **fit.summary(),
        'return_levels': levels.to_dict(orient='records'),
    }


def format_batch_report(report: BatchReport) -> str:
    """Render successful fits and skipped units as plain text."""
    lines = ["=== Extreme Value Batch Report ===", "", "PER-STATION GPD FITS", "--------------------"]

    if not report.results:
        lines.append("No successful fits")
    for rec in report.results:
        fit = rec['fit']
        p = fit['parameters']
        lines.append(f"{rec['station']} / {rec['variable']}: threshold={fit['threshold']:.2f}, "
                     f"n={fit['n_input_points']}, scale={p['scale']:.3f}, shape={p['shape']:.3f}, "
                     f"rate={fit['rate_per_year']:.2f}/yr")
        for rl in rec['return_levels']:
            if rl['error'] is None:
                lines.append(f"    {rl['return_period']:g}-yr: {rl['return_level']:.2f} "
                             f"[{rl['lower_ci']:.2f}, {rl['upper_ci']:.2f}]")
            else:
                lines.append(f"    {rl['return_period']:g}-yr: n/a ({rl['error']})")

    lines += ["", "POOLED GEV (ALL STATIONS)", "-------------------------"]
    for variable, res in report.pooled.items():
        if res.get('status') == 'fitted':
            p = res['parameters']
            lines.append(f"{variable}: location={p['location']:.2f}, scale={p['scale']:.2f}, "
                         f"shape={p['shape']:.3f} ({res['n_years']} years)")
        else:
            lines.append(f"{variable}: not fitted ({res.get('error')})")

    lines += ["", f"SKIPPED UNITS ({len(report.skipped)})", "-------------"]
    for s in report.skipped:
        lines.append(f"{s.station} / {s.variable}: {s.reason}")

    return "\n".join(lines) + "\n"


def save_report(report: BatchReport, output_file: str) -> str:
    """Write the report as JSON (NaN and infinities become null). Returns the path."""
    directory = os.path.dirname(output_file)
    if directory:
        os.makedirs(directory, exist_ok=True)

    serializable = ensure_json_serializable(report.to_dict())
    with open(output_file, 'w') as f:
        json.dump(serializable, f, indent=2, allow_nan=False)
    logger.info(f"Saved results to {output_file}")
    return output_file
