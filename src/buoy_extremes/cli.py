# src/buoy_extremes/cli.py

"""
CLI wrapper for the buoy extremes toolkit.

Sub-commands:
  rogue    : Rogue wave detection and occurrence statistics
  gust     : Gust factor analysis and rogue wave / rogue gust comparison
  trends   : STL decomposition, seasonal means, annual trends and anomalies for one station
  extremes : Per-station GPD fits (parallel) and pooled GEV return levels
  model    : Train and evaluate the random forest wave height model
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import pandas as pd

from buoy_extremes.config import AnalysisConfig, load_config
from buoy_extremes.data_io import load_observations, query_observations
from buoy_extremes.errors import BuoyAnalysisError, InsufficientData
from buoy_extremes.gust_analysis import analyze_gust_factor, compare_rogue_wave_gust
from buoy_extremes.preprocess import prepare_observations
from buoy_extremes.rogue_waves import (
    analyze_rogue_statistics, classify_rogue_conditions, detect_rogue_gusts,
    detect_rogue_waves, rogue_wave_report,
)
from buoy_extremes.station_stats import (
    DEFAULT_VARIABLES, ensure_json_serializable, format_batch_report,
    run_station_analyses, save_report,
)
from buoy_extremes.trend_analysis import (
    FREQUENCIES, calculate_annual_trends, calculate_seasonal_means, decompose_stl,
    detect_anomalies, trend_summary_report,
)
from buoy_extremes.wave_model import (
    evaluate_wave_model, prepare_wave_features, train_wave_model, wave_model_report,
)

# Configure logging
logging.basicConfig(level=logging.INFO,
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def load_analysis_data(
    input_path: str,
    config: AnalysisConfig,
    stations: Optional[List[str]] = None
) -> pd.DataFrame:
    """Load, clean and QC-filter the observation table."""
    df = prepare_observations(load_observations(input_path))
    return query_observations(df, stations=stations, qc_filter=True,
                              qc_good_flag=config.qc_good_flag)


def write_output(text: str, payload: Dict[str, Any], output: Optional[str]) -> None:
    """
    Write ``payload`` as JSON when ``output`` ends in .json, ``text``
    otherwise; print ``text`` when no output path is given.
    """
    if not output:
        print(text)
        return

    directory = os.path.dirname(output)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(output, 'w') as f:
        if output.lower().endswith('.json'):
            json.dump(ensure_json_serializable(payload), f, indent=2, allow_nan=False)
        else:
            f.write(text)
    logger.info(f"Saved output to {output}")


def rogue_command(args, config: AnalysisConfig) -> None:
    df = load_analysis_data(args.input, config, args.stations)
    stats = analyze_rogue_statistics(df, threshold=config.wave_rogue_threshold,
                                     min_wave_height=config.wave_min_height)
    events = classify_rogue_conditions(
        detect_rogue_waves(df, threshold=config.wave_rogue_threshold,
                           min_wave_height=config.wave_min_height)
    )
    write_output(rogue_wave_report(stats), {'statistics': stats, 'events': events}, args.output)


def gust_command(args, config: AnalysisConfig) -> None:
    df = load_analysis_data(args.input, config, args.stations)
    gusts = analyze_gust_factor(df, min_wind_speed=config.gust_min_wind_speed,
                                extreme_threshold=config.extreme_gust_factor,
                                rogue_threshold=config.gust_rogue_threshold)
    comparison = compare_rogue_wave_gust(df, config.wave_rogue_threshold, config.wave_min_height,
                                         config.gust_rogue_threshold, config.gust_min_wind_speed)
    rogue_gusts = detect_rogue_gusts(df, threshold=config.gust_rogue_threshold,
                                     min_wind_speed=config.gust_min_wind_speed)

    text = "\n".join([
        "=== Gust Factor Analysis ===",
        "",
        gusts['summary'].to_string(index=False),
        "",
        gusts['by_category'].to_string(index=False),
        "",
        "ROGUE WAVE vs ROGUE GUST",
        comparison.to_string(index=False),
        "",
    ])
    payload = {
        'gust_factor': {k: v for k, v in gusts.items() if k != 'extreme_gusts'},
        'n_extreme_gusts': len(gusts['extreme_gusts']),
        'comparison': comparison,
        'rogue_gusts': rogue_gusts,
    }
    write_output(text, payload, args.output)


def trends_command(args, config: AnalysisConfig) -> None:
    df = load_analysis_data(args.input, config, [args.station])
    if df.empty:
        raise ValueError(f"No observations for station {args.station}")

    seasonal = calculate_seasonal_means(df, args.variable)
    annual = calculate_annual_trends(df, args.variable)
    anomalies = detect_anomalies(df, args.variable, threshold=config.anomaly_z_threshold)

    payload = {'station': args.station, 'seasonal_means': seasonal, 'annual_trends': annual,
               'anomalies': {k: v for k, v in anomalies.items() if k != 'anomalies'},
               'n_anomalies': len(anomalies['anomalies'])}
    try:
        stl = decompose_stl(df, args.variable, frequency=args.frequency, station_id=args.station)
        payload['decomposition'] = {'summary': stl['summary'], 'frequency': stl['frequency']}
    except InsufficientData as e:
        logger.warning(f"STL decomposition skipped for {args.station}: {e}")
        payload['decomposition'] = {'error': str(e)}

    write_output(trend_summary_report(seasonal, annual, anomalies), payload, args.output)


def extremes_command(args, config: AnalysisConfig) -> None:
    df = load_analysis_data(args.input, config, args.stations)
    report = run_station_analyses(df, variables=args.variables, config=config,
                                  workers=args.workers)
    if args.output and args.output.lower().endswith('.json'):
        save_report(report, args.output)
    else:
        write_output(format_batch_report(report), {}, args.output)


def model_command(args, config: AnalysisConfig) -> None:
    df = load_analysis_data(args.input, config, args.stations)
    features = prepare_wave_features(df, lags=config.lags)
    model = train_wave_model(features, train_fraction=config.train_fraction,
                             n_trees=config.n_trees, min_rows=config.min_training_rows,
                             random_state=config.random_state)
    evaluation = evaluate_wave_model(model, features)
    payload = {
        'oob_r_squared': model['oob_r_squared'],
        'oob_rmse': model['oob_rmse'],
        'predictors': model['predictors'],
        'importance': model['importance'],
        'overall': evaluation['overall'],
        'by_category': evaluation['by_category'],
    }
    write_output(wave_model_report(model, evaluation), payload, args.output)


COMMANDS = {
    'rogue': rogue_command,
    'gust': gust_command,
    'trends': trends_command,
    'extremes': extremes_command,
    'model': model_command,
}


def setup_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='buoy-extremes',
        description='Offshore buoy extreme value and rogue event analysis'
    )
    sub = parser.add_subparsers(dest='command', required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--input', required=True,
                        help='Observation table (.csv or .parquet)')
    common.add_argument('--config', default=None,
                        help='YAML file overriding analysis parameters')
    common.add_argument('--output', default=None,
                        help='Output file (.json for JSON, anything else for text); stdout if omitted')
    common.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level')

    def add_stations(p):
        p.add_argument('--stations', nargs='+', default=None,
                       help='Station ids to include (default: all)')

    p_rogue = sub.add_parser('rogue', parents=[common], help='Rogue wave statistics')
    add_stations(p_rogue)

    p_gust = sub.add_parser('gust', parents=[common], help='Gust factor analysis')
    add_stations(p_gust)

    p_trends = sub.add_parser('trends', parents=[common],
                              help='Seasonal decomposition and trends for one station')
    p_trends.add_argument('--station', required=True, help='Station id')
    p_trends.add_argument('--variable', default='wave_height', help='Variable to analyze')
    p_trends.add_argument('--frequency', choices=sorted(FREQUENCIES), default='daily',
                          help='Seasonal cycle for STL decomposition')

    p_ext = sub.add_parser('extremes', parents=[common],
                           help='Per-station GPD and pooled GEV return levels')
    add_stations(p_ext)
    p_ext.add_argument('--variables', nargs='+', default=list(DEFAULT_VARIABLES),
                       help='Variables to analyze')
    p_ext.add_argument('--workers', type=int, default=None,
                       help='Number of parallel workers (default from config; 1 = in-process)')

    p_model = sub.add_parser('model', parents=[common], help='Random forest wave height model')
    add_stations(p_model)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = setup_parser()
    args = parser.parse_args(argv)

    logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        config = load_config(args.config)
        COMMANDS[args.command](args, config)
    except (FileNotFoundError, BuoyAnalysisError, ValueError, KeyError) as e:
        logger.error(f"{args.command} failed: {type(e).__name__}: {e}")
        print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
