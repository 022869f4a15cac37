# src/buoy_extremes/config.py
"""
Module: config.py
Responsibilities:
- Hold every tunable threshold, window and model setting in one object
- Validate parameter ranges
- Load overrides from a YAML file
"""
import logging
from dataclasses import dataclass, fields, replace, asdict
from pathlib import Path
from typing import Any, Dict, Tuple, Union

import yaml

from buoy_extremes.errors import InvalidConfiguration

# Configure logging
logging.basicConfig(level=logging.INFO,
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Analysis parameters with their documented defaults.

    The rogue gust threshold is not a physical constant: it is
    ``gust_rogue_multiplier`` times a typical gust factor and both are
    configurable.
    """
    # Rogue waves (Hmax / Hs)
    wave_rogue_threshold: float = 2.0
    wave_min_height: float = 2.0

    # Rogue gusts (gust / sustained wind)
    typical_gust_factor: float = 1.3
    gust_rogue_multiplier: float = 2.0
    gust_min_wind_speed: float = 5.0
    extreme_gust_factor: float = 1.5

    # Wave steepness danger levels
    steepness_moderate: float = 0.04
    steepness_dangerous: float = 0.07

    # Trend and anomalies
    anomaly_z_threshold: float = 3.0

    # Extreme value engine
    gev_min_years: int = 5
    gpd_threshold_quantile: float = 0.95
    decluster: bool = True
    decluster_hours: float = 48.0
    min_exceedances: int = 30
    return_periods: Tuple[float, ...] = (10.0, 50.0, 100.0)
    confidence_level: float = 0.95
    curve_max_return_period: float = 200.0
    curve_points: int = 100

    # Wave-height regression
    train_fraction: float = 0.7
    lags: Tuple[int, ...] = (1, 2, 3)
    n_trees: int = 500
    min_training_rows: int = 100
    random_state: int = 42

    # Data access and batch execution
    qc_good_flag: int = 1
    workers: int = 1

    @property
    def gust_rogue_threshold(self) -> float:
        """Gust factor above which a gust counts as a rogue gust (2 x 1.3 by default)."""
        return self.gust_rogue_multiplier * self.typical_gust_factor

    def validate(self) -> 'AnalysisConfig':
        """
        Check parameter ranges.

        Returns
        -------
        AnalysisConfig
            ``self``, so calls can be chained.

        Raises
        ------
        InvalidConfiguration
            If any parameter is out of range.
        """
        positive = [
            'wave_rogue_threshold', 'typical_gust_factor', 'gust_rogue_multiplier',
            'extreme_gust_factor', 'steepness_moderate', 'steepness_dangerous',
            'anomaly_z_threshold', 'decluster_hours', 'curve_max_return_period',
        ]
        for name in positive:
            value = getattr(self, name)
            if not value > 0:
                raise InvalidConfiguration(f"{name} must be positive, got {value}")

        for name in ('wave_min_height', 'gust_min_wind_speed'):
            if getattr(self, name) < 0:
                raise InvalidConfiguration(f"{name} must be non-negative, got {getattr(self, name)}")

        for name in ('gev_min_years', 'min_exceedances', 'n_trees', 'min_training_rows',
                     'curve_points', 'workers'):
            if int(getattr(self, name)) < 1:
                raise InvalidConfiguration(f"{name} must be at least 1, got {getattr(self, name)}")

        for name in ('gpd_threshold_quantile', 'confidence_level', 'train_fraction'):
            value = getattr(self, name)
            if not 0 < value < 1:
                raise InvalidConfiguration(f"{name} must be between 0 and 1 (exclusive), got {value}")

        if self.steepness_moderate >= self.steepness_dangerous:
            raise InvalidConfiguration("steepness_moderate must be below steepness_dangerous")

        if not self.lags or any(int(lag) < 1 for lag in self.lags):
            raise InvalidConfiguration(f"lags must be a non-empty set of positive hours, got {self.lags}")

        if not self.return_periods or any(not rp > 0 for rp in self.return_periods):
            raise InvalidConfiguration(f"return_periods must be positive, got {self.return_periods}")

        if self.curve_max_return_period <= 1.1:
            raise InvalidConfiguration("curve_max_return_period must exceed 1.1 years")

        return self

    def with_overrides(self, **overrides: Any) -> 'AnalysisConfig':
        """Return a validated copy with the given fields replaced."""
        unknown = set(overrides) - {f.name for f in fields(self)}
        if unknown:
            raise InvalidConfiguration(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        return replace(self, **_normalize(overrides)).validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _normalize(values: Dict[str, Any]) -> Dict[str, Any]:
    # YAML gives lists; the dataclass keeps tuples so it stays hashable
    out = dict(values)
    if 'return_periods' in out and out['return_periods'] is not None:
        out['return_periods'] = tuple(float(rp) for rp in out['return_periods'])
    if 'lags' in out and out['lags'] is not None:
        out['lags'] = tuple(int(lag) for lag in out['lags'])
    return out


DEFAULT_CONFIG = AnalysisConfig()


def load_config(config_path: Union[str, Path, None] = None) -> AnalysisConfig:
    """
    Load an analysis configuration from a YAML file.

    The file holds a flat mapping of ``AnalysisConfig`` field names to
    values; fields not listed keep their defaults.

    Parameters
    ----------
    config_path : str or Path, optional
        YAML file. ``None`` returns the defaults.

    Returns
    -------
    AnalysisConfig
        Validated configuration.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    InvalidConfiguration
        If the file is not a mapping, names unknown keys, or values are out of range.
    """
    if config_path is None:
        return DEFAULT_CONFIG

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")
    with open(config_path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise InvalidConfiguration(f"Configuration file must contain a mapping: {config_path}")

    return DEFAULT_CONFIG.with_overrides(**raw)
