# src/buoy_extremes/results.py
"""
Module: results.py
Responsibilities:
- Result containers produced by the extreme value engine
- Tagged outcome of a GEV fit: fitted distribution or insufficient-data sentinel
- Exceedance sets and return level estimates
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd

FAMILY_GEV = 'GEV'
FAMILY_GPD = 'GPD'

STATUS_FITTED = 'fitted'
STATUS_INSUFFICIENT = 'insufficient_data'


@dataclass(frozen=True)
class AnnualMaximaSeries:
    """One (year, max_value) row per calendar year with at least one valid value."""
    variable: str
    table: pd.DataFrame

    @property
    def n_years(self) -> int:
        return int(len(self.table))

    @property
    def years(self) -> np.ndarray:
        return self.table['year'].to_numpy(dtype=int)

    @property
    def values(self) -> np.ndarray:
        return self.table['max_value'].to_numpy(dtype=float)


@dataclass(frozen=True)
class ExceedanceSet:
    """Values above ``threshold`` with their timestamps, optionally declustered."""
    threshold: float
    times: np.ndarray
    values: np.ndarray
    declustered: bool = False
    window_hours: Optional[float] = None
    n_raw: int = 0

    def __len__(self) -> int:
        return int(self.values.size)

    @property
    def excesses(self) -> np.ndarray:
        """Amounts by which each retained value exceeds the threshold."""
        return self.values - self.threshold

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({'time': pd.to_datetime(self.times), 'value': self.values})


@dataclass(frozen=True)
class FittedDistribution:
    """
    Maximum likelihood fit of a GEV or GPD.

    ``parameters`` uses the standard shape convention (xi > 0 heavy tail,
    xi < 0 bounded tail, xi = 0 Gumbel/exponential limit). GEV fits carry
    ``location``, ``scale`` and ``shape``; GPD fits carry ``scale`` and
    ``shape`` plus the ``threshold`` and yearly exceedance rate.
    """
    family: str
    variable: str
    parameters: Dict[str, float]
    standard_errors: Dict[str, float]
    covariance: np.ndarray
    n_input_points: int
    data: np.ndarray
    threshold: Optional[float] = None
    rate_per_year: Optional[float] = None
    annual_maxima: Optional[AnnualMaximaSeries] = None
    exceedances: Optional[ExceedanceSet] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    status = STATUS_FITTED

    @property
    def is_fitted(self) -> bool:
        return True

    @property
    def param_names(self) -> List[str]:
        if self.family == FAMILY_GEV:
            return ['location', 'scale', 'shape']
        return ['scale', 'shape']

    def param_vector(self) -> np.ndarray:
        return np.array([self.parameters[name] for name in self.param_names], dtype=float)

    def summary(self) -> Dict[str, Any]:
        out = {
            'family': self.family,
            'variable': self.variable,
            'status': self.status,
            'parameters': dict(self.parameters),
            'standard_errors': dict(self.standard_errors),
            'n_input_points': self.n_input_points,
        }
        if self.threshold is not None:
            out['threshold'] = self.threshold
            out['rate_per_year'] = self.rate_per_year
        if self.annual_maxima is not None:
            out['n_years'] = self.annual_maxima.n_years
        out['diagnostics'] = {k: v for k, v in self.diagnostics.items() if np.isscalar(v)}
        return out


@dataclass(frozen=True)
class InsufficientDataResult:
    """
    Recoverable outcome of a GEV fit with too few years.

    Carries the partial annual maxima so reports can still show the raw data.
    """
    family: str
    variable: str
    reason: str
    annual_maxima: AnnualMaximaSeries
    min_years: int

    status = STATUS_INSUFFICIENT

    @property
    def is_fitted(self) -> bool:
        return False

    @property
    def n_years(self) -> int:
        return self.annual_maxima.n_years

    @property
    def parameters(self) -> Dict[str, float]:
        return {'location': np.nan, 'scale': np.nan, 'shape': np.nan}

    def summary(self) -> Dict[str, Any]:
        return {
            'family': self.family,
            'variable': self.variable,
            'status': self.status,
            'error': self.reason,
            'n_years': self.n_years,
            'min_years': self.min_years,
            'annual_maxima': self.annual_maxima.table.to_dict(orient='records'),
        }


FitOutcome = Union[FittedDistribution, InsufficientDataResult]


@dataclass(frozen=True)
class ReturnLevelEstimate:
    """Return level for one return period (years) with its confidence interval."""
    return_period: float
    point_estimate: float
    lower_ci: float
    upper_ci: float
    error: Optional[str] = None
