# src/buoy_extremes/errors.py
"""
Module: errors.py
Responsibilities:
- Define the error kinds raised by the analysis core
- Carry enough context in each error for one-line batch report reasons
"""
from typing import Iterable, Optional


class BuoyAnalysisError(ValueError):
    """Base class for analysis errors raised on unusable input data."""


class InsufficientData(BuoyAnalysisError):
    """Too few valid samples (years, observations, rows) for the requested analysis."""

    def __init__(self, required: int, available: int, what: str = "observations"):
        self.required = int(required)
        self.available = int(available)
        self.what = what
        super().__init__(
            f"Insufficient data: {self.available} {what} available, "
            f"need at least {self.required}"
        )


class InsufficientExceedances(BuoyAnalysisError):
    """Too few (declustered) threshold exceedances for a GPD fit."""

    def __init__(self, n_exceedances: int, min_exceedances: int, threshold: Optional[float] = None):
        self.n_exceedances = int(n_exceedances)
        self.min_exceedances = int(min_exceedances)
        self.threshold = threshold
        msg = (f"Insufficient exceedances: only {self.n_exceedances}, "
               f"need at least {self.min_exceedances}")
        if threshold is not None:
            msg += f" (threshold {threshold:.4f})"
        super().__init__(msg)


class MissingPredictors(BuoyAnalysisError):
    """Prediction input lacks columns the trained model needs."""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required predictors: {', '.join(self.missing)}")


class InvalidConfiguration(BuoyAnalysisError):
    """A named parameter is out of range or unknown."""
