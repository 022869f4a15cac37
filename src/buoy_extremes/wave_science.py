# src/buoy_extremes/wave_science.py
"""
Module: wave_science.py
Responsibilities:
- Significant wave height from surface elevation (Hs = 4 sigma)
- RMS wave height and the Rayleigh Hs / H_rms relation
- Expected maximum wave height in a record of N waves
"""
import numpy as np


def hs_from_elevation(elevations) -> float:
    """
    Significant wave height from sea surface elevation samples.

    The elevation is de-meaned and Hs = 4 * sd. NaNs are ignored.
    """
    eta = np.asarray(elevations, dtype=float)
    eta = eta[~np.isnan(eta)]
    if eta.size < 2:
        return np.nan
    return float(4 * np.std(eta - eta.mean(), ddof=1))


def rms_wave_height(wave_heights) -> float:
    """H_rms = sqrt(mean(H^2)), ignoring NaNs."""
    h = np.asarray(wave_heights, dtype=float)
    if np.all(np.isnan(h)):
        return np.nan
    return float(np.sqrt(np.nanmean(h ** 2)))


def hs_from_rms(h_rms):
    """Hs = H_rms * sqrt(8) for Rayleigh-distributed wave heights."""
    return np.asarray(h_rms, dtype=float) * np.sqrt(8) if np.ndim(h_rms) else float(h_rms) * np.sqrt(8)


def expected_hmax(hs, n_waves: int):
    """Most probable maximum of ``n_waves`` Rayleigh waves: Hs * sqrt(ln(N) / 2)."""
    if n_waves < 2:
        raise ValueError(f"n_waves must be at least 2, got {n_waves}")
    return hs * np.sqrt(np.log(n_waves) / 2)
