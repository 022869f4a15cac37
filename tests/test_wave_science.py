"""
Unit tests for wave_science module.
"""

import pytest
import numpy as np

from buoy_extremes.wave_science import expected_hmax, hs_from_elevation, hs_from_rms, rms_wave_height


def test_hs_from_elevation():
    t = np.linspace(0, 100 * 2 * np.pi, 100_000, endpoint=False)
    eta = 1.5 * np.sin(t) + 0.3
    # Sinusoid with amplitude a has sd a / sqrt(2)
    assert hs_from_elevation(eta) == pytest.approx(4 * 1.5 / np.sqrt(2), rel=1e-3)
    assert np.isnan(hs_from_elevation([np.nan, 1.0]))


def test_rms_and_rayleigh_relation():
    assert rms_wave_height([3.0, 4.0]) == pytest.approx(np.sqrt(12.5))
    assert np.isnan(rms_wave_height([np.nan]))
    assert hs_from_rms(1.0) == pytest.approx(np.sqrt(8))
    np.testing.assert_allclose(hs_from_rms([1.0, 2.0]), [np.sqrt(8), 2 * np.sqrt(8)])


def test_expected_hmax():
    # About 1.86 Hs for a 1000-wave record
    assert expected_hmax(2.0, 1000) == pytest.approx(2.0 * np.sqrt(np.log(1000) / 2))
    assert expected_hmax(2.0, 1000) / 2.0 == pytest.approx(1.86, abs=0.01)
    with pytest.raises(ValueError):
        expected_hmax(2.0, 1)
