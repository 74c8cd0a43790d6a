from __future__ import annotations

import numpy as np
import pytest

from astrosim.constants import (
    A_RAD, C_LIGHT, L_SUN, M_SUN, R_SUN, SIGMA_SB,
    solar_masses, to_solar_luminosity, to_solar_radii,
)


def test_radiation_constant_from_stefan_boltzmann():
    assert A_RAD == pytest.approx(4 * SIGMA_SB / C_LIGHT, rel=1e-15)


def test_solar_unit_helpers():
    assert solar_masses(100) == pytest.approx(100 * M_SUN)
    np.testing.assert_allclose(to_solar_radii([R_SUN, 3 * R_SUN]), [1.0, 3.0])
    assert float(to_solar_luminosity(2 * L_SUN)) == pytest.approx(2.0)
