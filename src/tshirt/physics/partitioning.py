"""
Schaake runoff partitioning scheme.

Splits the water reaching the soil surface into surface runoff and
infiltration from the column moisture deficit (Schaake et al., 1996):

    Ic = D * (1 - exp(-Cschaake * dt_days))
    I  = Px * Ic / (Px + Ic)
    R  = Px - I

where D is the soil moisture deficit (m), Px the water input depth for the
step (m) and Cschaake = 3 * Ks / 2.0e-6 m/s.

References:
- Schaake, J.C., Koren, V.I., Duan, Q.-Y., Mitchell, K. and Chen, F. (1996).
  Simple water balance model for estimating runoff at different spatial and
  temporal scales. Journal of Geophysical Research, 101(D3):7461-7475.
"""
import logging
from typing import Tuple

import numpy as np

from tshirt.core.constants import SECONDS_PER_DAY
from tshirt.core.exceptions import ErrorContext, ForcingError

logger = logging.getLogger(__name__)


def schaake_partitioning_scheme(
    dt: float,
    Cschaake: float,
    soil_deficit_meters: float,
    input_flux_meters_per_second: float
) -> Tuple[float, float]:
    """
    Partition an input flux into surface runoff and infiltration.

    Args:
        dt: Timestep (s)
        Cschaake: Schaake adjusted constant for the soil type (1/day)
        soil_deficit_meters: Column total soil moisture deficit (m)
        input_flux_meters_per_second: Water reaching the surface (m/s)

    Returns:
        (surface_runoff, infiltration), both m/s, summing to the input flux
    """
    if dt <= 0:
        raise ForcingError(
            f"Timestep must be positive, got {dt}",
            ErrorContext(component="schaake_partitioning_scheme", operation="partition")
        )

    if input_flux_meters_per_second <= 0:
        return 0.0, 0.0

    # Saturated column: everything runs off
    if soil_deficit_meters < 0:
        return input_flux_meters_per_second, 0.0

    input_depth_meters = input_flux_meters_per_second * dt
    timestep_days = dt / SECONDS_PER_DAY

    infiltration_capacity = soil_deficit_meters * (1.0 - np.exp(-Cschaake * timestep_days))
    infiltration_depth_meters = input_depth_meters * (
        infiltration_capacity / (input_depth_meters + infiltration_capacity)
    )

    infiltration = float(infiltration_depth_meters / dt)
    surface_runoff = max(0.0, input_flux_meters_per_second - infiltration)
    infiltration = input_flux_meters_per_second - surface_runoff

    logger.debug(
        f"Schaake: input={input_flux_meters_per_second:.3e}m/s, "
        f"Ic={infiltration_capacity:.4g}m, runoff={surface_runoff:.3e}m/s"
    )

    return surface_runoff, infiltration
