"""
Probability-distributed model (PDM) evapotranspiration loss.

Actual ET falls below the potential rate as the store dries out:

    AET = PET * (1 - ((S_max - S) / S_max) ** b_e)

References:
- Moore, R.J. (2007). The PDM rainfall-runoff model. Hydrology and Earth
  System Sciences, 11(1):483-499.
"""
import logging
from dataclasses import dataclass

from tshirt.core.exceptions import ErrorContext, ParameterError

logger = logging.getLogger(__name__)


@dataclass
class PdmParameters:
    """PDM ET parameters for one timestep"""
    max_storage_meters: float  # Store capacity S_max (m)
    potential_et_meters: float = 0.0  # Potential ET depth for the step (m)
    et_exponent: float = 2.0  # b_e

    def __post_init__(self):
        context = ErrorContext(component="PdmParameters", operation="__init__")
        if self.max_storage_meters <= 0:
            raise ParameterError(f"PDM max storage must be positive, got {self.max_storage_meters}", context)
        if self.potential_et_meters < 0:
            raise ParameterError(f"Potential ET must be >= 0, got {self.potential_et_meters}", context)
        if self.et_exponent <= 0:
            raise ParameterError(f"PDM ET exponent must be positive, got {self.et_exponent}", context)


def calc_pdm_evapotranspiration(soil_storage_meters: float, et_params: PdmParameters) -> float:
    """
    ET loss depth for the current soil storage.

    Args:
        soil_storage_meters: Soil storage height (m)
        et_params: PdmParameters

    Returns:
        Loss depth (m), never more than the storage available
    """
    if soil_storage_meters <= 0 or et_params.potential_et_meters == 0:
        return 0.0

    deficit_ratio = (et_params.max_storage_meters - soil_storage_meters) / et_params.max_storage_meters
    deficit_ratio = min(1.0, max(0.0, deficit_ratio))

    actual_et = et_params.potential_et_meters * (1.0 - deficit_ratio ** et_params.et_exponent)
    return min(soil_storage_meters, max(0.0, actual_et))
