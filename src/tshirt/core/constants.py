"""
Physical constants and default values for the tshirt model.
"""
from typing import Final

# Physical constants
ATMOSPHERIC_PRESSURE_PASCALS: Final[float] = 101325.0
WATER_SPECIFIC_WEIGHT: Final[float] = 9810.0  # N/m³

SECONDS_PER_DAY: Final[float] = 86400.0

# Schaake partitioning: Cschaake = C * satdk / Ks_ref
SCHAAKE_MAGIC_CONSTANT: Final[float] = 3.0
SCHAAKE_REFERENCE_SATDK: Final[float] = 2.0e-6  # m/s

# Soil column
DEFAULT_SOIL_DEPTH_M: Final[float] = 2.0

# Field capacity integration window below the water table head (m)
FIELD_CAPACITY_HEAD_OFFSET_M: Final[float] = 0.5
FIELD_CAPACITY_HEAD_WINDOW_M: Final[float] = 2.0

# Soil reservoir outlet layout
LATERAL_FLOW_OUTLET_INDEX: Final[int] = 0
PERCOLATION_OUTLET_INDEX: Final[int] = 1

# Mass balance defaults
DEFAULT_MASS_BALANCE_ABS_TOLERANCE_M: Final[float] = 1e-10
DEFAULT_MASS_BALANCE_REL_TOLERANCE: Final[float] = 1e-8
