"""Physics modules for the tshirt rainfall-runoff model."""
from tshirt.physics.reservoir import (
    OutletShape,
    ReservoirOutlet,
    ReservoirResponse,
    NonlinearReservoir,
)
from tshirt.physics.nash_cascade import NashCascade
from tshirt.physics.tshirt import (
    TshirtParameters,
    TshirtState,
    TshirtFluxes,
    TshirtModel,
    calc_soil_field_capacity_storage,
    run_timestep,
)
from tshirt.physics.mass_balance import MassBalanceReport, check_mass_balance
# Default collaborators
from tshirt.physics.partitioning import schaake_partitioning_scheme
from tshirt.physics.giuh import GiuhConvolution
from tshirt.physics.evapotranspiration import PdmParameters, calc_pdm_evapotranspiration

__all__ = [
    "OutletShape",
    "ReservoirOutlet",
    "ReservoirResponse",
    "NonlinearReservoir",
    "NashCascade",
    "TshirtParameters",
    "TshirtState",
    "TshirtFluxes",
    "TshirtModel",
    "calc_soil_field_capacity_storage",
    "run_timestep",
    "MassBalanceReport",
    "check_mass_balance",
    # Default collaborators
    "schaake_partitioning_scheme",
    "GiuhConvolution",
    "PdmParameters",
    "calc_pdm_evapotranspiration",
]
