"""
Post-hoc mass balance verification for a tshirt timestep.

Three identities are checked, each as a depth residual over the step:

    partition:    P - R_direct - I
    soil:         I - Q_perc - Q_lf - ET/dt - dS_soil/dt - dS_nash/dt
    groundwater:  Q_perc - Q_gw - dS_gw/dt

The soil identity includes the Nash cascade storage because the reported
lateral flow leaves the cascade, not the soil reservoir. Surface runoff is
taken before GIUH routing, since the GIUH queue holds its own water.

This is a verification oracle: it reports, it never corrects.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tshirt.core.constants import (
    DEFAULT_MASS_BALANCE_ABS_TOLERANCE_M,
    DEFAULT_MASS_BALANCE_REL_TOLERANCE,
)
from tshirt.core.exceptions import ErrorContext, ForcingError, InvariantViolationError

if TYPE_CHECKING:
    from tshirt.physics.tshirt import TshirtFluxes, TshirtParameters, TshirtState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MassBalanceReport:
    """Residuals of one timestep (m)"""
    partition_residual_meters: float
    soil_residual_meters: float
    groundwater_residual_meters: float
    tolerance_meters: float

    @property
    def max_abs_residual_meters(self) -> float:
        return max(
            abs(self.partition_residual_meters),
            abs(self.soil_residual_meters),
            abs(self.groundwater_residual_meters),
        )

    @property
    def is_balanced(self) -> bool:
        return self.max_abs_residual_meters <= self.tolerance_meters


def check_mass_balance(
    params: "TshirtParameters",
    state_prev: "TshirtState",
    input_flux_meters_per_second: float,
    state_next: "TshirtState",
    fluxes: "TshirtFluxes",
    dt: float,
    abs_tolerance_meters: float = DEFAULT_MASS_BALANCE_ABS_TOLERANCE_M,
    rel_tolerance: float = DEFAULT_MASS_BALANCE_REL_TOLERANCE
) -> MassBalanceReport:
    """
    Verify conservation between two consecutive states.

    Args:
        params: TshirtParameters, fixes the expected cascade length
        state_prev: TshirtState before the step
        input_flux_meters_per_second: Water input for the step (m/s)
        state_next: TshirtState after the step
        fluxes: TshirtFluxes of the step
        dt: Timestep (s)
        abs_tolerance_meters: Absolute residual allowed
        rel_tolerance: Residual allowed relative to the largest term

    Returns:
        MassBalanceReport
    """
    if dt <= 0:
        raise ForcingError(
            f"Timestep must be positive, got {dt}",
            ErrorContext(component="check_mass_balance", operation="check", timestep_seconds=dt)
        )

    for state in (state_prev, state_next):
        if len(state.nash_cascade_storage_meters) != params.nash_n:
            raise InvariantViolationError(
                f"Nash cascade has {len(state.nash_cascade_storage_meters)} stages, expected {params.nash_n}",
                ErrorContext(component="check_mass_balance", operation="check", timestep_seconds=dt)
            )

    d_soil = state_next.soil_storage_meters - state_prev.soil_storage_meters
    d_gw = state_next.groundwater_storage_meters - state_prev.groundwater_storage_meters
    d_nash = sum(state_next.nash_cascade_storage_meters) - sum(state_prev.nash_cascade_storage_meters)

    partition_residual = (
        input_flux_meters_per_second
        - fluxes.direct_runoff_meters_per_second
        - fluxes.infiltration_meters_per_second
    ) * dt

    soil_residual = (
        fluxes.infiltration_meters_per_second
        - fluxes.soil_percolation_flow_meters_per_second
        - fluxes.soil_lateral_flow_meters_per_second
    ) * dt - fluxes.et_loss_meters - d_soil - d_nash

    groundwater_residual = (
        fluxes.soil_percolation_flow_meters_per_second
        - fluxes.groundwater_flow_meters_per_second
    ) * dt - d_gw

    magnitude = max(
        abs(input_flux_meters_per_second) * dt,
        abs(fluxes.infiltration_meters_per_second) * dt,
        abs(fluxes.soil_percolation_flow_meters_per_second) * dt,
        abs(fluxes.soil_lateral_flow_meters_per_second) * dt,
        abs(fluxes.groundwater_flow_meters_per_second) * dt,
        abs(fluxes.et_loss_meters),
        abs(state_next.soil_storage_meters),
        abs(state_next.groundwater_storage_meters),
        abs(sum(state_next.nash_cascade_storage_meters)),
    )
    tolerance = abs_tolerance_meters + rel_tolerance * magnitude

    report = MassBalanceReport(
        partition_residual_meters=partition_residual,
        soil_residual_meters=soil_residual,
        groundwater_residual_meters=groundwater_residual,
        tolerance_meters=tolerance,
    )

    if not report.is_balanced:
        logger.warning(
            f"Mass balance residual {report.max_abs_residual_meters:.3e}m exceeds "
            f"tolerance {tolerance:.3e}m (partition={partition_residual:.3e}, "
            f"soil={soil_residual:.3e}, gw={groundwater_residual:.3e})"
        )

    return report
