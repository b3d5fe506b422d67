"""
Nash cascade of linear reservoirs for delaying subsurface lateral flow.
"""
import logging
from typing import List, Sequence, Tuple

from tshirt.core.exceptions import ErrorContext, ParameterError
from tshirt.physics.reservoir import NonlinearReservoir, OutletShape

logger = logging.getLogger(__name__)


class NashCascade:
    """
    Ordered chain of identical single-outlet linear reservoirs.

    Stage i's output velocity is stage i+1's inflow. Overflow from a stage is
    not lost: it is added as excess / dt to that stage's output, so it passes
    on to the next stage (or out of the cascade) within the same timestep.
    """

    def __init__(
        self,
        storages_meters: Sequence[float],
        coefficient: float,
        activation_threshold_meters: float,
        max_velocity_meters_per_second: float,
        max_storage_meters: float,
        min_storage_meters: float = 0.0
    ):
        if len(storages_meters) == 0:
            raise ParameterError(
                "A Nash cascade needs at least one reservoir",
                ErrorContext(component="NashCascade", operation="__init__")
            )

        self.reservoirs: List[NonlinearReservoir] = [
            NonlinearReservoir.single_outlet(
                min_storage_meters, max_storage_meters, storage,
                coefficient, 1.0, activation_threshold_meters,
                max_velocity_meters_per_second, OutletShape.LINEAR
            )
            for storage in storages_meters
        ]

    def __len__(self) -> int:
        return len(self.reservoirs)

    @property
    def storages_meters(self) -> Tuple[float, ...]:
        """Storage of every stage, upstream first"""
        return tuple(reservoir.storage_meters for reservoir in self.reservoirs)

    @property
    def total_storage_meters(self) -> float:
        return float(sum(self.storages_meters))

    def route(self, inflow_meters_per_second: float, dt: float) -> float:
        """
        Route one timestep of inflow through every stage.

        Returns:
            Output velocity of the last stage, including its excess (m/s)
        """
        flow = inflow_meters_per_second
        for i, reservoir in enumerate(self.reservoirs):
            response = reservoir.response_meters_per_second(flow, dt)
            flow = response.total_velocity_meters_per_second + response.excess_meters / dt
            if response.excess_meters > 0:
                logger.debug(f"Nash stage {i} overflowed by {response.excess_meters:.6g}m")
        return flow
