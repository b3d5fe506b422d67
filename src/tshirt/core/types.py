"""
Type definitions and type aliases for the tshirt model.
Describes the collaborator interfaces the model calls each timestep.
"""
from enum import IntEnum
from typing import Any, Protocol, Tuple, runtime_checkable

from typing_extensions import TypeAlias


# Type aliases for clarity
Meters: TypeAlias = float
MetersPerSecond: TypeAlias = float
Seconds: TypeAlias = float


class TshirtErrorCode(IntEnum):
    """Integer status returned by a stateful timestep"""
    NO_ERROR = 0
    MASS_BALANCE_ERROR = 100
    INVARIANT_VIOLATION = 200


@runtime_checkable
class PartitionFunction(Protocol):
    """Splits an input flux into (surface runoff, infiltration), both m/s."""

    def __call__(
        self,
        dt: Seconds,
        Cschaake: float,
        soil_deficit_meters: Meters,
        input_flux_meters_per_second: MetersPerSecond,
    ) -> Tuple[MetersPerSecond, MetersPerSecond]:
        ...


@runtime_checkable
class UnitHydrograph(Protocol):
    """Stateful convolution of instantaneous surface runoff."""

    def convolve(self, dt: Seconds, runoff_meters_per_second: MetersPerSecond) -> MetersPerSecond:
        ...


@runtime_checkable
class EvapotranspirationFunction(Protocol):
    """Returns the ET loss depth for a given soil storage height."""

    def __call__(self, soil_storage_meters: Meters, et_params: Any) -> Meters:
        ...
