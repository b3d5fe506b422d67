"""
Nonlinear conceptual reservoirs with one or more outlets.

A reservoir is a bounded store [S_min, S_max]. Each outlet drains it with a
velocity that depends on the storage height above the outlet's activation
threshold:

    S <= S_a:      v = 0
    power law:     v = min(V_max, C * ((S - S_a) / (S_max - S_a)) ** e)
    exponential:   v = min(V_max, C * (exp(e * (S - S_a) / (S_max - S_a)) - 1))

A linear outlet is the power law with e = 1.

One timestep is a single explicit (forward Euler) update with the outlet
velocities evaluated at the pre-update storage. Overflow above S_max is
returned as excess depth; outflow that would draw storage below S_min is
scaled back proportionally across outlets. No water is created or lost:

    S_0 + inflow * dt == S_1 + sum(v_i) * dt + excess

The explicit step is only stable while dt * dv/dS stays below about 2. A
stiff outlet at a long timestep (e.g. Cgw = 0.01, expon = 3 at dt = 3600 s)
swings between S_min and a refilled store instead of settling; the outflow
averaged over the swing still equals the inflow.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, NamedTuple, Sequence, Tuple

import numpy as np

from tshirt.core.exceptions import ErrorContext, ForcingError, ParameterError

logger = logging.getLogger(__name__)


class OutletShape(str, Enum):
    """Flow law of a reservoir outlet"""
    LINEAR = "linear"
    POWER = "power"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class ReservoirOutlet:
    """
    One exit path from a reservoir.

    Attributes:
        coefficient: Rate coefficient C (m/s)
        exponent: Shape exponent e (ignored for LINEAR)
        activation_threshold_meters: Storage below which no flow occurs
        max_velocity_meters_per_second: Velocity cap
        shape: Flow law
    """
    coefficient: float
    exponent: float
    activation_threshold_meters: float
    max_velocity_meters_per_second: float
    shape: OutletShape = OutletShape.POWER

    def __post_init__(self):
        context = ErrorContext(component="ReservoirOutlet", operation="__init__")
        if self.coefficient < 0:
            raise ParameterError(f"Outlet coefficient must be >= 0, got {self.coefficient}", context)
        if self.max_velocity_meters_per_second < 0:
            raise ParameterError(
                f"Outlet max velocity must be >= 0, got {self.max_velocity_meters_per_second}", context
            )
        if self.activation_threshold_meters < 0:
            raise ParameterError(
                f"Outlet activation threshold must be >= 0, got {self.activation_threshold_meters}", context
            )

    @classmethod
    def linear(
        cls,
        coefficient: float,
        activation_threshold_meters: float,
        max_velocity_meters_per_second: float
    ) -> "ReservoirOutlet":
        """Outlet whose velocity grows linearly above the threshold"""
        return cls(coefficient, 1.0, activation_threshold_meters,
                   max_velocity_meters_per_second, OutletShape.LINEAR)

    @classmethod
    def exponential(
        cls,
        coefficient: float,
        exponent: float,
        activation_threshold_meters: float,
        max_velocity_meters_per_second: float
    ) -> "ReservoirOutlet":
        """Groundwater-style outlet, C * (exp(e * S_rel) - 1)"""
        return cls(coefficient, exponent, activation_threshold_meters,
                   max_velocity_meters_per_second, OutletShape.EXPONENTIAL)

    def velocity_meters_per_second(self, storage_meters: float, max_storage_meters: float) -> float:
        """Flow velocity for a storage height already clamped by the reservoir"""
        threshold = self.activation_threshold_meters
        if storage_meters <= threshold:
            return 0.0

        storage_range = max_storage_meters - threshold
        if storage_range <= 0:
            return 0.0

        relative_storage = (storage_meters - threshold) / storage_range

        if self.shape == OutletShape.EXPONENTIAL:
            velocity = self.coefficient * (np.exp(self.exponent * relative_storage) - 1.0)
        elif self.shape == OutletShape.LINEAR:
            velocity = self.coefficient * relative_storage
        else:
            velocity = self.coefficient * np.power(relative_storage, self.exponent)

        return float(min(self.max_velocity_meters_per_second, max(0.0, velocity)))


class ReservoirResponse(NamedTuple):
    """Realized outlet velocities and overflow for one timestep"""
    velocities_meters_per_second: Tuple[float, ...]
    excess_meters: float

    @property
    def total_velocity_meters_per_second(self) -> float:
        return float(sum(self.velocities_meters_per_second))


class NonlinearReservoir:
    """
    Bounded storage drained by one or more outlets sharing the same storage.

    Build with an explicit outlet list, or with `single_outlet` for the one
    outlet shorthand; both end up as a list of outlets.
    """

    def __init__(
        self,
        min_storage_meters: float,
        max_storage_meters: float,
        storage_meters: float,
        outlets: Sequence[ReservoirOutlet]
    ):
        context = ErrorContext(component="NonlinearReservoir", operation="__init__")
        if min_storage_meters < 0:
            raise ParameterError(f"Minimum storage must be >= 0, got {min_storage_meters}", context)
        if max_storage_meters <= min_storage_meters:
            raise ParameterError(
                f"Maximum storage ({max_storage_meters}) must exceed minimum storage ({min_storage_meters})",
                context
            )
        if len(outlets) == 0:
            raise ParameterError("A reservoir needs at least one outlet", context)

        self.min_storage_meters = min_storage_meters
        self.max_storage_meters = max_storage_meters
        self.outlets: List[ReservoirOutlet] = list(outlets)
        self._storage = storage_meters
        self._velocities: Tuple[float, ...] = tuple(0.0 for _ in self.outlets)
        self._excess = 0.0

    @classmethod
    def single_outlet(
        cls,
        min_storage_meters: float,
        max_storage_meters: float,
        storage_meters: float,
        coefficient: float,
        exponent: float,
        activation_threshold_meters: float,
        max_velocity_meters_per_second: float,
        shape: OutletShape = OutletShape.POWER
    ) -> "NonlinearReservoir":
        """Reservoir with a single outlet built from its flow-law parameters"""
        if shape == OutletShape.LINEAR:
            exponent = 1.0
        outlet = ReservoirOutlet(coefficient, exponent, activation_threshold_meters,
                                 max_velocity_meters_per_second, shape)
        return cls(min_storage_meters, max_storage_meters, storage_meters, [outlet])

    @property
    def storage_meters(self) -> float:
        """Current storage height"""
        return self._storage

    @property
    def excess_meters(self) -> float:
        """Overflow produced by the latest response"""
        return self._excess

    def velocity_meters_per_second_for_outlet(self, outlet_index: int) -> float:
        """Realized velocity of one outlet in the latest response"""
        return self._velocities[outlet_index]

    def response_meters_per_second(self, inflow_meters_per_second: float, dt: float) -> ReservoirResponse:
        """
        Advance the reservoir by one timestep.

        Args:
            inflow_meters_per_second: Water entering the reservoir (m/s)
            dt: Timestep (s)

        Returns:
            ReservoirResponse with realized per-outlet velocities and excess depth
        """
        context = ErrorContext(component="NonlinearReservoir", operation="response", timestep_seconds=dt)
        if dt <= 0:
            raise ForcingError(f"Timestep must be positive, got {dt}", context)
        if inflow_meters_per_second < 0:
            raise ForcingError(f"Inflow must be >= 0, got {inflow_meters_per_second}", context)

        clamped = min(self.max_storage_meters, max(self.min_storage_meters, self._storage))
        if clamped != self._storage:
            logger.warning(
                f"Storage {self._storage:.6g}m outside "
                f"[{self.min_storage_meters}, {self.max_storage_meters}]; clamped to {clamped:.6g}m"
            )
        storage = clamped

        velocities = [
            outlet.velocity_meters_per_second(storage, self.max_storage_meters)
            for outlet in self.outlets
        ]
        outflow_meters = sum(velocities) * dt
        candidate = storage + inflow_meters_per_second * dt - outflow_meters

        excess = 0.0
        if candidate > self.max_storage_meters:
            excess = candidate - self.max_storage_meters
            candidate = self.max_storage_meters
        elif candidate < self.min_storage_meters:
            # Only the water above S_min can leave this step
            available_meters = storage + inflow_meters_per_second * dt - self.min_storage_meters
            scale = available_meters / outflow_meters if outflow_meters > 0 else 0.0
            velocities = [v * scale for v in velocities]
            candidate = self.min_storage_meters

        self._storage = candidate
        self._velocities = tuple(velocities)
        self._excess = excess

        return ReservoirResponse(self._velocities, excess)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(storage={self._storage:.6g}m, "
            f"bounds=[{self.min_storage_meters}, {self.max_storage_meters}], "
            f"outlets={len(self.outlets)})"
        )
