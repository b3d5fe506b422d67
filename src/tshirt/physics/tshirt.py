"""
Implementation of the tshirt conceptual rainfall-runoff model.

One timestep moves water through a network of nonlinear reservoirs:

1. Input flux is partitioned into surface runoff and infiltration
2. Infiltration drives the soil reservoir, drained by a lateral flow outlet
   and a percolation outlet, both activated above field capacity
3. ET is removed from the soil storage
4. Lateral flow is delayed through a Nash cascade
5. Percolation drives the groundwater reservoir (exponential outlet)
6. Surface runoff is routed through the GIUH
7. Conservation is verified

`run_timestep` is the pure transition; `TshirtModel` threads previous and
current state for hosts that want an object lifecycle.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from tshirt.core.config import MassBalanceConfig, TshirtConfig, get_config
from tshirt.core.constants import (
    ATMOSPHERIC_PRESSURE_PASCALS,
    DEFAULT_SOIL_DEPTH_M,
    FIELD_CAPACITY_HEAD_OFFSET_M,
    FIELD_CAPACITY_HEAD_WINDOW_M,
    LATERAL_FLOW_OUTLET_INDEX,
    PERCOLATION_OUTLET_INDEX,
    SCHAAKE_MAGIC_CONSTANT,
    SCHAAKE_REFERENCE_SATDK,
    WATER_SPECIFIC_WEIGHT,
)
from tshirt.core.exceptions import (
    CollaboratorError,
    ErrorContext,
    ForcingError,
    InvariantViolationError,
    MassBalanceError,
    ParameterError,
)
from tshirt.core.types import (
    EvapotranspirationFunction,
    PartitionFunction,
    TshirtErrorCode,
    UnitHydrograph,
)
from tshirt.physics.evapotranspiration import PdmParameters, calc_pdm_evapotranspiration
from tshirt.physics.giuh import GiuhConvolution
from tshirt.physics.mass_balance import check_mass_balance
from tshirt.physics.nash_cascade import NashCascade
from tshirt.physics.partitioning import schaake_partitioning_scheme
from tshirt.physics.reservoir import NonlinearReservoir, ReservoirOutlet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TshirtParameters:
    """Soil and hydraulic parameters of the tshirt model"""
    maxsmc: float  # Saturated soil moisture content (m³/m³)
    wltsmc: float  # Wilting point soil moisture content (m³/m³)
    satdk: float  # Vertical saturated hydraulic conductivity (m/s)
    satpsi: float  # Saturated capillary head (m)
    slope: float  # Slope factor applied to satdk for percolation
    b: float  # Clapp-Hornberger exponent
    multiplier: float  # Multiplier on satdk for rapid downslope subsurface flow
    alpha_fc: float  # Relative suction head at field capacity, w.r.t. atmospheric head
    Klf: float  # Lateral flow coefficient (m/s)
    Kn: float  # Nash cascade reservoir coefficient (m/s)
    nash_n: int  # Number of Nash cascade reservoirs
    Cgw: float  # Groundwater flow coefficient (m/s)
    expon: float  # Groundwater flow exponent
    max_groundwater_storage_meters: float  # Groundwater reservoir capacity (m)
    depth: float = field(default=DEFAULT_SOIL_DEPTH_M, init=False)  # Soil column depth (m)

    def __post_init__(self):
        context = ErrorContext(component="TshirtParameters", operation="__init__")
        errors = []

        if not 0 < self.maxsmc <= 1:
            errors.append(f"maxsmc must be in (0, 1], got {self.maxsmc}")
        if not 0 <= self.wltsmc < self.maxsmc:
            errors.append(f"wltsmc must be in [0, maxsmc), got {self.wltsmc}")
        if self.satdk <= 0:
            errors.append(f"satdk must be positive, got {self.satdk}")
        if self.satpsi <= 0:
            errors.append(f"satpsi must be positive, got {self.satpsi}")
        if self.b <= 0 or self.b == 1:
            errors.append(f"b must be positive and != 1, got {self.b}")
        if self.alpha_fc * ATMOSPHERIC_PRESSURE_PASCALS / WATER_SPECIFIC_WEIGHT <= FIELD_CAPACITY_HEAD_OFFSET_M:
            errors.append(f"alpha_fc too small for the field capacity head window, got {self.alpha_fc}")
        if not isinstance(self.nash_n, (int, np.integer)) or isinstance(self.nash_n, bool) or self.nash_n <= 0:
            errors.append(f"nash_n must be a positive integer, got {self.nash_n!r}")
        if self.max_groundwater_storage_meters <= 0:
            errors.append(f"max_groundwater_storage_meters must be positive, got {self.max_groundwater_storage_meters}")

        for name in ("slope", "multiplier", "Klf", "Kn", "Cgw", "expon"):
            if getattr(self, name) < 0:
                errors.append(f"{name} must be >= 0, got {getattr(self, name)}")

        if errors:
            raise ParameterError("; ".join(errors), context)

    @property
    def max_soil_storage_meters(self) -> float:
        """Soil reservoir capacity, depth * maxsmc"""
        return self.depth * self.maxsmc

    @property
    def max_lateral_flow(self) -> float:
        """Max subsurface lateral flow rate (max transmissivity), m/s"""
        return self.satdk * self.multiplier * self.max_soil_storage_meters

    @property
    def Cschaake(self) -> float:
        """Schaake adjusted constant for the soil type"""
        return SCHAAKE_MAGIC_CONSTANT * self.satdk / SCHAAKE_REFERENCE_SATDK

    @property
    def max_groundwater_velocity(self) -> float:
        """Groundwater outlet velocity at full storage"""
        return self.Cgw * (np.exp(self.expon) - 1.0)

    def to_dict(self) -> Dict[str, float]:
        """Flat record of parameters, derived values included"""
        record = asdict(self)
        record.update(
            max_soil_storage_meters=self.max_soil_storage_meters,
            max_lateral_flow=self.max_lateral_flow,
            Cschaake=self.Cschaake,
        )
        return record


@dataclass(frozen=True)
class TshirtState:
    """Storages of the tshirt reservoirs at one point in time"""
    soil_storage_meters: float
    groundwater_storage_meters: float
    nash_cascade_storage_meters: Tuple[float, ...] = ()

    def __post_init__(self):
        object.__setattr__(
            self, "nash_cascade_storage_meters",
            tuple(float(s) for s in self.nash_cascade_storage_meters)
        )

    @classmethod
    def zeros(cls, nash_n: int) -> "TshirtState":
        """Empty reservoirs everywhere"""
        return cls(0.0, 0.0, (0.0,) * nash_n)

    @property
    def total_storage_meters(self) -> float:
        return (
            self.soil_storage_meters
            + self.groundwater_storage_meters
            + sum(self.nash_cascade_storage_meters)
        )

    def to_array(self) -> np.ndarray:
        """[soil, groundwater, nash_0, ..., nash_n-1]"""
        return np.array(
            [self.soil_storage_meters, self.groundwater_storage_meters, *self.nash_cascade_storage_meters],
            dtype=float
        )

    @classmethod
    def from_array(cls, values: Sequence[float]) -> "TshirtState":
        values = np.asarray(values, dtype=float)
        if values.ndim != 1 or values.size < 2:
            raise ParameterError(
                f"State array needs at least 2 values, got shape {values.shape}",
                ErrorContext(component="TshirtState", operation="from_array")
            )
        return cls(float(values[0]), float(values[1]), tuple(values[2:]))


@dataclass(frozen=True)
class TshirtFluxes:
    """Fluxes generated by one tshirt timestep"""
    surface_runoff_meters_per_second: float  # GIUH-routed direct runoff
    groundwater_flow_meters_per_second: float  # Deep groundwater flow to channel
    soil_percolation_flow_meters_per_second: float  # Qperc
    soil_lateral_flow_meters_per_second: float  # Qlf, out of the Nash cascade
    et_loss_meters: float  # ET loss depth
    infiltration_meters_per_second: float = 0.0
    direct_runoff_meters_per_second: float = 0.0  # Partitioned runoff before GIUH

    @property
    def total_discharge_meters_per_second(self) -> float:
        """Water reaching the channel this step"""
        return (
            self.surface_runoff_meters_per_second
            + self.soil_lateral_flow_meters_per_second
            + self.groundwater_flow_meters_per_second
        )


def calc_soil_field_capacity_storage(params: TshirtParameters) -> float:
    """
    Soil storage at field capacity ("Sfc"), where free drainage stops.

    Integrates the Clapp-Hornberger moisture-tension curve over a 2 m head
    window starting 0.5 m below the suction head above the water table.
    """
    head_above_water_table = params.alpha_fc * (ATMOSPHERIC_PRESSURE_PASCALS / WATER_SPECIFIC_WEIGHT)

    z1 = head_above_water_table - FIELD_CAPACITY_HEAD_OFFSET_M
    z2 = z1 + FIELD_CAPACITY_HEAD_WINDOW_M

    # z^(1 - 1/b) / (1 - 1/b) == b * z^((b - 1)/b) / (b - 1)
    b = params.b
    exponent = (b - 1.0) / b
    return float(
        params.maxsmc * np.power(1.0 / params.satpsi, -1.0 / b)
        * ((b * np.power(z2, exponent) / (b - 1.0)) - (b * np.power(z1, exponent) / (b - 1.0)))
    )


def build_soil_reservoir(
    params: TshirtParameters,
    storage_meters: float,
    field_capacity_meters: float
) -> NonlinearReservoir:
    """Soil reservoir with its lateral flow and percolation outlets"""
    outlets: List[Optional[ReservoirOutlet]] = [None, None]
    outlets[LATERAL_FLOW_OUTLET_INDEX] = ReservoirOutlet.linear(
        params.Klf, field_capacity_meters, params.max_lateral_flow
    )
    # Percolation coefficient and cap are distinct knobs
    outlets[PERCOLATION_OUTLET_INDEX] = ReservoirOutlet.linear(
        params.satdk * params.slope, field_capacity_meters, params.satdk
    )
    return NonlinearReservoir(0.0, params.max_soil_storage_meters, storage_meters, outlets)


def build_groundwater_reservoir(params: TshirtParameters, storage_meters: float) -> NonlinearReservoir:
    """Groundwater reservoir, Q = Cgw * (exp(expon * S / S_max) - 1)"""
    outlet = ReservoirOutlet.exponential(params.Cgw, params.expon, 0.0, params.max_groundwater_velocity)
    return NonlinearReservoir(0.0, params.max_groundwater_storage_meters, storage_meters, [outlet])


def build_nash_cascade(
    params: TshirtParameters,
    storages_meters: Sequence[float],
    field_capacity_meters: float
) -> NashCascade:
    return NashCascade(
        storages_meters, params.Kn, field_capacity_meters,
        params.max_lateral_flow, params.max_soil_storage_meters
    )


def validate_state(params: TshirtParameters, state: TshirtState, context: ErrorContext):
    """Raise InvariantViolationError when a storage is outside its reservoir bounds"""
    bounds = [
        ("soil", state.soil_storage_meters, params.max_soil_storage_meters),
        ("groundwater", state.groundwater_storage_meters, params.max_groundwater_storage_meters),
    ]
    bounds += [
        (f"nash[{i}]", storage, params.max_soil_storage_meters)
        for i, storage in enumerate(state.nash_cascade_storage_meters)
    ]

    if len(state.nash_cascade_storage_meters) != params.nash_n:
        raise InvariantViolationError(
            f"State holds {len(state.nash_cascade_storage_meters)} Nash storages, "
            f"model has {params.nash_n}",
            context
        )

    for name, storage, max_storage in bounds:
        if not np.isfinite(storage) or storage < 0 or storage > max_storage:
            raise InvariantViolationError(
                f"{name} storage {storage}m outside [0, {max_storage}]", context
            )


def run_timestep(
    dt: float,
    params: TshirtParameters,
    state: TshirtState,
    input_flux_meters_per_second: float,
    giuh: UnitHydrograph,
    et_params: Any,
    partition: PartitionFunction = schaake_partitioning_scheme,
    et_function: EvapotranspirationFunction = calc_pdm_evapotranspiration,
    mass_balance: Optional[MassBalanceConfig] = None
) -> Tuple[TshirtState, TshirtFluxes]:
    """
    Advance the tshirt model by one timestep.

    Args:
        dt: Timestep (s)
        params: Model parameters
        state: State at the start of the step
        input_flux_meters_per_second: Water reaching the surface (m/s)
        giuh: Unit hydrograph for surface runoff, owns its own lag state
        et_params: Opaque record handed to et_function
        partition: Surface runoff / infiltration partitioning scheme
        et_function: ET loss function
        mass_balance: Check settings (defaults to the global configuration)

    Returns:
        (next state, fluxes)

    Raises:
        ForcingError: non-positive dt or negative input flux
        InvariantViolationError: a storage outside its bounds before or after the step
        CollaboratorError: a collaborator returned negative water
        MassBalanceError: conservation check failed; carries the computed state and fluxes
    """
    context = ErrorContext(component="tshirt", operation="run_timestep", timestep_seconds=dt)
    if dt <= 0:
        raise ForcingError(f"Timestep must be positive, got {dt}", context)
    if input_flux_meters_per_second < 0 or not np.isfinite(input_flux_meters_per_second):
        raise ForcingError(f"Input flux must be finite and >= 0, got {input_flux_meters_per_second}", context)

    validate_state(params, state, context)

    column_total_soil_moisture_deficit = params.max_soil_storage_meters - state.soil_storage_meters
    if column_total_soil_moisture_deficit < 0:
        raise InvariantViolationError(
            f"Negative soil moisture deficit {column_total_soil_moisture_deficit}m", context
        )

    # Surface runoff here is not yet routed through the GIUH
    surface_runoff, infiltration = partition(
        dt, params.Cschaake, column_total_soil_moisture_deficit, input_flux_meters_per_second
    )
    if surface_runoff < 0 or infiltration < 0:
        raise CollaboratorError(
            f"Partition returned negative water: runoff={surface_runoff}, infiltration={infiltration}",
            context
        )

    Sfc = calc_soil_field_capacity_storage(params)

    soil_reservoir = build_soil_reservoir(params, state.soil_storage_meters, Sfc)
    soil_response = soil_reservoir.response_meters_per_second(infiltration, dt)
    Qlf = soil_response.velocities_meters_per_second[LATERAL_FLOW_OUTLET_INDEX]
    Qperc = soil_response.velocities_meters_per_second[PERCOLATION_OUTLET_INDEX]

    soil_storage = soil_reservoir.storage_meters
    et_demand = et_function(soil_storage, et_params)
    if et_demand < 0:
        raise CollaboratorError(f"ET function returned a negative loss {et_demand}m", context)
    et_loss = min(et_demand, soil_storage)
    if et_loss < et_demand:
        logger.debug(f"ET demand {et_demand:.4g}m limited to available storage {soil_storage:.4g}m")
    new_soil_storage = soil_storage - et_loss

    nash_cascade = build_nash_cascade(params, state.nash_cascade_storage_meters, Sfc)
    Qlf = nash_cascade.route(Qlf + soil_response.excess_meters / dt, dt)

    groundwater_reservoir = build_groundwater_reservoir(params, state.groundwater_storage_meters)
    gw_response = groundwater_reservoir.response_meters_per_second(Qperc, dt)
    # Groundwater overflow leaves with the deep flow
    Qgw = gw_response.total_velocity_meters_per_second + gw_response.excess_meters / dt

    surface_runoff_routed = giuh.convolve(dt, surface_runoff)

    new_state = TshirtState(
        soil_storage_meters=new_soil_storage,
        groundwater_storage_meters=groundwater_reservoir.storage_meters,
        nash_cascade_storage_meters=nash_cascade.storages_meters,
    )
    fluxes = TshirtFluxes(
        surface_runoff_meters_per_second=surface_runoff_routed,
        groundwater_flow_meters_per_second=Qgw,
        soil_percolation_flow_meters_per_second=Qperc,
        soil_lateral_flow_meters_per_second=Qlf,
        et_loss_meters=et_loss,
        infiltration_meters_per_second=infiltration,
        direct_runoff_meters_per_second=surface_runoff,
    )

    validate_state(params, new_state, context)

    logger.debug(
        f"Timestep: P={input_flux_meters_per_second:.3e}m/s, Qsurf={surface_runoff_routed:.3e}, "
        f"Qlf={Qlf:.3e}, Qperc={Qperc:.3e}, Qgw={Qgw:.3e}, ET={et_loss:.3e}m, "
        f"Ss={new_state.soil_storage_meters:.4f}m, Sgw={new_state.groundwater_storage_meters:.4f}m"
    )

    if mass_balance is None:
        mass_balance = get_config().mass_balance

    if mass_balance.enabled:
        report = check_mass_balance(
            params, state, input_flux_meters_per_second, new_state, fluxes, dt,
            abs_tolerance_meters=mass_balance.abs_tolerance_meters,
            rel_tolerance=mass_balance.rel_tolerance,
        )
        if not report.is_balanced:
            raise MassBalanceError(
                f"Residual {report.max_abs_residual_meters:.3e}m exceeds tolerance "
                f"{report.tolerance_meters:.3e}m",
                context, report=report, state=new_state, fluxes=fluxes
            )

    return new_state, fluxes


class TshirtModel:
    """
    Stateful wrapper around `run_timestep`.

    Holds one previous and one current state; each `run` computes a new
    current state from the current one and demotes the old current state to
    previous. Errors are reported as TshirtErrorCode values so a batch run can
    flag drift without stopping.
    """

    def __init__(
        self,
        parameters: TshirtParameters,
        initial_state: Optional[TshirtState] = None,
        giuh: Optional[UnitHydrograph] = None,
        partition: PartitionFunction = schaake_partitioning_scheme,
        et_function: EvapotranspirationFunction = calc_pdm_evapotranspiration,
        config: Optional[TshirtConfig] = None
    ):
        """
        Initialize tshirt model.

        Args:
            parameters: Model parameters
            initial_state: Starting storages (default: all zero)
            giuh: Unit hydrograph for surface runoff (default: pass-through)
            partition: Partitioning scheme
            et_function: ET loss function
            config: Model configuration (default: global configuration)
        """
        self.params = parameters
        self.config = config or get_config()
        self._setup_logging()

        if initial_state is None:
            initial_state = TshirtState.zeros(parameters.nash_n)
        elif len(initial_state.nash_cascade_storage_meters) != parameters.nash_n:
            raise ParameterError(
                f"Initial state holds {len(initial_state.nash_cascade_storage_meters)} Nash storages, "
                f"nash_n is {parameters.nash_n}",
                ErrorContext(component="TshirtModel", operation="__init__")
            )

        field_capacity = calc_soil_field_capacity_storage(parameters)
        if field_capacity >= parameters.max_soil_storage_meters:
            self.logger.warning(
                f"Field capacity storage {field_capacity:.4f}m >= soil capacity "
                f"{parameters.max_soil_storage_meters:.4f}m; soil outlets will never drain"
            )

        self.initial_state = initial_state
        self.previous_state = initial_state
        self.current_state = initial_state
        self.fluxes: Optional[TshirtFluxes] = None

        self.giuh = giuh if giuh is not None else GiuhConvolution.pass_through()
        self.partition = partition
        self.et_function = et_function

        self.time_seconds = 0.0
        self.mass_balance_failures = 0

    def _setup_logging(self):
        """Configure model-specific logging"""
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.logger.setLevel(self.config.log_level)

    def run(self, dt: float, input_flux_meters_per_second: float, et_params: Any) -> TshirtErrorCode:
        """
        Run the model for one timestep.

        Returns:
            NO_ERROR, MASS_BALANCE_ERROR (state still advances) or
            INVARIANT_VIOLATION (state left unchanged)
        """
        code = TshirtErrorCode.NO_ERROR
        try:
            new_state, fluxes = run_timestep(
                dt, self.params, self.current_state, input_flux_meters_per_second,
                self.giuh, et_params,
                partition=self.partition,
                et_function=self.et_function,
                mass_balance=self.config.mass_balance,
            )
        except MassBalanceError as e:
            self.logger.warning(f"t={self.time_seconds + dt:.0f}s: {e}")
            self.mass_balance_failures += 1
            new_state, fluxes = e.state, e.fluxes
            code = TshirtErrorCode.MASS_BALANCE_ERROR
        except InvariantViolationError as e:
            self.logger.error(f"t={self.time_seconds + dt:.0f}s: {e}")
            return TshirtErrorCode.INVARIANT_VIOLATION

        self.previous_state = self.current_state
        self.current_state = new_state
        self.fluxes = fluxes
        self.time_seconds += dt

        return code

    def run_period(
        self,
        forcings: pd.DataFrame,
        dt: float,
        et_params_factory: Optional[Callable[[pd.Series], Any]] = None
    ) -> pd.DataFrame:
        """
        Run model for a series of timesteps.

        Args:
            forcings: DataFrame with columns:
                - input_flux_meters_per_second (required)
                - potential_et_meters (optional, used by the default PDM factory)
            dt: Timestep (s)
            et_params_factory: Builds et_params from a forcing row

        Returns:
            DataFrame, one row per timestep, with fluxes, total channel
            discharge, storages and error code
        """
        self._validate_forcings(forcings)

        if et_params_factory is None:
            et_params_factory = self._default_et_params

        self.logger.info(f"Running model for {len(forcings)} timesteps of {dt:.0f}s")

        results = []
        for idx, row in forcings.iterrows():
            code = self.run(dt, float(row["input_flux_meters_per_second"]), et_params_factory(row))

            if code == TshirtErrorCode.INVARIANT_VIOLATION:
                record = {name: np.nan for name in TshirtFluxes.__dataclass_fields__}
                record["total_discharge_meters_per_second"] = np.nan
            else:
                record = asdict(self.fluxes)
                record["total_discharge_meters_per_second"] = self.fluxes.total_discharge_meters_per_second

            record.update(
                soil_storage_meters=self.current_state.soil_storage_meters,
                groundwater_storage_meters=self.current_state.groundwater_storage_meters,
                nash_storage_meters=sum(self.current_state.nash_cascade_storage_meters),
                error_code=int(code),
            )
            results.append(record)

        self.logger.info(
            f"Model run complete. Mass balance failures: {self.mass_balance_failures}"
        )

        return pd.DataFrame(results, index=forcings.index)

    def _default_et_params(self, row: pd.Series) -> PdmParameters:
        return PdmParameters(
            max_storage_meters=self.params.max_soil_storage_meters,
            potential_et_meters=float(row.get("potential_et_meters", 0.0)),
        )

    def _validate_forcings(self, forcings: pd.DataFrame):
        """Validate input forcings DataFrame"""
        context = ErrorContext(component="TshirtModel", operation="run_period")
        if "input_flux_meters_per_second" not in forcings.columns:
            raise ForcingError("Missing required column: input_flux_meters_per_second", context)

        for col in ("input_flux_meters_per_second", "potential_et_meters"):
            if col in forcings.columns:
                if forcings[col].isna().any():
                    raise ForcingError(f"Missing values in {col}", context)
                if (forcings[col] < 0).any():
                    raise ForcingError(f"Negative values found in {col}", context)

    def reset(self, state: Optional[TshirtState] = None):
        """Reset model to initial or specified state"""
        state = state if state is not None else self.initial_state
        self.previous_state = state
        self.current_state = state
        self.fluxes = None
        self.time_seconds = 0.0
        self.mass_balance_failures = 0
        if isinstance(self.giuh, GiuhConvolution):
            self.giuh.reset()

        self.logger.info("Model reset to initial state")
