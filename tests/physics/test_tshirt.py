"""
Comprehensive tests for the tshirt model.
Tests conservation, storage bounds, error reporting and edge cases.
"""
import dataclasses

import numpy as np
import pandas as pd
import pytest

from tshirt.physics import (
    GiuhConvolution, PdmParameters, TshirtFluxes, TshirtModel,
    TshirtParameters, TshirtState, calc_soil_field_capacity_storage, run_timestep
)
from tshirt.core.config import MassBalanceConfig, TshirtConfig
from tshirt.core.exceptions import (
    ForcingError, InvariantViolationError, MassBalanceError, ParameterError
)
from tshirt.core.types import TshirtErrorCode


def _params(**overrides) -> TshirtParameters:
    values = dict(
        maxsmc=0.4, wltsmc=0.05, satdk=1e-6, satpsi=0.355, slope=1.0, b=4.05,
        multiplier=500.0, alpha_fc=0.33, Klf=1e-5, Kn=1e-5, nash_n=2,
        Cgw=1e-6, expon=3.0, max_groundwater_storage_meters=1.0,
    )
    values.update(overrides)
    return TshirtParameters(**values)


def _synthetic_forcing(n_steps: int, seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    raining = rng.random(n_steps) < 0.2
    flux = np.where(raining, rng.exponential(scale=5e-6, size=n_steps), 0.0)
    pet = np.full(n_steps, 1e-4)
    return pd.DataFrame(
        {"input_flux_meters_per_second": flux, "potential_et_meters": pet},
        index=pd.date_range("2020-01-01", periods=n_steps, freq="h"),
    )


class TestTshirtParameters:
    """Test suite for parameter construction"""

    def test_derived_values(self):
        params = _params()
        assert params.depth == 2.0
        assert params.max_soil_storage_meters == pytest.approx(0.8)
        assert params.max_lateral_flow == pytest.approx(1e-6 * 500.0 * 0.8)
        assert params.Cschaake == pytest.approx(1.5)

    def test_parameters_are_immutable(self):
        params = _params()
        with pytest.raises(dataclasses.FrozenInstanceError):
            params.maxsmc = 0.5

    @pytest.mark.parametrize("overrides", [
        {"nash_n": 0},
        {"maxsmc": 0.0},
        {"Klf": -1e-5},
        {"b": 1.0},
        {"satdk": 0.0},
        {"max_groundwater_storage_meters": 0.0},
        {"alpha_fc": 0.01},
    ])
    def test_invalid_parameters_rejected(self, overrides):
        with pytest.raises(ParameterError):
            _params(**overrides)

    def test_field_capacity_within_soil_capacity(self):
        params = _params()
        Sfc = calc_soil_field_capacity_storage(params)
        assert 0.0 < Sfc < params.max_soil_storage_meters

    def test_field_capacity_scales_with_maxsmc(self):
        ratio = (
            calc_soil_field_capacity_storage(_params(maxsmc=0.45))
            / calc_soil_field_capacity_storage(_params(maxsmc=0.3))
        )
        assert ratio == pytest.approx(1.5)

    def test_to_dict(self):
        record = _params().to_dict()
        assert record["nash_n"] == 2
        assert record["max_soil_storage_meters"] == pytest.approx(0.8)


class TestTshirtState:
    """Test suite for the state record"""

    def test_zeros(self):
        state = TshirtState.zeros(3)
        assert state.nash_cascade_storage_meters == (0.0, 0.0, 0.0)
        assert state.total_storage_meters == 0.0

    def test_flat_layout(self):
        state = TshirtState(0.4, 0.1, [0.2, 0.3])
        values = state.to_array()
        assert values.tolist() == [0.4, 0.1, 0.2, 0.3]
        assert TshirtState.from_array(values) == state


class TestRunTimestep:
    """Test suite for the pure timestep transition"""

    @pytest.fixture
    def params(self):
        return _params()

    @pytest.fixture
    def et_params(self, params):
        return PdmParameters(max_storage_meters=params.max_soil_storage_meters)

    @pytest.fixture
    def mass_balance(self):
        return MassBalanceConfig()

    def test_first_step_from_empty(self, params, et_params, mass_balance):
        """Partitioning conserves input and soil storage stays below capacity"""
        state = TshirtState.zeros(params.nash_n)
        new_state, fluxes = run_timestep(
            3600.0, params, state, 1e-5, GiuhConvolution.pass_through(), et_params,
            mass_balance=mass_balance
        )

        assert fluxes.direct_runoff_meters_per_second + fluxes.infiltration_meters_per_second == \
            pytest.approx(1e-5, rel=1e-12)
        assert new_state.soil_storage_meters <= 0.8
        # Below field capacity nothing drains
        assert new_state.soil_storage_meters == pytest.approx(fluxes.infiltration_meters_per_second * 3600.0)
        assert fluxes.soil_lateral_flow_meters_per_second == 0.0
        assert fluxes.soil_percolation_flow_meters_per_second == 0.0

    def test_state_is_not_mutated(self, params, et_params, mass_balance):
        state = TshirtState(0.7, 0.1, (0.5, 0.5))
        run_timestep(3600.0, params, state, 1e-5, GiuhConvolution.pass_through(), et_params,
                     mass_balance=mass_balance)
        assert state == TshirtState(0.7, 0.1, (0.5, 0.5))

    def test_zero_input_at_thresholds_is_idempotent(self, params, et_params, mass_balance):
        """No spontaneous flow when every storage sits at its activation threshold"""
        Sfc = calc_soil_field_capacity_storage(params)
        state = TshirtState(Sfc, 0.0, (Sfc, Sfc))
        new_state, fluxes = run_timestep(
            3600.0, params, state, 0.0, GiuhConvolution.pass_through(), et_params,
            mass_balance=mass_balance
        )

        assert new_state == state
        for value in dataclasses.asdict(fluxes).values():
            assert value == 0.0

    def test_wet_soil_drains(self, params, et_params, mass_balance):
        state = TshirtState(0.7, 0.1, (0.5, 0.5))
        new_state, fluxes = run_timestep(
            3600.0, params, state, 0.0, GiuhConvolution.pass_through(), et_params,
            mass_balance=mass_balance
        )

        assert fluxes.soil_percolation_flow_meters_per_second > 0
        assert fluxes.soil_lateral_flow_meters_per_second > 0
        assert fluxes.groundwater_flow_meters_per_second > 0
        assert fluxes.soil_percolation_flow_meters_per_second <= params.satdk
        assert new_state.soil_storage_meters < 0.7

    def test_soil_overflow_enters_nash_cascade(self, params, et_params, mass_balance):
        """Infiltration beyond soil capacity is carried into the first cascade stage"""
        def infiltrate_everything(dt, Cschaake, deficit, flux):
            return 0.0, flux

        dt = 3600.0
        state = TshirtState(0.79, 0.1, (0.0, 0.0))
        new_state, fluxes = run_timestep(
            dt, params, state, 1e-4, GiuhConvolution.pass_through(), et_params,
            partition=infiltrate_everything, mass_balance=mass_balance
        )

        assert new_state.soil_storage_meters == pytest.approx(params.max_soil_storage_meters)
        # The lateral outlet alone delivers at most Klf * dt
        assert new_state.nash_cascade_storage_meters[0] > params.Klf * dt
        assert new_state.nash_cascade_storage_meters[1] == 0.0
        assert fluxes.soil_lateral_flow_meters_per_second == 0.0

        gained = (
            new_state.soil_storage_meters - state.soil_storage_meters
            + sum(new_state.nash_cascade_storage_meters)
        )
        assert gained == pytest.approx(
            (fluxes.infiltration_meters_per_second - fluxes.soil_percolation_flow_meters_per_second) * dt,
            abs=1e-12
        )

    def test_groundwater_overflow_leaves_with_deep_flow(self, et_params, mass_balance):
        """A full groundwater store passes percolation straight through"""
        params = _params(Cgw=1e-9)
        state = TshirtState(0.7, params.max_groundwater_storage_meters, (0.0, 0.0))
        new_state, fluxes = run_timestep(
            3600.0, params, state, 0.0, GiuhConvolution.pass_through(), et_params,
            mass_balance=mass_balance
        )

        assert fluxes.soil_percolation_flow_meters_per_second > params.max_groundwater_velocity
        assert fluxes.groundwater_flow_meters_per_second == pytest.approx(
            fluxes.soil_percolation_flow_meters_per_second, rel=1e-9
        )
        assert new_state.groundwater_storage_meters == params.max_groundwater_storage_meters

    def test_et_limited_to_available_storage(self, params, mass_balance):
        state = TshirtState(0.01, 0.0, (0.0, 0.0))
        et_params = PdmParameters(max_storage_meters=0.01, potential_et_meters=1.0)
        new_state, fluxes = run_timestep(
            3600.0, params, state, 0.0, GiuhConvolution.pass_through(), et_params,
            mass_balance=mass_balance
        )

        assert fluxes.et_loss_meters == pytest.approx(0.01)
        assert new_state.soil_storage_meters == 0.0

    def test_surface_runoff_routed_through_giuh(self, params, et_params, mass_balance):
        giuh = GiuhConvolution([0.0, 1.0])
        state = TshirtState.zeros(params.nash_n)
        state, first = run_timestep(3600.0, params, state, 1e-4, giuh, et_params, mass_balance=mass_balance)
        _, second = run_timestep(3600.0, params, state, 0.0, giuh, et_params, mass_balance=mass_balance)

        assert first.direct_runoff_meters_per_second > 0
        assert first.surface_runoff_meters_per_second == 0.0
        assert second.surface_runoff_meters_per_second == pytest.approx(first.direct_runoff_meters_per_second)

    def test_storage_above_capacity_is_an_invariant_violation(self, params, et_params, mass_balance):
        state = TshirtState(0.9, 0.0, (0.0, 0.0))
        with pytest.raises(InvariantViolationError):
            run_timestep(3600.0, params, state, 1e-5, GiuhConvolution.pass_through(), et_params,
                         mass_balance=mass_balance)

    def test_wrong_cascade_length_is_an_invariant_violation(self, params, et_params, mass_balance):
        state = TshirtState(0.1, 0.0, (0.0,))
        with pytest.raises(InvariantViolationError):
            run_timestep(3600.0, params, state, 1e-5, GiuhConvolution.pass_through(), et_params,
                         mass_balance=mass_balance)

    def test_invalid_forcing(self, params, et_params, mass_balance):
        state = TshirtState.zeros(params.nash_n)
        with pytest.raises(ForcingError):
            run_timestep(0.0, params, state, 1e-5, GiuhConvolution.pass_through(), et_params,
                         mass_balance=mass_balance)
        with pytest.raises(ForcingError):
            run_timestep(3600.0, params, state, -1e-5, GiuhConvolution.pass_through(), et_params,
                         mass_balance=mass_balance)

    def test_leaky_partition_fails_mass_balance(self, params, et_params, mass_balance):
        """A collaborator that loses water is caught by the conservation check"""
        def leaky_partition(dt, Cschaake, deficit, flux):
            return 0.25 * flux, 0.5 * flux

        state = TshirtState.zeros(params.nash_n)
        with pytest.raises(MassBalanceError) as excinfo:
            run_timestep(3600.0, params, state, 1e-5, GiuhConvolution.pass_through(), et_params,
                         partition=leaky_partition, mass_balance=mass_balance)

        error = excinfo.value
        assert not error.report.is_balanced
        assert isinstance(error.state, TshirtState)
        assert isinstance(error.fluxes, TshirtFluxes)

    def test_mass_balance_check_can_be_disabled(self, params, et_params):
        def leaky_partition(dt, Cschaake, deficit, flux):
            return 0.25 * flux, 0.5 * flux

        run_timestep(
            3600.0, params, TshirtState.zeros(params.nash_n), 1e-5,
            GiuhConvolution.pass_through(), et_params,
            partition=leaky_partition, mass_balance=MassBalanceConfig(enabled=False)
        )


class TestTshirtModel:
    """Test suite for the stateful model wrapper"""

    @pytest.fixture
    def params(self):
        return _params()

    @pytest.fixture
    def config(self):
        return TshirtConfig()

    @pytest.fixture
    def model(self, params, config):
        return TshirtModel(params, TshirtState(0.7, 0.1, (0.5, 0.5)), config=config)

    def test_default_state_is_empty(self, params, config):
        model = TshirtModel(params, config=config)
        assert model.current_state == TshirtState.zeros(params.nash_n)
        assert model.fluxes is None

    def test_mismatched_initial_state_rejected(self, params, config):
        with pytest.raises(ParameterError):
            TshirtModel(params, TshirtState(0.0, 0.0, (0.0,)), config=config)

    def test_run_advances_state(self, model, params):
        initial = model.current_state
        et_params = PdmParameters(max_storage_meters=params.max_soil_storage_meters)

        assert model.run(3600.0, 1e-5, et_params) == TshirtErrorCode.NO_ERROR
        assert model.previous_state == initial
        assert model.current_state != initial
        assert model.time_seconds == 3600.0

        second = model.current_state
        model.run(3600.0, 0.0, et_params)
        assert model.previous_state == second

    def test_conservation_and_bounds_over_period(self, model, params):
        """Every step balances, stays within capacity and reports non-negative fluxes"""
        forcings = _synthetic_forcing(240)
        initial_storage = model.current_state.total_storage_meters
        results = model.run_period(forcings, dt=3600.0)

        assert len(results) == 240
        assert (results["error_code"] == 0).all()

        flux_columns = [
            "surface_runoff_meters_per_second", "groundwater_flow_meters_per_second",
            "soil_percolation_flow_meters_per_second", "soil_lateral_flow_meters_per_second",
            "et_loss_meters",
        ]
        assert (results[flux_columns] >= 0).all().all()
        assert (results["soil_storage_meters"] <= params.max_soil_storage_meters).all()
        assert (results["groundwater_storage_meters"] <= params.max_groundwater_storage_meters).all()
        assert (results[["soil_storage_meters", "groundwater_storage_meters", "nash_storage_meters"]] >= 0).all().all()

        # Whole-period budget; the pass-through GIUH holds no water
        dt = 3600.0
        total_in = forcings["input_flux_meters_per_second"].sum() * dt
        total_out = (
            results["surface_runoff_meters_per_second"].sum()
            + results["soil_lateral_flow_meters_per_second"].sum()
            + results["groundwater_flow_meters_per_second"].sum()
        ) * dt + results["et_loss_meters"].sum()
        delta_storage = model.current_state.total_storage_meters - initial_storage
        assert total_in == pytest.approx(total_out + delta_storage, abs=1e-9)

        channel = (
            results["surface_runoff_meters_per_second"]
            + results["soil_lateral_flow_meters_per_second"]
            + results["groundwater_flow_meters_per_second"]
        )
        np.testing.assert_allclose(results["total_discharge_meters_per_second"], channel, rtol=1e-12)

    def test_mass_balance_error_reported_not_raised(self, params, config):
        def leaky_partition(dt, Cschaake, deficit, flux):
            return 0.25 * flux, 0.5 * flux

        model = TshirtModel(params, partition=leaky_partition, config=config)
        et_params = PdmParameters(max_storage_meters=params.max_soil_storage_meters)

        assert model.run(3600.0, 1e-5, et_params) == TshirtErrorCode.MASS_BALANCE_ERROR
        assert model.current_state.soil_storage_meters > 0
        assert model.mass_balance_failures == 1

    def test_invariant_violation_reported_not_raised(self, params, config):
        model = TshirtModel(params, TshirtState(0.9, 0.0, (0.0, 0.0)), config=config)
        et_params = PdmParameters(max_storage_meters=params.max_soil_storage_meters)

        assert model.run(3600.0, 1e-5, et_params) == TshirtErrorCode.INVARIANT_VIOLATION
        assert model.current_state == TshirtState(0.9, 0.0, (0.0, 0.0))
        assert model.time_seconds == 0.0

    def test_collaborator_failure_propagates(self, params, config):
        def broken_et(soil_storage_meters, et_params):
            raise RuntimeError("ET parameters not loaded")

        model = TshirtModel(params, et_function=broken_et, config=config)
        with pytest.raises(RuntimeError, match="ET parameters not loaded"):
            model.run(3600.0, 1e-5, None)

    def test_run_period_validates_forcings(self, model):
        with pytest.raises(ForcingError):
            model.run_period(pd.DataFrame({"rain": [1.0]}), dt=3600.0)
        with pytest.raises(ForcingError):
            model.run_period(pd.DataFrame({"input_flux_meters_per_second": [-1.0]}), dt=3600.0)

    def test_reset(self, model, params):
        et_params = PdmParameters(max_storage_meters=params.max_soil_storage_meters)
        model.run(3600.0, 1e-5, et_params)
        model.reset()

        assert model.current_state == model.initial_state
        assert model.fluxes is None
        assert model.time_seconds == 0.0
