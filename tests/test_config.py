"""Unit tests for frailty_mm.config module.

Tests name parsing, validation and JSON persistence of path configurations.
"""
import pytest
import numpy as np

from frailty_mm.config import (
    DataTopology,
    FrailtyKind,
    PathConfig,
    PenaltyKind,
    SolverOptions,
    default_tune_grid,
)
from frailty_mm.exceptions import FrailtyConfigError


class TestNameParsing:
    """Tests for case-insensitive enum parsing."""

    @pytest.mark.parametrize("name,expected", [
        ("gamma", FrailtyKind.GAMMA),
        ("Gamma", FrailtyKind.GAMMA),
        ("LOGNORMAL", FrailtyKind.LOGNORMAL),
        ("InvGauss", FrailtyKind.INVGAUSS),
        ("pvf", FrailtyKind.PVF),
    ])
    def test_frailty_names(self, name, expected):
        """Frailty names are matched regardless of case."""
        assert FrailtyKind.parse(name) is expected

    def test_invalid_frailty(self):
        """Unknown frailty names raise a configuration error."""
        with pytest.raises(FrailtyConfigError, match="Invalid frailty specified"):
            FrailtyKind.parse("weibull")

    @pytest.mark.parametrize("name", ["lasso", "Mcp", "SCAD"])
    def test_penalty_names(self, name):
        assert PenaltyKind.parse(name).value == name.upper()

    def test_invalid_penalty(self):
        with pytest.raises(FrailtyConfigError, match="Invalid penalty"):
            PenaltyKind.parse("ridge")

    @pytest.mark.parametrize("name,expected", [
        ("cluster", DataTopology.CLUSTER),
        ("Multi-event", DataTopology.MULTI_EVENT),
        ("multi_event", DataTopology.MULTI_EVENT),
        ("RECURRENT", DataTopology.RECURRENT),
    ])
    def test_topology_names(self, name, expected):
        assert DataTopology.parse(name) is expected

    def test_invalid_topology(self):
        with pytest.raises(FrailtyConfigError):
            DataTopology.parse("panel")

    def test_config_error_is_value_error(self):
        """Configuration errors can be caught as ValueError."""
        assert issubclass(FrailtyConfigError, ValueError)


class TestPathConfig:
    """Tests for PathConfig validation."""

    def test_defaults(self):
        config = PathConfig()
        assert config.frailty is FrailtyKind.GAMMA
        assert config.penalty is PenaltyKind.LASSO
        assert config.gam is None
        assert config.tol == 1e-5
        assert config.maxit == 200
        assert config.warm_start

    def test_strings_are_normalized(self):
        config = PathConfig(frailty="LogNormal", penalty="scad")
        assert config.frailty is FrailtyKind.LOGNORMAL
        assert config.penalty is PenaltyKind.SCAD

    def test_pvf_requires_power(self):
        """PVF without a power parameter is rejected."""
        with pytest.raises(FrailtyConfigError, match="power"):
            PathConfig(frailty="pvf")

    @pytest.mark.parametrize("power", [0.0, 1.0, 1.5, -0.2])
    def test_pvf_power_range(self, power):
        with pytest.raises(FrailtyConfigError):
            PathConfig(frailty="pvf", power=power)

    def test_pvf_valid_power(self):
        assert PathConfig(frailty="PVF", power=0.3).power == 0.3

    @pytest.mark.parametrize("penalty,gam", [("MCP", 3.0), ("SCAD", 3.7)])
    def test_default_concavity(self, penalty, gam):
        assert PathConfig(penalty=penalty).gam == gam

    def test_concavity_override(self):
        assert PathConfig(penalty="MCP", gam=6).gam == 6.0

    @pytest.mark.parametrize("penalty,gam", [("MCP", 1.0), ("MCP", 0.5), ("SCAD", 2.0)])
    def test_invalid_concavity(self, penalty, gam):
        with pytest.raises(FrailtyConfigError):
            PathConfig(penalty=penalty, gam=gam)

    def test_tune_sorted(self):
        """Explicit tuning sequences are evaluated in increasing order."""
        config = PathConfig(tune=[0.5, 0.01, 0.1])
        assert config.tune == (0.01, 0.1, 0.5)
        np.testing.assert_array_equal(config.resolved_tune(), [0.01, 0.1, 0.5])

    @pytest.mark.parametrize("tune", [[], [-0.1, 0.2], [np.nan]])
    def test_invalid_tune(self, tune):
        with pytest.raises(FrailtyConfigError):
            PathConfig(tune=tune)

    @pytest.mark.parametrize("field,value", [
        ("tol", 0.0), ("tol", -1e-5), ("maxit", 0), ("burn_in_iter", 0), ("n_jobs", 0),
    ])
    def test_invalid_numbers(self, field, value):
        with pytest.raises(FrailtyConfigError):
            PathConfig(**{field: value})

    def test_solver_dict_is_converted(self):
        config = PathConfig(solver={"quadrature_nodes": 30})
        assert isinstance(config.solver, SolverOptions)
        assert config.solver.quadrature_nodes == 30


class TestDefaultGrid:
    """Tests for the default tuning grid."""

    def test_grid_values(self):
        """exp(seq(-5.5, 1, 0.25)) has 27 geometric steps."""
        grid = default_tune_grid()
        assert len(grid) == 27
        np.testing.assert_allclose(grid[0], np.exp(-5.5))
        np.testing.assert_allclose(grid[-1], np.e)
        np.testing.assert_allclose(grid[1:] / grid[:-1], np.exp(0.25))

    def test_resolved_default(self):
        np.testing.assert_array_equal(PathConfig().resolved_tune(), default_tune_grid())


class TestSolverOptions:
    """Tests for SolverOptions validation."""

    def test_theta_bounds(self):
        with pytest.raises(FrailtyConfigError):
            SolverOptions(theta_min=1.0, theta_max=0.5)

    def test_initial_theta_inside_bounds(self):
        with pytest.raises(FrailtyConfigError):
            SolverOptions(initial_theta=500.0)

    def test_quadrature_nodes(self):
        with pytest.raises(FrailtyConfigError):
            SolverOptions(quadrature_nodes=1)


class TestPersistence:
    """Tests for JSON save/load."""

    def test_round_trip(self, tmp_path):
        config = PathConfig(frailty="pvf", power=0.4, penalty="mcp", tune=[0.2, 0.1],
                            maxit=50, solver=SolverOptions(theta_max=20.0))
        path = tmp_path / "configs" / "pvf_mcp.json"

        config.save(str(path))
        loaded = PathConfig.load(str(path))

        assert path.exists()
        assert loaded.to_dict() == config.to_dict()
        assert loaded.frailty is FrailtyKind.PVF
        assert loaded.solver.theta_max == 20.0

    def test_to_dict_is_plain(self):
        data = PathConfig(penalty="SCAD").to_dict()
        assert data["frailty"] == "gamma"
        assert data["penalty"] == "SCAD"
        assert data["tune"] is None
        assert data["solver"]["quadrature_nodes"] == 20
