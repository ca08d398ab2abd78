"""Configuration for frailty models and regularization paths.

This module provides the closed set of model choices and the options that
control a path run:
- FrailtyKind: frailty distribution (gamma, lognormal, invgauss, pvf)
- PenaltyKind: penalty family (LASSO, MCP, SCAD)
- DataTopology: data layout (Cluster, Multi-event, Recurrent)
- SolverOptions: numerical settings of the MM solver
- PathConfig: everything a regularization path run needs

Names are parsed once, when a configuration is built, so that invalid
choices fail before any computation starts.
"""
from __future__ import annotations
from enum import Enum
from dataclasses import dataclass, field, asdict
from typing import Optional, Sequence
import os
import json
import logging

import numpy as np

from frailty_mm.exceptions import FrailtyConfigError

logger = logging.getLogger(__name__)


class FrailtyKind(str, Enum):
    """Frailty distribution of the unobserved group effect.

    Attributes:
        GAMMA: Gamma frailty with mean 1 and variance theta
        LOGNORMAL: Log-normal frailty, log(w) ~ N(0, theta)
        INVGAUSS: Inverse Gaussian frailty with mean 1 and variance theta
        PVF: Power variance function frailty with a fixed power in (0, 1)
    """
    GAMMA = "gamma"
    LOGNORMAL = "lognormal"
    INVGAUSS = "invgauss"
    PVF = "pvf"

    @classmethod
    def parse(cls, value) -> "FrailtyKind":
        """Parse a frailty name case-insensitively.

        Raises:
            FrailtyConfigError: If the name is not a known frailty
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise FrailtyConfigError(
                f"Invalid frailty specified, please check the frailty input: {value!r}"
            ) from None


class PenaltyKind(str, Enum):
    """Penalty family used for variable selection."""
    LASSO = "LASSO"
    MCP = "MCP"
    SCAD = "SCAD"

    @classmethod
    def parse(cls, value) -> "PenaltyKind":
        """Parse a penalty name case-insensitively.

        Raises:
            FrailtyConfigError: If the name is not a known penalty
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise FrailtyConfigError(
                f"Invalid penalty specified, please check the penalty input: {value!r}"
            ) from None


class DataTopology(str, Enum):
    """Layout of the survival data.

    Attributes:
        CLUSTER: Observations share a frailty within a cluster
        MULTI_EVENT: Each subject experiences several event types, one
            baseline hazard per event type
        RECURRENT: Repeated events of one type per subject, counting process
            (start, stop] intervals
    """
    CLUSTER = "Cluster"
    MULTI_EVENT = "Multi-event"
    RECURRENT = "Recurrent"

    @classmethod
    def parse(cls, value) -> "DataTopology":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("_", "-").replace(" ", "-")
        aliases = {
            "cluster": cls.CLUSTER,
            "multi-event": cls.MULTI_EVENT,
            "multievent": cls.MULTI_EVENT,
            "multi": cls.MULTI_EVENT,
            "recurrent": cls.RECURRENT,
        }
        if key not in aliases:
            raise FrailtyConfigError(f"Invalid data topology: {value!r}")
        return aliases[key]


DEFAULT_GAMMA = {PenaltyKind.MCP: 3.0, PenaltyKind.SCAD: 3.7}


def default_tune_grid() -> np.ndarray:
    """Default tuning sequence exp(seq(-5.5, 1, 0.25)).

    Returns:
        Array of 27 geometrically spaced tuning values in increasing order

    Example:
        >>> grid = default_tune_grid()
        >>> len(grid), round(grid[0], 5), round(grid[-1], 5)
        (27, 0.00409, 2.71828)
    """
    return np.exp(np.linspace(-5.5, 1.0, 27))


@dataclass
class SolverOptions:
    """Numerical settings of the MM solver.

    Attributes:
        theta_min: Lower bound of the frailty dispersion search
        theta_max: Upper bound of the frailty dispersion search
        initial_theta: Starting dispersion when no initial values are given
        quadrature_nodes: Gauss-Hermite nodes for the log-normal frailty
        max_halvings: Maximum step halvings in the coefficient line search
        abs_floor: Floor on |beta| in the local quadratic penalty weights
    """
    theta_min: float = 1e-4
    theta_max: float = 100.0
    initial_theta: float = 1.0
    quadrature_nodes: int = 20
    max_halvings: int = 30
    abs_floor: float = 1e-8

    def __post_init__(self):
        """Validate numerical settings."""
        if not 0 < self.theta_min < self.theta_max:
            raise FrailtyConfigError(
                f"theta bounds must satisfy 0 < theta_min < theta_max, "
                f"got ({self.theta_min}, {self.theta_max})"
            )
        if not self.theta_min <= self.initial_theta <= self.theta_max:
            raise FrailtyConfigError(
                f"initial_theta must lie inside the theta bounds, got {self.initial_theta}"
            )
        if self.quadrature_nodes < 2:
            raise FrailtyConfigError("quadrature_nodes must be at least 2")
        if self.max_halvings < 1:
            raise FrailtyConfigError("max_halvings must be at least 1")
        if self.abs_floor <= 0:
            raise FrailtyConfigError("abs_floor must be positive")


@dataclass
class PathConfig:
    """Configuration of a penalized regularization path run.

    Attributes:
        frailty: Frailty distribution name, case-insensitive
        power: PVF power parameter in (0, 1), required iff frailty is pvf
        penalty: Penalty family name, case-insensitive
        gam: Concavity parameter. Defaults to 3 for MCP and 3.7 for SCAD,
            ignored for LASSO
        tune: Explicit tuning sequence (sorted ascending). None selects the
            default grid exp(seq(-5.5, 1, 0.25))
        tol: Convergence tolerance, also the zero threshold for coefficients
        maxit: Iteration budget per tuning value
        burn_in_iter: Unpenalized iterations used to seed the path
        warm_start: Start each tuning value from the previous solution. When
            False every tuning value starts from the burn-in fit and the path
            may run in parallel
        n_jobs: Parallel jobs when warm_start is False (-1 = all cores)
        solver: Numerical solver settings

    Example:
        >>> config = PathConfig(frailty="LogNormal", penalty="mcp")
        >>> config.frailty, config.penalty, config.gam
        (<FrailtyKind.LOGNORMAL: 'lognormal'>, <PenaltyKind.MCP: 'MCP'>, 3.0)
        >>> config.save("configs/lognormal_mcp.json")
        >>> loaded = PathConfig.load("configs/lognormal_mcp.json")
    """
    frailty: FrailtyKind = FrailtyKind.GAMMA
    power: Optional[float] = None
    penalty: PenaltyKind = PenaltyKind.LASSO
    gam: Optional[float] = None
    tune: Optional[Sequence[float]] = None
    tol: float = 1e-5
    maxit: int = 200
    burn_in_iter: int = 10
    warm_start: bool = True
    n_jobs: int = 1
    solver: SolverOptions = field(default_factory=SolverOptions)

    def __post_init__(self):
        """Normalize names and validate the configuration."""
        self.frailty = FrailtyKind.parse(self.frailty)
        self.penalty = PenaltyKind.parse(self.penalty)
        if isinstance(self.solver, dict):
            self.solver = SolverOptions(**self.solver)

        if self.frailty == FrailtyKind.PVF:
            if self.power is None:
                raise FrailtyConfigError("PVF frailty requires the power parameter")
            if not 0.0 < float(self.power) < 1.0:
                raise FrailtyConfigError(
                    f"PVF power must lie in (0, 1), got {self.power}"
                )
            self.power = float(self.power)

        if self.gam is None:
            self.gam = DEFAULT_GAMMA.get(self.penalty)
        if self.gam is not None:
            self.gam = float(self.gam)
            if self.penalty == PenaltyKind.MCP and self.gam <= 1.0:
                raise FrailtyConfigError(f"MCP requires gam > 1, got {self.gam}")
            if self.penalty == PenaltyKind.SCAD and self.gam <= 2.0:
                raise FrailtyConfigError(f"SCAD requires gam > 2, got {self.gam}")

        if self.tune is not None:
            tune = np.asarray(self.tune, dtype=float).ravel()
            if tune.size == 0:
                raise FrailtyConfigError("tune must contain at least one value")
            if not np.all(np.isfinite(tune)) or np.any(tune < 0):
                raise FrailtyConfigError("tune values must be finite and non-negative")
            self.tune = tuple(float(t) for t in np.sort(tune))

        if self.tol <= 0:
            raise FrailtyConfigError(f"tol must be positive, got {self.tol}")
        if self.maxit < 1:
            raise FrailtyConfigError(f"maxit must be at least 1, got {self.maxit}")
        if self.burn_in_iter < 1:
            raise FrailtyConfigError(
                f"burn_in_iter must be at least 1, got {self.burn_in_iter}"
            )
        if self.n_jobs == 0 or self.n_jobs < -1:
            raise FrailtyConfigError(f"n_jobs must be -1 or positive, got {self.n_jobs}")

    def resolved_tune(self) -> np.ndarray:
        """Tuning sequence to evaluate, in increasing order.

        Returns:
            The explicit ``tune`` values, or the default grid when unset
        """
        if self.tune is None:
            return default_tune_grid()
        return np.asarray(self.tune, dtype=float)

    def to_dict(self) -> dict:
        """Convert configuration to a JSON-serializable dictionary.

        Example:
            >>> PathConfig(penalty="SCAD").to_dict()["gam"]
            3.7
        """
        data = asdict(self)
        data["frailty"] = self.frailty.value
        data["penalty"] = self.penalty.value
        data["tune"] = None if self.tune is None else list(self.tune)
        return data

    def save(self, path: str) -> None:
        """Save configuration to a JSON file.

        Args:
            path: Path to output JSON file
        """
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Configuration saved to {path}")

    @classmethod
    def load(cls, path: str) -> "PathConfig":
        """Load configuration from a JSON file.

        Args:
            path: Path to input JSON file

        Returns:
            PathConfig instance, validated as on construction
        """
        with open(path) as f:
            data = json.load(f)

        solver = SolverOptions(**data.pop("solver", {}))
        return cls(solver=solver, **data)
