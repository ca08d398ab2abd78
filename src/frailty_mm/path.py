"""Regularization path driver.

``run_path`` fits the penalized frailty model over an increasing sequence
of tuning values. Each fit starts from the previous one (warm start), BIC

    -2 loglik + max(1, log(log(p + 1))) (dof + 1) log(n)

scores every fit, and the path stops once every coefficient is zero. The
unpenalized burn-in fit is kept in an immutable ``SafeInit``; with more
covariates than observations the warm start is reset to it after every
tuning value.

Example:
    >>> from frailty_mm.path import run_path
    >>> result = run_path(data, frailty="gamma", penalty="MCP")
    >>> result.tune_min, result.selected()
    (0.0498, array([0, 1, 2, 3, 4]))
"""
from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple
import logging
import warnings

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from frailty_mm.config import FrailtyKind, PathConfig
from frailty_mm.data import SurvivalData
from frailty_mm.exceptions import ConvergenceWarning
from frailty_mm.frailty import make_frailty
from frailty_mm.logging_config import log_performance
from frailty_mm.penalty import make_penalty
from frailty_mm.solver import FitRecord, SolverState, solve
from frailty_mm.timing import Timer, log_execution_time

logger = logging.getLogger(__name__)

# Burn-in coefficients at or below this magnitude count as a collapsed fit
DEGENERATE_COEF = 1e-6

ProgressCallback = Callable[[int, int, "PathEntry"], None]


def _frozen(a) -> np.ndarray:
    a = np.array(a, dtype=float, copy=True)
    a.setflags(write=False)
    return a


@dataclass(frozen=True)
class SafeInit:
    """Unpenalized burn-in fit used to seed and reset the path.

    Attributes:
        coef: Burn-in coefficients
        theta: Burn-in frailty dispersion
        hazard: Burn-in baseline hazard jumps
        frailty: Frailty distribution the burn-in was fitted under
    """
    coef: np.ndarray
    theta: float
    hazard: np.ndarray
    frailty: FrailtyKind = FrailtyKind.GAMMA

    def __post_init__(self):
        object.__setattr__(self, "coef", _frozen(self.coef))
        object.__setattr__(self, "hazard", _frozen(self.hazard))
        object.__setattr__(self, "theta", float(self.theta))

    def as_state(self) -> SolverState:
        """Fresh mutable working state with the burn-in values."""
        return SolverState(self.coef, self.theta, self.hazard).copy()


@dataclass(frozen=True)
class PathEntry:
    """Fit at one tuning value."""
    tune: float
    coef: np.ndarray
    theta: float
    hazard: np.ndarray
    loglik: float
    bic: float
    dof: int
    converged: bool
    n_iter: int


@dataclass(frozen=True)
class FitResult:
    """Regularization path of a penalized frailty model.

    Column k of ``coef`` and ``hazard`` and entry k of the vectors belong
    to ``tune[k]``. Only evaluated tuning values are included, so an early
    stop yields fewer columns than the requested grid.

    Attributes:
        tune: Evaluated tuning values, increasing
        coef: Coefficient matrix, shape (p, K)
        theta: Frailty dispersion per tuning value
        hazard: Baseline hazard jumps per tuning value, shape (M, K)
        loglik: Log-likelihood per tuning value
        bic: BIC per tuning value
        dof: Number of nonzero coefficients per tuning value
        converged: Convergence flag per tuning value
        n_iter: MM iterations per tuning value
        tune_min: Tuning value with the smallest BIC
        index_min: Position of ``tune_min`` in ``tune``
        safe_init: Burn-in fit that seeded the path
        data: Fitted data (time, status, X, ids and the event-time grid)
        config: Configuration of the run
    """
    tune: np.ndarray
    coef: np.ndarray
    theta: np.ndarray
    hazard: np.ndarray
    loglik: np.ndarray
    bic: np.ndarray
    dof: np.ndarray
    converged: np.ndarray
    n_iter: np.ndarray
    tune_min: float
    index_min: int
    safe_init: SafeInit
    data: SurvivalData
    config: PathConfig

    def __post_init__(self):
        for name in ("tune", "coef", "theta", "hazard", "loglik", "bic",
                     "dof", "converged", "n_iter"):
            getattr(self, name).setflags(write=False)

    @property
    def topology(self) -> str:
        """Data layout label: Cluster, Multi-event or Recurrent."""
        return self.data.topology.value

    @property
    def event_times(self) -> np.ndarray:
        return self.data.risk_sets.event_times

    @property
    def n_obs(self) -> int:
        return self.data.n_obs

    @property
    def n_groups(self) -> int:
        return self.data.n_groups

    def __len__(self) -> int:
        return int(self.tune.shape[0])

    @property
    def entries(self) -> Tuple[PathEntry, ...]:
        """Per-tuning-value records in increasing-tuning order."""
        return tuple(_entry(self, k) for k in range(len(self)))

    def _index(self, tune: Optional[float]) -> int:
        if tune is None:
            return self.index_min
        return int(np.argmin(np.abs(self.tune - tune)))

    def coef_at(self, tune: Optional[float] = None) -> np.ndarray:
        """Coefficients at the BIC-minimizing or the nearest evaluated tune."""
        return self.coef[:, self._index(tune)].copy()

    def selected(self, tune: Optional[float] = None) -> np.ndarray:
        """Indices of the nonzero coefficients at a tuning value."""
        return np.flatnonzero(np.abs(self.coef_at(tune)) > self.config.tol)

    def coef_frame(self) -> pd.DataFrame:
        """Coefficient path as a DataFrame, one column per tuning value."""
        return pd.DataFrame(self.coef, index=self.data.coef_names,
                            columns=pd.Index(self.tune, name="tune"))

    def summary(self) -> pd.DataFrame:
        """One row per tuning value with fit statistics."""
        return pd.DataFrame({
            "tune": self.tune,
            "dof": self.dof,
            "loglik": self.loglik,
            "bic": self.bic,
            "theta": self.theta,
            "n_iter": self.n_iter,
            "converged": self.converged,
            "selected": np.arange(len(self)) == self.index_min,
        })


def _entry(result: FitResult, k: int) -> PathEntry:
    return PathEntry(
        tune=float(result.tune[k]),
        coef=result.coef[:, k],
        theta=float(result.theta[k]),
        hazard=result.hazard[:, k],
        loglik=float(result.loglik[k]),
        bic=float(result.bic[k]),
        dof=int(result.dof[k]),
        converged=bool(result.converged[k]),
        n_iter=int(result.n_iter[k]),
    )


def bic(loglik: float, dof: int, n_covariates: int, sample_size: int) -> float:
    """Modified BIC with a dimension-dependent factor.

    Example:
        >>> round(bic(-100.0, 3, 50, 200), 1)
        229.0
    """
    factor = max(1.0, np.log(np.log(n_covariates + 1)))
    return float(-2.0 * loglik + factor * (dof + 1) * np.log(sample_size))


@log_execution_time()
def burn_in(data: SurvivalData, config: PathConfig) -> SafeInit:
    """Unpenalized burn-in fit that seeds the path.

    The burn-in runs ``config.burn_in_iter`` Gamma-frailty iterations. If
    every coefficient collapses to zero, it is re-run under the requested
    frailty distribution.
    """
    record = solve(data, make_frailty(FrailtyKind.GAMMA), None, 0.0, None,
                   config.tol, config.burn_in_iter, config.solver)
    kind = FrailtyKind.GAMMA

    if config.frailty != FrailtyKind.GAMMA and np.all(np.abs(record.coef) <= DEGENERATE_COEF):
        logger.debug(f"Gamma burn-in collapsed to zero, re-running under {config.frailty.value}")
        frailty = make_frailty(config.frailty, config.power, config.solver.quadrature_nodes)
        record = solve(data, frailty, None, 0.0, None,
                       config.tol, config.burn_in_iter, config.solver)
        kind = config.frailty

    return SafeInit(record.coef, record.theta, record.hazard, kind)


def run_path(
    data: SurvivalData,
    config: Optional[PathConfig] = None,
    *,
    progress: Optional[ProgressCallback] = None,
    **options,
) -> FitResult:
    """Fit the penalized frailty model over a tuning sequence.

    Args:
        data: Survival data
        config: Path configuration. Keyword ``options`` build one (or
            override fields of the given one), e.g. ``frailty="lognormal"``
        progress: Optional callback ``progress(step, total, entry)`` called
            after every evaluated tuning value
        **options: PathConfig fields

    Returns:
        FitResult with every evaluated tuning value and the BIC choice

    Raises:
        FrailtyConfigError: If the configuration is invalid
    """
    if config is None:
        config = PathConfig(**options)
    elif options:
        config = replace(config, **options)

    frailty = make_frailty(config.frailty, config.power, config.solver.quadrature_nodes)
    penalty = make_penalty(config.penalty, config.gam, config.solver.abs_floor)
    tune = config.resolved_tune()
    n_tune = tune.shape[0]
    p, n_obs = data.n_covariates, data.n_obs
    reset_each_step = p > n_obs

    coef = np.zeros((p, n_tune))
    theta = np.zeros(n_tune)
    hazard = np.zeros((data.risk_sets.n_times, n_tune))
    loglik = np.zeros(n_tune)
    bics = np.zeros(n_tune)
    dof = np.zeros(n_tune, dtype=int)
    converged = np.zeros(n_tune, dtype=bool)
    n_iter = np.zeros(n_tune, dtype=int)

    def store(z: int, record: FitRecord) -> PathEntry:
        coef[:, z] = record.coef
        theta[z] = record.theta
        hazard[:, z] = record.hazard
        loglik[z] = record.loglik
        dof[z] = int(np.sum(np.abs(record.coef) > config.tol))
        bics[z] = bic(record.loglik, dof[z], p, data.sample_size)
        converged[z] = record.converged
        n_iter[z] = record.n_iter
        return PathEntry(float(tune[z]), coef[:, z].copy(), theta[z], hazard[:, z].copy(),
                         loglik[z], bics[z], int(dof[z]), bool(converged[z]), int(n_iter[z]))

    def fully_sparse(record: FitRecord) -> bool:
        return float(np.sum(np.abs(record.coef))) < config.tol

    fit_args = (config.tol, config.maxit, config.solver)
    description = f"{config.penalty.value} path ({config.frailty.value} frailty, {data.topology.value})"
    with Timer(logger, description, n_tune=n_tune):
        safe_init = burn_in(data, config)
        if reset_each_step:
            logger.debug(f"p={p} > N={n_obs}: warm starts reset to the burn-in fit")

        n_eval = 0
        if config.warm_start:
            state = safe_init.as_state()
            for z, lam in enumerate(tune):
                record = solve(data, frailty, penalty, float(lam), state, *fit_args)
                entry = store(z, record)
                n_eval = z + 1
                if progress is not None:
                    progress(n_eval, n_tune, entry)
                if fully_sparse(record):
                    break
                state = safe_init.as_state() if reset_each_step else record.state
        else:
            records: List[FitRecord] = Parallel(n_jobs=config.n_jobs)(
                delayed(solve)(data, frailty, penalty, float(lam), safe_init.as_state(), *fit_args)
                for lam in tune
            )
            for z, record in enumerate(records):
                entry = store(z, record)
                n_eval = z + 1
                if progress is not None:
                    progress(n_eval, n_tune, entry)
                if fully_sparse(record):
                    break

    if n_eval < n_tune:
        logger.info(f"All coefficients are zero at tune={tune[n_eval - 1]:.4g}; "
                    f"path stopped after {n_eval} of {n_tune} tuning values")

    not_converged = np.flatnonzero(~converged[:n_eval])
    if not_converged.size:
        warnings.warn(
            f"MM iterations did not converge within maxit={config.maxit} for "
            f"{not_converged.size} of {n_eval} tuning values "
            f"(tune={', '.join(f'{t:.4g}' for t in tune[not_converged])})",
            ConvergenceWarning,
            stacklevel=2,
        )

    index_min = int(np.argmin(bics[:n_eval]))
    result = FitResult(
        tune=tune[:n_eval].copy(),
        coef=coef[:, :n_eval].copy(),
        theta=theta[:n_eval].copy(),
        hazard=hazard[:, :n_eval].copy(),
        loglik=loglik[:n_eval].copy(),
        bic=bics[:n_eval].copy(),
        dof=dof[:n_eval].copy(),
        converged=converged[:n_eval].copy(),
        n_iter=n_iter[:n_eval].copy(),
        tune_min=float(tune[index_min]),
        index_min=index_min,
        safe_init=safe_init,
        data=data,
        config=config,
    )
    log_performance(
        logger,
        "Regularization path completed",
        frailty=config.frailty.value,
        penalty=config.penalty.value,
        n_tune=n_eval,
        tune_min=round(result.tune_min, 6),
        dof_min=int(result.dof[index_min]),
        bic_min=round(float(result.bic[index_min]), 4),
    )
    return result
