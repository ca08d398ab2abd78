"""MM solver for one penalized frailty model fit.

One iteration, from coefficients b, baseline hazard h, dispersion theta and
posterior frailty means w:

1. Breslow-type hazard step h_m = d_m / sum over R_m of w_g(r) exp(x_r'b)
2. posterior frailty means at the new hazard
3. dispersion update, rejected when it does not improve the likelihood
4. one damped Newton step on the profile partial likelihood with offsets
   log(w) plus the local quadratic penalty surrogate, halving the step until
   the surrogate does not decrease, then a hazard refresh
5. observed log-likelihood and convergence check

Steps 1-4 each maximize or increase a minorizer of the observed
(penalized) log-likelihood, so its trace is non-decreasing.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional
import logging

import numpy as np
from scipy import linalg

from frailty_mm.config import SolverOptions
from frailty_mm.data import SurvivalData
from frailty_mm.frailty import Frailty, GroupStats, make_frailty
from frailty_mm.penalty import Penalty
from frailty_mm.risk_sets import RiskSets

logger = logging.getLogger(__name__)

_ETA_BOUND = 50.0
_TINY = 1e-300


@dataclass
class SolverState:
    """Mutable working state of the solver."""
    coef: np.ndarray
    theta: float
    hazard: np.ndarray

    def copy(self) -> "SolverState":
        return SolverState(np.array(self.coef, dtype=float), float(self.theta),
                           np.array(self.hazard, dtype=float))


@dataclass(frozen=True)
class FitRecord:
    """Result of one ``solve`` call.

    Attributes:
        coef: Fitted coefficients, shape (p,)
        theta: Fitted frailty dispersion
        hazard: Baseline hazard jumps on the event-time grid, shape (M,)
        frailty: Posterior frailty mean of each group, shape (a,)
        loglik: Observed log-likelihood at the last iterate
        objective: Penalized objective loglik - n * sum p(|b|; lam)
        n_iter: Iterations performed
        converged: Whether the change in coefficients and theta fell below tol
        loglik_trace: Log-likelihood at the start and after every iteration
        objective_trace: Penalized objective at the same points
    """
    coef: np.ndarray
    theta: float
    hazard: np.ndarray
    frailty: np.ndarray
    loglik: float
    objective: float
    n_iter: int
    converged: bool
    loglik_trace: np.ndarray
    objective_trace: np.ndarray

    @property
    def state(self) -> SolverState:
        """Copy of the fitted values, usable as initial values."""
        return SolverState(self.coef, self.theta, self.hazard).copy()


def _linear_predictor(X: np.ndarray, coef: np.ndarray) -> np.ndarray:
    return np.clip(X @ coef, -_ETA_BOUND, _ETA_BOUND)


def _breslow(rs: RiskSets, risk: np.ndarray) -> np.ndarray:
    return rs.deaths / np.maximum(rs.at_risk_sum(risk), _TINY)


def _group_stats(rs: RiskSets, eta: np.ndarray, hazard: np.ndarray) -> GroupStats:
    cumhaz = rs.group_sum(np.exp(eta) * rs.cumulative(hazard))
    return GroupStats(events=rs.events_per_group, cumhaz=cumhaz)


def _loglik(rs, frailty, eta, hazard, theta, stats) -> float:
    jumps = np.maximum(hazard[rs.event_index], _TINY)
    return float(np.sum(np.log(jumps) + eta[rs.status])
                 + frailty.loglik_contribution(stats, theta))


def _profile_objective(rs, X, coef, offset, pen_weights, scale) -> float:
    """Profile partial log-likelihood with frailty offsets, minus the surrogate."""
    eta = _linear_predictor(X, coef)
    at_risk = np.maximum(rs.at_risk_sum(offset * np.exp(eta)), _TINY)
    return float(np.sum(eta[rs.status]) - rs.deaths @ np.log(at_risk)
                 - 0.5 * scale * np.sum(pen_weights * coef ** 2))


def _coefficient_step(rs, X, coef, offset, pen_weights, scale, max_halvings):
    """One damped Newton step; returns the new coefficients."""
    eta = _linear_predictor(X, coef)
    w = offset * np.exp(eta)
    at_risk = np.maximum(rs.at_risk_sum(w), _TINY)
    first = rs.at_risk_sum(w[:, None] * X)
    cumhaz = rs.cumulative(rs.deaths / at_risk)

    grad = (X[rs.status].sum(axis=0) - X.T @ (w * cumhaz)
            - scale * pen_weights * coef)
    info = ((X * (w * cumhaz)[:, None]).T @ X
            - (first * (rs.deaths / at_risk ** 2)[:, None]).T @ first
            + scale * np.diag(pen_weights))

    try:
        direction = linalg.solve(info, grad, assume_a="pos")
    except (linalg.LinAlgError, ValueError):
        direction = np.linalg.lstsq(info, grad, rcond=None)[0]

    current = _profile_objective(rs, X, coef, offset, pen_weights, scale)
    step = 1.0
    for _ in range(max_halvings):
        candidate = coef + step * direction
        if _profile_objective(rs, X, candidate, offset, pen_weights, scale) >= current:
            return candidate
        step *= 0.5
    return coef


def _nelson_aalen(rs: RiskSets) -> np.ndarray:
    return _breslow(rs, np.ones(rs.n_obs))


def solve(
    data: SurvivalData,
    frailty: Frailty,
    penalty: Optional[Penalty] = None,
    tune: float = 0.0,
    init: Optional[SolverState] = None,
    tol: float = 1e-5,
    maxit: int = 200,
    options: Optional[SolverOptions] = None,
    burn_in_iter: int = 10,
) -> FitRecord:
    """Fit a (penalized) frailty model by MM iterations.

    Args:
        data: Survival data; its topology selects the risk-set semantics
        frailty: Frailty variant, or its name for non-PVF frailties
        penalty: Penalty family. None fits the unpenalized model
        tune: Tuning value lambda of the penalty
        init: Initial coefficients, dispersion and hazard. Defaults to zero
            coefficients, ``options.initial_theta`` and the Nelson-Aalen
            hazard; a penalized fit without initial values is first seeded by
            ``burn_in_iter`` unpenalized iterations
        tol: Convergence tolerance on the largest change in coefficients and
            theta, also the threshold below which penalized coefficients are
            set to zero
        maxit: Iteration budget
        options: Numerical solver settings
        burn_in_iter: Seeding iterations for penalized fits without ``init``

    Returns:
        FitRecord of the last iterate. Reaching ``maxit`` is reported through
        ``converged=False``, never raised.

    Example:
        >>> record = solve(data, make_frailty("gamma"), maxit=50)
        >>> record.converged, record.coef.round(2)
        (True, array([ 0.98, -0.51,  0.02]))
    """
    options = options or SolverOptions()
    if not isinstance(frailty, Frailty):
        frailty = make_frailty(frailty, quadrature_nodes=options.quadrature_nodes)
    rs = data.risk_sets
    X = data.X
    scale = float(data.sample_size)
    bounds = (options.theta_min, options.theta_max)
    penalized = penalty is not None and tune > 0

    if init is None:
        if penalized:
            logger.debug(f"Seeding penalized fit with {burn_in_iter} unpenalized iterations")
            init = solve(data, frailty, None, 0.0, None, tol, burn_in_iter, options).state
        else:
            init = SolverState(np.zeros(data.n_covariates), options.initial_theta,
                               _nelson_aalen(rs))
    state = init.copy()
    if state.coef.shape != (data.n_covariates,) or state.hazard.shape != (rs.n_times,):
        raise ValueError("initial values do not match the data dimensions")
    state.theta = float(np.clip(state.theta, *bounds))

    def penalty_total(coef):
        return penalty.total(coef, tune) if penalized else 0.0

    eta = _linear_predictor(X, state.coef)
    stats = _group_stats(rs, eta, state.hazard)
    omega = frailty.expectation(stats, state.theta)
    loglik = _loglik(rs, frailty, eta, state.hazard, state.theta, stats)
    loglik_trace: List[float] = [loglik]
    objective_trace: List[float] = [loglik - scale * penalty_total(state.coef)]

    converged = False
    n_iter = 0
    for n_iter in range(1, maxit + 1):
        previous_coef, previous_theta = state.coef.copy(), state.theta

        state.hazard = _breslow(rs, omega[rs.group] * np.exp(eta))
        stats = _group_stats(rs, eta, state.hazard)
        state.theta = frailty.update_theta(stats, state.theta, bounds)
        omega = frailty.expectation(stats, state.theta)

        offset = omega[rs.group]
        pen_weights = (penalty.weights(state.coef, tune) if penalized
                       else np.zeros(data.n_covariates))
        state.coef = _coefficient_step(rs, X, state.coef, offset, pen_weights,
                                       scale, options.max_halvings)
        if penalized:
            state.coef[np.abs(state.coef) < tol] = 0.0
        eta = _linear_predictor(X, state.coef)
        state.hazard = _breslow(rs, offset * np.exp(eta))

        stats = _group_stats(rs, eta, state.hazard)
        omega = frailty.expectation(stats, state.theta)
        loglik = _loglik(rs, frailty, eta, state.hazard, state.theta, stats)
        loglik_trace.append(loglik)
        objective_trace.append(loglik - scale * penalty_total(state.coef))

        change = max(np.max(np.abs(state.coef - previous_coef), initial=0.0),
                     abs(state.theta - previous_theta))
        if change < tol:
            converged = True
            break

    if not converged:
        logger.debug(f"{frailty!r} fit stopped at maxit={maxit} (tune={tune:.4g})")

    return FitRecord(
        coef=state.coef,
        theta=state.theta,
        hazard=state.hazard,
        frailty=omega,
        loglik=loglik,
        objective=objective_trace[-1],
        n_iter=n_iter,
        converged=converged,
        loglik_trace=np.asarray(loglik_trace),
        objective_trace=np.asarray(objective_trace),
    )
