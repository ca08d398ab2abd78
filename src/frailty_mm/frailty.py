"""Frailty distributions and their per-group surrogate quantities.

Each frailty variant answers two questions for a group i with event count
D_i and covariate-weighted cumulative hazard A_i:

- the marginal likelihood contribution log E[w^D_i exp(-w A_i)]
- the posterior frailty mean E[w | D_i, A_i], the pseudo-frailty used as an
  offset in the coefficient and baseline hazard updates

Gamma and inverse Gaussian frailties have closed forms. The log-normal
frailty is integrated by adaptive Gauss-Hermite quadrature, and the PVF
frailty by an exact recursion over Laplace-transform derivatives, which
costs O(D^2) per group and is markedly slower than the closed forms.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from numpy.polynomial.hermite import hermgauss
from scipy import optimize, special

from frailty_mm.config import FrailtyKind
from frailty_mm.exceptions import FrailtyConfigError

_LOG_FLOOR = -1e100
_MEAN_BOUNDS = (1e-10, 1e10)


def _clamp_log(values: np.ndarray) -> np.ndarray:
    return np.nan_to_num(values, nan=_LOG_FLOOR, posinf=-_LOG_FLOOR, neginf=_LOG_FLOOR)


def _clamp_mean(values: np.ndarray) -> np.ndarray:
    return np.clip(np.nan_to_num(values, nan=1.0), *_MEAN_BOUNDS)


@dataclass(frozen=True)
class GroupStats:
    """Sufficient statistics of each frailty group.

    Attributes:
        events: Event count D_i of each group
        cumhaz: Cumulative hazard A_i = sum over rows of exp(x'b) H0(t)
    """
    events: np.ndarray
    cumhaz: np.ndarray


class Frailty:
    """Base class of the frailty variants.

    Subclasses implement ``log_marginal`` and ``expectation``. The default
    dispersion update is a bounded search on log(theta) that is accepted
    only when it improves the marginal likelihood.
    """

    kind: FrailtyKind

    def log_marginal(self, stats: GroupStats, theta: float) -> np.ndarray:
        """Per-group log E[w^D exp(-w A)]."""
        raise NotImplementedError

    def expectation(self, stats: GroupStats, theta: float) -> np.ndarray:
        """Per-group posterior frailty mean E[w | D, A]."""
        raise NotImplementedError

    def loglik_contribution(self, stats: GroupStats, theta: float) -> float:
        """Total marginal log-likelihood contribution of all groups."""
        return float(np.sum(self.log_marginal(stats, theta)))

    def _propose_theta(self, stats: GroupStats, theta: float,
                       bounds: Tuple[float, float]) -> float:
        result = optimize.minimize_scalar(
            lambda log_theta: -self.loglik_contribution(stats, np.exp(log_theta)),
            bounds=(np.log(bounds[0]), np.log(bounds[1])),
            method="bounded",
            options={"xatol": 1e-6},
        )
        return float(np.exp(result.x))

    def update_theta(self, stats: GroupStats, theta: float,
                     bounds: Tuple[float, float]) -> float:
        """Update the dispersion parameter given fixed group statistics.

        Args:
            stats: Current group statistics
            theta: Current dispersion
            bounds: Search interval (theta_min, theta_max)

        Returns:
            The proposed dispersion if it improves the marginal likelihood,
            otherwise ``theta`` unchanged
        """
        candidate = float(np.clip(self._propose_theta(stats, theta, bounds), *bounds))
        if not np.isfinite(candidate):
            return theta
        if self.loglik_contribution(stats, candidate) > self.loglik_contribution(stats, theta):
            return candidate
        return theta

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class GammaFrailty(Frailty):
    """Gamma frailty with shape and rate 1/theta (mean 1, variance theta)."""

    kind = FrailtyKind.GAMMA

    def log_marginal(self, stats, theta):
        k = 1.0 / theta
        d, a = stats.events, stats.cumhaz
        out = (special.gammaln(d + k) - special.gammaln(k)
               - d * np.log(k) - (d + k) * np.log1p(a / k))
        return _clamp_log(out)

    def expectation(self, stats, theta):
        k = 1.0 / theta
        return _clamp_mean((stats.events + k) / (stats.cumhaz + k))


def _log_bessel_k(order: np.ndarray, z: np.ndarray) -> np.ndarray:
    """log K_order(z), falling back to the small-z asymptote on overflow."""
    order = np.abs(order)
    with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
        out = np.log(special.kve(order, z)) - z
    bad = ~np.isfinite(out)
    if np.any(bad):
        nu = np.maximum(order[bad], 1e-12)
        out[bad] = special.gammaln(nu) + (nu - 1.0) * np.log(2.0) - nu * np.log(z[bad])
    return out


class InverseGaussianFrailty(Frailty):
    """Inverse Gaussian frailty with mean 1 and variance theta.

    The posterior of w given (D, A) is generalized inverse Gaussian with
    p = D - 1/2, a = 2A + 1/theta and b = 1/theta, so both the marginal and
    the posterior moments are ratios of modified Bessel functions.
    """

    kind = FrailtyKind.INVGAUSS

    @staticmethod
    def _gig(stats, theta):
        lam = 1.0 / theta
        p = stats.events - 0.5
        a = 2.0 * stats.cumhaz + lam
        b = np.full_like(a, lam)
        return p, a, b, np.sqrt(a * b)

    def log_marginal(self, stats, theta):
        p, a, b, z = self._gig(stats, theta)
        out = (-0.5 * np.log(2.0 * np.pi * theta) + 1.0 / theta + np.log(2.0)
               + 0.5 * p * np.log(b / a) + _log_bessel_k(p, z))
        return _clamp_log(out)

    def _moments(self, stats, theta):
        p, a, b, z = self._gig(stats, theta)
        log_kp = _log_bessel_k(p, z)
        mean = np.sqrt(b / a) * np.exp(_log_bessel_k(p + 1.0, z) - log_kp)
        inv_mean = np.sqrt(a / b) * np.exp(_log_bessel_k(p - 1.0, z) - log_kp)
        return _clamp_mean(mean), _clamp_mean(inv_mean)

    def expectation(self, stats, theta):
        return self._moments(stats, theta)[0]

    def _propose_theta(self, stats, theta, bounds):
        # EM step: theta = mean of E[(w - 1)^2 / w]
        mean, inv_mean = self._moments(stats, theta)
        return float(np.mean(mean - 2.0 + inv_mean))


class LogNormalFrailty(Frailty):
    """Log-normal frailty, log(w) ~ N(0, theta).

    The integrand exp(D u - A exp(u) - u^2 / (2 theta)) is log-concave in u,
    so quadrature nodes are centred at its mode and scaled by its curvature.

    Args:
        nodes: Number of Gauss-Hermite nodes
    """

    kind = FrailtyKind.LOGNORMAL

    def __init__(self, nodes: int = 20):
        self.nodes = nodes
        x, w = hermgauss(nodes)
        self._x = x
        self._log_w = np.log(w) + x ** 2

    def __repr__(self):
        return f"LogNormalFrailty(nodes={self.nodes})"

    @staticmethod
    def _mode(d, a, theta, max_iter=100):
        u = np.zeros_like(a)
        for _ in range(max_iter):
            grad = d - a * np.exp(u) - u / theta
            step = grad / (a * np.exp(u) + 1.0 / theta)
            u = np.clip(u + step, -50.0, 50.0)
            if np.max(np.abs(step)) < 1e-10:
                break
        return u

    def _log_terms(self, stats, theta):
        d, a = stats.events, stats.cumhaz
        mode = self._mode(d, a, theta)
        sigma = 1.0 / np.sqrt(a * np.exp(mode) + 1.0 / theta)
        u = mode[:, None] + np.sqrt(2.0) * sigma[:, None] * self._x[None, :]
        g = d[:, None] * u - a[:, None] * np.exp(u) - u ** 2 / (2.0 * theta)
        return u, self._log_w[None, :] + g, sigma

    def log_marginal(self, stats, theta):
        _, terms, sigma = self._log_terms(stats, theta)
        out = (np.log(np.sqrt(2.0) * sigma) + special.logsumexp(terms, axis=1)
               - 0.5 * np.log(2.0 * np.pi * theta))
        return _clamp_log(out)

    def expectation(self, stats, theta):
        u, terms, _ = self._log_terms(stats, theta)
        log_mean = special.logsumexp(terms + u, axis=1) - special.logsumexp(terms, axis=1)
        return _clamp_mean(np.exp(log_mean))


class PVFFrailty(Frailty):
    """Power variance function frailty with mean 1 and variance theta.

    Laplace transform exp(-(1-m)/(theta m) ((1 + theta s/(1-m))^m - 1)) for a
    fixed power m in (0, 1). The D-th derivative of the transform is built
    from the recursion G_n = sum_k C(n-1, k) kappa_{k+1} G_{n-1-k}, whose
    terms are all positive and are accumulated in log space.

    Args:
        power: PVF power parameter m in (0, 1)
    """

    kind = FrailtyKind.PVF

    def __init__(self, power: float):
        if power is None or not 0.0 < power < 1.0:
            raise FrailtyConfigError(f"PVF power must lie in (0, 1), got {power}")
        self.power = float(power)

    def __repr__(self):
        return f"PVFFrailty(power={self.power})"

    def _log_derivatives(self, stats, theta, depth):
        """log G_n for n = 0..depth, shape (a, depth + 1)."""
        m = self.power
        c = theta / (1.0 - m)
        log_z = np.log1p(c * stats.cumhaz)
        psi = (1.0 - m) / (theta * m) * np.expm1(m * log_z)

        j = np.arange(1, depth + 1)
        log_kappa = (special.gammaln(j - m) - special.gammaln(1.0 - m)
                     + (j - 1) * np.log(c))[None, :] + (m - j)[None, :] * log_z[:, None]

        log_g = np.empty((stats.cumhaz.shape[0], depth + 1))
        log_g[:, 0] = -psi
        for n in range(1, depth + 1):
            k = np.arange(n)
            log_binom = (special.gammaln(n) - special.gammaln(k + 1)
                         - special.gammaln(n - k))
            terms = log_binom[None, :] + log_kappa[:, k] + log_g[:, n - 1 - k]
            log_g[:, n] = special.logsumexp(terms, axis=1)
        return log_g

    def _evaluate(self, stats, theta, shift):
        d = stats.events.astype(int)
        log_g = self._log_derivatives(stats, theta, int(d.max()) + shift)
        rows = np.arange(d.shape[0])
        return log_g, rows, d

    def log_marginal(self, stats, theta):
        log_g, rows, d = self._evaluate(stats, theta, 0)
        return _clamp_log(log_g[rows, d])

    def expectation(self, stats, theta):
        log_g, rows, d = self._evaluate(stats, theta, 1)
        return _clamp_mean(np.exp(log_g[rows, d + 1] - log_g[rows, d]))


def make_frailty(kind, power: Optional[float] = None,
                 quadrature_nodes: int = 20) -> Frailty:
    """Build the frailty variant for a frailty name.

    Args:
        kind: FrailtyKind or its case-insensitive name
        power: PVF power parameter, required for the PVF frailty
        quadrature_nodes: Gauss-Hermite nodes for the log-normal frailty

    Returns:
        Frailty instance

    Raises:
        FrailtyConfigError: If the name is unknown or the PVF power is
            missing or outside (0, 1)

    Example:
        >>> make_frailty("InvGauss")
        InverseGaussianFrailty()
        >>> make_frailty("pvf", power=0.5)
        PVFFrailty(power=0.5)
    """
    kind = FrailtyKind.parse(kind)
    if kind == FrailtyKind.GAMMA:
        return GammaFrailty()
    if kind == FrailtyKind.LOGNORMAL:
        return LogNormalFrailty(quadrature_nodes)
    if kind == FrailtyKind.INVGAUSS:
        return InverseGaussianFrailty()
    if power is None:
        raise FrailtyConfigError("PVF frailty requires the power parameter")
    return PVFFrailty(power)
