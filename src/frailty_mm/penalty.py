"""Penalty families and their local quadratic surrogates.

For a penalty p(|b|; lam) the local quadratic approximation at the current
coefficients b0 replaces p by

    p(|b0|) + w / 2 * (b^2 - b0^2),    w = p'(|b0|; lam) / |b0|

which touches the penalty at b0 and lies above it for every penalty that is
concave in |b|, so maximizing the surrogate objective never lowers the
penalized likelihood.
"""
from __future__ import annotations
from typing import Optional

import numpy as np

from frailty_mm.config import DEFAULT_GAMMA, PenaltyKind
from frailty_mm.exceptions import FrailtyConfigError


class Penalty:
    """Base penalty: stateless, evaluated per coefficient."""

    kind: PenaltyKind

    def __init__(self, gam: Optional[float] = None, abs_floor: float = 1e-8):
        self.gam = gam
        self.abs_floor = abs_floor

    def __repr__(self):
        return f"{type(self).__name__}(gam={self.gam})"

    def derivative(self, magnitude: np.ndarray, tune: float) -> np.ndarray:
        """Derivative p'(|b|; lam) with respect to |b|."""
        raise NotImplementedError

    def value(self, coef: np.ndarray, tune: float) -> np.ndarray:
        """Penalty p(|b|; lam) of each coefficient."""
        raise NotImplementedError

    def weights(self, coef: np.ndarray, tune: float) -> np.ndarray:
        """Diagonal local quadratic weights p'(|b|; lam) / |b|.

        Args:
            coef: Current coefficient vector
            tune: Tuning value lambda

        Returns:
            Non-negative weights, zero for every coefficient when lambda is 0
        """
        magnitude = np.abs(np.asarray(coef, dtype=float))
        if tune <= 0:
            return np.zeros_like(magnitude)
        return self.derivative(magnitude, tune) / np.maximum(magnitude, self.abs_floor)

    def total(self, coef: np.ndarray, tune: float) -> float:
        if tune <= 0:
            return 0.0
        return float(np.sum(self.value(coef, tune)))


class LassoPenalty(Penalty):
    kind = PenaltyKind.LASSO

    def derivative(self, magnitude, tune):
        return np.full_like(magnitude, tune)

    def value(self, coef, tune):
        return tune * np.abs(coef)


class MCPPenalty(Penalty):
    """Minimax concave penalty, flat beyond |b| = gam * lam."""

    kind = PenaltyKind.MCP

    def derivative(self, magnitude, tune):
        return np.maximum(tune - magnitude / self.gam, 0.0)

    def value(self, coef, tune):
        b = np.abs(coef)
        return np.where(
            b <= self.gam * tune,
            tune * b - b ** 2 / (2.0 * self.gam),
            0.5 * self.gam * tune ** 2,
        )


class SCADPenalty(Penalty):
    """Smoothly clipped absolute deviation penalty."""

    kind = PenaltyKind.SCAD

    def derivative(self, magnitude, tune):
        g = self.gam
        tail = np.maximum(g * tune - magnitude, 0.0) / ((g - 1.0) * tune)
        return tune * np.where(magnitude <= tune, 1.0, tail)

    def value(self, coef, tune):
        g = self.gam
        b = np.abs(coef)
        middle = (2.0 * g * tune * b - b ** 2 - tune ** 2) / (2.0 * (g - 1.0))
        return np.where(
            b <= tune,
            tune * b,
            np.where(b <= g * tune, middle, 0.5 * tune ** 2 * (g + 1.0)),
        )


def make_penalty(kind, gam: Optional[float] = None, abs_floor: float = 1e-8) -> Penalty:
    """Build a penalty from its case-insensitive name.

    Args:
        kind: PenaltyKind or name (LASSO, MCP, SCAD)
        gam: Concavity parameter, defaults to 3 (MCP) or 3.7 (SCAD)
        abs_floor: Floor on |b| in the quadratic weights

    Raises:
        FrailtyConfigError: If the name is unknown or gam is out of range

    Example:
        >>> make_penalty("scad")
        SCADPenalty(gam=3.7)
    """
    kind = PenaltyKind.parse(kind)
    if kind == PenaltyKind.LASSO:
        return LassoPenalty(None, abs_floor)
    if gam is None:
        gam = DEFAULT_GAMMA[kind]
    if kind == PenaltyKind.MCP:
        if gam <= 1.0:
            raise FrailtyConfigError(f"MCP requires gam > 1, got {gam}")
        return MCPPenalty(float(gam), abs_floor)
    if gam <= 2.0:
        raise FrailtyConfigError(f"SCAD requires gam > 2, got {gam}")
    return SCADPenalty(float(gam), abs_floor)
