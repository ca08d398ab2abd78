"""Synthetic frailty survival data for the three data layouts.

Event times follow a proportional hazards model with a constant baseline
hazard, hazard = rate * w * exp(x'b), where the frailty w is shared within a
cluster or subject. Covariates are independent standard normal.

Example:
    >>> coef = np.r_[np.ones(5), np.zeros(45)]
    >>> df = simulate_cluster(coef, n_clusters=100, cluster_size=5, seed=1)
    >>> data = prepare_cluster(df, "time", "status", "cluster")
"""
from __future__ import annotations
from typing import Optional

import numpy as np
import pandas as pd

from frailty_mm.config import FrailtyKind
from frailty_mm.exceptions import FrailtyConfigError


def draw_frailty(kind, theta: float, size: int, rng: np.random.Generator) -> np.ndarray:
    """Draw frailties with mean 1 (median 1 for log-normal) and dispersion theta.

    Raises:
        FrailtyConfigError: For the PVF frailty, which has no sampler here
    """
    kind = FrailtyKind.parse(kind)
    if theta <= 0:
        raise FrailtyConfigError(f"theta must be positive, got {theta}")
    if kind == FrailtyKind.GAMMA:
        return rng.gamma(shape=1.0 / theta, scale=theta, size=size)
    if kind == FrailtyKind.LOGNORMAL:
        return np.exp(rng.normal(0.0, np.sqrt(theta), size=size))
    if kind == FrailtyKind.INVGAUSS:
        return rng.wald(1.0, 1.0 / theta, size=size)
    raise FrailtyConfigError("simulation is not available for the PVF frailty")


def _covariates(n: int, p: int, rng) -> pd.DataFrame:
    return pd.DataFrame(rng.standard_normal((n, p)),
                        columns=[f"x{j + 1}" for j in range(p)])


def _censor(event_time, censor_rate, rng):
    censor_time = rng.exponential(1.0 / censor_rate, size=event_time.shape[0])
    time = np.minimum(event_time, censor_time)
    return time, (event_time <= censor_time).astype(int)


def simulate_cluster(
    coef,
    n_clusters: int = 50,
    cluster_size: int = 5,
    frailty: str = "gamma",
    theta: float = 0.5,
    baseline_rate: float = 1.0,
    censor_rate: float = 0.3,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Simulate clustered survival data.

    Args:
        coef: True regression coefficients, length p
        n_clusters: Number of clusters a
        cluster_size: Observations per cluster
        frailty: Frailty distribution (gamma, lognormal, invgauss)
        theta: Frailty dispersion
        baseline_rate: Constant baseline hazard
        censor_rate: Rate of the exponential censoring times
        seed: Random seed

    Returns:
        DataFrame with columns time, status, cluster, x1..xp
    """
    rng = np.random.default_rng(seed)
    coef = np.asarray(coef, dtype=float)
    n = n_clusters * cluster_size
    cluster = np.repeat(np.arange(n_clusters), cluster_size)
    w = draw_frailty(frailty, theta, n_clusters, rng)[cluster]

    X = _covariates(n, coef.shape[0], rng)
    rate = baseline_rate * w * np.exp(X.to_numpy() @ coef)
    time, status = _censor(rng.exponential(1.0 / rate), censor_rate, rng)

    df = pd.DataFrame({"time": time, "status": status, "cluster": cluster})
    return pd.concat([df, X], axis=1)


def simulate_multi_event(
    coef,
    n_subjects: int = 100,
    n_event_types: int = 2,
    frailty: str = "gamma",
    theta: float = 0.5,
    baseline_rates=None,
    censor_rate: float = 0.3,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Simulate multi-event data, one row per subject and event type.

    Rows are ordered by event type, with subjects in the same order inside
    every event-type block.

    Args:
        coef: True regression coefficients, length p
        n_subjects: Number of subjects b
        n_event_types: Event types per subject
        frailty: Frailty distribution (gamma, lognormal, invgauss)
        theta: Frailty dispersion
        baseline_rates: Constant baseline hazard of each event type
        censor_rate: Rate of the exponential censoring times
        seed: Random seed

    Returns:
        DataFrame with columns time, status, subject, event, x1..xp
    """
    rng = np.random.default_rng(seed)
    coef = np.asarray(coef, dtype=float)
    if baseline_rates is None:
        baseline_rates = np.linspace(0.5, 1.5, n_event_types)
    baseline_rates = np.asarray(baseline_rates, dtype=float)

    n = n_subjects * n_event_types
    subject = np.tile(np.arange(n_subjects), n_event_types)
    event = np.repeat(np.arange(1, n_event_types + 1), n_subjects)
    w = draw_frailty(frailty, theta, n_subjects, rng)[subject]

    X = _covariates(n, coef.shape[0], rng)
    rate = baseline_rates[event - 1] * w * np.exp(X.to_numpy() @ coef)
    time, status = _censor(rng.exponential(1.0 / rate), censor_rate, rng)

    df = pd.DataFrame({"time": time, "status": status, "subject": subject, "event": event})
    return pd.concat([df, X], axis=1)


def simulate_recurrent(
    coef,
    n_subjects: int = 100,
    frailty: str = "gamma",
    theta: float = 0.5,
    baseline_rate: float = 1.0,
    follow_up: float = 2.0,
    max_events: int = 10,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Simulate recurrent event data in counting process form.

    Each subject is followed for a uniform time in (0, follow_up] with gap
    times drawn from its own hazard. The last interval of every subject is
    censored at the end of follow-up.

    Args:
        coef: True regression coefficients, length p
        n_subjects: Number of subjects a
        frailty: Frailty distribution (gamma, lognormal, invgauss)
        theta: Frailty dispersion
        baseline_rate: Constant baseline hazard
        follow_up: Maximum follow-up time
        max_events: Maximum number of events per subject
        seed: Random seed

    Returns:
        DataFrame with columns id, start, stop, status, x1..xp
    """
    rng = np.random.default_rng(seed)
    coef = np.asarray(coef, dtype=float)
    w = draw_frailty(frailty, theta, n_subjects, rng)
    X = _covariates(n_subjects, coef.shape[0], rng)
    rate = baseline_rate * w * np.exp(X.to_numpy() @ coef)
    end = rng.uniform(0.1 * follow_up, follow_up, size=n_subjects)

    rows = []
    for i in range(n_subjects):
        start = 0.0
        for _ in range(max_events):
            stop = start + rng.exponential(1.0 / rate[i])
            if stop >= end[i]:
                break
            rows.append((i, start, stop, 1))
            start = stop
        rows.append((i, start, end[i], 0))

    df = pd.DataFrame(rows, columns=["id", "start", "stop", "status"])
    return pd.concat([df, X.iloc[df["id"].to_numpy()].reset_index(drop=True)], axis=1)
