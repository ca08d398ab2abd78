"""Risk-set index structures for the baseline hazard updates.

Every data topology is reduced to the same per-row description:

- ``group``: frailty unit (cluster or subject), relabeled to 0..a-1
- ``stratum``: baseline hazard index (the event type for multi-event data,
  0 otherwise)
- an at-risk interval ``(start, stop]``

Distinct event times are collected per stratum into one flat grid. Each row
is at risk at the grid positions ``lo <= m < hi``, so risk-set sums, per-row
cumulative hazards and per-group sums are all computed with a few
vectorized numpy passes instead of explicit risk-set lists.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

import numpy as np

from frailty_mm.config import DataTopology
from frailty_mm.exceptions import DataValidityError


def _readonly(a: np.ndarray) -> np.ndarray:
    a = np.array(a, copy=True)
    a.setflags(write=False)
    return a


def _tail_sums(index: np.ndarray, weights: np.ndarray, size: int) -> np.ndarray:
    """Sum of ``weights`` over rows with ``index > m`` for m in 0..size-1."""
    acc = np.zeros((size + 1,) + weights.shape[1:])
    np.add.at(acc, index, weights)
    tail = np.cumsum(acc[::-1], axis=0)[::-1]
    return tail[1:]


@dataclass(frozen=True)
class RiskSets:
    """Read-only risk-set structure of one data set.

    Attributes:
        topology: Data layout the structure was built for
        group: Frailty unit of each row, shape (N,)
        stratum: Baseline stratum of each row, shape (N,)
        status: Event indicator of each row, shape (N,)
        event_times: Distinct event times, ascending within each stratum,
            strata concatenated, shape (M,)
        offsets: Start of each stratum block in ``event_times``, shape (S+1,)
        deaths: Number of events at each grid time, shape (M,)
        lo: First grid index at which each row is at risk, shape (N,)
        hi: One past the last grid index at which each row is at risk
        events_per_group: Event count D_i of each group, shape (a,)
    """
    topology: DataTopology
    group: np.ndarray
    stratum: np.ndarray
    status: np.ndarray
    event_times: np.ndarray
    offsets: np.ndarray
    deaths: np.ndarray
    lo: np.ndarray
    hi: np.ndarray
    events_per_group: np.ndarray

    @property
    def n_obs(self) -> int:
        return int(self.group.shape[0])

    @property
    def n_groups(self) -> int:
        return int(self.events_per_group.shape[0])

    @property
    def n_strata(self) -> int:
        return int(self.offsets.shape[0] - 1)

    @property
    def n_times(self) -> int:
        return int(self.event_times.shape[0])

    @property
    def event_index(self) -> np.ndarray:
        """Grid index of the event time of each event row."""
        return self.hi[self.status] - 1

    def at_risk_sum(self, weights: np.ndarray) -> np.ndarray:
        """Sum row weights over the risk set of every grid time.

        Args:
            weights: Row weights, shape (N,) or (N, k)

        Returns:
            Risk-set sums with shape (M,) or (M, k)
        """
        weights = np.asarray(weights, dtype=float)
        out = np.zeros((self.n_times,) + weights.shape[1:])
        for s in range(self.n_strata):
            first, last = self.offsets[s], self.offsets[s + 1]
            rows = self.stratum == s
            w = weights[rows]
            sums = _tail_sums(self.hi[rows] - first, w, last - first)
            late_entry = self.lo[rows] - first
            if np.any(late_entry > 0):
                sums = sums - _tail_sums(late_entry, w, last - first)
            out[first:last] = sums
        return out

    def cumulative(self, hazard: np.ndarray) -> np.ndarray:
        """Baseline cumulative hazard accumulated by each row.

        Args:
            hazard: Baseline hazard jumps on the event-time grid, shape (M,)

        Returns:
            Sum of the jumps over each row's at-risk range, shape (N,)
        """
        csum = np.concatenate(([0.0], np.cumsum(hazard)))
        return csum[self.hi] - csum[self.lo]

    def group_sum(self, values: np.ndarray) -> np.ndarray:
        """Sum row values within each group, shape (a,)."""
        return np.bincount(self.group, weights=values, minlength=self.n_groups)

    def members(self, i: int) -> np.ndarray:
        """Row indices belonging to group ``i``."""
        return np.flatnonzero(self.group == i)


def _relabel(ids: np.ndarray) -> np.ndarray:
    _, inverse = np.unique(ids, return_inverse=True)
    return inverse.reshape(-1).astype(np.intp)


def _check_equal_counts(labels: np.ndarray) -> None:
    _, counts = np.unique(labels, return_counts=True)
    if counts.min() != counts.max():
        raise DataValidityError("every subject should have same number of events")


def _previous_stop(group: np.ndarray, stop: np.ndarray) -> np.ndarray:
    order = np.lexsort((stop, group))
    start = np.zeros_like(stop)
    g, t = group[order], stop[order]
    same = np.r_[False, g[1:] == g[:-1]]
    start[order[same]] = t[:-1][same[1:]]
    return start


def build_risk_sets(
    time: np.ndarray,
    status: np.ndarray,
    topology: DataTopology = DataTopology.CLUSTER,
    group: Optional[np.ndarray] = None,
    event: Optional[np.ndarray] = None,
    start: Optional[np.ndarray] = None,
) -> RiskSets:
    """Validate survival arrays and build their risk-set structure.

    Args:
        time: Event or censoring time (stop time for recurrent data), shape (N,)
        status: Event indicator, 1 = event and 0 = censored
        topology: Data layout
        group: Cluster or subject ids. Optional for cluster data (each row its
            own cluster) and multi-event data (subjects taken by position
            within each event-type block), required for recurrent data
        event: Event-type ids, required for multi-event data
        start: Entry times for recurrent data. Defaults to the previous stop
            time of the same subject

    Returns:
        RiskSets with read-only arrays. Inputs are never modified.

    Raises:
        DataValidityError: If the sample is too small, arrays are malformed,
            or multi-event subjects have unequal event counts

    Example:
        >>> rs = build_risk_sets(np.array([5., 3., 2., 1.]), np.array([1, 0, 1, 1]))
        >>> rs.event_times
        array([1., 2., 5.])
        >>> rs.at_risk_sum(np.ones(4))
        array([4., 3., 1.])
    """
    topology = DataTopology.parse(topology)
    time = np.asarray(time, dtype=float).ravel()
    n = time.shape[0]
    if n <= 2:
        raise DataValidityError("Please check the sample size of data")

    status_raw = np.asarray(status).ravel()
    if status_raw.shape[0] != n:
        raise DataValidityError("time and status must have the same length")
    if not np.all(np.isin(status_raw, (0, 1))):
        raise DataValidityError("status must contain only 0 (censored) and 1 (event)")
    status = status_raw.astype(bool)
    if not status.any():
        raise DataValidityError("data contain no observed events")
    if not np.all(np.isfinite(time)) or np.any(time <= 0):
        raise DataValidityError("times must be finite and positive")

    if group is not None:
        group = np.asarray(group).ravel()
        if group.shape[0] != n:
            raise DataValidityError("group ids must have one entry per observation")

    stratum = np.zeros(n, dtype=np.intp)
    if topology == DataTopology.MULTI_EVENT:
        if event is None:
            raise DataValidityError("multi-event data require event-type ids")
        event = np.asarray(event).ravel()
        if event.shape[0] != n:
            raise DataValidityError("event ids must have one entry per observation")
        stratum = _relabel(event)
        if group is None:
            _check_equal_counts(stratum)
            order = np.argsort(stratum, kind="stable")
            _, counts = np.unique(stratum, return_counts=True)
            group = np.empty(n, dtype=np.intp)
            group[order] = np.concatenate([np.arange(c) for c in counts])
        else:
            _check_equal_counts(group)
    elif topology == DataTopology.RECURRENT and group is None:
        raise DataValidityError("recurrent event data require subject ids")

    group = np.arange(n, dtype=np.intp) if group is None else _relabel(group)

    if topology == DataTopology.RECURRENT:
        if start is None:
            start = _previous_stop(group, time)
        else:
            start = np.asarray(start, dtype=float).ravel()
            if start.shape[0] != n or not np.all(np.isfinite(start)):
                raise DataValidityError("start times must be finite, one per observation")
        if np.any(start < 0) or np.any(start >= time):
            raise DataValidityError("every interval must satisfy 0 <= start < stop")
    else:
        start = np.zeros(n)

    n_strata = int(stratum.max()) + 1
    blocks = [np.unique(time[status & (stratum == s)]) for s in range(n_strata)]
    offsets = np.concatenate(([0], np.cumsum([b.size for b in blocks]))).astype(np.intp)
    event_times = np.concatenate(blocks)

    lo = np.empty(n, dtype=np.intp)
    hi = np.empty(n, dtype=np.intp)
    for s, grid in enumerate(blocks):
        rows = stratum == s
        lo[rows] = offsets[s] + np.searchsorted(grid, start[rows], side="right")
        hi[rows] = offsets[s] + np.searchsorted(grid, time[rows], side="right")

    deaths = np.bincount(hi[status] - 1, minlength=event_times.size).astype(float)
    events_per_group = np.bincount(group, weights=status.astype(float))

    return RiskSets(
        topology=topology,
        group=_readonly(group),
        stratum=_readonly(stratum),
        status=_readonly(status),
        event_times=_readonly(event_times),
        offsets=_readonly(offsets),
        deaths=_readonly(deaths),
        lo=_readonly(lo),
        hi=_readonly(hi),
        events_per_group=_readonly(events_per_group),
    )
