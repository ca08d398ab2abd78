"""Unit tests for frailty_mm.risk_sets module.

Risk-set sums and cumulative hazards are checked against direct loops over
the at-risk definition start < t <= stop.
"""
import pytest
import numpy as np

from frailty_mm.config import DataTopology
from frailty_mm.exceptions import DataValidityError
from frailty_mm.risk_sets import build_risk_sets


def brute_force_at_risk(time, start, stratum, grid_times, grid_strata, weights):
    out = np.zeros(len(grid_times))
    for m, (t, s) in enumerate(zip(grid_times, grid_strata)):
        mask = (start < t) & (time >= t) & (stratum == s)
        out[m] = weights[mask].sum()
    return out


def grid_strata(rs):
    return np.repeat(np.arange(rs.n_strata), np.diff(rs.offsets))


class TestClusterRiskSets:
    """Tests for clustered data."""

    def test_small_example(self):
        rs = build_risk_sets(np.array([5.0, 3.0, 2.0, 1.0]), np.array([1, 0, 1, 1]))

        np.testing.assert_array_equal(rs.event_times, [1.0, 2.0, 5.0])
        np.testing.assert_array_equal(rs.deaths, [1.0, 1.0, 1.0])
        np.testing.assert_array_equal(rs.at_risk_sum(np.ones(4)), [4.0, 3.0, 1.0])
        assert rs.n_groups == 4  # each row its own cluster

    def test_tied_event_times(self):
        """Tied events share one grid time and count together."""
        rs = build_risk_sets(np.array([2.0, 2.0, 1.0, 3.0]), np.array([1, 1, 0, 1]))

        np.testing.assert_array_equal(rs.event_times, [2.0, 3.0])
        np.testing.assert_array_equal(rs.deaths, [2.0, 1.0])
        np.testing.assert_array_equal(rs.at_risk_sum(np.ones(4)), [3.0, 1.0])

    def test_matches_brute_force(self):
        rng = np.random.default_rng(0)
        n = 60
        time = np.round(rng.exponential(size=n), 1) + 0.1  # rounding creates ties
        status = rng.integers(0, 2, size=n)
        status[0] = 1
        group = rng.integers(0, 8, size=n)
        rs = build_risk_sets(time, status, "cluster", group=group)

        w = rng.uniform(0.5, 2.0, size=n)
        expected = brute_force_at_risk(time, np.zeros(n), np.zeros(n), rs.event_times,
                                       grid_strata(rs), w)
        np.testing.assert_allclose(rs.at_risk_sum(w), expected)

        h = rng.uniform(size=rs.n_times)
        expected_cum = np.array([h[rs.event_times <= t].sum() for t in time])
        np.testing.assert_allclose(rs.cumulative(h), expected_cum)

        relabeled = np.unique(group, return_inverse=True)[1]
        for i in range(rs.n_groups):
            np.testing.assert_array_equal(rs.members(i), np.flatnonzero(relabeled == i))

    def test_matrix_weights(self):
        """Column-wise sums for (N, k) weights."""
        rng = np.random.default_rng(1)
        time = rng.uniform(1, 5, size=20)
        status = np.ones(20, dtype=int)
        rs = build_risk_sets(time, status)
        W = rng.normal(size=(20, 3))

        sums = rs.at_risk_sum(W)

        assert sums.shape == (rs.n_times, 3)
        for j in range(3):
            np.testing.assert_allclose(sums[:, j], rs.at_risk_sum(W[:, j]))

    def test_group_relabel_preserves_order(self):
        rs = build_risk_sets(np.array([4.0, 3.0, 2.0, 1.0]), np.array([1, 1, 0, 1]),
                             group=np.array([10, 3, 10, 7]))

        np.testing.assert_array_equal(rs.group, [2, 0, 2, 1])
        np.testing.assert_array_equal(rs.events_per_group, [1.0, 1.0, 1.0])
        np.testing.assert_array_equal(rs.members(2), [0, 2])

    def test_group_sum(self):
        rs = build_risk_sets(np.array([4.0, 3.0, 2.0]), np.array([1, 1, 1]),
                             group=np.array(["a", "b", "a"]))
        np.testing.assert_array_equal(rs.group_sum(np.array([1.0, 2.0, 3.0])), [4.0, 2.0])

    def test_arrays_are_read_only(self):
        time = np.array([3.0, 2.0, 1.0])
        rs = build_risk_sets(time, np.array([1, 0, 1]))

        assert not rs.hi.flags.writeable
        assert not rs.group.flags.writeable
        assert time.flags.writeable  # input untouched
        with pytest.raises(ValueError):
            rs.deaths[0] = 5.0


class TestMultiEventRiskSets:
    """Tests for multi-event data."""

    def test_separate_baseline_per_event_type(self):
        time = np.array([1.0, 2.0, 3.0, 1.5, 2.5, 3.5])
        status = np.array([1, 1, 0, 1, 0, 1])
        event = np.array([1, 1, 1, 2, 2, 2])
        rs = build_risk_sets(time, status, "multi-event", event=event)

        assert rs.n_strata == 2
        np.testing.assert_array_equal(rs.event_times, [1.0, 2.0, 1.5, 3.5])
        np.testing.assert_array_equal(rs.offsets, [0, 2, 4])
        np.testing.assert_array_equal(rs.at_risk_sum(np.ones(6)), [3.0, 2.0, 3.0, 1.0])

    def test_subjects_by_position(self):
        """Without subject ids, the k-th row of each event block is subject k."""
        rs = build_risk_sets(np.array([1.0, 2.0, 3.0, 4.0]), np.array([1, 1, 1, 1]),
                             "multi-event", event=np.array([1, 1, 2, 2]))
        np.testing.assert_array_equal(rs.group, [0, 1, 0, 1])
        np.testing.assert_array_equal(rs.events_per_group, [2.0, 2.0])

    def test_matches_brute_force(self, multi_event_data):
        data = multi_event_data
        rs = data.risk_sets
        w = np.linspace(0.5, 1.5, data.n_obs)
        expected = brute_force_at_risk(data.time, np.zeros(data.n_obs), rs.stratum,
                                       rs.event_times, grid_strata(rs), w)
        np.testing.assert_allclose(rs.at_risk_sum(w), expected)

    def test_unequal_events_with_subject_ids(self):
        """Subject 0 has two events, subject 1 only one."""
        with pytest.raises(DataValidityError, match="same number of events"):
            build_risk_sets(np.array([1.0, 2.0, 3.0]), np.array([1, 1, 1]), "multi-event",
                            group=np.array([0, 0, 1]), event=np.array([1, 2, 1]))

    def test_unequal_event_blocks(self):
        with pytest.raises(DataValidityError, match="same number of events"):
            build_risk_sets(np.array([1.0, 2.0, 3.0]), np.array([1, 1, 1]), "multi-event",
                            event=np.array([1, 1, 2]))

    def test_event_ids_required(self):
        with pytest.raises(DataValidityError):
            build_risk_sets(np.array([1.0, 2.0, 3.0]), np.array([1, 1, 1]), "multi-event")


class TestRecurrentRiskSets:
    """Tests for recurrent event data."""

    def test_start_defaults_to_previous_stop(self):
        stop = np.array([1.0, 3.0, 2.0, 4.0, 5.0])
        status = np.array([1, 0, 1, 1, 0])
        group = np.array([0, 0, 1, 1, 1])
        rs = build_risk_sets(stop, status, DataTopology.RECURRENT, group=group)

        start = np.array([0.0, 1.0, 0.0, 2.0, 4.0])
        expected = brute_force_at_risk(stop, start, np.zeros(5), rs.event_times,
                                       grid_strata(rs), np.ones(5))
        np.testing.assert_array_equal(rs.event_times, [1.0, 2.0, 4.0])
        np.testing.assert_allclose(rs.at_risk_sum(np.ones(5)), expected)

    def test_matches_brute_force(self, recurrent_data):
        data = recurrent_data
        rs = data.risk_sets
        start = data.start
        w = np.linspace(0.5, 1.5, data.n_obs)
        expected = brute_force_at_risk(data.time, start, np.zeros(data.n_obs),
                                       rs.event_times, grid_strata(rs), w)
        np.testing.assert_allclose(rs.at_risk_sum(w), expected, rtol=1e-10, atol=1e-10)

        h = np.linspace(0.1, 1.0, rs.n_times)
        expected_cum = np.array([h[(rs.event_times > s) & (rs.event_times <= t)].sum()
                                 for s, t in zip(start, data.time)])
        np.testing.assert_allclose(rs.cumulative(h), expected_cum, rtol=1e-10, atol=1e-10)

    def test_subject_ids_required(self):
        with pytest.raises(DataValidityError, match="subject ids"):
            build_risk_sets(np.array([1.0, 2.0, 3.0]), np.array([1, 1, 1]), "recurrent")

    def test_start_before_stop(self):
        with pytest.raises(DataValidityError, match="start < stop"):
            build_risk_sets(np.array([1.0, 2.0, 3.0]), np.array([1, 1, 1]), "recurrent",
                            group=np.array([0, 1, 2]), start=np.array([0.0, 2.0, 1.0]))


class TestValidation:
    """Tests for input validation."""

    def test_two_observations(self):
        """Two observations are too few to fit."""
        with pytest.raises(DataValidityError, match="sample size"):
            build_risk_sets(np.array([1.0, 2.0]), np.array([1, 1]))

    def test_three_observations(self):
        assert build_risk_sets(np.array([1.0, 2.0, 3.0]), np.array([1, 0, 1])).n_obs == 3

    @pytest.mark.parametrize("time,status", [
        ([1.0, 2.0, 3.0], [1, 2, 0]),
        ([1.0, 2.0, 3.0], [0, 0, 0]),
        ([1.0, -2.0, 3.0], [1, 1, 1]),
        ([1.0, np.inf, 3.0], [1, 1, 1]),
        ([1.0, 2.0, 3.0], [1, 1]),
    ])
    def test_invalid_arrays(self, time, status):
        with pytest.raises(DataValidityError):
            build_risk_sets(np.array(time), np.array(status))

    def test_data_error_is_value_error(self):
        assert issubclass(DataValidityError, ValueError)
