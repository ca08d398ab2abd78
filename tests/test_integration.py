"""
Integration tests for penalized frailty regularization paths.

These tests simulate sparse high-dimensional clustered data and check that
the BIC-selected model recovers the true covariates, end to end from a
DataFrame to the path summary.
"""

import pytest
import numpy as np

from frailty_mm.config import PathConfig
from frailty_mm.data import prepare_cluster
from frailty_mm.metrics import compute_cindex, selection_metrics
from frailty_mm.path import run_path
from frailty_mm.simulate import simulate_cluster

# Mark all tests in this file as integration tests
pytestmark = pytest.mark.integration


TRUE_COEF = np.r_[np.array([1.0, -1.0, 1.0, -1.0, 1.0]), np.zeros(45)]
TRUE_SUPPORT = np.arange(5)


@pytest.fixture(scope="module", params=[101, 202])
def sparse_data(request):
    """100 clusters of 4 with 5 active covariates out of 50."""
    df = simulate_cluster(TRUE_COEF, n_clusters=100, cluster_size=4,
                          frailty="gamma", theta=0.5, seed=request.param)
    return prepare_cluster(df, "time", "status", "cluster")


class TestVariableSelection:
    """BIC selection on a sparse path."""

    @pytest.mark.parametrize("penalty", ["LASSO", "MCP", "SCAD"])
    def test_true_support_selected(self, sparse_data, penalty):
        result = run_path(sparse_data, PathConfig(penalty=penalty))
        metrics = selection_metrics(result.selected(), TRUE_SUPPORT, n_covariates=50)

        assert metrics["false_negatives"] == 0
        assert metrics["false_positives"] <= 5

    def test_path_is_sparse_at_the_end(self, sparse_data):
        result = run_path(sparse_data, PathConfig(penalty="MCP"))

        assert result.dof[0] >= result.dof[-1]
        assert result.tune[-1] <= np.e

    def test_selected_model_discriminates(self, sparse_data):
        result = run_path(sparse_data, PathConfig(penalty="SCAD"))
        assert compute_cindex(sparse_data, result.coef_at()) > 0.7


class TestFrailtyChoices:
    """The same data fitted under every frailty distribution."""

    @pytest.mark.parametrize("frailty,power", [
        ("gamma", None),
        ("lognormal", None),
        ("invgauss", None),
        ("pvf", 0.5),
    ])
    def test_signal_recovered(self, sparse_data, frailty, power):
        config = PathConfig(frailty=frailty, power=power, penalty="MCP",
                            tune=np.exp(np.linspace(-3.0, -1.0, 5)))
        result = run_path(sparse_data, config)

        assert set(TRUE_SUPPORT) <= set(result.selected())
        assert result.theta[result.index_min] > 0
