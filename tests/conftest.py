"""Pytest configuration and shared fixtures for frailty_mm tests.

This module provides small simulated data sets for the three data layouts
and keeps MLflow tracking isolated between tests.
"""
import pytest
import numpy as np
import pandas as pd
from pathlib import Path

from frailty_mm.data import prepare_cluster, prepare_multi_event, prepare_recurrent
from frailty_mm.simulate import simulate_cluster, simulate_multi_event, simulate_recurrent


TRUE_COEF = np.array([1.0, -0.8, 0.0, 0.0])


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def true_coef():
    """Generating coefficients of the simulated fixtures."""
    return TRUE_COEF.copy()


@pytest.fixture(scope="session")
def cluster_df():
    """Clustered data: 40 clusters of 5, gamma frailty with variance 0.5.

    Returns:
        pd.DataFrame: Columns time, status, cluster, x1..x4
    """
    return simulate_cluster(TRUE_COEF, n_clusters=40, cluster_size=5,
                            frailty="gamma", theta=0.5, seed=20240611)


@pytest.fixture(scope="session")
def cluster_data(cluster_df):
    """SurvivalData built from the clustered fixture."""
    return prepare_cluster(cluster_df, "time", "status", "cluster")


@pytest.fixture(scope="session")
def multi_event_df():
    """Multi-event data: 40 subjects with 2 event types each."""
    return simulate_multi_event(TRUE_COEF, n_subjects=40, n_event_types=2,
                                frailty="gamma", theta=0.5, seed=7)


@pytest.fixture(scope="session")
def multi_event_data(multi_event_df):
    """SurvivalData built from the multi-event fixture, subjects by position."""
    return prepare_multi_event(multi_event_df, "time", "status", "event",
                               covariates=["x1", "x2", "x3", "x4"])


@pytest.fixture(scope="session")
def recurrent_df():
    """Recurrent event data for 30 subjects."""
    return simulate_recurrent(TRUE_COEF, n_subjects=30, frailty="gamma", theta=0.5,
                              baseline_rate=1.5, follow_up=2.0, seed=11)


@pytest.fixture(scope="session")
def recurrent_data(recurrent_df):
    """SurvivalData built from the recurrent fixture with explicit start times."""
    return prepare_recurrent(recurrent_df, "stop", "status", "id", start_col="start")


@pytest.fixture
def small_frame():
    """Tiny DataFrame with a categorical covariate and a missing value."""
    return pd.DataFrame({
        "time": [5.0, 3.0, 8.0, 1.0, 6.0, 2.0],
        "status": [1, 0, 1, 1, 0, 1],
        "cluster": ["b", "a", "b", "c", "a", "c"],
        "age": [50.0, 61.0, 47.0, 70.0, np.nan, 58.0],
        "sex": ["F", "M", "M", "F", "F", "M"],
    })


@pytest.fixture(autouse=True)
def cleanup_mlflow_runs():
    """Reset the MLflow tracking URI after each test."""
    import mlflow
    yield
    mlflow.set_tracking_uri(None)
