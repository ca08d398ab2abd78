from __future__ import annotations
import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional
import mlflow
import mlflow.exceptions

from frailty_mm.utils import flatten_dict


def start_run(run_name: str, tags: Dict[str, str] | None = None,
              experiment: str = "frailty_mm", tracking_dir: Optional[str] = None):
    """Start an MLflow tracking run.

    Args:
        run_name: Name identifier for this run
        tags: Optional dictionary of key-value tags to attach to the run
        experiment: MLflow experiment name
        tracking_dir: Local directory for the MLflow file store; the MLflow
            default is kept when None

    Returns:
        Active MLflow run context manager

    Example:
        >>> with start_run("gamma_lasso_cluster", tags={"topology": "Cluster"}):
        ...     log_path_result(result, logger=logger)
    """
    if tracking_dir is not None:
        mlflow.set_tracking_uri(Path(tracking_dir).resolve().as_uri())
    mlflow.set_experiment(experiment)
    return mlflow.start_run(run_name=run_name, tags=tags)


# ============================================================================
# Safe MLflow Wrappers with Graceful Degradation
# ============================================================================


def safe_log_metrics(
    metrics: Dict[str, float],
    step: Optional[int] = None,
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log metrics to MLflow with error handling.

    If MLflow fails, a warning is logged and execution continues; the path
    summary is still persisted to CSV.

    Args:
        metrics: Dictionary of metric names and values
        step: Optional step number (position on the tuning path)
        logger: Optional logger for warnings

    Returns:
        True if logging succeeded, False if it failed
    """
    try:
        mlflow.log_metrics(metrics, step=step)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow metrics logging failed: {e}")
        return False


def safe_log_params(
    params: Dict[str, Any],
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log parameters to MLflow with error handling.

    Values are logged as strings when MLflow rejects the raw value.

    Args:
        params: Dictionary of parameter names and values
        logger: Optional logger for warnings

    Returns:
        True if logging succeeded, False if it failed
    """
    try:
        mlflow.log_params({k: v if isinstance(v, (int, float, str, bool)) else str(v)
                           for k, v in params.items()})
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow params logging failed: {e}")
        return False


def safe_log_artifact(
    path: str,
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log a file artifact to MLflow with error handling.

    Args:
        path: File path to log as artifact
        logger: Optional logger for warnings

    Returns:
        True if logging succeeded, False if the file is missing or MLflow failed
    """
    if not os.path.exists(path):
        if logger:
            logger.warning(f"Artifact not found, skipping: {path}")
        return False

    try:
        mlflow.log_artifact(path)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow artifact logging failed for {path}: {e}")
        return False


def log_path_result(result, logger: Optional[logging.Logger] = None) -> bool:
    """Log a regularization path to the active MLflow run.

    Parameters are the flattened path configuration plus the data layout;
    every tuning value is logged as one step of the tune, bic, loglik, dof
    and theta metrics, followed by the BIC choice.

    Args:
        result: FitResult returned by ``run_path``
        logger: Optional logger for warnings

    Returns:
        True if every MLflow call succeeded
    """
    params = flatten_dict(result.config.to_dict())
    params.update({
        "topology": result.topology,
        "n_obs": result.n_obs,
        "n_groups": result.n_groups,
        "n_covariates": result.data.n_covariates,
    })
    ok = safe_log_params(params, logger=logger)

    for k, entry in enumerate(result.entries):
        ok &= safe_log_metrics({
            "tune": entry.tune,
            "bic": entry.bic,
            "loglik": entry.loglik,
            "dof": float(entry.dof),
            "theta": entry.theta,
        }, step=k, logger=logger)

    ok &= safe_log_metrics({
        "tune_min": result.tune_min,
        "bic_min": float(result.bic[result.index_min]),
        "dof_min": float(result.dof[result.index_min]),
    }, logger=logger)
    return ok
