from __future__ import annotations
import os
import datetime as dt
from typing import Dict, Literal

# Run type for distinguishing sample vs production runs
RunType = Literal["sample", "production"]


def ensure_dir(path: str):
    """Create directory if it doesn't exist.

    Args:
        path: Directory path to create, parents included

    Example:
        >>> ensure_dir("data/outputs/sample/artifacts")
    """
    os.makedirs(path, exist_ok=True)


def versioned_name(base: str, run_type: RunType = None) -> str:
    """Generate timestamped name for versioning.

    Args:
        base: Base filename without extension
        run_type: Optional run type ("sample" or "production") to prefix

    Returns:
        Versioned name in format "[runtype_]base_YYYYMMDD_HHMMSS"

    Example:
        >>> versioned_name("gamma_lasso", run_type="sample")
        'sample_gamma_lasso_20250123_143052'
    """
    ts = dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    if run_type:
        return f"{run_type}_{base}_{ts}"
    return f"{base}_{ts}"


def get_output_paths(run_type: RunType = "sample", base: str = "data/outputs") -> dict:
    """Get standardized output directory paths for a given run type.

    Args:
        run_type: Type of run - "sample" for development, "production" for full data
        base: Root of all output directories

    Returns:
        Dictionary with keys:
        - base_dir: Root output directory for this run type
        - artifacts: Path summaries and coefficient matrices
        - configs: Saved path configurations
        - logs: Log files
        - mlruns: Directory for MLflow tracking

    Example:
        >>> get_output_paths("sample")["artifacts"]
        'data/outputs/sample/artifacts'
    """
    base_dir = os.path.join(base, run_type)

    paths = {
        "base_dir": base_dir,
        "artifacts": os.path.join(base_dir, "artifacts"),
        "configs": os.path.join(base_dir, "configs"),
        "logs": os.path.join(base_dir, "logs"),
        "mlruns": os.path.join(base_dir, "mlruns"),
    }

    for path in paths.values():
        ensure_dir(path)

    return paths


def save_path_summary(result, outdir: str, name: str = "path") -> Dict[str, str]:
    """Save a regularization path to CSV files.

    Writes ``{name}_summary.csv`` (one row per tuning value) and
    ``{name}_coef.csv`` (coefficient matrix, covariates as rows).

    Args:
        result: FitResult returned by ``run_path``
        outdir: Output directory, created if missing
        name: File name prefix

    Returns:
        Dictionary with the "summary" and "coef" file paths
    """
    ensure_dir(outdir)
    paths = {
        "summary": os.path.join(outdir, f"{name}_summary.csv"),
        "coef": os.path.join(outdir, f"{name}_coef.csv"),
    }
    result.summary().to_csv(paths["summary"], index=False)
    result.coef_frame().to_csv(paths["coef"], index_label="covariate")
    return paths


def flatten_dict(d: dict, prefix: str = "") -> dict:
    """Flatten nested dictionaries with dotted keys.

    Example:
        >>> flatten_dict({"tol": 1e-05, "solver": {"theta_max": 100.0}})
        {'tol': 1e-05, 'solver.theta_max': 100.0}
    """
    out = {}
    for k, v in d.items():
        key = f"{prefix}{k}"
        if isinstance(v, dict):
            out.update(flatten_dict(v, prefix=f"{key}."))
        else:
            out[key] = v
    return out
