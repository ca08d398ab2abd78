"""Main entry point for fitting penalized frailty models.

Loads a CSV or pickle file, prepares clustered, multi-event or recurrent
event data, runs the regularization path and writes the path summary and
coefficient matrix under data/outputs/{run_type}/artifacts.

Can be used as CLI or imported as a function.
"""
from frailty_mm.config import DataTopology, PathConfig
from frailty_mm.data import load_data, prepare_cluster, prepare_multi_event, prepare_recurrent
from frailty_mm.exceptions import DataValidityError, FrailtyConfigError
from frailty_mm.logging_config import ProgressLogger, capture_warnings, setup_logging
from frailty_mm.metrics import compute_cindex
from frailty_mm.path import run_path
from frailty_mm.utils import RunType, get_output_paths, save_path_summary, versioned_name
import os
import argparse
import logging
from typing import Optional, Sequence


def prepare_data(
    df,
    topology: str = "cluster",
    time_col: str = "time",
    event_col: str = "status",
    group_col: Optional[str] = None,
    event_id_col: Optional[str] = None,
    start_col: Optional[str] = None,
    covariates: Optional[Sequence[str]] = None,
    standardize: bool = False,
):
    """Dispatch a DataFrame to the preparation function of its topology."""
    topology = DataTopology.parse(topology)
    if topology == DataTopology.CLUSTER:
        return prepare_cluster(df, time_col, event_col, group_col, covariates, standardize)
    if topology == DataTopology.MULTI_EVENT:
        if event_id_col is None:
            raise DataValidityError("multi-event data require an event id column")
        return prepare_multi_event(df, time_col, event_col, event_id_col, group_col,
                                   covariates, standardize)
    if group_col is None:
        raise DataValidityError("recurrent event data require a subject id column")
    return prepare_recurrent(df, time_col, event_col, group_col, start_col,
                             covariates, standardize)


def run_pipeline(
    input_file: str,
    topology: str = "cluster",
    time_col: str = "time",
    event_col: str = "status",
    group_col: Optional[str] = None,
    event_id_col: Optional[str] = None,
    start_col: Optional[str] = None,
    covariates: Optional[Sequence[str]] = None,
    standardize: bool = False,
    config: Optional[PathConfig] = None,
    run_type: RunType = "sample",
    output_base: str = "data/outputs",
    track: bool = False,
) -> int:
    """Fit a penalized frailty model and save its regularization path.

    Args:
        input_file: Path to input file (CSV or pickle)
        topology: Data layout: cluster, multi-event or recurrent
        time_col: Event or censoring time column (stop time for recurrent data)
        event_col: Event indicator column
        group_col: Cluster id (cluster), subject id (multi-event, optional)
            or subject id (recurrent, required) column
        event_id_col: Event-type column for multi-event data
        start_col: Interval start column for recurrent data
        covariates: Covariate columns. Defaults to every other column
        standardize: Standardize numeric covariates
        config: Path configuration, defaults to PathConfig()
        run_type: Type of run, "sample" or "production"
        output_base: Root of the output directories
        track: Log the path to MLflow

    Returns:
        Exit code (0 for success, 1 for failure)

    Example:
        >>> from main import run_pipeline
        >>> run_pipeline(
        ...     "data/inputs/sample/cluster_sample.csv",
        ...     topology="cluster",
        ...     group_col="cluster",
        ...     config=PathConfig(frailty="lognormal", penalty="MCP"),
        ... )
        0
    """
    paths = get_output_paths(run_type, base=output_base)
    logger = setup_logging(run_type=run_type, log_dir=paths["logs"])
    config = config or PathConfig()

    logger.info("=" * 70)
    logger.info(f"FRAILTY MM - {run_type.upper()} RUN")
    logger.info(f"Input file: {input_file}")
    logger.info(f"Topology:   {topology}")
    logger.info(f"Model:      {config.frailty.value} frailty, {config.penalty.value} penalty")
    logger.info("=" * 70)

    try:
        df = load_data(input_file)
        data = prepare_data(df, topology, time_col, event_col, group_col,
                            event_id_col, start_col, covariates, standardize)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Could not prepare data: {e}")
        return 1

    name = versioned_name(f"{config.frailty.value}_{config.penalty.value.lower()}")
    config.save(os.path.join(paths["configs"], f"{name}.json"))

    with capture_warnings(logger):
        result = run_path(data, config,
                          progress=ProgressLogger(logger, desc=f"{config.penalty.value} path"))

    saved = save_path_summary(result, paths["artifacts"], name=name)
    selected = [data.coef_names[j] for j in result.selected()]
    logger.info(f"Selected tune: {result.tune_min:.4g} ({len(selected)} covariates)")
    logger.info(f"Selected covariates: {', '.join(selected) or 'none'}")
    logger.info(f"C-index at selected tune: {compute_cindex(data, result.coef_at()):.3f}")
    logger.info(f"Path summary saved to {saved['summary']}")

    if track:
        from frailty_mm.tracking import log_path_result, safe_log_artifact, start_run
        with start_run(name, tags={"topology": result.topology, "run_type": run_type},
                       tracking_dir=paths["mlruns"]):
            log_path_result(result, logger=logger)
            for path in saved.values():
                safe_log_artifact(path, logger=logger)

    return 0


def main(argv=None):
    """Main execution function with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Penalized frailty models fitted by MM - regularization path with BIC selection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Clustered data, gamma frailty, LASSO path
  python src/main.py --input data.csv --group-col cluster

  # Multi-event data, log-normal frailty, MCP penalty
  python src/main.py --input data.csv --topology multi-event --event-id-col event \\
      --frailty lognormal --penalty MCP

  # Recurrent events, PVF frailty
  python src/main.py --input data.csv --topology recurrent --time-col stop \\
      --start-col start --group-col id --frailty pvf --power 0.5
        """
    )

    parser.add_argument("--input", required=True, help="Path to input file (CSV or pickle)")
    parser.add_argument("--topology", default="cluster",
                        choices=["cluster", "multi-event", "recurrent"],
                        help="Data layout. Default: cluster")
    parser.add_argument("--time-col", default="time", help="Time (or stop time) column")
    parser.add_argument("--event-col", default="status", help="Event indicator column")
    parser.add_argument("--group-col", default=None, help="Cluster or subject id column")
    parser.add_argument("--event-id-col", default=None, help="Event type column (multi-event)")
    parser.add_argument("--start-col", default=None, help="Interval start column (recurrent)")
    parser.add_argument("--covariates", nargs="+", default=None,
                        help="Covariate columns. Default: every other column")
    parser.add_argument("--standardize", action="store_true",
                        help="Standardize numeric covariates")

    parser.add_argument("--config", default=None,
                        help="PathConfig JSON file; command line options override it")
    parser.add_argument("--frailty", default=None,
                        help="gamma, lognormal, invgauss or pvf. Default: gamma")
    parser.add_argument("--power", type=float, default=None, help="PVF power in (0, 1)")
    parser.add_argument("--penalty", default=None, help="LASSO, MCP or SCAD. Default: LASSO")
    parser.add_argument("--gam", type=float, default=None,
                        help="Concavity parameter. Default: 3 (MCP), 3.7 (SCAD)")
    parser.add_argument("--tune", type=float, nargs="+", default=None,
                        help="Tuning values. Default: exp(seq(-5.5, 1, 0.25))")
    parser.add_argument("--tol", type=float, default=None, help="Convergence tolerance")
    parser.add_argument("--maxit", type=int, default=None, help="Iterations per tuning value")
    parser.add_argument("--independent", action="store_true",
                        help="Solve every tuning value from the burn-in fit (no warm start)")
    parser.add_argument("--n-jobs", type=int, default=None,
                        help="Parallel jobs with --independent (-1 = all cores)")

    parser.add_argument("--run-type", choices=["sample", "production"], default="sample",
                        help="Run type, selects the output directory. Default: sample")
    parser.add_argument("--track", action="store_true", help="Log the path to MLflow")

    args = parser.parse_args(argv)

    overrides = {
        "frailty": args.frailty,
        "power": args.power,
        "penalty": args.penalty,
        "gam": args.gam,
        "tune": args.tune,
        "tol": args.tol,
        "maxit": args.maxit,
        "n_jobs": args.n_jobs,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if "penalty" in overrides and "gam" not in overrides:
        overrides["gam"] = None
    if args.independent:
        overrides["warm_start"] = False

    try:
        base = PathConfig.load(args.config) if args.config else PathConfig()
        config = PathConfig(**{**base.to_dict(), "solver": base.solver, **overrides})
    except FrailtyConfigError as e:
        logging.getLogger("frailty_mm").error(f"Invalid configuration: {e}")
        return 1

    return run_pipeline(
        input_file=args.input,
        topology=args.topology,
        time_col=args.time_col,
        event_col=args.event_col,
        group_col=args.group_col,
        event_id_col=args.event_id_col,
        start_col=args.start_col,
        covariates=args.covariates,
        standardize=args.standardize,
        config=config,
        run_type=args.run_type,
        track=args.track,
    )


if __name__ == "__main__":
    raise SystemExit(main())
