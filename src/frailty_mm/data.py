from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import logging
from pathlib import Path

import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from frailty_mm.config import DataTopology
from frailty_mm.exceptions import DataValidityError
from frailty_mm.risk_sets import RiskSets, build_risk_sets

logger = logging.getLogger(__name__)


@dataclass
class SurvivalData:
    """Survival data in the working representation of the MM solver.

    Arrays are validated and the risk-set structure is built once on
    construction; the solver only reads them.

    Attributes:
        time: Event or censoring time (stop time for recurrent data)
        status: Event indicator, 1 = event and 0 = censored
        X: Covariate matrix, row-aligned with ``time``
        topology: Data layout
        group: Cluster or subject ids (see ``build_risk_sets``)
        event: Event-type ids for multi-event data
        start: Entry times for recurrent data
        coef_names: Covariate names, defaults to x1..xp

    Example:
        >>> data = SurvivalData(time, status, X, topology="Cluster", group=cluster)
        >>> data.n_obs, data.n_groups, data.n_covariates
        (500, 50, 10)
    """
    time: np.ndarray
    status: np.ndarray
    X: np.ndarray
    topology: DataTopology = DataTopology.CLUSTER
    group: Optional[np.ndarray] = None
    event: Optional[np.ndarray] = None
    start: Optional[np.ndarray] = None
    coef_names: Optional[List[str]] = None
    risk_sets: RiskSets = field(init=False, repr=False)

    def __post_init__(self):
        """Validate arrays and build the risk sets."""
        self.topology = DataTopology.parse(self.topology)
        self.time = np.asarray(self.time, dtype=float).ravel()
        self.status = np.asarray(self.status).ravel()

        X = np.array(self.X, dtype=float)
        if X.ndim == 1:
            X = X[:, None]
        if X.ndim != 2 or X.shape[0] != self.time.shape[0]:
            raise DataValidityError(
                f"X must be a matrix with one row per observation, got shape {X.shape}"
            )
        if not np.all(np.isfinite(X)):
            raise DataValidityError("covariates must be finite")
        self.X = X
        self.X.setflags(write=False)

        self.risk_sets = build_risk_sets(
            self.time, self.status, self.topology,
            group=self.group, event=self.event, start=self.start,
        )
        self.status = self.risk_sets.status.astype(int)

        if self.coef_names is None:
            self.coef_names = [f"x{j + 1}" for j in range(X.shape[1])]
        elif len(self.coef_names) != X.shape[1]:
            raise DataValidityError("coef_names must name every covariate column")
        self.coef_names = list(self.coef_names)

    @property
    def n_obs(self) -> int:
        """Total number of observations N."""
        return int(self.time.shape[0])

    @property
    def n_covariates(self) -> int:
        return int(self.X.shape[1])

    @property
    def n_groups(self) -> int:
        """Clusters for cluster data, subjects otherwise (a or b)."""
        return self.risk_sets.n_groups

    @property
    def sample_size(self) -> int:
        """Sample size used for BIC and for scaling the penalty."""
        return self.n_groups


def load_data(file_path: str) -> pd.DataFrame:
    """Load survival data from CSV or pickle file.

    Args:
        file_path: Path to input file (.csv, .pkl or .pickle)

    Returns:
        DataFrame with the raw columns

    Raises:
        FileNotFoundError: If file_path does not exist
        ValueError: If file format is not supported

    Example:
        >>> df = load_data("data/inputs/sample/cluster_sample.csv")
        >>> df.shape
        (500, 13)
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix == ".csv":
        df = pd.read_csv(file_path)
    elif suffix in [".pkl", ".pickle"]:
        df = pd.read_pickle(file_path)
    else:
        raise ValueError(
            f"Unsupported file format: {suffix}. "
            f"Supported formats: .csv, .pkl, .pickle"
        )

    logger.info(f"Loaded {len(df):,} records with {len(df.columns)} columns from {file_path}")
    return df


def make_design_matrix(
    df: pd.DataFrame,
    covariates: Sequence[str],
    standardize: bool = False,
) -> Tuple[np.ndarray, List[str]]:
    """Build the covariate matrix from DataFrame columns.

    Numeric columns pass through (or are standardized); object, category
    and string columns are one-hot encoded with the first level dropped.

    Args:
        df: Input DataFrame
        covariates: Covariate column names
        standardize: Standardize numeric columns to mean 0 and variance 1

    Returns:
        Tuple of the dense float matrix and its column names

    Example:
        >>> X, names = make_design_matrix(df, ["age", "sex"], standardize=True)
        >>> names
        ['age', 'sex_M']
    """
    covariates = list(covariates)
    categorical = [
        c for c in covariates
        if df[c].dtype == object
        or isinstance(df[c].dtype, pd.CategoricalDtype)
        or pd.api.types.is_string_dtype(df[c].dtype)
    ]
    numeric = [c for c in covariates if c not in categorical]

    transformers = []
    if numeric:
        transformers.append(("num", StandardScaler() if standardize else "passthrough", numeric))
    if categorical:
        transformers.append(
            ("cat", OneHotEncoder(drop="first", sparse_output=False), categorical)
        )
    if not transformers:
        raise DataValidityError("at least one covariate column is required")

    pre = ColumnTransformer(transformers=transformers, verbose_feature_names_out=False)
    X = np.asarray(pre.fit_transform(df[covariates]), dtype=float)
    names = [str(n) for n in pre.get_feature_names_out()]
    return X, names


def _select_rows(df: pd.DataFrame, columns: List[str], dropna: bool) -> pd.DataFrame:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise DataValidityError(f"columns not found in data: {missing}")
    data = df[columns]
    incomplete = int(data.isna().any(axis=1).sum())
    if incomplete:
        if not dropna:
            raise DataValidityError(f"{incomplete:,} rows contain missing values")
        logger.warning(f"Removing {incomplete:,} rows with missing values")
        data = data.dropna()
    return data


def _covariate_columns(df: pd.DataFrame, covariates, reserved) -> List[str]:
    if covariates is not None:
        return list(covariates)
    return [c for c in df.columns if c not in reserved]


def prepare_cluster(
    df: pd.DataFrame,
    time_col: str,
    event_col: str,
    cluster_col: Optional[str] = None,
    covariates: Optional[Sequence[str]] = None,
    standardize: bool = False,
    dropna: bool = True,
) -> SurvivalData:
    """Prepare clustered survival data.

    Rows are sorted by descending time (ties keep their input order) and
    cluster ids are relabeled to 0..a-1.

    Args:
        df: Input DataFrame
        time_col: Event or censoring time column
        event_col: Event indicator column (1 = event, 0 = censored)
        cluster_col: Cluster id column. None treats each row as its own cluster
        covariates: Covariate columns. Defaults to every other column
        standardize: Standardize numeric covariates
        dropna: Drop rows with missing values instead of failing

    Returns:
        SurvivalData with Cluster topology
    """
    reserved = {time_col, event_col, cluster_col}
    covariates = _covariate_columns(df, covariates, reserved)
    columns = [time_col, event_col] + ([cluster_col] if cluster_col else []) + covariates
    data = _select_rows(df, columns, dropna)
    data = data.sort_values(time_col, ascending=False, kind="mergesort")

    X, names = make_design_matrix(data, covariates, standardize)
    return SurvivalData(
        time=data[time_col].to_numpy(float),
        status=data[event_col].to_numpy(),
        X=X,
        topology=DataTopology.CLUSTER,
        group=data[cluster_col].to_numpy() if cluster_col else None,
        coef_names=names,
    )


def prepare_multi_event(
    df: pd.DataFrame,
    time_col: str,
    event_col: str,
    event_id_col: str,
    subject_col: Optional[str] = None,
    covariates: Optional[Sequence[str]] = None,
    standardize: bool = False,
    dropna: bool = True,
) -> SurvivalData:
    """Prepare multi-event survival data.

    Rows are sorted by event type. Without ``subject_col`` subjects must be
    listed in the same order inside every event-type block and are
    identified by their position in the block.

    Args:
        df: Input DataFrame
        time_col: Event or censoring time column
        event_col: Event indicator column (1 = event, 0 = censored)
        event_id_col: Event-type column, one baseline hazard per type
        subject_col: Optional subject id column
        covariates: Covariate columns. Defaults to every other column
        standardize: Standardize numeric covariates
        dropna: Drop rows with missing values instead of failing

    Returns:
        SurvivalData with Multi-event topology

    Raises:
        DataValidityError: If subjects do not all have the same number of events
    """
    reserved = {time_col, event_col, event_id_col, subject_col}
    covariates = _covariate_columns(df, covariates, reserved)
    columns = ([time_col, event_col, event_id_col]
               + ([subject_col] if subject_col else []) + covariates)
    data = _select_rows(df, columns, dropna)
    data = data.sort_values(event_id_col, kind="mergesort")

    X, names = make_design_matrix(data, covariates, standardize)
    return SurvivalData(
        time=data[time_col].to_numpy(float),
        status=data[event_col].to_numpy(),
        X=X,
        topology=DataTopology.MULTI_EVENT,
        group=data[subject_col].to_numpy() if subject_col else None,
        event=data[event_id_col].to_numpy(),
        coef_names=names,
    )


def prepare_recurrent(
    df: pd.DataFrame,
    stop_col: str,
    event_col: str,
    id_col: str,
    start_col: Optional[str] = None,
    covariates: Optional[Sequence[str]] = None,
    standardize: bool = False,
    dropna: bool = True,
) -> SurvivalData:
    """Prepare recurrent event data in counting process form.

    Args:
        df: Input DataFrame, one row per (start, stop] interval
        stop_col: Interval end time column
        event_col: Event indicator at the interval end
        id_col: Subject id column
        start_col: Interval start column. Defaults to the subject's previous
            stop time (0 for the first interval)
        covariates: Covariate columns. Defaults to every other column
        standardize: Standardize numeric covariates
        dropna: Drop rows with missing values instead of failing

    Returns:
        SurvivalData with Recurrent topology
    """
    reserved = {stop_col, event_col, id_col, start_col}
    covariates = _covariate_columns(df, covariates, reserved)
    columns = ([stop_col, event_col, id_col]
               + ([start_col] if start_col else []) + covariates)
    data = _select_rows(df, columns, dropna)
    data = data.sort_values([id_col, stop_col], kind="mergesort")

    X, names = make_design_matrix(data, covariates, standardize)
    return SurvivalData(
        time=data[stop_col].to_numpy(float),
        status=data[event_col].to_numpy(),
        X=X,
        topology=DataTopology.RECURRENT,
        group=data[id_col].to_numpy(),
        start=data[start_col].to_numpy(float) if start_col else None,
        coef_names=names,
    )
