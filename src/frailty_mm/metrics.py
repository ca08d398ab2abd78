from __future__ import annotations
from typing import Dict, Iterable, Optional

import numpy as np
from sksurv.metrics import concordance_index_censored

from frailty_mm.data import SurvivalData


def compute_cindex(data: SurvivalData, coef: np.ndarray) -> float:
    """Harrell's concordance index of the linear predictor X'b.

    Frailties are not part of the risk score, so the index measures how
    well the fixed effects alone order the observed times.

    Args:
        data: Survival data
        coef: Coefficient vector, e.g. ``result.coef_at()``

    Returns:
        Concordance index, 0.5 for random ordering and 1.0 for perfect

    Example:
        >>> cindex = compute_cindex(result.data, result.coef_at())
        >>> print(f"C-index: {cindex:.3f}")
        C-index: 0.742
    """
    risk_scores = data.X @ np.asarray(coef, dtype=float)
    result = concordance_index_censored(data.status.astype(bool), data.time, risk_scores)
    return float(result[0])  # (cindex, concordant, discordant, tied_risk, tied_time)


def selection_metrics(selected: Iterable[int], true_support: Iterable[int],
                      n_covariates: Optional[int] = None) -> Dict[str, float]:
    """Compare a selected covariate set with the true support.

    Args:
        selected: Indices of the selected (nonzero) coefficients
        true_support: Indices of the truly nonzero coefficients
        n_covariates: Total number of covariates, enables the false
            positive rate

    Returns:
        Dictionary with true_positives, false_positives, false_negatives,
        exact (1.0 if the sets match) and, when n_covariates is given,
        false_positive_rate

    Example:
        >>> selection_metrics([0, 1, 2, 7], [0, 1, 2])
        {'true_positives': 3, 'false_positives': 1, 'false_negatives': 0, 'exact': 0.0}
    """
    selected, truth = set(int(i) for i in selected), set(int(i) for i in true_support)
    out = {
        "true_positives": len(selected & truth),
        "false_positives": len(selected - truth),
        "false_negatives": len(truth - selected),
        "exact": float(selected == truth),
    }
    if n_covariates is not None:
        negatives = n_covariates - len(truth)
        out["false_positive_rate"] = out["false_positives"] / negatives if negatives else 0.0
    return out
