"""Exception and warning types raised by frailty_mm."""


class FrailtyConfigError(ValueError):
    """Raised when a model configuration is invalid.

    Covers unknown frailty or penalty names, a PVF frailty without a usable
    power parameter, invalid concavity parameters and malformed tuning
    sequences. Raised before any computation starts.
    """


class DataValidityError(ValueError):
    """Raised when survival data cannot be fitted.

    Covers too small samples, unequal per-subject event counts for
    multi-event data and malformed time, status or covariate arrays.
    Raised when the data container is built, before optimization.
    """


class ConvergenceWarning(RuntimeWarning):
    """Emitted when MM iterations stop at ``maxit`` without converging."""
