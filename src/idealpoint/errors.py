"""Exceptions and warnings raised by idealpoint."""


class IdealPointError(Exception):
    """Base class for all idealpoint errors."""


class ConfigurationError(IdealPointError, ValueError):
    """Invalid input data or options, detected before any sampling."""


class IdentificationError(IdealPointError):
    """The latent scale cannot be identified with the requested anchors."""


class ConvergenceError(IdealPointError):
    """Full sampling finished with out-of-range convergence statistics."""

    def __init__(self, message: str, report=None) -> None:
        super().__init__(message)
        self.report = report


class ConvergenceWarning(UserWarning):
    """Approximate inference did not converge; results may be unreliable."""


class IdentificationWarning(UserWarning):
    """Identified draws violate a soft constraint such as the over-time variance cap."""
