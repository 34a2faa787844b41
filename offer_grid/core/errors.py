"""
Domain exceptions for the offer grid core.
"""


class OfferGridError(Exception):
    """Base class for offer grid errors."""


class ColumnConfigError(OfferGridError):
    """Column letter configuration could not be resolved."""


class LockTimeoutError(OfferGridError):
    """The process lock was not acquired within the bounded wait."""

    def __init__(self, timeout_ms: int):
        super().__init__(f"Lock not acquired within {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class BundleCorrectionError(OfferGridError):
    """A bundle correction could not be applied."""

    def __init__(self, bundle_id: str, message: str):
        super().__init__(message)
        self.bundle_id = bundle_id
