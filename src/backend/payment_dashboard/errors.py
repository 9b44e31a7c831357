from __future__ import annotations


class DashboardError(Exception):
    """Base class for errors raised by the payment dashboard."""


class QueryValidationError(DashboardError, ValueError):
    """Search input, filter form or SQL text that cannot be run."""


class ConfigurationError(DashboardError):
    """A required backend (database, ZIP API) is not configured."""


class ZipLookupError(DashboardError):
    def __init__(self, transaction_id: str, message: str):
        super().__init__(message)
        self.transaction_id = transaction_id
