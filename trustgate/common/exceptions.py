"""
Custom Exception Classes for the TrustGate gateway

Hierarchical exception structure for error handling across services.
Everything except AuthError and unexpected top-level errors is recovered
inside the pipeline and turned into a decision or a stage record.
"""


class GatewayError(Exception):
    """Base exception for all gateway errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(GatewayError):
    """Configuration-related errors"""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(f"Config Error: {message}", recoverable)


class AuthError(GatewayError):
    """Missing or wrong shared-secret credential"""

    def __init__(self, message: str = "invalid api key"):
        super().__init__(f"Auth Error: {message}", recoverable=False)


class IntegrityComputeError(GatewayError):
    """Payload could not be canonicalized or hashed"""

    def __init__(self, message: str):
        super().__init__(f"Integrity Error: {message}", recoverable=True)


class HistoryFetchError(GatewayError):
    """Ledger history query failed or timed out"""

    def __init__(self, message: str, group_id: str | None = None):
        self.group_id = group_id
        super().__init__(f"History Fetch Error: {message}", recoverable=True)


class AnalysisError(GatewayError):
    """Unexpected failure inside trend analysis"""

    def __init__(self, message: str):
        super().__init__(f"Analysis Error: {message}", recoverable=True)


class LedgerSubmitError(GatewayError):
    """Ledger write failed (network, timeout or rejected)"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(f"Ledger Submit Error: {message}", recoverable=True)


class StorageError(GatewayError):
    """Local event log or threshold file errors"""

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        super().__init__(f"Storage Error: {message}", recoverable=True)


class QueueFullError(GatewayError):
    """Write queue reached its pending limit"""

    def __init__(self, max_pending: int):
        self.max_pending = max_pending
        super().__init__(
            f"write queue full ({max_pending} pending)",
            recoverable=True,
        )
