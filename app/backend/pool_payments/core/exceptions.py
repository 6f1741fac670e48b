"""
Custom exception classes for the payment processor.
Provides structured error handling across all pipeline stages.
"""

from typing import Any, Optional, Dict


class PoolPaymentsException(Exception):
    """Base exception class for the payments service."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(PoolPaymentsException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class PoolSetupError(PoolPaymentsException):
    """Raised when a pool cannot be prepared for payment processing."""

    def __init__(self, coin: str, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Payment processing setup failed for {coin}: {reason}",
            "POOL_SETUP_ERROR",
            {"coin": coin, **(details or {})}
        )


class StoreError(PoolPaymentsException):
    """Raised when a Redis read or batch fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "STORE_ERROR", details)


class DaemonError(PoolPaymentsException):
    """Raised when the coin daemon cannot be reached or returns an error."""

    def __init__(
        self,
        message: str,
        rpc_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.rpc_code = rpc_code
        super().__init__(message, "DAEMON_ERROR", {"rpc_code": rpc_code, **(details or {})})


class PaymentError(PoolPaymentsException):
    """Raised when sendmany fails for a reason other than insufficient funds."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "PAYMENT_ERROR", details)


class CommitError(PoolPaymentsException):
    """Raised when the final ledger batch cannot be applied."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "COMMIT_ERROR", details)


class CycleAbortedError(PoolPaymentsException):
    """Raised when a cycle stops before any ledger mutation was attempted."""

    def __init__(self, stage: str, reason: str, details: Optional[Dict[str, Any]] = None):
        self.stage = stage
        super().__init__(
            f"Cycle aborted during {stage}: {reason}",
            "CYCLE_ABORTED",
            {"stage": stage, **(details or {})}
        )


class PaymentOutcomeUnknownError(PaymentError):
    """Raised when sendmany may or may not have been executed by the daemon."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "PAYMENT_OUTCOME_UNKNOWN"
