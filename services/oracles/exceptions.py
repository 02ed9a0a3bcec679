"""Errors raised by the oracle client."""


class OracleClientError(Exception):
    """Base exception for oracle client errors."""

    pass


class AccountUnavailableError(OracleClientError):
    """Raised when no usable sender account can be resolved."""

    pass


class ContractNotConfiguredError(OracleClientError):
    """Raised when an oracle contract has no known address or ABI."""

    pass


class TransactionFailedError(OracleClientError):
    """Raised when a transaction is mined but reverted."""

    pass
