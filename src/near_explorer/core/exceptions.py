"""Error taxonomy for the RPC access layer."""

from typing import Any


class ExplorerError(Exception):
    """Base class for all explorer errors."""


class TransportError(ExplorerError):
    """
    The network exchange with a provider did not complete.

    Covers connection failures, timeouts, DNS errors, proxy failures,
    retryable HTTP statuses, and bodies that are not valid JSON-RPC.
    Transport errors are retried and then failed over.

    Parameters
    ----------
    message : str
        Human-readable description
    url : str | None
        Endpoint the request was sent to
    status : int | None
        HTTP status code, when a response was received

    """

    def __init__(self, message: str, url: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class ApplicationError(ExplorerError):
    """
    A well-formed JSON-RPC response carrying a semantic error.

    Never retried and never a failover trigger: another provider would give
    the same answer.

    Parameters
    ----------
    message : str
        Error text reported by the remote node
    code : int | None
        JSON-RPC error code
    data : Any
        Optional ``data`` member of the error object

    """

    def __init__(self, message: str, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class NoProvidersAvailableError(ExplorerError):
    """No provider is enabled for the active network."""


class AllProvidersFailedError(ExplorerError):
    """
    Every enabled provider exhausted its retries with transport errors.

    Parameters
    ----------
    message : str
        Summary including the providers tried
    tried : list[str]
        Provider ids in the order they were attempted
    last_error : TransportError | None
        Last transport error observed

    """

    def __init__(self, message: str, tried: list[str], last_error: TransportError | None = None) -> None:
        super().__init__(message)
        self.tried = tried
        self.last_error = last_error


class ValidationError(ExplorerError):
    """Malformed user input, rejected before any network activity."""


class ProviderNotFoundError(ExplorerError):
    """No provider with the requested id exists in the registry."""


class TransactionNotFoundError(ExplorerError):
    """A transaction could not be located in the searched blocks."""
