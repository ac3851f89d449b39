"""Custom exception classes for MCP Lookup Bridge."""

from typing import List, Optional, Sequence


class BridgeBaseError(Exception):
    """Base class for all custom exceptions in MCP Lookup Bridge."""

    pass


class ConfigurationError(BridgeBaseError):
    """Raised when loading or validating the configuration file fails."""

    pass


class BackendServerError(BridgeBaseError):
    """
    Raised when interacting with a managed or remote MCP server fails,
    or when such a server reports an error.
    """

    def __init__(
        self,
        message: str,
        svr_name: Optional[str] = None,
        orig_exc: Optional[BaseException] = None,
    ):
        self.svr_name = svr_name
        self.orig_exc = orig_exc
        self.reason = message

        full_msg = "Backend server error"
        if svr_name:
            full_msg += f" (server: {svr_name})"
        full_msg += f": {message}"
        if orig_exc:
            full_msg += f" (original error: {type(orig_exc).__name__})"
        super().__init__(full_msg)


class ServerNotFoundError(BridgeBaseError):
    """Raised when a control operation names a server that is not managed."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Server '{name}' not found")


class ServerConflictError(BridgeBaseError):
    """Raised when a server with the same name is already managed."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Server '{name}' already exists")


class ServerStateError(BridgeBaseError):
    """Raised when an operation is not allowed in the server's current status."""

    pass


class ToolRegistrationError(BridgeBaseError):
    """
    Raised when the tool-serving surface rejects a registration,
    e.g. because the namespaced name is already taken.
    """

    def __init__(self, tool_name: str, owner: Optional[str] = None):
        self.tool_name = tool_name
        self.owner = owner
        message = f"Tool '{tool_name}' is already registered"
        if owner:
            message += f" (owner: {owner})"
        super().__init__(message)


class TransportError(BridgeBaseError):
    """Raised when every transport attempted for an endpoint failed."""

    def __init__(self, endpoint: str, attempts: Sequence[str], details: Sequence[str] = ()):
        self.endpoint = endpoint
        self.attempts: List[str] = list(attempts)
        self.details: List[str] = list(details)
        transports = " and ".join(self.attempts) if self.attempts else "no transport"
        message = f"Failed to connect to {endpoint} via both {transports}"
        if len(self.attempts) < 2:
            message = f"Failed to connect to {endpoint} via {transports}"
        if self.details:
            message += ": " + "; ".join(self.details)
        super().__init__(message)


class DirectoryError(BridgeBaseError):
    """Raised when a request to the MCP Lookup directory API fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        if status_code is not None:
            message = f"{message} (HTTP {status_code})"
        super().__init__(message)


class PackageResolutionError(BridgeBaseError):
    """Raised when a package query cannot be turned into a launchable package."""

    pass


def describe_exception(exc: BaseException) -> str:
    """Return a short human-readable reason for *exc*.

    Exception groups raised by anyio task groups are unwrapped to the
    first leaf exception.
    """
    while True:
        nested = getattr(exc, "exceptions", None)
        if not nested:
            break
        exc = nested[0]
    text = str(exc).strip()
    return text or type(exc).__name__
