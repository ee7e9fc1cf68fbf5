"""
Sync Errors
Classified failures raised by the network client. Stores turn these into state
(load_state / error flag); they never reach screen code as exceptions.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for every classified network failure."""

    kind = 'unknown'
    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str = '', status_code: Optional[int] = None):
        super().__init__(message or self.user_message)
        self.status_code = status_code


class NetworkUnavailable(SyncError):
    """Connection refused, DNS failure, timeout, or no API configured."""

    kind = 'network'
    user_message = "You appear to be offline. Showing saved data."


class ServerRejected(SyncError):
    """4xx: the request itself was bad. Surface as a form error."""

    kind = 'http4xx'
    user_message = "The server rejected this change. Please check your input."

    def __init__(self, message: str = '', status_code: Optional[int] = None):
        super().__init__(message, status_code)
        # the server's own explanation is what the form should show
        if message:
            self.user_message = message


class ServerFault(SyncError):
    """5xx: transient server trouble, safe to retry manually."""

    kind = 'http5xx'
    user_message = "The server is having trouble. Pull to refresh to try again."


class DecodeFailure(SyncError):
    """Response did not match the record contract. Treated like ServerFault in the UI."""

    kind = 'decode'
    user_message = ServerFault.user_message


def classify_status(status_code: int, message: str = '') -> SyncError:
    """Map a non-2xx HTTP status to its SyncError class."""
    if 400 <= status_code < 500:
        return ServerRejected(message, status_code=status_code)
    return ServerFault(message or f"HTTP {status_code}", status_code=status_code)
