"""
Exceptions raised by the Hyperliquid WebSocket connection manager.

Precondition violations (not connected, already connected, unknown key) are
always raised to the caller and never retried. Connection and transport
failures carry the underlying error as ``__cause__``.
"""


class WebSocketError(Exception):
    """Base exception for all connection manager errors."""
    pass


class ConnectError(WebSocketError, ConnectionError):
    """
    Raised when the socket cannot be established (dial or handshake failure).

    Returned by an explicit ``connect()``; retried automatically by the
    reconnection supervisor once a connection has previously succeeded.
    """
    def __init__(self, url: str, reason: str = None):
        self.url = url
        self.reason = reason
        self.message = f"Failed to connect to {url}" + (f": {reason}" if reason else "")
        super().__init__(self.message)


class TransportError(WebSocketError):
    """Raised when a write on an established socket fails."""
    def __init__(self, operation: str, reason: str = None):
        self.operation = operation
        self.reason = reason
        self.message = f"Transport failure during {operation}" + (f": {reason}" if reason else "")
        super().__init__(self.message)


class NotConnectedError(WebSocketError):
    """Raised when an operation requires a live connection."""
    def __init__(self, state: str):
        self.state = state
        self.message = f"Not connected (state: {state})"
        super().__init__(self.message)


class AlreadyConnectedError(WebSocketError):
    """Raised by ``connect()`` when the manager is not disconnected."""
    def __init__(self, state: str):
        self.state = state
        self.message = f"Already connected or connecting (state: {state})"
        super().__init__(self.message)


class SubscriptionNotFoundError(WebSocketError, KeyError):
    """Raised by ``unsubscribe()`` for a key that is not registered."""
    def __init__(self, key: str):
        self.key = key
        self.message = f"Subscription not found: {key}"
        super().__init__(self.message)

    def __str__(self):
        return self.message


class InvalidSubscriptionError(WebSocketError, ValueError):
    """Raised when a subscription kind is missing a required parameter."""
    def __init__(self, kind: str, missing: str):
        self.kind = kind
        self.missing = missing
        self.message = f"Subscription '{kind}' requires parameter '{missing}'"
        super().__init__(self.message)


class DecodeError(WebSocketError, ValueError):
    """Raised for an inbound frame that is not a valid JSON channel message."""
    def __init__(self, raw, reason: str = None):
        self.raw = raw
        self.reason = reason
        preview = str(raw)[:200]
        self.message = f"Malformed frame ({reason or 'invalid'}): {preview}"
        super().__init__(self.message)


class ReconnectExhaustedError(WebSocketError):
    """
    Terminal failure: every reconnection attempt failed.

    Never raised to callers. It is handed to the status callback and recorded
    in the stats snapshot; only an explicit ``connect()`` recovers.
    """
    def __init__(self, attempts: int, last_error: Exception = None):
        self.attempts = attempts
        self.last_error = last_error
        self.message = f"Reconnection failed after {attempts} attempts"
        if last_error is not None:
            self.message += f": {last_error}"
        super().__init__(self.message)
