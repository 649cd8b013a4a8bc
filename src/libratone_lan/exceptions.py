"""Custom exception types for session and manager errors.

Extends the protocol exception hierarchy with the failures of the stateful
layer: talking to a closed session, setting a read-only property and failing
to bind the shared channels at startup.
"""

from __future__ import annotations

from libratone_lan.protocol.exceptions import LibratoneProtocolError


class SessionError(LibratoneProtocolError):
    """Base exception for device session errors."""


class SessionClosedError(SessionError):
    """Command issued to a session that is not ready.

    Attributes:
        host: Speaker address
        state: Session state when the command was issued

    """

    def __init__(self, host: str, state: str) -> None:
        self.host: str = host
        self.state: str = state
        super().__init__(f"Session with {host} is not ready (state: {state})")


class PropertyNotSettableError(SessionError):
    """Set requested for a property that has no set command.

    Attributes:
        name: Property name

    """

    def __init__(self, name: str) -> None:
        self.name: str = name
        super().__init__(f"Property {name!r} cannot be set")


class ManagerStartError(LibratoneProtocolError):
    """A discovery or shared inbound channel could not be opened.

    Attributes:
        reason: Which channel failed ("discovery", "notify", "reply")
        port: Port that could not be bound

    """

    def __init__(self, reason: str, port: int) -> None:
        self.reason: str = reason
        self.port: int = port
        super().__init__(f"Device manager failed to start: {reason} channel on port {port}")
