"""Domain-specific errors for glovelink."""


class GlovelinkError(Exception):
    """Base error for glovelink."""


class ProfileValidationError(GlovelinkError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(GlovelinkError):
    """Raised when loading profile sources fails."""


class DeviceSelectionError(GlovelinkError):
    """Raised when device discovery cannot resolve a single target."""


class UserCancelledError(GlovelinkError):
    """Raised when the device chooser was dismissed."""


class ConnectionBusyError(GlovelinkError):
    """Raised when connecting while a connection is active or in progress."""


class InvalidTransitionError(GlovelinkError):
    """Raised on an illegal connection state transition."""


class TransportError(GlovelinkError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when a transport cannot be opened."""


class UnsupportedTransportError(TransportConnectError):
    """Raised when the platform lacks the transport capability."""


class NoCompatibleProfileError(TransportConnectError):
    """Raised when no known UART service/characteristic pair was found."""


class HandshakeFailedError(TransportConnectError):
    """Raised when the link opened but characteristic negotiation failed."""


class TransportReadError(TransportError):
    """Raised when the inbound stream fails."""


class TransportWriteError(TransportError):
    """Raised when payload writing fails."""

    def __init__(self, message: str, *, terminal: bool = False) -> None:
        super().__init__(message)
        self.terminal = terminal


class RemoteDisconnectedError(TransportWriteError):
    """Raised when writing to a radio link the far end already dropped."""

    def __init__(self, message: str) -> None:
        super().__init__(message, terminal=True)
