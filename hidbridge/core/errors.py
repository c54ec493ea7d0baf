"""Domain-specific errors for hidbridge."""


class HidBridgeError(Exception):
    """Base error for hidbridge."""


class ProfileValidationError(HidBridgeError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(HidBridgeError):
    """Raised when loading profile sources fails."""


class ProfileSelectionError(HidBridgeError):
    """Raised when a single peripheral profile cannot be chosen."""


class CommandError(HidBridgeError):
    """Raised when an input command cannot be built or parsed."""


class SessionNotReadyError(HidBridgeError):
    """Raised when a connected session was required but never became ready."""


class TransportError(HidBridgeError):
    """Base transport error."""


class DiscoveryError(TransportError):
    """Raised when the radio reports a scan error."""


class ConnectError(TransportError):
    """Raised when a connection attempt fails."""


class ResolveError(TransportError):
    """Raised when the required service or characteristics are missing."""


class SendError(TransportError):
    """Raised when a single write is rejected or not acknowledged."""


class TransportTimeoutError(SendError):
    """Raised when a write acknowledgment does not arrive in time."""
