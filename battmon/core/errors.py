"""Domain-specific errors for battmon."""


class BattmonError(Exception):
    """Base error for battmon."""


class ConfigValidationError(BattmonError):
    """Raised when a config file does not conform to schema or semantics."""


class ConfigLoadError(BattmonError):
    """Raised when reading the config file fails."""


class DeviceSelectionError(BattmonError):
    """Raised when a selection intent names a peripheral that is not tracked."""


class MalformedValueError(BattmonError):
    """Raised when a characteristic value cannot be decoded as a level."""


class TransportError(BattmonError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on GATT connect failures."""


class TransportTimeoutError(TransportError):
    """Raised when an adapter request does not complete in time."""


class AlreadyNotifyingError(TransportError):
    """Raised when notifications are already enabled for a characteristic."""
