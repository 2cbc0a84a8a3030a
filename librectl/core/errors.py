"""Domain-specific errors for librectl."""


class LibreToolsError(Exception):
    """Base error for librectl."""


class UnsupportedSensorTypeError(LibreToolsError):
    """Raised when the sensor variant cannot perform the requested action."""

    def __init__(self, message: str = "Unsupported Sensor Type") -> None:
        super().__init__(message)


class MissingUnlockParametersError(LibreToolsError):
    """Raised when an action needs an unlock code and/or password that were never set."""

    def __init__(self, message: str = "Missing Unlock Parameters") -> None:
        super().__init__(message)


class TagDamagedError(LibreToolsError):
    """Raised when the tag answers patch info with an empty payload."""

    def __init__(self, message: str = "Tag damaged: empty patch info") -> None:
        super().__init__(message)


class InvalidLengthError(LibreToolsError):
    """Raised when a memory image or cipher input has the wrong size."""


class SessionBusyError(LibreToolsError):
    """Raised when an action is requested while another one is still pending."""


class SensorTableError(LibreToolsError):
    """Raised when the packaged sensor variant table is malformed."""


class ConfigError(LibreToolsError):
    """Raised when the credentials config file cannot be read or validated."""


class TagImageError(LibreToolsError):
    """Raised when a tag image file cannot be loaded or saved."""


class TransportError(LibreToolsError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when no tag could be connected."""


class TransportIOError(TransportError):
    """Raised when a block read/write or custom command fails."""
