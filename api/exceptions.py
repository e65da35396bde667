"""Custom exceptions for the property map engine"""


class PropertyMapError(Exception):
    """Base exception for the property map engine"""
    pass


class ConfigurationError(PropertyMapError):
    """Raised when configuration is invalid (e.g. missing API key)"""
    pass


class RendererError(PropertyMapError):
    """Raised when the map renderer rejects an operation"""
    pass


class LocationError(PropertyMapError):
    """Raised when the device location cannot be resolved"""

    def __init__(self, message: str, reason: str = "unavailable"):
        super().__init__(message)
        self.reason = reason


class DrawingStateError(PropertyMapError):
    """Raised when a drawing operation is invalid in the current state"""
    pass
