"""
Base exceptions shared by every Heimdall component.
"""


class HeimdallError(Exception):
    """Base exception for all crawler errors"""
    pass


class ConfigurationError(HeimdallError):
    """Raised when required configuration is missing or invalid"""
    pass
