"""Configuration exceptions."""

class ConfigLoadError(Exception):
    """Raised when the environment file cannot be read."""
    pass

class ConfigValidationError(Exception):
    """Raised when a required setting is missing or malformed."""
    pass
