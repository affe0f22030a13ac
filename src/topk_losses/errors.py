"""Fatal error types raised by the top-k losses."""


class InvalidConfigurationError(ValueError):
    """Raised when a loss configuration does not fit the bound batch shape."""


class LabelGradientError(RuntimeError):
    """Raised when backward is asked for a gradient with respect to labels."""
