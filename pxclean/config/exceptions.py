"""
Errors raised while loading pxclean configuration.
"""


class ConfigError(Exception):
    """The configuration file is missing, unreadable, or not a mapping."""
    pass


class ValidationError(ConfigError):
    """A configuration value (kind, cron, token, URL, timezone) is invalid."""
    pass
