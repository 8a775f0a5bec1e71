"""Exception types raised by dbshield."""


class DbShieldError(Exception):
    """Base class for all dbshield errors."""


class ConfigError(DbShieldError):
    """A target's schedule or connection settings are malformed."""


class FingerprintUnavailable(DbShieldError):
    """The content fingerprint of a database could not be computed."""


class PersistenceError(DbShieldError):
    """The config store could not be written."""


class TargetNotFoundError(DbShieldError):
    """No target with the requested name exists."""


class DuplicateTargetError(DbShieldError):
    """A target with the same name already exists."""


class StartupError(DbShieldError):
    """The daemon cannot start, e.g. the config store is unreadable."""
