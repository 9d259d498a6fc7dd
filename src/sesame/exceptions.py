"""Exception types for sesame."""


class SesameError(Exception):
    """Base class for all sesame errors."""


class InvalidQueryError(SesameError, ValueError):
    """Raised when a search query or its options are unusable."""


class StorageError(SesameError):
    """Raised when a write to the index fails and is rolled back."""


class ParserError(SesameError):
    """Raised when a session file cannot be read by its parser."""


class ConfigError(SesameError):
    """Raised when the configuration file is malformed."""
