"""sesame - full-text search over coding agent sessions."""

__version__ = "0.1.0"
